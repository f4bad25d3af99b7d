from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from studyflow.db.engine import translate_store_errors
from studyflow.db.tables import ParticipantStateRow


class PgParticipantStateRepo:
    """Satisfies the ParticipantStateRepo Protocol using PostgreSQL."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_active_module(self, user_id: str) -> str | None:
        stmt = select(ParticipantStateRow.active_module).where(
            ParticipantStateRow.user_id == user_id
        )
        with translate_store_errors("participant.get_active_module"):
            return (await self._session.execute(stmt)).scalar_one_or_none()

    async def set_active_module(
        self, user_id: str, module_name: str | None, *, at: int
    ) -> None:
        stmt = insert(ParticipantStateRow).values(
            user_id=user_id, active_module=module_name, updated_at=at
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[ParticipantStateRow.user_id],
            set_={
                "active_module": stmt.excluded.active_module,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        with translate_store_errors("participant.set_active_module"):
            await self._session.execute(stmt)
