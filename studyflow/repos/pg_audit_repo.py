"""PostgreSQL implementation of AuditRepo.

Unlike the other Pg repos this one does not share the request session.
Each append opens its own session and commits immediately, so a rollback
of the business transaction never removes audit rows and a failed audit
insert never aborts the business transaction.
"""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from studyflow.db.engine import translate_store_errors
from studyflow.db.tables import AuditEventRow
from studyflow.models.audit import AuditEvent, AuditEventType


class PgAuditRepo:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def append(self, event: AuditEvent) -> None:
        row = AuditEventRow(
            id=event.id,
            user_id=event.user_id,
            event_type=event.event_type.value,
            occurred_at=event.occurred_at,
            payload=event.payload,
        )
        with translate_store_errors("audit.append"):
            async with self._session_factory() as session:
                session.add(row)
                await session.commit()

    async def list_for_user(
        self,
        user_id: str,
        *,
        limit: int = 50,
        offset: int = 0,
        event_type: AuditEventType | None = None,
    ) -> list[AuditEvent]:
        stmt = select(AuditEventRow).where(AuditEventRow.user_id == user_id)
        if event_type is not None:
            stmt = stmt.where(AuditEventRow.event_type == event_type.value)
        stmt = stmt.order_by(AuditEventRow.seq.desc()).limit(limit).offset(offset)
        with translate_store_errors("audit.list_for_user"):
            async with self._session_factory() as session:
                rows = (await session.scalars(stmt)).all()
        return [_row_to_event(r) for r in rows]

    async def count_for_user(self, user_id: str) -> int:
        stmt = select(func.count()).select_from(AuditEventRow).where(
            AuditEventRow.user_id == user_id
        )
        with translate_store_errors("audit.count_for_user"):
            async with self._session_factory() as session:
                return (await session.execute(stmt)).scalar_one()


def _row_to_event(row: AuditEventRow) -> AuditEvent:
    return AuditEvent(
        id=row.id,
        user_id=row.user_id,
        event_type=AuditEventType(row.event_type),
        occurred_at=row.occurred_at,
        payload=dict(row.payload or {}),
    )
