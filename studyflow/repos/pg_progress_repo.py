"""PostgreSQL implementation of ProgressRepo.

The compare-and-set is expressed in SQL so the database serialises
concurrent writers on the (user_id, module_name) row:

  INSERT ... ON CONFLICT (user_id, module_name) DO UPDATE ...
      WHERE progress_records.status != 'COMPLETED'
  RETURNING *

When the WHERE fails no row comes back, which the repo reports as None.
Two concurrent completions therefore resolve to exactly one RETURNING row.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import func, literal, select, update
from sqlalchemy.dialects.postgresql import JSONB, insert
from sqlalchemy.ext.asyncio import AsyncSession

from studyflow.db.engine import translate_store_errors
from studyflow.db.tables import ProgressRecordRow
from studyflow.models.progress import ProgressRecord, ProgressStatus

_COMPLETED = ProgressStatus.COMPLETED.value
_IN_PROGRESS = ProgressStatus.IN_PROGRESS.value

# Re-read returned rows even if an older copy is in the identity map
_FRESH = {"populate_existing": True}


class PgProgressRepo:
    """Satisfies the ProgressRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, user_id: str, module_name: str) -> ProgressRecord | None:
        stmt = select(ProgressRecordRow).where(
            ProgressRecordRow.user_id == user_id,
            ProgressRecordRow.module_name == module_name,
        )
        with translate_store_errors("progress.get"):
            row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_record(row)

    async def list_for_user(self, user_id: str) -> list[ProgressRecord]:
        stmt = select(ProgressRecordRow).where(ProgressRecordRow.user_id == user_id)
        with translate_store_errors("progress.list_for_user"):
            rows = (await self._session.scalars(stmt)).all()
        return [_row_to_record(r) for r in rows]

    async def start(
        self, user_id: str, module_name: str, *, at: int
    ) -> ProgressRecord | None:
        stmt = insert(ProgressRecordRow).values(
            user_id=user_id,
            module_name=module_name,
            status=_IN_PROGRESS,
            responses={},
            metadata_json={},
            started_at=at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[ProgressRecordRow.user_id, ProgressRecordRow.module_name],
            set_={
                "status": _IN_PROGRESS,
                "started_at": func.coalesce(
                    ProgressRecordRow.started_at, stmt.excluded.started_at
                ),
            },
            where=ProgressRecordRow.status != _COMPLETED,
        ).returning(ProgressRecordRow)
        return await self._write_one(stmt, "progress.start")

    async def save_responses(
        self, user_id: str, module_name: str, responses: dict[str, Any], *, at: int
    ) -> ProgressRecord | None:
        # jsonb || jsonb is a shallow merge where the right-hand keys win
        stmt = (
            update(ProgressRecordRow)
            .where(
                ProgressRecordRow.user_id == user_id,
                ProgressRecordRow.module_name == module_name,
                ProgressRecordRow.status != _COMPLETED,
            )
            .values(
                responses=ProgressRecordRow.responses.op("||")(
                    literal(responses, type_=JSONB)
                ),
                last_saved_at=at,
            )
            .returning(ProgressRecordRow)
        )
        return await self._write_one(stmt, "progress.save_responses")

    async def complete(
        self,
        user_id: str,
        module_name: str,
        responses: dict[str, Any],
        metadata: dict[str, Any],
        *,
        at: int,
    ) -> ProgressRecord | None:
        stmt = insert(ProgressRecordRow).values(
            user_id=user_id,
            module_name=module_name,
            status=_COMPLETED,
            responses=responses,
            metadata_json=metadata,
            started_at=at,
            completed_at=at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[ProgressRecordRow.user_id, ProgressRecordRow.module_name],
            set_={
                "status": _COMPLETED,
                "responses": stmt.excluded.responses,
                "metadata_json": stmt.excluded.metadata_json,
                "completed_at": stmt.excluded.completed_at,
                "started_at": func.coalesce(
                    ProgressRecordRow.started_at, stmt.excluded.started_at
                ),
            },
            where=ProgressRecordRow.status != _COMPLETED,
        ).returning(ProgressRecordRow)
        return await self._write_one(stmt, "progress.complete")

    async def _write_one(self, stmt, operation: str) -> ProgressRecord | None:
        with translate_store_errors(operation):
            result = await self._session.scalars(stmt, execution_options=_FRESH)
            row = result.one_or_none()
            await self._session.flush()
        if row is None:
            return None
        return _row_to_record(row)


def _row_to_record(row: ProgressRecordRow) -> ProgressRecord:
    return ProgressRecord(
        user_id=row.user_id,
        module_name=row.module_name,
        status=ProgressStatus(row.status),
        responses=dict(row.responses or {}),
        metadata=dict(row.metadata_json or {}),
        started_at=row.started_at,
        last_saved_at=row.last_saved_at,
        completed_at=row.completed_at,
    )
