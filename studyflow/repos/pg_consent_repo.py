"""PostgreSQL implementations of ConsentRepo and ConsentVersionRepo."""

from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from studyflow.core.errors import (
    AlreadyConsented,
    ConsentVersionExists,
    ConsentVersionNotFound,
)
from studyflow.db.engine import translate_store_errors
from studyflow.db.tables import ConsentRow, ConsentVersionRow
from studyflow.models.consent import (
    ConsentRecord,
    ConsentVersion,
    ConsentVersionStatus,
)

_ACTIVE = ConsentVersionStatus.ACTIVE.value
_RETIRED = ConsentVersionStatus.RETIRED.value


class PgConsentRepo:
    """Satisfies the ConsentRepo Protocol using PostgreSQL."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, record: ConsentRecord) -> None:
        row = ConsentRow(
            id=record.id,
            user_id=record.user_id,
            version=record.version,
            content=record.content,
            consented_at=record.consented_at,
        )
        # SAVEPOINT so a duplicate does not abort the surrounding transaction
        try:
            with translate_store_errors("consent.add"):
                async with self._session.begin_nested():
                    self._session.add(row)
                    await self._session.flush()
        except IntegrityError:
            # UNIQUE (user_id, version): a concurrent submission got there first
            raise AlreadyConsented(record.user_id, record.version) from None

    async def find(self, user_id: str, version: str) -> ConsentRecord | None:
        stmt = select(ConsentRow).where(
            ConsentRow.user_id == user_id, ConsentRow.version == version
        )
        with translate_store_errors("consent.find"):
            row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_consent(row)

    async def list_for_user(self, user_id: str) -> list[ConsentRecord]:
        stmt = (
            select(ConsentRow)
            .where(ConsentRow.user_id == user_id)
            .order_by(ConsentRow.consented_at.desc())
        )
        with translate_store_errors("consent.list_for_user"):
            rows = (await self._session.scalars(stmt)).all()
        return [_row_to_consent(r) for r in rows]


class PgConsentVersionRepo:
    """Satisfies the ConsentVersionRepo Protocol using PostgreSQL."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, version: str) -> ConsentVersion | None:
        with translate_store_errors("consent_version.get"):
            row = await self._session.get(ConsentVersionRow, version)
        if row is None:
            return None
        return _row_to_version(row)

    async def get_active(self) -> ConsentVersion | None:
        stmt = select(ConsentVersionRow).where(ConsentVersionRow.status == _ACTIVE)
        with translate_store_errors("consent_version.get_active"):
            row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_version(row)

    async def list_all(self) -> list[ConsentVersion]:
        stmt = select(ConsentVersionRow).order_by(ConsentVersionRow.version)
        with translate_store_errors("consent_version.list_all"):
            rows = (await self._session.scalars(stmt)).all()
        return [_row_to_version(r) for r in rows]

    async def add(self, version: ConsentVersion) -> None:
        row = ConsentVersionRow(
            version=version.version,
            title=version.title,
            status=version.status.value,
            content_text=version.content_text,
            effective_at=version.effective_at,
            retired_at=version.retired_at,
        )
        try:
            with translate_store_errors("consent_version.add"):
                async with self._session.begin_nested():
                    self._session.add(row)
                    await self._session.flush()
        except IntegrityError:
            raise ConsentVersionExists(version.version) from None

    async def activate(self, version: str, *, at: int) -> ConsentVersion:
        with translate_store_errors("consent_version.activate"):
            # Retire first so the single-ACTIVE partial index is never violated
            await self._session.execute(
                update(ConsentVersionRow)
                .where(
                    ConsentVersionRow.status == _ACTIVE,
                    ConsentVersionRow.version != version,
                )
                .values(status=_RETIRED, retired_at=at)
            )
            row = await self._session.get(ConsentVersionRow, version)
            if row is None:
                raise ConsentVersionNotFound(version)
            row.status = _ACTIVE
            row.effective_at = at
            row.retired_at = None
            await self._session.flush()
        return _row_to_version(row)

    async def retire(self, version: str, *, at: int) -> ConsentVersion:
        with translate_store_errors("consent_version.retire"):
            row = await self._session.get(ConsentVersionRow, version)
            if row is None:
                raise ConsentVersionNotFound(version)
            row.status = _RETIRED
            row.retired_at = at
            await self._session.flush()
        return _row_to_version(row)


def _row_to_consent(row: ConsentRow) -> ConsentRecord:
    return ConsentRecord(
        id=row.id,
        user_id=row.user_id,
        version=row.version,
        consented_at=row.consented_at,
        content=row.content,
    )


def _row_to_version(row: ConsentVersionRow) -> ConsentVersion:
    return ConsentVersion(
        version=row.version,
        title=row.title,
        status=ConsentVersionStatus(row.status),
        content_text=row.content_text,
        effective_at=row.effective_at,
        retired_at=row.retired_at,
    )
