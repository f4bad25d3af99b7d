from __future__ import annotations

from dataclasses import replace
from typing import Any, Protocol

from studyflow.models.progress import ProgressRecord, ProgressStatus


class ProgressRepo(Protocol):
    """Store for ProgressRecords with compare-and-set writes.

    Every write method is conditional on ``status != COMPLETED`` and returns
    None when that condition fails, so the COMPLETED guard lives inside the
    write itself rather than in a separate read.
    """

    async def get(self, user_id: str, module_name: str) -> ProgressRecord | None: ...
    async def list_for_user(self, user_id: str) -> list[ProgressRecord]: ...
    async def start(
        self, user_id: str, module_name: str, *, at: int
    ) -> ProgressRecord | None: ...
    async def save_responses(
        self, user_id: str, module_name: str, responses: dict[str, Any], *, at: int
    ) -> ProgressRecord | None: ...
    async def complete(
        self,
        user_id: str,
        module_name: str,
        responses: dict[str, Any],
        metadata: dict[str, Any],
        *,
        at: int,
    ) -> ProgressRecord | None: ...


def _detached(record: ProgressRecord) -> ProgressRecord:
    """Copy of a stored record whose payload dicts are not the stored ones."""
    return replace(record, responses=dict(record.responses), metadata=dict(record.metadata))


class InMemoryProgressRepo:
    """Dict-backed repo for dev and tests.

    Each write reads and replaces the record with no ``await`` in between,
    which makes the check-and-write atomic on a single event loop.
    """

    def __init__(self) -> None:
        self._store: dict[tuple[str, str], ProgressRecord] = {}

    async def get(self, user_id: str, module_name: str) -> ProgressRecord | None:
        record = self._store.get((user_id, module_name))
        return _detached(record) if record is not None else None

    async def list_for_user(self, user_id: str) -> list[ProgressRecord]:
        return [_detached(r) for (uid, _), r in self._store.items() if uid == user_id]

    async def start(
        self, user_id: str, module_name: str, *, at: int
    ) -> ProgressRecord | None:
        key = (user_id, module_name)
        current = self._store.get(key)
        if current is None:
            record = ProgressRecord.started(user_id=user_id, module_name=module_name, at=at)
        elif current.status is ProgressStatus.COMPLETED:
            return None
        else:
            record = replace(
                current,
                status=ProgressStatus.IN_PROGRESS,
                started_at=current.started_at or at,
            )
        self._store[key] = record
        return _detached(record)

    async def save_responses(
        self, user_id: str, module_name: str, responses: dict[str, Any], *, at: int
    ) -> ProgressRecord | None:
        key = (user_id, module_name)
        current = self._store.get(key)
        if current is None or current.status is ProgressStatus.COMPLETED:
            return None
        record = replace(
            current,
            responses={**current.responses, **responses},
            last_saved_at=at,
        )
        self._store[key] = record
        return _detached(record)

    async def complete(
        self,
        user_id: str,
        module_name: str,
        responses: dict[str, Any],
        metadata: dict[str, Any],
        *,
        at: int,
    ) -> ProgressRecord | None:
        key = (user_id, module_name)
        current = self._store.get(key)
        if current is not None and current.status is ProgressStatus.COMPLETED:
            return None
        record = ProgressRecord(
            user_id=user_id,
            module_name=module_name,
            status=ProgressStatus.COMPLETED,
            responses=dict(responses),
            metadata=dict(metadata),
            started_at=(current.started_at if current else None) or at,
            last_saved_at=current.last_saved_at if current else None,
            completed_at=at,
        )
        self._store[key] = record
        return _detached(record)
