from __future__ import annotations

from typing import Protocol

from studyflow.models.audit import AuditEvent, AuditEventType


class AuditRepo(Protocol):
    async def append(self, event: AuditEvent) -> None: ...
    async def list_for_user(
        self,
        user_id: str,
        *,
        limit: int = 50,
        offset: int = 0,
        event_type: AuditEventType | None = None,
    ) -> list[AuditEvent]: ...
    async def count_for_user(self, user_id: str) -> int: ...


class InMemoryAuditRepo:
    def __init__(self) -> None:
        self._events: list[AuditEvent] = []

    async def append(self, event: AuditEvent) -> None:
        self._events.append(event)

    async def list_for_user(
        self,
        user_id: str,
        *,
        limit: int = 50,
        offset: int = 0,
        event_type: AuditEventType | None = None,
    ) -> list[AuditEvent]:
        matched = [
            e
            for e in reversed(self._events)
            if e.user_id == user_id and (event_type is None or e.event_type == event_type)
        ]
        return matched[offset : offset + limit]

    async def count_for_user(self, user_id: str) -> int:
        return sum(1 for e in self._events if e.user_id == user_id)
