from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any
from uuid import UUID, uuid4


class AuditEventType(StrEnum):
    MODULE_START = "MODULE_START"
    PROGRESS_SAVED = "PROGRESS_SAVED"
    MODULE_COMPLETION = "MODULE_COMPLETION"
    MODULE_ACCESS_DENIED = "MODULE_ACCESS_DENIED"
    TRANSITION_REJECTED = "TRANSITION_REJECTED"
    CONSENT = "CONSENT"
    PATH_START = "PATH_START"
    PATH_COMPLETION = "PATH_COMPLETION"
    PATH_ACCESS_DENIED = "PATH_ACCESS_DENIED"
    PATH_UNLOCKED = "PATH_UNLOCKED"


@dataclass(frozen=True, slots=True)
class AuditEvent:
    """Append-only history entry.  There is no update or delete path."""

    id: UUID
    user_id: str
    event_type: AuditEventType
    occurred_at: int
    payload: dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def new(
        *,
        user_id: str,
        event_type: AuditEventType,
        occurred_at: int,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        return AuditEvent(
            id=uuid4(),
            user_id=user_id,
            event_type=event_type,
            occurred_at=occurred_at,
            payload=dict(payload or {}),
        )
