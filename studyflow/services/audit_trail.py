from __future__ import annotations

import logging
from typing import Any

from studyflow.core.metrics import AUDIT_WRITE_FAILURES
from studyflow.models.audit import AuditEvent, AuditEventType
from studyflow.models.progress import now_ts
from studyflow.repos.audit_repo import AuditRepo

logger = logging.getLogger(__name__)

MAX_HISTORY_PAGE = 200


class AuditTrail:
    """Best-effort append-only history of access decisions and transitions.

    ``record`` never raises: a failed write is logged with its traceback and
    counted, and the business operation it documents carries on unchanged.
    """

    def __init__(self, repo: AuditRepo) -> None:
        self._repo = repo

    async def record(
        self,
        user_id: str,
        event_type: AuditEventType,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent | None:
        event = AuditEvent.new(
            user_id=user_id,
            event_type=event_type,
            occurred_at=now_ts(),
            payload=payload,
        )
        try:
            await self._repo.append(event)
        except Exception:
            AUDIT_WRITE_FAILURES.labels(event_type=event_type.value).inc()
            logger.exception(
                "Audit write failed user=%s event_type=%s",
                user_id,
                event_type.value,
                extra={"user_id": user_id, "event_type": event_type.value},
            )
            return None
        logger.debug("Audit event user=%s event_type=%s", user_id, event_type.value)
        return event

    async def count(self, user_id: str) -> int:
        return await self._repo.count_for_user(user_id)

    async def history(
        self,
        user_id: str,
        *,
        limit: int = 50,
        offset: int = 0,
        event_type: AuditEventType | None = None,
    ) -> list[AuditEvent]:
        """Newest first."""
        limit = max(1, min(limit, MAX_HISTORY_PAGE))
        return await self._repo.list_for_user(
            user_id, limit=limit, offset=max(0, offset), event_type=event_type
        )
