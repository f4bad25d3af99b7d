"""Per-user, per-module progress transitions.

    NOT_STARTED --start--> IN_PROGRESS --complete--> COMPLETED
    IN_PROGRESS --save(partial)--> IN_PROGRESS

Transitions only move forward.  The COMPLETED guard is part of every
repo write (a compare-and-set on ``status != COMPLETED``), so two callers
racing to complete the same module cannot both win: the loser's write
matches no row and surfaces as CompletionConflict.

The pre-reads below exist only to pick the right error and to tell the
caller whether anything changed; correctness does not depend on them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from studyflow.core.errors import (
    AlreadyCompleted,
    CompletionConflict,
    ProgressNotFound,
    ReadOnly,
)
from studyflow.core.metrics import MODULE_TRANSITIONS, TRANSITION_REJECTIONS
from studyflow.models.progress import (
    ProgressRecord,
    ProgressStatus,
    now_ts,
    validate_payload,
)
from studyflow.repos.progress_repo import ProgressRepo

logger = logging.getLogger(__name__)

DEFAULT_MAX_PAYLOAD_BYTES = 65536


@dataclass(frozen=True, slots=True)
class Transition:
    """Outcome of one state-machine call.

    kind:           start | save | complete
    previous:       status before the call (None when no record existed)
    implicit_start: a save/complete that had to start the record first
    first_save:     the record had never been saved before this call
    """

    kind: str
    record: ProgressRecord
    previous: ProgressStatus | None
    implicit_start: bool = False
    first_save: bool = False

    @property
    def changed(self) -> bool:
        return self.previous is not self.record.status or self.kind == "save"


class ProgressStateMachine:
    def __init__(
        self, repo: ProgressRepo, *, max_payload_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES
    ) -> None:
        self._repo = repo
        self._max_payload_bytes = max_payload_bytes

    async def start(self, user_id: str, module_name: str) -> Transition:
        before = await self._repo.get(user_id, module_name)
        if before is not None and before.is_completed:
            self._rejected(AlreadyCompleted.code, user_id, module_name, "start")
            raise AlreadyCompleted(user_id, module_name)
        if before is not None and before.status is ProgressStatus.IN_PROGRESS:
            return Transition(kind="start", record=before, previous=before.status)

        record = await self._repo.start(user_id, module_name, at=now_ts())
        if record is None:
            self._rejected(AlreadyCompleted.code, user_id, module_name, "start")
            raise AlreadyCompleted(user_id, module_name)

        MODULE_TRANSITIONS.labels(kind="start").inc()
        logger.info("Module started user=%s module=%s", user_id, module_name)
        return Transition(
            kind="start",
            record=record,
            previous=before.status if before else None,
        )

    async def save_progress(
        self, user_id: str, module_name: str, responses: dict[str, Any] | None
    ) -> Transition:
        responses = validate_payload(
            responses, limit=self._max_payload_bytes, label="responses"
        )
        before = await self._repo.get(user_id, module_name)
        if before is not None and before.is_completed:
            self._rejected(ReadOnly.code, user_id, module_name, "save")
            raise ReadOnly(user_id, module_name)

        at = now_ts()
        implicit_start = before is None or before.status is ProgressStatus.NOT_STARTED
        if implicit_start:
            if await self._repo.start(user_id, module_name, at=at) is None:
                self._rejected(ReadOnly.code, user_id, module_name, "save")
                raise ReadOnly(user_id, module_name)
            MODULE_TRANSITIONS.labels(kind="start").inc()

        record = await self._repo.save_responses(user_id, module_name, responses, at=at)
        if record is None:
            # Completed between our read and the conditional update
            self._rejected(ReadOnly.code, user_id, module_name, "save")
            raise ReadOnly(user_id, module_name)

        MODULE_TRANSITIONS.labels(kind="save").inc()
        logger.debug(
            "Progress saved user=%s module=%s keys=%d",
            user_id,
            module_name,
            len(responses),
        )
        return Transition(
            kind="save",
            record=record,
            previous=before.status if before else None,
            implicit_start=implicit_start,
            first_save=before is None or before.last_saved_at is None,
        )

    async def complete(
        self,
        user_id: str,
        module_name: str,
        responses: dict[str, Any] | None,
        metadata: dict[str, Any] | None = None,
    ) -> Transition:
        responses = validate_payload(
            responses, limit=self._max_payload_bytes, label="responses"
        )
        metadata = validate_payload(
            metadata, limit=self._max_payload_bytes, label="metadata"
        )
        before = await self._repo.get(user_id, module_name)
        if before is not None and before.is_completed:
            self._rejected(AlreadyCompleted.code, user_id, module_name, "complete")
            raise AlreadyCompleted(user_id, module_name)

        record = await self._repo.complete(
            user_id, module_name, responses, metadata, at=now_ts()
        )
        if record is None:
            self._rejected(CompletionConflict.code, user_id, module_name, "complete")
            raise CompletionConflict(user_id, module_name)

        MODULE_TRANSITIONS.labels(kind="complete").inc()
        logger.info("Module completed user=%s module=%s", user_id, module_name)
        return Transition(
            kind="complete",
            record=record,
            previous=before.status if before else None,
            implicit_start=before is None or before.status is ProgressStatus.NOT_STARTED,
        )

    async def get_progress(self, user_id: str, module_name: str) -> ProgressRecord:
        record = await self._repo.get(user_id, module_name)
        if record is None:
            raise ProgressNotFound(user_id, module_name)
        return record

    async def find_progress(self, user_id: str, module_name: str) -> ProgressRecord | None:
        return await self._repo.get(user_id, module_name)

    async def list_progress(self, user_id: str) -> list[ProgressRecord]:
        return await self._repo.list_for_user(user_id)

    async def completed_modules(self, user_id: str) -> frozenset[str]:
        records = await self._repo.list_for_user(user_id)
        return frozenset(r.module_name for r in records if r.is_completed)

    def _rejected(self, code: str, user_id: str, module_name: str, kind: str) -> None:
        TRANSITION_REJECTIONS.labels(code=code).inc()
        logger.warning(
            "Transition rejected user=%s module=%s kind=%s code=%s",
            user_id,
            module_name,
            kind,
            code,
            extra={"user_id": user_id, "study_module": module_name, "reason": code},
        )
