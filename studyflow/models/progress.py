from __future__ import annotations

import datetime
import json
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from studyflow.core.errors import InvalidPayload, PayloadTooLarge


class ProgressStatus(StrEnum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


def now_ts() -> int:
    return int(datetime.datetime.now(datetime.UTC).timestamp())


@dataclass(frozen=True, slots=True)
class ProgressRecord:
    """Per-user, per-module state.  Mutated only by the ProgressStateMachine.

    responses: caller-supplied answers (opaque)
    metadata:  system-supplied context, e.g. the consent version used
    """

    user_id: str
    module_name: str
    status: ProgressStatus = ProgressStatus.NOT_STARTED
    responses: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    started_at: int | None = None
    last_saved_at: int | None = None
    completed_at: int | None = None

    @property
    def is_completed(self) -> bool:
        return self.status is ProgressStatus.COMPLETED

    @staticmethod
    def started(*, user_id: str, module_name: str, at: int) -> ProgressRecord:
        return ProgressRecord(
            user_id=user_id,
            module_name=module_name,
            status=ProgressStatus.IN_PROGRESS,
            started_at=at,
        )


def validate_payload(payload: Any, *, limit: int, label: str = "payload") -> dict:
    """Check an opaque key/value blob: a JSON object no larger than ``limit`` bytes.

    Returns a plain dict copy so later mutation by the caller cannot reach
    the stored record.
    """
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise InvalidPayload(f"{label} must be a JSON object")
    try:
        encoded = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise InvalidPayload(f"{label} is not JSON-serialisable: {e}") from None
    if len(encoded) > limit:
        raise PayloadTooLarge(len(encoded), limit)
    return json.loads(encoded)
