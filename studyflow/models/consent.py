from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from uuid import UUID, uuid4


class ConsentVersionStatus(StrEnum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    RETIRED = "RETIRED"


@dataclass(frozen=True, slots=True)
class ConsentVersion:
    version: str
    title: str
    status: ConsentVersionStatus = ConsentVersionStatus.DRAFT
    content_text: str | None = None
    effective_at: int | None = None
    retired_at: int | None = None

    @property
    def is_active(self) -> bool:
        return self.status is ConsentVersionStatus.ACTIVE


@dataclass(frozen=True, slots=True)
class ConsentRecord:
    """Immutable once written; one per (user_id, version)."""

    id: UUID
    user_id: str
    version: str
    consented_at: int
    content: str | None = None

    @staticmethod
    def new(
        *, user_id: str, version: str, consented_at: int, content: str | None = None
    ) -> ConsentRecord:
        return ConsentRecord(
            id=uuid4(),
            user_id=user_id,
            version=version,
            consented_at=consented_at,
            content=content,
        )
