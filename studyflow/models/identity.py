from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, TypeVar
from uuid import UUID, uuid4

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Identity:
    """An anonymous participant as known to the identity provider.

    attributes carries provider-side labels such as the participant alias;
    the progression core only ever reads ``id``.
    """

    id: UUID
    created_at: int
    attributes: dict[str, str] = field(default_factory=dict)
    secret_hash: str | None = None

    @staticmethod
    def new(
        *, created_at: int, attributes: dict[str, str] | None = None
    ) -> Identity:
        return Identity(id=uuid4(), created_at=created_at, attributes=dict(attributes or {}))


@dataclass(frozen=True, slots=True)
class Page(Generic[T]):
    """One page of a cursor-paginated listing.

    next_cursor is None on the last page; pass it back verbatim to continue.
    """

    items: tuple[T, ...]
    next_cursor: str | None = None
