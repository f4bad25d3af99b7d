"""Anonymous identity provisioning and lookup.

The progression core never stores identities itself; it only keys progress
by ``Identity.id``.  The provider is injected so a deployment can point it
at an external directory.  The in-memory implementation below keeps an
attribute index so ``find_by_attribute`` never scans every identity.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Protocol
from uuid import UUID

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from studyflow.core.errors import IdentityNotFound
from studyflow.models.identity import Identity, Page
from studyflow.models.progress import now_ts

logger = logging.getLogger(__name__)

ALIAS_ATTRIBUTE = "alias"
MAX_PAGE_SIZE = 100

_ph = PasswordHasher()


class IdentityProvider(Protocol):
    async def create_identity(
        self, attributes: dict[str, str], *, secret: str | None = None
    ) -> Identity: ...
    async def authenticate(self, alias: str, secret: str) -> Identity | None: ...
    async def set_attributes(self, identity_id: UUID, attributes: dict[str, str]) -> Identity: ...
    async def get(self, identity_id: UUID) -> Identity | None: ...
    async def list_identities(
        self, *, page_size: int = 50, cursor: str | None = None
    ) -> Page[Identity]: ...
    async def find_by_attribute(
        self, name: str, value: str, *, page_size: int = 50, cursor: str | None = None
    ) -> Page[Identity]: ...


def hash_secret(secret: str) -> str:
    if not secret:
        raise ValueError("secret must be non-empty")
    return _ph.hash(secret)


def verify_secret(secret: str, secret_hash: str | None) -> bool:
    if not secret or not secret_hash:
        return False
    try:
        return _ph.verify(secret_hash, secret)
    except (VerifyMismatchError, VerificationError, InvalidHash):
        return False


def _paginate(ids: list[UUID], page_size: int, cursor: str | None) -> tuple[list[UUID], str | None]:
    """Slice ``ids`` after the cursor id.  The cursor is the last id of the previous page."""
    page_size = max(1, min(page_size, MAX_PAGE_SIZE))
    start = 0
    if cursor is not None:
        try:
            after = UUID(cursor)
        except ValueError:
            raise ValueError(f"invalid cursor: {cursor!r}") from None
        try:
            start = ids.index(after) + 1
        except ValueError:
            raise ValueError(f"invalid cursor: {cursor!r}") from None
    chunk = ids[start : start + page_size]
    more = start + page_size < len(ids)
    next_cursor = str(chunk[-1]) if more and chunk else None
    return chunk, next_cursor


class InMemoryIdentityProvider:
    def __init__(self) -> None:
        self._by_id: dict[UUID, Identity] = {}
        # Creation order, used as the stable pagination order
        self._order: list[UUID] = []
        self._index: dict[tuple[str, str], list[UUID]] = {}

    async def create_identity(
        self, attributes: dict[str, str], *, secret: str | None = None
    ) -> Identity:
        identity = Identity.new(created_at=now_ts(), attributes=attributes)
        if secret is not None:
            identity = replace(identity, secret_hash=hash_secret(secret))
        self.seed(identity)
        logger.info("Created identity id=%s", identity.id)
        return identity

    def seed(self, identity: Identity) -> None:
        """Insert a fully built identity.  Aliases are unique."""
        alias = identity.attributes.get(ALIAS_ATTRIBUTE)
        if alias is not None and self._index.get((ALIAS_ATTRIBUTE, alias)):
            raise ValueError("alias already exists")
        self._by_id[identity.id] = identity
        self._order.append(identity.id)
        self._index_attributes(identity.id, identity.attributes)

    async def authenticate(self, alias: str, secret: str) -> Identity | None:
        ids = self._index.get((ALIAS_ATTRIBUTE, alias), [])
        if not ids:
            return None
        identity = self._by_id[ids[0]]
        if not verify_secret(secret, identity.secret_hash):
            return None
        try:
            if _ph.check_needs_rehash(identity.secret_hash):
                identity = replace(identity, secret_hash=_ph.hash(secret))
                self._by_id[identity.id] = identity
                logger.info("Rehashed secret for identity=%s", identity.id)
        except InvalidHash:
            return None
        return identity

    async def set_attributes(self, identity_id: UUID, attributes: dict[str, str]) -> Identity:
        current = self._by_id.get(identity_id)
        if current is None:
            raise IdentityNotFound(f"identity {identity_id} not found")
        self._unindex_attributes(identity_id, current.attributes)
        updated = replace(current, attributes={**current.attributes, **attributes})
        self._by_id[identity_id] = updated
        self._index_attributes(identity_id, updated.attributes)
        return updated

    async def get(self, identity_id: UUID) -> Identity | None:
        return self._by_id.get(identity_id)

    async def list_identities(
        self, *, page_size: int = 50, cursor: str | None = None
    ) -> Page[Identity]:
        chunk, next_cursor = _paginate(self._order, page_size, cursor)
        return Page(items=tuple(self._by_id[i] for i in chunk), next_cursor=next_cursor)

    async def find_by_attribute(
        self, name: str, value: str, *, page_size: int = 50, cursor: str | None = None
    ) -> Page[Identity]:
        ids = self._index.get((name, value), [])
        chunk, next_cursor = _paginate(ids, page_size, cursor)
        return Page(items=tuple(self._by_id[i] for i in chunk), next_cursor=next_cursor)

    def _index_attributes(self, identity_id: UUID, attributes: dict[str, str]) -> None:
        for key, value in attributes.items():
            self._index.setdefault((key, value), []).append(identity_id)

    def _unindex_attributes(self, identity_id: UUID, attributes: dict[str, str]) -> None:
        for key, value in attributes.items():
            bucket = self._index.get((key, value))
            if bucket and identity_id in bucket:
                bucket.remove(identity_id)
                if not bucket:
                    del self._index[(key, value)]
