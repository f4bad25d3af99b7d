from __future__ import annotations

import asyncio
from uuid import uuid4

import pytest
from argon2 import PasswordHasher

from studyflow.core.errors import IdentityNotFound
from studyflow.models.identity import Identity
from studyflow.repos.identity_repo import InMemoryIdentityProvider


def _provider_with(count: int, **attrs: str) -> InMemoryIdentityProvider:
    provider = InMemoryIdentityProvider()

    async def seed():
        for i in range(count):
            await provider.create_identity({"alias": f"p-{i:03d}", **attrs})

    asyncio.run(seed())
    return provider


def test_authenticate_with_alias_and_secret() -> None:
    provider = InMemoryIdentityProvider()

    async def scenario():
        created = await provider.create_identity({"alias": "p-001"}, secret="correct horse")
        good = await provider.authenticate("p-001", "correct horse")
        bad = await provider.authenticate("p-001", "wrong")
        unknown = await provider.authenticate("p-404", "correct horse")
        return created, good, bad, unknown

    created, good, bad, unknown = asyncio.run(scenario())
    assert good is not None and good.id == created.id
    assert bad is None
    assert unknown is None
    assert created.secret_hash is not None
    assert "correct horse" not in created.secret_hash


def test_identity_without_secret_cannot_authenticate() -> None:
    provider = InMemoryIdentityProvider()

    async def scenario():
        await provider.create_identity({"alias": "p-001"})
        return await provider.authenticate("p-001", "anything")

    assert asyncio.run(scenario()) is None


def test_duplicate_alias_rejected() -> None:
    provider = _provider_with(1)
    with pytest.raises(ValueError, match="alias already exists"):
        asyncio.run(provider.create_identity({"alias": "p-000"}))


def test_authenticate_rehashes_when_needed() -> None:
    old_ph = PasswordHasher(time_cost=1, memory_cost=8 * 1024, parallelism=1)
    old_hash = old_ph.hash("pw123")
    provider = InMemoryIdentityProvider()
    identity = Identity(
        id=uuid4(), created_at=0, attributes={"alias": "p-old"}, secret_hash=old_hash
    )
    provider.seed(identity)

    authed = asyncio.run(provider.authenticate("p-old", "pw123"))
    assert authed is not None

    stored = asyncio.run(provider.get(identity.id))
    assert stored.secret_hash != old_hash


def test_list_identities_paginates_with_cursor() -> None:
    provider = _provider_with(5)

    async def scenario():
        pages = []
        cursor = None
        while True:
            page = await provider.list_identities(page_size=2, cursor=cursor)
            pages.append([i.attributes["alias"] for i in page.items])
            cursor = page.next_cursor
            if cursor is None:
                return pages

    assert asyncio.run(scenario()) == [
        ["p-000", "p-001"],
        ["p-002", "p-003"],
        ["p-004"],
    ]


def test_exact_page_has_no_next_cursor() -> None:
    provider = _provider_with(2)
    page = asyncio.run(provider.list_identities(page_size=2))
    assert len(page.items) == 2
    assert page.next_cursor is None


def test_find_by_attribute_uses_the_index() -> None:
    provider = _provider_with(3, cohort="spring")

    async def scenario():
        await provider.create_identity({"alias": "p-autumn", "cohort": "autumn"})
        spring = await provider.find_by_attribute("cohort", "spring", page_size=2)
        rest = await provider.find_by_attribute(
            "cohort", "spring", page_size=2, cursor=spring.next_cursor
        )
        autumn = await provider.find_by_attribute("cohort", "autumn")
        missing = await provider.find_by_attribute("cohort", "winter")
        return spring, rest, autumn, missing

    spring, rest, autumn, missing = asyncio.run(scenario())
    assert len(spring.items) == 2
    assert len(rest.items) == 1 and rest.next_cursor is None
    assert [i.attributes["alias"] for i in autumn.items] == ["p-autumn"]
    assert missing.items == ()


def test_invalid_cursor_rejected() -> None:
    provider = _provider_with(2)
    with pytest.raises(ValueError, match="invalid cursor"):
        asyncio.run(provider.list_identities(cursor="not-a-uuid"))
    with pytest.raises(ValueError, match="invalid cursor"):
        asyncio.run(provider.list_identities(cursor=str(uuid4())))


def test_set_attributes_reindexes() -> None:
    provider = InMemoryIdentityProvider()

    async def scenario():
        identity = await provider.create_identity({"alias": "p-001", "cohort": "spring"})
        await provider.set_attributes(identity.id, {"cohort": "autumn"})
        old = await provider.find_by_attribute("cohort", "spring")
        new = await provider.find_by_attribute("cohort", "autumn")
        return identity, old, new

    identity, old, new = asyncio.run(scenario())
    assert old.items == ()
    assert [i.id for i in new.items] == [identity.id]
    assert new.items[0].attributes == {"alias": "p-001", "cohort": "autumn"}


def test_set_attributes_unknown_identity() -> None:
    with pytest.raises(IdentityNotFound):
        asyncio.run(InMemoryIdentityProvider().set_attributes(uuid4(), {"x": "y"}))
