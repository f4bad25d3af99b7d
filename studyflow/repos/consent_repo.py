from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace
from typing import Protocol

from studyflow.core.errors import (
    AlreadyConsented,
    ConsentVersionExists,
    ConsentVersionNotFound,
)
from studyflow.models.consent import (
    ConsentRecord,
    ConsentVersion,
    ConsentVersionStatus,
)


class ConsentRepo(Protocol):
    async def add(self, record: ConsentRecord) -> None: ...
    async def find(self, user_id: str, version: str) -> ConsentRecord | None: ...
    async def list_for_user(self, user_id: str) -> list[ConsentRecord]: ...


class ConsentVersionRepo(Protocol):
    async def get(self, version: str) -> ConsentVersion | None: ...
    async def get_active(self) -> ConsentVersion | None: ...
    async def list_all(self) -> list[ConsentVersion]: ...
    async def add(self, version: ConsentVersion) -> None: ...
    async def activate(self, version: str, *, at: int) -> ConsentVersion: ...
    async def retire(self, version: str, *, at: int) -> ConsentVersion: ...


class InMemoryConsentRepo:
    def __init__(self) -> None:
        self._store: dict[tuple[str, str], ConsentRecord] = {}

    async def add(self, record: ConsentRecord) -> None:
        key = (record.user_id, record.version)
        if key in self._store:
            raise AlreadyConsented(record.user_id, record.version)
        self._store[key] = record

    async def find(self, user_id: str, version: str) -> ConsentRecord | None:
        return self._store.get((user_id, version))

    async def list_for_user(self, user_id: str) -> list[ConsentRecord]:
        records = [r for (uid, _), r in self._store.items() if uid == user_id]
        # Newest first; insertion order breaks ties within the same second
        return list(reversed(sorted(records, key=lambda r: r.consented_at)))


class InMemoryConsentVersionRepo:
    def __init__(self, versions: Iterable[ConsentVersion] = ()) -> None:
        self._by_version: dict[str, ConsentVersion] = {v.version: v for v in versions}

    async def get(self, version: str) -> ConsentVersion | None:
        return self._by_version.get(version)

    async def get_active(self) -> ConsentVersion | None:
        for v in self._by_version.values():
            if v.status is ConsentVersionStatus.ACTIVE:
                return v
        return None

    async def list_all(self) -> list[ConsentVersion]:
        return list(self._by_version.values())

    async def add(self, version: ConsentVersion) -> None:
        if version.version in self._by_version:
            raise ConsentVersionExists(version.version)
        self._by_version[version.version] = version

    async def activate(self, version: str, *, at: int) -> ConsentVersion:
        target = self._by_version.get(version)
        if target is None:
            raise ConsentVersionNotFound(version)
        for name, v in list(self._by_version.items()):
            if v.status is ConsentVersionStatus.ACTIVE and name != version:
                self._by_version[name] = replace(
                    v, status=ConsentVersionStatus.RETIRED, retired_at=at
                )
        activated = replace(
            target, status=ConsentVersionStatus.ACTIVE, effective_at=at, retired_at=None
        )
        self._by_version[version] = activated
        return activated

    async def retire(self, version: str, *, at: int) -> ConsentVersion:
        target = self._by_version.get(version)
        if target is None:
            raise ConsentVersionNotFound(version)
        retired = replace(target, status=ConsentVersionStatus.RETIRED, retired_at=at)
        self._by_version[version] = retired
        return retired
