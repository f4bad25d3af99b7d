from __future__ import annotations

from typing import Protocol


class ParticipantStateRepo(Protocol):
    async def get_active_module(self, user_id: str) -> str | None: ...
    async def set_active_module(
        self, user_id: str, module_name: str | None, *, at: int
    ) -> None: ...


class InMemoryParticipantStateRepo:
    def __init__(self) -> None:
        self._active: dict[str, str | None] = {}

    async def get_active_module(self, user_id: str) -> str | None:
        return self._active.get(user_id)

    async def set_active_module(
        self, user_id: str, module_name: str | None, *, at: int
    ) -> None:
        self._active[user_id] = module_name
