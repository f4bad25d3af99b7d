from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient

from studyflow.api import dependencies
from studyflow.main import app
from studyflow.services import token_service
from studyflow.services.cache import cache_service


@pytest.fixture(autouse=True)
def reset_memory_state() -> None:
    """Fresh in-memory stores and identity provider for every test."""
    dependencies.reset_memory_state()


@pytest.fixture(autouse=True)
def reset_cache() -> None:
    if hasattr(cache_service, "clear"):
        cache_service.clear()  # type: ignore[union-attr]


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


@pytest.fixture
def services() -> dependencies.Services:
    """The bundle the API is serving from, for arranging state directly."""
    return dependencies.memory_services


def mint_token(sub: str, roles: list[str] | None = None) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(sub=sub, roles=roles)


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def create_participant(alias: str = "p-001", secret: str | None = None) -> tuple[str, str]:
    """Register an identity with the active provider; returns (user_id, token)."""
    identity = asyncio.run(
        dependencies.identity_provider.create_identity(
            {"alias": alias, "role": "participant"}, secret=secret
        )
    )
    user_id = str(identity.id)
    return user_id, mint_token(user_id)


@pytest.fixture
def participant() -> tuple[str, str]:
    return create_participant()


@pytest.fixture
def admin_token() -> str:
    return mint_token("test-admin", roles=["admin"])
