from __future__ import annotations

import logging

import pytest
from fastapi.testclient import TestClient

from tests.conftest import auth, create_participant, mint_token

SECRET = "correct-horse-battery"


def test_login_returns_usable_token(client: TestClient) -> None:
    user_id, _ = create_participant("p-login", secret=SECRET)
    resp = client.post("/v1/auth/login", json={"alias": "p-login", "secret": SECRET})
    assert resp.status_code == 200
    body = resp.json()
    assert body["token_type"] == "bearer"
    assert body["user_id"] == user_id
    assert body["expires_in"] == 120 * 60

    nav = client.get("/v1/modules", headers=auth(body["access_token"]))
    assert nav.status_code == 200


def test_login_rejects_wrong_secret(client: TestClient) -> None:
    create_participant("p-login", secret=SECRET)
    resp = client.post("/v1/auth/login", json={"alias": "p-login", "secret": "nope"})
    assert resp.status_code == 401


def test_login_rejects_unknown_alias(client: TestClient) -> None:
    resp = client.post("/v1/auth/login", json={"alias": "ghost", "secret": SECRET})
    assert resp.status_code == 401


def test_failed_login_does_not_log_secret(
    client: TestClient, caplog: pytest.LogCaptureFixture
) -> None:
    create_participant("p-login", secret=SECRET)
    with caplog.at_level(logging.DEBUG):
        client.post("/v1/auth/login", json={"alias": "p-login", "secret": "leaky-secret-123"})
    assert "leaky-secret-123" not in " ".join(caplog.messages)


def test_missing_token_rejected(client: TestClient) -> None:
    assert client.get("/v1/modules").status_code == 401


def test_garbage_token_rejected(client: TestClient) -> None:
    resp = client.get("/v1/modules", headers=auth("not.a.jwt"))
    assert resp.status_code == 401
    assert resp.headers["www-authenticate"] == "Bearer"


def test_token_for_non_identity_subject_rejected(client: TestClient) -> None:
    resp = client.get("/v1/modules", headers=auth(mint_token("someone")))
    assert resp.status_code == 401


def test_token_for_unknown_identity_is_not_found(client: TestClient) -> None:
    token = mint_token("6f1c1f4e-2c4b-4d53-9a43-3c9f7d0e8a11")
    resp = client.get("/v1/modules", headers=auth(token))
    assert resp.status_code == 404
