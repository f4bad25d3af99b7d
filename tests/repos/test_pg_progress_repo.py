"""The Postgres progress writes must carry the COMPLETED guard in SQL.

A capturing session records each statement instead of executing it, and
the statement is compiled with the PostgreSQL dialect so the conditional
upsert can be checked without a database.
"""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError

from studyflow.core.errors import StoreUnavailable
from studyflow.repos.pg_progress_repo import PgProgressRepo


class _NoRows:
    def one_or_none(self):
        return None


class _CapturingSession:
    def __init__(self) -> None:
        self.statements: list = []

    async def scalars(self, stmt, execution_options=None):
        self.statements.append(stmt)
        return _NoRows()

    async def flush(self) -> None:
        return None


class _UnreachableSession(_CapturingSession):
    async def scalars(self, stmt, execution_options=None):
        raise OperationalError("INSERT", {}, ConnectionRefusedError("db down"))


def _sql(stmt) -> str:
    return str(stmt.compile(dialect=postgresql.dialect()))


def test_complete_is_conditional_upsert() -> None:
    session = _CapturingSession()
    result = asyncio.run(
        PgProgressRepo(session).complete("u1", "module1", {"a": 1}, {}, at=100)
    )
    # No RETURNING row means the guard failed: someone else completed it
    assert result is None
    sql = _sql(session.statements[0])
    assert "ON CONFLICT (user_id, module_name) DO UPDATE" in sql
    assert "WHERE progress_records.status != " in sql
    assert "RETURNING" in sql


def test_start_never_reopens_completed_record() -> None:
    session = _CapturingSession()
    asyncio.run(PgProgressRepo(session).start("u1", "module1", at=100))
    sql = _sql(session.statements[0])
    assert "ON CONFLICT (user_id, module_name) DO UPDATE" in sql
    assert "WHERE progress_records.status != " in sql


def test_save_only_updates_unfinished_rows() -> None:
    session = _CapturingSession()
    asyncio.run(PgProgressRepo(session).save_responses("u1", "module1", {"b": 2}, at=100))
    sql = _sql(session.statements[0])
    assert sql.startswith("UPDATE progress_records SET")
    assert "progress_records.status != " in sql
    assert "||" in sql


def test_connection_failure_becomes_store_unavailable() -> None:
    repo = PgProgressRepo(_UnreachableSession())
    with pytest.raises(StoreUnavailable):
        asyncio.run(repo.complete("u1", "module1", {}, {}, at=100))
