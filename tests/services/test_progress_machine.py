from __future__ import annotations

import asyncio

import pytest

from studyflow.core.errors import (
    AlreadyCompleted,
    CompletionConflict,
    InvalidPayload,
    PayloadTooLarge,
    ProgressNotFound,
    ReadOnly,
)
from studyflow.models.progress import ProgressStatus
from studyflow.repos.progress_repo import InMemoryProgressRepo
from studyflow.services.progress_machine import ProgressStateMachine

USER = "user-1"
MODULE = "module1"


def _machine(**kwargs) -> ProgressStateMachine:
    return ProgressStateMachine(InMemoryProgressRepo(), **kwargs)


def test_start_creates_in_progress_record() -> None:
    machine = _machine()
    transition = asyncio.run(machine.start(USER, MODULE))
    assert transition.record.status is ProgressStatus.IN_PROGRESS
    assert transition.record.started_at is not None
    assert transition.previous is None
    assert transition.changed


def test_start_is_idempotent_while_in_progress() -> None:
    machine = _machine()

    async def scenario():
        first = await machine.start(USER, MODULE)
        second = await machine.start(USER, MODULE)
        return first, second

    first, second = asyncio.run(scenario())
    assert second.record == first.record
    assert not second.changed


def test_save_implicitly_starts_and_merges() -> None:
    machine = _machine()

    async def scenario():
        first = await machine.save_progress(USER, MODULE, {"a": 1})
        second = await machine.save_progress(USER, MODULE, {"b": 2})
        return first, second

    first, second = asyncio.run(scenario())
    assert first.implicit_start
    assert first.first_save
    assert not second.implicit_start
    assert not second.first_save
    assert second.record.responses == {"a": 1, "b": 2}
    assert second.record.status is ProgressStatus.IN_PROGRESS
    assert second.record.last_saved_at is not None


def test_complete_replaces_responses_and_stamps_completion() -> None:
    machine = _machine()

    async def scenario():
        await machine.save_progress(USER, MODULE, {"draft": True})
        return await machine.complete(USER, MODULE, {"final": 1}, {"source": "web"})

    transition = asyncio.run(scenario())
    record = transition.record
    assert record.status is ProgressStatus.COMPLETED
    assert record.responses == {"final": 1}
    assert record.metadata == {"source": "web"}
    assert record.completed_at is not None
    assert transition.previous is ProgressStatus.IN_PROGRESS


def test_complete_without_start_auto_starts() -> None:
    transition = asyncio.run(_machine().complete(USER, MODULE, {"x": 1}))
    assert transition.implicit_start
    assert transition.record.started_at == transition.record.completed_at


def test_completed_record_is_read_only() -> None:
    machine = _machine()

    async def scenario():
        await machine.complete(USER, MODULE, {"a": 1})
        with pytest.raises(ReadOnly):
            await machine.save_progress(USER, MODULE, {"a": 2})
        with pytest.raises(AlreadyCompleted):
            await machine.start(USER, MODULE)
        with pytest.raises(AlreadyCompleted):
            await machine.complete(USER, MODULE, {"a": 3})
        return await machine.get_progress(USER, MODULE)

    frozen = asyncio.run(scenario())
    assert frozen.status is ProgressStatus.COMPLETED
    assert frozen.responses == {"a": 1}


def test_get_progress_missing_raises_not_found() -> None:
    with pytest.raises(ProgressNotFound):
        asyncio.run(_machine().get_progress(USER, MODULE))


def test_find_progress_missing_returns_none() -> None:
    assert asyncio.run(_machine().find_progress(USER, MODULE)) is None


def test_concurrent_completes_yield_exactly_one_success() -> None:
    machine = _machine()

    async def scenario():
        return await asyncio.gather(
            *(machine.complete(USER, MODULE, {"attempt": i}) for i in range(5)),
            return_exceptions=True,
        )

    results = asyncio.run(scenario())
    successes = [r for r in results if not isinstance(r, BaseException)]
    failures = [r for r in results if isinstance(r, BaseException)]
    assert len(successes) == 1
    assert len(failures) == 4
    assert all(isinstance(f, AlreadyCompleted) for f in failures)

    stored = asyncio.run(machine.list_progress(USER))
    assert len(stored) == 1
    assert stored[0].responses == successes[0].record.responses


class _StaleReadRepo(InMemoryProgressRepo):
    """Pre-reads never see the other writer, as when two requests interleave."""

    async def get(self, user_id, module_name):
        return None


def test_lost_compare_and_set_surfaces_as_conflict() -> None:
    machine = ProgressStateMachine(_StaleReadRepo())

    async def scenario():
        await machine.complete(USER, MODULE, {"first": True})
        await machine.complete(USER, MODULE, {"second": True})

    with pytest.raises(CompletionConflict) as exc_info:
        asyncio.run(scenario())
    # A conflict is still an AlreadyCompleted to callers
    assert isinstance(exc_info.value, AlreadyCompleted)


def test_oversized_payload_rejected() -> None:
    machine = _machine(max_payload_bytes=32)
    with pytest.raises(PayloadTooLarge) as exc_info:
        asyncio.run(machine.save_progress(USER, MODULE, {"text": "x" * 100}))
    assert exc_info.value.limit == 32
    # Nothing was written
    assert asyncio.run(machine.find_progress(USER, MODULE)) is None


def test_non_object_payload_rejected() -> None:
    with pytest.raises(InvalidPayload):
        asyncio.run(_machine().save_progress(USER, MODULE, ["not", "a", "dict"]))  # type: ignore[arg-type]


def test_completed_modules_lists_only_completed() -> None:
    machine = _machine()

    async def scenario():
        await machine.complete(USER, "consent", {})
        await machine.start(USER, MODULE)
        return await machine.completed_modules(USER)

    assert asyncio.run(scenario()) == frozenset({"consent"})
