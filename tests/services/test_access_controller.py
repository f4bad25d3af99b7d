from __future__ import annotations

import asyncio

import pytest

from studyflow.api.dependencies import DEFAULT_CONSENT_VERSION, build_memory_services
from studyflow.core.errors import AccessDenied, AlreadyCompleted, ModuleNotFound
from studyflow.models.audit import AuditEventType
from studyflow.models.progress import ProgressStatus
from studyflow.services.access_controller import (
    CONSENT_REQUIRED,
    PRIOR_MODULES_INCOMPLETE,
)

USER = "user-1"
MODULES = ["consent", "module1", "module2", "module3", "module4"]


@pytest.fixture
def svc():
    return build_memory_services()


async def _consented(svc, user_id: str = USER) -> None:
    await svc.consent.record_consent(user_id, DEFAULT_CONSENT_VERSION)
    await svc.access.complete_module(user_id, "consent", {"agreed": True})


async def _events_for(svc, module_name: str, user_id: str = USER):
    events = await svc.audit.history(user_id, limit=200)
    return [e for e in events if e.payload.get("module") == module_name]


def test_access_is_sequence_gated(svc) -> None:
    async def scenario():
        await svc.consent.record_consent(USER, DEFAULT_CONSENT_VERSION)
        for done in range(len(MODULES) + 1):
            for index, name in enumerate(MODULES):
                decision = await svc.access.check_access(USER, name)
                expected = index <= done
                assert decision.accessible is expected, (done, name)
                if not expected:
                    assert decision.reason == PRIOR_MODULES_INCOMPLETE
                    assert decision.next_module == MODULES[done]
            if done < len(MODULES):
                await svc.access.complete_module(USER, MODULES[done], {})

    asyncio.run(scenario())


def test_first_module_always_accessible(svc) -> None:
    decision = asyncio.run(svc.access.check_access(USER, "consent"))
    assert decision.accessible


def test_consent_required_before_sequence(svc) -> None:
    async def scenario():
        # Consent module completed without a ConsentRecord for the active version
        await svc.access.complete_module(USER, "consent", {})
        return await svc.access.check_access(USER, "module1")

    decision = asyncio.run(scenario())
    assert not decision.accessible
    assert decision.reason == CONSENT_REQUIRED
    assert decision.next_module == "consent"


def test_unknown_module_raises_not_found(svc) -> None:
    with pytest.raises(ModuleNotFound):
        asyncio.run(svc.access.check_access(USER, "module99"))


def test_denied_start_raises_and_audits_once(svc) -> None:
    async def scenario():
        with pytest.raises(AccessDenied) as exc_info:
            await svc.access.start_module(USER, "module2")
        return exc_info.value, await _events_for(svc, "module2")

    error, events = asyncio.run(scenario())
    assert error.reason == CONSENT_REQUIRED
    assert [e.event_type for e in events] == [AuditEventType.MODULE_ACCESS_DENIED]
    assert events[0].payload["reason"] == CONSENT_REQUIRED


def test_current_module_walks_the_sequence(svc) -> None:
    async def scenario():
        seen = [(await svc.access.get_current_module(USER)).name]
        await svc.consent.record_consent(USER, DEFAULT_CONSENT_VERSION)
        for name in MODULES:
            await svc.access.complete_module(USER, name, {})
            current = await svc.access.get_current_module(USER)
            seen.append(current.name if current else None)
        return seen

    assert asyncio.run(scenario()) == MODULES + [None]


def test_current_module_prefers_in_progress_over_first_open(svc) -> None:
    async def scenario():
        await _consented(svc)
        await svc.access.start_module(USER, "module1")
        return await svc.access.get_current_module(USER)

    assert asyncio.run(scenario()).name == "module1"


def test_round_trip_produces_three_audit_events(svc) -> None:
    async def scenario():
        await _consented(svc)
        await svc.access.start_module(USER, "module1")
        await svc.access.save_module(USER, "module1", {"a": 1})
        await svc.access.save_module(USER, "module1", {"a": 1, "b": 2})
        result = await svc.access.complete_module(
            USER, "module1", {"a": 1, "b": 2, "c": 3}
        )
        return result, await _events_for(svc, "module1")

    result, events = asyncio.run(scenario())
    assert result.record.status is ProgressStatus.COMPLETED
    assert result.record.responses == {"a": 1, "b": 2, "c": 3}
    assert result.next_module == "module2"
    # history is newest first
    assert [e.event_type for e in reversed(events)] == [
        AuditEventType.MODULE_START,
        AuditEventType.PROGRESS_SAVED,
        AuditEventType.MODULE_COMPLETION,
    ]


def test_completion_records_consent_version(svc) -> None:
    async def scenario():
        await _consented(svc)
        return await svc.access.complete_module(USER, "module1", {})

    result = asyncio.run(scenario())
    assert result.record.metadata["consent_version"] == DEFAULT_CONSENT_VERSION



def test_caller_cannot_override_consent_version(svc) -> None:
    async def scenario():
        await _consented(svc)
        await svc.access.complete_module(
            USER, "module1", {}, {"consent_version": "forged-0.1", "device": "tablet"}
        )
        return await svc.machine.get_progress(USER, "module1")

    stored = asyncio.run(scenario())
    assert stored.metadata["consent_version"] == DEFAULT_CONSENT_VERSION
    assert stored.metadata["device"] == "tablet"

def test_concurrent_completions_audit_once(svc) -> None:
    async def scenario():
        await _consented(svc)
        await svc.access.start_module(USER, "module1")
        results = await asyncio.gather(
            *(svc.access.complete_module(USER, "module1", {"n": i}) for i in range(4)),
            return_exceptions=True,
        )
        return results, await _events_for(svc, "module1")

    results, events = asyncio.run(scenario())
    assert sum(1 for r in results if not isinstance(r, BaseException)) == 1
    assert all(
        isinstance(r, AlreadyCompleted) for r in results if isinstance(r, BaseException)
    )
    kinds = [e.event_type for e in events]
    assert kinds.count(AuditEventType.MODULE_COMPLETION) == 1
    assert kinds.count(AuditEventType.TRANSITION_REJECTED) == 3


def test_rejected_write_after_completion_is_audited(svc) -> None:
    async def scenario():
        await _consented(svc)
        await svc.access.complete_module(USER, "module1", {"a": 1})
        with pytest.raises(AlreadyCompleted):
            await svc.access.start_module(USER, "module1")
        return await _events_for(svc, "module1")

    events = asyncio.run(scenario())
    assert events[0].event_type is AuditEventType.TRANSITION_REJECTED
    assert events[0].payload["code"] == "already_completed"


def test_version_rollover_locks_consent_gated_modules(svc) -> None:
    async def scenario():
        await _consented(svc)
        assert (await svc.access.check_access(USER, "module1")).accessible

        await svc.consent.create_version("2.0", "Amended agreement")
        await svc.consent.activate_version("2.0")
        locked = await svc.access.check_access(USER, "module1")

        await svc.consent.record_consent(USER, "2.0")
        unlocked = await svc.access.check_access(USER, "module1")
        return locked, unlocked

    locked, unlocked = asyncio.run(scenario())
    assert not locked.accessible
    assert locked.reason == CONSENT_REQUIRED
    assert unlocked.accessible


def test_completed_module_stays_reviewable_after_rollover(svc) -> None:
    async def scenario():
        await _consented(svc)
        await svc.access.complete_module(USER, "module1", {"a": 1})
        await svc.consent.create_version("2.0", "Amended agreement")
        await svc.consent.activate_version("2.0")
        view = await svc.access.get_module_for_user(USER, "module1")
        with pytest.raises(AccessDenied):
            await svc.access.get_module_for_user(USER, "module2")
        return view

    view = asyncio.run(scenario())
    assert view.can_review
    assert view.is_completed
    assert view.progress.responses == {"a": 1}


def test_navigation_state_after_consent(svc) -> None:
    async def scenario():
        await _consented(svc)
        return await svc.access.navigation_state(USER)

    state = asyncio.run(scenario())
    assert state.current_module == "module1"
    assert state.active_module == "module1"
    assert state.next_module == "module2"
    assert state.completed == ["consent"]
    assert state.available == ["consent", "module1"]
    assert state.total_modules == 5
    assert state.percentage == 20
    assert not state.study_complete
    assert state.blocked_reason is None


def test_navigation_reports_blocked_reason(svc) -> None:
    async def scenario():
        await svc.access.complete_module(USER, "consent", {})
        return await svc.access.navigation_state(USER)

    state = asyncio.run(scenario())
    assert state.current_module is None
    assert state.blocked_reason == CONSENT_REQUIRED
    assert not state.study_complete


def test_completion_stats_counts_statuses(svc) -> None:
    async def scenario():
        await _consented(svc)
        await svc.access.start_module(USER, "module1")
        return await svc.access.completion_stats(USER)

    stats = asyncio.run(scenario())
    assert stats.total_modules == 5
    assert stats.completed_modules == 1
    assert stats.in_progress_modules == 1
    assert stats.percentage == 20
    assert [row["status"] for row in stats.modules] == [
        "COMPLETED",
        "IN_PROGRESS",
        "NOT_STARTED",
        "NOT_STARTED",
        "NOT_STARTED",
    ]


def test_initialize_participant_starts_first_module(svc) -> None:
    async def scenario():
        transition = await svc.access.initialize_participant(USER)
        return transition, await svc.access.navigation_state(USER)

    transition, state = asyncio.run(scenario())
    assert transition.record.module_name == "consent"
    assert transition.record.status is ProgressStatus.IN_PROGRESS
    assert state.active_module == "consent"
    assert state.current_module == "consent"


def test_users_are_isolated(svc) -> None:
    async def scenario():
        await _consented(svc, "alice")
        return await svc.access.check_access("bob", "module1")

    decision = asyncio.run(scenario())
    assert not decision.accessible
    assert decision.reason == CONSENT_REQUIRED
