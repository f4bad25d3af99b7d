"""Who may touch which module, and what happens when they do.

Eligibility for a module is decided in a fixed order:

  1. the module must exist                       -> ModuleNotFound
  2. consent-gated modules need valid consent    -> consent_required
  3. every module ordered before it is COMPLETED -> prior_modules_incomplete

The orchestrated operations (start/save/complete) run that check, hand the
write to the ProgressStateMachine and record exactly one audit event for
the outcome: the transition, the denial, or the rejected write.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from studyflow.core.errors import AccessDenied, TerminalStateError
from studyflow.core.metrics import ACCESS_DENIALS
from studyflow.models.audit import AuditEventType
from studyflow.models.module import Module
from studyflow.models.progress import ProgressRecord, ProgressStatus, now_ts
from studyflow.repos.participant_repo import ParticipantStateRepo
from studyflow.services.audit_trail import AuditTrail
from studyflow.services.consent_gate import ConsentGate
from studyflow.services.module_graph import CONSENT_MODULE, ModuleGraph
from studyflow.services.progress_machine import ProgressStateMachine, Transition

logger = logging.getLogger(__name__)

CONSENT_REQUIRED = "consent_required"
PRIOR_MODULES_INCOMPLETE = "prior_modules_incomplete"
BRANCHING_RULE_NOT_SATISFIED = "branching_rule_not_satisfied"

DENIAL_MESSAGES = {
    CONSENT_REQUIRED: "You must accept the current consent agreement first",
    PRIOR_MODULES_INCOMPLETE: "Complete the previous modules first",
    BRANCHING_RULE_NOT_SATISFIED: "This path is not unlocked for you yet",
}


@dataclass(frozen=True, slots=True)
class AccessDecision:
    accessible: bool
    reason: str | None = None
    next_module: str | None = None


@dataclass(frozen=True, slots=True)
class CompletionResult:
    record: ProgressRecord
    next_module: str | None
    unlocked_paths: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ModuleView:
    """A module as one participant sees it."""

    module: Module
    progress: ProgressRecord | None
    accessible: bool
    is_completed: bool
    can_review: bool


@dataclass(frozen=True, slots=True)
class NavigationState:
    current_module: str | None
    active_module: str | None
    next_module: str | None
    completed: list[str] = field(default_factory=list)
    available: list[str] = field(default_factory=list)
    total_modules: int = 0
    percentage: int = 0
    study_complete: bool = False
    blocked_reason: str | None = None


@dataclass(frozen=True, slots=True)
class CompletionStats:
    total_modules: int
    completed_modules: int
    in_progress_modules: int
    percentage: int
    modules: list[dict[str, Any]] = field(default_factory=list)


class _ConsentCheck:
    """Resolves has_valid_consent at most once per decision batch."""

    def __init__(self, gate: ConsentGate, user_id: str) -> None:
        self._gate = gate
        self._user_id = user_id
        self._value: bool | None = None

    async def valid(self) -> bool:
        if self._value is None:
            self._value = await self._gate.has_valid_consent(self._user_id)
        return self._value


class AccessController:
    def __init__(
        self,
        graph: ModuleGraph,
        consent: ConsentGate,
        machine: ProgressStateMachine,
        participants: ParticipantStateRepo,
        audit: AuditTrail,
    ) -> None:
        self.graph = graph
        self.consent = consent
        self.machine = machine
        self._participants = participants
        self._audit = audit

    # --- Decisions (read-only) ---

    async def check_access(self, user_id: str, module_name: str) -> AccessDecision:
        module = self.graph.module_by_name(module_name)
        completed = await self.machine.completed_modules(user_id)
        return await self._decide(module, completed, _ConsentCheck(self.consent, user_id))

    async def _decide(
        self, module: Module, completed: frozenset[str], consent: _ConsentCheck
    ) -> AccessDecision:
        if module.requires_consent and not await consent.valid():
            next_module = CONSENT_MODULE if self.graph.has_module(CONSENT_MODULE) else None
            return AccessDecision(False, CONSENT_REQUIRED, next_module)
        for prior in self.graph.prerequisites(module.name):
            if prior.name not in completed:
                return AccessDecision(False, PRIOR_MODULES_INCOMPLETE, prior.name)
        return AccessDecision(True)

    async def get_current_module(self, user_id: str) -> Module | None:
        module, _ = await self._current(user_id)
        return module

    async def _current(self, user_id: str) -> tuple[Module | None, str | None]:
        """Current module plus the reason nothing is current (if any)."""
        records = await self.machine.list_progress(user_id)
        completed = frozenset(r.module_name for r in records if r.is_completed)
        in_progress = {
            r.module_name for r in records if r.status is ProgressStatus.IN_PROGRESS
        }
        consent = _ConsentCheck(self.consent, user_id)

        remaining = [m for m in self.graph.all_modules() if m.name not in completed]
        if not remaining:
            return None, None

        first_open: Module | None = None
        blocked_reason: str | None = None
        for module in remaining:
            # Past the first open module only an IN_PROGRESS one can win
            if first_open is not None and module.name not in in_progress:
                continue
            decision = await self._decide(module, completed, consent)
            if not decision.accessible:
                if blocked_reason is None:
                    blocked_reason = decision.reason
                continue
            if module.name in in_progress:
                return module, None
            if first_open is None:
                first_open = module
        if first_open is not None:
            return first_open, None
        return None, blocked_reason

    async def get_next_accessible_module(self, user_id: str) -> Module | None:
        """Recompute the current module and move the active-module pointer to it."""
        module = await self.get_current_module(user_id)
        await self._participants.set_active_module(
            user_id, module.name if module else None, at=now_ts()
        )
        return module

    # --- Orchestrated operations ---

    async def start_module(self, user_id: str, module_name: str) -> Transition:
        await self._require_access(user_id, module_name)
        try:
            transition = await self.machine.start(user_id, module_name)
        except TerminalStateError as e:
            await self._record_rejection(user_id, module_name, "start", e)
            raise
        await self._audit.record(
            user_id,
            AuditEventType.MODULE_START,
            {"module": module_name, "resumed": not transition.changed},
        )
        await self._participants.set_active_module(user_id, module_name, at=now_ts())
        return transition

    async def save_module(
        self, user_id: str, module_name: str, responses: dict[str, Any] | None
    ) -> Transition:
        await self._require_access(user_id, module_name)
        try:
            transition = await self.machine.save_progress(user_id, module_name, responses)
        except TerminalStateError as e:
            await self._record_rejection(user_id, module_name, "save", e)
            raise
        # Drafts are saved often; only the first save of a record is audited
        if transition.first_save:
            await self._audit.record(
                user_id,
                AuditEventType.PROGRESS_SAVED,
                {
                    "module": module_name,
                    "keys": sorted(transition.record.responses),
                    "implicit_start": transition.implicit_start,
                },
            )
        if transition.implicit_start:
            await self._participants.set_active_module(user_id, module_name, at=now_ts())
        return transition

    async def complete_module(
        self,
        user_id: str,
        module_name: str,
        responses: dict[str, Any] | None,
        metadata: dict[str, Any] | None = None,
    ) -> CompletionResult:
        module = await self._require_access(user_id, module_name)
        system_metadata = await self.completion_metadata(module, metadata)
        try:
            transition = await self.machine.complete(
                user_id, module_name, responses, system_metadata
            )
        except TerminalStateError as e:
            await self._record_rejection(user_id, module_name, "complete", e)
            raise

        next_module = await self.get_next_accessible_module(user_id)
        next_name = next_module.name if next_module else None
        await self._audit.record(
            user_id,
            AuditEventType.MODULE_COMPLETION,
            {"module": module_name, "next_module": next_name},
        )
        return CompletionResult(record=transition.record, next_module=next_name)

    async def completion_metadata(
        self, module: Module, metadata: dict[str, Any] | None, **system: Any
    ) -> dict[str, Any]:
        """Caller metadata overlaid with system keys; system keys always win."""
        stamped = {**(metadata or {}), **system}
        if module.requires_consent:
            active = await self.consent.active_version()
            stamped["consent_version"] = active.version
        return stamped

    async def initialize_participant(self, user_id: str) -> Transition:
        """Put a new participant on the first module of the study."""
        first = self.graph.first_module()
        return await self.start_module(user_id, first.name)

    # --- Views ---

    async def get_module_for_user(self, user_id: str, module_name: str) -> ModuleView:
        """Completed modules stay readable for review even if access would now be denied."""
        module = self.graph.module_by_name(module_name)
        progress = await self.machine.find_progress(user_id, module_name)
        is_completed = progress is not None and progress.is_completed
        if is_completed:
            return ModuleView(module, progress, True, True, True)

        decision = await self.check_access(user_id, module_name)
        if not decision.accessible:
            await self._record_denial(user_id, module_name, decision)
            raise AccessDenied(decision.reason, next_module=decision.next_module)
        return ModuleView(module, progress, True, False, False)

    async def navigation_state(self, user_id: str) -> NavigationState:
        records = {r.module_name: r for r in await self.machine.list_progress(user_id)}
        completed = frozenset(n for n, r in records.items() if r.is_completed)
        modules = self.graph.all_modules()
        consent = _ConsentCheck(self.consent, user_id)

        available = []
        for module in modules:
            if module.name in completed:
                available.append(module.name)
            elif (await self._decide(module, completed, consent)).accessible:
                available.append(module.name)

        current, blocked_reason = await self._current(user_id)
        next_module = None
        if current is not None:
            following = self.graph.next_by_sequence(current.sequence_order)
            next_module = following.name if following else None

        done = [m.name for m in modules if m.name in completed]
        return NavigationState(
            current_module=current.name if current else None,
            active_module=await self._participants.get_active_module(user_id),
            next_module=next_module,
            completed=done,
            available=available,
            total_modules=len(modules),
            percentage=_percentage(len(done), len(modules)),
            study_complete=len(done) == len(modules),
            blocked_reason=blocked_reason,
        )

    async def completion_stats(self, user_id: str) -> CompletionStats:
        records = {r.module_name: r for r in await self.machine.list_progress(user_id)}
        rows = []
        completed = in_progress = 0
        for module in self.graph.all_modules():
            record = records.get(module.name)
            status = record.status if record else ProgressStatus.NOT_STARTED
            if status is ProgressStatus.COMPLETED:
                completed += 1
            elif status is ProgressStatus.IN_PROGRESS:
                in_progress += 1
            rows.append(
                {
                    "name": module.name,
                    "title": module.title,
                    "sequence_order": module.sequence_order,
                    "status": status.value,
                    "started_at": record.started_at if record else None,
                    "completed_at": record.completed_at if record else None,
                }
            )
        total = len(rows)
        return CompletionStats(
            total_modules=total,
            completed_modules=completed,
            in_progress_modules=in_progress,
            percentage=_percentage(completed, total),
            modules=rows,
        )

    # --- Helpers ---

    async def _require_access(self, user_id: str, module_name: str) -> Module:
        module = self.graph.module_by_name(module_name)
        decision = await self.check_access(user_id, module_name)
        if not decision.accessible:
            await self._record_denial(user_id, module_name, decision)
            raise AccessDenied(decision.reason, next_module=decision.next_module)
        return module

    async def _record_denial(
        self, user_id: str, module_name: str, decision: AccessDecision
    ) -> None:
        ACCESS_DENIALS.labels(reason=decision.reason).inc()
        logger.warning(
            "Module access denied user=%s module=%s reason=%s",
            user_id,
            module_name,
            decision.reason,
            extra={"user_id": user_id, "study_module": module_name, "reason": decision.reason},
        )
        await self._audit.record(
            user_id,
            AuditEventType.MODULE_ACCESS_DENIED,
            {
                "module": module_name,
                "reason": decision.reason,
                "next_module": decision.next_module,
            },
        )

    async def _record_rejection(
        self, user_id: str, module_name: str, kind: str, error: TerminalStateError
    ) -> None:
        await self._audit.record(
            user_id,
            AuditEventType.TRANSITION_REJECTED,
            {"module": module_name, "attempted": kind, "code": error.code},
        )


def _percentage(done: int, total: int) -> int:
    if total == 0:
        return 0
    return round(done * 100 / total)
