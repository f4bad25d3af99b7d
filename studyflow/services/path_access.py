"""Access to named paths, which unlock by rule instead of by sequence.

A path's progress is the progress record of its backing module.  Once
that module is COMPLETED the path is read-only for good: writes fail with
PathReadOnly before any rule or state-machine logic runs, while reads are
still granted in ``review`` mode.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from studyflow.core.errors import (
    AccessDenied,
    PathNotWritable,
    PathReadOnly,
    TerminalStateError,
)
from studyflow.core.metrics import ACCESS_DENIALS, TRANSITION_REJECTIONS
from studyflow.models.audit import AuditEventType
from studyflow.models.module import Path
from studyflow.models.progress import ProgressRecord, ProgressStatus
from studyflow.models.unlock_rule import UserSnapshot
from studyflow.services.access_controller import (
    BRANCHING_RULE_NOT_SATISFIED,
    CONSENT_REQUIRED,
    AccessController,
    CompletionResult,
)
from studyflow.services.audit_trail import AuditTrail
from studyflow.services.progress_machine import Transition

logger = logging.getLogger(__name__)

MODE_WRITE = "write"
MODE_REVIEW = "review"


@dataclass(frozen=True, slots=True)
class PathDecision:
    accessible: bool
    reason: str | None = None
    mode: str | None = None
    is_completed: bool = False


@dataclass(frozen=True, slots=True)
class PathView:
    path: Path
    progress: ProgressRecord | None
    accessible: bool
    is_completed: bool
    can_review: bool
    children: list[Path] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class PathSummary:
    name: str
    title: str
    module_name: str | None
    parent_path: str | None
    is_common: bool
    accessible: bool
    status: str
    reason: str | None = None


class PathAccessEvaluator:
    def __init__(self, access: AccessController, audit: AuditTrail) -> None:
        self._access = access
        self._graph = access.graph
        self._machine = access.machine
        self._consent = access.consent
        self._audit = audit

    async def snapshot(self, user_id: str) -> UserSnapshot:
        records = await self._machine.list_progress(user_id)
        return UserSnapshot(
            completed=frozenset(r.module_name for r in records if r.is_completed),
            responses={r.module_name: dict(r.responses) for r in records},
        )

    async def check_path_access(self, user_id: str, path_name: str) -> PathDecision:
        path = self._graph.path_by_name(path_name)
        return await self._decide(user_id, path, await self.snapshot(user_id))

    async def _decide(
        self, user_id: str, path: Path, snapshot: UserSnapshot
    ) -> PathDecision:
        if path.module_name is not None and path.module_name in snapshot.completed:
            # Completed paths stay readable even if the rule no longer holds
            return PathDecision(True, mode=MODE_REVIEW, is_completed=True)
        if not path.is_common and not path.unlock_rule.evaluate(snapshot):
            return PathDecision(False, BRANCHING_RULE_NOT_SATISFIED)
        if path.module_name is not None:
            module = self._graph.module_by_name(path.module_name)
            if module.requires_consent and not await self._consent.has_valid_consent(user_id):
                return PathDecision(False, CONSENT_REQUIRED)
        return PathDecision(True, mode=MODE_WRITE)

    # --- Mutations ---

    async def start_path(self, user_id: str, path_name: str) -> Transition:
        path, module_name = await self._writable(user_id, path_name, "start")
        try:
            transition = await self._machine.start(user_id, module_name)
        except TerminalStateError as e:
            await self._rejected(user_id, path, "start", e)
            raise
        await self._audit.record(
            user_id,
            AuditEventType.PATH_START,
            {"path": path.name, "module": module_name, "resumed": not transition.changed},
        )
        return transition

    async def save_path(
        self, user_id: str, path_name: str, responses: dict[str, Any] | None
    ) -> Transition:
        path, module_name = await self._writable(user_id, path_name, "save")
        try:
            transition = await self._machine.save_progress(user_id, module_name, responses)
        except TerminalStateError as e:
            await self._rejected(user_id, path, "save", e)
            raise
        if transition.first_save:
            await self._audit.record(
                user_id,
                AuditEventType.PROGRESS_SAVED,
                {
                    "path": path.name,
                    "module": module_name,
                    "keys": sorted(transition.record.responses),
                    "implicit_start": transition.implicit_start,
                },
            )
        return transition

    async def complete_path(
        self,
        user_id: str,
        path_name: str,
        responses: dict[str, Any] | None,
        metadata: dict[str, Any] | None = None,
    ) -> CompletionResult:
        path, module_name = await self._writable(user_id, path_name, "complete")
        before = await self.unlocked_path_names(user_id)
        stamped = await self._access.completion_metadata(
            self._graph.module_by_name(module_name), metadata, path=path.name
        )
        try:
            transition = await self._machine.complete(user_id, module_name, responses, stamped)
        except TerminalStateError as e:
            await self._rejected(user_id, path, "complete", e)
            raise

        next_module = await self._access.get_next_accessible_module(user_id)
        next_name = next_module.name if next_module else None
        await self._audit.record(
            user_id,
            AuditEventType.PATH_COMPLETION,
            {"path": path.name, "module": module_name, "next_module": next_name},
        )
        unlocked = await self.record_new_unlocks(user_id, before)
        return CompletionResult(
            record=transition.record,
            next_module=next_name,
            unlocked_paths=tuple(p.name for p in unlocked),
        )

    async def _writable(self, user_id: str, path_name: str, kind: str) -> tuple[Path, str]:
        path = self._graph.path_by_name(path_name)
        if path.module_name is None:
            raise PathNotWritable(path_name)

        snapshot = await self.snapshot(user_id)
        if path.module_name in snapshot.completed:
            error = PathReadOnly(user_id, path.name, path.module_name)
            await self._rejected(user_id, path, kind, error)
            raise error

        decision = await self._decide(user_id, path, snapshot)
        if not decision.accessible:
            ACCESS_DENIALS.labels(reason=decision.reason).inc()
            logger.warning(
                "Path access denied user=%s path=%s reason=%s",
                user_id,
                path.name,
                decision.reason,
                extra={"user_id": user_id, "reason": decision.reason},
            )
            await self._audit.record(
                user_id,
                AuditEventType.PATH_ACCESS_DENIED,
                {"path": path.name, "reason": decision.reason, "attempted": kind},
            )
            raise AccessDenied(decision.reason)
        return path, path.module_name

    async def _rejected(
        self, user_id: str, path: Path, kind: str, error: TerminalStateError
    ) -> None:
        if isinstance(error, PathReadOnly):
            TRANSITION_REJECTIONS.labels(code=error.code).inc()
            logger.warning(
                "Write to completed path rejected user=%s path=%s kind=%s",
                user_id,
                path.name,
                kind,
            )
        await self._audit.record(
            user_id,
            AuditEventType.TRANSITION_REJECTED,
            {
                "path": path.name,
                "module": path.module_name,
                "attempted": kind,
                "code": error.code,
            },
        )

    # --- Views ---

    async def path_for_user(self, user_id: str, path_name: str) -> PathView:
        path = self._graph.path_by_name(path_name)
        snapshot = await self.snapshot(user_id)
        decision = await self._decide(user_id, path, snapshot)
        if not decision.accessible:
            ACCESS_DENIALS.labels(reason=decision.reason).inc()
            await self._audit.record(
                user_id,
                AuditEventType.PATH_ACCESS_DENIED,
                {"path": path.name, "reason": decision.reason, "attempted": "view"},
            )
            raise AccessDenied(decision.reason)
        progress = None
        if path.module_name is not None:
            progress = await self._machine.find_progress(user_id, path.module_name)
        return PathView(
            path=path,
            progress=progress,
            accessible=True,
            is_completed=decision.is_completed,
            can_review=decision.mode == MODE_REVIEW,
            children=list(self._graph.child_paths(path.name)),
        )

    async def path_overview(self, user_id: str) -> list[PathSummary]:
        snapshot = await self.snapshot(user_id)
        statuses = {
            r.module_name: r.status for r in await self._machine.list_progress(user_id)
        }
        overview = []
        for path in self._graph.all_paths():
            decision = await self._decide(user_id, path, snapshot)
            status = ProgressStatus.NOT_STARTED
            if path.module_name is not None:
                status = statuses.get(path.module_name, ProgressStatus.NOT_STARTED)
            overview.append(
                PathSummary(
                    name=path.name,
                    title=path.title,
                    module_name=path.module_name,
                    parent_path=path.parent_path,
                    is_common=path.is_common,
                    accessible=decision.accessible,
                    status=status.value,
                    reason=decision.reason,
                )
            )
        return overview

    async def unlocked_paths(self, user_id: str) -> list[Path]:
        snapshot = await self.snapshot(user_id)
        return [
            p for p in self._graph.all_paths()
            if (await self._decide(user_id, p, snapshot)).accessible
        ]

    async def unlocked_path_names(self, user_id: str) -> frozenset[str]:
        return frozenset(p.name for p in await self.unlocked_paths(user_id))

    async def newly_unlocked_paths(self, user_id: str, before: frozenset[str]) -> list[Path]:
        return [p for p in await self.unlocked_paths(user_id) if p.name not in before]

    async def record_new_unlocks(self, user_id: str, before: frozenset[str]) -> list[Path]:
        """Audit PATH_UNLOCKED for every path that opened since ``before``."""
        unlocked = await self.newly_unlocked_paths(user_id, before)
        for path in unlocked:
            logger.info("Path unlocked user=%s path=%s", user_id, path.name)
            await self._audit.record(
                user_id, AuditEventType.PATH_UNLOCKED, {"path": path.name}
            )
        return unlocked
