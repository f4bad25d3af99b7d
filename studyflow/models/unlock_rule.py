"""Path unlock rules as a small expression tree.

A rule is evaluated against a read-only ``UserSnapshot`` of one
participant: which modules they have COMPLETED and the responses they
gave.  Rules never touch the store themselves; the evaluator builds the
snapshot once per decision and every node reads from it.

    AllOf(
        ModulesCompleted(("module1",)),
        ResponseMatches("module1", "explored_before", "equals", True),
    )

Leaves:
    Always                         unconditionally true
    ModulesCompleted(names)        every named module is COMPLETED
    AnyModuleCompleted(names)      at least one named module is COMPLETED
    ResponseMatches(module, key, operator, expected)
        operator: equals | not_equals | contains | greater_than | less_than

Combinators: AllOf, AnyOf, Not.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

OPERATORS = ("equals", "not_equals", "contains", "greater_than", "less_than")


@dataclass(frozen=True, slots=True)
class UserSnapshot:
    completed: frozenset[str] = frozenset()
    responses: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)

    def response(self, module_name: str, key: str) -> Any:
        return self.responses.get(module_name, {}).get(key)


class UnlockRule(Protocol):
    def evaluate(self, snapshot: UserSnapshot) -> bool: ...

    def referenced_modules(self) -> frozenset[str]: ...


@dataclass(frozen=True, slots=True)
class Always:
    def evaluate(self, snapshot: UserSnapshot) -> bool:
        return True

    def referenced_modules(self) -> frozenset[str]:
        return frozenset()


@dataclass(frozen=True, slots=True)
class ModulesCompleted:
    modules: tuple[str, ...]

    def evaluate(self, snapshot: UserSnapshot) -> bool:
        return all(name in snapshot.completed for name in self.modules)

    def referenced_modules(self) -> frozenset[str]:
        return frozenset(self.modules)


@dataclass(frozen=True, slots=True)
class AnyModuleCompleted:
    modules: tuple[str, ...]

    def evaluate(self, snapshot: UserSnapshot) -> bool:
        return any(name in snapshot.completed for name in self.modules)

    def referenced_modules(self) -> frozenset[str]:
        return frozenset(self.modules)


@dataclass(frozen=True, slots=True)
class ResponseMatches:
    module: str
    key: str
    operator: str
    expected: Any

    def __post_init__(self) -> None:
        if self.operator not in OPERATORS:
            raise ValueError(f"unknown operator {self.operator!r}")

    def evaluate(self, snapshot: UserSnapshot) -> bool:
        # Only answers from a COMPLETED module count; drafts can still change.
        if self.module not in snapshot.completed:
            return False
        actual = snapshot.response(self.module, self.key)
        if actual is None:
            return False
        return _compare(actual, self.expected, self.operator)

    def referenced_modules(self) -> frozenset[str]:
        return frozenset((self.module,))


@dataclass(frozen=True, slots=True)
class AllOf:
    rules: tuple[UnlockRule, ...]

    def __init__(self, *rules: UnlockRule) -> None:
        object.__setattr__(self, "rules", tuple(rules))

    def evaluate(self, snapshot: UserSnapshot) -> bool:
        return all(rule.evaluate(snapshot) for rule in self.rules)

    def referenced_modules(self) -> frozenset[str]:
        return frozenset().union(*(r.referenced_modules() for r in self.rules))


@dataclass(frozen=True, slots=True)
class AnyOf:
    rules: tuple[UnlockRule, ...]

    def __init__(self, *rules: UnlockRule) -> None:
        object.__setattr__(self, "rules", tuple(rules))

    def evaluate(self, snapshot: UserSnapshot) -> bool:
        return any(rule.evaluate(snapshot) for rule in self.rules)

    def referenced_modules(self) -> frozenset[str]:
        return frozenset().union(*(r.referenced_modules() for r in self.rules))


@dataclass(frozen=True, slots=True)
class Not:
    rule: UnlockRule

    def evaluate(self, snapshot: UserSnapshot) -> bool:
        return not self.rule.evaluate(snapshot)

    def referenced_modules(self) -> frozenset[str]:
        return self.rule.referenced_modules()


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _compare(actual: Any, expected: Any, operator: str) -> bool:
    if operator == "equals":
        return actual == expected
    if operator == "not_equals":
        return actual != expected
    if operator == "contains":
        if isinstance(actual, list):
            return expected in actual
        if isinstance(actual, str) and isinstance(expected, str):
            return expected in actual
        return False
    if not (_is_number(actual) and _is_number(expected)):
        return False
    if operator == "greater_than":
        return actual > expected
    return actual < expected
