from __future__ import annotations

import pytest

from studyflow.models.unlock_rule import (
    AllOf,
    Always,
    AnyModuleCompleted,
    AnyOf,
    ModulesCompleted,
    Not,
    ResponseMatches,
    UserSnapshot,
)

SNAPSHOT = UserSnapshot(
    completed=frozenset({"module1"}),
    responses={
        "module1": {"score": 7, "tags": ["a", "b"], "note": "hello world", "flag": True},
        "module2": {"score": 99},
    },
)


def test_always_is_true_for_empty_snapshot() -> None:
    assert Always().evaluate(UserSnapshot())


def test_modules_completed_needs_every_module() -> None:
    assert ModulesCompleted(("module1",)).evaluate(SNAPSHOT)
    assert not ModulesCompleted(("module1", "module2")).evaluate(SNAPSHOT)


def test_any_module_completed() -> None:
    assert AnyModuleCompleted(("module1", "module2")).evaluate(SNAPSHOT)
    assert not AnyModuleCompleted(("module3",)).evaluate(SNAPSHOT)


@pytest.mark.parametrize(
    ("key", "operator", "expected", "result"),
    [
        ("flag", "equals", True, True),
        ("flag", "not_equals", True, False),
        ("tags", "contains", "b", True),
        ("note", "contains", "world", True),
        ("score", "contains", 7, False),
        ("score", "greater_than", 5, True),
        ("score", "less_than", 5, False),
        ("note", "greater_than", 5, False),
        ("missing", "equals", None, False),
    ],
)
def test_response_operators(key: str, operator: str, expected, result: bool) -> None:
    rule = ResponseMatches("module1", key, operator, expected)
    assert rule.evaluate(SNAPSHOT) is result


def test_response_of_unfinished_module_never_matches() -> None:
    # module2 has answers but is not COMPLETED
    assert not ResponseMatches("module2", "score", "greater_than", 1).evaluate(SNAPSHOT)


def test_booleans_are_not_numbers() -> None:
    assert not ResponseMatches("module1", "flag", "greater_than", 0).evaluate(SNAPSHOT)


def test_unknown_operator_rejected() -> None:
    with pytest.raises(ValueError):
        ResponseMatches("module1", "score", "matches", ".*")


def test_combinators() -> None:
    done = ModulesCompleted(("module1",))
    not_done = ModulesCompleted(("module2",))
    assert AllOf(done, Always()).evaluate(SNAPSHOT)
    assert not AllOf(done, not_done).evaluate(SNAPSHOT)
    assert AnyOf(not_done, done).evaluate(SNAPSHOT)
    assert Not(not_done).evaluate(SNAPSHOT)


def test_referenced_modules_collects_the_tree() -> None:
    rule = AllOf(
        ModulesCompleted(("module1",)),
        AnyOf(ResponseMatches("module2", "x", "equals", 1), Not(AnyModuleCompleted(("module3",)))),
    )
    assert rule.referenced_modules() == frozenset({"module1", "module2", "module3"})
