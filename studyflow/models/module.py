from __future__ import annotations

from dataclasses import dataclass, field

from studyflow.models.unlock_rule import Always, UnlockRule


@dataclass(frozen=True, slots=True)
class Module:
    """One fixed step of the study.  ``name`` doubles as the progress key."""

    name: str
    title: str
    sequence_order: int
    description: str = ""
    requires_consent: bool = False


@dataclass(frozen=True, slots=True)
class Path:
    """A conditionally unlocked branch of content.

    module_name: backing module whose progress record is the path's progress
                 (None for pure grouping paths, which can be read but not written)
    unlock_rule: predicate over the participant's completed modules/responses
    is_common:   unlocked for everyone regardless of the rule
    parent_path: nesting for display; does not affect access
    """

    name: str
    title: str
    module_name: str | None = None
    unlock_rule: UnlockRule = field(default_factory=Always)
    is_common: bool = False
    parent_path: str | None = None
    sequence_order: int = 0
    description: str = ""
