"""Static, ordered definition of the study modules and branching paths.

The graph is built once at startup and never mutated.  Construction
validates the definition so a typo in a path's rule fails at boot instead
of silently locking every participant out of that path.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from studyflow.core.errors import InvalidModuleGraph, ModuleNotFound, PathNotFound
from studyflow.models.module import Module, Path
from studyflow.models.unlock_rule import (
    AllOf,
    ModulesCompleted,
    ResponseMatches,
)

logger = logging.getLogger(__name__)

CONSENT_MODULE = "consent"


class ModuleGraph:
    def __init__(self, modules: Iterable[Module], paths: Iterable[Path] = ()) -> None:
        self._modules: tuple[Module, ...] = tuple(
            sorted(modules, key=lambda m: m.sequence_order)
        )
        self._paths: tuple[Path, ...] = tuple(
            sorted(paths, key=lambda p: (p.sequence_order, p.name))
        )
        self._by_name: dict[str, Module] = {}
        self._paths_by_name: dict[str, Path] = {}
        self._validate()

    def _validate(self) -> None:
        if not self._modules:
            raise InvalidModuleGraph("module graph has no modules")

        previous: int | None = None
        for module in self._modules:
            if module.name in self._by_name:
                raise InvalidModuleGraph(f"duplicate module name {module.name!r}")
            if previous is not None and module.sequence_order <= previous:
                raise InvalidModuleGraph(
                    f"sequence_order {module.sequence_order} of {module.name!r} "
                    "is not strictly increasing"
                )
            self._by_name[module.name] = module
            previous = module.sequence_order

        for path in self._paths:
            if path.name in self._paths_by_name:
                raise InvalidModuleGraph(f"duplicate path name {path.name!r}")
            self._paths_by_name[path.name] = path

        for path in self._paths:
            if path.module_name is not None and path.module_name not in self._by_name:
                raise InvalidModuleGraph(
                    f"path {path.name!r} references unknown module {path.module_name!r}"
                )
            if path.parent_path is not None and path.parent_path not in self._paths_by_name:
                raise InvalidModuleGraph(
                    f"path {path.name!r} references unknown parent {path.parent_path!r}"
                )
            unknown = path.unlock_rule.referenced_modules() - self._by_name.keys()
            if unknown:
                raise InvalidModuleGraph(
                    f"unlock rule of path {path.name!r} references unknown modules "
                    f"{sorted(unknown)}"
                )

    # --- Modules ---

    def module_by_name(self, name: str) -> Module:
        module = self._by_name.get(name)
        if module is None:
            raise ModuleNotFound(name)
        return module

    def has_module(self, name: str) -> bool:
        return name in self._by_name

    def next_by_sequence(self, current_order: int) -> Module | None:
        for module in self._modules:
            if module.sequence_order > current_order:
                return module
        return None

    def all_modules(self) -> tuple[Module, ...]:
        return self._modules

    def first_module(self) -> Module:
        return self._modules[0]

    def prerequisites(self, name: str) -> tuple[Module, ...]:
        """Every module ordered before ``name``."""
        module = self.module_by_name(name)
        return tuple(m for m in self._modules if m.sequence_order < module.sequence_order)

    # --- Paths ---

    def path_by_name(self, name: str) -> Path:
        path = self._paths_by_name.get(name)
        if path is None:
            raise PathNotFound(name)
        return path

    def all_paths(self) -> tuple[Path, ...]:
        return self._paths

    def paths_for_module(self, module_name: str) -> tuple[Path, ...]:
        return tuple(p for p in self._paths if p.module_name == module_name)

    def child_paths(self, path_name: str) -> tuple[Path, ...]:
        return tuple(p for p in self._paths if p.parent_path == path_name)

    @classmethod
    def default(cls) -> ModuleGraph:
        modules = [
            Module(
                name=CONSENT_MODULE,
                title="Informed consent",
                sequence_order=1,
                description="Read and accept the study agreement.",
            ),
            Module(name="module1", title="Getting started", sequence_order=2, requires_consent=True),
            Module(name="module2", title="Exploring further", sequence_order=3, requires_consent=True),
            Module(name="module3", title="Reflection", sequence_order=4, requires_consent=True),
            Module(name="module4", title="Wrap-up", sequence_order=5, requires_consent=True),
        ]
        paths = [
            Path(
                name="core",
                title="Core track",
                module_name="module1",
                is_common=True,
                sequence_order=1,
            ),
            Path(
                name="deep_dive",
                title="Deep dive",
                module_name="module2",
                unlock_rule=ModulesCompleted(("module1",)),
                parent_path="core",
                sequence_order=2,
            ),
            Path(
                name="returning_explorer",
                title="For returning explorers",
                module_name="module3",
                unlock_rule=AllOf(
                    ModulesCompleted(("module1",)),
                    ResponseMatches("module1", "explored_before", "equals", True),
                ),
                parent_path="core",
                sequence_order=3,
            ),
            Path(
                name="resources",
                title="Further reading",
                is_common=True,
                sequence_order=4,
            ),
        ]
        logger.debug("Building default module graph: %d modules, %d paths", len(modules), len(paths))
        return cls(modules, paths)
