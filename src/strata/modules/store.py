"""
Module Store for Strata.

Holds the active rule-module stack. The stack is the only shared mutable
state in the engine, and it is never mutated in place: every successful
load builds a brand-new immutable ModuleStack and swaps the reference.

Lifecycle of a load:
    1. Expand and read every source, in declared order
    2. Compile each module (load_order = position in the sequence)
    3. Validate the stack: unique module ids, unique rule ids
    4. If anything failed: raise ModuleValidationError, keep the old stack
    5. Otherwise: activate the new stack with version + 1

Concurrency:
    - Loads are serialized by a lock (one reload in flight at a time)
    - snapshot() never takes the lock; evaluations keep the stack they
      captured even if a reload completes mid-evaluation
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from types import MappingProxyType

from strata.errors import (
    DuplicateModuleIdError,
    DuplicateRuleIdError,
    ModuleSourceError,
    ModuleValidationError,
    RuleLoadError,
    StrataError,
)
from strata.modules.loader import ModuleLoader, ModuleSourceLike
from strata.schema import Rule, RuleModule
from strata.store.db import compute_hash

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class ModuleStack:
    """
    Immutable snapshot of an activated module stack.

    Attributes:
        version: Activation counter (0 for the empty initial stack)
        modules: Modules in load order
        hash: SHA-256 of the canonical JSON of all modules
        activated_at: When this stack became active
    """

    version: int
    modules: tuple[RuleModule, ...]
    hash: str
    activated_at: datetime | None = None
    _rules_by_id: Mapping[str, Rule] = field(default_factory=dict, repr=False)

    @classmethod
    def empty(cls) -> ModuleStack:
        return cls(version=0, modules=(), hash="")

    @classmethod
    def build(cls, version: int, modules: tuple[RuleModule, ...]) -> ModuleStack:
        rules_by_id = {rule.id: rule for module in modules for rule in module.rules}
        return cls(
            version=version,
            modules=modules,
            hash=stack_hash(modules),
            activated_at=datetime.now(UTC),
            _rules_by_id=MappingProxyType(rules_by_id),
        )

    @property
    def is_empty(self) -> bool:
        return not self.modules

    @property
    def rules(self) -> tuple[Rule, ...]:
        """Every rule, in load order then declaration order."""
        return tuple(rule for module in self.modules for rule in module.rules)

    def get_rule(self, rule_id: str) -> Rule | None:
        return self._rules_by_id.get(rule_id)

    def resolves(self, rule: Rule) -> bool:
        """Whether this stack holds exactly this rule."""
        return self.get_rule(rule.id) == rule


def stack_hash(modules: tuple[RuleModule, ...]) -> str:
    """Content hash of a module sequence."""
    return compute_hash([module.model_dump(mode="json") for module in modules])


class ModuleStore:
    """
    Ordered collection of rule modules with atomic reload.

    Usage:
        store = ModuleStore()
        store.load(["modules/base.yaml", "modules/overrides.yaml"])
        stack = store.snapshot()

    Attributes:
        loader: Reads and compiles module sources
    """

    def __init__(self, loader: ModuleLoader | None = None) -> None:
        self.loader = loader or ModuleLoader()
        self._active = ModuleStack.empty()
        self._reload_lock = threading.Lock()

    def snapshot(self) -> ModuleStack:
        """Return the currently active stack. Never blocks."""
        return self._active

    def load(self, sources: Iterable[ModuleSourceLike]) -> ModuleStack:
        """
        Build, validate and activate a new module stack.

        Args:
            sources: Module sources in declared order

        Returns:
            The newly active ModuleStack

        Raises:
            ModuleValidationError: If any module or the stack is invalid.
                The previous stack stays active.
        """
        with self._reload_lock:
            candidate = self.validate(sources, version=self._active.version + 1)
            self._active = candidate
            logger.info(
                "Activated module stack v%d (%d modules, %d rules, hash %s)",
                candidate.version,
                len(candidate.modules),
                len(candidate.rules),
                candidate.hash[:12],
            )
            return candidate

    def validate(self, sources: Iterable[ModuleSourceLike], version: int = 0) -> ModuleStack:
        """
        Build a stack without activating it.

        Raises:
            ModuleValidationError: Listing every problem found
        """
        problems: list[StrataError] = []

        try:
            expanded = self.loader.expand(sources)
        except ModuleSourceError as e:
            raise ModuleValidationError(errors=[e.message]) from e

        if not expanded:
            raise ModuleValidationError(errors=["No rule modules supplied"])

        modules: list[RuleModule] = []
        for load_order, source in enumerate(expanded):
            try:
                module_source = self.loader.read(source)
                modules.append(self.loader.compile_module(module_source, load_order))
            except (ModuleSourceError, RuleLoadError, ModuleValidationError) as e:
                problems.append(e)

        problems.extend(self._check_unique_ids(modules))

        if problems:
            logger.warning("Rejected module stack: %d problem(s)", len(problems))
            if len(problems) == 1 and isinstance(problems[0], ModuleValidationError):
                raise problems[0]
            errors = []
            for problem in problems:
                if isinstance(problem, ModuleValidationError):
                    errors.extend(problem.errors)
                else:
                    errors.append(problem.message)
            raise ModuleValidationError(errors=errors) from problems[0]

        return ModuleStack.build(version, tuple(modules))

    def _check_unique_ids(self, modules: list[RuleModule]) -> list[ModuleValidationError]:
        problems: list[ModuleValidationError] = []

        seen_modules: set[str] = set()
        for module in modules:
            if module.id in seen_modules:
                problems.append(DuplicateModuleIdError(module_id=module.id))
            seen_modules.add(module.id)

        owners: dict[str, list[str]] = {}
        for module in modules:
            for rule in module.rules:
                owners.setdefault(rule.id, []).append(module.id)
        for rule_id, module_ids in owners.items():
            if len(module_ids) > 1:
                problems.append(DuplicateRuleIdError(rule_id=rule_id, module_ids=module_ids))

        return problems
