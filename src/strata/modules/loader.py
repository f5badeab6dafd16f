"""
Module loader for reading and compiling rule modules.

This module provides the ModuleLoader class for:
- Expanding module paths (files and directories) into an ordered list
- Reading module sources from YAML files, inline YAML strings, dicts or models
- Compiling each rule source into an immutable Rule
- Rejecting malformed rules with RuleLoadError

Design Decisions:
    - Directories expand to their *.yaml / *.yml files in sorted name order
    - A multi-line string is inline YAML; any other string is a path
    - A module fails on its first malformed rule; the store reports every
      failing module together
    - Predicates are probed against an empty descriptor and remedy templates
      are test-rendered, so broken rules fail at load rather than mid-request
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any, Union

import yaml
from jinja2 import TemplateError
from pydantic import ValidationError

from strata.errors import EmptyModuleError, ModuleSourceError, RuleLoadError
from strata.modules.manifest import RuleModuleSource, RuleSource
from strata.policy.composer import render_instruction
from strata.schema import ConditionSet, Predicate, RequestDescriptor, Rule, RuleModule

logger = logging.getLogger(__name__)

ModuleSourceLike = Union[RuleModuleSource, dict[str, Any], Path, str]

MODULE_FILE_SUFFIXES = (".yaml", ".yml")


def is_inline_yaml(source: object) -> bool:
    """Whether a source is YAML text rather than a path. Paths never span lines."""
    return isinstance(source, str) and "\n" in source


def _format_validation_error(error: ValidationError) -> str:
    """Flatten a pydantic ValidationError into one line."""
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item["loc"]) or "<root>"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)


class ModuleLoader:
    """
    Reads module sources and compiles them into RuleModules.

    Usage:
        loader = ModuleLoader()
        for order, source in enumerate(loader.expand(["modules/"])):
            module = loader.compile_module(loader.read(source), order)

    Attributes:
        probe: Descriptor used to check that predicates evaluate cleanly
    """

    def __init__(self) -> None:
        self.probe = RequestDescriptor(request_id="load-probe")

    # =========================================================================
    # Reading
    # =========================================================================

    def expand(self, sources: Iterable[ModuleSourceLike]) -> list[ModuleSourceLike]:
        """
        Expand directory paths into their module files, keeping order.

        Args:
            sources: Module sources; paths may be files or directories,
                multi-line strings are kept as inline YAML

        Returns:
            Flat list of sources in declared order

        Raises:
            ModuleSourceError: If a path does not exist
        """
        expanded: list[ModuleSourceLike] = []
        for source in sources:
            if is_inline_yaml(source) or not isinstance(source, (Path, str)):
                expanded.append(source)
                continue

            path = Path(source)
            if not path.exists():
                raise ModuleSourceError(
                    source=str(path),
                    underlying_error="path does not exist",
                )
            if path.is_dir():
                files = sorted(
                    p for p in path.iterdir()
                    if p.is_file() and p.suffix in MODULE_FILE_SUFFIXES
                )
                if not files:
                    raise ModuleSourceError(
                        source=str(path),
                        underlying_error="directory contains no module files",
                    )
                expanded.extend(files)
            else:
                expanded.append(path)
        return expanded

    def read(self, source: ModuleSourceLike) -> RuleModuleSource:
        """
        Read a single module source.

        Args:
            source: Model, dict, inline YAML text, or path to a YAML file

        Returns:
            Validated RuleModuleSource

        Raises:
            ModuleSourceError: If the file is missing, unreadable or invalid
        """
        if isinstance(source, RuleModuleSource):
            return source

        data: Any
        if isinstance(source, dict):
            label = str(source.get("id", "<dict>"))
            data = source
        elif is_inline_yaml(source):
            label = "<inline>"
            try:
                data = yaml.safe_load(source)
            except yaml.YAMLError as e:
                raise ModuleSourceError(
                    source=label,
                    underlying_error=f"Invalid YAML: {e}",
                ) from e
        else:
            path = Path(source)
            label = str(path)
            try:
                with path.open() as f:
                    data = yaml.safe_load(f)
            except OSError as e:
                raise ModuleSourceError(source=label, underlying_error=str(e)) from e
            except yaml.YAMLError as e:
                raise ModuleSourceError(
                    source=label,
                    underlying_error=f"Invalid YAML: {e}",
                ) from e

        if data is None:
            raise ModuleSourceError(source=label, underlying_error="Empty module file")

        try:
            return RuleModuleSource.model_validate(data)
        except ValidationError as e:
            raise ModuleSourceError(
                source=label,
                underlying_error=_format_validation_error(e),
            ) from e

    # =========================================================================
    # Compiling
    # =========================================================================

    def compile_module(self, source: RuleModuleSource, load_order: int) -> RuleModule:
        """
        Compile a module source.

        Args:
            source: The module source
            load_order: Position of the module in the declared stack

        Returns:
            Immutable RuleModule

        Raises:
            EmptyModuleError: If the module declares no rules
            RuleLoadError: If any rule is malformed
        """
        if not source.rules:
            raise EmptyModuleError(module_id=source.id)

        rules = tuple(self.compile_rule(raw, source.id) for raw in source.rules)
        module = RuleModule(
            id=source.id,
            version=source.version,
            description=source.description,
            load_order=load_order,
            rules=rules,
        )
        logger.debug("Compiled module %s v%s (%d rules)", module.id, module.version, len(rules))
        return module

    def compile_rule(self, raw: dict[str, Any], module_id: str) -> Rule:
        """
        Compile one rule definition.

        Args:
            raw: The rule as written in the module source
            module_id: Owning module

        Returns:
            Immutable Rule

        Raises:
            RuleLoadError: If the rule is malformed
        """
        rule_id = str(raw.get("id", "")) if isinstance(raw, dict) else ""

        try:
            rule_source = RuleSource.model_validate(raw)
        except ValidationError as e:
            raise RuleLoadError(
                module_id=module_id,
                rule_id=rule_id,
                reason=_format_validation_error(e),
            ) from e

        self._check_conditions(rule_source.when, module_id, rule_id, "when")
        for index, step in enumerate(rule_source.escalations):
            label = f"escalations[{index}]"
            self._check_conditions(step.when, module_id, rule_id, label)
            if step.restrictiveness.rank <= rule_source.restrictiveness.rank:
                raise RuleLoadError(
                    module_id=module_id,
                    rule_id=rule_id,
                    reason=(
                        f"{label} level {step.restrictiveness.value} does not raise "
                        f"base level {rule_source.restrictiveness.value}"
                    ),
                )

        try:
            rule = Rule(
                id=rule_source.id,
                module_id=module_id,
                effect=rule_source.effect,
                predicate=Predicate(
                    when=rule_source.when,
                    restrictiveness=rule_source.restrictiveness,
                    escalations=tuple(rule_source.escalations),
                ),
                citation=rule_source.citation,
                text=rule_source.text,
                remedy=rule_source.remedy,
                description=rule_source.description,
            )
        except ValidationError as e:
            raise RuleLoadError(
                module_id=module_id,
                rule_id=rule_id,
                reason=_format_validation_error(e),
            ) from e

        self._probe(rule)
        return rule

    def _check_conditions(
        self,
        conditions: ConditionSet,
        module_id: str,
        rule_id: str,
        label: str,
    ) -> None:
        if conditions.is_empty:
            raise RuleLoadError(
                module_id=module_id,
                rule_id=rule_id,
                reason=f"{label} has no conditions; the rule would fire on every request",
            )
        for descriptor_field, condition in conditions.conditions():
            clash = condition.contradictions
            if clash:
                raise RuleLoadError(
                    module_id=module_id,
                    rule_id=rule_id,
                    reason=(
                        f"{label}.{descriptor_field.value} both requires and forbids "
                        f"{', '.join(clash)}; it can never match"
                    ),
                )

    def _probe(self, rule: Rule) -> None:
        """Evaluate the predicate and render the remedy once against the probe."""
        try:
            rule.evaluate(self.probe)
        except Exception as e:
            raise RuleLoadError(
                module_id=rule.module_id,
                rule_id=rule.id,
                reason=f"predicate cannot be evaluated: {e}",
            ) from e

        if rule.remedy is not None:
            try:
                rendered = render_instruction(rule.remedy, rule, [rule], self.probe, "refused")
            except TemplateError as e:
                raise RuleLoadError(
                    module_id=rule.module_id,
                    rule_id=rule.id,
                    reason=f"remedy template is invalid: {e}",
                ) from e
            if not rendered:
                raise RuleLoadError(
                    module_id=rule.module_id,
                    rule_id=rule.id,
                    reason="remedy template renders to empty text",
                )
