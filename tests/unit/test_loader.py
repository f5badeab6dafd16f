"""
Unit tests for the module loader.

Tests cover:
- Expanding files and directories into an ordered source list
- Reading sources from models, dicts, YAML files and strings
- Compiling rules and rejecting malformed ones
- Manifest validation (ids, versions)
"""

from pathlib import Path

import pytest
from conftest import make_module, make_rule
from pydantic import ValidationError

from strata.errors import EmptyModuleError, ModuleSourceError, RuleLoadError
from strata.modules import (
    ModuleLoader,
    RuleModuleSource,
    load_module_source,
    load_module_source_from_string,
)
from strata.schema import Effect, RequestDescriptor, Restrictiveness

MODULE_YAML = """
id: memory-safety
version: 1.2.0
description: Raw memory access policy
rules:
  - id: MS-001
    effect: deny
    citation: "Memory Safety §2.1"
    text: Raw memory access requires a written safety justification.
    when:
      tags:
        all_of: [raw_memory_access]
        none_of: [safety_justification]
    escalations:
      - when:
          targets:
            any_of: [interrupt_handler]
        restrictiveness: forbid
"""


@pytest.fixture
def loader() -> ModuleLoader:
    return ModuleLoader()


# =============================================================================
# Manifest
# =============================================================================


class TestModuleSource:
    """Tests for RuleModuleSource parsing."""

    def test_from_string(self) -> None:
        source = load_module_source_from_string(MODULE_YAML)
        assert source.id == "memory-safety"
        assert source.version == "1.2.0"
        assert source.rules[0]["id"] == "MS-001"

    def test_from_file(self, temp_dir: Path) -> None:
        path = temp_dir / "module.yaml"
        path.write_text(MODULE_YAML)
        assert load_module_source(path).id == "memory-safety"

    def test_invalid_module_id(self) -> None:
        with pytest.raises(ValidationError, match="Invalid module id"):
            RuleModuleSource(id="has space", rules=[])

    def test_invalid_version(self) -> None:
        with pytest.raises(ValidationError, match="semver"):
            RuleModuleSource(id="mod", version="1.0", rules=[])

    def test_unknown_field_rejected(self) -> None:
        with pytest.raises(ValidationError):
            RuleModuleSource.model_validate({"id": "mod", "policies": []})


# =============================================================================
# Expand
# =============================================================================


class TestExpand:
    """Tests for ModuleLoader.expand()."""

    def test_directory_expands_sorted(self, loader: ModuleLoader, temp_dir: Path) -> None:
        modules_dir = temp_dir / "modules"
        modules_dir.mkdir()
        (modules_dir / "20-b.yaml").write_text(MODULE_YAML)
        (modules_dir / "10-a.yml").write_text(MODULE_YAML)
        (modules_dir / "notes.txt").write_text("ignored")

        expanded = loader.expand([modules_dir])
        assert [p.name for p in expanded] == ["10-a.yml", "20-b.yaml"]

    def test_order_is_preserved(self, loader: ModuleLoader, temp_dir: Path) -> None:
        first = temp_dir / "z.yaml"
        second = temp_dir / "a.yaml"
        first.write_text(MODULE_YAML)
        second.write_text(MODULE_YAML)
        inline = make_module("inline", make_rule("X1", all_of=["x"]))

        assert loader.expand([first, inline, str(second)]) == [first, inline, second]

    def test_inline_yaml_is_kept(self, loader: ModuleLoader) -> None:
        assert loader.expand([MODULE_YAML]) == [MODULE_YAML]

    def test_missing_path(self, loader: ModuleLoader, temp_dir: Path) -> None:
        with pytest.raises(ModuleSourceError, match="does not exist"):
            loader.expand([temp_dir / "missing.yaml"])

    def test_empty_directory(self, loader: ModuleLoader, temp_dir: Path) -> None:
        with pytest.raises(ModuleSourceError, match="no module files"):
            loader.expand([temp_dir])


# =============================================================================
# Read
# =============================================================================


class TestRead:
    """Tests for ModuleLoader.read()."""

    def test_read_dict(self, loader: ModuleLoader) -> None:
        source = loader.read(make_module("mod", make_rule("R1", all_of=["x"])))
        assert isinstance(source, RuleModuleSource)
        assert source.id == "mod"

    def test_read_model_passthrough(self, loader: ModuleLoader) -> None:
        source = RuleModuleSource(id="mod", rules=[make_rule("R1", all_of=["x"])])
        assert loader.read(source) is source

    def test_read_inline_yaml(self, loader: ModuleLoader) -> None:
        source = loader.read(MODULE_YAML)
        assert source.id == "memory-safety"
        assert source.rules[0].id == "MS-001"

    def test_invalid_inline_yaml(self, loader: ModuleLoader) -> None:
        with pytest.raises(ModuleSourceError, match="<inline>"):
            loader.read("id: mod\nrules: [unclosed\n")

    def test_single_line_string_is_a_path(self, loader: ModuleLoader, temp_dir: Path) -> None:
        path = temp_dir / "module.yaml"
        path.write_text(MODULE_YAML)
        assert loader.read(str(path)).id == "memory-safety"

    def test_invalid_yaml(self, loader: ModuleLoader, temp_dir: Path) -> None:
        path = temp_dir / "bad.yaml"
        path.write_text("id: [unclosed")
        with pytest.raises(ModuleSourceError, match="Invalid YAML"):
            loader.read(path)

    def test_empty_file(self, loader: ModuleLoader, temp_dir: Path) -> None:
        path = temp_dir / "empty.yaml"
        path.write_text("")
        with pytest.raises(ModuleSourceError, match="Empty module file"):
            loader.read(path)

    def test_schema_error_names_field(self, loader: ModuleLoader) -> None:
        with pytest.raises(ModuleSourceError, match="version"):
            loader.read({"id": "mod", "version": "one", "rules": []})


# =============================================================================
# Compile
# =============================================================================


class TestCompile:
    """Tests for rule and module compilation."""

    def test_compile_module(self, loader: ModuleLoader) -> None:
        module = loader.compile_module(load_module_source_from_string(MODULE_YAML), load_order=3)
        assert module.load_order == 3
        rule = module.rules[0]
        assert rule.id == "MS-001"
        assert rule.module_id == "memory-safety"
        assert rule.effect == Effect.DENY
        assert rule.predicate.restrictiveness == Restrictiveness.STRICT

    def test_compiled_rule_evaluates(self, loader: ModuleLoader) -> None:
        rule = loader.compile_module(load_module_source_from_string(MODULE_YAML), 0).rules[0]
        outcome = rule.evaluate(
            RequestDescriptor(tags=["raw_memory_access"], targets=["interrupt_handler"])
        )
        assert outcome.matched
        assert outcome.restrictiveness == Restrictiveness.FORBID

    def test_empty_module(self, loader: ModuleLoader) -> None:
        with pytest.raises(EmptyModuleError):
            loader.compile_module(RuleModuleSource(id="empty", rules=[]), 0)

    def test_missing_field(self, loader: ModuleLoader) -> None:
        raw = make_rule("R1", all_of=["x"])
        del raw["citation"]
        with pytest.raises(RuleLoadError, match="citation"):
            loader.compile_rule(raw, "mod")

    def test_unknown_effect(self, loader: ModuleLoader) -> None:
        with pytest.raises(RuleLoadError) as exc_info:
            loader.compile_rule(make_rule("R1", effect="maybe", all_of=["x"]), "mod")
        assert exc_info.value.rule_id == "R1"
        assert exc_info.value.module_id == "mod"

    def test_bare_string_tags_rejected(self, loader: ModuleLoader) -> None:
        raw = make_rule("R1")
        raw["when"] = {"tags": {"all_of": "raw_memory_access"}}
        with pytest.raises(RuleLoadError, match="got a string"):
            loader.compile_rule(raw, "mod")

    def test_empty_predicate_rejected(self, loader: ModuleLoader) -> None:
        with pytest.raises(RuleLoadError, match="no conditions"):
            loader.compile_rule(make_rule("R1"), "mod")

    def test_contradictory_condition_rejected(self, loader: ModuleLoader) -> None:
        raw = make_rule("R1", all_of=["a"], none_of=["a"])
        with pytest.raises(RuleLoadError, match="never match"):
            loader.compile_rule(raw, "mod")

    def test_escalation_must_raise_level(self, loader: ModuleLoader) -> None:
        raw = make_rule(
            "R1",
            all_of=["a"],
            restrictiveness="strict",
            escalations=[{"when": {"tags": {"all_of": ["b"]}}, "restrictiveness": "cautious"}],
        )
        with pytest.raises(RuleLoadError, match="does not raise"):
            loader.compile_rule(raw, "mod")

    def test_invalid_rule_id(self, loader: ModuleLoader) -> None:
        with pytest.raises(RuleLoadError):
            loader.compile_rule(make_rule("9 lives", all_of=["a"]), "mod")

    def test_remedy_syntax_error_rejected(self, loader: ModuleLoader) -> None:
        raw = make_rule("R1", all_of=["a"], remedy="Under {{ rule.citation ")
        with pytest.raises(RuleLoadError, match="remedy template"):
            loader.compile_rule(raw, "mod")

    def test_remedy_undefined_variable_rejected(self, loader: ModuleLoader) -> None:
        raw = make_rule("R1", all_of=["a"], remedy="Allow {{ nothing_here }}")
        with pytest.raises(RuleLoadError, match="remedy template"):
            loader.compile_rule(raw, "mod")

    def test_blank_remedy_rejected(self, loader: ModuleLoader) -> None:
        raw = make_rule("R1", all_of=["a"], remedy="{{ '' }}")
        with pytest.raises(RuleLoadError, match="empty text"):
            loader.compile_rule(raw, "mod")

    def test_valid_remedy_kept(self, loader: ModuleLoader) -> None:
        raw = make_rule("R1", all_of=["a"], remedy="Under {{ rule.citation }}: allow it.")
        assert loader.compile_rule(raw, "mod").remedy == "Under {{ rule.citation }}: allow it."
