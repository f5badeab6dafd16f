"""
Pytest configuration and fixtures for Strata tests.

This module provides shared fixtures used across unit and integration
tests: rule module definitions, module files on disk, and engines backed
by a temporary audit log.
"""

import tempfile
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest
import yaml

from strata.engine import ComplianceEngine
from strata.modules import ModuleStore
from strata.schema import RequestDescriptor


def make_rule(
    rule_id: str,
    effect: str = "deny",
    all_of: list[str] | None = None,
    none_of: list[str] | None = None,
    any_of: list[str] | None = None,
    restrictiveness: str = "strict",
    **extra: Any,
) -> dict[str, Any]:
    """Build a raw rule definition over descriptor tags."""
    tags: dict[str, list[str]] = {}
    if all_of:
        tags["all_of"] = all_of
    if any_of:
        tags["any_of"] = any_of
    if none_of:
        tags["none_of"] = none_of
    rule = {
        "id": rule_id,
        "effect": effect,
        "citation": f"Section {rule_id}",
        "text": f"Rule {rule_id} text.",
        "when": {"tags": tags},
        "restrictiveness": restrictiveness,
    }
    rule.update(extra)
    return rule


def make_module(module_id: str, *rules: dict[str, Any], version: str = "1.0.0") -> dict[str, Any]:
    """Build a raw module definition."""
    return {
        "id": module_id,
        "version": version,
        "description": f"{module_id} rules",
        "rules": list(rules),
    }


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def memory_safety_module() -> dict[str, Any]:
    """Module A: raw memory access needs a safety justification (R1)."""
    return make_module(
        "memory-safety",
        make_rule(
            "R1",
            effect="deny",
            all_of=["raw_memory_access"],
            none_of=["safety_justification"],
        ),
    )


@pytest.fixture
def legacy_module() -> dict[str, Any]:
    """Module B: raw memory access is allowed (R2)."""
    return make_module(
        "legacy-drivers",
        make_rule("R2", effect="allow", all_of=["raw_memory_access"]),
    )


@pytest.fixture
def write_module(temp_dir: Path) -> Callable[[dict[str, Any], str], Path]:
    """Return a helper that writes a module definition as a YAML file."""

    def _write(module: dict[str, Any], name: str | None = None) -> Path:
        path = temp_dir / (name or f"{module['id']}.yaml")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.safe_dump(module, sort_keys=False))
        return path

    return _write


@pytest.fixture
def store() -> ModuleStore:
    """Create an empty module store."""
    return ModuleStore()


@pytest.fixture
def db_path(temp_dir: Path) -> Path:
    """Path for a temporary audit log."""
    return temp_dir / "audit.db"


@pytest.fixture
def engine(db_path: Path) -> Generator[ComplianceEngine, None, None]:
    """Create an engine with no modules loaded."""
    with ComplianceEngine(db_path=db_path) as eng:
        yield eng


@pytest.fixture
def loaded_engine(
    engine: ComplianceEngine,
    memory_safety_module: dict[str, Any],
    legacy_module: dict[str, Any],
) -> ComplianceEngine:
    """Engine with the memory-safety and legacy-drivers modules active."""
    engine.load_modules([memory_safety_module, legacy_module])
    return engine


@pytest.fixture
def raw_memory_request() -> RequestDescriptor:
    """Request declaring raw memory access without a justification."""
    return RequestDescriptor(request_id="req-raw", tags=["raw_memory_access"])


@pytest.fixture
def justified_request() -> RequestDescriptor:
    """Request declaring raw memory access with a safety justification."""
    return RequestDescriptor(
        request_id="req-justified",
        tags=["raw_memory_access", "safety_justification"],
    )
