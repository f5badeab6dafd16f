"""
Rule module source schema definitions.

This module defines the Pydantic models for the persisted form of a rule
module (one YAML file per module):
- RuleSource: One rule as written by the external rule compiler
- RuleModuleSource: Module header plus its raw rule definitions

Rules are kept raw on the module source so that each one is validated on
its own and a malformed rule is reported by id instead of failing the whole
file with one opaque schema error.

Example module file:

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
        restrictiveness: strict
        escalations:
          - when:
              targets:
                any_of: [interrupt_handler]
            restrictiveness: forbid
"""

import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from strata.schema import IDENTIFIER_PATTERN, ConditionSet, Effect, Escalation, Restrictiveness


# =============================================================================
# Rule Source
# =============================================================================


class RuleSource(BaseModel):
    """
    Source form of a single rule.

    Attributes:
        id: Stable rule identifier
        effect: allow, deny or require_clarification
        citation: Section reference shown in verdicts
        text: Exact rule statement
        when: Conditions that must all hold
        restrictiveness: Level reported for a plain match
        escalations: Conditional restrictiveness increases
        remedy: Optional instruction template for refusals
        description: Optional longer explanation
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., min_length=1)
    effect: Effect
    citation: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1)
    when: ConditionSet
    restrictiveness: Restrictiveness = Restrictiveness.STRICT
    escalations: list[Escalation] = Field(default_factory=list)
    remedy: str | None = None
    description: str | None = None


# =============================================================================
# Module Source
# =============================================================================


class RuleModuleSource(BaseModel):
    """
    Source form of a rule module.

    Attributes:
        id: Module identifier
        version: Semantic version string (e.g., "1.0.0")
        description: What this module covers
        rules: Raw rule definitions, compiled one by one at load time
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., min_length=1, max_length=64)
    version: str = Field(default="1.0.0")
    description: str = ""
    rules: list[dict[str, Any]] = Field(default_factory=list)

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Validate module id format."""
        if not IDENTIFIER_PATTERN.match(v):
            msg = (
                f"Invalid module id: {v}. "
                "Must start with a letter and contain only letters, digits, "
                "dots, hyphens and underscores."
            )
            raise ValueError(msg)
        return v

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Validate semantic version format."""
        if not re.match(r"^\d+\.\d+\.\d+(-[a-zA-Z0-9.]+)?$", v):
            msg = f"Invalid version format: {v}. Expected semver (e.g., '1.0.0')"
            raise ValueError(msg)
        return v


def load_module_source(path: Path | str) -> RuleModuleSource:
    """
    Load a module source from a YAML file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValidationError: If the YAML doesn't match the schema
    """
    path = Path(path)
    with path.open() as f:
        data = yaml.safe_load(f)

    return RuleModuleSource.model_validate(data)


def load_module_source_from_string(content: str) -> RuleModuleSource:
    """Load a module source from a YAML string."""
    data = yaml.safe_load(content)
    return RuleModuleSource.model_validate(data)
