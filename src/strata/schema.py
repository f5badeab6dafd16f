"""
Schema definitions for Strata.

This module defines the Pydantic models used throughout Strata:
- Condition/ConditionSet/Predicate: Structured, side-effect-free rule predicates
- Rule/RuleModule: Compiled, immutable rules and the modules that own them
- RequestDescriptor: The pre-normalized request being judged
- RuleMatch/EvaluationResult: What the resolver saw for one request
- Accepted/Refused/EscalateForClarification: The three verdict variants
- AuditEntry: The persisted record of one evaluation

Design Decisions:
    - All models are frozen and forbid unknown fields
    - Tag collections are normalized to sorted, de-duplicated tuples so that
      equal requests serialize identically
    - Verdicts are a discriminated union on `kind` so stored verdicts
      round-trip losslessly through JSON
"""

import re
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Literal, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_.-]*$")


def generate_id() -> str:
    """Generate a short unique identifier."""
    return uuid.uuid4().hex[:12]


def normalize_tags(value: Any) -> tuple[str, ...]:
    """
    Normalize a tag collection to a sorted tuple of unique, stripped strings.

    Raises:
        ValueError: If value is a bare string or contains blank/non-string items
    """
    if value is None:
        return ()
    if isinstance(value, str):
        msg = f"Expected a list of tags, got a string: {value!r}"
        raise ValueError(msg)
    tags = set()
    for item in value:
        if not isinstance(item, str):
            msg = f"Tags must be strings, got {type(item).__name__}"
            raise ValueError(msg)
        item = item.strip()
        if not item:
            msg = "Tags must not be blank"
            raise ValueError(msg)
        tags.add(item)
    return tuple(sorted(tags))


# =============================================================================
# Enums
# =============================================================================


class Effect(str, Enum):
    """What a rule asks for when it matches."""

    ALLOW = "allow"
    DENY = "deny"
    REQUIRE_CLARIFICATION = "require_clarification"


class Restrictiveness(str, Enum):
    """
    Totally ordered severity scale used for tie-breaking.

    PERMISSIVE < CAUTIOUS < STRICT < FORBID. Compare through `rank`.
    """

    PERMISSIVE = "permissive"
    CAUTIOUS = "cautious"
    STRICT = "strict"
    FORBID = "forbid"

    @property
    def rank(self) -> int:
        """Position on the scale, 0 for the least restrictive level."""
        return _RESTRICTIVENESS_RANK[self]


_RESTRICTIVENESS_RANK = {level: index for index, level in enumerate(Restrictiveness)}


def most_restrictive(levels: list[Restrictiveness]) -> Restrictiveness:
    """Return the highest level in a non-empty list."""
    return max(levels, key=lambda level: level.rank)


class DescriptorField(str, Enum):
    """Descriptor fields a condition can test."""

    TAGS = "tags"
    TARGETS = "targets"
    UNSAFE_USES = "unsafe_uses"


class AuditMode(str, Enum):
    """Why an audit entry was written."""

    EVALUATE = "evaluate"
    REPLAY = "replay"


# =============================================================================
# Request Descriptor
# =============================================================================


class RequestDescriptor(BaseModel):
    """
    Caller-supplied, immutable snapshot of a work request.

    Attributes:
        request_id: Caller reference (generated if omitted)
        tags: Declared domain tags
        targets: Declared target constructs (e.g. "fixed_point_arithmetic")
        unsafe_uses: Declared unsafe-use flags
        rationale: Free-form text kept for audit display, never matched
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    request_id: str = Field(default_factory=generate_id, min_length=1)
    tags: tuple[str, ...] = Field(default=(), description="Declared domain tags")
    targets: tuple[str, ...] = Field(default=(), description="Declared target constructs")
    unsafe_uses: tuple[str, ...] = Field(default=(), description="Declared unsafe-use flags")
    rationale: str = Field(default="", description="Audit display only")

    @field_validator("tags", "targets", "unsafe_uses", mode="before")
    @classmethod
    def normalize_tag_fields(cls, v: Any) -> tuple[str, ...]:
        return normalize_tags(v)

    def values_for(self, descriptor_field: DescriptorField) -> tuple[str, ...]:
        """Return the tag tuple for a descriptor field."""
        return getattr(self, descriptor_field.value)


# =============================================================================
# Predicates
# =============================================================================


class Condition(BaseModel):
    """
    A tag-set test over one descriptor field.

    Holds when every `all_of` tag is present, at least one `any_of` tag is
    present (if any are listed), and no `none_of` tag is present.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    all_of: tuple[str, ...] = ()
    any_of: tuple[str, ...] = ()
    none_of: tuple[str, ...] = ()

    @field_validator("all_of", "any_of", "none_of", mode="before")
    @classmethod
    def normalize_tag_fields(cls, v: Any) -> tuple[str, ...]:
        return normalize_tags(v)

    @property
    def is_empty(self) -> bool:
        return not (self.all_of or self.any_of or self.none_of)

    @property
    def contradictions(self) -> tuple[str, ...]:
        """Tags that are both required and forbidden."""
        return tuple(sorted(set(self.all_of) & set(self.none_of)))

    def holds(self, values: tuple[str, ...]) -> bool:
        present = set(values)
        if any(tag not in present for tag in self.all_of):
            return False
        if self.any_of and not any(tag in present for tag in self.any_of):
            return False
        return not any(tag in present for tag in self.none_of)


class ConditionSet(BaseModel):
    """Conjunction of conditions, at most one per descriptor field."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    tags: Condition | None = None
    targets: Condition | None = None
    unsafe_uses: Condition | None = None

    def conditions(self) -> list[tuple[DescriptorField, Condition]]:
        """Non-empty conditions in field order."""
        pairs = []
        for descriptor_field in DescriptorField:
            condition = getattr(self, descriptor_field.value)
            if condition is not None and not condition.is_empty:
                pairs.append((descriptor_field, condition))
        return pairs

    @property
    def is_empty(self) -> bool:
        return not self.conditions()

    def holds(self, descriptor: RequestDescriptor) -> bool:
        return all(
            condition.holds(descriptor.values_for(descriptor_field))
            for descriptor_field, condition in self.conditions()
        )


class Escalation(BaseModel):
    """Raises a match's restrictiveness when extra conditions also hold."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    when: ConditionSet
    restrictiveness: Restrictiveness


@dataclass(frozen=True)
class PredicateOutcome:
    """Result of evaluating a predicate: no match, or a match with a level."""

    matched: bool
    restrictiveness: Restrictiveness | None = None

    @classmethod
    def no_match(cls) -> "PredicateOutcome":
        return cls(matched=False)

    @classmethod
    def match(cls, restrictiveness: Restrictiveness) -> "PredicateOutcome":
        return cls(matched=True, restrictiveness=restrictiveness)


class Predicate(BaseModel):
    """
    Structured, pure predicate over a RequestDescriptor.

    Attributes:
        when: Conditions that must all hold for the rule to match
        restrictiveness: Level reported for a plain match
        escalations: Extra conditions that raise the reported level
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    when: ConditionSet
    restrictiveness: Restrictiveness = Restrictiveness.STRICT
    escalations: tuple[Escalation, ...] = ()

    def evaluate(self, descriptor: RequestDescriptor) -> PredicateOutcome:
        if not self.when.holds(descriptor):
            return PredicateOutcome.no_match()
        levels = [self.restrictiveness]
        levels.extend(
            step.restrictiveness
            for step in self.escalations
            if step.when.holds(descriptor)
        )
        return PredicateOutcome.match(most_restrictive(levels))


# =============================================================================
# Rules and Modules
# =============================================================================


class Rule(BaseModel):
    """
    A single compiled rule.

    Attributes:
        id: Stable identifier, unique across the whole module stack
        module_id: Owning module
        effect: ALLOW, DENY or REQUIRE_CLARIFICATION
        predicate: When the rule fires, and how restrictively
        citation: Human-readable section reference
        text: The exact rule statement
        remedy: Optional Jinja2 template for the instruction to append
        description: Optional longer explanation
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., min_length=1)
    module_id: str = Field(..., min_length=1)
    effect: Effect
    predicate: Predicate
    citation: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1)
    remedy: str | None = None
    description: str | None = None

    @field_validator("id", "module_id")
    @classmethod
    def validate_identifier(cls, v: str) -> str:
        if not IDENTIFIER_PATTERN.match(v):
            msg = f"Invalid identifier: {v!r}"
            raise ValueError(msg)
        return v

    @field_validator("citation", "text")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            msg = "must not be blank"
            raise ValueError(msg)
        return v

    def evaluate(self, descriptor: RequestDescriptor) -> PredicateOutcome:
        return self.predicate.evaluate(descriptor)


class RuleModule(BaseModel):
    """
    A named, versioned, ordered group of rules loaded as a unit.

    Attributes:
        id: Module identifier
        version: Module version string
        description: What the module covers
        load_order: Position in the declared stack (0-based)
        rules: Rules in declaration order (never empty)
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., min_length=1)
    version: str = Field(default="1.0.0")
    description: str = ""
    load_order: int = Field(..., ge=0)
    rules: tuple[Rule, ...] = Field(..., min_length=1)


# =============================================================================
# Evaluation Models
# =============================================================================


class RuleMatch(BaseModel):
    """One rule's outcome for one request."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    rule_id: str
    module_id: str
    effect: Effect
    load_order: int = Field(..., ge=0)
    matched: bool
    restrictiveness: Restrictiveness | None = None

    @property
    def citation_key(self) -> tuple[int, int, str]:
        """Sort key: descending restrictiveness, load order, rule id."""
        rank = self.restrictiveness.rank if self.restrictiveness else -1
        return (-rank, self.load_order, self.rule_id)


class EvaluationResult(BaseModel):
    """
    Every (rule, matched) pair for one request against one stack snapshot.

    Attributes:
        stack_version: Version of the snapshot that was evaluated
        stack_hash: Content hash of that snapshot
        results: One RuleMatch per rule, in load order then declaration order
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    stack_version: int = Field(..., ge=0)
    stack_hash: str
    results: tuple[RuleMatch, ...] = ()

    @property
    def matches(self) -> tuple[RuleMatch, ...]:
        return tuple(r for r in self.results if r.matched)

    def matches_for(self, effect: Effect) -> tuple[RuleMatch, ...]:
        return tuple(r for r in self.results if r.matched and r.effect == effect)


# =============================================================================
# Verdicts
# =============================================================================


class Recommendation(BaseModel):
    """
    Machine-checkable instruction update suggested with a non-accept verdict.

    Attributes:
        target_module: Module the instruction should be appended to
        target_section: Section (citation) the instruction belongs under
        instruction: Exact rule text to append
        rule_ids: Rules this recommendation answers
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    target_module: str
    target_section: str
    instruction: str = Field(..., min_length=1)
    rule_ids: tuple[str, ...] = Field(..., min_length=1)


class Accepted(BaseModel):
    """Every matching rule allows the request, or nothing matched."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["accepted"] = "accepted"

    @property
    def cited_rules(self) -> tuple[Rule, ...]:
        return ()


class Refused(BaseModel):
    """At least one DENY rule fired and nothing opposed it."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["refused"] = "refused"
    violated_rules: tuple[Rule, ...] = Field(..., min_length=1)
    recommendation: Recommendation

    @property
    def cited_rules(self) -> tuple[Rule, ...]:
        return self.violated_rules


class EscalateForClarification(BaseModel):
    """Matched rules disagree, or a rule explicitly asks for clarification."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["escalate_for_clarification"] = "escalate_for_clarification"
    conflicting_rules: tuple[Rule, ...] = Field(..., min_length=1)
    recommendation: Recommendation

    @property
    def cited_rules(self) -> tuple[Rule, ...]:
        return self.conflicting_rules


Verdict = Annotated[
    Union[Accepted, Refused, EscalateForClarification],
    Field(discriminator="kind"),
]

verdict_adapter: TypeAdapter[Verdict] = TypeAdapter(Verdict)


# =============================================================================
# Audit Models
# =============================================================================


class AuditEntry(BaseModel):
    """
    The persisted record of one evaluation.

    Attributes:
        entry_id: Unique identifier
        sequence: Arrival order, breaks timestamp ties
        recorded_at: UTC time assigned at append
        mode: Fresh evaluation or replay
        replay_of: Entry id being replayed (replay mode only)
        descriptor: The request that was judged
        evaluation: Every rule outcome
        verdict: The returned verdict
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    entry_id: str
    sequence: int = Field(..., ge=0)
    recorded_at: datetime
    mode: AuditMode = AuditMode.EVALUATE
    replay_of: str | None = None
    descriptor: RequestDescriptor
    evaluation: EvaluationResult
    verdict: Verdict


# =============================================================================
# YAML Loading Helpers
# =============================================================================


def load_descriptor(path: Path | str) -> RequestDescriptor:
    """
    Load a request descriptor from a YAML (or JSON) file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValidationError: If the content doesn't match the schema
    """
    path = Path(path)
    with path.open() as f:
        data = yaml.safe_load(f)

    return RequestDescriptor.model_validate(data or {})


def load_descriptor_from_string(content: str) -> RequestDescriptor:
    """Load a request descriptor from a YAML string."""
    data = yaml.safe_load(content)
    return RequestDescriptor.model_validate(data or {})
