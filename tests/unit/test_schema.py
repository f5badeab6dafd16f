"""
Unit tests for schema validation.

Tests cover:
- Tag normalization on descriptors and conditions
- Condition / ConditionSet / Predicate evaluation
- Restrictiveness ordering
- Verdict variants and their JSON round-trip
- Descriptor loading helpers
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from strata.schema import (
    Accepted,
    Condition,
    ConditionSet,
    DescriptorField,
    Effect,
    EscalateForClarification,
    Escalation,
    EvaluationResult,
    Predicate,
    Recommendation,
    Refused,
    RequestDescriptor,
    Restrictiveness,
    Rule,
    RuleMatch,
    generate_id,
    load_descriptor,
    load_descriptor_from_string,
    most_restrictive,
    normalize_tags,
    verdict_adapter,
)


def _rule(rule_id: str = "R1", effect: Effect = Effect.DENY) -> Rule:
    return Rule(
        id=rule_id,
        module_id="mod",
        effect=effect,
        predicate=Predicate(when=ConditionSet(tags=Condition(all_of=["x"]))),
        citation="§1",
        text="Do not x.",
    )


# =============================================================================
# Tag Normalization
# =============================================================================


class TestNormalizeTags:
    """Tests for normalize_tags()."""

    def test_sorts_and_deduplicates(self) -> None:
        assert normalize_tags(["b", "a", "b"]) == ("a", "b")

    def test_strips_whitespace(self) -> None:
        assert normalize_tags([" a ", "a"]) == ("a",)

    def test_none_is_empty(self) -> None:
        assert normalize_tags(None) == ()

    def test_bare_string_rejected(self) -> None:
        """A bare string would otherwise be split into characters."""
        with pytest.raises(ValueError, match="got a string"):
            normalize_tags("raw_memory_access")

    def test_blank_tag_rejected(self) -> None:
        with pytest.raises(ValueError, match="blank"):
            normalize_tags(["ok", "  "])

    def test_non_string_rejected(self) -> None:
        with pytest.raises(ValueError, match="strings"):
            normalize_tags(["ok", 3])

    def test_generate_id_format(self) -> None:
        first = generate_id()
        assert len(first) == 12
        assert first != generate_id()


# =============================================================================
# Request Descriptor
# =============================================================================


class TestRequestDescriptor:
    """Tests for RequestDescriptor."""

    def test_defaults(self) -> None:
        descriptor = RequestDescriptor()
        assert descriptor.tags == ()
        assert descriptor.targets == ()
        assert descriptor.unsafe_uses == ()
        assert len(descriptor.request_id) == 12

    def test_equal_requests_serialize_identically(self) -> None:
        a = RequestDescriptor(request_id="r", tags=["b", "a"])
        b = RequestDescriptor(request_id="r", tags=["a", "b", "a"])
        assert a == b
        assert a.model_dump_json() == b.model_dump_json()

    def test_values_for(self) -> None:
        descriptor = RequestDescriptor(targets=["interrupt_handler"])
        assert descriptor.values_for(DescriptorField.TARGETS) == ("interrupt_handler",)
        assert descriptor.values_for(DescriptorField.TAGS) == ()

    def test_is_frozen(self) -> None:
        descriptor = RequestDescriptor(tags=["a"])
        with pytest.raises(ValidationError):
            descriptor.tags = ("b",)

    def test_unknown_field_rejected(self) -> None:
        with pytest.raises(ValidationError):
            RequestDescriptor(tag=["a"])


# =============================================================================
# Predicates
# =============================================================================


class TestCondition:
    """Tests for Condition.holds()."""

    def test_all_of(self) -> None:
        condition = Condition(all_of=["a", "b"])
        assert condition.holds(("a", "b", "c"))
        assert not condition.holds(("a",))

    def test_any_of(self) -> None:
        condition = Condition(any_of=["a", "b"])
        assert condition.holds(("b",))
        assert not condition.holds(("c",))

    def test_none_of(self) -> None:
        condition = Condition(none_of=["a"])
        assert condition.holds(())
        assert not condition.holds(("a",))

    def test_combined(self) -> None:
        condition = Condition(all_of=["raw_memory_access"], none_of=["safety_justification"])
        assert condition.holds(("raw_memory_access",))
        assert not condition.holds(("raw_memory_access", "safety_justification"))

    def test_contradictions(self) -> None:
        condition = Condition(all_of=["a", "b"], none_of=["b"])
        assert condition.contradictions == ("b",)

    def test_is_empty(self) -> None:
        assert Condition().is_empty
        assert not Condition(none_of=["a"]).is_empty


class TestConditionSet:
    """Tests for ConditionSet."""

    def test_conjunction_across_fields(self) -> None:
        conditions = ConditionSet(
            tags=Condition(all_of=["a"]),
            targets=Condition(any_of=["t"]),
        )
        assert conditions.holds(RequestDescriptor(tags=["a"], targets=["t"]))
        assert not conditions.holds(RequestDescriptor(tags=["a"]))

    def test_empty_conditions_are_ignored(self) -> None:
        conditions = ConditionSet(tags=Condition(), unsafe_uses=Condition(all_of=["u"]))
        assert conditions.conditions() == [
            (DescriptorField.UNSAFE_USES, Condition(all_of=["u"])),
        ]

    def test_is_empty(self) -> None:
        assert ConditionSet().is_empty
        assert ConditionSet(tags=Condition()).is_empty


class TestPredicate:
    """Tests for Predicate.evaluate()."""

    def test_no_match(self) -> None:
        predicate = Predicate(when=ConditionSet(tags=Condition(all_of=["a"])))
        outcome = predicate.evaluate(RequestDescriptor())
        assert not outcome.matched
        assert outcome.restrictiveness is None

    def test_plain_match_reports_base_level(self) -> None:
        predicate = Predicate(
            when=ConditionSet(tags=Condition(all_of=["a"])),
            restrictiveness=Restrictiveness.CAUTIOUS,
        )
        outcome = predicate.evaluate(RequestDescriptor(tags=["a"]))
        assert outcome.matched
        assert outcome.restrictiveness == Restrictiveness.CAUTIOUS

    def test_escalation_raises_level(self) -> None:
        predicate = Predicate(
            when=ConditionSet(tags=Condition(all_of=["a"])),
            restrictiveness=Restrictiveness.STRICT,
            escalations=(
                Escalation(
                    when=ConditionSet(targets=Condition(any_of=["isr"])),
                    restrictiveness=Restrictiveness.FORBID,
                ),
            ),
        )
        plain = predicate.evaluate(RequestDescriptor(tags=["a"]))
        escalated = predicate.evaluate(RequestDescriptor(tags=["a"], targets=["isr"]))
        assert plain.restrictiveness == Restrictiveness.STRICT
        assert escalated.restrictiveness == Restrictiveness.FORBID

    def test_adding_tags_never_lowers_level(self) -> None:
        """Escalations only raise; a superset request is at least as strict."""
        predicate = Predicate(
            when=ConditionSet(tags=Condition(all_of=["a"])),
            restrictiveness=Restrictiveness.CAUTIOUS,
            escalations=(
                Escalation(
                    when=ConditionSet(tags=Condition(all_of=["b"])),
                    restrictiveness=Restrictiveness.STRICT,
                ),
            ),
        )
        base = predicate.evaluate(RequestDescriptor(tags=["a"]))
        more = predicate.evaluate(RequestDescriptor(tags=["a", "b"]))
        assert more.restrictiveness.rank >= base.restrictiveness.rank


# =============================================================================
# Restrictiveness
# =============================================================================


class TestRestrictiveness:
    """Tests for the restrictiveness scale."""

    def test_total_order(self) -> None:
        ranks = [level.rank for level in Restrictiveness]
        assert ranks == sorted(ranks)
        assert Restrictiveness.PERMISSIVE.rank < Restrictiveness.FORBID.rank

    def test_most_restrictive(self) -> None:
        levels = [Restrictiveness.CAUTIOUS, Restrictiveness.FORBID, Restrictiveness.STRICT]
        assert most_restrictive(levels) == Restrictiveness.FORBID


# =============================================================================
# Rules and Evaluation
# =============================================================================


class TestRule:
    """Tests for Rule validation."""

    def test_invalid_identifier(self) -> None:
        with pytest.raises(ValidationError):
            Rule(
                id="1-bad id",
                module_id="mod",
                effect=Effect.DENY,
                predicate=Predicate(when=ConditionSet(tags=Condition(all_of=["x"]))),
                citation="§1",
                text="t",
            )

    def test_blank_text_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Rule(
                id="R1",
                module_id="mod",
                effect=Effect.DENY,
                predicate=Predicate(when=ConditionSet(tags=Condition(all_of=["x"]))),
                citation="§1",
                text="   ",
            )


class TestEvaluationResult:
    """Tests for EvaluationResult helpers."""

    def test_matches_and_filter(self) -> None:
        evaluation = EvaluationResult(
            stack_version=1,
            stack_hash="h",
            results=(
                RuleMatch(rule_id="A", module_id="m", effect=Effect.DENY, load_order=0,
                          matched=True, restrictiveness=Restrictiveness.STRICT),
                RuleMatch(rule_id="B", module_id="m", effect=Effect.ALLOW, load_order=0,
                          matched=False),
            ),
        )
        assert [m.rule_id for m in evaluation.matches] == ["A"]
        assert evaluation.matches_for(Effect.ALLOW) == ()

    def test_citation_key(self) -> None:
        match = RuleMatch(rule_id="A", module_id="m", effect=Effect.DENY, load_order=2,
                          matched=True, restrictiveness=Restrictiveness.FORBID)
        assert match.citation_key == (-3, 2, "A")


# =============================================================================
# Verdicts
# =============================================================================


class TestVerdicts:
    """Tests for the verdict union."""

    def test_accepted_cites_nothing(self) -> None:
        assert Accepted().cited_rules == ()

    def test_refused_requires_a_rule(self) -> None:
        recommendation = Recommendation(
            target_module="mod", target_section="§1", instruction="x", rule_ids=("R1",)
        )
        with pytest.raises(ValidationError):
            Refused(violated_rules=(), recommendation=recommendation)

    def test_round_trip_keeps_variant(self) -> None:
        rule = _rule()
        verdict = EscalateForClarification(
            conflicting_rules=(rule,),
            recommendation=Recommendation(
                target_module="mod", target_section="§1", instruction="Say which.",
                rule_ids=("R1",),
            ),
        )
        restored = verdict_adapter.validate_json(verdict_adapter.dump_json(verdict))
        assert isinstance(restored, EscalateForClarification)
        assert restored == verdict

    def test_unknown_kind_rejected(self) -> None:
        with pytest.raises(ValidationError):
            verdict_adapter.validate_python({"kind": "maybe"})


# =============================================================================
# Loading Helpers
# =============================================================================


class TestLoadDescriptor:
    """Tests for descriptor loading."""

    def test_from_string(self) -> None:
        descriptor = load_descriptor_from_string(
            """
request_id: abc
tags: [raw_memory_access]
targets: [interrupt_handler]
rationale: DMA buffer setup
"""
        )
        assert descriptor.request_id == "abc"
        assert descriptor.tags == ("raw_memory_access",)
        assert descriptor.rationale == "DMA buffer setup"

    def test_empty_string_gives_defaults(self) -> None:
        assert load_descriptor_from_string("").tags == ()

    def test_from_file(self, temp_dir: Path) -> None:
        path = temp_dir / "request.yaml"
        path.write_text("tags: [a, b]\n")
        assert load_descriptor(path).tags == ("a", "b")

    def test_missing_file(self, temp_dir: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_descriptor(temp_dir / "missing.yaml")
