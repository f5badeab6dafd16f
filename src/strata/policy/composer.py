"""
Verdict Composer for Strata.

Turns a Resolution into one of the three Verdict variants. For refusals and
escalations it also renders a Recommendation: which module and section an
instruction update belongs in, and the exact text to append. The caller's
instruction-update workflow (refuse, append instruction, resubmit) runs
outside the engine; the composer only proposes the text.

Instruction text comes from the primary rule's `remedy` template when it has
one, otherwise from the default template for the outcome. Templates are
Jinja2 with StrictUndefined and see:
    - rule: the primary cited rule (first non-allow rule in citation order)
    - rules: every cited rule, in citation order
    - descriptor: the request
    - outcome: "refused" or "escalate_for_clarification"
    - terms: descriptor values the cited rules test for, sorted

The composer never touches the Module Store. Its output depends only on the
resolution and the snapshot it was computed against.
"""

from __future__ import annotations

from functools import lru_cache
from typing import TYPE_CHECKING, Any

from jinja2 import Environment, StrictUndefined, Template

from strata.errors import DanglingCitationError
from strata.policy.resolver import Outcome, Resolution
from strata.schema import (
    Accepted,
    Effect,
    EscalateForClarification,
    Recommendation,
    Refused,
    RequestDescriptor,
    Rule,
    Verdict,
)

if TYPE_CHECKING:
    from strata.modules.store import ModuleStack


DEFAULT_REFUSAL_TEMPLATE = (
    "Under {{ rule.citation }}: requests declaring "
    "{{ terms | join(', ') if terms else 'these constructs' }} are authorized "
    "as an explicit exception to {{ rules | map(attribute='id') | join(', ') }}."
)

DEFAULT_ESCALATION_TEMPLATE = (
    "Under {{ rule.citation }}: for requests declaring "
    "{{ terms | join(', ') if terms else 'these constructs' }}, state which of "
    "{{ rules | map(attribute='id') | join(', ') }} governs."
)


@lru_cache(maxsize=1)
def template_environment() -> Environment:
    """Jinja2 environment shared by every instruction template."""
    return Environment(
        undefined=StrictUndefined,
        autoescape=False,
        keep_trailing_newline=False,
    )


@lru_cache(maxsize=256)
def _compile(source: str) -> Template:
    return template_environment().from_string(source)


def relevant_terms(rules: tuple[Rule, ...] | list[Rule], descriptor: RequestDescriptor) -> list[str]:
    """Descriptor values that the rules' required conditions refer to."""
    terms = set()
    for rule in rules:
        for descriptor_field, condition in rule.predicate.when.conditions():
            present = set(descriptor.values_for(descriptor_field))
            terms.update(present & (set(condition.all_of) | set(condition.any_of)))
    return sorted(terms)


def render_instruction(
    template_source: str,
    rule: Rule,
    rules: tuple[Rule, ...] | list[Rule],
    descriptor: RequestDescriptor,
    outcome: str,
) -> str:
    """
    Render an instruction template.

    Raises:
        jinja2.TemplateError: If the template is invalid or uses an
            undefined variable
    """
    context: dict[str, Any] = {
        "rule": rule,
        "rules": list(rules),
        "descriptor": descriptor,
        "outcome": outcome,
        "terms": relevant_terms(rules, descriptor),
    }
    return _compile(template_source).render(**context).strip()


class VerdictComposer:
    """
    Builds verdicts from resolver output.

    Usage:
        composer = VerdictComposer()
        verdict = composer.compose(resolution, stack, descriptor)
    """

    def compose(
        self,
        resolution: Resolution,
        stack: ModuleStack,
        descriptor: RequestDescriptor,
    ) -> Verdict:
        """
        Build the verdict for a resolution.

        Args:
            resolution: Output of ConflictResolver.resolve()
            stack: The snapshot the resolution was computed against
            descriptor: The request being judged

        Returns:
            Accepted, Refused or EscalateForClarification

        Raises:
            DanglingCitationError: If a cited rule is missing from the snapshot
        """
        if resolution.outcome == Outcome.ACCEPT:
            return Accepted()

        rules = tuple(self._lookup(stack, match.rule_id) for match in resolution.cited)

        if resolution.outcome == Outcome.REFUSE:
            return Refused(
                violated_rules=rules,
                recommendation=self._recommend(
                    rules, descriptor, "refused", DEFAULT_REFUSAL_TEMPLATE
                ),
            )

        return EscalateForClarification(
            conflicting_rules=rules,
            recommendation=self._recommend(
                rules, descriptor, "escalate_for_clarification", DEFAULT_ESCALATION_TEMPLATE
            ),
        )

    def _lookup(self, stack: ModuleStack, rule_id: str) -> Rule:
        rule = stack.get_rule(rule_id)
        if rule is None:
            raise DanglingCitationError(rule_id=rule_id, stack_version=stack.version)
        return rule

    def _recommend(
        self,
        rules: tuple[Rule, ...],
        descriptor: RequestDescriptor,
        outcome: str,
        default_template: str,
    ) -> Recommendation:
        # Escalations may cite allow rules first; the instruction belongs
        # with the rule that blocked the request.
        primary = next((r for r in rules if r.effect != Effect.ALLOW), rules[0])
        template_source = primary.remedy or default_template
        instruction = render_instruction(template_source, primary, rules, descriptor, outcome)
        return Recommendation(
            target_module=primary.module_id,
            target_section=primary.citation,
            instruction=instruction,
            rule_ids=tuple(r.id for r in rules),
        )
