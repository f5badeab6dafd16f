"""
Conflict Resolver for Strata.

The resolver is the decision core of the engine. For one request and one
module-stack snapshot it:

    1. Evaluates every rule predicate (bounded by the number of rules)
    2. Collects every (rule, matched) pair into an EvaluationResult
    3. Partitions the matches by effect and picks exactly one outcome

Outcome rules, checked in order:
    - ALLOW and DENY/REQUIRE_CLARIFICATION both matched: escalate, citing
      every match. Opposed intents are never settled by picking a winner.
    - DENY matched and no REQUIRE_CLARIFICATION match is strictly more
      restrictive than the strongest DENY: refuse, citing every DENY.
    - DENY matched but outranked by a clarification: escalate, citing the
      DENY and REQUIRE_CLARIFICATION matches.
    - Only REQUIRE_CLARIFICATION matched: escalate, citing them.
    - Otherwise: accept.

Citations are ordered by descending restrictiveness, then module load order,
then rule id. The outcome itself never depends on module load order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from strata.schema import (
    Effect,
    EvaluationResult,
    RequestDescriptor,
    RuleMatch,
)

if TYPE_CHECKING:
    from strata.modules.store import ModuleStack

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    """Which verdict variant the matches call for."""

    ACCEPT = "accept"
    REFUSE = "refuse"
    ESCALATE = "escalate"


@dataclass(frozen=True)
class Resolution:
    """
    Resolver output handed to the Verdict Composer.

    Attributes:
        outcome: The chosen outcome
        cited: Matches to cite, already in citation order
        evaluation: The full evaluation the outcome was derived from
        reason: Short explanation for logs and reports
    """

    outcome: Outcome
    evaluation: EvaluationResult
    cited: tuple[RuleMatch, ...] = field(default_factory=tuple)
    reason: str = ""


def citation_order(matches: list[RuleMatch] | tuple[RuleMatch, ...]) -> tuple[RuleMatch, ...]:
    """Sort matches by descending restrictiveness, load order, rule id."""
    return tuple(sorted(matches, key=lambda m: m.citation_key))


class ConflictResolver:
    """
    Evaluates a request against a stack snapshot and resolves conflicts.

    The resolver holds no state; one instance can serve concurrent
    evaluations.

    Usage:
        resolver = ConflictResolver()
        evaluation = resolver.evaluate(descriptor, stack)
        resolution = resolver.resolve(evaluation)
    """

    def evaluate(
        self,
        descriptor: RequestDescriptor,
        stack: ModuleStack,
    ) -> EvaluationResult:
        """
        Evaluate every rule in the snapshot against the descriptor.

        Args:
            descriptor: The request being judged
            stack: The snapshot captured at evaluation start

        Returns:
            EvaluationResult with one RuleMatch per rule
        """
        results = []
        for module in stack.modules:
            for rule in module.rules:
                outcome = rule.evaluate(descriptor)
                results.append(
                    RuleMatch(
                        rule_id=rule.id,
                        module_id=module.id,
                        effect=rule.effect,
                        load_order=module.load_order,
                        matched=outcome.matched,
                        restrictiveness=outcome.restrictiveness,
                    )
                )
                if outcome.matched:
                    logger.debug(
                        "Rule %s (%s) matched request %s at %s",
                        rule.id,
                        rule.effect.value,
                        descriptor.request_id,
                        outcome.restrictiveness.value,
                    )

        return EvaluationResult(
            stack_version=stack.version,
            stack_hash=stack.hash,
            results=tuple(results),
        )

    def resolve(self, evaluation: EvaluationResult) -> Resolution:
        """
        Pick exactly one outcome for an evaluation.

        Args:
            evaluation: Output of evaluate()

        Returns:
            Resolution with the outcome and the ordered citations
        """
        allows = evaluation.matches_for(Effect.ALLOW)
        denies = evaluation.matches_for(Effect.DENY)
        clarifications = evaluation.matches_for(Effect.REQUIRE_CLARIFICATION)

        if allows and (denies or clarifications):
            return Resolution(
                outcome=Outcome.ESCALATE,
                evaluation=evaluation,
                cited=citation_order(evaluation.matches),
                reason="Matched rules have opposed effects",
            )

        if denies:
            strongest_deny = max(m.restrictiveness.rank for m in denies)
            outranking = [
                m for m in clarifications if m.restrictiveness.rank > strongest_deny
            ]
            if not outranking:
                return Resolution(
                    outcome=Outcome.REFUSE,
                    evaluation=evaluation,
                    cited=citation_order(denies),
                    reason=f"{len(denies)} deny rule(s) matched",
                )
            return Resolution(
                outcome=Outcome.ESCALATE,
                evaluation=evaluation,
                cited=citation_order(denies + clarifications),
                reason="A clarification requirement outranks the deny rules",
            )

        if clarifications:
            return Resolution(
                outcome=Outcome.ESCALATE,
                evaluation=evaluation,
                cited=citation_order(clarifications),
                reason="Matched rules require clarification",
            )

        reason = "Only allow rules matched" if allows else "No rules matched"
        return Resolution(outcome=Outcome.ACCEPT, evaluation=evaluation, reason=reason)
