"""
Policy evaluation for Strata.

This package holds the decision logic of the engine:

    - ConflictResolver: Evaluates every rule and picks one outcome
    - VerdictComposer: Turns the outcome into a cited, structured verdict

Both are stateless and side-effect free. They must be:
    - Deterministic: Same request and stack always produce the same verdict
    - Total: Every request gets exactly one outcome
    - Traceable: Every non-accept verdict cites the rules behind it
"""

from strata.policy.composer import VerdictComposer, render_instruction
from strata.policy.resolver import ConflictResolver, Outcome, Resolution

__all__ = [
    "ConflictResolver",
    "Outcome",
    "Resolution",
    "VerdictComposer",
    "render_instruction",
]
