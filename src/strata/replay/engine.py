"""
Replay Engine for Strata.

Replays re-evaluate a recorded request against the currently active module
stack and compare the new verdict with the recorded one.

Use cases:
    - Check that an unchanged stack still reproduces a past decision
    - See which past decisions a module update would change
    - Debug a verdict by re-running it with DEBUG logging

Design Principles:
    - Audited: A replay is an evaluation, so it writes its own entry with
      mode='replay' and replay_of=<original entry>
    - Exact: Verdicts are compared by kind and by cited rule ids in order
    - Fail-safe: Mismatches are reported, or raised in strict mode
"""

from dataclasses import dataclass, field

from strata.engine import ComplianceEngine
from strata.errors import ReplayMismatchError
from strata.schema import AuditEntry, AuditMode


@dataclass
class ReplayResult:
    """
    Result of replaying one audit entry.

    Attributes:
        original: The recorded entry
        replayed: The entry written by the replay
        stack_changed: Whether the stack content differs from the original
        mismatches: Human-readable differences between the two verdicts
    """

    original: AuditEntry
    replayed: AuditEntry
    stack_changed: bool = False
    mismatches: list[str] = field(default_factory=list)

    @property
    def reproduced(self) -> bool:
        """Whether the replay produced the recorded verdict."""
        return not self.mismatches


def compare_entries(original: AuditEntry, replayed: AuditEntry) -> list[str]:
    """List the differences between two entries' verdicts."""
    mismatches = []
    if original.verdict.kind != replayed.verdict.kind:
        mismatches.append(
            f"verdict kind: expected {original.verdict.kind}, got {replayed.verdict.kind}"
        )

    expected_ids = [r.id for r in original.verdict.cited_rules]
    actual_ids = [r.id for r in replayed.verdict.cited_rules]
    if expected_ids != actual_ids:
        mismatches.append(f"citations: expected {expected_ids}, got {actual_ids}")
    elif original.verdict.cited_rules != replayed.verdict.cited_rules:
        mismatches.append("cited rule content changed")

    return mismatches


class ReplayEngine:
    """
    Replays recorded evaluations through a ComplianceEngine.

    Usage:
        replayer = ReplayEngine(engine)
        result = replayer.replay("3f2a9c01b7de")
        if not result.reproduced:
            print(result.mismatches)

    Attributes:
        engine: Engine whose active stack is used for the replay
    """

    def __init__(self, engine: ComplianceEngine) -> None:
        self.engine = engine

    def replay(self, entry_id: str, strict: bool = False) -> ReplayResult:
        """
        Replay one audit entry.

        Args:
            entry_id: Entry to replay
            strict: Raise on mismatch instead of reporting it

        Returns:
            ReplayResult comparing the two verdicts

        Raises:
            AuditEntryNotFoundError: If the entry does not exist
            NoActiveModulesError: If no stack is loaded
            ReplayMismatchError: In strict mode, if the verdict differs
        """
        original = self.engine.get_audit_entry(entry_id)
        replayed = self.engine.evaluate_and_record(
            original.descriptor,
            mode=AuditMode.REPLAY,
            replay_of=original.entry_id,
        )

        result = ReplayResult(
            original=original,
            replayed=replayed,
            stack_changed=original.evaluation.stack_hash != replayed.evaluation.stack_hash,
            mismatches=compare_entries(original, replayed),
        )

        if strict and not result.reproduced:
            raise ReplayMismatchError(entry_id=entry_id, mismatches=result.mismatches)

        return result
