"""
Replay module for Strata.

Re-evaluates recorded requests against the current module stack.

How it works:
    1. Load the original audit entry
    2. Re-evaluate its descriptor through the engine
    3. Compare verdict kind and citation order
    4. Report (or raise on) any mismatch

Replays are stored as new audit entries with mode='replay', creating
a full audit trail of both original and replayed evaluations.

Example:
    from strata.replay import ReplayEngine

    result = ReplayEngine(engine).replay("3f2a9c01b7de")
    print("reproduced" if result.reproduced else result.mismatches)
"""

from strata.replay.engine import ReplayEngine, ReplayResult, compare_entries

__all__ = [
    "ReplayEngine",
    "ReplayResult",
    "compare_entries",
]
