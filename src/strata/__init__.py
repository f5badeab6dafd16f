"""
Strata - layered rule modules with cited, audited verdicts.

Strata judges pre-normalized requests against an ordered stack of rule
modules. It provides:
- Accept / refuse / escalate verdicts that cite the exact rules involved
- Atomic, versioned reloads of the module stack
- An append-only SQLite audit log of every evaluation
- Replay of recorded evaluations against a newer stack

Example usage:
    $ strata evaluate request.yaml -m modules/
    $ strata audit --since 2024-01-01
    $ strata replay <entry_id> -m modules/
"""

__version__ = "0.1.0"
__author__ = "Strata Contributors"

from strata.engine import ComplianceEngine
from strata.schema import (
    Accepted,
    EscalateForClarification,
    Refused,
    RequestDescriptor,
    Verdict,
)

__all__ = [
    "Accepted",
    "ComplianceEngine",
    "EscalateForClarification",
    "Refused",
    "RequestDescriptor",
    "Verdict",
    "__author__",
    "__version__",
]
