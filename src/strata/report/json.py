"""
JSON report generator for Strata.

Generates structured JSON output for one audit entry, for programmatic
consumption and for attaching to instruction-update reviews.

Design Principles:
    - Complete data: The descriptor, every rule outcome and the verdict
    - Consistent schema: Same top-level keys for every verdict kind
    - ISO timestamps: Standard datetime format
"""

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from strata.config import DEFAULT_DB_PATH
from strata.schema import AuditEntry, Effect
from strata.store import AuditLog

REPORT_VERSION = "1.0"


def generate_json_report(
    entry_id: str,
    db_path: str | Path = DEFAULT_DB_PATH,
    indent: int = 2,
) -> str:
    """
    Generate a JSON report for an audit entry.

    Args:
        entry_id: ID of the entry to report on
        db_path: Path to the SQLite audit log
        indent: JSON indentation level (default: 2)

    Returns:
        JSON string with the full report

    Raises:
        ValueError: If the audit log or the entry is not found
    """
    report = build_report_dict(entry_id, db_path)
    return json.dumps(report, indent=indent, default=_json_serializer)


def build_report_dict(
    entry_id: str,
    db_path: str | Path = DEFAULT_DB_PATH,
) -> dict[str, Any]:
    """
    Build a report dictionary for an audit entry.

    Raises:
        ValueError: If the audit log or the entry is not found
    """
    return entry_to_dict(load_entry(entry_id, db_path))


def load_entry(entry_id: str, db_path: str | Path) -> AuditEntry:
    """
    Read one entry from an existing audit log.

    The log is never created: a missing file is reported like a missing entry.

    Raises:
        ValueError: If the log or the entry is not found
    """
    if not Path(db_path).exists():
        raise ValueError(f"Audit log not found: {db_path}")

    with AuditLog(db_path) as audit:
        entry = audit.get_entry(entry_id)
    if entry is None:
        raise ValueError(f"Audit entry not found: {entry_id}")
    return entry


def entry_to_dict(entry: AuditEntry) -> dict[str, Any]:
    """Serialize an entry into the report structure."""
    verdict = entry.verdict.model_dump(mode="json")
    return {
        "report_version": REPORT_VERSION,
        "generated_at": datetime.now(UTC).isoformat(),
        "entry": {
            "entry_id": entry.entry_id,
            "sequence": entry.sequence,
            "recorded_at": entry.recorded_at.isoformat(),
            "mode": entry.mode.value,
            "replay_of": entry.replay_of,
        },
        "stack": {
            "version": entry.evaluation.stack_version,
            "hash": entry.evaluation.stack_hash,
        },
        "descriptor": entry.descriptor.model_dump(mode="json"),
        "verdict": verdict,
        "rules": [r.model_dump(mode="json") for r in entry.evaluation.results],
        "summary": _build_summary(entry),
    }


def _build_summary(entry: AuditEntry) -> dict[str, Any]:
    """Count rule outcomes per effect."""
    matches = entry.evaluation.matches
    return {
        "verdict": entry.verdict.kind,
        "cited_rule_ids": [r.id for r in entry.verdict.cited_rules],
        "counts": {
            "rules_evaluated": len(entry.evaluation.results),
            "rules_matched": len(matches),
            **{effect.value: len(entry.evaluation.matches_for(effect)) for effect in Effect},
        },
    }


def _json_serializer(obj: Any) -> Any:
    """Custom JSON serializer for non-standard types."""
    if isinstance(obj, datetime):
        return obj.isoformat()
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")
