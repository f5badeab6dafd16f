"""
Integration tests for the Report module.

Tests cover:
- JSON report generation
- Console report generation
- Report content verification
"""

import json
from io import StringIO
from pathlib import Path
from typing import Any

import pytest
from rich.console import Console

from strata.engine import ComplianceEngine
from strata.report import build_report_dict, generate_console_report, generate_json_report
from strata.replay import ReplayEngine
from strata.schema import RequestDescriptor


@pytest.fixture
def recorded_entries(
    loaded_engine: ComplianceEngine,
    raw_memory_request: RequestDescriptor,
    justified_request: RequestDescriptor,
    db_path: Path,
) -> dict[str, Any]:
    """Record one escalation, one acceptance and one replay."""
    escalated = loaded_engine.evaluate_and_record(raw_memory_request)
    accepted = loaded_engine.evaluate_and_record(justified_request)
    replayed = ReplayEngine(loaded_engine).replay(escalated.entry_id).replayed
    return {
        "escalated": escalated,
        "accepted": accepted,
        "replayed": replayed,
        "db_path": db_path,
    }


def render(entry_id: str, db_path: Path, verbose: bool = False) -> str:
    output = StringIO()
    generate_console_report(
        entry_id, db_path, console=Console(file=output, width=160), verbose=verbose
    )
    return output.getvalue()


class TestJsonReport:
    """Tests for JSON report generation."""

    def test_generate_json_report_basic(self, recorded_entries: dict[str, Any]) -> None:
        entry = recorded_entries["escalated"]
        report = json.loads(generate_json_report(entry.entry_id, recorded_entries["db_path"]))

        assert report["report_version"] == "1.0"
        for key in ("generated_at", "entry", "stack", "descriptor", "verdict", "rules", "summary"):
            assert key in report

    def test_entry_metadata(self, recorded_entries: dict[str, Any]) -> None:
        entry = recorded_entries["escalated"]
        report = build_report_dict(entry.entry_id, recorded_entries["db_path"])

        assert report["entry"]["entry_id"] == entry.entry_id
        assert report["entry"]["mode"] == "evaluate"
        assert report["entry"]["replay_of"] is None
        assert report["stack"] == {
            "version": entry.evaluation.stack_version,
            "hash": entry.evaluation.stack_hash,
        }
        assert report["descriptor"]["request_id"] == "req-raw"

    def test_verdict_content(self, recorded_entries: dict[str, Any]) -> None:
        entry = recorded_entries["escalated"]
        report = build_report_dict(entry.entry_id, recorded_entries["db_path"])

        verdict = report["verdict"]
        assert verdict["kind"] == "escalate_for_clarification"
        assert [r["id"] for r in verdict["conflicting_rules"]] == ["R1", "R2"]
        assert verdict["recommendation"]["target_module"] == "memory-safety"

    def test_summary_counts(self, recorded_entries: dict[str, Any]) -> None:
        entry = recorded_entries["escalated"]
        summary = build_report_dict(entry.entry_id, recorded_entries["db_path"])["summary"]

        assert summary["verdict"] == "escalate_for_clarification"
        assert summary["cited_rule_ids"] == ["R1", "R2"]
        assert summary["counts"] == {
            "rules_evaluated": 2,
            "rules_matched": 2,
            "allow": 1,
            "deny": 1,
            "require_clarification": 0,
        }

    def test_accepted_report(self, recorded_entries: dict[str, Any]) -> None:
        entry = recorded_entries["accepted"]
        report = build_report_dict(entry.entry_id, recorded_entries["db_path"])

        assert report["verdict"] == {"kind": "accepted"}
        assert report["summary"]["cited_rule_ids"] == []

    def test_replay_report(self, recorded_entries: dict[str, Any]) -> None:
        replayed = recorded_entries["replayed"]
        report = build_report_dict(replayed.entry_id, recorded_entries["db_path"])

        assert report["entry"]["mode"] == "replay"
        assert report["entry"]["replay_of"] == recorded_entries["escalated"].entry_id

    def test_nonexistent_entry(self, recorded_entries: dict[str, Any]) -> None:
        with pytest.raises(ValueError, match="Audit entry not found"):
            generate_json_report("nonexistent", recorded_entries["db_path"])

    def test_missing_log_is_not_created(self, temp_dir: Path) -> None:
        missing = temp_dir / "missing.db"
        with pytest.raises(ValueError, match="Audit log not found"):
            generate_json_report("anything", missing)
        assert not missing.exists()


class TestConsoleReport:
    """Tests for console report generation."""

    def test_generate_console_report(self, recorded_entries: dict[str, Any]) -> None:
        entry = recorded_entries["escalated"]
        output = render(entry.entry_id, recorded_entries["db_path"])

        assert entry.entry_id in output
        assert "ESCALATE_FOR_CLARIFICATION" in output
        assert "Rule Outcomes" in output
        assert "Cited Rules" in output
        assert "Recommendation" in output
        assert "Rule R1 text." in output

    def test_accepted_has_no_citations(self, recorded_entries: dict[str, Any]) -> None:
        output = render(recorded_entries["accepted"].entry_id, recorded_entries["db_path"])

        assert "ACCEPTED" in output
        assert "Cited Rules" not in output
        assert "Recommendation" not in output

    def test_verbose_lists_unmatched_rules(
        self, loaded_engine: ComplianceEngine, db_path: Path
    ) -> None:
        entry = loaded_engine.evaluate_and_record(RequestDescriptor(tags=["unrelated"]))

        normal = render(entry.entry_id, db_path)
        verbose = render(entry.entry_id, db_path, verbose=True)

        assert "No rule matched" in normal
        assert "R1" in verbose
        assert "R2" in verbose

    def test_replay_is_marked(self, recorded_entries: dict[str, Any]) -> None:
        output = render(recorded_entries["replayed"].entry_id, recorded_entries["db_path"])
        assert "REPLAY" in output
        assert recorded_entries["escalated"].entry_id in output

    def test_nonexistent_entry(self, recorded_entries: dict[str, Any]) -> None:
        with pytest.raises(ValueError, match="Audit entry not found"):
            render("nonexistent", recorded_entries["db_path"])

    def test_missing_log_is_not_created(self, temp_dir: Path) -> None:
        missing = temp_dir / "missing.db"
        with pytest.raises(ValueError, match="Audit log not found"):
            render("anything", missing)
        assert not missing.exists()
