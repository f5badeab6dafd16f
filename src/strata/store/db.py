"""
SQLite audit log for Strata.

Every evaluation appends exactly one audit entry before its verdict is
returned. The log lives in a single SQLite database file.

Design Principles:
    - Append-only: UPDATE and DELETE are rejected by triggers
    - Durable: Each append commits with synchronous=FULL before returning
    - Ordered: Entries sort by recorded_at, ties broken by arrival sequence
    - Self-contained: Entries embed the descriptor, evaluation and the full
      cited rules, so they stay readable after the module stack changes

Tables:
    - schema_version: Migration tracking
    - audit_entries: One row per evaluation
"""

from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
import threading
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from strata.errors import (
    AuditConnectionError,
    AuditReadError,
    AuditWriteFailure,
    DanglingCitationError,
)
from strata.schema import (
    AuditEntry,
    AuditMode,
    EvaluationResult,
    RequestDescriptor,
    Verdict,
    generate_id,
    verdict_adapter,
)

if TYPE_CHECKING:
    from strata.modules.store import ModuleStack

logger = logging.getLogger(__name__)

# Schema version for migrations
SCHEMA_VERSION = 1

DEFAULT_PAGE_SIZE = 100

# SQL for creating tables
CREATE_TABLES_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);

-- Audit entries: one row per evaluation
CREATE TABLE IF NOT EXISTS audit_entries (
    sequence INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id TEXT NOT NULL UNIQUE,
    recorded_at TEXT NOT NULL,
    mode TEXT NOT NULL DEFAULT 'evaluate',
    replay_of TEXT,
    request_id TEXT NOT NULL,
    verdict_kind TEXT NOT NULL,
    stack_version INTEGER NOT NULL,
    stack_hash TEXT NOT NULL,
    descriptor_json TEXT NOT NULL,
    evaluation_json TEXT NOT NULL,
    verdict_json TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_audit_recorded_at ON audit_entries(recorded_at, sequence);
CREATE INDEX IF NOT EXISTS idx_audit_request_id ON audit_entries(request_id);

CREATE TRIGGER IF NOT EXISTS audit_entries_no_update
BEFORE UPDATE ON audit_entries
BEGIN
    SELECT RAISE(ABORT, 'audit entries are append-only');
END;

CREATE TRIGGER IF NOT EXISTS audit_entries_no_delete
BEFORE DELETE ON audit_entries
BEGIN
    SELECT RAISE(ABORT, 'audit entries are append-only');
END;
"""


def compute_hash(data: Any) -> str:
    """Compute SHA256 hash of data."""
    if data is None:
        return ""
    if isinstance(data, str):
        content = data.encode("utf-8")
    elif isinstance(data, bytes):
        content = data
    else:
        content = json.dumps(data, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(content).hexdigest()


def to_timestamp(value: datetime) -> str:
    """Fixed-width UTC ISO timestamp; naive datetimes are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


class AuditEntrySequence:
    """
    Lazy, finite, restartable view over a time range of the audit log.

    Each iteration re-queries the database page by page, so iterating twice
    yields entries appended in between, and nothing is held in memory
    beyond one page.

    Usage:
        entries = audit.read_entries(since=start)
        for entry in entries:
            ...
    """

    def __init__(
        self,
        log: AuditLog,
        since: datetime | None = None,
        until: datetime | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        if page_size <= 0:
            msg = f"page_size must be positive, got {page_size}"
            raise ValueError(msg)
        self._log = log
        self.since = since
        self.until = until
        self.page_size = page_size

    def __iter__(self) -> Iterator[AuditEntry]:
        cursor: tuple[str, int] | None = None
        while True:
            rows = self._log._fetch_page(self.since, self.until, cursor, self.page_size)
            for row in rows:
                yield self._log._row_to_entry(row)
            if len(rows) < self.page_size:
                return
            last = rows[-1]
            cursor = (last["recorded_at"], last["sequence"])

    def count(self) -> int:
        """Number of entries currently in the range."""
        return self._log._count(self.since, self.until)


class AuditLog:
    """
    Append-only SQLite audit log.

    Appends and reads share one connection guarded by a lock, so the log
    can be used from concurrent evaluation threads.

    Usage:
        with AuditLog("strata.db") as audit:
            entry = audit.append(descriptor, evaluation, verdict, stack)
            for entry in audit.read_entries():
                ...
    """

    def __init__(self, db_path: str | Path) -> None:
        """
        Open (or create) the audit database.

        Args:
            db_path: Path to the SQLite file, or ":memory:"
        """
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()
        self._connect()
        try:
            self._init_schema()
        except AuditConnectionError:
            self._conn.close()
            self._conn = None
            raise

    def _connect(self) -> None:
        """Establish database connection."""
        try:
            self._conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA synchronous = FULL")
        except sqlite3.Error as e:
            raise AuditConnectionError(
                db_path=str(self.db_path),
                operation="connect",
                message=f"Failed to open audit log: {e}",
            ) from e

    def _init_schema(self) -> None:
        """Initialize database schema if needed."""
        try:
            cursor = self._conn.executescript(CREATE_TABLES_SQL)
            cursor.close()

            cursor = self._conn.execute(
                "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
            )
            row = cursor.fetchone()
            if row is None:
                self._conn.execute(
                    "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                    (SCHEMA_VERSION, to_timestamp(datetime.now(UTC))),
                )
            self._conn.commit()
        except sqlite3.Error as e:
            raise AuditConnectionError(
                db_path=str(self.db_path),
                operation="init_schema",
                message=f"Failed to initialize audit schema: {e}",
            ) from e

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    @property
    def closed(self) -> bool:
        return self._conn is None

    def __enter__(self) -> AuditLog:
        """Enter context manager."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Exit context manager."""
        self.close()

    # =========================================================================
    # Append
    # =========================================================================

    def append(
        self,
        descriptor: RequestDescriptor,
        evaluation: EvaluationResult,
        verdict: Verdict,
        stack: ModuleStack,
        mode: AuditMode = AuditMode.EVALUATE,
        replay_of: str | None = None,
    ) -> AuditEntry:
        """
        Durably append one evaluation.

        Args:
            descriptor: The request that was judged
            evaluation: Every rule outcome
            verdict: The verdict about to be returned
            stack: The snapshot the verdict was computed against
            mode: Fresh evaluation or replay
            replay_of: Entry being replayed (replay mode only)

        Returns:
            The stored AuditEntry

        Raises:
            DanglingCitationError: If the verdict cites a rule the snapshot
                does not hold
            AuditWriteFailure: If the entry could not be committed
        """
        for rule in verdict.cited_rules:
            if not stack.resolves(rule):
                raise DanglingCitationError(rule_id=rule.id, stack_version=stack.version)

        entry_id = generate_id()
        descriptor_json = descriptor.model_dump_json()
        evaluation_json = evaluation.model_dump_json()
        verdict_json = verdict.model_dump_json()

        with self._lock:
            if self._conn is None:
                logger.error("Audit append for %s on a closed log", descriptor.request_id)
                raise AuditWriteFailure(
                    operation="append",
                    underlying_error="audit log is closed",
                )

            recorded_at = datetime.now(UTC)
            try:
                cursor = self._conn.execute(
                    """
                    INSERT INTO audit_entries (
                        entry_id, recorded_at, mode, replay_of, request_id,
                        verdict_kind, stack_version, stack_hash,
                        descriptor_json, evaluation_json, verdict_json
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        entry_id,
                        to_timestamp(recorded_at),
                        mode.value,
                        replay_of,
                        descriptor.request_id,
                        verdict.kind,
                        evaluation.stack_version,
                        evaluation.stack_hash,
                        descriptor_json,
                        evaluation_json,
                        verdict_json,
                    ),
                )
                sequence = cursor.lastrowid
                self._conn.commit()
            except sqlite3.Error as e:
                try:
                    self._conn.rollback()
                except sqlite3.Error as rollback_error:
                    logger.error("Rollback after failed append failed: %s", rollback_error)
                logger.error("Audit append for %s failed: %s", descriptor.request_id, e)
                raise AuditWriteFailure(
                    operation="append",
                    underlying_error=str(e),
                ) from e

        return AuditEntry(
            entry_id=entry_id,
            sequence=sequence,
            recorded_at=recorded_at,
            mode=mode,
            replay_of=replay_of,
            descriptor=descriptor,
            evaluation=evaluation,
            verdict=verdict,
        )

    # =========================================================================
    # Read
    # =========================================================================

    def read_entries(
        self,
        since: datetime | None = None,
        until: datetime | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> AuditEntrySequence:
        """
        Entries recorded in [since, until), oldest first.

        Args:
            since: Inclusive lower bound (None = beginning)
            until: Exclusive upper bound (None = no bound)
            page_size: Rows fetched per query

        Returns:
            Lazy, restartable AuditEntrySequence
        """
        return AuditEntrySequence(self, since=since, until=until, page_size=page_size)

    def get_entry(self, entry_id: str) -> AuditEntry | None:
        """
        Get an entry by ID.

        Returns:
            AuditEntry or None if not found
        """
        rows = self._query(
            "SELECT * FROM audit_entries WHERE entry_id = ?",
            (entry_id,),
            operation="get_entry",
        )
        return self._row_to_entry(rows[0]) if rows else None

    def list_entries(self, limit: int = 100) -> list[AuditEntry]:
        """
        List recent entries.

        Returns:
            AuditEntry objects, most recent first
        """
        rows = self._query(
            "SELECT * FROM audit_entries ORDER BY recorded_at DESC, sequence DESC LIMIT ?",
            (limit,),
            operation="list_entries",
        )
        return [self._row_to_entry(row) for row in rows]

    def _range_clause(
        self,
        since: datetime | None,
        until: datetime | None,
    ) -> tuple[list[str], list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if since is not None:
            clauses.append("recorded_at >= ?")
            params.append(to_timestamp(since))
        if until is not None:
            clauses.append("recorded_at < ?")
            params.append(to_timestamp(until))
        return clauses, params

    def _fetch_page(
        self,
        since: datetime | None,
        until: datetime | None,
        after: tuple[str, int] | None,
        page_size: int,
    ) -> list[sqlite3.Row]:
        clauses, params = self._range_clause(since, until)
        if after is not None:
            clauses.append("(recorded_at, sequence) > (?, ?)")
            params.extend(after)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(page_size)
        return self._query(
            f"SELECT * FROM audit_entries {where} ORDER BY recorded_at, sequence LIMIT ?",
            tuple(params),
            operation="read_entries",
        )

    def _count(self, since: datetime | None, until: datetime | None) -> int:
        clauses, params = self._range_clause(since, until)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._query(
            f"SELECT COUNT(*) AS n FROM audit_entries {where}",
            tuple(params),
            operation="count",
        )
        return rows[0]["n"]

    def _query(self, sql: str, params: tuple[Any, ...], operation: str) -> list[sqlite3.Row]:
        with self._lock:
            if self._conn is None:
                raise AuditReadError(operation=operation, underlying_error="audit log is closed")
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise AuditReadError(operation=operation, underlying_error=str(e)) from e

    def _row_to_entry(self, row: sqlite3.Row) -> AuditEntry:
        return AuditEntry(
            entry_id=row["entry_id"],
            sequence=row["sequence"],
            recorded_at=datetime.fromisoformat(row["recorded_at"]),
            mode=AuditMode(row["mode"]),
            replay_of=row["replay_of"],
            descriptor=RequestDescriptor.model_validate_json(row["descriptor_json"]),
            evaluation=EvaluationResult.model_validate_json(row["evaluation_json"]),
            verdict=verdict_adapter.validate_json(row["verdict_json"]),
        )
