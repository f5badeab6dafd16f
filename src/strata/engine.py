"""
Compliance Engine for Strata.

The Engine is the orchestration layer callers use. It coordinates between:
- Module Store: Supplies the active rule-module snapshot
- Conflict Resolver: Evaluates every rule and picks an outcome
- Verdict Composer: Builds the cited verdict and recommendation
- Audit Log: Durably records every evaluation

Evaluation Flow:
    1. Capture the active stack snapshot (never blocks on reloads)
    2. Evaluate every rule against the request
    3. Resolve matches into accept / refuse / escalate
    4. Compose the verdict
    5. Append the audit entry (failure aborts the call)
    6. Return the verdict

Design Principles:
    - No implicit accept: evaluating with no modules loaded is an error
    - No unaudited verdicts: audit failures propagate to the caller
    - Reproducible: Same request + same stack = same verdict
"""

import logging
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Any

from strata.config import DEFAULT_DB_PATH, EngineConfig
from strata.errors import AuditEntryNotFoundError, NoActiveModulesError
from strata.modules.loader import ModuleSourceLike
from strata.modules.store import ModuleStack, ModuleStore
from strata.policy import ConflictResolver, VerdictComposer
from strata.schema import AuditEntry, AuditMode, RequestDescriptor, Verdict
from strata.store import AuditEntrySequence, AuditLog
from strata.store.db import DEFAULT_PAGE_SIZE

logger = logging.getLogger(__name__)


class ComplianceEngine:
    """
    Main entry point for Strata.

    Usage:
        with ComplianceEngine(db_path="strata.db") as engine:
            engine.load_modules(["modules/"])
            verdict = engine.evaluate(RequestDescriptor(tags=["raw_memory_access"]))
            print(verdict.kind)

    Attributes:
        store: Module Store holding the active stack
        audit: Audit log every evaluation is appended to
        resolver: Conflict Resolver
        composer: Verdict Composer
        page_size: Default page size for audit exports
    """

    def __init__(
        self,
        db_path: str | Path = DEFAULT_DB_PATH,
        store: ModuleStore | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        """
        Initialize the engine.

        Args:
            db_path: Path to the SQLite audit log
            store: Module store (a fresh empty one by default)
            page_size: Rows fetched per page by read_audit_entries()
        """
        self.audit = AuditLog(db_path)
        self.store = store or ModuleStore()
        self.resolver = ConflictResolver()
        self.composer = VerdictComposer()
        self.page_size = page_size

    @classmethod
    def from_config(cls, config: EngineConfig) -> "ComplianceEngine":
        """Build an engine from configuration, loading its modules if any."""
        engine = cls(db_path=config.audit_db, page_size=config.page_size)
        if config.modules:
            try:
                engine.load_modules(config.modules)
            except Exception:
                engine.close()
                raise
        return engine

    def close(self) -> None:
        """Close the audit log."""
        self.audit.close()

    def __enter__(self) -> "ComplianceEngine":
        """Enter context manager."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Exit context manager."""
        self.close()

    # =========================================================================
    # Module loading
    # =========================================================================

    def load_modules(self, sources: Iterable[ModuleSourceLike]) -> ModuleStack:
        """
        Atomically replace the active module stack.

        Args:
            sources: Module sources in load order

        Returns:
            The newly active stack

        Raises:
            ModuleValidationError: The previous stack remains active
        """
        return self.store.load(sources)

    @property
    def active_stack(self) -> ModuleStack:
        return self.store.snapshot()

    # =========================================================================
    # Evaluation
    # =========================================================================

    def evaluate(self, descriptor: RequestDescriptor) -> Verdict:
        """
        Judge a request against the active module stack.

        Args:
            descriptor: The pre-normalized request

        Returns:
            Accepted, Refused or EscalateForClarification

        Raises:
            NoActiveModulesError: If no module stack has been loaded
            AuditWriteFailure: If the evaluation could not be audited
        """
        return self.evaluate_and_record(descriptor).verdict

    def evaluate_and_record(
        self,
        descriptor: RequestDescriptor,
        mode: AuditMode = AuditMode.EVALUATE,
        replay_of: str | None = None,
    ) -> AuditEntry:
        """
        Evaluate a request and return the audit entry that records it.

        Same contract as evaluate(); used by replay and reporting tools that
        need the entry id alongside the verdict.
        """
        stack = self.store.snapshot()
        if stack.is_empty:
            raise NoActiveModulesError()

        evaluation = self.resolver.evaluate(descriptor, stack)
        resolution = self.resolver.resolve(evaluation)
        verdict = self.composer.compose(resolution, stack, descriptor)

        entry = self.audit.append(
            descriptor=descriptor,
            evaluation=evaluation,
            verdict=verdict,
            stack=stack,
            mode=mode,
            replay_of=replay_of,
        )

        logger.info(
            "Request %s: %s (%s) [stack v%d, entry %s]",
            descriptor.request_id,
            verdict.kind,
            resolution.reason,
            stack.version,
            entry.entry_id,
        )
        return entry

    # =========================================================================
    # Audit export
    # =========================================================================

    def read_audit_entries(
        self,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> AuditEntrySequence:
        """
        Audit entries recorded in [since, until), oldest first.

        Returns:
            Lazy, finite, restartable sequence
        """
        return self.audit.read_entries(since=since, until=until, page_size=self.page_size)

    def get_audit_entry(self, entry_id: str) -> AuditEntry:
        """
        Get one audit entry.

        Raises:
            AuditEntryNotFoundError: If the id is unknown
        """
        entry = self.audit.get_entry(entry_id)
        if entry is None:
            raise AuditEntryNotFoundError(operation="get_entry", entry_id=entry_id)
        return entry
