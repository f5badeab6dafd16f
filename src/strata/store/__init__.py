"""
Storage module for Strata.

This module provides the SQLite-backed audit log: one append-only entry per
evaluation, written before the verdict is returned to the caller.

Tables:
    - audit_entries: Descriptor, evaluation and verdict of each evaluation

Design principles:
    - Append-only: Historical entries are never modified or deleted
    - Durable: A verdict is never returned without a committed entry
    - Self-contained: Entries embed the full cited rules
"""

from strata.store.db import AuditEntrySequence, AuditLog, compute_hash

__all__ = [
    "AuditEntrySequence",
    "AuditLog",
    "compute_hash",
]
