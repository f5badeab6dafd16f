"""
Exception hierarchy for Strata.

All Strata exceptions inherit from StrataError, allowing callers to catch
all Strata-specific exceptions with a single except clause.

Exception Categories:
    - RuleLoadError / ModuleValidationError: Rule modules could not be loaded
    - NoActiveModulesError / DanglingCitationError: Evaluation invariants broken
    - AuditWriteFailure / AuditReadError: Audit log operation failed
    - ReplayMismatchError: Replay doesn't reproduce the recorded verdict
    - ConfigError: Engine configuration is invalid

Design Principles:
    - All errors have error codes for programmatic handling
    - All errors include context (module, rule, entry where applicable)
    - Load-time errors are returned to the caller, never swallowed
    - An evaluation that cannot be audited is an error, not a verdict
"""

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Load errors: 1xxx
ERROR_RULE_LOAD = 1001
ERROR_MODULE_SOURCE = 1002
ERROR_MODULE_VALIDATION = 1101
ERROR_DUPLICATE_RULE_ID = 1102
ERROR_DUPLICATE_MODULE_ID = 1103
ERROR_EMPTY_MODULE = 1104

# Evaluation errors: 2xxx
ERROR_NO_ACTIVE_MODULES = 2001
ERROR_DANGLING_CITATION = 2002

# Audit errors: 3xxx
ERROR_AUDIT_CONNECTION = 3001
ERROR_AUDIT_WRITE = 3002
ERROR_AUDIT_READ = 3003
ERROR_AUDIT_ENTRY_NOT_FOUND = 3004

# Replay errors: 4xxx
ERROR_REPLAY_MISMATCH = 4001

# Config errors: 5xxx
ERROR_CONFIG_INVALID = 5001


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class StrataError(Exception):
    """
    Base exception for all Strata errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Load Errors
# =============================================================================


@dataclass
class RuleLoadError(StrataError):
    """
    Raised when a rule definition is malformed.

    Fatal to the owning module's load. The Module Store collects these
    into a ModuleValidationError so the whole reload is rejected.

    Attributes:
        module_id: Module the rule belongs to
        rule_id: Offending rule id (may be empty if the id itself is missing)
        reason: What is wrong with the rule
    """

    module_id: str = ""
    rule_id: str = ""
    reason: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            target = f"{self.module_id}/{self.rule_id}" if self.rule_id else self.module_id
            self.message = f"Malformed rule {target}: {self.reason}"
        if self.code == 0:
            self.code = ERROR_RULE_LOAD
        self.context.update({
            "module_id": self.module_id,
            "rule_id": self.rule_id,
            "reason": self.reason,
        })


@dataclass
class ModuleSourceError(StrataError):
    """Raised when a module source cannot be read or parsed."""

    source: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Cannot read module source {self.source}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_MODULE_SOURCE
        self.context.update({
            "source": self.source,
            "underlying_error": self.underlying_error,
        })


@dataclass
class ModuleValidationError(StrataError):
    """
    Raised when a module stack fails validation.

    Fatal to the whole reload attempt: the previously active stack
    remains in effect.

    Attributes:
        errors: Every problem found, in discovery order
    """

    errors: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            count = len(self.errors)
            summary = "; ".join(self.errors[:3])
            if count > 3:
                summary += f"; and {count - 3} more"
            self.message = f"Module stack rejected ({count} problem(s)): {summary}"
        if self.code == 0:
            self.code = ERROR_MODULE_VALIDATION
        if not self.suggestion:
            self.suggestion = "Fix the listed modules and reload; the previous stack is still active"
        self.context["errors"] = list(self.errors)


@dataclass
class DuplicateRuleIdError(ModuleValidationError):
    """Raised when the same rule id appears in more than one place."""

    rule_id: str = ""
    module_ids: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.errors:
            self.errors = [
                f"Duplicate rule id {self.rule_id!r} in modules: {', '.join(self.module_ids)}"
            ]
        if self.code == 0:
            self.code = ERROR_DUPLICATE_RULE_ID
        super().__post_init__()
        self.context.update({"rule_id": self.rule_id, "module_ids": self.module_ids})


@dataclass
class DuplicateModuleIdError(ModuleValidationError):
    """Raised when two modules in one stack share an id."""

    module_id: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.errors:
            self.errors = [f"Duplicate module id {self.module_id!r}"]
        if self.code == 0:
            self.code = ERROR_DUPLICATE_MODULE_ID
        super().__post_init__()
        self.context["module_id"] = self.module_id


@dataclass
class EmptyModuleError(ModuleValidationError):
    """Raised when a module declares no rules."""

    module_id: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.errors:
            self.errors = [f"Module {self.module_id!r} declares no rules"]
        if self.code == 0:
            self.code = ERROR_EMPTY_MODULE
        super().__post_init__()
        self.context["module_id"] = self.module_id


# =============================================================================
# Evaluation Errors
# =============================================================================


@dataclass
class NoActiveModulesError(StrataError):
    """Raised when evaluate() is called before any module stack was loaded."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = "No rule modules are loaded; refusing to evaluate"
        if self.code == 0:
            self.code = ERROR_NO_ACTIVE_MODULES
        if not self.suggestion:
            self.suggestion = "Call load_modules() with at least one module first"


@dataclass
class DanglingCitationError(StrataError):
    """Raised when a verdict cites a rule missing from the evaluated stack."""

    rule_id: str = ""
    stack_version: int = 0

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"Verdict cites rule {self.rule_id!r} which is not in "
                f"stack version {self.stack_version}"
            )
        if self.code == 0:
            self.code = ERROR_DANGLING_CITATION
        self.context.update({
            "rule_id": self.rule_id,
            "stack_version": self.stack_version,
        })


# =============================================================================
# Audit Errors
# =============================================================================


@dataclass
class AuditError(StrataError):
    """
    Base class for audit log errors.

    Attributes:
        operation: The operation that failed (e.g., "append", "query")
    """

    operation: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["operation"] = self.operation


@dataclass
class AuditConnectionError(AuditError):
    """Raised when the audit database cannot be opened."""

    db_path: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to open audit log: {self.db_path}"
        if self.code == 0:
            self.code = ERROR_AUDIT_CONNECTION
        if not self.suggestion:
            self.suggestion = "Check that the audit database path is valid and writable"
        super().__post_init__()
        self.context["db_path"] = self.db_path


@dataclass
class AuditWriteFailure(AuditError):
    """
    Raised when an audit entry could not be durably committed.

    The evaluation that produced the entry fails with this error; its
    verdict is never returned to the caller.
    """

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Audit append failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_AUDIT_WRITE
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class AuditReadError(AuditError):
    """Raised when reading from the audit log fails."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Audit read failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_AUDIT_READ
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class AuditEntryNotFoundError(AuditError):
    """Raised when an audit entry id is unknown."""

    entry_id: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Audit entry not found: {self.entry_id}"
        if self.code == 0:
            self.code = ERROR_AUDIT_ENTRY_NOT_FOUND
        super().__post_init__()
        self.context["entry_id"] = self.entry_id


# =============================================================================
# Replay Errors
# =============================================================================


@dataclass
class ReplayMismatchError(StrataError):
    """Raised in strict replay when the re-evaluated verdict differs."""

    entry_id: str = ""
    mismatches: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Replay of {self.entry_id} diverged: {'; '.join(self.mismatches)}"
        if self.code == 0:
            self.code = ERROR_REPLAY_MISMATCH
        self.context.update({
            "entry_id": self.entry_id,
            "mismatches": list(self.mismatches),
        })


# =============================================================================
# Config Errors
# =============================================================================


@dataclass
class ConfigError(StrataError):
    """Raised when the engine configuration file is missing or invalid."""

    config_path: str = ""
    validation_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid configuration {self.config_path}: {self.validation_error}"
        if self.code == 0:
            self.code = ERROR_CONFIG_INVALID
        self.context.update({
            "config_path": self.config_path,
            "validation_error": self.validation_error,
        })
