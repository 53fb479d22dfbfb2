"""
Exceptions raised by the partition migration system.

Exception Hierarchy:
    MigrationError (base)
    +-- TaskNotFoundError
    +-- TaskStateError
    +-- TaskLockedError
    +-- MigrationValidationError
    |   +-- TemplateValidationError
    |   +-- UnsupportedPartitionTypeError
    |   +-- ExchangeNotApplicableError
    +-- CapabilityError
    |   +-- InsufficientPrivilegeError
    +-- StepExecutionError
    +-- MigrationIntegrityError
    |   +-- RowCountMismatchError
    +-- RollbackError

Error Classification:
    Every MigrationError carries an ErrorClassification describing its
    severity and recoverability. Validation errors are raised before any
    mutation and are never retried; capability errors are recovered from by
    falling back to another strategy; execution and integrity errors are
    terminal for the task.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

_ORA_CODE_PATTERN = re.compile(r"ORA-(\d{5})")


class ErrorSeverity(Enum):
    """
    Severity level of migration errors.

    Attributes:
        CRITICAL: Data may be at risk, operator attention required.
        ERROR: The task failed and is marked FAILED.
        WARNING: A degraded path was taken, e.g. strategy fallback.
    """

    CRITICAL = "critical"
    """Data may be at risk, operator attention required."""

    ERROR = "error"
    """The task failed and is marked FAILED."""

    WARNING = "warning"
    """A degraded path was taken, e.g. strategy fallback."""

    @property
    def log_level(self) -> int:
        """
        Get the corresponding Python logging level.

        Returns:
            Python logging level constant.
        """
        level_map = {
            ErrorSeverity.CRITICAL: logging.CRITICAL,
            ErrorSeverity.ERROR: logging.ERROR,
            ErrorSeverity.WARNING: logging.WARNING,
        }
        return level_map[self]


class ErrorRecoverability(Enum):
    """
    Recoverability classification for migration errors.

    Attributes:
        FALLBACK: Recovered automatically by trying the next strategy.
        RECOVERABLE: Operator can fix the input and re-queue the task.
        FATAL: The run is over; cleanup or rollback is required.
    """

    FALLBACK = "fallback"
    """Recovered automatically by trying the next strategy."""

    RECOVERABLE = "recoverable"
    """Operator can fix the input and re-queue the task."""

    FATAL = "fatal"
    """The run is over; cleanup or rollback is required."""

    @property
    def triggers_fallback(self) -> bool:
        """True when the orchestrator may advance its fallback chain."""
        return self == ErrorRecoverability.FALLBACK


@dataclass(frozen=True)
class ErrorClassification:
    """
    Metadata attached to every migration error type.

    Attributes:
        severity: The severity level of the error.
        recoverability: How the error can be recovered from.
        error_code: Unique error code for programmatic handling.
        category: Error category for grouping related errors.
        suggested_action: Human-readable guidance for operators.
    """

    severity: ErrorSeverity
    recoverability: ErrorRecoverability
    error_code: str
    category: str
    suggested_action: str

    def to_dict(self) -> dict[str, Any]:
        """Convert classification to dictionary for serialization."""
        return {
            "severity": self.severity.value,
            "recoverability": self.recoverability.value,
            "error_code": self.error_code,
            "category": self.category,
            "suggested_action": self.suggested_action,
        }


class MigrationError(Exception):
    """
    Base exception for all migration-related errors.

    Attributes:
        message: Human-readable error description.
        task_id: The migration task that caused the error, if applicable.
    """

    _default_classification: ErrorClassification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="MIGRATION_ERROR",
        category="general",
        suggested_action="Review the execution log of the task",
    )

    def __init__(self, message: str, *, task_id: int | None = None) -> None:
        self.message = message
        self.task_id = task_id
        super().__init__(message)

    def __str__(self) -> str:
        """Return formatted error string with context."""
        if self.task_id is not None:
            return f"{self.message} task_id={self.task_id}"
        return self.message

    @property
    def classification(self) -> ErrorClassification:
        """Get the error classification for this exception."""
        return self._default_classification

    @property
    def severity(self) -> ErrorSeverity:
        return self.classification.severity

    @property
    def error_code(self) -> str:
        return self.classification.error_code

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the exception to a dictionary for serialization.

        Returns:
            Dictionary representation of the error.
        """
        return {
            "message": self.message,
            "task_id": self.task_id,
            "error_code": self.error_code,
            "classification": self.classification.to_dict(),
        }


class TaskNotFoundError(MigrationError):
    """Raised when a migration task id does not exist."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="TASK_NOT_FOUND",
        category="lookup",
        suggested_action="Verify the task id",
    )

    def __init__(self, task_id: int) -> None:
        super().__init__(f"Migration task not found: {task_id}", task_id=task_id)


class TaskStateError(MigrationError):
    """
    Raised when a task is not in a state that allows the requested operation.

    Attributes:
        current_status: Status the task is in.
        expected: Statuses that would have been accepted.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="TASK_INVALID_STATE",
        category="state",
        suggested_action="Analyze the task or reset its status before running it",
    )

    def __init__(
        self,
        task_id: int,
        current_status: str,
        expected: tuple[str, ...] | list[str],
    ) -> None:
        self.current_status = current_status
        self.expected = tuple(expected)
        super().__init__(
            f"Task status is {current_status}, expected one of {', '.join(self.expected)}",
            task_id=task_id,
        )


class TaskLockedError(MigrationError):
    """Raised when another session holds the exclusive lock on a task row."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="TASK_LOCKED",
        category="concurrency",
        suggested_action="Another worker is running this task; wait for it to finish",
    )

    def __init__(self, task_id: int, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Task is locked by another session: {reason}", task_id=task_id)


class MigrationValidationError(MigrationError):
    """
    Raised for invalid input detected before any mutation.

    Validation errors are never retried and never trigger cleanup, because
    nothing has been changed in the database when they are raised.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="VALIDATION_FAILED",
        category="validation",
        suggested_action="Correct the task definition or template and re-queue",
    )


class TemplateValidationError(MigrationValidationError):
    """
    Raised when a tier template is incomplete or inconsistent.

    Attributes:
        errors: Every problem found, e.g. ``["warm.tablespace is required"]``.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="TEMPLATE_INVALID",
        category="validation",
        suggested_action="Fix the listed fields in the tier template",
    )

    def __init__(
        self,
        errors: list[str],
        *,
        template_name: str | None = None,
        task_id: int | None = None,
    ) -> None:
        self.errors = list(errors)
        self.template_name = template_name
        prefix = f"Invalid tier template {template_name}" if template_name else "Invalid tier template"
        super().__init__(f"{prefix}: {'; '.join(self.errors)}", task_id=task_id)


class UnsupportedPartitionTypeError(MigrationValidationError):
    """Raised for a partition type the builder cannot handle."""

    def __init__(self, partition_type: str, *, task_id: int | None = None) -> None:
        self.partition_type = partition_type
        super().__init__(f"Unsupported partition type: {partition_type}", task_id=task_id)


class ExchangeNotApplicableError(MigrationValidationError):
    """Raised when partition exchange preconditions do not hold."""


class CapabilityError(MigrationError):
    """
    Raised when a strategy cannot run against this table.

    The orchestrator reacts by moving to the next strategy in the fallback
    chain rather than failing the task.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.FALLBACK,
        error_code="CAPABILITY_UNAVAILABLE",
        category="capability",
        suggested_action="None required; a fallback strategy is used",
    )


class InsufficientPrivilegeError(CapabilityError):
    """
    Raised when the database rejects a call for lack of privilege.

    Attributes:
        ora_code: Numeric ORA error code reported by the engine.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.FALLBACK,
        error_code="INSUFFICIENT_PRIVILEGE",
        category="capability",
        suggested_action="Grant EXECUTE on DBMS_REDEFINITION to use online reorganization",
    )

    def __init__(self, message: str, ora_code: int, *, task_id: int | None = None) -> None:
        self.ora_code = ora_code
        super().__init__(f"{message} (ORA-{ora_code:05d})", task_id=task_id)


class StepExecutionError(MigrationError):
    """
    Raised when a DDL or data movement statement fails.

    Attributes:
        step_name: Execution log step that failed.
        statement: Statement text that was sent to the database.
        ora_code: ORA error code when one could be extracted.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="STEP_FAILED",
        category="execution",
        suggested_action="Inspect the failing statement in the execution log",
    )

    def __init__(
        self,
        step_name: str,
        error: str,
        *,
        statement: str | None = None,
        ora_code: int | None = None,
        task_id: int | None = None,
    ) -> None:
        self.step_name = step_name
        self.error = error
        self.statement = statement
        self.ora_code = ora_code
        super().__init__(f"Step {step_name} failed: {error}", task_id=task_id)


class MigrationIntegrityError(MigrationError):
    """Raised when post-migration validation finds the data inconsistent."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.CRITICAL,
        recoverability=ErrorRecoverability.FATAL,
        error_code="INTEGRITY_CHECK_FAILED",
        category="integrity",
        suggested_action="Compare the migrated table with its backup and roll back",
    )


class RowCountMismatchError(MigrationIntegrityError):
    """
    Raised when the migrated table and its backup hold different row counts.

    Attributes:
        source_rows: Row count of the backup.
        target_rows: Row count of the migrated table.
    """

    def __init__(self, source_rows: int, target_rows: int, *, task_id: int | None = None) -> None:
        self.source_rows = source_rows
        self.target_rows = target_rows
        super().__init__(
            f"Row count mismatch! Source: {source_rows}, Target: {target_rows}",
            task_id=task_id,
        )


class RollbackError(MigrationError):
    """Raised when a task cannot be rolled back."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.CRITICAL,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="ROLLBACK_FAILED",
        category="rollback",
        suggested_action="Restore the table manually from the backup named on the task",
    )


def extract_ora_code(exc: BaseException) -> int | None:
    """
    Extract the ORA error number from a database exception.

    Checks the driver error (``exc.orig``) first, then the message text.

    Args:
        exc: Exception raised by SQLAlchemy or the driver.

    Returns:
        The positive error number, e.g. 1031, or None.

    Example:
        >>> extract_ora_code(Exception("ORA-00942: table or view does not exist"))
        942
    """
    orig = getattr(exc, "orig", None)
    for source in (orig, exc):
        if source is None:
            continue
        code = getattr(source, "code", None)
        if isinstance(code, int) and code > 0:
            return code
        match = _ORA_CODE_PATTERN.search(str(source))
        if match:
            return int(match.group(1))
    return None


__all__ = [
    "ErrorSeverity",
    "ErrorRecoverability",
    "ErrorClassification",
    "MigrationError",
    "TaskNotFoundError",
    "TaskStateError",
    "TaskLockedError",
    "MigrationValidationError",
    "TemplateValidationError",
    "UnsupportedPartitionTypeError",
    "ExchangeNotApplicableError",
    "CapabilityError",
    "InsufficientPrivilegeError",
    "StepExecutionError",
    "MigrationIntegrityError",
    "RowCountMismatchError",
    "RollbackError",
    "extract_ora_code",
]
