"""
Data models for the partition migration system.

Models in this module:

Enums:
    - TaskStatus: Migration task lifecycle
    - MigrationMethod: Physical migration strategy
    - PartitionType: Partitioning scheme of the target table
    - Tier: Storage tier of a partition
    - NullHandling: How NULL partition keys are treated
    - StepStatus / StepType: Execution log classification

Inputs:
    - MigrationTask: The unit of work written by the scheduler or an operator
    - AnalysisRecord: Read-only analyzer output for a task
    - ColumnInfo / IndexInfo / ConstraintInfo: Data dictionary rows

Outputs:
    - ExecutionStep: Append-only execution log record
    - MigrationResult: Outcome of one orchestration run
    - ILMPolicy / ThresholdProfile: Lifecycle records handed to the policy engine
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

_TYPE_WITH_KEY = re.compile(r"^\s*(RANGE|LIST|HASH)\s*\(\s*([^)]*?)\s*\)\s*$", re.IGNORECASE)


class TaskStatus(Enum):
    """
    Migration task lifecycle.

    State machine transitions:
        PENDING -> ANALYZING -> ANALYZED -> READY
        READY | ANALYZED -> RUNNING -> COMPLETED | FAILED
        COMPLETED -> ROLLED_BACK (when a backup is retained)

    The orchestrator only starts tasks in READY or ANALYZED.
    """

    PENDING = "PENDING"
    """Created, not analyzed yet."""

    ANALYZING = "ANALYZING"
    """The external analyzer is inspecting the source table."""

    ANALYZED = "ANALYZED"
    """Analysis finished; recommendations not applied yet."""

    READY = "READY"
    """Recommendations applied, waiting for execution."""

    RUNNING = "RUNNING"
    """An orchestration run holds the task."""

    COMPLETED = "COMPLETED"
    """Migration finished and validated."""

    FAILED = "FAILED"
    """Run failed; the error text is on the task."""

    ROLLED_BACK = "ROLLED_BACK"
    """The original table was restored from the backup."""

    @property
    def is_runnable(self) -> bool:
        """True for the statuses accepted by the orchestrator entry guard."""
        return self in (TaskStatus.READY, TaskStatus.ANALYZED)

    def can_transition_to(self, target: TaskStatus) -> bool:
        """
        Check if transition to target status is valid.

        Args:
            target: The status to transition to.

        Returns:
            True if the transition is valid.
        """
        return target in VALID_TRANSITIONS.get(self, set())


VALID_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.PENDING: {TaskStatus.ANALYZING, TaskStatus.READY},
    TaskStatus.ANALYZING: {TaskStatus.ANALYZED, TaskStatus.READY, TaskStatus.FAILED},
    TaskStatus.ANALYZED: {TaskStatus.READY, TaskStatus.RUNNING},
    TaskStatus.READY: {TaskStatus.RUNNING, TaskStatus.READY},
    TaskStatus.RUNNING: {TaskStatus.COMPLETED, TaskStatus.FAILED},
    TaskStatus.COMPLETED: {TaskStatus.ROLLED_BACK},
    TaskStatus.FAILED: {TaskStatus.READY, TaskStatus.ANALYZED},
    TaskStatus.ROLLED_BACK: {TaskStatus.READY},
}


class MigrationMethod(Enum):
    """Physical migration strategy."""

    CTAS = "CTAS"
    """Create a new partitioned table and bulk copy rows into it."""

    ONLINE = "ONLINE"
    """Online reorganization with DBMS_REDEFINITION."""

    EXCHANGE = "EXCHANGE"
    """Swap the table into a single partition of a new shell table."""


class PartitionType(Enum):
    """Partitioning scheme of the target table."""

    RANGE = "RANGE"
    LIST = "LIST"
    HASH = "HASH"


class Tier(Enum):
    """Storage tier of a partition, youngest first."""

    HOT = "HOT"
    WARM = "WARM"
    COLD = "COLD"


class NullHandling(Enum):
    """How NULL values in the partition key are treated before migration."""

    UPDATE = "UPDATE"
    """Replace NULLs with a default date before copying."""

    ALLOW_NULLS = "ALLOW_NULLS"
    """Leave NULLs; they route to the first partition."""


class StepStatus(Enum):
    """Outcome of an execution log step."""

    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"
    """Planned only, because the run is a simulation."""
    WARNING = "WARNING"


class StepType(Enum):
    """Kind of statement recorded by an execution log step."""

    DDL = "DDL"
    DML = "DML"
    PLSQL = "PLSQL"
    STATS = "STATS"
    VALIDATION = "VALIDATION"
    CLEANUP = "CLEANUP"
    ROLLBACK = "ROLLBACK"
    ILM = "ILM"
    INFO = "INFO"
    ERROR = "ERROR"


@dataclass
class MigrationTask:
    """
    A request to migrate one table into a partitioned layout.

    The orchestrator writes back ``status``, ``backup_table_name``,
    ``can_rollback``, the execution timestamps and the size metrics; every
    other field is input.

    Attributes:
        id: Task identifier.
        source_owner: Schema owning the source table.
        source_table: Table to migrate.
        partition_type: RANGE, LIST or HASH, optionally written as ``RANGE(col)``.
        partition_key: Partition key column; derived from ``partition_type`` when empty.
        interval_clause: Interval keyword or Oracle interval expression.
        migration_method: CTAS, ONLINE or EXCHANGE.
        keep_original: Leave the source table in place and publish the
            migrated table under a ``_MIGR`` suffix.
    """

    id: int
    source_owner: str
    source_table: str
    partition_type: str = "RANGE"
    partition_key: str | None = None
    interval_clause: str | None = None
    migration_method: str = MigrationMethod.CTAS.value
    project_id: int | None = None
    task_name: str | None = None
    use_compression: bool = False
    compression_type: str | None = None
    target_tablespace: str | None = None
    parallel_degree: int = 4
    enable_row_movement: bool = True
    automatic_list: bool = False
    list_default_values: str | None = None
    apply_ilm_policies: bool = False
    ilm_policy_template: str | None = None
    keep_original: bool = False
    status: TaskStatus = TaskStatus.PENDING
    validation_status: str | None = None
    backup_table_name: str | None = None
    can_rollback: bool = False
    source_rows: int | None = None
    source_size_mb: float | None = None
    target_size_mb: float | None = None
    space_saved_mb: float | None = None
    execution_start: datetime | None = None
    execution_end: datetime | None = None
    duration_seconds: float | None = None
    error_message: str | None = None

    @property
    def qualified_name(self) -> str:
        """OWNER.TABLE of the source table."""
        return f"{self.source_owner}.{self.source_table}"

    @property
    def base_partition_type(self) -> str:
        """RANGE, LIST or HASH without the key column."""
        match = _TYPE_WITH_KEY.match(self.partition_type)
        if match:
            return match.group(1).upper()
        return self.partition_type.strip().split()[0].upper()

    @property
    def key_column(self) -> str | None:
        """Partition key column, from ``partition_key`` or ``RANGE(col)``."""
        if self.partition_key:
            return self.partition_key.strip().upper()
        match = _TYPE_WITH_KEY.match(self.partition_type)
        if match and match.group(2):
            return match.group(2).strip().upper()
        return None

    def target_name(self, suffix: str) -> str:
        """Name of a work table derived from the source table, e.g. ``SALES_PART``."""
        return f"{self.source_table}{suffix}"


@dataclass(frozen=True)
class AnalysisRecord:
    """
    Read-only analyzer output for a task.

    Attributes:
        task_id: Task the analysis belongs to.
        recommended_strategy: e.g. ``RANGE(sale_date) INTERVAL MONTHLY``.
        recommended_method: CTAS, ONLINE or EXCHANGE, if the analyzer chose one.
        date_column_name: Column holding the partitioning date.
        requires_conversion: The date column is text or numeric and must be
            converted with ``date_conversion_expr``.
        partition_boundary_min_date: Oldest value of the date column.
        partition_boundary_max_date: Newest value of the date column.
        null_handling_strategy: UPDATE or ALLOW_NULLS.
        blocking_issues: Problems that forbid migration.
    """

    task_id: int
    recommended_strategy: str | None = None
    recommended_method: str | None = None
    date_column_name: str | None = None
    date_column_type: str | None = None
    date_conversion_expr: str | None = None
    requires_conversion: bool = False
    partition_boundary_min_date: datetime | None = None
    partition_boundary_max_date: datetime | None = None
    null_handling_strategy: NullHandling = NullHandling.ALLOW_NULLS
    null_default_value: str | None = None
    supports_online_redef: bool = False
    table_rows: int | None = None
    blocking_issues: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def is_blocked(self) -> bool:
        return bool(self.blocking_issues)


@dataclass(frozen=True)
class ColumnInfo:
    """A column of the source table as reported by ``dba_tab_columns``."""

    name: str
    data_type: str
    data_length: int | None = None
    data_precision: int | None = None
    data_scale: int | None = None
    nullable: bool = True
    column_id: int = 0


@dataclass(frozen=True)
class IndexInfo:
    """An index of a table; ``is_primary_key`` marks the index backing the PK."""

    name: str
    uniqueness: str = "NONUNIQUE"
    is_primary_key: bool = False


@dataclass(frozen=True)
class ConstraintInfo:
    """A constraint of a table; ``constraint_type`` is P, U, C or R."""

    name: str
    constraint_type: str
    search_condition: str | None = None

    @property
    def is_not_null_check(self) -> bool:
        """True for the system NOT NULL checks carried by column definitions."""
        return (
            self.constraint_type == "C"
            and self.search_condition is not None
            and "IS NOT NULL" in self.search_condition.upper()
        )


@dataclass(frozen=True)
class ExecutionStep:
    """
    Append-only execution log record.

    Attributes:
        execution_id: Orchestration run that wrote the step.
        task_id: Task being migrated.
        step_number: Position within the run.
        step_name: Short identifier, e.g. ``CREATE_PARTITIONED_TABLE``.
        step_type: Kind of statement.
        sql_statement: Statement text, present for audit and replay.
        status: Outcome of the step.
    """

    execution_id: UUID
    task_id: int
    step_number: int
    step_name: str
    step_type: StepType
    status: StepStatus
    start_time: datetime
    end_time: datetime
    sql_statement: str | None = None
    error_code: int | None = None
    error_message: str | None = None

    @property
    def duration_seconds(self) -> float:
        return (self.end_time - self.start_time).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "execution_id": str(self.execution_id),
            "task_id": self.task_id,
            "step_number": self.step_number,
            "step_name": self.step_name,
            "step_type": self.step_type.value,
            "status": self.status.value,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "duration_seconds": self.duration_seconds,
            "sql_statement": self.sql_statement,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


@dataclass(frozen=True)
class MigrationResult:
    """
    Outcome of one orchestration run.

    Attributes:
        task_id: Task that was run.
        execution_id: Run identifier, shared with the execution log.
        status: Final task status.
        method_used: Strategy that actually migrated the table.
        simulate: True for a dry run.
        statements: Statements planned (simulate) or issued, in order.
        fallbacks: Human readable reasons for each strategy that was skipped.
    """

    task_id: int
    execution_id: UUID
    status: TaskStatus
    method_used: MigrationMethod | None = None
    simulate: bool = False
    statements: tuple[str, ...] = ()
    fallbacks: tuple[str, ...] = ()
    duration_seconds: float | None = None
    space_saved_mb: float | None = None
    error_message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == TaskStatus.COMPLETED or (
            self.simulate and self.error_message is None
        )


@dataclass(frozen=True)
class ILMPolicy:
    """
    A lifecycle policy for the migrated table, evaluated by the policy engine.

    ``policy_type`` is COMPRESSION, TIERING, ARCHIVAL or PURGE; ``action_type``
    is COMPRESS, MOVE, READ_ONLY or DROP.
    """

    policy_name: str
    table_owner: str
    table_name: str
    policy_type: str
    action_type: str
    age_days: int | None = None
    age_months: int | None = None
    target_tablespace: str | None = None
    compression_type: str | None = None
    priority: int = 100
    enabled: bool = True


@dataclass(frozen=True)
class ThresholdProfile:
    """Age thresholds derived from a tier template; hot < warm < cold."""

    profile_name: str
    hot_threshold_days: int
    warm_threshold_days: int
    cold_threshold_days: int
    description: str | None = None

    def __post_init__(self) -> None:
        if not (self.hot_threshold_days < self.warm_threshold_days < self.cold_threshold_days):
            raise ValueError(
                "thresholds must satisfy hot < warm < cold, got "
                f"{self.hot_threshold_days}/{self.warm_threshold_days}/{self.cold_threshold_days}"
            )


@dataclass
class RunCounters:
    """Totals reported by batch execution."""

    executed: int = 0
    succeeded: int = 0
    failed: int = 0
    results: list[MigrationResult] = field(default_factory=list)


__all__ = [
    "TaskStatus",
    "VALID_TRANSITIONS",
    "MigrationMethod",
    "PartitionType",
    "Tier",
    "NullHandling",
    "StepStatus",
    "StepType",
    "MigrationTask",
    "AnalysisRecord",
    "ColumnInfo",
    "IndexInfo",
    "ConstraintInfo",
    "ExecutionStep",
    "MigrationResult",
    "ILMPolicy",
    "ThresholdProfile",
    "RunCounters",
]
