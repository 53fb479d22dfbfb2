"""
partmigrate - Partition migration for Oracle warehouse tables.

This library provides:
- A Migration Orchestrator with CTAS, online reorganization and partition
  exchange strategies, declared fallback chains, backup and rollback
- A Partition DDL Builder for uniform and HOT/WARM/COLD tiered layouts
- Dependent object reconstruction with collision-free two-phase renames
- Partition naming for system-generated partitions
- ILM policy registration from typed tier templates
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("partmigrate")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from partmigrate.catalog import Catalog, OracleCatalog
from partmigrate.config import MigratorConfig, load_config
from partmigrate.context import ExecutionContext
from partmigrate.exceptions import (
    CapabilityError,
    ErrorClassification,
    ErrorRecoverability,
    ErrorSeverity,
    ExchangeNotApplicableError,
    InsufficientPrivilegeError,
    MigrationError,
    MigrationIntegrityError,
    MigrationValidationError,
    RollbackError,
    RowCountMismatchError,
    StepExecutionError,
    TaskLockedError,
    TaskNotFoundError,
    TaskStateError,
    TemplateValidationError,
    UnsupportedPartitionTypeError,
)
from partmigrate.ilm import ILMPolicyApplier, derive_policies, derive_threshold_profile
from partmigrate.intervals import IntervalGranularity
from partmigrate.locks import InMemoryTaskLockManager, TaskLease, TaskLockManager
from partmigrate.models import (
    AnalysisRecord,
    ColumnInfo,
    ConstraintInfo,
    ExecutionStep,
    ILMPolicy,
    IndexInfo,
    MigrationMethod,
    MigrationResult,
    MigrationTask,
    NullHandling,
    PartitionType,
    RunCounters,
    StepStatus,
    StepType,
    TaskStatus,
    ThresholdProfile,
    Tier,
)
from partmigrate.orchestrator import MigrationOrchestrator
from partmigrate.partitioning import (
    CreateTableStatement,
    PartitionDDLBuilder,
    PartitionRenamer,
    compute_tier_boundaries,
    resolve_partition_name,
)
from partmigrate.reconstruct import DependentObjectReconstructor
from partmigrate.repositories import (
    ExecutionLogRepository,
    ILMRepository,
    InMemoryExecutionLogRepository,
    InMemoryILMRepository,
    InMemoryTaskRepository,
    OracleExecutionLogRepository,
    OracleILMRepository,
    OracleTaskRepository,
    TaskRepository,
)
from partmigrate.strategies import (
    CTASStrategy,
    Eligibility,
    MigrationStrategy,
    OnlineRedefinitionStrategy,
    PartitionExchangeStrategy,
    StrategyOutcome,
    fallback_chain,
)
from partmigrate.templates import TemplateDocument, TierSpec, TierTemplate, load_template

__all__ = [
    "__version__",
    # Orchestration
    "MigrationOrchestrator",
    "ExecutionContext",
    "MigratorConfig",
    "load_config",
    # Strategies
    "MigrationStrategy",
    "Eligibility",
    "StrategyOutcome",
    "fallback_chain",
    "CTASStrategy",
    "OnlineRedefinitionStrategy",
    "PartitionExchangeStrategy",
    # DDL
    "PartitionDDLBuilder",
    "CreateTableStatement",
    "compute_tier_boundaries",
    "resolve_partition_name",
    "PartitionRenamer",
    "DependentObjectReconstructor",
    "IntervalGranularity",
    # Templates and ILM
    "TierSpec",
    "TierTemplate",
    "TemplateDocument",
    "load_template",
    "ILMPolicyApplier",
    "derive_policies",
    "derive_threshold_profile",
    # Models
    "MigrationTask",
    "AnalysisRecord",
    "ColumnInfo",
    "IndexInfo",
    "ConstraintInfo",
    "ExecutionStep",
    "MigrationResult",
    "RunCounters",
    "ILMPolicy",
    "ThresholdProfile",
    "TaskStatus",
    "MigrationMethod",
    "PartitionType",
    "Tier",
    "NullHandling",
    "StepStatus",
    "StepType",
    # Persistence
    "Catalog",
    "OracleCatalog",
    "TaskRepository",
    "OracleTaskRepository",
    "InMemoryTaskRepository",
    "ExecutionLogRepository",
    "OracleExecutionLogRepository",
    "InMemoryExecutionLogRepository",
    "ILMRepository",
    "OracleILMRepository",
    "InMemoryILMRepository",
    "TaskLease",
    "TaskLockManager",
    "InMemoryTaskLockManager",
    # Exceptions
    "MigrationError",
    "ErrorSeverity",
    "ErrorRecoverability",
    "ErrorClassification",
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
]
