"""
Partition layout: boundaries, plans, DDL building and partition naming.

Nothing in this package executes statements except ``PartitionRenamer``,
which goes through the run's ExecutionContext.
"""

from partmigrate.partitioning.boundaries import (
    TIER_ORDER,
    PartitionBoundary,
    TierAge,
    TierBoundaries,
    TierLayout,
    compute_cutoffs,
    compute_tier_boundaries,
    tier_layouts,
    uniform_lower_boundary,
)
from partmigrate.partitioning.builder import (
    CONVERTED_SUFFIX,
    PART_SUFFIX,
    PartitionDDLBuilder,
    converted_column_name,
    default_list_values,
    null_default_expression,
    null_key_default,
)
from partmigrate.partitioning.naming import (
    PROTECTED_PARTITIONS,
    PartitionRenamer,
    RenameSummary,
    resolve_partition_name,
)
from partmigrate.partitioning.plans import (
    DEFAULT_LIST_PARTITION,
    INITIAL_PARTITION,
    PartitionPlan,
    TieredPartitionPlan,
    UniformPartitionPlan,
    uses_tiered_plan,
)
from partmigrate.partitioning.statement import (
    ColumnDefinition,
    CreateTableStatement,
    ListPartition,
    PartitionSpec,
    RangePartition,
    StorageOptions,
)

__all__ = [
    # Boundaries
    "TIER_ORDER",
    "TierAge",
    "TierLayout",
    "PartitionBoundary",
    "TierBoundaries",
    "tier_layouts",
    "compute_cutoffs",
    "compute_tier_boundaries",
    "uniform_lower_boundary",
    # Statement
    "ColumnDefinition",
    "StorageOptions",
    "RangePartition",
    "ListPartition",
    "PartitionSpec",
    "CreateTableStatement",
    # Plans
    "DEFAULT_LIST_PARTITION",
    "INITIAL_PARTITION",
    "PartitionPlan",
    "UniformPartitionPlan",
    "TieredPartitionPlan",
    "uses_tiered_plan",
    # Builder
    "PART_SUFFIX",
    "CONVERTED_SUFFIX",
    "converted_column_name",
    "default_list_values",
    "null_default_expression",
    "null_key_default",
    "PartitionDDLBuilder",
    # Naming
    "PROTECTED_PARTITIONS",
    "resolve_partition_name",
    "RenameSummary",
    "PartitionRenamer",
]
