"""
Partition DDL builder.

``PartitionDDLBuilder`` turns a task, its analysis record, the source
columns and an optional tier template into a ``CreateTableStatement``. It
never executes anything and raises every validation error before returning.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from datetime import datetime

from partmigrate.catalog import literal
from partmigrate.config import MigratorConfig
from partmigrate.exceptions import MigrationValidationError, UnsupportedPartitionTypeError
from partmigrate.intervals import IntervalGranularity, interval_expression
from partmigrate.models import AnalysisRecord, ColumnInfo, MigrationTask, PartitionType
from partmigrate.partitioning.boundaries import (
    compute_tier_boundaries,
    tier_layouts,
    uniform_lower_boundary,
)
from partmigrate.partitioning.plans import (
    PartitionPlan,
    TieredPartitionPlan,
    UniformPartitionPlan,
    uses_tiered_plan,
)
from partmigrate.partitioning.statement import (
    ColumnDefinition,
    CreateTableStatement,
    StorageOptions,
)
from partmigrate.templates import TemplateDocument, require_tiers

logger = logging.getLogger(__name__)

PART_SUFFIX = "_PART"
CONVERTED_SUFFIX = "_CONVERTED"

_CHARACTER_TYPES = ("VARCHAR2", "CHAR", "NVARCHAR2", "NCHAR")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def converted_column_name(column: str) -> str:
    """Name of the DATE column that replaces a converted date surrogate."""
    if column.upper().endswith(CONVERTED_SUFFIX):
        return column.upper()
    return f"{column.upper()}{CONVERTED_SUFFIX}"


def null_default_expression(value: str | None, fallback: str) -> str:
    """
    SQL expression replacing NULL partition keys under the UPDATE strategy.

    A plain ``YYYY-MM-DD`` value becomes a TO_DATE call; anything else is
    taken as an expression supplied by the analyzer.

    Example:
        >>> null_default_expression(None, "5999-01-01")
        "TO_DATE('5999-01-01', 'YYYY-MM-DD')"
    """
    raw = (value or fallback).strip()
    if _ISO_DATE.match(raw):
        return f"TO_DATE('{raw}', 'YYYY-MM-DD')"
    return raw


def null_key_default(
    column: ColumnInfo | None, value: str | None, fallback: str
) -> str | None:
    """
    Value written into NULL partition keys of ``column`` under the UPDATE strategy.

    Date keys use null_default_expression, so ``fallback`` applies when the
    analyzer gave no value. Character keys get a bare value quoted; numeric
    and unknown keys take it as given. Returns None when a non-date key has
    no value to write.

    Example:
        >>> null_key_default(ColumnInfo("REGION", "VARCHAR2"), "UNKNOWN", "5999-01-01")
        "'UNKNOWN'"
    """
    if column is not None and _is_date_type(column.data_type):
        return null_default_expression(value, fallback)
    raw = (value or "").strip()
    if not raw:
        return None
    if column is not None and column.data_type.upper().startswith(_CHARACTER_TYPES):
        return raw if raw.startswith("'") else literal(raw)
    return raw


def _is_date_type(data_type: str) -> bool:
    data_type = data_type.upper()
    return data_type == "DATE" or data_type.startswith("TIMESTAMP")


def default_list_values(column: ColumnInfo | None) -> tuple[str, ...]:
    """
    Values of the default partition of an AUTOMATIC LIST table.

    AUTOMATIC list tables cannot have a DEFAULT partition, so the first
    partition holds a placeholder value of the key's type.
    """
    if column is None:
        return ("'NAME'",)
    data_type = column.data_type.upper()
    if data_type.startswith(_CHARACTER_TYPES):
        return ("'NAME'",)
    if data_type == "NUMBER" or data_type.startswith(("FLOAT", "BINARY_")):
        return ("-1",)
    if _is_date_type(data_type):
        return ("DATE '5999-12-31'",)
    return ("'NAME'",)


def _floor_granularity(interval_clause: str) -> IntervalGranularity:
    # Multi-period intervals without a keyword still floor by their unit
    granularity = IntervalGranularity.parse(interval_clause)
    if granularity is not None:
        return granularity
    upper = interval_clause.upper()
    if "YEAR" in upper:
        return IntervalGranularity.YEARLY
    if "MONTH" in upper:
        return IntervalGranularity.MONTHLY
    return IntervalGranularity.DAILY


class PartitionDDLBuilder:
    """
    Builds the CREATE TABLE statement for a migration's new table.

    Uniform mode partitions on a single key: AUTOMATIC LIST, HASH, RANGE with
    a MAXVALUE partition, or RANGE + INTERVAL starting below the oldest row.
    Tiered mode is used for RANGE tasks whose template enables a tier layout.

    Example:
        >>> builder = PartitionDDLBuilder(MigratorConfig())
        >>> statement = builder.build(task, analysis, columns, now=datetime(2024, 6, 1))
        >>> print(statement.render())
        CREATE TABLE DWH.SALES_PART
        ...
    """

    def __init__(self, config: MigratorConfig | None = None) -> None:
        self._config = config or MigratorConfig()

    def partition_key(self, task: MigrationTask, analysis: AnalysisRecord | None) -> str:
        """
        Partition key column of the new table.

        Raises:
            MigrationValidationError: If neither the task nor the analysis names one
        """
        key = task.key_column
        if key is None and analysis is not None and analysis.date_column_name:
            key = analysis.date_column_name.upper()
        if key is None:
            raise MigrationValidationError(
                f"No partition key for {task.qualified_name}", task_id=task.id
            )
        if (
            analysis is not None
            and analysis.requires_conversion
            and analysis.date_column_name
            and key == analysis.date_column_name.upper()
        ):
            return converted_column_name(key)
        return key

    def target_columns(
        self,
        columns: Sequence[ColumnInfo],
        analysis: AnalysisRecord | None,
    ) -> tuple[ColumnDefinition, ...]:
        """Column definitions of the new table, in source column order."""
        converted = None
        if analysis is not None and analysis.requires_conversion and analysis.date_column_name:
            converted = analysis.date_column_name.upper()

        definitions = []
        for column in sorted(columns, key=lambda c: c.column_id):
            if converted is not None and column.name.upper() == converted:
                definitions.append(
                    ColumnDefinition(
                        name=converted_column_name(column.name),
                        data_type="DATE",
                        nullable=False,
                    )
                )
            else:
                definitions.append(ColumnDefinition.from_column_info(column))
        return tuple(definitions)

    def build(
        self,
        task: MigrationTask,
        analysis: AnalysisRecord | None,
        columns: Sequence[ColumnInfo],
        template: TemplateDocument | None = None,
        *,
        source_min: datetime | None = None,
        now: datetime | None = None,
        table_name: str | None = None,
    ) -> CreateTableStatement:
        """
        Build the CREATE TABLE statement for ``task``.

        Args:
            task: Migration task
            analysis: Analysis record, or None to force uniform mode
            columns: Source table columns
            template: Parsed ILM template of the task, if any
            source_min: Oldest key value; defaults to the analysis minimum
            now: Reference time for tier cutoffs and empty tables
            table_name: Name of the new table; defaults to ``<TABLE>_PART``

        Returns:
            The statement, not yet rendered

        Raises:
            UnsupportedPartitionTypeError: For partition types other than RANGE, LIST, HASH
            MigrationValidationError: For a missing key or column list
            TemplateValidationError: For an incomplete or inconsistent tier template
        """
        if not columns:
            raise MigrationValidationError(
                f"No columns found for {task.qualified_name}", task_id=task.id
            )
        now = now or datetime.now()
        if source_min is None and analysis is not None:
            source_min = analysis.partition_boundary_min_date

        key = self.partition_key(task, analysis)
        plan = self._select_plan(task, analysis, columns, template, key, source_min, now)

        statement = CreateTableStatement(
            owner=task.source_owner,
            table=table_name or task.target_name(PART_SUFFIX),
            columns=self.target_columns(columns, analysis),
            partitioning=plan.partitioning(key),
            storage=plan.table_storage(),
            parallel_degree=task.parallel_degree,
            row_movement=task.enable_row_movement,
        )
        logger.debug(
            "Built %s layout for %s: %d explicit partitions",
            type(plan).__name__,
            task.qualified_name,
            len(statement.partitioning.partitions),
        )
        return statement

    def build_exchange_shell(
        self,
        task: MigrationTask,
        columns: Sequence[ColumnInfo],
        key: str,
        granularity: IntervalGranularity,
        period_start: datetime,
        *,
        table_name: str | None = None,
    ) -> CreateTableStatement:
        """
        Build a RANGE + INTERVAL shell whose single partition covers one period.

        The source table is later exchanged into that partition, so the shell
        keeps the source column list unchanged.
        """
        start = granularity.floor(period_start)
        plan = UniformPartitionPlan(
            method=PartitionType.RANGE.value,
            interval=granularity.expression,
            lower_boundary=granularity.add(start),
            storage=self._uniform_storage(task),
            initial_name=granularity.format_name(start),
        )
        return CreateTableStatement(
            owner=task.source_owner,
            table=table_name or task.target_name(PART_SUFFIX),
            columns=self.target_columns(columns, None),
            partitioning=plan.partitioning(key),
            storage=plan.table_storage(),
            parallel_degree=task.parallel_degree,
            row_movement=task.enable_row_movement,
        )

    def _uniform_storage(self, task: MigrationTask) -> StorageOptions:
        return StorageOptions(
            tablespace=task.target_tablespace,
            compression=task.compression_type if task.use_compression else None,
        )

    def _select_plan(
        self,
        task: MigrationTask,
        analysis: AnalysisRecord | None,
        columns: Sequence[ColumnInfo],
        template: TemplateDocument | None,
        key: str,
        source_min: datetime | None,
        now: datetime,
    ) -> PartitionPlan:
        method = task.base_partition_type
        try:
            PartitionType(method)
        except ValueError:
            raise UnsupportedPartitionTypeError(task.partition_type, task_id=task.id) from None

        if uses_tiered_plan(task, template):
            if analysis is None:
                logger.warning(
                    "No analysis record for task %s; using uniform partitioning", task.id
                )
            else:
                tiers = require_tiers(template)  # type: ignore[arg-type]
                boundaries = compute_tier_boundaries(tier_layouts(tiers), source_min, now)
                return TieredPartitionPlan(template=tiers, boundaries=boundaries)
        elif analysis is None:
            logger.warning("No analysis record for task %s; using uniform partitioning", task.id)

        storage = self._uniform_storage(task)
        if method == PartitionType.HASH.value:
            return UniformPartitionPlan(method=method, storage=storage)

        if method == PartitionType.LIST.value:
            if task.interval_clause:
                raise MigrationValidationError(
                    "INTERVAL partitioning requires RANGE, got LIST", task_id=task.id
                )
            values: tuple[str, ...] = ()
            if task.automatic_list:
                if task.list_default_values:
                    values = tuple(
                        v.strip() for v in task.list_default_values.split(",") if v.strip()
                    )
                else:
                    by_name = {c.name.upper(): c for c in columns}
                    values = default_list_values(by_name.get(key))
            return UniformPartitionPlan(
                method=method, automatic=task.automatic_list, list_values=values, storage=storage
            )

        if not task.interval_clause:
            return UniformPartitionPlan(method=method, storage=storage)

        granularity = _floor_granularity(task.interval_clause)
        lower = uniform_lower_boundary(
            source_min or now, granularity, self._config.boundary_buffer_periods
        )
        return UniformPartitionPlan(
            method=method,
            interval=interval_expression(task.interval_clause),
            lower_boundary=lower,
            storage=storage,
        )


__all__ = [
    "PART_SUFFIX",
    "CONVERTED_SUFFIX",
    "converted_column_name",
    "null_default_expression",
    "null_key_default",
    "default_list_values",
    "PartitionDDLBuilder",
]
