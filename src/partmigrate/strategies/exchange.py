"""
Partition exchange strategy.

When every row of the source falls into a single period, the source table
can become that period's partition without copying: a RANGE + INTERVAL
shell is created whose only partition covers the period, the source is
exchanged into it, and the shell takes the source's name. The emptied
source segment is kept as ``<TABLE>_EMPTY``.
"""

from __future__ import annotations

import logging
from datetime import datetime

from partmigrate.catalog import gather_stats_statement, suffixed
from partmigrate.context import ExecutionContext
from partmigrate.exceptions import (
    ExchangeNotApplicableError,
    MigrationValidationError,
    StepExecutionError,
)
from partmigrate.intervals import IntervalGranularity
from partmigrate.models import MigrationMethod, PartitionType, StepType
from partmigrate.partitioning import PART_SUFFIX, PartitionDDLBuilder, PartitionRenamer
from partmigrate.reconstruct import drop_table_quietly
from partmigrate.strategies.base import Eligibility, StrategyOutcome

logger = logging.getLogger(__name__)

EMPTY_SUFFIX = "_EMPTY"

_DATE_TYPES = ("DATE", "TIMESTAMP")


def periods_spanned(
    granularity: IntervalGranularity, source_min: datetime, source_max: datetime
) -> int:
    """Number of ``granularity`` periods touched by [source_min, source_max]."""
    cursor = granularity.floor(source_min)
    last = granularity.floor(source_max)
    count = 1
    while cursor < last:
        cursor = granularity.add(cursor)
        count += 1
    return count


class PartitionExchangeStrategy:
    """
    Exchange the whole table into one partition of a new shell.

    Ineligible when the partition key needs a conversion, when there is no
    DATE partition key, when the task keeps the original table, or when the
    data spans more than one period.
    """

    method = MigrationMethod.EXCHANGE

    def __init__(self, renamer: PartitionRenamer | None = None) -> None:
        self._renamer = renamer or PartitionRenamer()

    async def eligibility(self, ctx: ExecutionContext) -> Eligibility:
        task, analysis = ctx.task, ctx.analysis
        if analysis is not None and analysis.requires_conversion:
            return Eligibility.no("partition key requires a date conversion")
        if task.keep_original:
            return Eligibility.no("exchange always moves the original segment")
        if task.base_partition_type != PartitionType.RANGE.value:
            return Eligibility.no(f"exchange needs RANGE partitioning, got {task.base_partition_type}")

        try:
            key = PartitionDDLBuilder(ctx.config).partition_key(task, analysis)
        except MigrationValidationError:
            return Eligibility.no("no date column to partition on")

        columns = {c.name.upper(): c for c in await ctx.catalog.get_columns(ctx.owner, task.source_table)}
        column = columns.get(key)
        if column is None or not column.data_type.upper().startswith(_DATE_TYPES):
            return Eligibility.no(f"partition key {key} is not a DATE column")

        granularity = IntervalGranularity.parse(task.interval_clause) or IntervalGranularity.MONTHLY

        source_min = analysis.partition_boundary_min_date if analysis else None
        source_max = analysis.partition_boundary_max_date if analysis else None
        if source_min is None or source_max is None:
            source_min, source_max = await ctx.catalog.date_range(ctx.owner, task.source_table, key)
        if source_min is None or source_max is None:
            # Empty table: the current period holds it trivially
            source_min = source_max = ctx.now

        span = periods_spanned(granularity, source_min, source_max)
        if span > 1:
            return Eligibility.no(
                f"data spans {span} {granularity.value.lower()} periods "
                f"({source_min:%Y-%m-%d} to {source_max:%Y-%m-%d})"
            )
        return Eligibility.ok(granularity=granularity, period_start=granularity.floor(source_min))

    async def execute(self, ctx: ExecutionContext, eligibility: Eligibility) -> StrategyOutcome:
        task = ctx.task
        owner, table = ctx.owner, task.source_table
        shell = suffixed(table, PART_SUFFIX)
        empty = suffixed(table, EMPTY_SUFFIX)
        granularity, period_start = eligibility.granularity, eligibility.period_start
        if not eligibility.eligible or granularity is None or period_start is None:
            raise ExchangeNotApplicableError(
                f"No single exchange period established for {task.qualified_name}",
                task_id=task.id,
            )

        builder = PartitionDDLBuilder(ctx.config)
        columns = await ctx.catalog.get_columns(owner, table)
        key = builder.partition_key(task, ctx.analysis)
        statement = builder.build_exchange_shell(
            task, columns, key, granularity, period_start, table_name=shell
        )
        partition = granularity.format_name(granularity.floor(period_start))
        exchange_sql = (
            f"ALTER TABLE {owner}.{shell} EXCHANGE PARTITION {partition} "
            f"WITH TABLE {owner}.{table} INCLUDING INDEXES WITHOUT VALIDATION"
        )

        exchanged = renamed = False
        try:
            if await ctx.catalog.table_exists(owner, shell):
                await drop_table_quietly(ctx, owner, shell, step_name="DROP_STALE_TABLE")
            await ctx.execute("CREATE_EXCHANGE_TABLE", StepType.DDL, statement.render())
            await ctx.execute("EXCHANGE_PARTITION", StepType.DDL, exchange_sql)
            exchanged = True
            await ctx.execute(
                "RENAME_ORIGINAL", StepType.DDL, f"ALTER TABLE {owner}.{table} RENAME TO {empty}"
            )
            renamed = True
            await ctx.execute(
                "RENAME_NEW_TABLE", StepType.DDL, f"ALTER TABLE {owner}.{shell} RENAME TO {table}"
            )
        except Exception:
            logger.error("Partition exchange of %s failed", task.qualified_name)
            if renamed:
                await ctx.execute(
                    "RESTORE_ORIGINAL",
                    StepType.ROLLBACK,
                    f"ALTER TABLE {owner}.{empty} RENAME TO {table}",
                )
            if exchanged:
                # The rows are in the shell; swap them back into the source
                await self._swap_back(ctx, exchange_sql)
            await drop_table_quietly(ctx, owner, shell, step_name="CLEANUP_TABLE")
            raise

        await ctx.execute(
            "GATHER_STATISTICS",
            StepType.STATS,
            gather_stats_statement(owner, table, ctx.parallel_degree),
        )
        await self._renamer.rename_system_partitions(ctx, owner, table)

        # The emptied segment is no backup; rollback relies on the run's own copy
        backup = task.backup_table_name
        return StrategyOutcome(
            method=self.method,
            migrated_table=table,
            reference_table=None,
            backup_table=backup,
            can_rollback=backup is not None,
        )

    async def _swap_back(self, ctx: ExecutionContext, exchange_sql: str) -> None:
        try:
            await ctx.execute("UNDO_EXCHANGE", StepType.ROLLBACK, exchange_sql)
        except StepExecutionError as e:
            logger.critical(
                "Could not swap rows back into %s after a failed exchange: %s",
                ctx.task.qualified_name,
                e.error,
            )
            raise


__all__ = [
    "EMPTY_SUFFIX",
    "periods_spanned",
    "PartitionExchangeStrategy",
]
