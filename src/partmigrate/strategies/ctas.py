"""
CTAS strategy: build a new partitioned table and bulk copy into it.

Steps:
    1. build the CREATE TABLE statement
    2. create ``<TABLE>_PART``
    3. copy rows with a direct-path parallel insert
    4. recreate indexes, then constraints, under ``_MIGR`` names
    5. gather statistics
    6. cut over, or publish as ``<TABLE>_MIGR`` when the original is kept
    7. rename system-generated partitions

Any failure before cutover drops what was built and re-raises.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from partmigrate.catalog import gather_stats_statement, suffixed
from partmigrate.context import ExecutionContext
from partmigrate.exceptions import StepExecutionError
from partmigrate.models import AnalysisRecord, ColumnInfo, MigrationMethod, NullHandling, StepType
from partmigrate.partitioning import (
    PART_SUFFIX,
    PartitionDDLBuilder,
    PartitionRenamer,
    converted_column_name,
    null_default_expression,
)
from partmigrate.reconstruct import (
    MIGR_SUFFIX,
    OLD_SUFFIX,
    DependentObjectReconstructor,
    DependentObjects,
    ReconstructionResult,
    drop_table_quietly,
)
from partmigrate.strategies.base import Eligibility, StrategyOutcome

logger = logging.getLogger(__name__)


def copy_select_list(
    columns: Sequence[ColumnInfo],
    analysis: AnalysisRecord | None,
    null_default: str | None = None,
) -> str:
    """
    SELECT list feeding the bulk copy.

    Without a conversion the new table has the source's column order and
    ``*`` is enough. With one, the date column is replaced by its conversion
    expression, wrapped in NVL when NULLs must be replaced.
    """
    if analysis is None or not analysis.requires_conversion or not analysis.date_conversion_expr:
        return "*"
    date_column = (analysis.date_column_name or "").upper()
    expressions = []
    for column in sorted(columns, key=lambda c: c.column_id):
        if column.name.upper() == date_column:
            expression = analysis.date_conversion_expr
            if null_default is not None:
                expression = f"NVL({expression}, {null_default})"
            expressions.append(f"{expression} AS {converted_column_name(column.name)}")
        else:
            expressions.append(column.name)
    return ", ".join(expressions)


class CTASStrategy:
    """Create-table-as-select migration; always eligible."""

    method = MigrationMethod.CTAS

    def __init__(
        self,
        reconstructor: DependentObjectReconstructor | None = None,
        renamer: PartitionRenamer | None = None,
    ) -> None:
        self._reconstructor = reconstructor or DependentObjectReconstructor()
        self._renamer = renamer or PartitionRenamer()

    async def eligibility(self, ctx: ExecutionContext) -> Eligibility:
        return Eligibility.ok()

    def copy_statement(
        self,
        ctx: ExecutionContext,
        columns: Sequence[ColumnInfo],
        target_table: str,
    ) -> str:
        null_default = None
        if ctx.analysis is not None and ctx.analysis.null_handling_strategy is NullHandling.UPDATE:
            null_default = null_default_expression(
                ctx.analysis.null_default_value, ctx.config.null_default_date
            )
        select_list = copy_select_list(columns, ctx.analysis, null_default)
        degree = ctx.parallel_degree
        return (
            f"INSERT /*+ APPEND PARALLEL({degree}) */ INTO {ctx.owner}.{target_table} "
            f"SELECT {select_list} FROM {ctx.owner}.{ctx.task.source_table}"
        )

    async def execute(self, ctx: ExecutionContext, eligibility: Eligibility) -> StrategyOutcome:
        task = ctx.task
        owner, table = ctx.owner, task.source_table
        part = suffixed(table, PART_SUFFIX)

        columns = await ctx.catalog.get_columns(owner, table)
        statement = PartitionDDLBuilder(ctx.config).build(
            task, ctx.analysis, columns, ctx.template, now=ctx.now, table_name=part
        )
        objects = await self._reconstructor.capture(ctx, owner, table)
        created = ReconstructionResult()

        try:
            await self._reconstructor.cleanup_stale(ctx, owner, part)
            if await ctx.catalog.table_exists(owner, part):
                await drop_table_quietly(ctx, owner, part, step_name="DROP_STALE_TABLE")
            if task.keep_original:
                # A previous validation run still holds the _MIGR index names
                migrated = suffixed(table, MIGR_SUFFIX)
                if await ctx.catalog.table_exists(owner, migrated):
                    await drop_table_quietly(
                        ctx, owner, migrated, step_name="DROP_PREVIOUS_MIGR_TABLE"
                    )

            await ctx.execute("CREATE_PARTITIONED_TABLE", StepType.DDL, statement.render())
            await ctx.execute("COPY_DATA", StepType.DML, self.copy_statement(ctx, columns, part))
            await self._reconstructor.recreate_indexes(
                ctx, objects, table, part, created, statement.partitioning.key
            )
            await self._reconstructor.recreate_constraints(ctx, objects, table, part, created)
            await ctx.execute(
                "GATHER_STATISTICS",
                StepType.STATS,
                gather_stats_statement(owner, part, ctx.parallel_degree),
            )

            if task.keep_original:
                outcome = await self._publish_alongside(ctx, part)
            else:
                outcome = await self._cutover(ctx, objects, part, created)
        except Exception:
            logger.error("CTAS migration of %s failed; dropping %s", task.qualified_name, part)
            await self._reconstructor.drop_created(ctx, created, part)
            raise

        await self._renamer.rename_system_partitions(ctx, owner, outcome.migrated_table)
        return outcome

    async def _cutover(
        self,
        ctx: ExecutionContext,
        objects: DependentObjects,
        part: str,
        created: ReconstructionResult,
    ) -> StrategyOutcome:
        owner, table = ctx.owner, ctx.task.source_table
        old = suffixed(table, OLD_SUFFIX)

        await ctx.execute(
            "RENAME_ORIGINAL", StepType.DDL, f"ALTER TABLE {owner}.{table} RENAME TO {old}"
        )
        try:
            await ctx.execute(
                "RENAME_NEW_TABLE", StepType.DDL, f"ALTER TABLE {owner}.{part} RENAME TO {table}"
            )
        except StepExecutionError:
            # Put the original back before cleanup drops the new table
            await ctx.execute(
                "RESTORE_ORIGINAL", StepType.ROLLBACK, f"ALTER TABLE {owner}.{old} RENAME TO {table}"
            )
            raise

        # From here on the new table is live; cleanup must not drop it
        created_after_cutover = ReconstructionResult(
            indexes=list(created.indexes), constraints=list(created.constraints)
        )
        created.indexes.clear()
        created.constraints.clear()
        await self._reconstructor.rename_after_cutover(
            ctx, objects, old, table, created_after_cutover
        )

        logger.info("Cut over %s.%s; original kept as %s", owner, table, old)
        return StrategyOutcome(
            method=self.method,
            migrated_table=table,
            reference_table=old,
            backup_table=old,
            can_rollback=True,
        )

    async def _publish_alongside(self, ctx: ExecutionContext, part: str) -> StrategyOutcome:
        owner, table = ctx.owner, ctx.task.source_table
        migrated = suffixed(table, MIGR_SUFFIX)
        await ctx.execute(
            "RENAME_NEW_TABLE", StepType.DDL, f"ALTER TABLE {owner}.{part} RENAME TO {migrated}"
        )
        logger.info("Published %s.%s alongside the untouched original", owner, migrated)
        return StrategyOutcome(
            method=self.method,
            migrated_table=migrated,
            reference_table=table,
            backup_table=None,
            can_rollback=False,
        )


__all__ = [
    "copy_select_list",
    "CTASStrategy",
]
