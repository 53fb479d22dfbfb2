"""
Online reorganization strategy using DBMS_REDEFINITION.

The table stays available while an interim partitioned copy,
``<TABLE>_REDEF``, is populated and kept in sync. FINISH_REDEF_TABLE swaps
the two definitions: afterwards the original name holds the partitioned
table and ``<TABLE>_REDEF`` holds the original structure and rows.
"""

from __future__ import annotations

import logging

from partmigrate.catalog import (
    REDEF_CONS_USE_PK,
    REDEF_CONS_USE_ROWID,
    abort_redef_statement,
    can_redef_statement,
    copy_dependents_statement,
    finish_redef_statement,
    gather_stats_statement,
    start_redef_statement,
    suffixed,
    sync_interim_statement,
)
from partmigrate.context import ExecutionContext
from partmigrate.exceptions import InsufficientPrivilegeError, StepExecutionError
from partmigrate.models import MigrationMethod, StepType
from partmigrate.partitioning import PartitionDDLBuilder, PartitionRenamer
from partmigrate.reconstruct import MIGR_SUFFIX, drop_table_quietly
from partmigrate.strategies.base import Eligibility, StrategyOutcome

logger = logging.getLogger(__name__)

REDEF_SUFFIX = "_REDEF"

_OPTION_NAMES = {REDEF_CONS_USE_PK: "primary key", REDEF_CONS_USE_ROWID: "rowid"}


class OnlineRedefinitionStrategy:
    """
    Online reorganization.

    Ineligible when the partition key needs a type conversion, when the
    table is below ``MigratorConfig.online_min_rows``, or when the engine
    rejects the table for both the primary-key and rowid modes. A check
    failing with one of ``MigratorConfig.fallback_error_codes`` raises
    InsufficientPrivilegeError.
    """

    method = MigrationMethod.ONLINE

    def __init__(self, renamer: PartitionRenamer | None = None) -> None:
        self._renamer = renamer or PartitionRenamer()

    async def eligibility(self, ctx: ExecutionContext) -> Eligibility:
        task, analysis = ctx.task, ctx.analysis
        if analysis is not None and analysis.requires_conversion:
            return Eligibility.no("partition key requires a date conversion")

        rows = task.source_rows
        if rows is None and analysis is not None:
            rows = analysis.table_rows
        if rows is not None and rows < ctx.config.online_min_rows:
            return Eligibility.no(
                f"{rows} rows is below the online threshold of {ctx.config.online_min_rows}"
            )

        owner, table = ctx.owner, task.source_table
        last_error = None
        for option in (REDEF_CONS_USE_PK, REDEF_CONS_USE_ROWID):
            try:
                await ctx.execute(
                    "CAN_REDEF_TABLE",
                    StepType.PLSQL,
                    can_redef_statement(owner, table, option),
                    mutating=False,
                    log=False,
                )
            except StepExecutionError as e:
                if e.ora_code is not None and e.ora_code in ctx.config.fallback_error_codes:
                    raise InsufficientPrivilegeError(
                        "insufficient privilege for online reorganization",
                        e.ora_code,
                        task_id=task.id,
                    ) from e
                logger.info(
                    "Online reorganization by %s not possible for %s: %s",
                    _OPTION_NAMES[option],
                    task.qualified_name,
                    e.error,
                )
                last_error = e.error
                continue
            return Eligibility.ok(redef_option=option)

        return Eligibility.no(f"table cannot be reorganized online: {last_error}")

    async def execute(self, ctx: ExecutionContext, eligibility: Eligibility) -> StrategyOutcome:
        task = ctx.task
        owner, table = ctx.owner, task.source_table
        interim = suffixed(table, REDEF_SUFFIX)
        option = eligibility.redef_option or REDEF_CONS_USE_PK

        columns = await ctx.catalog.get_columns(owner, table)
        statement = PartitionDDLBuilder(ctx.config).build(
            task, ctx.analysis, columns, ctx.template, now=ctx.now, table_name=interim
        )

        started = False
        try:
            if await ctx.catalog.table_exists(owner, interim):
                await drop_table_quietly(ctx, owner, interim, step_name="DROP_STALE_INTERIM")
            await ctx.execute("CREATE_INTERIM_TABLE", StepType.DDL, statement.render())
            await ctx.execute(
                "START_REDEF_TABLE",
                StepType.PLSQL,
                start_redef_statement(owner, table, interim, option),
            )
            started = True
            await ctx.execute(
                "COPY_TABLE_DEPENDENTS",
                StepType.PLSQL,
                copy_dependents_statement(owner, table, interim),
            )
            await ctx.execute(
                "SYNC_INTERIM_TABLE", StepType.PLSQL, sync_interim_statement(owner, table, interim)
            )
            await ctx.execute(
                "GATHER_STATISTICS",
                StepType.STATS,
                gather_stats_statement(owner, interim, ctx.parallel_degree),
            )
            await ctx.execute(
                "FINISH_REDEF_TABLE",
                StepType.PLSQL,
                finish_redef_statement(owner, table, interim),
            )
        except Exception:
            logger.error("Online reorganization of %s failed", task.qualified_name)
            if started:
                await self._abort(ctx, owner, table, interim)
            await drop_table_quietly(ctx, owner, interim, step_name="CLEANUP_INTERIM")
            raise

        if task.keep_original:
            outcome = await self._restore_original_name(ctx, owner, table, interim)
        else:
            outcome = StrategyOutcome(
                method=self.method,
                migrated_table=table,
                reference_table=interim,
                backup_table=interim,
                can_rollback=True,
            )

        await self._renamer.rename_system_partitions(ctx, owner, outcome.migrated_table)
        return outcome

    async def _abort(self, ctx: ExecutionContext, owner: str, table: str, interim: str) -> None:
        try:
            await ctx.execute(
                "ABORT_REDEF_TABLE",
                StepType.ROLLBACK,
                abort_redef_statement(owner, table, interim),
            )
        except StepExecutionError as e:
            logger.warning("ABORT_REDEF_TABLE failed for %s.%s: %s", owner, table, e.error)

    async def _restore_original_name(
        self, ctx: ExecutionContext, owner: str, table: str, interim: str
    ) -> StrategyOutcome:
        migrated = suffixed(table, MIGR_SUFFIX)
        await ctx.execute(
            "RENAME_MIGRATED_TABLE", StepType.DDL, f"ALTER TABLE {owner}.{table} RENAME TO {migrated}"
        )
        await ctx.execute(
            "RESTORE_ORIGINAL_NAME", StepType.DDL, f"ALTER TABLE {owner}.{interim} RENAME TO {table}"
        )
        return StrategyOutcome(
            method=self.method,
            migrated_table=migrated,
            reference_table=table,
            backup_table=None,
            can_rollback=False,
        )


__all__ = [
    "REDEF_SUFFIX",
    "OnlineRedefinitionStrategy",
]
