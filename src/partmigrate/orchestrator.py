"""
Migration orchestrator.

The orchestrator drives one task through a run:

    1. entry guard: the task must be READY or ANALYZED and its analysis
       must carry no blocking issues
    2. exclusive task-row lock, held until the run ends
    3. RUNNING, source size snapshot, optional backup, NULL key remediation
    4. strategy dispatch along the fallback chain of the requested method
    5. ILM policies, row-count parity, COMPLETED

Entry guard and lock failures are raised to the caller; nothing has been
changed when they happen. Every failure after that point is caught at the
outermost boundary: it is written to the execution log as a
``MIGRATION_FAILED`` step, the task is marked FAILED, and a failed
MigrationResult is returned.

Example:
    >>> engine = create_async_engine("oracle+oracledb_async://...")
    >>> orchestrator = MigrationOrchestrator(engine, config=await load_config(engine))
    >>> result = await orchestrator.execute_migration(42, simulate=True)
    >>> for statement in result.statements:
    ...     print(statement)
"""

from __future__ import annotations

import logging
import re
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from partmigrate.catalog import Catalog, OracleCatalog, suffixed
from partmigrate.config import MigratorConfig
from partmigrate.context import ExecutionContext
from partmigrate.exceptions import (
    ErrorSeverity,
    MigrationError,
    MigrationValidationError,
    RollbackError,
    RowCountMismatchError,
    StepExecutionError,
    TaskStateError,
    extract_ora_code,
)
from partmigrate.ilm import ILMPolicyApplier
from partmigrate.intervals import interval_expression
from partmigrate.locks import TaskLock, TaskLockManager
from partmigrate.models import (
    MigrationMethod,
    MigrationResult,
    MigrationTask,
    NullHandling,
    PartitionType,
    RunCounters,
    StepStatus,
    StepType,
    TaskStatus,
)
from partmigrate.observability import (
    ATTR_EXECUTION_ID,
    ATTR_METHOD,
    ATTR_SIMULATE,
    ATTR_TABLE,
    ATTR_TASK_ID,
    Tracer,
    create_tracer,
)
from partmigrate.partitioning import (
    PartitionDDLBuilder,
    converted_column_name,
    null_key_default,
)
from partmigrate.repositories import (
    ExecutionLogRepository,
    ILMRepository,
    OracleExecutionLogRepository,
    OracleILMRepository,
    OracleTaskRepository,
    TaskRepository,
)
from partmigrate.strategies import (
    MigrationStrategy,
    StrategyOutcome,
    default_strategies,
    fallback_chain,
)
from partmigrate.templates import TemplateDocument

logger = logging.getLogger(__name__)

BACKUP_INFIX = "_BAK_"

# "RANGE(sale_date) INTERVAL MONTHLY", "HASH(customer_id) PARTITIONS 16",
# "LIST(region) AUTOMATIC", "RANGE(d) INTERVAL DAILY SUBPARTITION BY HASH(s) ..."
_STRATEGY_TYPE = re.compile(r"^\s*(RANGE|LIST|HASH)\s*(?:\(\s*([^)]*?)\s*\))?", re.IGNORECASE)
_STRATEGY_INTERVAL = re.compile(
    r"\bINTERVAL\s+(.+?)(?:\s+(?:SUBPARTITION|AUTOMATIC)\b.*)?$", re.IGNORECASE | re.DOTALL
)

_RECOMMENDABLE = (TaskStatus.ANALYZED, TaskStatus.ANALYZING)


def backup_table_name(table: str, now: datetime) -> str:
    """``<TABLE>_BAK_YYYYMMDD_HHMMSS``, truncated to the identifier limit."""
    return suffixed(table, f"{BACKUP_INFIX}{now:%Y%m%d_%H%M%S}")


def parse_recommended_strategy(strategy: str) -> tuple[str, str | None, str | None, bool]:
    """
    Split an analyzer recommendation into type, key, interval and AUTOMATIC.

    Raises:
        MigrationValidationError: If the text does not start with a partition type

    Example:
        >>> parse_recommended_strategy("RANGE(sale_date) INTERVAL MONTHLY")
        ('RANGE', 'SALE_DATE', 'MONTHLY', False)
    """
    match = _STRATEGY_TYPE.match(strategy)
    if match is None:
        raise MigrationValidationError(f"Cannot parse recommended strategy {strategy!r}")
    partition_type = match.group(1).upper()
    key = match.group(2).upper() if match.group(2) else None
    interval_match = _STRATEGY_INTERVAL.search(strategy)
    interval = interval_match.group(1).strip() if interval_match else None
    automatic = partition_type == PartitionType.LIST.value and bool(
        re.search(r"\bAUTOMATIC\b", strategy, re.IGNORECASE)
    )
    return partition_type, key, interval, automatic


class MigrationOrchestrator:
    """
    Runs migration tasks.

    Collaborators default to the Oracle implementations built on ``engine``;
    tests pass in-memory repositories, a fake catalog and an in-process lock
    manager instead.

    Args:
        engine: Async engine used for DDL sessions and default collaborators
        tasks: Task repository
        execution_log: Execution log repository
        ilm_repository: ILM template and policy repository
        catalog: Data dictionary access
        lock_manager: Task-row lock manager
        config: Migrator configuration
        strategies: Strategy per method; defaults to the built-in strategies
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to enable OpenTelemetry tracing
    """

    def __init__(
        self,
        engine: AsyncEngine,
        *,
        tasks: TaskRepository | None = None,
        execution_log: ExecutionLogRepository | None = None,
        ilm_repository: ILMRepository | None = None,
        catalog: Catalog | None = None,
        lock_manager: TaskLock | None = None,
        config: MigratorConfig | None = None,
        strategies: Mapping[MigrationMethod, MigrationStrategy] | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._engine = engine
        self._tasks = tasks or OracleTaskRepository(engine, tracer=self._tracer)
        self._execution_log = execution_log or OracleExecutionLogRepository(
            engine, tracer=self._tracer
        )
        self._ilm = ilm_repository or OracleILMRepository(engine, tracer=self._tracer)
        self._catalog = catalog or OracleCatalog(engine, tracer=self._tracer)
        self._lock_manager = lock_manager or TaskLockManager(engine, tracer=self._tracer)
        self._config = config or MigratorConfig()
        self._strategies = dict(strategies) if strategies is not None else default_strategies()

    @property
    def config(self) -> MigratorConfig:
        return self._config

    @asynccontextmanager
    async def _ddl_connection(self) -> AsyncIterator[AsyncConnection]:
        # Oracle DDL commits implicitly; run it outside any transaction
        async with self._engine.connect() as conn:
            conn = await conn.execution_options(isolation_level="AUTOCOMMIT")
            yield conn

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def execute_migration(self, task_id: int, simulate: bool = False) -> MigrationResult:
        """
        Migrate one task.

        Args:
            task_id: Task to run
            simulate: Plan every statement without issuing any mutation

        Returns:
            The run's MigrationResult; failures after the entry guard are
            reported here rather than raised

        Raises:
            TaskNotFoundError: If the task does not exist
            TaskStateError: If the task is not READY or ANALYZED
            MigrationValidationError: If the analysis reports blocking issues
            TaskLockedError: If another run holds the task
        """
        with self._tracer.span(
            "partmigrate.execute_migration",
            {ATTR_TASK_ID: task_id, ATTR_SIMULATE: simulate},
        ):
            task = await self._tasks.get(task_id)
            self._check_runnable(task)
            analysis = await self._tasks.get_analysis(task_id)
            if analysis is not None and analysis.is_blocked:
                raise MigrationValidationError(
                    "Task has blocking issues: " + "; ".join(analysis.blocking_issues),
                    task_id=task_id,
                )

            async with self._lock_manager.acquire(task_id) as lease:
                tasks = self._tasks.bind(lease.connection)
                # Another run may have finished between the guard and the lock
                task = await tasks.get(task_id)
                self._check_runnable(task)

                ctx = ExecutionContext(
                    task=task,
                    config=self._config,
                    catalog=self._catalog,
                    connection=None,
                    execution_log=self._execution_log,
                    analysis=analysis,
                    simulate=simulate,
                    tracer=self._tracer,
                )
                return await self._run(ctx, tasks)

    async def execute_all_ready_tasks(
        self,
        project_id: int | None = None,
        max_tasks: int | None = None,
        simulate: bool = False,
    ) -> RunCounters:
        """
        Run every READY or ANALYZED task, oldest first.

        Tasks rejected at entry (locked by another worker, moved on since
        they were listed, blocked) are skipped with a warning.
        """
        counters = RunCounters()
        ready = await self._tasks.list_ready(project_id, max_tasks)
        logger.info("Found %d ready migration tasks", len(ready))

        for task in ready:
            try:
                result = await self.execute_migration(task.id, simulate=simulate)
            except MigrationError as e:
                logger.warning("Skipping task %d (%s): %s", task.id, task.qualified_name, e)
                continue
            counters.executed += 1
            counters.results.append(result)
            if result.succeeded:
                counters.succeeded += 1
            else:
                counters.failed += 1

        logger.info(
            "Batch finished: %d executed, %d succeeded, %d failed",
            counters.executed,
            counters.succeeded,
            counters.failed,
        )
        return counters

    async def apply_recommendations(self, task_id: int) -> MigrationTask:
        """
        Copy the analyzer's recommendation onto the task and mark it READY.

        The partition key is the analyzed date column (its converted name
        when a conversion is required), else the key in the recommendation.
        The method is the analyzer's, else ONLINE for large tables that
        support online reorganization, else CTAS.

        Raises:
            TaskStateError: If the task has not been analyzed
            MigrationValidationError: If there is no usable recommendation
        """
        task = await self._tasks.get(task_id)
        if task.status not in _RECOMMENDABLE:
            raise TaskStateError(task_id, task.status.value, [s.value for s in _RECOMMENDABLE])

        analysis = await self._tasks.get_analysis(task_id)
        if analysis is None:
            raise MigrationValidationError("No analysis results found", task_id=task_id)
        if analysis.is_blocked:
            raise MigrationValidationError(
                "Cannot apply recommendations: " + "; ".join(analysis.blocking_issues),
                task_id=task_id,
            )
        if not analysis.recommended_strategy:
            raise MigrationValidationError(
                "No partitioning strategy recommended by analysis", task_id=task_id
            )

        partition_type, parsed_key, interval, automatic = parse_recommended_strategy(
            analysis.recommended_strategy
        )
        if analysis.date_column_name:
            key: str | None = analysis.date_column_name.upper()
            if analysis.requires_conversion:
                key = converted_column_name(key)
        else:
            key = parsed_key

        if analysis.recommended_method:
            method = MigrationMethod(analysis.recommended_method.upper())
        else:
            rows = task.source_rows if task.source_rows is not None else analysis.table_rows
            large = rows is not None and rows > self._config.online_min_rows
            method = (
                MigrationMethod.ONLINE
                if analysis.supports_online_redef and large
                else MigrationMethod.CTAS
            )

        await self._tasks.apply_recommendation(
            task_id,
            task.status,
            partition_type=f"{partition_type}({key})" if key else partition_type,
            partition_key=key,
            interval_clause=interval_expression(interval) if interval else None,
            migration_method=method.value,
            automatic_list=automatic,
        )
        logger.info(
            "Applied recommendation to task %d: %s key=%s interval=%s method=%s",
            task_id,
            partition_type,
            key,
            interval,
            method.value,
        )
        return await self._tasks.get(task_id)

    async def rollback_migration(self, task_id: int) -> MigrationResult:
        """
        Restore a COMPLETED task's table from its backup.

        Drops the migrated table and renames the backup to the original name.

        Raises:
            RollbackError: If the task cannot be rolled back or a statement fails
        """
        task = await self._tasks.get(task_id)
        if task.status != TaskStatus.COMPLETED:
            raise RollbackError(
                f"Only COMPLETED tasks can be rolled back, status is {task.status.value}",
                task_id=task_id,
            )
        if not task.can_rollback or not task.backup_table_name:
            raise RollbackError("Task has no backup to roll back to", task_id=task_id)

        async with self._lock_manager.acquire(task_id) as lease:
            tasks = self._tasks.bind(lease.connection)
            async with self._ddl_connection() as conn:
                ctx = ExecutionContext(
                    task=task,
                    config=self._config,
                    catalog=self._catalog,
                    connection=conn,
                    execution_log=self._execution_log,
                    tracer=self._tracer,
                )
                owner, table, backup = task.source_owner, task.source_table, task.backup_table_name
                try:
                    await ctx.execute(
                        "ROLLBACK_DROP_MIGRATED", StepType.ROLLBACK, f"DROP TABLE {owner}.{table} PURGE"
                    )
                    await ctx.execute(
                        "ROLLBACK_RESTORE_BACKUP",
                        StepType.ROLLBACK,
                        f"ALTER TABLE {owner}.{backup} RENAME TO {table}",
                    )
                except StepExecutionError as e:
                    logger.critical("Rollback of %s failed: %s", task.qualified_name, e)
                    raise RollbackError(str(e), task_id=task_id) from e

                await tasks.mark_rolled_back(task_id)
                await ctx.log_info("ROLLBACK_COMPLETE", f"{owner}.{table} restored from {backup}")

        logger.info("Rolled back task %d: %s restored from %s", task_id, task.qualified_name, backup)
        return MigrationResult(
            task_id=task_id,
            execution_id=ctx.execution_id,
            status=TaskStatus.ROLLED_BACK,
            statements=tuple(ctx.statements),
        )

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def _check_runnable(self, task: MigrationTask) -> None:
        if not task.status.is_runnable:
            raise TaskStateError(
                task.id, task.status.value, [TaskStatus.READY.value, TaskStatus.ANALYZED.value]
            )

    async def _run(self, ctx: ExecutionContext, tasks: TaskRepository) -> MigrationResult:
        task = ctx.task
        initial_status = task.status
        started = ctx.now
        fallbacks: list[str] = []

        logger.info(
            "Starting %s migration of task %d (%s)%s",
            task.migration_method,
            task.id,
            task.qualified_name,
            " [simulate]" if ctx.simulate else "",
        )
        try:
            if not ctx.simulate:
                await tasks.mark_running(task.id, initial_status, started)
                task.status = TaskStatus.RUNNING
            await ctx.log_info(
                "MIGRATION_START",
                f"{task.migration_method} migration of {task.qualified_name}"
                f" (execution {ctx.execution_id}, simulate={ctx.simulate})",
            )

            async with self._ddl_connection() as conn:
                ctx.connection = conn
                ctx.template = await self._load_template(ctx)
                await self._snapshot_source(ctx, tasks)
                if self._config.backup_enabled:
                    await self._create_backup(ctx, tasks)
                await self._remediate_nulls(ctx)

                outcome = await self._dispatch(ctx, fallbacks)

                task.backup_table_name = outcome.backup_table or task.backup_table_name
                task.can_rollback = outcome.can_rollback
                if not ctx.simulate:
                    await tasks.record_backup(task.id, task.backup_table_name, task.can_rollback)

                if ctx.template is not None and (
                    task.apply_ilm_policies or self._config.auto_ilm_enabled
                ):
                    await ILMPolicyApplier(self._ilm).apply(
                        ctx, ctx.owner, outcome.migrated_table
                    )

                if self._config.validate_enabled and not ctx.simulate:
                    await self._validate_row_counts(ctx, outcome)

                return await self._complete(ctx, tasks, outcome, initial_status, fallbacks)
        except Exception as e:
            return await self._fail(ctx, tasks, e, fallbacks)

    async def _load_template(self, ctx: ExecutionContext) -> TemplateDocument | None:
        name = ctx.task.ilm_policy_template
        if not name:
            return None
        template = await self._ilm.get_template(name)
        if template is None:
            raise MigrationValidationError(f"ILM template {name} not found", task_id=ctx.task.id)
        return template

    async def _snapshot_source(self, ctx: ExecutionContext, tasks: TaskRepository) -> None:
        task = ctx.task
        rows = await self._catalog.count_rows(ctx.owner, task.source_table)
        size_mb = await self._catalog.segment_size_mb(ctx.owner, task.source_table)
        task.source_rows, task.source_size_mb = rows, size_mb
        if not ctx.simulate:
            await tasks.record_source_metrics(task.id, rows, size_mb)
        await ctx.log_info("SOURCE_SNAPSHOT", f"{rows} rows, {size_mb:.2f} MB")

    async def _create_backup(self, ctx: ExecutionContext, tasks: TaskRepository) -> None:
        task = ctx.task
        backup = backup_table_name(task.source_table, ctx.now)
        await ctx.execute(
            "CREATE_BACKUP",
            StepType.DDL,
            f"CREATE TABLE {ctx.owner}.{backup} PARALLEL {ctx.parallel_degree} NOLOGGING "
            f"AS SELECT * FROM {task.qualified_name}",
        )
        task.backup_table_name = backup
        if not ctx.simulate:
            await tasks.record_backup(task.id, backup, task.can_rollback)
        logger.info("Backed up %s to %s", task.qualified_name, backup)

    async def _remediate_nulls(self, ctx: ExecutionContext) -> None:
        analysis = ctx.analysis
        if analysis is None or analysis.null_handling_strategy is not NullHandling.UPDATE:
            return
        if analysis.requires_conversion:
            # The copy replaces NULLs while converting
            return
        key = PartitionDDLBuilder(self._config).partition_key(ctx.task, analysis)
        columns = await self._catalog.get_columns(ctx.owner, ctx.task.source_table)
        column = next((c for c in columns if c.name.upper() == key), None)
        default = null_key_default(
            column, analysis.null_default_value, self._config.null_default_date
        )
        if default is None:
            await ctx.log_warning(
                "UPDATE_NULL_KEYS", f"No NULL replacement value for partition key {key}"
            )
            return
        await ctx.execute(
            "UPDATE_NULL_KEYS",
            StepType.DML,
            f"UPDATE {ctx.task.qualified_name} SET {key} = {default} WHERE {key} IS NULL",
        )

    async def _dispatch(self, ctx: ExecutionContext, fallbacks: list[str]) -> StrategyOutcome:
        task = ctx.task
        try:
            requested = MigrationMethod(task.migration_method.strip().upper())
        except ValueError:
            raise MigrationValidationError(
                f"Unsupported migration method: {task.migration_method!r}, expected one of "
                + ", ".join(m.value for m in MigrationMethod),
                task_id=task.id,
            ) from None

        for method in fallback_chain(requested):
            strategy = self._strategies.get(method)
            if strategy is None:
                fallbacks.append(f"{method.value}: no strategy registered")
                continue

            with self._tracer.span(
                "partmigrate.strategy",
                {
                    ATTR_TASK_ID: task.id,
                    ATTR_EXECUTION_ID: str(ctx.execution_id),
                    ATTR_METHOD: method.value,
                    ATTR_TABLE: task.qualified_name,
                },
            ):
                try:
                    eligibility = await strategy.eligibility(ctx)
                except MigrationError as e:
                    if not e.classification.recoverability.triggers_fallback:
                        raise
                    await self._record_fallback(ctx, fallbacks, method, e.message, e.severity)
                    continue
                if not eligibility.eligible:
                    await self._record_fallback(ctx, fallbacks, method, eligibility.reason)
                    continue

                await ctx.log_info("STRATEGY_SELECTED", method.value)
                issued = len(ctx.statements)
                try:
                    return await strategy.execute(ctx, eligibility)
                except MigrationError as e:
                    # Once a statement went out the target may be half built
                    if not e.classification.recoverability.triggers_fallback or (
                        len(ctx.statements) > issued
                    ):
                        raise
                    await self._record_fallback(ctx, fallbacks, method, e.message, e.severity)

        raise MigrationError(
            f"No eligible migration strategy for {task.qualified_name}: " + "; ".join(fallbacks),
            task_id=task.id,
        )

    async def _record_fallback(
        self,
        ctx: ExecutionContext,
        fallbacks: list[str],
        method: MigrationMethod,
        reason: str | None,
        severity: ErrorSeverity = ErrorSeverity.WARNING,
    ) -> None:
        entry = f"{method.value}: {reason or 'not eligible'}"
        fallbacks.append(entry)
        logger.log(severity.log_level, "Task %d falls back from %s", ctx.task.id, entry)
        await ctx.log_warning("FALLBACK", entry)

    async def _validate_row_counts(self, ctx: ExecutionContext, outcome: StrategyOutcome) -> None:
        reference = outcome.reference_table or ctx.task.backup_table_name
        if reference is not None:
            expected = await self._catalog.count_rows(ctx.owner, reference)
        elif ctx.task.source_rows is not None:
            expected = ctx.task.source_rows
        else:
            await ctx.log_warning("VALIDATE_ROW_COUNT", "No reference table to compare with")
            return

        actual = await self._catalog.count_rows(ctx.owner, outcome.migrated_table)
        if expected != actual:
            await ctx.log_step(
                "VALIDATE_ROW_COUNT",
                StepType.VALIDATION,
                StepStatus.FAILED,
                error_message=f"Source: {expected}, Target: {actual}",
            )
            raise RowCountMismatchError(expected, actual, task_id=ctx.task.id)
        await ctx.log_step(
            "VALIDATE_ROW_COUNT",
            StepType.VALIDATION,
            StepStatus.SUCCESS,
            sql=f"{actual} rows in {outcome.migrated_table} and {reference or 'snapshot'}",
        )

    async def _complete(
        self,
        ctx: ExecutionContext,
        tasks: TaskRepository,
        outcome: StrategyOutcome,
        initial_status: TaskStatus,
        fallbacks: list[str],
    ) -> MigrationResult:
        task = ctx.task
        finished = datetime.now()
        duration = (finished - ctx.now).total_seconds()
        status = initial_status

        space_saved = None
        if not ctx.simulate:
            target_size = await self._catalog.segment_size_mb(ctx.owner, outcome.migrated_table)
            if task.source_size_mb is not None:
                space_saved = task.source_size_mb - target_size
            await tasks.mark_completed(
                task.id,
                finished_at=finished,
                duration_seconds=duration,
                target_size_mb=target_size,
                space_saved_mb=space_saved,
            )
            status = task.status = TaskStatus.COMPLETED
            task.target_size_mb, task.space_saved_mb = target_size, space_saved

        await ctx.log_info(
            "MIGRATION_COMPLETE",
            f"{outcome.method.value} migration of {task.qualified_name} "
            f"finished in {duration:.1f}s",
        )
        logger.info(
            "Migration of task %d completed with %s in %.1fs%s",
            task.id,
            outcome.method.value,
            duration,
            " [simulate]" if ctx.simulate else "",
        )
        return MigrationResult(
            task_id=task.id,
            execution_id=ctx.execution_id,
            status=status,
            method_used=outcome.method,
            simulate=ctx.simulate,
            statements=tuple(ctx.statements),
            fallbacks=tuple(fallbacks),
            duration_seconds=duration,
            space_saved_mb=space_saved,
        )

    async def _fail(
        self,
        ctx: ExecutionContext,
        tasks: TaskRepository,
        error: Exception,
        fallbacks: list[str],
    ) -> MigrationResult:
        task = ctx.task
        finished = datetime.now()
        duration = (finished - ctx.now).total_seconds()
        message = str(error)
        level = error.severity.log_level if isinstance(error, MigrationError) else logging.ERROR
        logger.log(
            level,
            "Migration of task %d (%s) failed",
            task.id,
            task.qualified_name,
            exc_info=error,
        )

        try:
            ora_code = getattr(error, "ora_code", None) or extract_ora_code(error)
            await ctx.log_failure(message, ora_code)
        except Exception:
            logger.exception("Could not write the failure step of task %d", task.id)

        if not ctx.simulate:
            try:
                await tasks.mark_failed(
                    task.id, message, finished_at=finished, duration_seconds=duration
                )
                task.status = TaskStatus.FAILED
            except Exception:
                logger.exception("Could not mark task %d FAILED", task.id)

        return MigrationResult(
            task_id=task.id,
            execution_id=ctx.execution_id,
            status=TaskStatus.FAILED,
            simulate=ctx.simulate,
            statements=tuple(ctx.statements),
            fallbacks=tuple(fallbacks),
            duration_seconds=duration,
            error_message=message,
        )


__all__ = [
    "BACKUP_INFIX",
    "backup_table_name",
    "parse_recommended_strategy",
    "MigrationOrchestrator",
]
