"""
Per-run execution context.

An ExecutionContext is created for every orchestration run and passed
explicitly to strategies, the reconstructor, the partition renamer and the
ILM applier. It owns the run's execution id and step counter, the DDL
connection, and the simulate flag.

Simulation:
    ``execute`` is the only way statements reach the database. With
    ``simulate=True`` every mutating statement is recorded as a SKIPPED
    step and appended to ``statements`` but never sent; read-only checks
    (``mutating=False``) still run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncConnection

from partmigrate.catalog import Catalog
from partmigrate.config import MigratorConfig
from partmigrate.exceptions import StepExecutionError, extract_ora_code
from partmigrate.models import (
    AnalysisRecord,
    ExecutionStep,
    MigrationTask,
    StepStatus,
    StepType,
)
from partmigrate.observability import (
    ATTR_EXECUTION_ID,
    ATTR_STEP_NAME,
    ATTR_TASK_ID,
    NullTracer,
    Tracer,
)
from partmigrate.repositories.execution_log import ExecutionLogRepository
from partmigrate.templates import TemplateDocument

logger = logging.getLogger(__name__)

FAILURE_STEP_NUMBER = 999
FAILURE_STEP_NAME = "MIGRATION_FAILED"


@dataclass
class ExecutionContext:
    """
    State of one orchestration run.

    Attributes:
        task: The task being migrated; the orchestrator keeps it current.
        config: Migrator configuration.
        catalog: Data dictionary access.
        connection: Autocommit connection used for DDL, DML and PL/SQL.
        execution_log: Sink for ExecutionStep records.
        analysis: Analysis record, if the analyzer produced one.
        template: Parsed ILM template named by the task, if any.
        simulate: Plan only; never issue mutating statements.
        execution_id: Run identifier shared by every step.
        now: Reference time of the run, used for tier cutoffs and names.
        statements: Mutating statements planned or issued, in order.
    """

    task: MigrationTask
    config: MigratorConfig
    catalog: Catalog
    connection: AsyncConnection | None
    execution_log: ExecutionLogRepository
    analysis: AnalysisRecord | None = None
    template: TemplateDocument | None = None
    simulate: bool = False
    execution_id: UUID = field(default_factory=uuid4)
    now: datetime = field(default_factory=datetime.now)
    tracer: Tracer = field(default_factory=NullTracer)
    statements: list[str] = field(default_factory=list)
    _step_number: int = 0

    @property
    def owner(self) -> str:
        return self.task.source_owner

    @property
    def parallel_degree(self) -> int:
        return self.task.parallel_degree or self.config.parallel_degree

    def _next_step(self) -> int:
        self._step_number += 1
        return self._step_number

    async def log_step(
        self,
        step_name: str,
        step_type: StepType,
        status: StepStatus,
        *,
        sql: str | None = None,
        start_time: datetime | None = None,
        error_code: int | None = None,
        error_message: str | None = None,
        step_number: int | None = None,
    ) -> ExecutionStep:
        """Append one step to the execution log and return it."""
        end_time = datetime.now()
        step = ExecutionStep(
            execution_id=self.execution_id,
            task_id=self.task.id,
            step_number=step_number if step_number is not None else self._next_step(),
            step_name=step_name,
            step_type=step_type,
            status=status,
            start_time=start_time or end_time,
            end_time=end_time,
            sql_statement=sql,
            error_code=error_code,
            error_message=error_message,
        )
        await self.execution_log.append(step)
        return step

    async def log_info(self, step_name: str, message: str) -> None:
        await self.log_step(step_name, StepType.INFO, StepStatus.SUCCESS, sql=message)

    async def log_warning(self, step_name: str, message: str) -> None:
        logger.warning("Task %d %s: %s", self.task.id, step_name, message)
        await self.log_step(step_name, StepType.INFO, StepStatus.WARNING, error_message=message)

    async def log_failure(self, message: str, error_code: int | None = None) -> None:
        """Write the top-level failure step of a run."""
        await self.log_step(
            FAILURE_STEP_NAME,
            StepType.ERROR,
            StepStatus.FAILED,
            error_code=error_code,
            error_message=message,
            step_number=FAILURE_STEP_NUMBER,
        )

    async def execute(
        self,
        step_name: str,
        step_type: StepType,
        sql: str,
        *,
        mutating: bool = True,
        log: bool = True,
    ) -> None:
        """
        Issue one statement and record it.

        Args:
            step_name: Execution log step name
            step_type: Kind of statement
            sql: Statement text, passed to the driver verbatim
            mutating: False for read-only checks that also run under simulate
            log: Write SUCCESS/FAILED steps to the execution log

        Raises:
            StepExecutionError: If the database rejects the statement
        """
        if self.simulate and mutating:
            self.statements.append(sql)
            if log:
                await self.log_step(step_name, step_type, StepStatus.SKIPPED, sql=sql)
            return

        start_time = datetime.now()
        with self.tracer.span(
            f"partmigrate.step.{step_name.lower()}",
            {
                ATTR_TASK_ID: self.task.id,
                ATTR_EXECUTION_ID: str(self.execution_id),
                ATTR_STEP_NAME: step_name,
            },
        ):
            try:
                if self.connection is None:
                    raise RuntimeError("ExecutionContext has no connection for a live run")
                # exec_driver_sql keeps ':' inside literals away from bind parsing
                await self.connection.exec_driver_sql(sql)
            except DBAPIError as e:
                ora_code = extract_ora_code(e)
                message = str(e.orig) if e.orig is not None else str(e)
                if log:
                    await self.log_step(
                        step_name,
                        step_type,
                        StepStatus.FAILED,
                        sql=sql,
                        start_time=start_time,
                        error_code=ora_code,
                        error_message=message,
                    )
                raise StepExecutionError(
                    step_name,
                    message,
                    statement=sql,
                    ora_code=ora_code,
                    task_id=self.task.id,
                ) from e

        if mutating:
            self.statements.append(sql)
        if log:
            await self.log_step(
                step_name, step_type, StepStatus.SUCCESS, sql=sql, start_time=start_time
            )


__all__ = [
    "FAILURE_STEP_NAME",
    "FAILURE_STEP_NUMBER",
    "ExecutionContext",
]
