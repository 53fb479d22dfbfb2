"""
Execution log repository.

Every statement a run plans or issues is appended to
``dwh_migration_execution_log`` as an ExecutionStep. The log is append-only:
steps are never updated or deleted by this library.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from partmigrate.models import ExecutionStep, StepStatus, StepType
from partmigrate.observability import (
    ATTR_EXECUTION_ID,
    ATTR_STEP_NAME,
    ATTR_TASK_ID,
    Tracer,
    create_tracer,
)
from partmigrate.repositories._connection import execute_with_connection

logger = logging.getLogger(__name__)

_STEP_COLUMNS = """
    execution_id, task_id, step_number, step_name, step_type, sql_statement,
    start_time, end_time, status, error_code, error_message
"""


def _clob(value: Any) -> str | None:
    if value is None:
        return None
    return value.read() if hasattr(value, "read") else str(value)


def _row_to_step(row: Mapping[str, Any]) -> ExecutionStep:
    return ExecutionStep(
        execution_id=UUID(str(row["execution_id"])),
        task_id=int(row["task_id"]),
        step_number=int(row["step_number"]),
        step_name=row["step_name"],
        step_type=StepType(row["step_type"]),
        status=StepStatus(row["status"]),
        start_time=row["start_time"],
        end_time=row["end_time"],
        sql_statement=_clob(row["sql_statement"]),
        error_code=row["error_code"],
        error_message=row["error_message"],
    )


@runtime_checkable
class ExecutionLogRepository(Protocol):
    """Protocol for the append-only execution log."""

    async def append(self, step: ExecutionStep) -> None:
        """Persist one step."""
        ...

    async def list_for_execution(self, execution_id: UUID) -> list[ExecutionStep]:
        """Steps of one run, ordered by step number."""
        ...

    async def list_for_task(self, task_id: int) -> list[ExecutionStep]:
        """Steps of every run of a task, oldest first."""
        ...


class OracleExecutionLogRepository:
    """
    Oracle implementation of the execution log.

    Each append commits on its own, so steps written before a failure
    survive the failure.
    """

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self.conn = conn

    async def append(self, step: ExecutionStep) -> None:
        with self._tracer.span(
            "partmigrate.execution_log.append",
            {
                ATTR_TASK_ID: step.task_id,
                ATTR_EXECUTION_ID: str(step.execution_id),
                ATTR_STEP_NAME: step.step_name,
            },
        ):
            query = text("""
                INSERT INTO dwh_migration_execution_log (
                    execution_id, task_id, step_number, step_name, step_type,
                    sql_statement, start_time, end_time, duration_seconds,
                    status, error_code, error_message
                ) VALUES (
                    :execution_id, :task_id, :step_number, :step_name, :step_type,
                    :sql_statement, :start_time, :end_time, :duration_seconds,
                    :status, :error_code, :error_message
                )
            """)
            params = {
                "execution_id": str(step.execution_id),
                "task_id": step.task_id,
                "step_number": step.step_number,
                "step_name": step.step_name[:200],
                "step_type": step.step_type.value,
                "sql_statement": step.sql_statement,
                "start_time": step.start_time,
                "end_time": step.end_time,
                "duration_seconds": step.duration_seconds,
                "status": step.status.value,
                "error_code": step.error_code,
                "error_message": step.error_message[:4000] if step.error_message else None,
            }
            async with execute_with_connection(self.conn, transactional=True) as conn:
                await conn.execute(query, params)

    async def list_for_execution(self, execution_id: UUID) -> list[ExecutionStep]:
        query = text(f"""
            SELECT {_STEP_COLUMNS} FROM dwh_migration_execution_log
            WHERE execution_id = :execution_id
            ORDER BY step_number
        """)
        async with execute_with_connection(self.conn, transactional=False) as conn:
            result = await conn.execute(query, {"execution_id": str(execution_id)})
            return [_row_to_step(row) for row in result.mappings().fetchall()]

    async def list_for_task(self, task_id: int) -> list[ExecutionStep]:
        query = text(f"""
            SELECT {_STEP_COLUMNS} FROM dwh_migration_execution_log
            WHERE task_id = :task_id
            ORDER BY start_time, step_number
        """)
        async with execute_with_connection(self.conn, transactional=False) as conn:
            result = await conn.execute(query, {"task_id": task_id})
            return [_row_to_step(row) for row in result.mappings().fetchall()]


class InMemoryExecutionLogRepository:
    """In-memory execution log for testing."""

    def __init__(
        self,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._steps: list[ExecutionStep] = []
        self._lock: asyncio.Lock = asyncio.Lock()

    @property
    def steps(self) -> list[ExecutionStep]:
        """Every step appended so far, in append order."""
        return list(self._steps)

    async def append(self, step: ExecutionStep) -> None:
        async with self._lock:
            self._steps.append(step)

    async def list_for_execution(self, execution_id: UUID) -> list[ExecutionStep]:
        async with self._lock:
            steps = [s for s in self._steps if s.execution_id == execution_id]
        return sorted(steps, key=lambda s: s.step_number)

    async def list_for_task(self, task_id: int) -> list[ExecutionStep]:
        async with self._lock:
            return [s for s in self._steps if s.task_id == task_id]

    async def clear(self) -> None:
        async with self._lock:
            self._steps.clear()


__all__ = [
    "ExecutionLogRepository",
    "OracleExecutionLogRepository",
    "InMemoryExecutionLogRepository",
]
