"""
Task repository for migration tasks and their analysis records.

Tasks live in ``dwh_migration_tasks``; analyzer output is read from
``dwh_migration_analysis``. Flags are stored as ``'Y'``/``'N'``.

Status writes are guarded: every status change names the status the task
is expected to be in, and a write that finds the task elsewhere raises
TaskStateError instead of silently overwriting it.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from dataclasses import replace
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from partmigrate.exceptions import TaskNotFoundError, TaskStateError
from partmigrate.models import AnalysisRecord, MigrationTask, NullHandling, TaskStatus
from partmigrate.observability import ATTR_TASK_ID, Tracer, create_tracer
from partmigrate.repositories._connection import execute_with_connection

logger = logging.getLogger(__name__)

_TASK_COLUMNS = """
    task_id, project_id, task_name, source_owner, source_table, partition_type,
    partition_key, interval_clause, migration_method, use_compression,
    compression_type, target_tablespace, parallel_degree, enable_row_movement,
    automatic_list, list_default_values, apply_ilm_policies, ilm_policy_template,
    keep_original, status, validation_status, backup_table_name, can_rollback,
    source_rows, source_size_mb, target_size_mb, space_saved_mb,
    execution_start, execution_end, duration_seconds, error_message
"""


def _yn(value: bool) -> str:
    return "Y" if value else "N"


def _is_y(value: Any) -> bool:
    return str(value or "N").strip().upper() == "Y"


def _text_list(value: Any) -> tuple[str, ...]:
    """Decode a CLOB holding a JSON array or one issue per line."""
    if value is None:
        return ()
    raw = value.read() if hasattr(value, "read") else str(value)
    raw = raw.strip()
    if not raw:
        return ()
    if raw.startswith("["):
        try:
            return tuple(str(item) for item in json.loads(raw) if str(item).strip())
        except json.JSONDecodeError:
            logger.warning("Malformed JSON issue list, reading it line by line")
    return tuple(line.strip() for line in raw.splitlines() if line.strip())


def _row_to_task(row: Mapping[str, Any]) -> MigrationTask:
    return MigrationTask(
        id=int(row["task_id"]),
        project_id=row["project_id"],
        task_name=row["task_name"],
        source_owner=row["source_owner"],
        source_table=row["source_table"],
        partition_type=row["partition_type"] or "RANGE",
        partition_key=row["partition_key"],
        interval_clause=row["interval_clause"],
        migration_method=row["migration_method"] or "CTAS",
        use_compression=_is_y(row["use_compression"]),
        compression_type=row["compression_type"],
        target_tablespace=row["target_tablespace"],
        parallel_degree=int(row["parallel_degree"] or 4),
        enable_row_movement=_is_y(row["enable_row_movement"] or "Y"),
        automatic_list=_is_y(row["automatic_list"]),
        list_default_values=row["list_default_values"],
        apply_ilm_policies=_is_y(row["apply_ilm_policies"]),
        ilm_policy_template=row["ilm_policy_template"],
        keep_original=_is_y(row["keep_original"]),
        status=TaskStatus(row["status"]),
        validation_status=row["validation_status"],
        backup_table_name=row["backup_table_name"],
        can_rollback=_is_y(row["can_rollback"]),
        source_rows=row["source_rows"],
        source_size_mb=row["source_size_mb"],
        target_size_mb=row["target_size_mb"],
        space_saved_mb=row["space_saved_mb"],
        execution_start=row["execution_start"],
        execution_end=row["execution_end"],
        duration_seconds=row["duration_seconds"],
        error_message=row["error_message"],
    )


def _row_to_analysis(row: Mapping[str, Any]) -> AnalysisRecord:
    null_strategy = str(row["null_handling_strategy"] or "ALLOW_NULLS").upper()
    return AnalysisRecord(
        task_id=int(row["task_id"]),
        recommended_strategy=row["recommended_strategy"],
        recommended_method=row["recommended_method"],
        date_column_name=row["date_column_name"],
        date_column_type=row["date_column_type"],
        date_conversion_expr=row["date_conversion_expr"],
        requires_conversion=_is_y(row["requires_conversion"]),
        partition_boundary_min_date=row["partition_boundary_min_date"],
        partition_boundary_max_date=row["partition_boundary_max_date"],
        null_handling_strategy=(
            NullHandling.UPDATE if null_strategy == "UPDATE" else NullHandling.ALLOW_NULLS
        ),
        null_default_value=row["null_default_value"],
        supports_online_redef=_is_y(row["supports_online_redef"]),
        table_rows=row["table_rows"],
        blocking_issues=_text_list(row["blocking_issues"]),
        warnings=_text_list(row["warnings"]),
    )


@runtime_checkable
class TaskRepository(Protocol):
    """
    Protocol for migration task persistence.

    ``bind`` returns a repository writing through a specific connection; the
    orchestrator binds to the session holding the task-row lock so that its
    own writes are never blocked by that lock.
    """

    def bind(self, conn: AsyncConnection | None) -> TaskRepository:
        """Return a repository that uses ``conn`` for every statement."""
        ...

    async def get(self, task_id: int) -> MigrationTask:
        """
        Get a task by id.

        Raises:
            TaskNotFoundError: If the task does not exist
        """
        ...

    async def get_analysis(self, task_id: int) -> AnalysisRecord | None:
        """Get the latest analysis record of a task, if any."""
        ...

    async def list_ready(
        self, project_id: int | None = None, limit: int | None = None
    ) -> list[MigrationTask]:
        """Tasks in READY or ANALYZED whose validation status is READY, oldest first."""
        ...

    async def mark_running(self, task_id: int, expected: TaskStatus, started_at: datetime) -> None:
        """Move a task from ``expected`` to RUNNING and clear its previous error."""
        ...

    async def record_source_metrics(self, task_id: int, rows: int, size_mb: float) -> None:
        ...

    async def record_backup(self, task_id: int, backup_table: str | None, can_rollback: bool) -> None:
        ...

    async def mark_completed(
        self,
        task_id: int,
        *,
        finished_at: datetime,
        duration_seconds: float,
        target_size_mb: float | None,
        space_saved_mb: float | None,
    ) -> None:
        ...

    async def mark_failed(
        self,
        task_id: int,
        error_message: str,
        *,
        finished_at: datetime,
        duration_seconds: float | None = None,
    ) -> None:
        """Mark a RUNNING task FAILED with the error text."""
        ...

    async def mark_rolled_back(self, task_id: int) -> None:
        ...

    async def apply_recommendation(
        self,
        task_id: int,
        expected: TaskStatus,
        *,
        partition_type: str,
        partition_key: str | None,
        interval_clause: str | None,
        migration_method: str,
        automatic_list: bool,
    ) -> None:
        """Write the parsed recommendation and move the task to READY."""
        ...


class OracleTaskRepository:
    """
    Oracle implementation of the task repository.

    Example:
        >>> repo = OracleTaskRepository(engine)
        >>> task = await repo.get(42)
        >>> task.status
        <TaskStatus.READY: 'READY'>
    """

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the task repository.

        Args:
            conn: Database connection or engine
            tracer: Optional tracer for tracing (if not provided, one will be created)
            enable_tracing: Whether to enable OpenTelemetry tracing (default True)
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self.conn = conn

    def bind(self, conn: AsyncConnection | None) -> OracleTaskRepository:
        if conn is None:
            return self
        return OracleTaskRepository(conn, tracer=self._tracer)

    async def _update(
        self,
        task_id: int,
        assignments: str,
        params: dict[str, Any],
        expected: tuple[TaskStatus, ...] | None = None,
    ) -> None:
        query = f"UPDATE dwh_migration_tasks SET {assignments} WHERE task_id = :task_id"
        params = {**params, "task_id": task_id}
        if expected:
            names = []
            for index, status in enumerate(expected):
                names.append(f":expected_{index}")
                params[f"expected_{index}"] = status.value
            query += f" AND status IN ({', '.join(names)})"

        async with execute_with_connection(self.conn, transactional=True) as conn:
            result = await conn.execute(text(query), params)
            updated = result.rowcount

        if updated == 0:
            current = await self.get(task_id)
            raise TaskStateError(
                task_id,
                current.status.value,
                [status.value for status in expected or ()],
            )

    async def get(self, task_id: int) -> MigrationTask:
        with self._tracer.span("partmigrate.tasks.get", {ATTR_TASK_ID: task_id}):
            query = text(
                f"SELECT {_TASK_COLUMNS} FROM dwh_migration_tasks WHERE task_id = :task_id"
            )
            async with execute_with_connection(self.conn, transactional=False) as conn:
                result = await conn.execute(query, {"task_id": task_id})
                row = result.mappings().fetchone()
        if row is None:
            raise TaskNotFoundError(task_id)
        return _row_to_task(row)

    async def get_analysis(self, task_id: int) -> AnalysisRecord | None:
        with self._tracer.span("partmigrate.tasks.get_analysis", {ATTR_TASK_ID: task_id}):
            query = text("""
                SELECT task_id, recommended_strategy, recommended_method,
                       date_column_name, date_column_type, date_conversion_expr,
                       requires_conversion, partition_boundary_min_date,
                       partition_boundary_max_date, null_handling_strategy,
                       null_default_value, supports_online_redef, table_rows,
                       blocking_issues, warnings
                FROM dwh_migration_analysis
                WHERE task_id = :task_id
                ORDER BY analysis_date DESC
                FETCH FIRST 1 ROWS ONLY
            """)
            async with execute_with_connection(self.conn, transactional=False) as conn:
                result = await conn.execute(query, {"task_id": task_id})
                row = result.mappings().fetchone()
                return _row_to_analysis(row) if row is not None else None

    async def list_ready(
        self, project_id: int | None = None, limit: int | None = None
    ) -> list[MigrationTask]:
        query = f"""
            SELECT {_TASK_COLUMNS} FROM dwh_migration_tasks
            WHERE status IN ('READY', 'ANALYZED')
              AND validation_status = 'READY'
        """
        params: dict[str, Any] = {}
        if project_id is not None:
            query += " AND project_id = :project_id"
            params["project_id"] = project_id
        query += " ORDER BY task_id"
        if limit is not None:
            query += " FETCH FIRST :limit ROWS ONLY"
            params["limit"] = limit

        async with execute_with_connection(self.conn, transactional=False) as conn:
            result = await conn.execute(text(query), params)
            return [_row_to_task(row) for row in result.mappings().fetchall()]

    async def mark_running(self, task_id: int, expected: TaskStatus, started_at: datetime) -> None:
        await self._update(
            task_id,
            "status = 'RUNNING', execution_start = :started_at, execution_end = NULL, "
            "error_message = NULL",
            {"started_at": started_at},
            expected=(expected,),
        )

    async def record_source_metrics(self, task_id: int, rows: int, size_mb: float) -> None:
        await self._update(
            task_id,
            "source_rows = :rows, source_size_mb = :size_mb",
            {"rows": rows, "size_mb": size_mb},
        )

    async def record_backup(self, task_id: int, backup_table: str | None, can_rollback: bool) -> None:
        await self._update(
            task_id,
            "backup_table_name = :backup_table, can_rollback = :can_rollback",
            {"backup_table": backup_table, "can_rollback": _yn(can_rollback)},
        )

    async def mark_completed(
        self,
        task_id: int,
        *,
        finished_at: datetime,
        duration_seconds: float,
        target_size_mb: float | None,
        space_saved_mb: float | None,
    ) -> None:
        await self._update(
            task_id,
            "status = 'COMPLETED', execution_end = :finished_at, "
            "duration_seconds = :duration, target_size_mb = :target_size_mb, "
            "space_saved_mb = :space_saved_mb, error_message = NULL",
            {
                "finished_at": finished_at,
                "duration": duration_seconds,
                "target_size_mb": target_size_mb,
                "space_saved_mb": space_saved_mb,
            },
            expected=(TaskStatus.RUNNING,),
        )

    async def mark_failed(
        self,
        task_id: int,
        error_message: str,
        *,
        finished_at: datetime,
        duration_seconds: float | None = None,
    ) -> None:
        await self._update(
            task_id,
            "status = 'FAILED', error_message = :error_message, "
            "execution_end = :finished_at, duration_seconds = :duration",
            {
                "error_message": error_message[:4000],
                "finished_at": finished_at,
                "duration": duration_seconds,
            },
            expected=(TaskStatus.RUNNING,),
        )

    async def mark_rolled_back(self, task_id: int) -> None:
        await self._update(
            task_id,
            "status = 'ROLLED_BACK', can_rollback = 'N'",
            {},
            expected=(TaskStatus.COMPLETED,),
        )

    async def apply_recommendation(
        self,
        task_id: int,
        expected: TaskStatus,
        *,
        partition_type: str,
        partition_key: str | None,
        interval_clause: str | None,
        migration_method: str,
        automatic_list: bool,
    ) -> None:
        await self._update(
            task_id,
            "partition_type = :partition_type, partition_key = :partition_key, "
            "interval_clause = :interval_clause, migration_method = :migration_method, "
            "automatic_list = :automatic_list, status = 'READY', validation_status = 'READY'",
            {
                "partition_type": partition_type,
                "partition_key": partition_key,
                "interval_clause": interval_clause,
                "migration_method": migration_method,
                "automatic_list": _yn(automatic_list),
            },
            expected=(expected,),
        )


class InMemoryTaskRepository:
    """
    In-memory implementation of the task repository for testing.

    Status writes follow the same expected-status guard as the Oracle
    implementation and additionally check ``TaskStatus.can_transition_to``.

    Example:
        >>> repo = InMemoryTaskRepository()
        >>> repo.add(MigrationTask(id=1, source_owner="DWH", source_table="SALES"))
        >>> (await repo.get(1)).status
        <TaskStatus.PENDING: 'PENDING'>
    """

    def __init__(
        self,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._tasks: dict[int, MigrationTask] = {}
        self._analyses: dict[int, AnalysisRecord] = {}
        self._lock: asyncio.Lock = asyncio.Lock()

    def add(self, task: MigrationTask, analysis: AnalysisRecord | None = None) -> None:
        """Store a task and, optionally, its analysis record."""
        self._tasks[task.id] = replace(task)
        if analysis is not None:
            self._analyses[task.id] = analysis

    def bind(self, conn: AsyncConnection | None) -> InMemoryTaskRepository:
        return self

    def _require(self, task_id: int) -> MigrationTask:
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def _transition(
        self, task: MigrationTask, target: TaskStatus, expected: tuple[TaskStatus, ...]
    ) -> None:
        if task.status not in expected or not task.status.can_transition_to(target):
            raise TaskStateError(task.id, task.status.value, [s.value for s in expected])
        task.status = target

    async def get(self, task_id: int) -> MigrationTask:
        with self._tracer.span("partmigrate.tasks.get", {ATTR_TASK_ID: task_id}):
            async with self._lock:
                return replace(self._require(task_id))

    async def get_analysis(self, task_id: int) -> AnalysisRecord | None:
        async with self._lock:
            return self._analyses.get(task_id)

    async def list_ready(
        self, project_id: int | None = None, limit: int | None = None
    ) -> list[MigrationTask]:
        async with self._lock:
            tasks = [
                replace(task)
                for task in sorted(self._tasks.values(), key=lambda t: t.id)
                if task.status.is_runnable
                and task.validation_status == "READY"
                and (project_id is None or task.project_id == project_id)
            ]
        return tasks[:limit] if limit is not None else tasks

    async def mark_running(self, task_id: int, expected: TaskStatus, started_at: datetime) -> None:
        async with self._lock:
            task = self._require(task_id)
            self._transition(task, TaskStatus.RUNNING, (expected,))
            task.execution_start = started_at
            task.execution_end = None
            task.error_message = None

    async def record_source_metrics(self, task_id: int, rows: int, size_mb: float) -> None:
        async with self._lock:
            task = self._require(task_id)
            task.source_rows = rows
            task.source_size_mb = size_mb

    async def record_backup(self, task_id: int, backup_table: str | None, can_rollback: bool) -> None:
        async with self._lock:
            task = self._require(task_id)
            task.backup_table_name = backup_table
            task.can_rollback = can_rollback

    async def mark_completed(
        self,
        task_id: int,
        *,
        finished_at: datetime,
        duration_seconds: float,
        target_size_mb: float | None,
        space_saved_mb: float | None,
    ) -> None:
        async with self._lock:
            task = self._require(task_id)
            self._transition(task, TaskStatus.COMPLETED, (TaskStatus.RUNNING,))
            task.execution_end = finished_at
            task.duration_seconds = duration_seconds
            task.target_size_mb = target_size_mb
            task.space_saved_mb = space_saved_mb
            task.error_message = None

    async def mark_failed(
        self,
        task_id: int,
        error_message: str,
        *,
        finished_at: datetime,
        duration_seconds: float | None = None,
    ) -> None:
        async with self._lock:
            task = self._require(task_id)
            self._transition(task, TaskStatus.FAILED, (TaskStatus.RUNNING,))
            task.error_message = error_message[:4000]
            task.execution_end = finished_at
            task.duration_seconds = duration_seconds

    async def mark_rolled_back(self, task_id: int) -> None:
        async with self._lock:
            task = self._require(task_id)
            self._transition(task, TaskStatus.ROLLED_BACK, (TaskStatus.COMPLETED,))
            task.can_rollback = False

    async def apply_recommendation(
        self,
        task_id: int,
        expected: TaskStatus,
        *,
        partition_type: str,
        partition_key: str | None,
        interval_clause: str | None,
        migration_method: str,
        automatic_list: bool,
    ) -> None:
        async with self._lock:
            task = self._require(task_id)
            self._transition(task, TaskStatus.READY, (expected,))
            task.partition_type = partition_type
            task.partition_key = partition_key
            task.interval_clause = interval_clause
            task.migration_method = migration_method
            task.automatic_list = automatic_list
            task.validation_status = "READY"


__all__ = [
    "TaskRepository",
    "OracleTaskRepository",
    "InMemoryTaskRepository",
]
