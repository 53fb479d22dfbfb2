"""
Exclusive task-row locks.

A migration run holds a row lock on its task for the whole run, so two
workers can never migrate the same table at once. The lock is taken with
``SELECT ... FOR UPDATE NOWAIT``: a second attempt fails immediately with
ORA-00054 instead of queueing behind the first run.

Oracle DDL commits implicitly, which would release a row lock taken on the
DDL session. The lock therefore lives on a dedicated session of its own;
task status updates made during the run go through that same session
(``TaskLease.connection``) and are committed together when the lock is
released.

Usage:
    >>> lock_manager = TaskLockManager(engine)
    >>> async with lock_manager.acquire(42) as lease:
    ...     tasks = task_repository.bind(lease.connection)
    ...     await run_migration(tasks)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from partmigrate.exceptions import TaskLockedError, TaskNotFoundError, extract_ora_code
from partmigrate.observability import ATTR_TASK_ID, Tracer, create_tracer

logger = logging.getLogger(__name__)

# ORA-00054: resource busy and acquire with NOWAIT specified
ORA_RESOURCE_BUSY = 54


@dataclass(frozen=True)
class TaskLease:
    """
    A held task lock.

    Attributes:
        task_id: Locked task
        acquired_at: When the lock was taken
        connection: Session holding the lock; None for in-process locks
    """

    task_id: int
    acquired_at: datetime
    connection: AsyncConnection | None = None


class TaskLock(Protocol):
    """Protocol for task lock managers."""

    def acquire(self, task_id: int) -> AsyncIterator[TaskLease]:
        """Async context manager holding the task lock for its duration."""
        ...


class TaskLockManager:
    """
    Row locks on ``dwh_migration_tasks``.

    Each held lock uses a dedicated connection from the engine's pool. The
    transaction opened on it commits on normal exit and rolls back when an
    exception escapes the ``async with`` block.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._engine = engine

    @asynccontextmanager
    async def acquire(self, task_id: int) -> AsyncIterator[TaskLease]:
        """
        Lock a task row for the duration of the context.

        Raises:
            TaskLockedError: If another session holds the row
            TaskNotFoundError: If the task does not exist
        """
        with self._tracer.span("partmigrate.lock.acquire", {ATTR_TASK_ID: task_id}):
            async with self._engine.begin() as conn:
                try:
                    result = await conn.execute(
                        text(
                            "SELECT task_id FROM dwh_migration_tasks "
                            "WHERE task_id = :task_id FOR UPDATE NOWAIT"
                        ),
                        {"task_id": task_id},
                    )
                except DBAPIError as e:
                    if extract_ora_code(e) == ORA_RESOURCE_BUSY:
                        raise TaskLockedError(task_id, "row is locked (ORA-00054)") from e
                    raise
                if result.fetchone() is None:
                    raise TaskNotFoundError(task_id)

                logger.debug("Acquired task lock: task_id=%d", task_id)
                yield TaskLease(task_id=task_id, acquired_at=datetime.now(UTC), connection=conn)

        logger.debug("Released task lock: task_id=%d", task_id)


class InMemoryTaskLockManager:
    """
    In-process task locks for testing.

    A second ``acquire`` of a held task raises TaskLockedError immediately,
    mirroring NOWAIT semantics.
    """

    def __init__(self) -> None:
        self._held: set[int] = set()
        self._lock = asyncio.Lock()

    def is_locked(self, task_id: int) -> bool:
        return task_id in self._held

    @asynccontextmanager
    async def acquire(self, task_id: int) -> AsyncIterator[TaskLease]:
        async with self._lock:
            if task_id in self._held:
                raise TaskLockedError(task_id, "held by another run in this process")
            self._held.add(task_id)
        try:
            yield TaskLease(task_id=task_id, acquired_at=datetime.now(UTC))
        finally:
            async with self._lock:
                self._held.discard(task_id)


__all__ = [
    "ORA_RESOURCE_BUSY",
    "TaskLease",
    "TaskLock",
    "TaskLockManager",
    "InMemoryTaskLockManager",
]
