"""
Connection handling helper for database operations.

Repositories and the catalog accept either an AsyncEngine or an
AsyncConnection. ``execute_with_connection`` hides the difference.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine


@asynccontextmanager
async def execute_with_connection(
    conn: AsyncConnection | AsyncEngine,
    transactional: bool = True,
) -> AsyncIterator[AsyncConnection]:
    """
    Context manager for executing database operations.

    Args:
        conn: Database connection or engine
        transactional: If True, wrap in transaction (begin).
                       If False, use bare connection (connect).
                       Only applies when conn is an AsyncEngine.

    Yields:
        AsyncConnection ready for execute() calls

    Note:
        Oracle DDL commits implicitly, so a transaction opened here never
        spans a DDL statement issued by a strategy. Strategies run on the
        orchestrator's dedicated connection instead.
    """
    if isinstance(conn, AsyncEngine):
        if transactional:
            async with conn.begin() as connection:
                yield connection
        else:
            async with conn.connect() as connection:
                yield connection
    else:
        # Caller is responsible for transaction management
        yield conn
