"""
Oracle data dictionary access.

``OracleCatalog`` answers the read-only questions a migration asks about
its tables: columns, indexes, constraints, extracted definitions, sizes and
date ranges. The module also renders the PL/SQL calls for the engine's
statistics and online reorganization packages; those are executed through
the ExecutionContext so they appear in the execution log.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from partmigrate.models import ColumnInfo, ConstraintInfo, IndexInfo
from partmigrate.observability import ATTR_DB_SYSTEM, ATTR_TABLE, Tracer, create_tracer
from partmigrate.repositories._connection import execute_with_connection

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z][A-Za-z0-9_$#]{0,127}$")

MAX_IDENTIFIER_LENGTH = 128

# DBMS_REDEFINITION.CAN_REDEF_TABLE options
REDEF_CONS_USE_PK = 1
REDEF_CONS_USE_ROWID = 2


def identifier(name: str) -> str:
    """
    Validate an unquoted Oracle identifier and return it upper-cased.

    Raises:
        ValueError: If ``name`` is not a plain identifier
    """
    if not _IDENTIFIER.match(name or ""):
        raise ValueError(f"Invalid Oracle identifier: {name!r}")
    return name.upper()


def suffixed(name: str, suffix: str) -> str:
    """
    Append ``suffix`` to ``name``, truncating so the result fits an identifier.

    Example:
        >>> suffixed("SALES_PK", "_MIGR")
        'SALES_PK_MIGR'
    """
    return name[: MAX_IDENTIFIER_LENGTH - len(suffix)] + suffix


def literal(value: str) -> str:
    """Render ``value`` as a single-quoted SQL string literal."""
    return "'" + value.replace("'", "''") + "'"


def gather_stats_statement(owner: str, table: str, degree: int) -> str:
    return (
        "BEGIN DBMS_STATS.GATHER_TABLE_STATS("
        f"ownname => {literal(owner)}, tabname => {literal(table)}, "
        f"degree => {int(degree)}, cascade => TRUE); END;"
    )


def can_redef_statement(owner: str, table: str, option: int) -> str:
    return (
        "BEGIN DBMS_REDEFINITION.CAN_REDEF_TABLE("
        f"uname => {literal(owner)}, tname => {literal(table)}, options_flag => {int(option)}); END;"
    )


def start_redef_statement(owner: str, table: str, interim: str, option: int) -> str:
    return (
        "BEGIN DBMS_REDEFINITION.START_REDEF_TABLE("
        f"uname => {literal(owner)}, orig_table => {literal(table)}, "
        f"int_table => {literal(interim)}, options_flag => {int(option)}); END;"
    )


def copy_dependents_statement(owner: str, table: str, interim: str) -> str:
    return (
        "DECLARE num_errors PLS_INTEGER; "
        "BEGIN DBMS_REDEFINITION.COPY_TABLE_DEPENDENTS("
        f"uname => {literal(owner)}, orig_table => {literal(table)}, "
        f"int_table => {literal(interim)}, copy_indexes => DBMS_REDEFINITION.CONS_ORIG_PARAMS, "
        "copy_triggers => TRUE, copy_constraints => TRUE, copy_privileges => TRUE, "
        "ignore_errors => FALSE, num_errors => num_errors); END;"
    )


def sync_interim_statement(owner: str, table: str, interim: str) -> str:
    return (
        "BEGIN DBMS_REDEFINITION.SYNC_INTERIM_TABLE("
        f"uname => {literal(owner)}, orig_table => {literal(table)}, "
        f"int_table => {literal(interim)}); END;"
    )


def finish_redef_statement(owner: str, table: str, interim: str) -> str:
    return (
        "BEGIN DBMS_REDEFINITION.FINISH_REDEF_TABLE("
        f"uname => {literal(owner)}, orig_table => {literal(table)}, "
        f"int_table => {literal(interim)}); END;"
    )


def abort_redef_statement(owner: str, table: str, interim: str) -> str:
    return (
        "BEGIN DBMS_REDEFINITION.ABORT_REDEF_TABLE("
        f"uname => {literal(owner)}, orig_table => {literal(table)}, "
        f"int_table => {literal(interim)}); END;"
    )


@runtime_checkable
class Catalog(Protocol):
    """Read-only data dictionary access used by strategies and the orchestrator."""

    async def get_columns(self, owner: str, table: str) -> list[ColumnInfo]: ...

    async def get_indexes(self, owner: str, table: str) -> list[IndexInfo]: ...

    async def get_constraints(self, owner: str, table: str) -> list[ConstraintInfo]: ...

    async def get_index_names(
        self, owner: str, table: str, suffix: str | None = None
    ) -> list[str]: ...

    async def get_ddl(self, object_type: str, owner: str, name: str) -> str: ...

    async def table_exists(self, owner: str, table: str) -> bool: ...

    async def count_rows(self, owner: str, table: str) -> int: ...

    async def segment_size_mb(self, owner: str, table: str) -> float: ...

    async def date_range(
        self, owner: str, table: str, column: str
    ) -> tuple[datetime | None, datetime | None]: ...

    async def system_partitions(self, owner: str, table: str) -> list[tuple[str, str]]: ...


class OracleCatalog:
    """
    Read-only queries against the Oracle data dictionary.

    Example:
        >>> catalog = OracleCatalog(engine)
        >>> columns = await catalog.get_columns("DWH", "SALES")
        >>> [c.name for c in columns][:2]
        ['SALE_ID', 'SALE_DATE']
    """

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._conn = conn
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def _fetch(self, query: str, params: dict[str, Any]) -> Sequence[Any]:
        async with execute_with_connection(self._conn, transactional=False) as conn:
            result = await conn.execute(text(query), params)
            return result.fetchall()

    async def _scalar(self, query: str, params: dict[str, Any] | None = None) -> Any:
        async with execute_with_connection(self._conn, transactional=False) as conn:
            result = await conn.execute(text(query), params or {})
            return result.scalar()

    async def get_columns(self, owner: str, table: str) -> list[ColumnInfo]:
        with self._tracer.span(
            "partmigrate.catalog.get_columns",
            {ATTR_TABLE: f"{owner}.{table}", ATTR_DB_SYSTEM: "oracle"},
        ):
            rows = await self._fetch(
                """
                SELECT column_name, data_type, data_length, data_precision,
                       data_scale, nullable, column_id
                FROM dba_tab_columns
                WHERE owner = :owner AND table_name = :table_name
                ORDER BY column_id
                """,
                {"owner": owner, "table_name": table},
            )
        return [
            ColumnInfo(
                name=row[0],
                data_type=row[1],
                data_length=row[2],
                data_precision=row[3],
                data_scale=row[4],
                nullable=row[5] == "Y",
                column_id=row[6],
            )
            for row in rows
        ]

    async def get_indexes(self, owner: str, table: str) -> list[IndexInfo]:
        rows = await self._fetch(
            """
            SELECT i.index_name, i.uniqueness,
                   CASE WHEN c.constraint_name IS NULL THEN 'N' ELSE 'Y' END
            FROM dba_indexes i
            LEFT JOIN dba_constraints c
              ON c.owner = i.table_owner
             AND c.table_name = i.table_name
             AND c.index_name = i.index_name
             AND c.constraint_type = 'P'
            WHERE i.table_owner = :owner AND i.table_name = :table_name
              AND i.index_type NOT IN ('LOB')
            ORDER BY i.index_name
            """,
            {"owner": owner, "table_name": table},
        )
        return [IndexInfo(name=row[0], uniqueness=row[1], is_primary_key=row[2] == "Y") for row in rows]

    async def get_constraints(self, owner: str, table: str) -> list[ConstraintInfo]:
        rows = await self._fetch(
            """
            SELECT constraint_name, constraint_type, search_condition_vc
            FROM dba_constraints
            WHERE owner = :owner AND table_name = :table_name
              AND constraint_type IN ('P', 'U', 'C', 'R')
            ORDER BY constraint_name
            """,
            {"owner": owner, "table_name": table},
        )
        return [
            ConstraintInfo(name=row[0], constraint_type=row[1], search_condition=row[2])
            for row in rows
        ]

    async def get_index_names(self, owner: str, table: str, suffix: str | None = None) -> list[str]:
        """Index names of a table, optionally only those ending with ``suffix``."""
        query = "SELECT index_name FROM dba_indexes WHERE table_owner = :owner AND table_name = :table_name"
        params: dict[str, Any] = {"owner": owner, "table_name": table}
        if suffix:
            query += " AND index_name LIKE :pattern ESCAPE '\\'"
            params["pattern"] = "%" + suffix.replace("_", "\\_")
        rows = await self._fetch(query + " ORDER BY index_name", params)
        return [row[0] for row in rows]

    async def get_ddl(self, object_type: str, owner: str, name: str) -> str:
        """Extract a definition with DBMS_METADATA.GET_DDL."""
        with self._tracer.span(
            "partmigrate.catalog.get_ddl",
            {ATTR_TABLE: f"{owner}.{name}", ATTR_DB_SYSTEM: "oracle"},
        ):
            value = await self._scalar(
                "SELECT DBMS_METADATA.GET_DDL(:object_type, :name, :owner) FROM dual",
                {"object_type": object_type, "name": name, "owner": owner},
            )
        return str(value) if value is not None else ""

    async def table_exists(self, owner: str, table: str) -> bool:
        count = await self._scalar(
            "SELECT COUNT(*) FROM dba_tables WHERE owner = :owner AND table_name = :table_name",
            {"owner": owner, "table_name": table},
        )
        return bool(count)

    async def count_rows(self, owner: str, table: str) -> int:
        owner, table = identifier(owner), identifier(table)
        count = await self._scalar(f"SELECT COUNT(*) FROM {owner}.{table}")  # nosec B608
        return int(count or 0)

    async def segment_size_mb(self, owner: str, table: str) -> float:
        size = await self._scalar(
            """
            SELECT NVL(SUM(bytes), 0) / 1024 / 1024 FROM dba_segments
            WHERE owner = :owner AND segment_name = :table_name
            """,
            {"owner": owner, "table_name": table},
        )
        return float(size or 0)

    async def date_range(
        self, owner: str, table: str, column: str
    ) -> tuple[datetime | None, datetime | None]:
        owner, table, column = identifier(owner), identifier(table), identifier(column)
        rows = await self._fetch(
            f"SELECT MIN({column}), MAX({column}) FROM {owner}.{table}",  # nosec B608
            {},
        )
        if not rows:
            return None, None
        return rows[0][0], rows[0][1]

    async def system_partitions(self, owner: str, table: str) -> list[tuple[str, str]]:
        """(partition_name, high_value) of system-named partitions, by position."""
        rows = await self._fetch(
            """
            SELECT partition_name, high_value
            FROM dba_tab_partitions
            WHERE table_owner = :owner AND table_name = :table_name
              AND partition_name LIKE 'SYS\\_P%' ESCAPE '\\'
            ORDER BY partition_position
            """,
            {"owner": owner, "table_name": table},
        )
        return [(row[0], str(row[1]) if row[1] is not None else "") for row in rows]


__all__ = [
    "REDEF_CONS_USE_PK",
    "REDEF_CONS_USE_ROWID",
    "MAX_IDENTIFIER_LENGTH",
    "identifier",
    "literal",
    "suffixed",
    "gather_stats_statement",
    "can_redef_statement",
    "start_redef_statement",
    "copy_dependents_statement",
    "sync_interim_statement",
    "finish_redef_statement",
    "abort_redef_statement",
    "Catalog",
    "OracleCatalog",
]
