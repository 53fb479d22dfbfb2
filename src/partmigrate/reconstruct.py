"""
Dependent object reconstruction.

Indexes and constraints of the source table are recreated on the new table
under temporary ``_MIGR`` names, because the canonical names are still taken
by the source table's objects. After cutover the names are swapped in two
phases:

    1. every object of the old table is renamed to ``<name>_OLD``
    2. every ``_MIGR`` object takes its canonical name

Phase 2 never starts before phase 1 has finished, so a canonical name is
always free when it is claimed.

Definitions are extracted with DBMS_METADATA and rewritten textually: the
object name, the table name, the ``LOCAL`` placement and the ``PARALLEL``
clause. No other SQL is parsed.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from partmigrate.catalog import suffixed
from partmigrate.context import ExecutionContext
from partmigrate.exceptions import StepExecutionError
from partmigrate.models import ConstraintInfo, IndexInfo, StepType

logger = logging.getLogger(__name__)

MIGR_SUFFIX = "_MIGR"
OLD_SUFFIX = "_OLD"

# ORA-00942: table or view does not exist
ORA_TABLE_NOT_FOUND = 942

_COLUMN_LIST = re.compile(r"(\bON\s+(?:\"[^\"]+\"\.)?\"?[A-Za-z0-9_$#]+\"?\s*\([^)]*\))", re.IGNORECASE)
_FIRST_QUOTED_AFTER_INDEX = re.compile(r"(\bINDEX\s+(?:\"[^\"]+\"\.)?)\"([^\"]+)\"", re.IGNORECASE)
_CONSTRAINT_TYPE_ORDER = {"P": 0, "U": 1, "C": 1, "R": 2}


def strip_terminator(sql: str) -> str:
    """Trim whitespace and trailing ';' from an extracted definition."""
    return sql.strip().rstrip(";").rstrip()


@dataclass(frozen=True)
class DependentObjects:
    """Indexes and constraints of a table, captured before cutover."""

    indexes: tuple[IndexInfo, ...] = ()
    constraints: tuple[ConstraintInfo, ...] = ()

    @property
    def renamable_constraints(self) -> tuple[ConstraintInfo, ...]:
        return tuple(c for c in self.constraints if not c.is_not_null_check)


@dataclass(frozen=True)
class CreatedObject:
    """An object created under a temporary name and its canonical name."""

    kind: str
    temp_name: str
    canonical_name: str


@dataclass
class ReconstructionResult:
    """Objects created on the new table, in creation order."""

    indexes: list[CreatedObject] = field(default_factory=list)
    constraints: list[CreatedObject] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def rewrite_index_ddl(
    ddl: str,
    index_name: str,
    source_table: str,
    target_table: str,
    *,
    partition_key: str | None,
    parallel_degree: int,
    unique: bool,
) -> str:
    """
    Rewrite an extracted CREATE INDEX for the new table.

    The index gets its ``_MIGR`` name and moves to ``target_table``. It is
    made LOCAL unless it is unique without the partition key, which the
    engine only allows as a global index. A PARALLEL clause is added when
    the definition has none.
    """
    temp_name = suffixed(index_name, MIGR_SUFFIX)
    sql = _FIRST_QUOTED_AFTER_INDEX.sub(lambda m: f'{m.group(1)}"{temp_name}"', ddl, count=1)
    sql = sql.replace(f'"{source_table}"', f'"{target_table}"')
    sql = sql.replace(f" {source_table} ", f" {target_table} ")

    upper = sql.upper()
    if not re.search(r"\bLOCAL\b", upper):
        match = _COLUMN_LIST.search(sql)
        if match is not None:
            key_in_columns = partition_key is not None and (
                f'"{partition_key}"' in match.group(1).upper()
                or re.search(rf"\b{re.escape(partition_key)}\b", match.group(1).upper())
            )
            if not unique or key_in_columns:
                sql = sql[: match.end()] + "\n  LOCAL" + sql[match.end() :]

    sql = strip_terminator(sql)
    if not re.search(r"\bPARALLEL\b", sql.upper()):
        sql += f"\n  PARALLEL {int(parallel_degree)}"
    return sql


def rewrite_constraint_ddl(
    ddl: str,
    constraint_name: str,
    source_table: str,
    target_table: str,
) -> str:
    """Rewrite an extracted ALTER TABLE ... ADD CONSTRAINT for the new table."""
    temp_name = suffixed(constraint_name, MIGR_SUFFIX)
    sql = re.sub(
        rf'CONSTRAINT\s+"{re.escape(constraint_name)}"',
        f'CONSTRAINT "{temp_name}"',
        ddl,
        count=1,
        flags=re.IGNORECASE,
    )
    sql = sql.replace(f'"{source_table}"', f'"{target_table}"', 1)
    return strip_terminator(sql)


class DependentObjectReconstructor:
    """
    Recreates indexes and constraints of a source table on its replacement.

    Example:
        >>> reconstructor = DependentObjectReconstructor()
        >>> objects = await reconstructor.capture(ctx, "DWH", "SALES")
        >>> created = ReconstructionResult()
        >>> await reconstructor.recreate_indexes(ctx, objects, "SALES", "SALES_PART", created, key)
    """

    async def capture(self, ctx: ExecutionContext, owner: str, table: str) -> DependentObjects:
        indexes = await ctx.catalog.get_indexes(owner, table)
        constraints = await ctx.catalog.get_constraints(owner, table)
        return DependentObjects(indexes=tuple(indexes), constraints=tuple(constraints))

    async def cleanup_stale(self, ctx: ExecutionContext, owner: str, table: str) -> int:
        """Drop ``_MIGR`` indexes left on ``table`` by an earlier failed run."""
        stale = await ctx.catalog.get_index_names(owner, table, suffix=MIGR_SUFFIX)
        dropped = 0
        for index_name in stale:
            try:
                await ctx.execute(
                    "DROP_STALE_INDEX", StepType.CLEANUP, f"DROP INDEX {owner}.{index_name}"
                )
                dropped += 1
            except StepExecutionError as e:
                logger.warning("Could not drop stale index %s: %s", index_name, e.error)
        return dropped

    async def recreate_indexes(
        self,
        ctx: ExecutionContext,
        objects: DependentObjects,
        source_table: str,
        target_table: str,
        created: ReconstructionResult,
        partition_key: str | None,
    ) -> None:
        """
        Recreate every non-PK index of the source on ``target_table``.

        The primary key's index is created by its constraint instead. Indexes
        on a column replaced by a converted date column are skipped.

        Raises:
            StepExecutionError: If an index cannot be created
        """
        owner = ctx.owner
        converted = None
        if ctx.analysis is not None and ctx.analysis.requires_conversion:
            converted = (ctx.analysis.date_column_name or "").upper() or None

        for index in objects.indexes:
            if index.is_primary_key:
                continue
            ddl = await ctx.catalog.get_ddl("INDEX", owner, index.name)
            if converted and re.search(rf'"{re.escape(converted)}"', ddl.upper()):
                message = f"Index {index.name} references converted column {converted}; not recreated"
                created.warnings.append(message)
                await ctx.log_warning("SKIP_INDEX", message)
                continue
            sql = rewrite_index_ddl(
                ddl,
                index.name,
                source_table,
                target_table,
                partition_key=partition_key,
                parallel_degree=ctx.parallel_degree,
                unique=index.uniqueness.upper() == "UNIQUE",
            )
            await ctx.execute(f"CREATE_INDEX_{index.name}", StepType.DDL, sql)
            created.indexes.append(
                CreatedObject("INDEX", suffixed(index.name, MIGR_SUFFIX), index.name)
            )

    async def recreate_constraints(
        self,
        ctx: ExecutionContext,
        objects: DependentObjects,
        source_table: str,
        target_table: str,
        created: ReconstructionResult,
    ) -> None:
        """
        Recreate constraints: primary key, then unique and check, then foreign keys.

        NOT NULL checks travel with the column definitions and are skipped.
        A failing foreign key is logged as a warning; any other failure raises.
        """
        owner = ctx.owner
        ordered = sorted(
            objects.renamable_constraints,
            key=lambda c: _CONSTRAINT_TYPE_ORDER.get(c.constraint_type, 3),
        )
        for constraint in ordered:
            object_type = "REF_CONSTRAINT" if constraint.constraint_type == "R" else "CONSTRAINT"
            ddl = await ctx.catalog.get_ddl(object_type, owner, constraint.name)
            sql = rewrite_constraint_ddl(ddl, constraint.name, source_table, target_table)
            temp_name = suffixed(constraint.name, MIGR_SUFFIX)
            try:
                await ctx.execute(f"ADD_CONSTRAINT_{constraint.name}", StepType.DDL, sql)
            except StepExecutionError as e:
                if constraint.constraint_type != "R":
                    raise
                message = f"Foreign key {constraint.name} could not be recreated: {e.error}"
                created.warnings.append(message)
                await ctx.log_warning("ADD_FOREIGN_KEY", message)
                continue
            created.constraints.append(
                CreatedObject(constraint.constraint_type, temp_name, constraint.name)
            )
            if constraint.constraint_type == "P":
                # The PK creates its own index, named after the constraint
                created.indexes.append(CreatedObject("INDEX", temp_name, constraint.name))

    async def rename_after_cutover(
        self,
        ctx: ExecutionContext,
        old_objects: DependentObjects,
        old_table: str,
        new_table: str,
        created: ReconstructionResult,
    ) -> None:
        """
        Swap object names after the tables were swapped.

        Rename failures are logged as warnings: the table cutover has already
        happened and the data is in place.
        """
        owner = ctx.owner

        # Phase 1: free every canonical name
        for index in old_objects.indexes:
            await self._rename(
                ctx,
                "RENAME_OLD_INDEX",
                f"ALTER INDEX {owner}.{index.name} RENAME TO {suffixed(index.name, OLD_SUFFIX)}",
            )
        for constraint in old_objects.renamable_constraints:
            await self._rename(
                ctx,
                "RENAME_OLD_CONSTRAINT",
                f"ALTER TABLE {owner}.{old_table} RENAME CONSTRAINT {constraint.name} "
                f"TO {suffixed(constraint.name, OLD_SUFFIX)}",
            )

        # Phase 2: claim them
        for index in created.indexes:
            await self._rename(
                ctx,
                "RENAME_NEW_INDEX",
                f"ALTER INDEX {owner}.{index.temp_name} RENAME TO {index.canonical_name}",
            )
        for constraint in created.constraints:
            await self._rename(
                ctx,
                "RENAME_NEW_CONSTRAINT",
                f"ALTER TABLE {owner}.{new_table} RENAME CONSTRAINT {constraint.temp_name} "
                f"TO {constraint.canonical_name}",
            )

    async def _rename(self, ctx: ExecutionContext, step_name: str, sql: str) -> None:
        try:
            await ctx.execute(step_name, StepType.DDL, sql)
        except StepExecutionError as e:
            await ctx.log_warning(step_name, f"{sql}: {e.error}")

    async def drop_created(
        self,
        ctx: ExecutionContext,
        created: ReconstructionResult,
        table: str,
    ) -> None:
        """Failure cleanup: drop created indexes, then the partially built table."""
        owner = ctx.owner
        constraint_indexes = {c.temp_name for c in created.constraints}
        for index in created.indexes:
            if index.temp_name in constraint_indexes:
                continue
            try:
                await ctx.execute(
                    "CLEANUP_INDEX", StepType.CLEANUP, f"DROP INDEX {owner}.{index.temp_name}"
                )
            except StepExecutionError as e:
                logger.warning("Cleanup could not drop index %s: %s", index.temp_name, e.error)
        await drop_table_quietly(ctx, owner, table, step_name="CLEANUP_TABLE")


async def drop_table_quietly(
    ctx: ExecutionContext,
    owner: str,
    table: str,
    *,
    step_name: str = "DROP_TABLE",
) -> bool:
    """
    Drop a table with PURGE, ignoring ORA-00942.

    Returns:
        True if the drop was issued successfully or planned under simulate.
    """
    try:
        await ctx.execute(step_name, StepType.CLEANUP, f"DROP TABLE {owner}.{table} PURGE")
    except StepExecutionError as e:
        if e.ora_code != ORA_TABLE_NOT_FOUND:
            logger.warning("Could not drop %s.%s: %s", owner, table, e.error)
        return False
    return True


__all__ = [
    "MIGR_SUFFIX",
    "OLD_SUFFIX",
    "strip_terminator",
    "rewrite_index_ddl",
    "rewrite_constraint_ddl",
    "DependentObjects",
    "CreatedObject",
    "ReconstructionResult",
    "DependentObjectReconstructor",
    "drop_table_quietly",
]
