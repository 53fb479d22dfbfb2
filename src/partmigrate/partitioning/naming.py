"""
Partition naming.

Interval and automatic-list partitioning leave partitions with system names
such as ``SYS_P4211``. ``resolve_partition_name`` derives a readable name from
a partition's HIGH_VALUE; ``PartitionRenamer`` applies it to every system
named partition of a table after cutover.

``resolve_partition_name`` is pure: the same arguments always produce the
same result, and it never raises.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from partmigrate.exceptions import StepExecutionError
from partmigrate.intervals import IntervalGranularity, add_months
from partmigrate.models import StepType

if TYPE_CHECKING:
    from partmigrate.context import ExecutionContext

logger = logging.getLogger(__name__)

MAX_PARTITION_NAME_LENGTH = 30
MAX_LIST_VALUES_IN_NAME = 3
PROTECTED_PARTITIONS = frozenset({"P_XDEF", "P_INITIAL"})

_QUOTED = re.compile(r"'([^']+)'")
_INTERVAL_NUMBER = re.compile(r"(\d+)")
_INTERVAL_UNIT = re.compile(r"'(\w+)'")
_UNSAFE = re.compile(r"[^A-Z0-9_]")


def _parse_boundary(high_value: str) -> datetime:
    match = _QUOTED.search(high_value)
    if match is None:
        raise ValueError(f"no date literal in {high_value!r}")
    text = match.group(1).strip()[:19]
    if len(text) > 10:
        return datetime.strptime(text, "%Y-%m-%d %H:%M:%S")
    return datetime.strptime(text, "%Y-%m-%d")


def _interval_parts(interval_clause: str) -> tuple[int, str] | None:
    granularity = IntervalGranularity.parse(interval_clause)
    if granularity is not None and interval_clause.strip().upper() == granularity.value:
        if granularity.months:
            return granularity.months, "MONTH"
        return granularity.days, "DAY"
    number = _INTERVAL_NUMBER.search(interval_clause)
    unit = _INTERVAL_UNIT.search(interval_clause)
    if number is None or unit is None:
        return None
    return int(number.group(1)), unit.group(1).upper()


def _range_name(high_value: str, interval_clause: str | None) -> str:
    boundary = _parse_boundary(high_value)

    if not interval_clause:
        # No interval: infer the period from the boundary itself
        if boundary.day == 1 and boundary.month in (1, 4, 7, 10):
            return f"P_{boundary:%Y}Q{(boundary.month - 1) // 3 + 1}"
        if boundary.day == 1:
            return f"P_{boundary:%Y%m}"
        return f"P_{boundary:%Y%m%d}"

    parts = _interval_parts(interval_clause)
    if parts is None:
        return f"P_{boundary:%Y%m%d}"
    number, unit = parts

    # HIGH_VALUE is exclusive; the partition holds the period before it
    if unit == "MONTH":
        start = add_months(boundary, -number)
        if number == 3:
            return IntervalGranularity.QUARTERLY.format_name(start)
        if number == 12:
            return IntervalGranularity.YEARLY.format_name(start)
        return IntervalGranularity.MONTHLY.format_name(start)
    if unit == "YEAR":
        return IntervalGranularity.YEARLY.format_name(add_months(boundary, -12 * number))
    if unit == "DAY":
        return IntervalGranularity.DAILY.format_name(boundary - timedelta(days=number))
    return f"P_{boundary:%Y%m%d}"


def _list_name(high_value: str) -> str | None:
    values = []
    for part in high_value.split(","):
        value = part.strip().strip("'").strip()
        if value and value.upper() != "NULL":
            values.append(_UNSAFE.sub("_", value.upper()))
    if not values:
        return None
    name = "P_" + "_".join(values[:MAX_LIST_VALUES_IN_NAME])
    if len(values) > MAX_LIST_VALUES_IN_NAME:
        name += "_ETC"
    return name[:MAX_PARTITION_NAME_LENGTH]


def resolve_partition_name(
    high_value: str | None,
    partition_type: str,
    interval_clause: str | None = None,
) -> str | None:
    """
    Derive a readable partition name from its HIGH_VALUE.

    Args:
        high_value: HIGH_VALUE text from ``dba_tab_partitions``
        partition_type: RANGE, LIST or HASH (``RANGE(col)`` is accepted)
        interval_clause: Interval used to create the partition, for RANGE

    Returns:
        The new name, or None to keep the current name

    Example:
        >>> resolve_partition_name(
        ...     "TO_DATE(' 2024-04-01 00:00:00', 'SYYYY-MM-DD HH24:MI:SS')",
        ...     "RANGE",
        ...     "NUMTOYMINTERVAL(3,'MONTH')",
        ... )
        'P_2024Q1'
        >>> resolve_partition_name("'NORTH', 'SOUTH'", "LIST")
        'P_NORTH_SOUTH'
    """
    if not high_value:
        return None
    kind = partition_type.upper()
    try:
        if "RANGE" in kind or kind.startswith("DATE"):
            return _range_name(high_value, interval_clause)
        if "LIST" in kind:
            return _list_name(high_value)
    except (ValueError, TypeError, OverflowError) as e:
        logger.warning("Could not derive partition name from %r: %s", high_value, e)
    return None


@dataclass(frozen=True)
class RenameSummary:
    """Counts reported by a partition renaming pass."""

    total: int = 0
    renamed: int = 0
    skipped: int = 0
    failed: int = 0


class PartitionRenamer:
    """
    Renames system-generated partitions of a migrated table.

    Individual rename failures are counted and logged as warnings; the pass
    always completes and writes one summary step to the execution log.
    """

    async def rename_system_partitions(
        self,
        ctx: ExecutionContext,
        owner: str,
        table: str,
    ) -> RenameSummary:
        task = ctx.task
        partitions = await ctx.catalog.system_partitions(owner, table)
        renamed = skipped = failed = 0
        used: set[str] = set()

        for partition_name, high_value in partitions:
            if partition_name in PROTECTED_PARTITIONS:
                continue
            new_name = resolve_partition_name(
                high_value, task.base_partition_type, task.interval_clause
            )
            if new_name is None or new_name in used:
                skipped += 1
                continue
            try:
                await ctx.execute(
                    "RENAME_PARTITION",
                    StepType.DDL,
                    f"ALTER TABLE {owner}.{table} RENAME PARTITION {partition_name} TO {new_name}",
                    log=False,
                )
            except StepExecutionError as e:
                logger.warning("Failed to rename partition %s: %s", partition_name, e.error)
                failed += 1
                continue
            used.add(new_name)
            renamed += 1

        summary = RenameSummary(
            total=len(partitions), renamed=renamed, skipped=skipped, failed=failed
        )
        if summary.total:
            await ctx.log_info(
                "RENAME_PARTITIONS_SUMMARY",
                f"Renamed {renamed} partitions (skipped: {skipped}, failed: {failed}) "
                f"of {summary.total} system-generated partitions for {owner}.{table}",
            )
        logger.info(
            "Partition renaming for %s.%s: %d renamed, %d skipped, %d failed",
            owner,
            table,
            renamed,
            skipped,
            failed,
        )
        return summary


__all__ = [
    "MAX_PARTITION_NAME_LENGTH",
    "PROTECTED_PARTITIONS",
    "resolve_partition_name",
    "RenameSummary",
    "PartitionRenamer",
]
