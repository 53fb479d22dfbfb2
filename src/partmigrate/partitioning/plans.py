"""
Partition plans.

A plan decides the ``PARTITION BY`` clause and the table level storage of the
new table. ``UniformPartitionPlan`` covers a single key with one granularity;
``TieredPartitionPlan`` lays out HOT, WARM and COLD partitions with per-tier
storage. ``uses_tiered_plan`` picks between them.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, runtime_checkable

from partmigrate.models import MigrationTask, Tier
from partmigrate.partitioning.boundaries import TierBoundaries
from partmigrate.partitioning.statement import (
    ListPartition,
    PartitionSpec,
    RangePartition,
    StorageOptions,
)
from partmigrate.templates import TemplateDocument, TierSpec, TierTemplate

DEFAULT_LIST_PARTITION = "P_XDEF"
INITIAL_PARTITION = "P_INITIAL"


@runtime_checkable
class PartitionPlan(Protocol):
    """Produces the partitioning clause and table storage of a new table."""

    def partitioning(self, key: str) -> PartitionSpec:
        """Build the PARTITION BY clause for partition key ``key``."""
        ...

    def table_storage(self) -> StorageOptions:
        """Table level segment attributes."""
        ...


@dataclass(frozen=True)
class UniformPartitionPlan:
    """
    One partitioning scheme for the whole table.

    Attributes:
        method: RANGE, LIST or HASH.
        interval: Interval expression; RANGE only.
        lower_boundary: Upper bound of the initial RANGE partition. None
            renders MAXVALUE and is only valid without an interval.
        automatic: AUTOMATIC list partitioning.
        list_values: Literal values of the default list partition.
        storage: Table level storage.
        initial_name: Name of the single explicit partition.
    """

    method: str
    interval: str | None = None
    lower_boundary: datetime | None = None
    automatic: bool = False
    list_values: tuple[str, ...] = ()
    storage: StorageOptions = StorageOptions()
    initial_name: str = INITIAL_PARTITION

    def partitioning(self, key: str) -> PartitionSpec:
        if self.method == "HASH":
            return PartitionSpec(method="HASH", key=key)
        if self.method == "LIST":
            if self.automatic:
                partition = ListPartition(DEFAULT_LIST_PARTITION, self.list_values)
            else:
                partition = ListPartition(DEFAULT_LIST_PARTITION, ("DEFAULT",))
            return PartitionSpec(
                method="LIST", key=key, automatic=self.automatic, partitions=(partition,)
            )
        initial = RangePartition(
            self.initial_name, self.lower_boundary if self.interval else None
        )
        return PartitionSpec(
            method="RANGE", key=key, interval=self.interval, partitions=(initial,)
        )

    def table_storage(self) -> StorageOptions:
        return self.storage


def _tier_storage(spec: TierSpec) -> StorageOptions:
    return StorageOptions(
        tablespace=spec.tablespace, compression=spec.compression, pctfree=spec.pctfree
    )


@dataclass(frozen=True)
class TieredPartitionPlan:
    """
    HOT/WARM/COLD range layout.

    Table defaults come from the HOT tier, so partitions created later by the
    interval clause land in HOT storage. Every explicit partition carries the
    storage of its own tier.
    """

    template: TierTemplate
    boundaries: TierBoundaries

    def partitioning(self, key: str) -> PartitionSpec:
        partitions = tuple(
            RangePartition(
                boundary.name,
                boundary.upper,
                _tier_storage(self.template.tier(boundary.tier)),
            )
            for boundary in self.boundaries.all_partitions
        )
        return PartitionSpec(
            method="RANGE",
            key=key,
            interval=self.template.hot.interval.expression,
            partitions=partitions,
        )

    def table_storage(self) -> StorageOptions:
        return _tier_storage(self.template.tier(Tier.HOT))


def uses_tiered_plan(task: MigrationTask, template: TemplateDocument | None) -> bool:
    """True when the task should be laid out with a TieredPartitionPlan."""
    return (
        template is not None
        and template.is_tiered
        and task.base_partition_type == "RANGE"
    )


__all__ = [
    "DEFAULT_LIST_PARTITION",
    "INITIAL_PARTITION",
    "PartitionPlan",
    "UniformPartitionPlan",
    "TieredPartitionPlan",
    "uses_tiered_plan",
]
