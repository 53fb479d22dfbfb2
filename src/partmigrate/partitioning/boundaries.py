"""
Partition boundary calculation.

Everything in this module is a pure function of its arguments: no clock
reads, no database access. ``now`` is always passed in.

Tier model:
    Each tier's age is measured back from ``now``; ``cutoff(tier) = now - age``.
    Data younger than the HOT age is hot, data between the HOT and WARM ages
    is warm, and anything older is cold. The COLD age is the retention
    horizon handed to the policy engine and does not bound any partition.

    COLD  [floor(source_min) ............ warm bound)
    WARM                    [warm bound ... hot bound)
    HOT                                    [hot bound ... end of current period)

    Each tier steps by its own granularity. The HOT tier ends with the period
    containing ``now``; the INTERVAL clause creates every later partition.

    Boundaries between tiers are the cutoffs truncated to the younger tier's
    granularity, so the first partition of every tier is period aligned and
    only the last partition of an older tier can be partial.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta

from partmigrate.exceptions import TemplateValidationError
from partmigrate.intervals import IntervalGranularity, add_months
from partmigrate.models import Tier
from partmigrate.templates import TierTemplate

# Youngest to oldest
TIER_ORDER: tuple[Tier, ...] = (Tier.HOT, Tier.WARM, Tier.COLD)


@dataclass(frozen=True)
class TierAge:
    """Age threshold of a tier, in days or in months (never both)."""

    days: int | None = None
    months: int | None = None

    def __post_init__(self) -> None:
        if self.days is not None and self.months is not None:
            raise ValueError("age_days and age_months are mutually exclusive")

    @property
    def is_set(self) -> bool:
        return self.days is not None or self.months is not None

    def cutoff(self, now: datetime) -> datetime | None:
        if self.months is not None:
            return add_months(now, -self.months)
        if self.days is not None:
            return now - timedelta(days=self.days)
        return None


@dataclass(frozen=True)
class TierLayout:
    """Granularity and age of one tier, the calculator's view of a TierSpec."""

    tier: Tier
    granularity: IntervalGranularity
    age: TierAge = TierAge()


@dataclass(frozen=True)
class PartitionBoundary:
    """
    One explicit partition.

    Attributes:
        tier: Tier the partition belongs to.
        name: Partition name, e.g. ``P_2021`` or ``P_202403``.
        lower: Inclusive lower bound (informational; Oracle ranges only
            store the upper bound).
        upper: Exclusive upper bound, rendered as ``VALUES LESS THAN``.
    """

    tier: Tier
    name: str
    lower: datetime
    upper: datetime


@dataclass(frozen=True)
class TierBoundaries:
    """
    Result of the tiered calculation.

    Attributes:
        now: Reference time used for every cutoff.
        cutoffs: ``now - age`` per tier; unset ages take the adjacent tier's
            cutoff. Always ordered cold <= warm <= hot <= now.
        partitions: Explicit partitions below the current period, oldest first.
        hot_partition: The HOT partition containing ``now``; later partitions
            are created by the interval clause.
    """

    now: datetime
    cutoffs: Mapping[Tier, datetime]
    partitions: tuple[PartitionBoundary, ...]
    hot_partition: PartitionBoundary

    def for_tier(self, tier: Tier) -> list[PartitionBoundary]:
        matching = [p for p in self.partitions if p.tier is tier]
        if tier is Tier.HOT:
            matching.append(self.hot_partition)
        return matching

    @property
    def all_partitions(self) -> tuple[PartitionBoundary, ...]:
        return (*self.partitions, self.hot_partition)


def tier_layouts(template: TierTemplate) -> dict[Tier, TierLayout]:
    """Extract calculator input from a validated template."""
    layouts = {}
    for tier in TIER_ORDER:
        spec = template.tier(tier)
        layouts[tier] = TierLayout(
            tier=tier,
            granularity=spec.interval,
            age=TierAge(days=spec.age_days, months=spec.age_months),
        )
    return layouts


def compute_cutoffs(layouts: Mapping[Tier, TierLayout], now: datetime) -> dict[Tier, datetime]:
    """
    Compute ``now - age`` for each tier.

    An unset HOT age means "only the current period is hot"; an unset WARM or
    COLD age collapses onto the adjacent younger tier's cutoff, which keeps
    data in the younger tier permanently.

    Raises:
        TemplateValidationError: If the ages do not increase from HOT to COLD
    """
    raw = {tier: layouts[tier].age.cutoff(now) for tier in TIER_ORDER}

    errors = []
    set_tiers = [tier for tier in TIER_ORDER if raw[tier] is not None]
    for younger, older in zip(set_tiers, set_tiers[1:], strict=False):
        if not raw[older] < raw[younger]:
            errors.append(
                f"{older.value.lower()} age must be greater than {younger.value.lower()} age"
            )
    for tier in set_tiers:
        if raw[tier] > now:
            errors.append(f"{tier.value.lower()} age must not be negative")
    if errors:
        raise TemplateValidationError(errors)

    cutoffs: dict[Tier, datetime] = {}
    previous = now
    for tier in TIER_ORDER:
        value = raw[tier]
        cutoffs[tier] = previous if value is None else value
        previous = cutoffs[tier]
    return cutoffs


def _step_partitions(
    layout: TierLayout,
    start: datetime,
    upper: datetime,
) -> list[PartitionBoundary]:
    partitions = []
    cursor = start
    while cursor < upper:
        nxt = layout.granularity.add(cursor)
        if nxt > upper:
            # Final partial period, so tiers never overlap
            nxt = upper
        partitions.append(
            PartitionBoundary(
                tier=layout.tier,
                name=layout.granularity.format_name(cursor),
                lower=cursor,
                upper=nxt,
            )
        )
        cursor = nxt
    return partitions


def compute_tier_boundaries(
    layouts: Mapping[Tier, TierLayout],
    source_min: datetime | None,
    now: datetime,
) -> TierBoundaries:
    """
    Compute explicit partitions for a tiered layout.

    Args:
        layouts: HOT, WARM and COLD layouts
        source_min: Oldest partition key value, None for an empty table
        now: Reference time

    Returns:
        TierBoundaries with every explicit partition and the current HOT partition

    Raises:
        TemplateValidationError: If the tier ages are not ordered

    Example:
        >>> result = compute_tier_boundaries(layouts, datetime(2019, 3, 15), now)
        >>> [p.name for p in result.for_tier(Tier.COLD)][:2]
        ['P_2019', 'P_2020']
    """
    cutoffs = compute_cutoffs(layouts, now)
    hot, warm, cold = layouts[Tier.HOT], layouts[Tier.WARM], layouts[Tier.COLD]

    current_start = hot.granularity.floor(now)
    hot_bound = min(hot.granularity.floor(cutoffs[Tier.HOT]), current_start)
    warm_bound = min(warm.granularity.floor(cutoffs[Tier.WARM]), hot_bound)

    partitions: list[PartitionBoundary] = []
    cursor: datetime | None = None
    for layout, upper in ((cold, warm_bound), (warm, hot_bound), (hot, current_start)):
        if cursor is None:
            if source_min is None:
                continue
            start = layout.granularity.floor(source_min)
        else:
            start = cursor
        # source_min at or past the tier boundary: no explicit partitions
        if start >= upper:
            continue
        partitions.extend(_step_partitions(layout, start, upper))
        cursor = upper

    hot_partition = PartitionBoundary(
        tier=Tier.HOT,
        name=hot.granularity.format_name(current_start),
        lower=current_start,
        upper=hot.granularity.add(current_start),
    )

    return TierBoundaries(
        now=now,
        cutoffs=cutoffs,
        partitions=tuple(partitions),
        hot_partition=hot_partition,
    )


def uniform_lower_boundary(
    source_min: datetime,
    granularity: IntervalGranularity,
    buffer_periods: int = 1,
) -> datetime:
    """
    First boundary of a uniform interval-partitioned table.

    The boundary is the source minimum truncated to its period, moved back by
    ``buffer_periods`` so every existing row lies strictly above it.

    Example:
        >>> uniform_lower_boundary(datetime(2019, 3, 15), IntervalGranularity.MONTHLY)
        datetime.datetime(2019, 2, 1, 0, 0)
    """
    if buffer_periods < 0:
        raise ValueError(f"buffer_periods must be >= 0, got {buffer_periods}")
    return granularity.add(granularity.floor(source_min), -buffer_periods)


__all__ = [
    "TIER_ORDER",
    "TierAge",
    "TierLayout",
    "PartitionBoundary",
    "TierBoundaries",
    "tier_layouts",
    "compute_cutoffs",
    "compute_tier_boundaries",
    "uniform_lower_boundary",
]
