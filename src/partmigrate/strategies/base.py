"""
Common contract of the migration strategies.

A strategy is checked with ``eligibility(ctx)`` before it runs. An
ineligible result moves the orchestrator to the next method of the task's
fallback chain. So does a MigrationError whose classification is FALLBACK
(CapabilityError and InsufficientPrivilegeError) when it is raised by
``eligibility`` or by ``execute`` before any statement went out. Every other
failure is terminal for the run.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, runtime_checkable

from partmigrate.context import ExecutionContext
from partmigrate.intervals import IntervalGranularity
from partmigrate.models import MigrationMethod

FALLBACK_CHAINS: dict[MigrationMethod, tuple[MigrationMethod, ...]] = {
    MigrationMethod.CTAS: (MigrationMethod.CTAS,),
    MigrationMethod.ONLINE: (MigrationMethod.ONLINE, MigrationMethod.CTAS),
    MigrationMethod.EXCHANGE: (MigrationMethod.EXCHANGE, MigrationMethod.CTAS),
}


def fallback_chain(method: MigrationMethod) -> tuple[MigrationMethod, ...]:
    """Methods to try, in order, for a task requesting ``method``."""
    return FALLBACK_CHAINS[method]


@dataclass(frozen=True)
class Eligibility:
    """
    Result of a strategy's capability check.

    Attributes:
        eligible: The strategy can run against this table.
        reason: Why it cannot, for the execution log and fallback list.
        redef_option: Online reorganization mode that passed the check.
        granularity: Period width chosen for a partition exchange.
        period_start: Start of the single period holding every row.
    """

    eligible: bool
    reason: str | None = None
    redef_option: int | None = None
    granularity: IntervalGranularity | None = None
    period_start: datetime | None = None

    @classmethod
    def ok(cls, **kwargs) -> Eligibility:
        return cls(eligible=True, **kwargs)

    @classmethod
    def no(cls, reason: str) -> Eligibility:
        return cls(eligible=False, reason=reason)


@dataclass(frozen=True)
class StrategyOutcome:
    """
    What a successful strategy left behind.

    Attributes:
        method: Strategy that produced the outcome.
        migrated_table: Name of the partitioned table.
        reference_table: Table holding the original rows, for row-count
            parity; None when the strategy keeps no such copy.
        backup_table: Table rollback restores from, if any.
        can_rollback: Whether rollback may drop ``migrated_table`` and
            rename ``backup_table`` back.
    """

    method: MigrationMethod
    migrated_table: str
    reference_table: str | None = None
    backup_table: str | None = None
    can_rollback: bool = False


@runtime_checkable
class MigrationStrategy(Protocol):
    """A physical migration strategy."""

    method: MigrationMethod

    async def eligibility(self, ctx: ExecutionContext) -> Eligibility:
        """Check whether the strategy can run; must not change anything."""
        ...

    async def execute(self, ctx: ExecutionContext, eligibility: Eligibility) -> StrategyOutcome:
        """
        Migrate ``ctx.task``.

        Under ``ctx.simulate`` every statement is planned but none is issued.
        On failure the strategy cleans up after itself and re-raises.
        """
        ...


__all__ = [
    "FALLBACK_CHAINS",
    "fallback_chain",
    "Eligibility",
    "StrategyOutcome",
    "MigrationStrategy",
]
