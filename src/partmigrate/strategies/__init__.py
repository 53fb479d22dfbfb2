"""
Migration strategies.

Each strategy implements ``MigrationStrategy``: a side-effect free
eligibility check and an ``execute`` that migrates the task's table.
"""

from partmigrate.models import MigrationMethod
from partmigrate.strategies.base import (
    FALLBACK_CHAINS,
    Eligibility,
    MigrationStrategy,
    StrategyOutcome,
    fallback_chain,
)
from partmigrate.strategies.ctas import CTASStrategy, copy_select_list
from partmigrate.strategies.exchange import (
    EMPTY_SUFFIX,
    PartitionExchangeStrategy,
    periods_spanned,
)
from partmigrate.strategies.online import REDEF_SUFFIX, OnlineRedefinitionStrategy


def default_strategies() -> dict[MigrationMethod, MigrationStrategy]:
    """One instance of every built-in strategy, keyed by method."""
    return {
        MigrationMethod.CTAS: CTASStrategy(),
        MigrationMethod.ONLINE: OnlineRedefinitionStrategy(),
        MigrationMethod.EXCHANGE: PartitionExchangeStrategy(),
    }


__all__ = [
    "FALLBACK_CHAINS",
    "fallback_chain",
    "Eligibility",
    "StrategyOutcome",
    "MigrationStrategy",
    "CTASStrategy",
    "copy_select_list",
    "OnlineRedefinitionStrategy",
    "REDEF_SUFFIX",
    "PartitionExchangeStrategy",
    "EMPTY_SUFFIX",
    "periods_spanned",
    "default_strategies",
]
