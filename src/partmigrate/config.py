"""
Runtime configuration for the migration orchestrator.

Values can be constructed directly, from a dictionary, or loaded from the
``dwh_ilm_config`` key/value table that operators maintain in the warehouse.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from partmigrate.repositories._connection import execute_with_connection

logger = logging.getLogger(__name__)

# dwh_ilm_config keys understood by MigratorConfig.from_config_rows
CONFIG_KEYS: dict[str, str] = {
    "MIGRATION_BACKUP_ENABLED": "backup_enabled",
    "MIGRATION_VALIDATE_ENABLED": "validate_enabled",
    "MIGRATION_AUTO_ILM_ENABLED": "auto_ilm_enabled",
    "MIGRATION_PARALLEL_DEGREE": "parallel_degree",
    "MIGRATION_BOUNDARY_BUFFER_PERIODS": "boundary_buffer_periods",
    "MIGRATION_ONLINE_MIN_ROWS": "online_min_rows",
    "NULL_DEFAULT_DATE": "null_default_date",
}


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().upper() in ("Y", "YES", "TRUE", "1")


@dataclass(frozen=True)
class MigratorConfig:
    """
    Configuration for migration runs.

    Attributes:
        backup_enabled: Copy the source table to ``<T>_BAK_<timestamp>`` before
            migrating (default True).
        validate_enabled: Compare row counts with the backup after migrating
            (default True).
        auto_ilm_enabled: Apply the task's ILM template even when the task
            does not request it (default False).
        parallel_degree: Default intra-statement parallelism (default 4).
        boundary_buffer_periods: Periods subtracted below the oldest value when
            computing the first interval boundary (default 1).
        online_min_rows: Smallest table for which online reorganization is
            worth its overhead (default 10,000,000).
        fallback_error_codes: ORA codes from the online capability check that
            mean "fall back to CTAS" rather than fail (default 1031, 6550).
        null_default_date: Replacement for NULL partition keys under the
            UPDATE strategy, ``YYYY-MM-DD`` (default 5999-01-01).

    Example:
        >>> config = MigratorConfig(parallel_degree=8, backup_enabled=False)
        >>> config.parallel_degree
        8
    """

    backup_enabled: bool = True
    validate_enabled: bool = True
    auto_ilm_enabled: bool = False
    parallel_degree: int = 4
    boundary_buffer_periods: int = 1
    online_min_rows: int = 10_000_000
    fallback_error_codes: tuple[int, ...] = (1031, 6550)
    null_default_date: str = "5999-01-01"

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.parallel_degree < 1:
            raise ValueError(f"parallel_degree must be >= 1, got {self.parallel_degree}")
        if self.boundary_buffer_periods < 0:
            raise ValueError(
                f"boundary_buffer_periods must be >= 0, got {self.boundary_buffer_periods}"
            )
        if self.online_min_rows < 0:
            raise ValueError(f"online_min_rows must be >= 0, got {self.online_min_rows}")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON storage."""
        return {
            "backup_enabled": self.backup_enabled,
            "validate_enabled": self.validate_enabled,
            "auto_ilm_enabled": self.auto_ilm_enabled,
            "parallel_degree": self.parallel_degree,
            "boundary_buffer_periods": self.boundary_buffer_periods,
            "online_min_rows": self.online_min_rows,
            "fallback_error_codes": list(self.fallback_error_codes),
            "null_default_date": self.null_default_date,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MigratorConfig:
        """
        Create from dictionary.

        Args:
            data: Dictionary containing configuration values.

        Returns:
            MigratorConfig instance.
        """
        return cls(
            backup_enabled=_flag(data.get("backup_enabled", True)),
            validate_enabled=_flag(data.get("validate_enabled", True)),
            auto_ilm_enabled=_flag(data.get("auto_ilm_enabled", False)),
            parallel_degree=int(data.get("parallel_degree", 4)),
            boundary_buffer_periods=int(data.get("boundary_buffer_periods", 1)),
            online_min_rows=int(data.get("online_min_rows", 10_000_000)),
            fallback_error_codes=tuple(
                int(code) for code in data.get("fallback_error_codes", (1031, 6550))
            ),
            null_default_date=str(data.get("null_default_date", "5999-01-01")),
        )

    @classmethod
    def from_config_rows(cls, rows: dict[str, str]) -> MigratorConfig:
        """
        Create from ``dwh_ilm_config`` key/value pairs; unknown keys are ignored.
        """
        data = {CONFIG_KEYS[key]: value for key, value in rows.items() if key in CONFIG_KEYS}
        return cls.from_dict(data)


async def load_config(conn: AsyncConnection | AsyncEngine) -> MigratorConfig:
    """
    Load MigratorConfig from the ``dwh_ilm_config`` table.

    Args:
        conn: Database connection or engine

    Returns:
        Configuration with table values overriding the defaults
    """
    query = text("SELECT config_key, config_value FROM dwh_ilm_config")
    async with execute_with_connection(conn, transactional=False) as connection:
        result = await connection.execute(query)
        rows = {str(row[0]).upper(): str(row[1]) for row in result.fetchall()}
    logger.debug("Loaded %d configuration rows", len(rows))
    return MigratorConfig.from_config_rows(rows)


__all__ = [
    "CONFIG_KEYS",
    "MigratorConfig",
    "load_config",
]
