"""
Shared pytest fixtures for the partmigrate tests.

This module provides:
- Scripted database fakes (FakeConnection, FakeEngine) that record every
  statement sent through ``exec_driver_sql`` and raise ORA errors on request
- A FakeCatalog answering data dictionary questions from plain dictionaries
- In-memory repositories and an in-process task lock manager
- Sample tasks, analysis records, columns and tier templates
- A ready-made ExecutionContext and MigrationOrchestrator wired to the fakes

The fakes are exposed through fixtures; tests configure them by mutating the
returned instances.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime

import pytest
from sqlalchemy.exc import DBAPIError

from partmigrate.config import MigratorConfig
from partmigrate.context import ExecutionContext
from partmigrate.locks import InMemoryTaskLockManager
from partmigrate.models import (
    AnalysisRecord,
    ColumnInfo,
    ConstraintInfo,
    IndexInfo,
    MigrationTask,
    TaskStatus,
)
from partmigrate.orchestrator import MigrationOrchestrator
from partmigrate.repositories import (
    InMemoryExecutionLogRepository,
    InMemoryILMRepository,
    InMemoryTaskRepository,
)
from partmigrate.templates import TemplateDocument, load_template

NOW = datetime(2024, 6, 15, 10, 30)

TIERED_TEMPLATE = {
    "tier_config": {
        "enabled": True,
        "hot": {
            "age_months": 12,
            "interval": "MONTHLY",
            "tablespace": "TBS_HOT",
            "compression": "NONE",
            "pctfree": 10,
        },
        "warm": {
            "age_months": 36,
            "interval": "YEARLY",
            "tablespace": "TBS_WARM",
            "compression": "BASIC",
            "pctfree": 5,
        },
        "cold": {
            "age_months": 84,
            "interval": "YEARLY",
            "tablespace": "TBS_COLD",
            "compression": "OLTP",
            "pctfree": 0,
        },
    },
    "policies": [],
}


# =============================================================================
# Database fakes
# =============================================================================


@dataclass
class ScriptedFailure:
    fragment: str
    ora_code: int
    message: str
    remaining: int | None


class FakeConnection:
    """
    Stand-in for an AsyncConnection used for DDL.

    ``statements`` holds every statement that succeeded, ``attempted`` every
    statement sent. ``fail_on`` makes statements containing a fragment raise
    a DBAPIError carrying an ORA code.
    """

    def __init__(self) -> None:
        self.statements: list[str] = []
        self.attempted: list[str] = []
        self.isolation_level: str | None = None
        self._failures: list[ScriptedFailure] = []

    def fail_on(
        self,
        fragment: str,
        ora_code: int,
        message: str = "simulated failure",
        times: int | None = None,
    ) -> None:
        self._failures.append(ScriptedFailure(fragment, ora_code, message, times))

    async def execution_options(self, **options) -> FakeConnection:
        self.isolation_level = options.get("isolation_level")
        return self

    async def exec_driver_sql(self, sql: str) -> None:
        self.attempted.append(sql)
        for failure in self._failures:
            if failure.fragment in sql and failure.remaining != 0:
                if failure.remaining is not None:
                    failure.remaining -= 1
                raise DBAPIError(
                    sql, None, Exception(f"ORA-{failure.ora_code:05d}: {failure.message}")
                )
        self.statements.append(sql)

    def executed(self, fragment: str) -> list[str]:
        return [s for s in self.statements if fragment in s]


class FakeEngine:
    """Stand-in for an AsyncEngine whose ``connect()`` yields one FakeConnection."""

    def __init__(self, connection: FakeConnection) -> None:
        self.connection = connection
        self.connect_calls = 0
        self.connect_error: Exception | None = None

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[FakeConnection]:
        self.connect_calls += 1
        if self.connect_error is not None:
            raise self.connect_error
        yield self.connection


class FakeCatalog:
    """Data dictionary answers keyed by table name; the owner is ignored."""

    def __init__(self) -> None:
        self.columns: dict[str, list[ColumnInfo]] = {}
        self.indexes: dict[str, list[IndexInfo]] = {}
        self.constraints: dict[str, list[ConstraintInfo]] = {}
        self.ddl: dict[tuple[str, str], str] = {}
        self.tables: set[str] = set()
        self.row_counts: dict[str, int] = {}
        self.default_rows = 1_000
        self.sizes: dict[str, float] = {}
        self.date_ranges: dict[str, tuple[datetime | None, datetime | None]] = {}
        self.partitions: dict[str, list[tuple[str, str]]] = {}
        self.stale_indexes: dict[str, list[str]] = {}

    async def get_columns(self, owner: str, table: str) -> list[ColumnInfo]:
        return list(self.columns.get(table, []))

    async def get_indexes(self, owner: str, table: str) -> list[IndexInfo]:
        return list(self.indexes.get(table, []))

    async def get_constraints(self, owner: str, table: str) -> list[ConstraintInfo]:
        return list(self.constraints.get(table, []))

    async def get_index_names(self, owner: str, table: str, suffix: str | None = None) -> list[str]:
        names = [i.name for i in self.indexes.get(table, [])] + self.stale_indexes.get(table, [])
        return [n for n in names if suffix is None or n.endswith(suffix)]

    async def get_ddl(self, object_type: str, owner: str, name: str) -> str:
        return self.ddl[(object_type, name)]

    async def table_exists(self, owner: str, table: str) -> bool:
        return table in self.tables

    async def count_rows(self, owner: str, table: str) -> int:
        return self.row_counts.get(table, self.default_rows)

    async def segment_size_mb(self, owner: str, table: str) -> float:
        return self.sizes.get(table, 100.0)

    async def date_range(
        self, owner: str, table: str, column: str
    ) -> tuple[datetime | None, datetime | None]:
        return self.date_ranges.get(table, (None, None))

    async def system_partitions(self, owner: str, table: str) -> list[tuple[str, str]]:
        return list(self.partitions.get(table, []))


# =============================================================================
# Sample data
# =============================================================================


def sales_columns() -> list[ColumnInfo]:
    return [
        ColumnInfo("SALE_ID", "NUMBER", data_precision=12, nullable=False, column_id=1),
        ColumnInfo("SALE_DATE", "DATE", column_id=2),
        ColumnInfo("REGION", "VARCHAR2", data_length=20, column_id=3),
        ColumnInfo("AMOUNT", "NUMBER", data_precision=12, data_scale=2, column_id=4),
    ]


@pytest.fixture
def now() -> datetime:
    """Fixed reference time for boundary and naming assertions."""
    return NOW


@pytest.fixture
def config() -> MigratorConfig:
    """Configuration without backup so statement lists stay short."""
    return MigratorConfig(backup_enabled=False, online_min_rows=0)


@pytest.fixture
def columns() -> list[ColumnInfo]:
    return sales_columns()


@pytest.fixture
def task() -> MigrationTask:
    """A READY monthly RANGE task on DWH.SALES."""
    return MigrationTask(
        id=1,
        source_owner="DWH",
        source_table="SALES",
        partition_type="RANGE(SALE_DATE)",
        interval_clause="MONTHLY",
        migration_method="CTAS",
        status=TaskStatus.READY,
        validation_status="READY",
        parallel_degree=4,
    )


@pytest.fixture
def analysis() -> AnalysisRecord:
    return AnalysisRecord(
        task_id=1,
        recommended_strategy="RANGE(SALE_DATE) INTERVAL MONTHLY",
        date_column_name="SALE_DATE",
        date_column_type="DATE",
        partition_boundary_min_date=datetime(2019, 3, 15),
        partition_boundary_max_date=datetime(2024, 6, 14),
        supports_online_redef=True,
        table_rows=1_000,
    )


# =============================================================================
# Fakes and repositories
# =============================================================================


@pytest.fixture
def connection() -> FakeConnection:
    return FakeConnection()


@pytest.fixture
def engine(connection: FakeConnection) -> FakeEngine:
    return FakeEngine(connection)


@pytest.fixture
def catalog(columns: list[ColumnInfo]) -> FakeCatalog:
    """Catalog for DWH.SALES with a PK, one secondary index and a check constraint."""
    catalog = FakeCatalog()
    catalog.tables.add("SALES")
    catalog.columns["SALES"] = columns
    catalog.indexes["SALES"] = [
        IndexInfo("SALES_PK", "UNIQUE", is_primary_key=True),
        IndexInfo("SALES_REGION_IX"),
    ]
    catalog.constraints["SALES"] = [
        ConstraintInfo("SALES_PK", "P"),
        ConstraintInfo("SALES_AMOUNT_CK", "C", "AMOUNT >= 0"),
        ConstraintInfo("SYS_C001", "C", '"SALE_ID" IS NOT NULL'),
    ]
    catalog.ddl[("INDEX", "SALES_REGION_IX")] = (
        'CREATE INDEX "DWH"."SALES_REGION_IX" ON "DWH"."SALES" ("REGION") TABLESPACE "USERS"'
    )
    catalog.ddl[("CONSTRAINT", "SALES_PK")] = (
        'ALTER TABLE "DWH"."SALES" ADD CONSTRAINT "SALES_PK" PRIMARY KEY ("SALE_ID") ENABLE'
    )
    catalog.ddl[("CONSTRAINT", "SALES_AMOUNT_CK")] = (
        'ALTER TABLE "DWH"."SALES" ADD CONSTRAINT "SALES_AMOUNT_CK" CHECK (AMOUNT >= 0) ENABLE'
    )
    return catalog


@pytest.fixture
def execution_log() -> InMemoryExecutionLogRepository:
    return InMemoryExecutionLogRepository(enable_tracing=False)


@pytest.fixture
def task_repo(task: MigrationTask, analysis: AnalysisRecord) -> InMemoryTaskRepository:
    repo = InMemoryTaskRepository(enable_tracing=False)
    repo.add(task, analysis)
    return repo


@pytest.fixture
def ilm_repo() -> InMemoryILMRepository:
    repo = InMemoryILMRepository(enable_tracing=False)
    repo.add_template("FACT_TIERED", TIERED_TEMPLATE)
    return repo


@pytest.fixture
def lock_manager() -> InMemoryTaskLockManager:
    return InMemoryTaskLockManager()


@pytest.fixture
def make_context(config, catalog, connection, execution_log, task, analysis, now):
    """Factory for an ExecutionContext wired to the fakes."""

    def _make(**overrides) -> ExecutionContext:
        values = {
            "task": task,
            "config": config,
            "catalog": catalog,
            "connection": connection,
            "execution_log": execution_log,
            "analysis": analysis,
            "now": now,
        }
        values.update(overrides)
        return ExecutionContext(**values)

    return _make


@pytest.fixture
def orchestrator(
    engine, task_repo, execution_log, ilm_repo, catalog, lock_manager, config
) -> MigrationOrchestrator:
    return MigrationOrchestrator(
        engine,  # type: ignore[arg-type]
        tasks=task_repo,
        execution_log=execution_log,
        ilm_repository=ilm_repo,
        catalog=catalog,
        lock_manager=lock_manager,
        config=config,
        enable_tracing=False,
    )


@pytest.fixture
def tiered_template() -> TemplateDocument:
    """The FACT_TIERED template, parsed."""
    return load_template(TIERED_TEMPLATE, name="FACT_TIERED")
