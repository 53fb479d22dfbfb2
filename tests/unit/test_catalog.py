"""
Unit tests for the catalog module.

Tests cover:
- Identifier validation, suffixing and literals
- PL/SQL call rendering for statistics and online reorganization
- OracleCatalog row mapping against a mocked connection
"""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from partmigrate.catalog import (
    Catalog,
    OracleCatalog,
    abort_redef_statement,
    can_redef_statement,
    copy_dependents_statement,
    finish_redef_statement,
    gather_stats_statement,
    identifier,
    literal,
    start_redef_statement,
    suffixed,
    sync_interim_statement,
)


class TestHelpers:
    """Tests for identifier helpers."""

    def test_identifier_is_upper_cased(self):
        assert identifier("sales_2024") == "SALES_2024"

    @pytest.mark.parametrize("name", ["", "1SALES", "SALES; DROP TABLE X", "A" * 129, None])
    def test_invalid_identifier(self, name):
        with pytest.raises(ValueError):
            identifier(name)

    def test_suffixed(self):
        assert suffixed("SALES_PK", "_MIGR") == "SALES_PK_MIGR"

    def test_suffixed_truncates(self):
        name = suffixed("T" * 128, "_OLD")

        assert len(name) == 128
        assert name.endswith("_OLD")

    def test_literal_escapes_quotes(self):
        assert literal("O'BRIEN") == "'O''BRIEN'"


class TestStatements:
    """Tests for rendered PL/SQL calls."""

    def test_gather_stats(self):
        assert gather_stats_statement("DWH", "X", 4) == (
            "BEGIN DBMS_STATS.GATHER_TABLE_STATS("
            "ownname => 'DWH', tabname => 'X', degree => 4, cascade => TRUE); END;"
        )

    def test_can_redef(self):
        assert can_redef_statement("DWH", "SALES", 1) == (
            "BEGIN DBMS_REDEFINITION.CAN_REDEF_TABLE("
            "uname => 'DWH', tname => 'SALES', options_flag => 1); END;"
        )

    @pytest.mark.parametrize(
        "statement,procedure",
        [
            (start_redef_statement("DWH", "SALES", "SALES_REDEF", 2), "START_REDEF_TABLE"),
            (copy_dependents_statement("DWH", "SALES", "SALES_REDEF"), "COPY_TABLE_DEPENDENTS"),
            (sync_interim_statement("DWH", "SALES", "SALES_REDEF"), "SYNC_INTERIM_TABLE"),
            (finish_redef_statement("DWH", "SALES", "SALES_REDEF"), "FINISH_REDEF_TABLE"),
            (abort_redef_statement("DWH", "SALES", "SALES_REDEF"), "ABORT_REDEF_TABLE"),
        ],
    )
    def test_redefinition_calls(self, statement, procedure):
        assert f"DBMS_REDEFINITION.{procedure}(" in statement
        assert "orig_table => 'SALES'" in statement
        assert "int_table => 'SALES_REDEF'" in statement
        assert statement.endswith("END;")


# =============================================================================
# OracleCatalog
# =============================================================================


@pytest.fixture
def conn():
    return AsyncMock()


@pytest.fixture
def oracle_catalog(conn):
    return OracleCatalog(conn, enable_tracing=False)


def rows_result(rows):
    result = MagicMock()
    result.fetchall.return_value = rows
    return result


def scalar_result(value):
    result = MagicMock()
    result.scalar.return_value = value
    return result


class TestOracleCatalog:
    """Tests for OracleCatalog."""

    @pytest.mark.asyncio
    async def test_columns(self, oracle_catalog, conn):
        conn.execute.return_value = rows_result(
            [("SALE_ID", "NUMBER", 22, 12, 0, "N", 1), ("SALE_DATE", "DATE", 7, None, None, "Y", 2)]
        )

        columns = await oracle_catalog.get_columns("DWH", "SALES")

        assert [c.name for c in columns] == ["SALE_ID", "SALE_DATE"]
        assert columns[0].nullable is False
        assert columns[1].nullable is True
        assert conn.execute.await_args.args[1] == {"owner": "DWH", "table_name": "SALES"}

    @pytest.mark.asyncio
    async def test_indexes(self, oracle_catalog, conn):
        conn.execute.return_value = rows_result(
            [("SALES_PK", "UNIQUE", "Y"), ("SALES_REGION_IX", "NONUNIQUE", "N")]
        )

        indexes = await oracle_catalog.get_indexes("DWH", "SALES")

        assert indexes[0].is_primary_key is True
        assert indexes[1].is_primary_key is False

    @pytest.mark.asyncio
    async def test_index_names_with_suffix(self, oracle_catalog, conn):
        conn.execute.return_value = rows_result([("SALES_REGION_IX_MIGR",)])

        names = await oracle_catalog.get_index_names("DWH", "SALES_PART", suffix="_MIGR")

        query, params = conn.execute.await_args.args
        assert "LIKE :pattern" in str(query)
        assert params["pattern"] == "%\\_MIGR"
        assert names == ["SALES_REGION_IX_MIGR"]

    @pytest.mark.asyncio
    async def test_ddl(self, oracle_catalog, conn):
        conn.execute.return_value = scalar_result('CREATE INDEX "DWH"."X" ON "DWH"."SALES" ("A")')

        ddl = await oracle_catalog.get_ddl("INDEX", "DWH", "X")

        assert ddl.startswith("CREATE INDEX")
        assert conn.execute.await_args.args[1] == {"object_type": "INDEX", "name": "X", "owner": "DWH"}

    @pytest.mark.asyncio
    async def test_table_exists(self, oracle_catalog, conn):
        conn.execute.return_value = scalar_result(0)

        assert await oracle_catalog.table_exists("DWH", "SALES_PART") is False

    @pytest.mark.asyncio
    async def test_count_rows_validates_identifiers(self, oracle_catalog, conn):
        conn.execute.return_value = scalar_result(1000)

        assert await oracle_catalog.count_rows("dwh", "sales") == 1000
        assert str(conn.execute.await_args.args[0]) == "SELECT COUNT(*) FROM DWH.SALES"

        with pytest.raises(ValueError):
            await oracle_catalog.count_rows("DWH", "SALES WHERE 1=1")

    @pytest.mark.asyncio
    async def test_segment_size(self, oracle_catalog, conn):
        conn.execute.return_value = scalar_result(None)

        assert await oracle_catalog.segment_size_mb("DWH", "SALES") == 0.0

    @pytest.mark.asyncio
    async def test_date_range(self, oracle_catalog, conn):
        conn.execute.return_value = rows_result([(datetime(2019, 3, 15), datetime(2024, 6, 14))])

        low, high = await oracle_catalog.date_range("DWH", "SALES", "SALE_DATE")

        assert (low, high) == (datetime(2019, 3, 15), datetime(2024, 6, 14))

    @pytest.mark.asyncio
    async def test_system_partitions(self, oracle_catalog, conn):
        conn.execute.return_value = rows_result([("SYS_P101", "TO_DATE(...)"), ("SYS_P102", None)])

        partitions = await oracle_catalog.system_partitions("DWH", "SALES")

        assert partitions == [("SYS_P101", "TO_DATE(...)"), ("SYS_P102", "")]


class TestCatalogProtocol:
    """Tests for the Catalog protocol surface."""

    def test_oracle_catalog_satisfies_protocol(self, oracle_catalog):
        assert isinstance(oracle_catalog, Catalog)

    def test_fake_catalog_satisfies_protocol(self, catalog):
        assert isinstance(catalog, Catalog)

    def test_primary_key_lookup_is_not_part_of_protocol(self):
        assert not hasattr(Catalog, "has_primary_key")
        assert not hasattr(OracleCatalog, "has_primary_key")
