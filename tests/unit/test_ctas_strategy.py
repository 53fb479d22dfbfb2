"""
Unit tests for the CTAS strategy.

Tests cover:
- Statement order from table creation through cutover
- Cleanup when the copy or the cutover fails
- Publishing alongside the original when it is kept
- Stale table removal and simulate mode
- The copy SELECT list for converted date columns
"""

from dataclasses import replace

import pytest

from partmigrate.exceptions import StepExecutionError
from partmigrate.models import ColumnInfo, MigrationMethod, NullHandling
from partmigrate.strategies import CTASStrategy, Eligibility
from partmigrate.strategies.ctas import copy_select_list


@pytest.fixture
def strategy():
    return CTASStrategy()


class TestExecute:
    """Tests for CTASStrategy.execute."""

    @pytest.mark.asyncio
    async def test_statement_order(self, strategy, make_context, connection):
        await strategy.execute(make_context(), Eligibility.ok())

        statements = connection.statements
        assert statements[0].startswith("CREATE TABLE DWH.SALES_PART")
        assert statements[1] == (
            "INSERT /*+ APPEND PARALLEL(4) */ INTO DWH.SALES_PART SELECT * FROM DWH.SALES"
        )
        assert statements[2].startswith('CREATE INDEX "DWH"."SALES_REGION_IX_MIGR"')
        assert 'CONSTRAINT "SALES_PK_MIGR"' in statements[3]
        assert 'CONSTRAINT "SALES_AMOUNT_CK_MIGR"' in statements[4]
        assert "DBMS_STATS.GATHER_TABLE_STATS" in statements[5]
        assert "tabname => 'SALES_PART'" in statements[5]
        assert statements[6] == "ALTER TABLE DWH.SALES RENAME TO SALES_OLD"
        assert statements[7] == "ALTER TABLE DWH.SALES_PART RENAME TO SALES"
        assert "ALTER INDEX DWH.SALES_REGION_IX_MIGR RENAME TO SALES_REGION_IX" in statements[8:]

    @pytest.mark.asyncio
    async def test_outcome_keeps_original_as_backup(self, strategy, make_context):
        outcome = await strategy.execute(make_context(), Eligibility.ok())

        assert outcome.method is MigrationMethod.CTAS
        assert outcome.migrated_table == "SALES"
        assert outcome.reference_table == "SALES_OLD"
        assert outcome.backup_table == "SALES_OLD"
        assert outcome.can_rollback is True

    @pytest.mark.asyncio
    async def test_always_eligible(self, strategy, make_context):
        assert (await strategy.eligibility(make_context())).eligible

    @pytest.mark.asyncio
    async def test_copy_failure_drops_new_table(self, strategy, make_context, connection):
        connection.fail_on("INSERT /*+ APPEND", 1653, "unable to extend table")

        with pytest.raises(StepExecutionError) as exc_info:
            await strategy.execute(make_context(), Eligibility.ok())

        assert exc_info.value.ora_code == 1653
        assert connection.statements[-1] == "DROP TABLE DWH.SALES_PART PURGE"
        assert not connection.executed("RENAME TO SALES_OLD")

    @pytest.mark.asyncio
    async def test_rename_failure_restores_original(self, strategy, make_context, connection):
        connection.fail_on("ALTER TABLE DWH.SALES_PART RENAME TO SALES", 54)

        with pytest.raises(StepExecutionError):
            await strategy.execute(make_context(), Eligibility.ok())

        assert connection.statements[-3:] == [
            "ALTER TABLE DWH.SALES_OLD RENAME TO SALES",
            "DROP INDEX DWH.SALES_REGION_IX_MIGR",
            "DROP TABLE DWH.SALES_PART PURGE",
        ]

    @pytest.mark.asyncio
    async def test_keep_original_publishes_migr_table(
        self, strategy, make_context, task, catalog, connection
    ):
        catalog.tables.add("SALES_MIGR")
        ctx = make_context(task=replace(task, keep_original=True))

        outcome = await strategy.execute(ctx, Eligibility.ok())

        assert connection.statements[0] == "DROP TABLE DWH.SALES_MIGR PURGE"
        assert connection.statements[-1] == "ALTER TABLE DWH.SALES_PART RENAME TO SALES_MIGR"
        assert not connection.executed("RENAME TO SALES_OLD")
        assert outcome.migrated_table == "SALES_MIGR"
        assert outcome.reference_table == "SALES"
        assert outcome.backup_table is None
        assert outcome.can_rollback is False

    @pytest.mark.asyncio
    async def test_stale_table_is_dropped_first(self, strategy, make_context, catalog, connection):
        catalog.tables.add("SALES_PART")
        catalog.stale_indexes["SALES_PART"] = ["SALES_REGION_IX_MIGR"]

        await strategy.execute(make_context(), Eligibility.ok())

        assert connection.statements[:2] == [
            "DROP INDEX DWH.SALES_REGION_IX_MIGR",
            "DROP TABLE DWH.SALES_PART PURGE",
        ]
        assert connection.statements[2].startswith("CREATE TABLE DWH.SALES_PART")

    @pytest.mark.asyncio
    async def test_simulate_sends_nothing(self, strategy, make_context, connection):
        ctx = make_context(simulate=True)

        outcome = await strategy.execute(ctx, Eligibility.ok())

        assert connection.attempted == []
        assert ctx.statements[0].startswith("CREATE TABLE DWH.SALES_PART")
        assert "ALTER TABLE DWH.SALES_PART RENAME TO SALES" in ctx.statements
        assert outcome.migrated_table == "SALES"


class TestCopySelectList:
    """Tests for copy_select_list."""

    @pytest.fixture
    def text_columns(self):
        return [
            ColumnInfo("SALE_ID", "NUMBER", column_id=1),
            ColumnInfo("SALE_DAY", "VARCHAR2", data_length=8, column_id=2),
        ]

    @pytest.fixture
    def converting(self, analysis):
        return replace(
            analysis,
            date_column_name="SALE_DAY",
            requires_conversion=True,
            date_conversion_expr="TO_DATE(SALE_DAY, 'YYYYMMDD')",
        )

    def test_star_without_conversion(self, columns, analysis):
        assert copy_select_list(columns, analysis) == "*"
        assert copy_select_list(columns, None) == "*"

    def test_conversion_expression(self, text_columns, converting):
        assert copy_select_list(text_columns, converting) == (
            "SALE_ID, TO_DATE(SALE_DAY, 'YYYYMMDD') AS SALE_DAY_CONVERTED"
        )

    def test_conversion_with_null_default(self, text_columns, converting):
        select_list = copy_select_list(
            text_columns, converting, "TO_DATE('5999-01-01', 'YYYY-MM-DD')"
        )

        assert select_list == (
            "SALE_ID, NVL(TO_DATE(SALE_DAY, 'YYYYMMDD'), "
            "TO_DATE('5999-01-01', 'YYYY-MM-DD')) AS SALE_DAY_CONVERTED"
        )

    def test_copy_statement_applies_null_default(
        self, strategy, make_context, converting, text_columns
    ):
        ctx = make_context(
            analysis=replace(converting, null_handling_strategy=NullHandling.UPDATE)
        )

        sql = strategy.copy_statement(ctx, text_columns, "SALES_PART")

        assert "NVL(TO_DATE(SALE_DAY, 'YYYYMMDD'), TO_DATE('5999-01-01', 'YYYY-MM-DD'))" in sql
