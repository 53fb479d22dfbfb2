"""
Unit tests for dependent object reconstruction.

Tests cover:
- Rewriting extracted index and constraint definitions
- LOCAL placement rules for unique and non-unique indexes
- Recreating indexes and constraints under _MIGR names
- Foreign key failures logged as warnings
- Two-phase renaming after cutover
- Stale object cleanup and quiet table drops
"""

from dataclasses import replace

import pytest

from partmigrate.exceptions import StepExecutionError
from partmigrate.models import ConstraintInfo, StepStatus
from partmigrate.reconstruct import (
    CreatedObject,
    DependentObjectReconstructor,
    ReconstructionResult,
    drop_table_quietly,
    rewrite_constraint_ddl,
    rewrite_index_ddl,
)

INDEX_DDL = 'CREATE INDEX "DWH"."SALES_REGION_IX" ON "DWH"."SALES" ("REGION") TABLESPACE "USERS"'


@pytest.fixture
def reconstructor():
    return DependentObjectReconstructor()


class TestRewriteIndexDDL:
    """Tests for rewrite_index_ddl."""

    def test_nonunique_index_becomes_local(self):
        sql = rewrite_index_ddl(
            INDEX_DDL,
            "SALES_REGION_IX",
            "SALES",
            "SALES_PART",
            partition_key="SALE_DATE",
            parallel_degree=4,
            unique=False,
        )

        assert sql == (
            'CREATE INDEX "DWH"."SALES_REGION_IX_MIGR" ON "DWH"."SALES_PART" ("REGION")\n'
            '  LOCAL TABLESPACE "USERS"\n'
            "  PARALLEL 4"
        )

    def test_unique_index_without_key_stays_global(self):
        ddl = 'CREATE UNIQUE INDEX "DWH"."SALES_UK" ON "DWH"."SALES" ("SALE_ID")'

        sql = rewrite_index_ddl(
            ddl, "SALES_UK", "SALES", "SALES_PART",
            partition_key="SALE_DATE", parallel_degree=4, unique=True,
        )

        assert "LOCAL" not in sql
        assert '"SALES_UK_MIGR"' in sql

    def test_unique_index_with_key_becomes_local(self):
        ddl = 'CREATE UNIQUE INDEX "DWH"."SALES_UK" ON "DWH"."SALES" ("SALE_ID", "SALE_DATE")'

        sql = rewrite_index_ddl(
            ddl, "SALES_UK", "SALES", "SALES_PART",
            partition_key="SALE_DATE", parallel_degree=4, unique=True,
        )

        assert '("SALE_ID", "SALE_DATE")\n  LOCAL' in sql

    def test_existing_parallel_and_terminator(self):
        ddl = INDEX_DDL + " PARALLEL 8;\n"

        sql = rewrite_index_ddl(
            ddl, "SALES_REGION_IX", "SALES", "SALES_PART",
            partition_key="SALE_DATE", parallel_degree=4, unique=False,
        )

        assert sql.endswith("PARALLEL 8")
        assert sql.count("PARALLEL") == 1


class TestRewriteConstraintDDL:
    """Tests for rewrite_constraint_ddl."""

    def test_constraint_moves_to_new_table(self):
        ddl = 'ALTER TABLE "DWH"."SALES" ADD CONSTRAINT "SALES_PK" PRIMARY KEY ("SALE_ID") ENABLE;'

        sql = rewrite_constraint_ddl(ddl, "SALES_PK", "SALES", "SALES_PART")

        assert sql == (
            'ALTER TABLE "DWH"."SALES_PART" ADD CONSTRAINT "SALES_PK_MIGR" '
            'PRIMARY KEY ("SALE_ID") ENABLE'
        )

    def test_referenced_table_is_not_rewritten(self):
        """Only the first table reference is the constrained table."""
        ddl = (
            'ALTER TABLE "DWH"."SALES" ADD CONSTRAINT "SALES_FK" FOREIGN KEY ("PARENT_ID") '
            'REFERENCES "DWH"."SALES" ("SALE_ID") ENABLE'
        )

        sql = rewrite_constraint_ddl(ddl, "SALES_FK", "SALES", "SALES_PART")

        assert 'REFERENCES "DWH"."SALES" ("SALE_ID")' in sql


class TestRecreate:
    """Tests for recreate_indexes and recreate_constraints."""

    @pytest.mark.asyncio
    async def test_indexes_skip_primary_key(self, reconstructor, make_context, connection):
        ctx = make_context()
        objects = await reconstructor.capture(ctx, "DWH", "SALES")
        created = ReconstructionResult()

        await reconstructor.recreate_indexes(ctx, objects, "SALES", "SALES_PART", created, "SALE_DATE")

        assert created.indexes == [
            CreatedObject("INDEX", "SALES_REGION_IX_MIGR", "SALES_REGION_IX")
        ]
        assert len(connection.statements) == 1
        assert connection.statements[0].startswith('CREATE INDEX "DWH"."SALES_REGION_IX_MIGR"')

    @pytest.mark.asyncio
    async def test_index_on_converted_column_is_skipped(
        self, reconstructor, make_context, analysis, connection
    ):
        converting = replace(analysis, date_column_name="REGION", requires_conversion=True)
        ctx = make_context(analysis=converting)
        objects = await reconstructor.capture(ctx, "DWH", "SALES")
        created = ReconstructionResult()

        await reconstructor.recreate_indexes(ctx, objects, "SALES", "SALES_PART", created, None)

        assert created.indexes == []
        assert connection.statements == []
        assert "converted column REGION" in created.warnings[0]

    @pytest.mark.asyncio
    async def test_constraints_in_dependency_order(self, reconstructor, make_context, connection):
        """Primary key first, then unique and check; NOT NULL checks are skipped."""
        ctx = make_context()
        objects = await reconstructor.capture(ctx, "DWH", "SALES")
        created = ReconstructionResult()

        await reconstructor.recreate_constraints(ctx, objects, "SALES", "SALES_PART", created)

        assert [c.temp_name for c in created.constraints] == ["SALES_PK_MIGR", "SALES_AMOUNT_CK_MIGR"]
        assert 'CONSTRAINT "SALES_PK_MIGR" PRIMARY KEY' in connection.statements[0]
        assert 'CONSTRAINT "SALES_AMOUNT_CK_MIGR" CHECK' in connection.statements[1]
        assert created.indexes == [CreatedObject("INDEX", "SALES_PK_MIGR", "SALES_PK")]

    @pytest.mark.asyncio
    async def test_foreign_key_failure_is_a_warning(
        self, reconstructor, make_context, catalog, connection, execution_log
    ):
        catalog.constraints["SALES"].append(ConstraintInfo("SALES_CUST_FK", "R"))
        catalog.ddl[("REF_CONSTRAINT", "SALES_CUST_FK")] = (
            'ALTER TABLE "DWH"."SALES" ADD CONSTRAINT "SALES_CUST_FK" FOREIGN KEY ("CUST_ID") '
            'REFERENCES "DWH"."CUSTOMERS" ("CUST_ID") ENABLE'
        )
        connection.fail_on("SALES_CUST_FK_MIGR", 2298, "parent keys not found")
        ctx = make_context()
        objects = await reconstructor.capture(ctx, "DWH", "SALES")
        created = ReconstructionResult()

        await reconstructor.recreate_constraints(ctx, objects, "SALES", "SALES_PART", created)

        assert len(created.constraints) == 2
        assert "SALES_CUST_FK" in created.warnings[0]
        warning = [s for s in execution_log.steps if s.step_name == "ADD_FOREIGN_KEY"]
        assert warning[0].status == StepStatus.WARNING

    @pytest.mark.asyncio
    async def test_check_constraint_failure_raises(self, reconstructor, make_context, connection):
        connection.fail_on("SALES_AMOUNT_CK_MIGR", 2293, "cannot validate")
        ctx = make_context()
        objects = await reconstructor.capture(ctx, "DWH", "SALES")

        with pytest.raises(StepExecutionError) as exc_info:
            await reconstructor.recreate_constraints(
                ctx, objects, "SALES", "SALES_PART", ReconstructionResult()
            )

        assert exc_info.value.ora_code == 2293


class TestRenameAfterCutover:
    """Tests for the two-phase rename."""

    @pytest.fixture
    def created(self):
        return ReconstructionResult(
            indexes=[
                CreatedObject("INDEX", "SALES_REGION_IX_MIGR", "SALES_REGION_IX"),
                CreatedObject("INDEX", "SALES_PK_MIGR", "SALES_PK"),
            ],
            constraints=[
                CreatedObject("P", "SALES_PK_MIGR", "SALES_PK"),
                CreatedObject("C", "SALES_AMOUNT_CK_MIGR", "SALES_AMOUNT_CK"),
            ],
        )

    @pytest.mark.asyncio
    async def test_old_names_freed_before_new_names_claimed(
        self, reconstructor, make_context, connection, created
    ):
        ctx = make_context()
        objects = await reconstructor.capture(ctx, "DWH", "SALES")

        await reconstructor.rename_after_cutover(ctx, objects, "SALES_OLD", "SALES", created)

        statements = connection.statements
        phase_one = [i for i, s in enumerate(statements) if s.endswith("_OLD")]
        phase_two = [i for i, s in enumerate(statements) if not s.endswith("_OLD")]
        assert len(phase_one) == 4
        assert len(phase_two) == 4
        assert max(phase_one) < min(phase_two)
        assert statements[phase_one[0]] == "ALTER INDEX DWH.SALES_PK RENAME TO SALES_PK_OLD"
        assert (
            "ALTER TABLE DWH.SALES_OLD RENAME CONSTRAINT SALES_AMOUNT_CK TO SALES_AMOUNT_CK_OLD"
            in statements
        )
        assert "ALTER INDEX DWH.SALES_REGION_IX_MIGR RENAME TO SALES_REGION_IX" in statements
        assert "ALTER TABLE DWH.SALES RENAME CONSTRAINT SALES_PK_MIGR TO SALES_PK" in statements

    @pytest.mark.asyncio
    async def test_rename_failure_is_a_warning(
        self, reconstructor, make_context, connection, execution_log, created
    ):
        connection.fail_on("RENAME TO SALES_REGION_IX_OLD", 1418)
        ctx = make_context()
        objects = await reconstructor.capture(ctx, "DWH", "SALES")

        await reconstructor.rename_after_cutover(ctx, objects, "SALES_OLD", "SALES", created)

        assert len(connection.statements) == 7
        warnings = [s for s in execution_log.steps if s.status == StepStatus.WARNING]
        assert warnings[0].step_name == "RENAME_OLD_INDEX"


class TestCleanup:
    """Tests for stale object and table cleanup."""

    @pytest.mark.asyncio
    async def test_cleanup_stale_drops_migr_indexes(
        self, reconstructor, make_context, catalog, connection
    ):
        catalog.stale_indexes["SALES_PART"] = ["SALES_REGION_IX_MIGR", "SALES_OTHER_IX"]

        dropped = await reconstructor.cleanup_stale(make_context(), "DWH", "SALES_PART")

        assert dropped == 1
        assert connection.statements == ["DROP INDEX DWH.SALES_REGION_IX_MIGR"]

    @pytest.mark.asyncio
    async def test_drop_created_keeps_constraint_indexes(
        self, reconstructor, make_context, connection
    ):
        created = ReconstructionResult(
            indexes=[
                CreatedObject("INDEX", "SALES_REGION_IX_MIGR", "SALES_REGION_IX"),
                CreatedObject("INDEX", "SALES_PK_MIGR", "SALES_PK"),
            ],
            constraints=[CreatedObject("P", "SALES_PK_MIGR", "SALES_PK")],
        )

        await reconstructor.drop_created(make_context(), created, "SALES_PART")

        assert connection.statements == [
            "DROP INDEX DWH.SALES_REGION_IX_MIGR",
            "DROP TABLE DWH.SALES_PART PURGE",
        ]

    @pytest.mark.asyncio
    async def test_drop_missing_table_is_quiet(self, make_context, connection):
        connection.fail_on("DROP TABLE", 942, "table or view does not exist")

        dropped = await drop_table_quietly(make_context(), "DWH", "SALES_PART")

        assert dropped is False

    @pytest.mark.asyncio
    async def test_drop_under_simulate_is_planned(self, make_context, connection):
        ctx = make_context(simulate=True)

        assert await drop_table_quietly(ctx, "DWH", "SALES_PART") is True
        assert connection.statements == []
        assert ctx.statements == ["DROP TABLE DWH.SALES_PART PURGE"]
