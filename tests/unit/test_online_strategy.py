"""
Unit tests for the online reorganization strategy.

Tests cover:
- Eligibility: conversion, row threshold, privilege errors, rowid mode
- The DBMS_REDEFINITION call sequence
- Abort and interim cleanup on failure
- Restoring the original name when the original is kept
"""

from dataclasses import replace

import pytest

from partmigrate.config import MigratorConfig
from partmigrate.exceptions import InsufficientPrivilegeError, StepExecutionError
from partmigrate.strategies import Eligibility, OnlineRedefinitionStrategy


@pytest.fixture
def strategy():
    return OnlineRedefinitionStrategy()


class TestEligibility:
    """Tests for OnlineRedefinitionStrategy.eligibility."""

    @pytest.mark.asyncio
    async def test_primary_key_mode(self, strategy, make_context, connection):
        eligibility = await strategy.eligibility(make_context())

        assert eligibility.eligible
        assert eligibility.redef_option == 1
        assert "CAN_REDEF_TABLE" in connection.statements[0]

    @pytest.mark.asyncio
    async def test_check_runs_under_simulate(self, strategy, make_context, connection):
        ctx = make_context(simulate=True)

        eligibility = await strategy.eligibility(ctx)

        assert eligibility.eligible
        assert len(connection.attempted) == 1
        assert ctx.statements == []

    @pytest.mark.asyncio
    async def test_conversion_is_ineligible(self, strategy, make_context, analysis, connection):
        ctx = make_context(analysis=replace(analysis, requires_conversion=True))

        eligibility = await strategy.eligibility(ctx)

        assert not eligibility.eligible
        assert "conversion" in eligibility.reason
        assert connection.attempted == []

    @pytest.mark.asyncio
    async def test_small_table_is_ineligible(self, strategy, make_context):
        ctx = make_context(config=MigratorConfig(online_min_rows=10_000))

        eligibility = await strategy.eligibility(ctx)

        assert not eligibility.eligible
        assert "1000 rows is below the online threshold of 10000" == eligibility.reason

    @pytest.mark.asyncio
    async def test_privilege_error_raises(self, strategy, make_context, connection):
        connection.fail_on("CAN_REDEF_TABLE", 1031, "insufficient privileges")

        with pytest.raises(InsufficientPrivilegeError) as exc_info:
            await strategy.eligibility(make_context())

        error = exc_info.value
        assert error.ora_code == 1031
        assert error.task_id == 1
        assert "ORA-01031" in str(error)
        assert error.classification.recoverability.triggers_fallback
        assert len(connection.attempted) == 1

    @pytest.mark.asyncio
    async def test_codes_outside_fallback_list_try_rowid(
        self, strategy, make_context, connection
    ):
        connection.fail_on("options_flag => 1", 1031, "insufficient privileges")
        ctx = make_context(config=MigratorConfig(fallback_error_codes=()))

        eligibility = await strategy.eligibility(ctx)

        assert eligibility.eligible
        assert eligibility.redef_option == 2

    @pytest.mark.asyncio
    async def test_rowid_mode_when_primary_key_rejected(self, strategy, make_context, connection):
        connection.fail_on("options_flag => 1", 12089, "cannot online redefine table with no primary key")

        eligibility = await strategy.eligibility(make_context())

        assert eligibility.eligible
        assert eligibility.redef_option == 2

    @pytest.mark.asyncio
    async def test_both_modes_rejected(self, strategy, make_context, connection):
        connection.fail_on("CAN_REDEF_TABLE", 12090, "cannot online redefine table")

        eligibility = await strategy.eligibility(make_context())

        assert not eligibility.eligible
        assert eligibility.reason.startswith("table cannot be reorganized online")
        assert len(connection.attempted) == 2


class TestExecute:
    """Tests for OnlineRedefinitionStrategy.execute."""

    @pytest.mark.asyncio
    async def test_call_sequence(self, strategy, make_context, connection):
        outcome = await strategy.execute(make_context(), Eligibility.ok(redef_option=1))

        statements = connection.statements
        assert statements[0].startswith("CREATE TABLE DWH.SALES_REDEF")
        assert "START_REDEF_TABLE" in statements[1]
        assert "options_flag => 1" in statements[1]
        assert "COPY_TABLE_DEPENDENTS" in statements[2]
        assert "SYNC_INTERIM_TABLE" in statements[3]
        assert "GATHER_TABLE_STATS" in statements[4]
        assert "FINISH_REDEF_TABLE" in statements[5]
        assert outcome.migrated_table == "SALES"
        assert outcome.reference_table == "SALES_REDEF"
        assert outcome.backup_table == "SALES_REDEF"
        assert outcome.can_rollback is True

    @pytest.mark.asyncio
    async def test_finish_failure_aborts_and_drops_interim(
        self, strategy, make_context, connection
    ):
        connection.fail_on("FINISH_REDEF_TABLE", 42012, "error occurred while finishing")

        with pytest.raises(StepExecutionError) as exc_info:
            await strategy.execute(make_context(), Eligibility.ok(redef_option=1))

        assert exc_info.value.ora_code == 42012
        assert "ABORT_REDEF_TABLE" in connection.statements[-2]
        assert connection.statements[-1] == "DROP TABLE DWH.SALES_REDEF PURGE"

    @pytest.mark.asyncio
    async def test_create_failure_does_not_abort(self, strategy, make_context, connection):
        connection.fail_on("CREATE TABLE", 1950, "no privileges on tablespace")

        with pytest.raises(StepExecutionError):
            await strategy.execute(make_context(), Eligibility.ok(redef_option=1))

        assert not connection.executed("ABORT_REDEF_TABLE")

    @pytest.mark.asyncio
    async def test_keep_original_restores_name(self, strategy, make_context, task, connection):
        ctx = make_context(task=replace(task, keep_original=True))

        outcome = await strategy.execute(ctx, Eligibility.ok(redef_option=1))

        assert connection.statements[-2:] == [
            "ALTER TABLE DWH.SALES RENAME TO SALES_MIGR",
            "ALTER TABLE DWH.SALES_REDEF RENAME TO SALES",
        ]
        assert outcome.migrated_table == "SALES_MIGR"
        assert outcome.reference_table == "SALES"
        assert outcome.can_rollback is False
