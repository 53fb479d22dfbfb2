"""
Unit tests for ILM policy derivation and registration.

Tests cover:
- Tier transition policies derived from a tiered template
- Explicit template policies with the {TABLE} placeholder
- Threshold profiles and their ordering guard
- ILMPolicyApplier: registration, simulate, verification failure
"""

from unittest.mock import AsyncMock

import pytest

from partmigrate.exceptions import MigrationIntegrityError
from partmigrate.ilm import (
    ILMApplication,
    ILMPolicyApplier,
    derive_policies,
    derive_threshold_profile,
    tier_age_days,
)
from partmigrate.models import StepStatus, StepType
from partmigrate.templates import load_template


class TestDerivePolicies:
    """Tests for derive_policies."""

    def test_tier_transitions(self, tiered_template):
        warm, cold = derive_policies(tiered_template, "DWH", "SALES")

        assert warm.policy_name == "SALES_TIER_WARM"
        assert warm.policy_type == "TIERING"
        assert warm.action_type == "MOVE"
        assert warm.age_months == 12
        assert warm.target_tablespace == "TBS_WARM"
        assert warm.compression_type == "BASIC"
        assert warm.priority == 200

        assert cold.policy_name == "SALES_TIER_COLD"
        assert cold.age_months == 36
        assert cold.target_tablespace == "TBS_COLD"
        assert cold.compression_type == "OLTP"
        assert cold.priority == 300

    def test_explicit_policies_come_first(self):
        template = load_template(
            [{"policy_name": "{TABLE}_COMPRESS", "action": "COMPRESS", "age_days": 90}]
        )

        policies = derive_policies(template, "DWH", "ORDERS")

        assert [p.policy_name for p in policies] == ["ORDERS_COMPRESS"]
        assert policies[0].table_owner == "DWH"
        assert policies[0].policy_type == "COMPRESSION"


class TestThresholdProfile:
    """Tests for derive_threshold_profile."""

    def test_ages_in_days(self, tiered_template):
        profile = derive_threshold_profile(tiered_template, "SALES")

        assert profile is not None
        assert profile.profile_name == "SALES_TIERS"
        assert (
            profile.hot_threshold_days,
            profile.warm_threshold_days,
            profile.cold_threshold_days,
        ) == (360, 1080, 2520)

    def test_untiered_template_has_no_profile(self):
        assert derive_threshold_profile(load_template([]), "SALES") is None

    def test_unordered_ages_give_no_profile(self, caplog):
        template = load_template(
            {
                "tier_config": {
                    "hot": {"age_days": 400, "interval": "MONTHLY", "tablespace": "A",
                            "compression": "NONE"},
                    "warm": {"age_months": 12, "interval": "YEARLY", "tablespace": "B",
                             "compression": "NONE"},
                    "cold": {"age_months": 84, "interval": "YEARLY", "tablespace": "C",
                             "compression": "NONE"},
                }
            }
        )

        assert derive_threshold_profile(template, "SALES") is None
        assert "No threshold profile for SALES" in caplog.text

    def test_months_count_as_thirty_days(self, tiered_template):
        assert tier_age_days(tiered_template.tiers.hot) == 360


class TestILMPolicyApplier:
    """Tests for ILMPolicyApplier.apply."""

    @pytest.mark.asyncio
    async def test_registers_policies_and_profile(
        self, make_context, ilm_repo, execution_log, tiered_template
    ):
        ctx = make_context(template=tiered_template)

        result = await ILMPolicyApplier(ilm_repo).apply(ctx, "DWH", "SALES")

        assert len(result.policies) == 2
        assert set(ilm_repo.policies) == {"SALES_TIER_WARM", "SALES_TIER_COLD"}
        assert "SALES_TIERS" in ilm_repo.profiles
        steps = {s.step_name: s for s in execution_log.steps}
        assert steps["ILM_POLICY_SALES_TIER_WARM"].step_type == StepType.ILM
        assert steps["ILM_POLICY_SALES_TIER_WARM"].status == StepStatus.SUCCESS
        assert steps["ILM_THRESHOLD_PROFILE"].status == StepStatus.SUCCESS
        assert "VALIDATE_ILM_POLICIES" in steps

    @pytest.mark.asyncio
    async def test_simulate_registers_nothing(
        self, make_context, ilm_repo, execution_log, tiered_template
    ):
        ctx = make_context(template=tiered_template, simulate=True)

        result = await ILMPolicyApplier(ilm_repo).apply(ctx, "DWH", "SALES")

        assert len(result.policies) == 2
        assert ilm_repo.policies == {}
        assert ilm_repo.profiles == {}
        assert {s.status for s in execution_log.steps} == {StepStatus.SKIPPED}

    @pytest.mark.asyncio
    async def test_no_template(self, make_context, ilm_repo):
        result = await ILMPolicyApplier(ilm_repo).apply(make_context(), "DWH", "SALES")

        assert result == ILMApplication()

    @pytest.mark.asyncio
    async def test_missing_registrations_raise(self, make_context, tiered_template):
        repository = AsyncMock()
        repository.count_policies.return_value = 1
        ctx = make_context(template=tiered_template)

        with pytest.raises(MigrationIntegrityError, match="Only 1 of 2 ILM policies"):
            await ILMPolicyApplier(repository).apply(ctx, "DWH", "SALES")

        assert repository.save_policy.await_count == 2
