"""
Unit tests for typed ILM templates.

Tests cover:
- Parsing tiered templates from objects and JSON text
- Aggregation of every structural problem into one error
- Field level validation of intervals and compression types
- Bare policy lists, short policy keys and the {TABLE} placeholder
- Disabled tier layouts
"""

import json

import pytest

from partmigrate.exceptions import TemplateValidationError
from partmigrate.intervals import IntervalGranularity
from partmigrate.models import Tier
from partmigrate.templates import load_template, require_tiers


def tier(**overrides):
    spec = {"age_months": 12, "interval": "MONTHLY", "tablespace": "TBS", "compression": "NONE"}
    spec.update(overrides)
    return {key: value for key, value in spec.items() if value is not None}


def tiered(hot=None, warm=None, cold=None, **extra):
    config = {
        "enabled": True,
        "hot": hot if hot is not None else tier(),
        "warm": warm if warm is not None else tier(age_months=36, interval="YEARLY"),
        "cold": cold if cold is not None else tier(age_months=84, interval="YEARLY"),
    }
    config.update(extra)
    return {"tier_config": config}


class TestTieredTemplate:
    """Tests for valid tiered templates."""

    def test_fields_are_typed(self, tiered_template):
        assert tiered_template.name == "FACT_TIERED"
        assert tiered_template.is_tiered
        assert tiered_template.tiers.hot.interval is IntervalGranularity.MONTHLY
        assert tiered_template.tiers.tier(Tier.WARM).compression == "BASIC"
        assert tiered_template.tiers.cold.tablespace == "TBS_COLD"
        assert tiered_template.tiers.cold.pctfree == 0

    def test_json_text(self):
        template = load_template(json.dumps(tiered()))

        assert template.is_tiered
        assert template.tiers.hot.pctfree == 10

    def test_values_are_normalized(self):
        template = load_template(
            tiered(hot=tier(interval="monthly", tablespace=" tbs_hot ", compression="query  high"))
        )

        assert template.tiers.hot.interval is IntervalGranularity.MONTHLY
        assert template.tiers.hot.tablespace == "TBS_HOT"
        assert template.tiers.hot.compression == "QUERY HIGH"

    def test_disabled_layout_is_not_tiered(self):
        template = load_template(tiered(enabled=False))

        assert not template.is_tiered
        assert template.tiers is None


class TestValidationErrors:
    """Every problem is reported in one TemplateValidationError."""

    def test_errors_are_aggregated(self):
        document = {
            "tier_config": {
                "hot": tier(),
                "warm": tier(tablespace=None),
            }
        }

        with pytest.raises(TemplateValidationError) as exc_info:
            load_template(document, name="BROKEN")

        errors = exc_info.value.errors
        assert "warm.tablespace is required" in errors
        assert "cold tier is required" in errors
        assert "Invalid tier template BROKEN" in str(exc_info.value)

    def test_missing_age(self):
        with pytest.raises(TemplateValidationError) as exc_info:
            load_template(tiered(hot=tier(age_months=None)))

        assert exc_info.value.errors == ["hot.age_days or hot.age_months is required"]

    def test_days_and_months_are_exclusive(self):
        with pytest.raises(TemplateValidationError) as exc_info:
            load_template(tiered(hot=tier(age_days=30)))

        assert "hot.age_days and hot.age_months are mutually exclusive" in exc_info.value.errors

    def test_unknown_compression(self):
        with pytest.raises(TemplateValidationError) as exc_info:
            load_template(tiered(cold=tier(age_months=84, compression="SUPER")))

        assert any(
            "cold.compression" in e and "unknown compression type" in e
            for e in exc_info.value.errors
        )

    def test_unknown_interval(self):
        with pytest.raises(TemplateValidationError) as exc_info:
            load_template(tiered(hot=tier(interval="HOURLY")))

        assert any("hot.interval" in e for e in exc_info.value.errors)

    def test_invalid_json(self):
        with pytest.raises(TemplateValidationError) as exc_info:
            load_template("{not json")

        assert exc_info.value.errors[0].startswith("invalid JSON")

    def test_scalar_document(self):
        with pytest.raises(TemplateValidationError):
            load_template(json.dumps(42))

    def test_require_tiers_without_layout(self):
        with pytest.raises(TemplateValidationError, match="tier_config is required"):
            require_tiers(load_template([]))


class TestPolicies:
    """Tests for explicit policies."""

    def test_bare_policy_list(self):
        template = load_template(
            [
                {
                    "policy_name": "{TABLE}_COMPRESS_90D",
                    "action": "compress",
                    "age_days": 90,
                    "compression": "QUERY HIGH",
                },
                {"policy_name": "{TABLE}_PURGE", "action_type": "DROP", "age_months": 120},
            ]
        )

        assert not template.is_tiered
        compress, purge = template.policies
        assert compress.action_type == "COMPRESS"
        assert compress.resolved_policy_type == "COMPRESSION"
        assert compress.compression_type == "QUERY HIGH"
        assert compress.policy_name_for("SALES") == "SALES_COMPRESS_90D"
        assert purge.resolved_policy_type == "PURGE"

    def test_explicit_policy_type_wins(self):
        template = load_template(
            [{"policy_name": "P", "action": "MOVE", "policy_type": "CUSTOM", "tablespace": "T"}]
        )

        assert template.policies[0].resolved_policy_type == "CUSTOM"
        assert template.policies[0].target_tablespace == "T"

    def test_tiered_template_with_policies(self):
        document = tiered()
        document["policies"] = [{"policy_name": "{TABLE}_RO", "action": "READ_ONLY"}]

        template = load_template(document)

        assert template.is_tiered
        assert template.policies[0].resolved_policy_type == "ARCHIVAL"
