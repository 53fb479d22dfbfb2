"""
Typed ILM templates.

Templates are stored as JSON documents in ``dwh_migration_ilm_templates``.
A tiered template looks like::

    {
      "tier_config": {
        "enabled": true,
        "hot":  {"age_months": 12, "interval": "MONTHLY", "tablespace": "TBS_HOT",
                 "compression": "NONE", "pctfree": 10},
        "warm": {"age_months": 36, "interval": "YEARLY", "tablespace": "TBS_WARM",
                 "compression": "BASIC"},
        "cold": {"age_months": 84, "interval": "YEARLY", "tablespace": "TBS_COLD",
                 "compression": "OLTP"}
      },
      "policies": [...]
    }

A non-tiered template is a bare list of policies. Documents are parsed once
with ``load_template``; every structural problem is collected and reported
in a single TemplateValidationError before any DDL is generated.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from partmigrate.exceptions import TemplateValidationError
from partmigrate.intervals import IntervalGranularity
from partmigrate.models import Tier

logger = logging.getLogger(__name__)

COMPRESSION_TYPES = frozenset(
    {
        "NONE",
        "BASIC",
        "OLTP",
        "QUERY",
        "QUERY LOW",
        "QUERY HIGH",
        "ARCHIVE",
        "ARCHIVE LOW",
        "ARCHIVE HIGH",
    }
)

REQUIRED_TIER_FIELDS = ("interval", "tablespace", "compression")
DEFAULT_PCTFREE = 10


class TierSpec(BaseModel):
    """Storage and partitioning settings of one tier."""

    model_config = ConfigDict(frozen=True)

    interval: IntervalGranularity
    tablespace: str = Field(..., min_length=1)
    compression: str
    age_days: int | None = Field(default=None, ge=0)
    age_months: int | None = Field(default=None, ge=0)
    pctfree: int = Field(default=DEFAULT_PCTFREE, ge=0, le=99)

    @field_validator("interval", mode="before")
    @classmethod
    def _upper_interval(cls, value: Any) -> Any:
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator("compression", mode="before")
    @classmethod
    def _normalize_compression(cls, value: Any) -> Any:
        if value is None:
            return "NONE"
        normalized = " ".join(str(value).upper().split())
        if normalized not in COMPRESSION_TYPES:
            raise ValueError(f"unknown compression type {value!r}")
        return normalized

    @field_validator("tablespace", mode="before")
    @classmethod
    def _upper_tablespace(cls, value: Any) -> Any:
        return value.strip().upper() if isinstance(value, str) else value


POLICY_TYPE_BY_ACTION = {
    "COMPRESS": "COMPRESSION",
    "MOVE": "TIERING",
    "READ_ONLY": "ARCHIVAL",
    "DROP": "PURGE",
    "TRUNCATE": "PURGE",
}

TABLE_PLACEHOLDER = "{TABLE}"


class PolicySpec(BaseModel):
    """
    An explicit lifecycle policy carried by a template.

    Stored templates use the short keys ``action``, ``tablespace`` and
    ``compression``; both spellings are accepted. ``policy_name`` may contain
    ``{TABLE}``, replaced with the migrated table's name.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    policy_name: str
    action_type: str = Field(validation_alias=AliasChoices("action_type", "action"))
    policy_type: str | None = None
    age_days: int | None = Field(default=None, ge=0)
    age_months: int | None = Field(default=None, ge=0)
    target_tablespace: str | None = Field(
        default=None, validation_alias=AliasChoices("target_tablespace", "tablespace")
    )
    compression_type: str | None = Field(
        default=None, validation_alias=AliasChoices("compression_type", "compression")
    )
    priority: int = 100
    enabled: bool = True

    @field_validator("action_type", mode="before")
    @classmethod
    def _upper_action(cls, value: Any) -> Any:
        return value.strip().upper() if isinstance(value, str) else value

    @property
    def resolved_policy_type(self) -> str:
        return self.policy_type or POLICY_TYPE_BY_ACTION.get(self.action_type, "CUSTOM")

    def policy_name_for(self, table: str) -> str:
        return self.policy_name.replace(TABLE_PLACEHOLDER, table)


class TierTemplate(BaseModel):
    """
    Validated HOT/WARM/COLD layout.

    Example:
        >>> template = load_template(document, name="FACT_TABLE_STANDARD_TIERED")
        >>> template.tiers.hot.tablespace
        'TBS_HOT'
    """

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    hot: TierSpec
    warm: TierSpec
    cold: TierSpec

    def tier(self, tier: Tier) -> TierSpec:
        return {Tier.HOT: self.hot, Tier.WARM: self.warm, Tier.COLD: self.cold}[tier]


class TemplateDocument(BaseModel):
    """A parsed template: optional tier layout plus explicit policies."""

    model_config = ConfigDict(frozen=True)

    name: str | None = None
    tiers: TierTemplate | None = Field(default=None, alias="tier_config")
    policies: tuple[PolicySpec, ...] = ()

    @property
    def is_tiered(self) -> bool:
        return self.tiers is not None and self.tiers.enabled


def _collect_structural_errors(tier_config: Any) -> list[str]:
    if not isinstance(tier_config, dict):
        return ["tier_config must be an object"]
    errors: list[str] = []
    for tier in Tier:
        key = tier.value.lower()
        spec = tier_config.get(key)
        if spec is None:
            errors.append(f"{key} tier is required")
            continue
        if not isinstance(spec, dict):
            errors.append(f"{key} must be an object")
            continue
        for field_name in REQUIRED_TIER_FIELDS:
            if spec.get(field_name) in (None, ""):
                errors.append(f"{key}.{field_name} is required")
        if spec.get("age_days") is None and spec.get("age_months") is None:
            errors.append(f"{key}.age_days or {key}.age_months is required")
        if spec.get("age_days") is not None and spec.get("age_months") is not None:
            errors.append(f"{key}.age_days and {key}.age_months are mutually exclusive")
    return errors


def _format_pydantic_errors(exc: ValidationError) -> list[str]:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"] if part != "tier_config")
        messages.append(f"{location}: {error['msg']}")
    return messages


def load_template(
    document: str | dict[str, Any] | list[Any],
    *,
    name: str | None = None,
) -> TemplateDocument:
    """
    Parse and validate a template document.

    Args:
        document: JSON text, a decoded object, or a bare policy list
        name: Template name, used in error messages

    Returns:
        The validated TemplateDocument

    Raises:
        TemplateValidationError: With every problem found in the document
    """
    if isinstance(document, str):
        try:
            document = json.loads(document)
        except json.JSONDecodeError as e:
            raise TemplateValidationError([f"invalid JSON: {e.msg}"], template_name=name) from e

    if isinstance(document, list):
        document = {"policies": document}
    if not isinstance(document, dict):
        raise TemplateValidationError(["template must be an object or a list"], template_name=name)

    tier_config = document.get("tier_config")
    if isinstance(tier_config, dict) and tier_config.get("enabled") is False:
        # Disabled layouts behave like a plain policy template
        document = {key: value for key, value in document.items() if key != "tier_config"}
        tier_config = None

    errors: list[str] = []
    if tier_config is not None:
        errors.extend(_collect_structural_errors(tier_config))
    if errors:
        raise TemplateValidationError(errors, template_name=name)

    try:
        parsed = TemplateDocument.model_validate({**document, "name": name})
    except ValidationError as e:
        raise TemplateValidationError(_format_pydantic_errors(e), template_name=name) from e

    logger.debug(
        "Loaded template %s (tiered=%s, policies=%d)",
        name,
        parsed.is_tiered,
        len(parsed.policies),
    )
    return parsed


def require_tiers(template: TemplateDocument | TierTemplate | dict[str, Any]) -> TierTemplate:
    """
    Return the tier layout of ``template``, validating raw dictionaries.

    Raises:
        TemplateValidationError: If the template has no usable tier layout
    """
    if isinstance(template, TierTemplate):
        return template
    if isinstance(template, dict):
        template = load_template(template)
    if template.tiers is None:
        raise TemplateValidationError(["tier_config is required"], template_name=template.name)
    return template.tiers


__all__ = [
    "COMPRESSION_TYPES",
    "DEFAULT_PCTFREE",
    "TierSpec",
    "POLICY_TYPE_BY_ACTION",
    "PolicySpec",
    "TierTemplate",
    "TemplateDocument",
    "load_template",
    "require_tiers",
]
