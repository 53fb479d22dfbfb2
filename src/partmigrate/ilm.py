"""
ILM policy derivation and registration.

After a successful migration the task's template is turned into lifecycle
policies for the migrated table and registered with the policy engine:

- every explicit policy of the template, with ``{TABLE}`` in its name
  replaced by the table name;
- for tiered templates, one TIERING policy per tier transition: rows older
  than the HOT age move to the WARM tablespace, rows older than the WARM age
  move to the COLD tablespace;
- for tiered templates, a threshold profile ``<TABLE>_TIERS`` holding the
  three ages in days.

Registration is verified by counting the enabled policies afterwards.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from partmigrate.catalog import suffixed
from partmigrate.context import ExecutionContext
from partmigrate.exceptions import MigrationIntegrityError
from partmigrate.models import ILMPolicy, StepStatus, StepType, ThresholdProfile, Tier
from partmigrate.repositories.ilm import ILMRepository
from partmigrate.templates import TemplateDocument, TierSpec

logger = logging.getLogger(__name__)

DAYS_PER_MONTH = 30
WARM_POLICY_PRIORITY = 200
COLD_POLICY_PRIORITY = 300


def tier_age_days(spec: TierSpec) -> int | None:
    """Age of a tier in days; months count as 30 days."""
    if spec.age_days is not None:
        return spec.age_days
    if spec.age_months is not None:
        return spec.age_months * DAYS_PER_MONTH
    return None


def _tier_transition(
    owner: str,
    table: str,
    name: str,
    after: TierSpec,
    into: TierSpec,
    priority: int,
) -> ILMPolicy:
    return ILMPolicy(
        policy_name=suffixed(table, name),
        table_owner=owner,
        table_name=table,
        policy_type="TIERING",
        action_type="MOVE",
        age_days=after.age_days,
        age_months=after.age_months,
        target_tablespace=into.tablespace,
        compression_type=into.compression,
        priority=priority,
    )


def derive_policies(template: TemplateDocument, owner: str, table: str) -> list[ILMPolicy]:
    """
    Lifecycle policies the template defines for ``owner.table``.

    Example:
        >>> [p.policy_name for p in derive_policies(tiered, "DWH", "SALES")]
        ['SALES_TIER_WARM', 'SALES_TIER_COLD']
    """
    policies = [
        ILMPolicy(
            policy_name=spec.policy_name_for(table),
            table_owner=owner,
            table_name=table,
            policy_type=spec.resolved_policy_type,
            action_type=spec.action_type,
            age_days=spec.age_days,
            age_months=spec.age_months,
            target_tablespace=spec.target_tablespace,
            compression_type=spec.compression_type,
            priority=spec.priority,
            enabled=spec.enabled,
        )
        for spec in template.policies
    ]

    if template.is_tiered and template.tiers is not None:
        hot = template.tiers.tier(Tier.HOT)
        warm = template.tiers.tier(Tier.WARM)
        cold = template.tiers.tier(Tier.COLD)
        policies.append(
            _tier_transition(owner, table, "_TIER_WARM", hot, warm, WARM_POLICY_PRIORITY)
        )
        policies.append(
            _tier_transition(owner, table, "_TIER_COLD", warm, cold, COLD_POLICY_PRIORITY)
        )
    return policies


def derive_threshold_profile(template: TemplateDocument, table: str) -> ThresholdProfile | None:
    """
    Threshold profile of a tiered template, or None.

    Returns None for untiered templates and logs a warning when the tier ages
    are not strictly increasing.
    """
    if not template.is_tiered or template.tiers is None:
        return None
    ages = [tier_age_days(template.tiers.tier(tier)) for tier in (Tier.HOT, Tier.WARM, Tier.COLD)]
    if any(age is None for age in ages):
        return None
    hot, warm, cold = ages
    try:
        return ThresholdProfile(
            profile_name=suffixed(table, "_TIERS"),
            hot_threshold_days=hot,  # type: ignore[arg-type]
            warm_threshold_days=warm,  # type: ignore[arg-type]
            cold_threshold_days=cold,  # type: ignore[arg-type]
            description=f"Tier thresholds of {table} from template {template.name}",
        )
    except ValueError as e:
        logger.warning("No threshold profile for %s: %s", table, e)
        return None


@dataclass
class ILMApplication:
    """What the applier registered for one table."""

    policies: list[ILMPolicy] = field(default_factory=list)
    profile: ThresholdProfile | None = None


class ILMPolicyApplier:
    """
    Registers a template's policies for a migrated table.

    Example:
        >>> applier = ILMPolicyApplier(OracleILMRepository(engine))
        >>> result = await applier.apply(ctx, "DWH", "SALES")
    """

    def __init__(self, repository: ILMRepository) -> None:
        self._repository = repository

    async def apply(self, ctx: ExecutionContext, owner: str, table: str) -> ILMApplication:
        """
        Register policies and the threshold profile for ``owner.table``.

        Raises:
            MigrationIntegrityError: If fewer policies are registered than derived
        """
        if ctx.template is None:
            return ILMApplication()

        result = ILMApplication(
            policies=derive_policies(ctx.template, owner, table),
            profile=derive_threshold_profile(ctx.template, table),
        )

        for policy in result.policies:
            status = StepStatus.SKIPPED
            if not ctx.simulate:
                await self._repository.save_policy(policy)
                status = StepStatus.SUCCESS
            await ctx.log_step(
                f"ILM_POLICY_{policy.policy_name}",
                StepType.ILM,
                status,
                sql=f"{policy.policy_type} {policy.action_type} -> {policy.target_tablespace}",
            )

        if result.profile is not None:
            status = StepStatus.SKIPPED
            if not ctx.simulate:
                await self._repository.save_threshold_profile(result.profile)
                status = StepStatus.SUCCESS
            await ctx.log_step(
                "ILM_THRESHOLD_PROFILE",
                StepType.ILM,
                status,
                sql=(
                    f"{result.profile.profile_name}: hot={result.profile.hot_threshold_days} "
                    f"warm={result.profile.warm_threshold_days} "
                    f"cold={result.profile.cold_threshold_days}"
                ),
            )

        if not ctx.simulate and result.policies:
            enabled = sum(1 for p in result.policies if p.enabled)
            registered = await self._repository.count_policies(owner, table)
            if registered < enabled:
                raise MigrationIntegrityError(
                    f"Only {registered} of {enabled} ILM policies registered for {owner}.{table}",
                    task_id=ctx.task.id,
                )
            await ctx.log_info(
                "VALIDATE_ILM_POLICIES", f"{registered} ILM policies active on {owner}.{table}"
            )

        logger.info(
            "Applied %d ILM policies to %s.%s%s",
            len(result.policies),
            owner,
            table,
            " (simulated)" if ctx.simulate else "",
        )
        return result


__all__ = [
    "DAYS_PER_MONTH",
    "tier_age_days",
    "derive_policies",
    "derive_threshold_profile",
    "ILMApplication",
    "ILMPolicyApplier",
]
