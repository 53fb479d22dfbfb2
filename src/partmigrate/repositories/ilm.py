"""
ILM repository: migration templates, lifecycle policies and threshold profiles.

Templates are read from ``dwh_migration_ilm_templates.policies_json`` and
parsed with ``load_template``. Policies and profiles are written to the
policy engine's ``dwh_ilm_policies`` and ``dwh_ilm_threshold_profiles``
tables; both writes are upserts keyed by name so a re-run migration does
not duplicate them.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol, runtime_checkable

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from partmigrate.models import ILMPolicy, ThresholdProfile
from partmigrate.observability import ATTR_TABLE, Tracer, create_tracer
from partmigrate.repositories._connection import execute_with_connection
from partmigrate.templates import TemplateDocument, load_template

logger = logging.getLogger(__name__)


@runtime_checkable
class ILMRepository(Protocol):
    """Protocol for ILM template and policy persistence."""

    async def get_template(self, name: str) -> TemplateDocument | None:
        """
        Load and validate a template by name.

        Raises:
            TemplateValidationError: If the stored document is invalid
        """
        ...

    async def save_policy(self, policy: ILMPolicy) -> None:
        ...

    async def save_threshold_profile(self, profile: ThresholdProfile) -> None:
        ...

    async def count_policies(self, owner: str, table: str) -> int:
        """Number of enabled policies registered for a table."""
        ...


class OracleILMRepository:
    """Oracle implementation of the ILM repository."""

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self.conn = conn

    async def get_template(self, name: str) -> TemplateDocument | None:
        query = text(
            "SELECT policies_json FROM dwh_migration_ilm_templates WHERE template_name = :name"
        )
        async with execute_with_connection(self.conn, transactional=False) as conn:
            result = await conn.execute(query, {"name": name})
            value = result.scalar()
            # LOB locators are only readable while the connection is open
            document = value.read() if hasattr(value, "read") else value
        if document is None:
            return None
        return load_template(str(document), name=name)

    async def save_policy(self, policy: ILMPolicy) -> None:
        with self._tracer.span(
            "partmigrate.ilm.save_policy",
            {ATTR_TABLE: f"{policy.table_owner}.{policy.table_name}"},
        ):
            query = text("""
                MERGE INTO dwh_ilm_policies p
                USING (SELECT :policy_name AS policy_name FROM dual) s
                ON (p.policy_name = s.policy_name)
                WHEN MATCHED THEN UPDATE SET
                    table_owner = :table_owner, table_name = :table_name,
                    policy_type = :policy_type, action_type = :action_type,
                    age_days = :age_days, age_months = :age_months,
                    target_tablespace = :target_tablespace,
                    compression_type = :compression_type,
                    priority = :priority, enabled = :enabled,
                    modified_date = SYSTIMESTAMP
                WHEN NOT MATCHED THEN INSERT (
                    policy_name, table_owner, table_name, policy_type, action_type,
                    age_days, age_months, target_tablespace, compression_type,
                    priority, enabled
                ) VALUES (
                    :policy_name, :table_owner, :table_name, :policy_type, :action_type,
                    :age_days, :age_months, :target_tablespace, :compression_type,
                    :priority, :enabled
                )
            """)
            params = {
                "policy_name": policy.policy_name,
                "table_owner": policy.table_owner,
                "table_name": policy.table_name,
                "policy_type": policy.policy_type,
                "action_type": policy.action_type,
                "age_days": policy.age_days,
                "age_months": policy.age_months,
                "target_tablespace": policy.target_tablespace,
                "compression_type": policy.compression_type,
                "priority": policy.priority,
                "enabled": "Y" if policy.enabled else "N",
            }
            async with execute_with_connection(self.conn, transactional=True) as conn:
                await conn.execute(query, params)

    async def save_threshold_profile(self, profile: ThresholdProfile) -> None:
        query = text("""
            MERGE INTO dwh_ilm_threshold_profiles p
            USING (SELECT :profile_name AS profile_name FROM dual) s
            ON (p.profile_name = s.profile_name)
            WHEN MATCHED THEN UPDATE SET
                hot_threshold_days = :hot, warm_threshold_days = :warm,
                cold_threshold_days = :cold, description = :description,
                modified_date = SYSTIMESTAMP
            WHEN NOT MATCHED THEN INSERT (
                profile_name, hot_threshold_days, warm_threshold_days,
                cold_threshold_days, description
            ) VALUES (:profile_name, :hot, :warm, :cold, :description)
        """)
        params = {
            "profile_name": profile.profile_name,
            "hot": profile.hot_threshold_days,
            "warm": profile.warm_threshold_days,
            "cold": profile.cold_threshold_days,
            "description": profile.description,
        }
        async with execute_with_connection(self.conn, transactional=True) as conn:
            await conn.execute(query, params)

    async def count_policies(self, owner: str, table: str) -> int:
        query = text("""
            SELECT COUNT(*) FROM dwh_ilm_policies
            WHERE table_owner = :owner AND table_name = :table_name AND enabled = 'Y'
        """)
        async with execute_with_connection(self.conn, transactional=False) as conn:
            result = await conn.execute(query, {"owner": owner, "table_name": table})
            return int(result.scalar() or 0)


class InMemoryILMRepository:
    """
    In-memory ILM repository for testing.

    Example:
        >>> repo = InMemoryILMRepository()
        >>> repo.add_template("FACT_TIERED", {"tier_config": {...}})
    """

    def __init__(
        self,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._templates: dict[str, object] = {}
        self.policies: dict[str, ILMPolicy] = {}
        self.profiles: dict[str, ThresholdProfile] = {}
        self._lock: asyncio.Lock = asyncio.Lock()

    def add_template(self, name: str, document: object) -> None:
        """Register a raw template document (JSON text, object or policy list)."""
        self._templates[name] = document

    async def get_template(self, name: str) -> TemplateDocument | None:
        async with self._lock:
            document = self._templates.get(name)
        if document is None:
            return None
        return load_template(document, name=name)  # type: ignore[arg-type]

    async def save_policy(self, policy: ILMPolicy) -> None:
        async with self._lock:
            self.policies[policy.policy_name] = policy

    async def save_threshold_profile(self, profile: ThresholdProfile) -> None:
        async with self._lock:
            self.profiles[profile.profile_name] = profile

    async def count_policies(self, owner: str, table: str) -> int:
        async with self._lock:
            return sum(
                1
                for p in self.policies.values()
                if p.table_owner == owner and p.table_name == table and p.enabled
            )


__all__ = [
    "ILMRepository",
    "OracleILMRepository",
    "InMemoryILMRepository",
]
