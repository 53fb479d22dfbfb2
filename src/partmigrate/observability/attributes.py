"""
Standard span attributes for partmigrate.

Attribute keys are shared by the orchestrator, strategies and repositories so
that spans from one migration run can be correlated.
"""

ATTR_TASK_ID = "partmigrate.task.id"
"""Migration task identifier (integer)."""

ATTR_EXECUTION_ID = "partmigrate.execution.id"
"""Identifier of a single orchestration run (string)."""

ATTR_TABLE = "partmigrate.table"
"""Fully qualified source table, OWNER.TABLE."""

ATTR_METHOD = "partmigrate.method"
"""Migration method requested or attempted (CTAS, ONLINE, EXCHANGE)."""

ATTR_SIMULATE = "partmigrate.simulate"
"""Whether the run is a dry run (boolean)."""

ATTR_STEP_NAME = "partmigrate.step.name"
"""Execution log step name."""

ATTR_DB_SYSTEM = "db.system"
"""Database system identifier, OpenTelemetry semantic convention."""
