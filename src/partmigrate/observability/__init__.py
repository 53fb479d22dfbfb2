"""
Observability utilities for partmigrate.

Tracing is optional: when ``opentelemetry-api`` is not installed every
component silently uses a ``NullTracer``.
"""

from partmigrate.observability.attributes import (
    ATTR_DB_SYSTEM,
    ATTR_EXECUTION_ID,
    ATTR_METHOD,
    ATTR_SIMULATE,
    ATTR_STEP_NAME,
    ATTR_TABLE,
    ATTR_TASK_ID,
)
from partmigrate.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    Tracer,
    create_tracer,
)
from partmigrate.observability.tracing import OTEL_AVAILABLE, get_tracer, should_trace

__all__ = [
    "OTEL_AVAILABLE",
    "get_tracer",
    "should_trace",
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
    "ATTR_DB_SYSTEM",
    "ATTR_EXECUTION_ID",
    "ATTR_METHOD",
    "ATTR_SIMULATE",
    "ATTR_STEP_NAME",
    "ATTR_TABLE",
    "ATTR_TASK_ID",
]
