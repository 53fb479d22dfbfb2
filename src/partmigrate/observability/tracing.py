"""
OpenTelemetry availability detection for partmigrate.

OpenTelemetry is an optional dependency (``pip install partmigrate[telemetry]``).
This module is the single place that checks for it; every other component
asks ``create_tracer`` for a tracer and never imports opentelemetry directly.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from opentelemetry.trace import Tracer

# Optional OpenTelemetry import - single source of truth
try:
    from opentelemetry import trace

    OTEL_AVAILABLE = True
except ImportError:
    OTEL_AVAILABLE = False
    trace = None  # type: ignore[assignment]


def get_tracer(name: str) -> Tracer | None:
    """
    Get an OpenTelemetry tracer if available.

    Args:
        name: The name for the tracer (typically __name__ of the module)

    Returns:
        OpenTelemetry Tracer if available, None otherwise
    """
    if OTEL_AVAILABLE and trace is not None:
        return trace.get_tracer(name)
    return None


def should_trace(enable_tracing: bool) -> bool:
    """
    Determine if tracing should be active.

    Args:
        enable_tracing: Component-level tracing configuration

    Returns:
        True if both tracing is enabled and OpenTelemetry is available
    """
    return enable_tracing and OTEL_AVAILABLE


__all__ = [
    "OTEL_AVAILABLE",
    "get_tracer",
    "should_trace",
]
