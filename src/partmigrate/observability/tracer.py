"""
Tracer protocol and implementations for composition-based tracing.

Components receive a tracer as a constructor dependency and wrap each
migration step in a span:

Example:
    >>> from partmigrate.observability import create_tracer
    >>>
    >>> class MyStrategy:
    ...     def __init__(self, tracer: Tracer | None = None):
    ...         self._tracer = tracer or create_tracer(__name__)
    ...
    ...     async def execute(self, ctx) -> None:
    ...         with self._tracer.span("partmigrate.strategy.execute", {"task.id": 1}):
    ...             ...
"""

from __future__ import annotations

import contextlib
from collections.abc import Generator
from contextlib import AbstractContextManager
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from partmigrate.observability.tracing import OTEL_AVAILABLE

if TYPE_CHECKING:
    from opentelemetry.trace import Span


@runtime_checkable
class Tracer(Protocol):
    """
    Protocol for tracers that can create tracing spans.

    Implementations:
    - NullTracer: No-op tracer for when tracing is disabled
    - OpenTelemetryTracer: Wrapper around OpenTelemetry tracer
    - MockTracer: Records span names for assertions in tests
    """

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Span | None]:
        """
        Create a tracing span context manager.

        Args:
            name: Span name (e.g., "partmigrate.orchestrator.execute")
            attributes: Span attributes (optional)

        Returns:
            Context manager that yields Span or None
        """
        ...

    @property
    def enabled(self) -> bool:
        """Check if tracing is enabled."""
        ...


class NullTracer:
    """
    No-op tracer implementation for when tracing is disabled.

    Example:
        >>> tracer = NullTracer()
        >>> with tracer.span("operation"):  # Does nothing
        ...     do_work()
        >>> tracer.enabled  # False
    """

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> Generator[None, None, None]:
        """Create a no-op span context (yields None)."""
        yield None

    @property
    def enabled(self) -> bool:
        """Always returns False for NullTracer."""
        return False


class OpenTelemetryTracer:
    """
    OpenTelemetry tracer implementation.

    Args:
        tracer_name: Name for the tracer (typically __name__)

    Raises:
        ImportError: If OpenTelemetry is not installed
    """

    def __init__(self, tracer_name: str) -> None:
        from opentelemetry import trace

        self._tracer = trace.get_tracer(tracer_name)

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Span | None]:
        """Create an OpenTelemetry span context."""
        return self._tracer.start_as_current_span(
            name,
            attributes=attributes or {},
        )

    @property
    def enabled(self) -> bool:
        """Always returns True for OpenTelemetryTracer."""
        return True


class MockTracer:
    """
    Mock tracer for testing that records span information.

    Example:
        >>> tracer = MockTracer()
        >>> with tracer.span("operation", {"key": "value"}):
        ...     pass
        >>> assert tracer.span_names == ["operation"]
    """

    def __init__(self) -> None:
        self.spans: list[tuple[str, dict[str, Any] | None]] = []

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> Generator[None, None, None]:
        """Record span and yield None."""
        self.spans.append((name, attributes))
        yield None

    @property
    def enabled(self) -> bool:
        """Returns True to enable attribute computation in tests."""
        return True

    @property
    def span_names(self) -> list[str]:
        """Get just the span names for easy assertions."""
        return [name for name, _ in self.spans]


def create_tracer(
    name: str,
    enable_tracing: bool = True,
) -> Tracer:
    """
    Factory function to create the appropriate tracer.

    Args:
        name: Tracer name (typically __name__)
        enable_tracing: Whether tracing should be enabled (default True)

    Returns:
        OpenTelemetryTracer if enabled and available, NullTracer otherwise
    """
    if enable_tracing and OTEL_AVAILABLE:
        return OpenTelemetryTracer(name)
    return NullTracer()


__all__ = [
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
]
