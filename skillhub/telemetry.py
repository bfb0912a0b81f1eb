"""Tracing for SkillHub service calls.

``traced()`` gives every public service method one span named after the
operation, tags it with the current logging context and counts the outcome
in ``interactions_total``. Nothing is exported unless ``ENABLE_TRACING`` is
set; spans then go to ``OTLP_ENDPOINT`` over gRPC, or to the console when
no endpoint is configured.

The resource's ``service.name`` is read from ``OTEL_SERVICE_NAME``
(default "skillhub").

Usage:
    ```python
    @traced("interactions.toggle_like")
    def toggle_like(self, post_id, user_id, action):
        ...
    ```
"""

from __future__ import annotations

import functools
import os
from typing import Any, Callable, TypeVar

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SpanExporter
from opentelemetry.trace import Status, StatusCode, Tracer
from opentelemetry.trace.span import Span

from skillhub.config import settings
from skillhub.logging import current_context, logger, request_context
from skillhub.metrics import interactions_total

F = TypeVar("F", bound=Callable[..., Any])

_tracer_provider: TracerProvider | None = None
_initialized: bool = False


def _build_exporter() -> SpanExporter | None:
    if not settings.enable_tracing:
        return None
    if not settings.otlp_endpoint:
        logger.debug("Tracing enabled without an endpoint, printing spans")
        return ConsoleSpanExporter()
    try:
        exporter = OTLPSpanExporter(endpoint=settings.otlp_endpoint)
    except Exception as e:
        logger.error("OTLP exporter rejected endpoint", endpoint=settings.otlp_endpoint, error=str(e))
        raise ValueError(f"Invalid OTLP endpoint: {settings.otlp_endpoint}") from e
    logger.info("Exporting spans over OTLP", endpoint=settings.otlp_endpoint)
    return exporter


def initialize_telemetry() -> None:
    """Install the process-wide tracer provider once.

    Raises:
        ValueError: If ``OTLP_ENDPOINT`` can't be turned into an exporter
    """
    global _tracer_provider, _initialized

    if _initialized:
        return

    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": os.getenv("OTEL_SERVICE_NAME", "skillhub"),
                "deployment.environment": settings.environment.value,
            }
        )
    )
    exporter = _build_exporter()
    if exporter is not None:
        provider.add_span_processor(BatchSpanProcessor(exporter))

    trace.set_tracer_provider(provider)
    _tracer_provider = provider
    _initialized = True


def get_tracer(name: str) -> Tracer:
    if not _initialized:
        initialize_telemetry()
    return trace.get_tracer(name)


def add_span_attributes(span: Span, attributes: dict[str, Any]) -> None:
    """Set each non-None attribute, stringifying non-primitive values."""
    for key, value in attributes.items():
        if value is None:
            continue
        span.set_attribute(key, value if isinstance(value, (str, bool, int, float)) else str(value))


def record_exception_in_span(span: Span, exception: Exception, set_status: bool = True) -> None:
    span.record_exception(exception)
    if set_status:
        span.set_status(Status(StatusCode.ERROR, str(exception)))


def traced(span_name: str) -> Callable[[F], F]:
    """Run the decorated call inside a span named ``span_name``.

    ``span_name`` is also bound as the logging ``operation`` for the call
    and used as the ``operation`` label of ``interactions_total``; the
    ``status`` label is "success" or the exception class name. Exceptions
    propagate unchanged.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            tracer = get_tracer(func.__module__)
            with (
                request_context(operation=span_name),
                tracer.start_as_current_span(span_name) as span,
            ):
                add_span_attributes(span, current_context())
                try:
                    result = func(*args, **kwargs)
                except Exception as exc:
                    record_exception_in_span(span, exc)
                    interactions_total.labels(operation=span_name, status=type(exc).__name__).inc()
                    raise
                interactions_total.labels(operation=span_name, status="success").inc()
                return result

        return wrapper  # type: ignore[return-value]

    return decorator


def shutdown_telemetry() -> None:
    """Flush buffered spans and drop the provider."""
    global _tracer_provider, _initialized

    if _tracer_provider is None:
        return
    _tracer_provider.shutdown()
    _tracer_provider = None
    _initialized = False
    logger.info("Tracer provider shut down")


__all__ = [
    "initialize_telemetry",
    "shutdown_telemetry",
    "get_tracer",
    "add_span_attributes",
    "record_exception_in_span",
    "traced",
]
