"""Prometheus instruments for SkillHub, kept on a private registry.

Metrics:
    Counters:
        - interactions_total: Service operations by name and outcome
        - notifications_total: Fan-out decisions by type and outcome
        - push_deliveries_total: Live push attempts by outcome
        - cas_conflicts_total: Compare-and-swap version conflicts by aggregate

    Gauges:
        - connected_push_clients: Users with an open push channel

    Histograms:
        - store_operation_duration_seconds: Aggregate store unit-of-work latency

Usage:
    ```python
    from skillhub.metrics import interactions_total

    interactions_total.labels(operation="toggle_like", status="success").inc()
    ```

    An HTTP layer in front of the core can serve:

    ```python
    from skillhub.metrics import generate_metrics_output

    body = generate_metrics_output()
    ```
"""

from __future__ import annotations

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from skillhub.logging import logger

registry = CollectorRegistry()

# Latency buckets (seconds) for local SQLite units of work
STORE_LATENCY_BUCKETS = (
    0.0005,
    0.001,
    0.0025,
    0.005,
    0.01,
    0.025,
    0.05,
    0.1,
    0.25,
    1.0,
)


# Counters

interactions_total = Counter(
    "interactions_total",
    "Total number of interaction operations",
    labelnames=["operation", "status"],
    registry=registry,
)
"""Counter for service operations.

Labels:
    operation: Span name of the operation (e.g., "interactions.toggle_like")
    status: "success" or the exception class name ("ForbiddenError", ...)
"""

notifications_total = Counter(
    "notifications_total",
    "Total number of notification fan-out decisions",
    labelnames=["type", "outcome"],
    registry=registry,
)
"""Counter for notification derivation.

Labels:
    type: NotificationType value
    outcome: "created", "suppressed" (self-action) or "failed"
"""

push_deliveries_total = Counter(
    "push_deliveries_total",
    "Total number of live push attempts",
    labelnames=["outcome"],
    registry=registry,
)
"""Counter for push attempts.

Labels:
    outcome: "delivered", "offline" or "error"
"""

cas_conflicts_total = Counter(
    "cas_conflicts_total",
    "Total number of compare-and-swap version conflicts",
    labelnames=["aggregate"],
    registry=registry,
)


# Gauges

connected_push_clients = Gauge(
    "connected_push_clients",
    "Current number of users with an open push channel",
    registry=registry,
)


# Histograms

store_operation_duration_seconds = Histogram(
    "store_operation_duration_seconds",
    "Aggregate store unit-of-work duration in seconds",
    labelnames=["status"],
    buckets=STORE_LATENCY_BUCKETS,
    registry=registry,
)


# Exposition

def generate_metrics_output() -> bytes:
    """Text exposition of everything in ``registry``."""
    return generate_latest(registry)


def reset_metrics() -> None:
    """Reset every metric in the custom registry to its initial state.

    Intended for tests.
    """
    logger.debug("Resetting all Prometheus metrics")
    for metric in (
        interactions_total,
        notifications_total,
        push_deliveries_total,
        cas_conflicts_total,
        store_operation_duration_seconds,
    ):
        metric.clear()
    connected_push_clients.set(0)


__all__ = [
    "registry",
    "interactions_total",
    "notifications_total",
    "push_deliveries_total",
    "cas_conflicts_total",
    "connected_push_clients",
    "store_operation_duration_seconds",
    "generate_metrics_output",
    "reset_metrics",
    "STORE_LATENCY_BUCKETS",
]
