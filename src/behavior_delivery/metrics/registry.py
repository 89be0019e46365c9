"""
Prometheus metrics for the delivery engine, registered in the global REGISTRY.
Import this module at app startup (the engine does so itself).
"""

from prometheus_client import Counter, Gauge, Histogram


# --- Intake ---

OUTPUTS_SUBMITTED_TOTAL = Counter(
    "bde_outputs_submitted_total",
    "Total number of output requests accepted",
    ["output_type", "method"],
)

OUTPUTS_REJECTED_TOTAL = Counter(
    "bde_outputs_rejected_total",
    "Total number of output requests rejected by validation",
)

# --- Dispatch ---

DISPATCH_ATTEMPTS_TOTAL = Counter(
    "bde_dispatch_attempts_total",
    "Dispatch attempts by target kind and outcome",
    ["target", "outcome"],
)

DISPATCH_LATENCY_MS = Histogram(
    "bde_dispatch_latency_ms",
    "Dispatch latency in milliseconds",
    ["target"],
    buckets=[1, 2.5, 5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000],
)

OUTPUTS_TERMINAL_TOTAL = Counter(
    "bde_outputs_terminal_total",
    "Outputs reaching a terminal state",
    ["status"],
)

# --- Engine state ---

QUEUE_DEPTH = Gauge(
    "bde_queue_depth",
    "Outputs currently held in the active delivery queue",
    ["engine"],
)

INFLIGHT_DISPATCHES = Gauge(
    "bde_inflight_dispatches",
    "Dispatches currently outstanding",
    ["engine"],
)

GROUPS_COMPLETED_TOTAL = Counter(
    "bde_groups_completed_total",
    "Coordination groups that reached complete",
    ["engine"],
)


class MetricsRegistry:
    """Centralized access to all delivery engine metrics."""

    outputs_submitted_total = OUTPUTS_SUBMITTED_TOTAL
    outputs_rejected_total = OUTPUTS_REJECTED_TOTAL
    dispatch_attempts_total = DISPATCH_ATTEMPTS_TOTAL
    dispatch_latency_ms = DISPATCH_LATENCY_MS
    outputs_terminal_total = OUTPUTS_TERMINAL_TOTAL
    queue_depth = QUEUE_DEPTH
    inflight_dispatches = INFLIGHT_DISPATCHES
    groups_completed_total = GROUPS_COMPLETED_TOTAL


# Singleton instance
metrics_registry = MetricsRegistry()
