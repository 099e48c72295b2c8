"""Prometheus metrics for the flag engine.

Metric constructors tolerate duplicate registration so the module can be
re-imported (tests, reloaders) without tripping the global registry.
"""

from prometheus_client import Counter, Gauge, Histogram

from flagengine.core.logging import get_logger

logger = get_logger(__name__)


def _safe_counter(*args, **kwargs):
    try:
        return Counter(*args, **kwargs)
    except ValueError:
        # Return a dummy that does nothing
        class DummyMetric:
            def labels(self, *args, **kwargs):
                return self

            def inc(self, *args, **kwargs):
                pass

        return DummyMetric()


def _safe_histogram(*args, **kwargs):
    try:
        return Histogram(*args, **kwargs)
    except ValueError:

        class DummyMetric:
            def labels(self, *args, **kwargs):
                return self

            def observe(self, *args, **kwargs):
                pass

        return DummyMetric()


def _safe_gauge(*args, **kwargs):
    try:
        return Gauge(*args, **kwargs)
    except ValueError:

        class DummyMetric:
            def labels(self, *args, **kwargs):
                return self

            def set(self, *args, **kwargs):
                pass

        return DummyMetric()


# Evaluation
flag_evaluations_total = _safe_counter(
    "flagengine_evaluations_total",
    "Flag evaluations by deciding rule",
    ["reason"],
)
flag_evaluation_latency_seconds = _safe_histogram(
    "flagengine_evaluation_latency_seconds",
    "Time spent evaluating a single flag",
    buckets=(0.00001, 0.00005, 0.0001, 0.0005, 0.001, 0.005, 0.01),
)

# Governance
flag_mutations_total = _safe_counter(
    "flagengine_mutations_total",
    "Committed configuration mutations",
    ["action"],
)
flag_mutation_conflicts_total = _safe_counter(
    "flagengine_mutation_conflicts_total",
    "Mutations rejected with a conflict",
    ["action"],
)
audit_write_failures_total = _safe_counter(
    "flagengine_audit_write_failures_total",
    "Audit appends that failed and aborted their mutation",
)

# Snapshot read model
snapshot_version = _safe_gauge(
    "flagengine_snapshot_version",
    "Version of the currently published evaluation snapshot",
)
snapshot_reloads_total = _safe_counter(
    "flagengine_snapshot_reloads_total",
    "Full snapshot reloads from the store",
    ["trigger"],
)
change_notifications_total = _safe_counter(
    "flagengine_change_notifications_total",
    "Cross-instance change notifications",
    ["direction", "outcome"],
)
