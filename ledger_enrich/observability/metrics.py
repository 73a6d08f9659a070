"""
Prometheus metrics collection for ledger-enrich

Counters and histograms for pipeline outcomes, classification results and
state-coordinator persistence, kept in a private registry.
"""
import os
from typing import Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# Global registry for metrics
REGISTRY = CollectorRegistry()


# =======================
# PIPELINE METRICS
# =======================

transactions_processed_total = Counter(
    name="enrich_transactions_processed_total",
    documentation="Transactions run through the enrichment pipeline",
    labelnames=["source_type", "status"],  # status: success, failure
    registry=REGISTRY,
)

step_failures_total = Counter(
    name="enrich_step_failures_total",
    documentation="Failed step executions",
    labelnames=["step"],
    registry=REGISTRY,
)

step_duration_seconds = Histogram(
    name="enrich_step_duration_seconds",
    documentation="Time spent in a single step execution",
    labelnames=["step"],
    buckets=[0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0],
    registry=REGISTRY,
)

batch_duration_seconds = Histogram(
    name="enrich_batch_duration_seconds",
    documentation="Time spent running the pipeline over a batch",
    labelnames=["stage"],  # stage: pipeline, persistence, run
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0],
    registry=REGISTRY,
)

# =======================
# CLASSIFICATION METRICS
# =======================

classification_outcomes_total = Counter(
    name="enrich_classification_outcomes_total",
    documentation="Classification results by outcome",
    labelnames=["source_type", "outcome"],  # outcome: matched, unmatched, no_rules
    registry=REGISTRY,
)

exceptions_raised_total = Counter(
    name="enrich_exceptions_raised_total",
    documentation="Exception queue entries raised by steps",
    labelnames=["exception_type", "priority"],
    registry=REGISTRY,
)

# =======================
# PERSISTENCE METRICS
# =======================

enrichment_records_total = Counter(
    name="enrich_enrichment_records_total",
    documentation="Enrichment records persisted (or reused on resume)",
    labelnames=["processing_status", "reused"],
    registry=REGISTRY,
)

persistence_failures_total = Counter(
    name="enrich_persistence_failures_total",
    documentation="Row-store writes that failed (enrichments, transaction and statement status, audit entries)",
    labelnames=["collection"],
    registry=REGISTRY,
)

statements_finalized_total = Counter(
    name="enrich_statements_finalized_total",
    documentation="Statements moved to a terminal state",
    labelnames=["status"],
    registry=REGISTRY,
)

last_run_transactions = Gauge(
    name="enrich_last_run_transactions",
    documentation="Transaction counts of the most recent run",
    labelnames=["outcome"],  # outcome: success, failure, manual_review
    registry=REGISTRY,
)

# =======================
# ERROR METRICS
# =======================

configuration_faults_total = Counter(
    name="enrich_configuration_faults_total",
    documentation="Configuration faults detected (unparseable rules, bad rule rows)",
    labelnames=["component"],
    registry=REGISTRY,
)


# =======================
# HELPER FUNCTIONS
# =======================

def generate_metrics() -> bytes:
    """
    Generate Prometheus metrics in text format

    Returns:
        Metrics in Prometheus text format
    """
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST


def start_metrics_server(port: Optional[int] = None) -> None:
    """
    Start HTTP server for Prometheus metrics

    Args:
        port: Port to listen on (defaults to env var METRICS_PORT or 8000)
    """
    # Imported lazily so importing this module never binds a port
    from prometheus_client import start_http_server

    metrics_port = port or int(os.getenv("METRICS_PORT", "8000"))
    start_http_server(metrics_port, registry=REGISTRY)


class track_duration:
    """
    Context manager for tracking operation duration

    Usage:
        with track_duration(batch_duration_seconds, stage="pipeline"):
            # do work
            pass
    """

    def __init__(self, histogram: Histogram, **labels):
        self.histogram = histogram
        self.labels = labels
        self.timer = None

    def __enter__(self):
        self.timer = self.histogram.labels(**self.labels).time()
        self.timer.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.timer.__exit__(exc_type, exc_val, exc_tb)
        return False


def increment_counter(counter: Counter, value: float = 1.0, **labels) -> None:
    """
    Increment a counter metric

    Args:
        counter: Prometheus Counter metric
        value: Amount to increment (default: 1.0)
        **labels: Label values for the metric
    """
    counter.labels(**labels).inc(value)


def set_gauge(gauge: Gauge, value: float, **labels) -> None:
    gauge.labels(**labels).set(value)


def observe_histogram(histogram: Histogram, value: float, **labels) -> None:
    histogram.labels(**labels).observe(value)


def get_counter_value(counter: Counter, **labels) -> float:
    """
    Read the current value of a labelled counter (0.0 if never incremented).

    Useful in tests and run summaries.
    """
    value = REGISTRY.get_sample_value(f"{counter._name}_total", labels)
    return value or 0.0


# =======================
# RUN-SPECIFIC HELPERS
# =======================

def record_run_summary(success_count: int, failure_count: int, manual_review_count: int) -> None:
    """
    Record the outcome counts of the most recent enrichment run.

    Args:
        success_count: Transactions enriched or routed to manual review
        failure_count: Transactions that failed the pipeline or persistence
        manual_review_count: Successful transactions that need manual review
    """
    set_gauge(last_run_transactions, success_count, outcome="success")
    set_gauge(last_run_transactions, failure_count, outcome="failure")
    set_gauge(last_run_transactions, manual_review_count, outcome="manual_review")
