"""Orchestrator-specific Prometheus metrics."""

from typing import Optional

from shared.framework.metrics import MetricsCollector


class OrchestratorMetrics:
    """Counters for job creation, fan-out, outcomes and finalization."""

    def __init__(self, collector: Optional[MetricsCollector] = None):
        self.collector = collector or MetricsCollector("aggregation_orchestrator")

        self.jobs_ensured = self.collector.create_counter(
            "jobs_ensured_total",
            "Ensure calls by result (created, reused)",
            ["result"],
        )
        self.combos_published = self.collector.create_counter(
            "combos_published_total",
            "Request messages by publish status",
            ["provider", "status"],
        )
        self.outcomes = self.collector.create_counter(
            "outcomes_total",
            "Outcome reports by kind and whether they were first-time",
            ["outcome", "delivery"],
        )
        self.jobs_finalized = self.collector.create_counter(
            "jobs_finalized_total",
            "Jobs that reached a terminal status",
            ["status"],
        )
        self.timeout_sweeps = self.collector.create_counter(
            "timeout_sweeps_total",
            "Timeout monitor sweeps by result",
            ["result"],
        )
        self.ensure_duration = self.collector.create_histogram(
            "ensure_duration_seconds",
            "Time spent in ensure, including fan-out submission",
        )

    def job_ensured(self, reused: bool) -> None:
        self.jobs_ensured.labels(result="reused" if reused else "created").inc()

    def combo_published(self, provider: str, ok: bool) -> None:
        self.combos_published.labels(provider=provider, status="ok" if ok else "failed").inc()

    def outcome_reported(self, outcome: str, first_time: bool) -> None:
        self.outcomes.labels(outcome=outcome, delivery="first" if first_time else "duplicate").inc()

    def job_finalized(self, status: str) -> None:
        self.jobs_finalized.labels(status=status).inc()

    def sweep_finished(self, ok: bool) -> None:
        self.timeout_sweeps.labels(result="ok" if ok else "error").inc()
