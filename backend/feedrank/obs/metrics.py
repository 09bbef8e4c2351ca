"""Central registry for Prometheus metrics used across the service."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

RANK_RECOMPUTES = Counter(
	"feedrank_rank_recomputes_total",
	"Balanced rank recomputes per trigger",
	["trigger", "result"],
)

RANK_SWEEP_DURATION = Histogram(
	"feedrank_rank_sweep_duration_seconds",
	"Duration of rank sweep and backfill passes",
	["mode"],
	buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0),
)

RANK_RETRY_QUEUE = Gauge(
	"feedrank_rank_retry_queue",
	"Posts waiting for a retried rank recompute",
)

ACTIVITY_REFRESH_RUNS = Counter(
	"feedrank_activity_refresh_total",
	"Community activity refresh passes",
	["scope", "result"],
)

ACTIVITY_COMMUNITIES_CHANGED = Counter(
	"feedrank_activity_communities_changed_total",
	"Communities whose monthly interaction volume changed",
)

SORT_RETIREMENT_ROWS = Counter(
	"feedrank_sort_retirement_rows_total",
	"Preference rows rewritten by sort type retirements",
	["retired"],
)

RANK_EVENTS_CONSUMED = Counter(
	"feedrank_rank_events_total",
	"Ingestion events consumed from the rank stream",
	["event"],
)

BACKGROUND_RUNS = Counter(
	"feedrank_jobs_runs_total",
	"Background job executions",
	["name", "result"],
)

BACKGROUND_DURATION = Histogram(
	"feedrank_jobs_duration_seconds",
	"Background job duration",
	["name"],
	buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 15.0, 30.0, 60.0),
)


def record_job_run(name: str, *, result: str, duration_seconds: float | None = None) -> None:
	BACKGROUND_RUNS.labels(name=name, result=result).inc()
	if duration_seconds is not None:
		BACKGROUND_DURATION.labels(name=name).observe(duration_seconds)
