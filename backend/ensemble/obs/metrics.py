"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

REQUEST_COUNTER = Counter(
	"ensemble_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"ensemble_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

MEMBERSHIP_OPS = Counter(
	"ensemble_membership_operations_total",
	"Membership transaction engine operations",
	["operation", "result"],
)

CLAIMS_SYNC = Counter(
	"ensemble_claims_sync_total",
	"Authorization claims sync attempts",
	["result"],
)

CLAIMS_FALLBACK_READS = Counter(
	"ensemble_claims_fallback_reads_total",
	"Authorization checks that fell back to the record store",
)

TRANSACTION_CONFLICTS = Counter(
	"ensemble_store_transaction_conflicts_total",
	"Optimistic-concurrency conflicts observed by the record store",
	["outcome"],
)

STATS_TRIGGERS = Counter(
	"ensemble_stats_triggers_total",
	"Event record writes seen by the statistics guard",
	["decision"],
)

STATS_RECOMPUTE_DURATION = Histogram(
	"ensemble_stats_recompute_duration_seconds",
	"Statistics summary recompute latency",
	buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

STATS_SCALE_WARNINGS = Counter(
	"ensemble_stats_scale_warnings_total",
	"Recomputes that read more event records than the warning threshold",
)

NOTIFICATION_TOKENS_REASSIGNED = Counter(
	"ensemble_notification_tokens_reassigned_total",
	"Notification tokens removed from a previous owner",
)

BACKGROUND_RUNS = Counter(
	"ensemble_jobs_runs_total",
	"Background job executions",
	["name", "result"],
)

BACKGROUND_DURATION = Histogram(
	"ensemble_jobs_duration_seconds",
	"Background job duration",
	["name"],
	buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 15.0, 30.0, 60.0),
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def inc_membership_op(operation: str, result: str = "ok") -> None:
	MEMBERSHIP_OPS.labels(operation=operation, result=result).inc()


def inc_claims_sync(result: str) -> None:
	CLAIMS_SYNC.labels(result=result).inc()


def inc_claims_fallback() -> None:
	CLAIMS_FALLBACK_READS.inc()


def inc_transaction_conflict(outcome: str) -> None:
	TRANSACTION_CONFLICTS.labels(outcome=outcome).inc()


def inc_stats_trigger(decision: str) -> None:
	STATS_TRIGGERS.labels(decision=decision).inc()


def observe_stats_recompute(duration_seconds: float) -> None:
	STATS_RECOMPUTE_DURATION.observe(duration_seconds)


def inc_stats_scale_warning() -> None:
	STATS_SCALE_WARNINGS.inc()


def inc_tokens_reassigned(count: int) -> None:
	if count > 0:
		NOTIFICATION_TOKENS_REASSIGNED.inc(count)
