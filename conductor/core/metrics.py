from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

PIPELINE_RUNS_TOTAL = Counter(
    "conductor_pipeline_runs_total",
    "Pipeline runs grouped by terminal status",
    labelnames=("status",),
)

PIPELINE_LATENCY_SECONDS = Histogram(
    "conductor_pipeline_latency_seconds",
    "End-to-end pipeline latency",
    labelnames=("strategy",),
    buckets=(0.1, 0.25, 0.5, 1, 2, 5, 10, 30, 60, 120, float("inf")),
)

PIPELINE_ACTIVE_GAUGE = Gauge(
    "conductor_pipeline_runs_active",
    "Pipeline runs in flight",
)

RETRIEVAL_RESULTS_TOTAL = Counter(
    "conductor_retrieval_results_total",
    "Candidates returned by similarity search",
    labelnames=("collection",),
)

RETRIEVAL_DEGRADED_TOTAL = Counter(
    "conductor_retrieval_degraded_total",
    "Similarity searches that timed out or failed",
    labelnames=("collection", "reason"),
)

PLANS_TOTAL = Counter(
    "conductor_plans_total",
    "Execution plans produced",
    labelnames=("strategy", "intent", "mode"),
)

PLAN_APPROVED_TOOLS = Histogram(
    "conductor_plan_approved_tools",
    "Number of approved tools per plan",
    labelnames=("strategy",),
    buckets=(0, 1, 2, 3, 4, 5, 8),
)

POLICY_VIOLATIONS_TOTAL = Counter(
    "conductor_policy_violations_total",
    "Rejected tools the model used anyway",
    labelnames=("tool",),
)

REFINEMENT_OUTCOMES_TOTAL = Counter(
    "conductor_refinement_outcomes_total",
    "Refinement loop terminal states",
    labelnames=("outcome",),
)

REFINEMENT_ROUNDS = Histogram(
    "conductor_refinement_rounds",
    "Evaluated drafts per request",
    labelnames=("outcome",),
    buckets=(0, 1, 2, 3, 4, 5, 8),
)

FINAL_RATING = Histogram(
    "conductor_final_rating",
    "Final rating of the accepted draft",
    buckets=(0.0, 1.0, 2.0, 2.5, 3.0, 3.5, 4.0, 4.5, 5.0),
)

SUPERVISOR_WRITE_FAILURES_TOTAL = Counter(
    "conductor_supervisor_write_failures_total",
    "Supervisor writes that failed and were dropped",
    labelnames=("operation",),
)

SUPERVISOR_CONVERSATIONS_GAUGE = Gauge(
    "conductor_supervisor_conversations",
    "Conversations currently tracked by the supervisor",
)

STYLE_FAILURES_TOTAL = Counter(
    "conductor_style_failures_total",
    "Style transforms that failed and passed the text through",
)

MODEL_INVOCATIONS_TOTAL = Counter(
    "conductor_model_invocations_total",
    "Model invocations grouped by purpose and outcome",
    labelnames=("purpose", "outcome"),
)


def mark_pipeline_started() -> None:
    PIPELINE_ACTIVE_GAUGE.inc()
    PIPELINE_RUNS_TOTAL.labels("started").inc()


def mark_pipeline_completed(*, status: str, strategy: str, latency: float) -> None:
    PIPELINE_ACTIVE_GAUGE.dec()
    PIPELINE_RUNS_TOTAL.labels(status).inc()
    PIPELINE_LATENCY_SECONDS.labels(strategy=strategy).observe(latency)


def record_retrieval_results(*, collection: str, count: int) -> None:
    if count > 0:
        RETRIEVAL_RESULTS_TOTAL.labels(collection=collection).inc(count)


def record_retrieval_degraded(*, collection: str, reason: str) -> None:
    RETRIEVAL_DEGRADED_TOTAL.labels(collection=collection, reason=reason).inc()


def record_plan(*, strategy: str, intent: str, mode: str, approved_tools: int) -> None:
    PLANS_TOTAL.labels(strategy=strategy, intent=intent, mode=mode).inc()
    PLAN_APPROVED_TOOLS.labels(strategy=strategy).observe(approved_tools)


def record_policy_violation(*, tool: str) -> None:
    POLICY_VIOLATIONS_TOTAL.labels(tool=tool).inc()


def record_refinement(*, outcome: str, rounds: int, rating: float | None) -> None:
    REFINEMENT_OUTCOMES_TOTAL.labels(outcome=outcome).inc()
    REFINEMENT_ROUNDS.labels(outcome=outcome).observe(rounds)
    if rating is not None:
        FINAL_RATING.observe(rating)


def record_supervisor_write_failure(*, operation: str) -> None:
    SUPERVISOR_WRITE_FAILURES_TOTAL.labels(operation=operation).inc()


def set_supervisor_conversations(count: int) -> None:
    SUPERVISOR_CONVERSATIONS_GAUGE.set(count)


def record_style_failure() -> None:
    STYLE_FAILURES_TOTAL.inc()


def record_model_invocation(*, purpose: str, outcome: str) -> None:
    MODEL_INVOCATIONS_TOTAL.labels(purpose=purpose, outcome=outcome).inc()
