from __future__ import annotations

from prometheus_client import REGISTRY

from conductor.core import metrics


def _value(name: str, labels: dict[str, str] | None = None) -> float:
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


def test_pipeline_lifecycle_updates_gauge_and_counters() -> None:
    active = _value("conductor_pipeline_runs_active")
    started = _value("conductor_pipeline_runs_total", {"status": "started"})

    metrics.mark_pipeline_started()
    assert _value("conductor_pipeline_runs_active") == active + 1

    metrics.mark_pipeline_completed(status="completed", strategy="fast_recall", latency=0.2)
    assert _value("conductor_pipeline_runs_active") == active
    assert _value("conductor_pipeline_runs_total", {"status": "started"}) == started + 1
    assert _value("conductor_pipeline_latency_seconds_count", {"strategy": "fast_recall"}) >= 1


def test_empty_retrieval_does_not_count_results() -> None:
    before = _value("conductor_retrieval_results_total", {"collection": "metrics-test"})

    metrics.record_retrieval_results(collection="metrics-test", count=0)
    metrics.record_retrieval_results(collection="metrics-test", count=3)

    assert _value("conductor_retrieval_results_total", {"collection": "metrics-test"}) == before + 3


def test_skipped_refinement_records_no_rating() -> None:
    ratings = _value("conductor_final_rating_count")

    metrics.record_refinement(outcome="skipped", rounds=0, rating=None)
    metrics.record_refinement(outcome="accepted", rounds=2, rating=4.2)

    assert _value("conductor_final_rating_count") == ratings + 1


def test_model_invocations_are_labelled() -> None:
    before = _value("conductor_model_invocations_total", {"purpose": "draft", "outcome": "failed"})

    metrics.record_model_invocation(purpose="draft", outcome="failed")

    assert _value("conductor_model_invocations_total", {"purpose": "draft", "outcome": "failed"}) == before + 1
