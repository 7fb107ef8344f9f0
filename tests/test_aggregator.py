from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from hydra_sessions.engine import EstimateParams, aggregate, estimate_efficiency, summarize_store
from hydra_sessions.engine.aggregator import MeasuredTotals
from hydra_sessions.storage import (
    FileSessionStore,
    SessionRecord,
    SessionStatus,
    WorkerArtifact,
)

START = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def _finished(session_id: str, seconds: float, status: SessionStatus = SessionStatus.COMPLETED) -> SessionRecord:
    record = SessionRecord(id=session_id, prompt="p")
    record.mark_running(pid=1, now=START)
    record.finish(status, now=START + timedelta(seconds=seconds), reason="exit code 1")
    return record


def _artifact(cost: float, duration_ms: int) -> WorkerArtifact:
    return WorkerArtifact(raw="{}", structured=True, cost_usd=cost, duration_ms=duration_ms, success_marker=True)


def test_measured_totals_and_estimates() -> None:
    records = [_finished("a", 120), _finished("b", 90)]
    artifacts = {"a": _artifact(1.0, 100_000), "b": _artifact(0.5, 80_000)}

    summary = aggregate(records, artifacts=artifacts, now=START)

    assert summary.counts.completed == 2
    assert summary.counts.total == 2
    assert summary.measured.total_cost_usd == pytest.approx(1.5)
    assert summary.measured.parallel_seconds == pytest.approx(100)
    assert summary.measured.sequential_seconds == pytest.approx(180)
    estimated = summary.estimated
    assert estimated.speedup == pytest.approx(1.8)
    assert estimated.tokens_estimate == 100_000
    assert estimated.sequential_tokens_estimate == 130_000
    assert estimated.tokens_saved == 30_000
    assert estimated.cost_saved_usd == pytest.approx(0.45)
    assert estimated.efficiency_percent == pytest.approx(30_000 / 130_000 * 100)


def test_runtime_is_used_without_artifact_duration() -> None:
    summary = aggregate([_finished("a", 42, SessionStatus.FAILED)], now=START)

    assert summary.counts.failed == 1
    assert summary.measured.parallel_seconds == pytest.approx(42)
    assert summary.measured.total_cost_usd == 0


def test_live_records_are_counted_but_not_summed() -> None:
    running = SessionRecord(id="r", prompt="p")
    running.mark_running(pid=1, now=START)
    pending = SessionRecord(id="q", prompt="p")

    summary = aggregate(
        [running, pending, _finished("a", 10)],
        artifacts={"r": _artifact(3.0, 5000)},
        now=START + timedelta(seconds=500),
    )

    assert summary.counts.running == 1
    assert summary.counts.pending == 1
    assert summary.counts.completed == 1
    assert summary.measured.total_cost_usd == 0
    assert summary.measured.parallel_seconds == pytest.approx(10)
    assert summary.counts.completion_rate == pytest.approx(100 / 3)


def test_empty_batch_has_no_speedup() -> None:
    summary = aggregate([])

    assert summary.counts.total == 0
    assert summary.estimated.speedup is None
    assert summary.estimated.efficiency_percent == 0.0
    assert summary.to_dict()["counts"]["total"] == 0


def test_estimate_params_are_overridable() -> None:
    params = EstimateParams(overhead_ratio=0.5, cost_per_token=0.00001)
    estimated = estimate_efficiency(MeasuredTotals(total_cost_usd=1.0, sequential_seconds=10, parallel_seconds=5), params)

    assert estimated.tokens_estimate == 100_000
    assert estimated.sequential_tokens_estimate == 150_000
    assert estimated.speedup == pytest.approx(2.0)
    assert estimated.params is params


def test_summarize_store_reads_artifacts(tmp_path: Path) -> None:
    store = FileSessionStore(tmp_path)
    store.put(_finished("a", 5))
    store.artifact_path("a").write_text(
        '{"subtype":"success","total_cost_usd":0.75,"duration_ms":4000}', encoding="utf-8"
    )
    store.put(_finished("b", 7))
    store.artifact_path("b").write_text("not json", encoding="utf-8")

    records, summary = summarize_store(store, now=START)

    assert [record.id for record in records] == ["a", "b"]
    assert summary.measured.total_cost_usd == pytest.approx(0.75)
    assert summary.measured.sequential_seconds == pytest.approx(11)
