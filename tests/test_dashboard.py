from __future__ import annotations

from datetime import datetime, timedelta, timezone

from hydra_sessions.dashboard import render_result, render_status
from hydra_sessions.engine import aggregate
from hydra_sessions.storage import SessionRecord, SessionStatus, WorkerArtifact

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def test_status_lists_sessions_and_totals() -> None:
    done = SessionRecord(id="done", prompt="p")
    done.mark_running(pid=1, now=NOW - timedelta(seconds=30))
    done.finish(SessionStatus.COMPLETED, now=NOW)
    live = SessionRecord(id="live", prompt="p")
    live.mark_running(pid=2, now=NOW - timedelta(seconds=12))
    lost = SessionRecord(id="lost", prompt="p")
    lost.mark_running(pid=3, now=NOW - timedelta(seconds=5))
    lost.finish(SessionStatus.STOPPED, now=NOW, termination_uncertain=True)
    artifact = WorkerArtifact(raw="{}", structured=True, cost_usd=0.2, duration_ms=30000, success_marker=True)
    summary = aggregate([done, live, lost], artifacts={"done": artifact}, now=NOW)

    text = render_status([done, live, lost], summary, artifact_sizes={"done": 128}, now=NOW)

    assert "Hydra Session Status Dashboard" in text
    assert "(128 bytes)" in text
    assert "12s (running)" in text
    assert "[termination uncertain]" in text
    assert "Total: 3 | Completed: 1 | Running: 1" in text
    assert "Total cost: $0.2000" in text


def test_status_without_cost_hides_estimates() -> None:
    text = render_status([], aggregate([], now=NOW), now=NOW)

    assert "(no sessions found)" in text
    assert "Estimated" not in text


def test_result_rendering() -> None:
    assert render_result(None, None) == "No output found"
    assert render_result(None, WorkerArtifact(raw="plain text")) == "plain text"
    structured = WorkerArtifact(raw="{}", structured=True, result="Done", cost_usd=0.05, duration_ms=2500)
    assert render_result(None, structured) == "Done\n\nCost: $0.0500 | Duration: 2s"
