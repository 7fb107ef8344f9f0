from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from hydra_sessions import cli
from hydra_sessions.storage import FileSessionStore, SessionRecord, SessionStatus

SCRIPT = """sleep 0.2
case "$HYDRA_SESSION_ID" in
  bad*) echo 'boom'; exit 3 ;;
esac
echo '{"subtype":"success","is_error":false,"result":"all done","total_cost_usd":0.5,"duration_ms":2000}'
"""

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def cli_settings(settings, make_worker, monkeypatch):
    settings.worker_path = str(make_worker(SCRIPT))
    monkeypatch.setattr(cli, "get_settings", lambda: settings)
    return settings


def _finished(store: FileSessionStore, session_id: str, status: SessionStatus = SessionStatus.COMPLETED) -> None:
    record = SessionRecord(id=session_id, prompt="p")
    record.mark_running(pid=1, now=NOW)
    record.finish(status, now=NOW, reason="exit code 1")
    store.put(record)


def test_run_multi_prints_report_and_records_history(cli_settings, capsys) -> None:
    tasks = json.dumps([{"id": "good", "prompt": "work"}, {"id": "bad", "prompt": "fail"}])

    cli.main(["run-multi", tasks, "--quiet", "--goal", "Nightly cleanup"])

    out = capsys.readouterr().out
    assert "Starting 2 task(s) with max 4 parallel sessions..." in out
    assert "All Sessions Complete - Results" in out
    assert "━━━ good (completed) ━━━" in out
    assert "━━━ bad (failed:exit code 3) ━━━" in out
    assert "TOTAL: $0.5000" in out
    assert "Recorded sprint sprint-" in out
    history = json.loads(cli_settings.history_path.read_text(encoding="utf-8"))
    assert history["sprints"][0]["goal"] == "Nightly cleanup"
    assert history["sprints"][0]["totals"]["tasks_failed"] == 1


def test_run_multi_json_output(cli_settings, capsys) -> None:
    cli.main(["run-multi", '[{"id": "solo", "prompt": "work"}]', "haiku", "1.5", "1", "--quiet", "--json", "--no-history"])

    payload = json.loads(capsys.readouterr().out.split("DISABLED\n", 1)[1])
    assert payload["outcomes"][0]["session_id"] == "solo"
    assert payload["outcomes"][0]["status"] == "completed"
    assert not cli_settings.history_path.exists()
    record = FileSessionStore(cli_settings.sessions_dir).get("solo")
    assert record.model == "haiku"
    assert record.budget == 1.5


def test_run_multi_rejects_invalid_batch(cli_settings, capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["run-multi", '[{"id": "a"}, {"prompt": "b"}]', "--quiet"])

    assert excinfo.value.code == 1
    out = capsys.readouterr().out
    assert "Task 'a' missing 'prompt' field" in out
    assert "Task 1 missing 'id' field" in out
    assert FileSessionStore(cli_settings.sessions_dir).list() == []


def test_missing_worker_exits(cli_settings, tmp_path, capsys) -> None:
    cli_settings.worker_path = str(tmp_path / "no-such-worker")

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["start", "t1", "hello"])

    assert excinfo.value.code == 1
    assert "Missing worker executable" in capsys.readouterr().out


def test_start_runs_in_foreground(cli_settings, capsys) -> None:
    cli.main(["start", "single", "do it"])

    out = capsys.readouterr().out
    assert "Starting session: single" in out
    assert "Session single: completed" in out
    assert "all done" in out
    assert "Cost: $0.5000 | Duration: 2s | Status: completed" in out


def test_list_and_status(cli_settings, capsys) -> None:
    store = FileSessionStore(cli_settings.sessions_dir)
    _finished(store, "alpha")
    _finished(store, "beta", SessionStatus.FAILED)

    cli.main(["list"])
    out = capsys.readouterr().out
    assert "  - alpha\n  - beta\n" in out
    assert "Total: 2 session(s)" in out

    cli.main(["status", "--json"])
    payload = json.loads(capsys.readouterr().out)
    assert [session["id"] for session in payload["sessions"]] == ["alpha", "beta"]
    assert payload["summary"]["counts"]["failed"] == 1

    cli.main(["status"])
    assert "Hydra Session Status Dashboard" in capsys.readouterr().out


def test_list_empty(cli_settings, capsys) -> None:
    cli.main(["list"])

    out = capsys.readouterr().out
    assert "(no sessions found)" in out
    assert "Total: 0 session(s)" in out


def test_result_and_output(cli_settings, capsys) -> None:
    store = FileSessionStore(cli_settings.sessions_dir)
    _finished(store, "alpha")
    store.artifact_path("alpha").write_text(
        '{"subtype":"success","result":"Refactored","total_cost_usd":0.1234,"duration_ms":61000}',
        encoding="utf-8",
    )

    cli.main(["result", "alpha"])
    out = capsys.readouterr().out
    assert "Refactored" in out
    assert "Cost: $0.1234 | Duration: 61s | Status: completed" in out

    cli.main(["output", "alpha"])
    assert "Output for session: alpha" in capsys.readouterr().out

    with pytest.raises(SystemExit):
        cli.main(["result", "missing"])
    assert "No output found" in capsys.readouterr().out


def test_stop_unknown_and_finished(cli_settings, capsys) -> None:
    store = FileSessionStore(cli_settings.sessions_dir)
    _finished(store, "alpha")

    cli.main(["stop", "ghost"])
    assert "Session ghost not found" in capsys.readouterr().out

    cli.main(["stop", "alpha"])
    assert "Session alpha already completed" in capsys.readouterr().out


def test_clean_removes_finished_sessions(cli_settings, capsys) -> None:
    store = FileSessionStore(cli_settings.sessions_dir)
    _finished(store, "alpha")
    _finished(store, "beta", SessionStatus.STOPPED)

    cli.main(["clean"])

    assert "Cleaned 2 completed + 0 stale session(s)" in capsys.readouterr().out
    assert store.list() == []


def test_version(cli_settings, capsys) -> None:
    cli.main(["version"])

    assert capsys.readouterr().out.strip() == "Hydra Sessions v1.3.0"
