from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from hydra_sessions.history import SprintHistory
from hydra_sessions.storage import FileSessionStore, SessionRecord, SessionStatus
from hydra_sessions.tools import register_tools
from hydra_sessions.worker import WorkerRunner

SCRIPT = """sleep 0.1
echo '{"subtype":"success","is_error":false,"result":"patched","total_cost_usd":0.2,"duration_ms":1000}'
"""

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


class StubTool:
    def __init__(self, fn, name):
        self.fn = fn
        self.name = name


class StubServer:
    def __init__(self) -> None:
        self._tools: dict[str, StubTool] = {}

    def tool(self, *args, **kwargs):
        provided_name = None
        if args and isinstance(args[0], str):
            provided_name = args[0]
        provided_name = kwargs.get("name", provided_name)

        def decorator(fn):
            tool_name = provided_name or fn.__name__
            tool = StubTool(fn, tool_name)
            self._tools[tool_name] = tool
            return tool

        return decorator


class RecordingContext:
    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []
        self.logger = self

    def info(self, message, extra=None):
        self.messages.append(("info", message))

    def debug(self, message, extra=None):
        self.messages.append(("debug", message))

    def warning(self, message, extra=None):
        self.messages.append(("warning", message))


@pytest.fixture
def store(settings) -> FileSessionStore:
    return FileSessionStore(settings.sessions_dir)


@pytest.fixture
def handles(settings, store, make_worker):
    server = StubServer()
    history = SprintHistory(settings.history_path)
    result = register_tools(
        server,
        settings=settings,
        store=store,
        worker_runner=WorkerRunner(make_worker(SCRIPT)),
        history=history,
    )
    assert set(server._tools) == {
        "run_batch",
        "list_sessions",
        "session_result",
        "stop_session",
        "clean_sessions",
        "sprint_history",
    }
    return result


def _finished(store: FileSessionStore, session_id: str) -> None:
    record = SessionRecord(id=session_id, prompt="p")
    record.mark_running(pid=1, now=NOW)
    record.finish(SessionStatus.COMPLETED, now=NOW)
    store.put(record)


def test_run_batch_returns_report_and_records_sprint(handles, store) -> None:
    context = RecordingContext()

    payload = asyncio.run(
        handles.run_batch.fn(  # type: ignore[attr-defined]
            tasks=[{"id": "fix-a", "prompt": "a"}, {"id": "fix-b", "prompt": "b"}],
            max_parallel=2,
            goal="Patch release",
            context=context,
        )
    )

    assert [item["status"] for item in payload["outcomes"]] == ["completed", "completed"]
    assert payload["summary"]["measured"]["total_cost_usd"] == pytest.approx(0.4)
    assert payload["sprint_id"].startswith("sprint-")
    assert ("info", "Batch finished") in context.messages
    assert handles.active_schedulers == []

    history = handles.sprint_history.fn()  # type: ignore[attr-defined]
    assert history["sprints"][0]["goal"] == "Patch release"
    assert history["cumulative"]["total_sprints"] == 1


def test_run_batch_rejects_invalid_tasks(handles, store) -> None:
    with pytest.raises(ValueError) as excinfo:
        asyncio.run(handles.run_batch.fn(tasks=[{"id": "a"}]))  # type: ignore[attr-defined]

    assert "missing 'prompt'" in str(excinfo.value)
    assert store.list() == []


def test_run_batch_without_runner(settings, store) -> None:
    server = StubServer()
    handles = register_tools(server, settings=settings, store=store, worker_runner=None)

    with pytest.raises(RuntimeError):
        asyncio.run(handles.run_batch.fn(tasks=[{"id": "a", "prompt": "p"}]))  # type: ignore[attr-defined]
    with pytest.raises(RuntimeError):
        handles.sprint_history.fn()  # type: ignore[attr-defined]


def test_list_and_result(handles, store) -> None:
    _finished(store, "alpha")
    store.artifact_path("alpha").write_text(
        '{"subtype":"success","result":"ok","total_cost_usd":0.3,"duration_ms":5000}', encoding="utf-8"
    )

    listing = handles.list_sessions.fn()  # type: ignore[attr-defined]
    assert [session["id"] for session in listing["sessions"]] == ["alpha"]
    assert listing["summary"]["counts"]["completed"] == 1

    result = handles.session_result.fn("alpha")  # type: ignore[attr-defined]
    assert result["result"] == "ok"
    assert result["cost_usd"] == pytest.approx(0.3)
    assert result["duration_seconds"] == pytest.approx(5)

    with pytest.raises(ValueError):
        handles.session_result.fn("missing")  # type: ignore[attr-defined]


def test_stop_session_unknown_and_finished(handles, store) -> None:
    _finished(store, "alpha")

    missing = asyncio.run(handles.stop_session.fn("ghost"))  # type: ignore[attr-defined]
    finished = asyncio.run(handles.stop_session.fn("alpha"))  # type: ignore[attr-defined]

    assert missing == {"session_id": "ghost", "status": "not_found"}
    assert finished["status"] == "completed"
    assert finished["termination_uncertain"] is False


def test_clean_sessions(handles, store) -> None:
    _finished(store, "alpha")
    pending = SessionRecord(id="waiting", prompt="p")
    store.put(pending)

    report = handles.clean_sessions.fn()  # type: ignore[attr-defined]

    assert report["cleaned"] == ["alpha"]
    assert report["skipped"] == ["waiting"]
    assert [record.id for record in store.list()] == ["waiting"]
