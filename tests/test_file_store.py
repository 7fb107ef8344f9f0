from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from hydra_sessions.storage import (
    FileSessionStore,
    SessionNotFoundError,
    SessionRecord,
    SessionStatus,
    SessionStoreError,
)

NOW = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _record(session_id: str, batch_id: str | None = None) -> SessionRecord:
    return SessionRecord(id=session_id, prompt=f"prompt {session_id}", batch_id=batch_id, created_at=NOW)


def test_put_and_get_roundtrip(tmp_path: Path) -> None:
    store = FileSessionStore(tmp_path)
    record = _record("alpha")
    record.mark_running(pid=123, now=NOW)
    store.put(record)

    loaded = store.get("alpha")
    assert loaded.status is SessionStatus.RUNNING
    assert loaded.pid == 123
    assert loaded.started_at == NOW
    assert (tmp_path / "alpha.json").exists()
    assert not [path for path in tmp_path.iterdir() if path.name.endswith(".tmp")]


def test_get_missing_raises(tmp_path: Path) -> None:
    store = FileSessionStore(tmp_path)
    with pytest.raises(SessionNotFoundError):
        store.get("missing")


def test_corrupt_record_only_affects_its_id(tmp_path: Path) -> None:
    store = FileSessionStore(tmp_path)
    store.put(_record("good"))
    (tmp_path / "bad.json").write_text("{not json", encoding="utf-8")

    with pytest.raises(SessionStoreError):
        store.get("bad")
    assert [record.id for record in store.list()] == ["good"]


def test_list_filters_by_batch(tmp_path: Path) -> None:
    store = FileSessionStore(tmp_path)
    store.put(_record("a", batch_id="batch-1"))
    store.put(_record("b", batch_id="batch-2"))
    store.put(_record("c", batch_id="batch-1"))

    assert [record.id for record in store.list(batch_id="batch-1")] == ["a", "c"]
    assert len(store.list()) == 3


def test_delete_removes_record_and_artifact(tmp_path: Path) -> None:
    store = FileSessionStore(tmp_path)
    store.put(_record("alpha"))
    store.artifact_path("alpha").write_text("output", encoding="utf-8")

    assert store.read_artifact("alpha") == b"output"
    store.delete("alpha")

    assert store.read_artifact("alpha") is None
    with pytest.raises(SessionNotFoundError):
        store.get("alpha")
    with pytest.raises(SessionNotFoundError):
        store.delete("alpha")


def test_put_overwrites_atomically(tmp_path: Path) -> None:
    store = FileSessionStore(tmp_path)
    record = _record("alpha")
    store.put(record)
    record.finish(SessionStatus.STOPPED, now=NOW)
    store.put(record)

    assert store.get("alpha").status is SessionStatus.STOPPED
    assert sorted(path.name for path in tmp_path.iterdir()) == ["alpha.json"]
