from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any

import pytest

from hydra_sessions.storage import (
    ChromaSessionStore,
    SessionNotFoundError,
    SessionRecord,
    SessionStatus,
    SessionStoreError,
)


class StubCollection:
    def __init__(self) -> None:
        self.records: dict[str, tuple[str, dict[str, Any]]] = {}

    def upsert(self, *, documents, metadatas, ids) -> None:  # type: ignore[override]
        for document, metadata, record_id in zip(documents, metadatas, ids):
            self.records[record_id] = (document, dict(metadata))

    def get(self, *, ids=None, where=None, limit=None):  # type: ignore[override]
        items = [(key, value) for key, value in self.records.items() if ids is None or key in ids]
        if where:
            for key, expected in where.items():
                items = [item for item in items if item[1][1].get(key) == expected]
        return {
            "ids": [key for key, _ in items],
            "documents": [value[0] for _, value in items],
            "metadatas": [value[1] for _, value in items],
        }

    def delete(self, *, ids) -> None:  # type: ignore[override]
        for record_id in ids:
            self.records.pop(record_id, None)


class StubClient:
    def __init__(self) -> None:
        self.collection = StubCollection()

    def get_or_create_collection(self, name: str) -> StubCollection:
        return self.collection


def _store(tmp_path: Path, client: StubClient | None = None) -> ChromaSessionStore:
    client = client or StubClient()
    return ChromaSessionStore(
        tmp_path / "chroma",
        artifacts_dir=tmp_path / "artifacts",
        client_factory=lambda: client,
        clock=lambda: datetime.fromisoformat("2025-01-01T00:00:00+00:00"),
    )


def test_put_get_and_metadata(tmp_path: Path) -> None:
    client = StubClient()
    store = _store(tmp_path, client)
    store.put(SessionRecord(id="s1", prompt="p", batch_id="batch-1"))

    assert store.ping()
    assert store.get("s1").prompt == "p"
    _, metadata = client.collection.records["s1"]
    assert metadata == {
        "session_id": "s1",
        "status": "pending",
        "batch_id": "batch-1",
        "updated_at": "2025-01-01T00:00:00+00:00",
    }


def test_list_filters_by_batch_and_sorts(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.put(SessionRecord(id="b", prompt="p", batch_id="x"))
    store.put(SessionRecord(id="a", prompt="p", batch_id="x"))
    store.put(SessionRecord(id="c", prompt="p", batch_id="y"))

    assert [record.id for record in store.list(batch_id="x")] == ["a", "b"]
    assert [record.id for record in store.list()] == ["a", "b", "c"]


def test_corrupt_document_is_skipped_in_list(tmp_path: Path) -> None:
    client = StubClient()
    store = _store(tmp_path, client)
    store.put(SessionRecord(id="good", prompt="p"))
    client.collection.records["bad"] = ("{broken", {"batch_id": ""})

    with pytest.raises(SessionStoreError):
        store.get("bad")
    assert [record.id for record in store.list()] == ["good"]


def test_delete_removes_artifact(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.put(SessionRecord(id="s1", prompt="p"))
    store.artifact_path("s1").write_text("{}", encoding="utf-8")

    store.delete("s1")

    assert not store.artifact_path("s1").exists()
    with pytest.raises(SessionNotFoundError):
        store.get("s1")
    with pytest.raises(SessionNotFoundError):
        store.delete("s1")


def test_status_updates_replace_previous_document(tmp_path: Path) -> None:
    store = _store(tmp_path)
    record = SessionRecord(id="s1", prompt="p")
    store.put(record)
    record.mark_running(pid=9, now=datetime.fromisoformat("2025-01-01T00:00:00+00:00"))
    store.put(record)

    assert store.get("s1").status is SessionStatus.RUNNING
    assert len(store.list()) == 1
