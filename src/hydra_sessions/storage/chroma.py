"""Chroma-based session store."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

from pydantic import ValidationError

from .base import (
    SessionNotFoundError,
    SessionStoreError,
    StoreUnavailableError,
    read_artifact_file,
    remove_artifact_file,
)
from .files import ARTIFACT_SUFFIX
from .models import SessionRecord, validate_session_id

logger = logging.getLogger(__name__)


class CollectionProtocol(Protocol):
    """Protocol for the minimal Chroma collection API used by the session store."""

    def upsert(
        self,
        *,
        documents: Iterable[str],
        metadatas: Iterable[dict[str, Any]],
        ids: Iterable[str],
    ) -> None:
        ...

    def get(
        self,
        *,
        ids: Iterable[str] | None = None,
        where: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> dict[str, list[Any]]:
        ...

    def delete(self, *, ids: Iterable[str]) -> None:
        ...


class ClientProtocol(Protocol):
    """Protocol for the minimal Chroma client API used by the session store."""

    def get_or_create_collection(self, name: str) -> CollectionProtocol:
        ...


class ChromaSessionStore:
    """Persist session records in a Chroma collection keyed by session id.

    Chroma upserts are atomic per id, which gives the same single-record
    guarantee as the file store. Artifacts remain plain files under
    ``artifacts_dir`` because workers stream their output straight to disk.
    """

    def __init__(
        self,
        path: Path,
        *,
        artifacts_dir: Path,
        collection_name: str = "hydra_sessions",
        client_factory: Callable[[], ClientProtocol] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._artifacts_dir = Path(artifacts_dir)
        self._collection_name = collection_name
        self._client_factory = client_factory or self._default_client_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._client: ClientProtocol | None = None
        self._collection: CollectionProtocol | None = None
        self._artifacts_dir.mkdir(parents=True, exist_ok=True)

    def _default_client_factory(self) -> ClientProtocol:
        try:
            import chromadb
        except ImportError as exc:  # pragma: no cover - depends on environment
            raise StoreUnavailableError(
                "chromadb package is not installed; install hydra-sessions with the chroma extra"
            ) from exc

        return chromadb.PersistentClient(path=str(self._path))

    def _ensure_collection(self) -> CollectionProtocol:
        if self._collection is None:
            client = self._client or self._client_factory()
            self._client = client
            self._collection = client.get_or_create_collection(self._collection_name)
        return self._collection

    def ping(self) -> bool:
        """Verify that the underlying collection can be obtained."""

        self._ensure_collection()
        return True

    def artifact_path(self, session_id: str) -> Path:
        return self._artifacts_dir / f"{validate_session_id(session_id)}{ARTIFACT_SUFFIX}"

    def _decode(self, session_id: str, document: str) -> SessionRecord:
        try:
            return SessionRecord.model_validate_json(document)
        except ValidationError as exc:
            raise SessionStoreError(f"Corrupt record for session '{session_id}': {exc}") from exc

    def put(self, record: SessionRecord) -> None:
        collection = self._ensure_collection()
        metadata = {
            "session_id": record.id,
            "status": record.status.value,
            "batch_id": record.batch_id or "",
            "updated_at": self._clock().isoformat(),
        }
        try:
            collection.upsert(
                documents=[record.model_dump_json()],
                metadatas=[metadata],
                ids=[record.id],
            )
        except Exception as exc:
            raise SessionStoreError(f"Cannot write session '{record.id}': {exc}") from exc

    def get(self, session_id: str) -> SessionRecord:
        collection = self._ensure_collection()
        try:
            result = collection.get(ids=[validate_session_id(session_id)])
        except Exception as exc:
            raise SessionStoreError(f"Cannot read session '{session_id}': {exc}") from exc
        documents = result.get("documents") or []
        if not documents:
            raise SessionNotFoundError(f"Session '{session_id}' not found")
        return self._decode(session_id, documents[0])

    def list(self, *, batch_id: str | None = None) -> list[SessionRecord]:
        collection = self._ensure_collection()
        filters = {"batch_id": batch_id} if batch_id else None
        try:
            result = collection.get(where=filters)
        except Exception as exc:
            raise SessionStoreError(f"Cannot list sessions: {exc}") from exc
        records: list[SessionRecord] = []
        for session_id, document in zip(result.get("ids", []), result.get("documents", [])):
            try:
                records.append(self._decode(session_id, document))
            except SessionStoreError as exc:
                logger.warning("Skipping unreadable session record", extra={"session_id": session_id, "error": str(exc)})
        records.sort(key=lambda record: record.id)
        return records

    def delete(self, session_id: str) -> None:
        # Raises SessionNotFoundError before touching anything.
        self.get(session_id)
        collection = self._ensure_collection()
        try:
            collection.delete(ids=[session_id])
        except Exception as exc:
            raise SessionStoreError(f"Cannot delete session '{session_id}': {exc}") from exc
        remove_artifact_file(self.artifact_path(session_id))

    def read_artifact(self, session_id: str) -> bytes | None:
        return read_artifact_file(self.artifact_path(session_id))


__all__ = ["ChromaSessionStore"]
