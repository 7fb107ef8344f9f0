"""JSON-file session store.

One ``<id>.json`` document per session plus an ``<id>.output`` artifact in the
same directory. Writes go through a temporary file and ``os.replace`` so that
concurrent readers never observe a torn record; there is no lock spanning
multiple ids.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from .base import (
    SessionNotFoundError,
    SessionStoreError,
    read_artifact_file,
    remove_artifact_file,
)
from .models import SessionRecord, validate_session_id

logger = logging.getLogger(__name__)

RECORD_SUFFIX = ".json"
ARTIFACT_SUFFIX = ".output"


class FileSessionStore:
    """Persist session records as individual JSON files under ``root``."""

    def __init__(self, root: Path) -> None:
        self._root = Path(root)
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise SessionStoreError(f"Cannot create sessions directory {self._root}: {exc}") from exc

    @property
    def root(self) -> Path:
        return self._root

    def _record_path(self, session_id: str) -> Path:
        return self._root / f"{validate_session_id(session_id)}{RECORD_SUFFIX}"

    def artifact_path(self, session_id: str) -> Path:
        return self._root / f"{validate_session_id(session_id)}{ARTIFACT_SUFFIX}"

    def put(self, record: SessionRecord) -> None:
        path = self._record_path(record.id)
        payload = record.model_dump_json(indent=2)
        fd, tmp_name = tempfile.mkstemp(dir=self._root, prefix=f".{record.id}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
        except OSError as exc:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise SessionStoreError(f"Cannot write session '{record.id}': {exc}") from exc

    def get(self, session_id: str) -> SessionRecord:
        path = self._record_path(session_id)
        try:
            payload = path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise SessionNotFoundError(f"Session '{session_id}' not found") from exc
        except OSError as exc:
            raise SessionStoreError(f"Cannot read session '{session_id}': {exc}") from exc
        try:
            return SessionRecord.model_validate_json(payload)
        except ValidationError as exc:
            raise SessionStoreError(f"Corrupt record for session '{session_id}': {exc}") from exc

    def list(self, *, batch_id: str | None = None) -> list[SessionRecord]:
        records: list[SessionRecord] = []
        for path in sorted(self._root.glob(f"*{RECORD_SUFFIX}")):
            if path.name.startswith("."):
                continue
            session_id = path.name[: -len(RECORD_SUFFIX)]
            try:
                record = self.get(session_id)
            except SessionNotFoundError:
                continue
            except SessionStoreError as exc:
                logger.warning("Skipping unreadable session record", extra={"path": str(path), "error": str(exc)})
                continue
            if batch_id is None or record.batch_id == batch_id:
                records.append(record)
        return records

    def delete(self, session_id: str) -> None:
        path = self._record_path(session_id)
        try:
            path.unlink()
        except FileNotFoundError as exc:
            raise SessionNotFoundError(f"Session '{session_id}' not found") from exc
        except OSError as exc:
            raise SessionStoreError(f"Cannot delete session '{session_id}': {exc}") from exc
        remove_artifact_file(self.artifact_path(session_id))

    def read_artifact(self, session_id: str) -> bytes | None:
        return read_artifact_file(self.artifact_path(session_id))


__all__ = ["FileSessionStore"]
