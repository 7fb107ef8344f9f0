"""Session store contract shared by the storage backends."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from .models import SessionRecord


class SessionStoreError(RuntimeError):
    """Raised when a session record cannot be read or written."""


class SessionNotFoundError(SessionStoreError):
    """Raised when no record exists for the requested session id."""


class StoreUnavailableError(SessionStoreError):
    """Raised when a storage backend cannot be constructed."""


class SessionStore(Protocol):
    """Keyed, durable storage for session records and their output artifacts.

    Every operation is atomic per record: readers observe either the previous
    complete record or the new one, never a partial write.
    """

    def put(self, record: SessionRecord) -> None:
        ...

    def get(self, session_id: str) -> SessionRecord:
        ...

    def list(self, *, batch_id: str | None = None) -> list[SessionRecord]:
        ...

    def delete(self, session_id: str) -> None:
        ...

    def artifact_path(self, session_id: str) -> Path:
        ...

    def read_artifact(self, session_id: str) -> bytes | None:
        ...


def read_artifact_file(path: Path) -> bytes | None:
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise SessionStoreError(f"Cannot read artifact {path}: {exc}") from exc


def remove_artifact_file(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        return
    except OSError as exc:
        raise SessionStoreError(f"Cannot remove artifact {path}: {exc}") from exc


__all__ = [
    "SessionNotFoundError",
    "SessionStore",
    "SessionStoreError",
    "StoreUnavailableError",
    "read_artifact_file",
    "remove_artifact_file",
]
