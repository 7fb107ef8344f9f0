"""Storage abstractions for Hydra sessions."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .base import SessionNotFoundError, SessionStore, SessionStoreError, StoreUnavailableError
from .chroma import ChromaSessionStore
from .files import FileSessionStore
from .models import (
    InvalidTransitionError,
    SessionRecord,
    SessionStatus,
    TERMINAL_STATUSES,
    WorkerArtifact,
    parse_artifact,
)

if TYPE_CHECKING:
    from ..config import SessionSettings


def create_store(settings: "SessionSettings") -> SessionStore:
    """Build the session store selected by ``settings.store_backend``."""

    if settings.store_backend == "chroma":
        store = ChromaSessionStore(
            settings.chroma_persist_path,
            artifacts_dir=settings.sessions_dir,
        )
        store.ping()
        return store
    return FileSessionStore(settings.sessions_dir)


__all__ = [
    "ChromaSessionStore",
    "FileSessionStore",
    "InvalidTransitionError",
    "SessionNotFoundError",
    "SessionRecord",
    "SessionStatus",
    "SessionStore",
    "SessionStoreError",
    "StoreUnavailableError",
    "TERMINAL_STATUSES",
    "WorkerArtifact",
    "create_store",
    "parse_artifact",
]
