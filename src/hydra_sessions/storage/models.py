"""Data models for persistent session tracking."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


class SessionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        SessionStatus.COMPLETED,
        SessionStatus.FAILED,
        SessionStatus.TIMED_OUT,
        SessionStatus.STOPPED,
    }
)

_ALLOWED_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.PENDING: frozenset({SessionStatus.RUNNING, SessionStatus.FAILED, SessionStatus.STOPPED}),
    SessionStatus.RUNNING: TERMINAL_STATUSES,
}


class InvalidTransitionError(RuntimeError):
    """Raised when a status change would violate the session lifecycle."""


def validate_session_id(value: str) -> str:
    """Return ``value`` stripped, or raise ``ValueError`` if it cannot be used as a storage key."""

    normalized = value.strip() if isinstance(value, str) else ""
    if not normalized:
        raise ValueError("Session id must not be empty")
    if "/" in normalized or "\\" in normalized or normalized.startswith("."):
        raise ValueError(f"Session id '{normalized}' must not contain path separators or start with '.'")
    return normalized


class SessionRecord(BaseModel):
    """One task execution and its lifecycle state."""

    id: str = Field(..., description="Caller-supplied id, unique among live sessions.")
    prompt: str = Field(..., description="Opaque worker input.")
    model: str | None = None
    budget: float | None = None
    batch_id: str | None = None
    status: SessionStatus = SessionStatus.PENDING
    failure_reason: str | None = None
    pid: int | None = None
    exit_code: int | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None
    artifact_ref: str | None = None
    termination_uncertain: bool = False

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        return validate_session_id(value)

    @model_validator(mode="after")
    def _check_ended_at(self) -> "SessionRecord":
        if self.status.is_terminal and self.ended_at is None:
            raise ValueError(f"Terminal session '{self.id}' must carry ended_at")
        if not self.status.is_terminal and self.ended_at is not None:
            raise ValueError(f"Non-terminal session '{self.id}' must not carry ended_at")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def display_status(self) -> str:
        if self.status is SessionStatus.FAILED and self.failure_reason:
            return f"failed:{self.failure_reason}"
        return self.status.value

    def runtime(self, now: datetime) -> timedelta | None:
        """Elapsed run time; measured up to ``now`` while the session is still live."""

        if self.started_at is None:
            return None
        end = self.ended_at or now
        return end - self.started_at

    def _check_transition(self, target: SessionStatus) -> None:
        allowed = _ALLOWED_TRANSITIONS.get(self.status, frozenset())
        if target not in allowed:
            raise InvalidTransitionError(
                f"Session '{self.id}' cannot move from {self.status.value} to {target.value}"
            )

    def mark_running(self, *, pid: int, now: datetime) -> None:
        self._check_transition(SessionStatus.RUNNING)
        self.status = SessionStatus.RUNNING
        self.pid = pid
        self.started_at = now

    def finish(
        self,
        status: SessionStatus,
        *,
        now: datetime,
        reason: str | None = None,
        exit_code: int | None = None,
        artifact_ref: str | None = None,
        termination_uncertain: bool = False,
    ) -> None:
        """Move the session to a terminal status, stamping ``ended_at`` once."""

        self._check_transition(status)
        if not status.is_terminal:
            raise InvalidTransitionError(f"{status.value} is not a terminal status")
        self.status = status
        self.ended_at = now
        if self.started_at is None:
            self.started_at = now
        self.failure_reason = reason if status is SessionStatus.FAILED else None
        self.exit_code = exit_code
        if artifact_ref is not None:
            self.artifact_ref = artifact_ref
        self.termination_uncertain = termination_uncertain


@dataclass(slots=True)
class WorkerArtifact:
    """Parsed view of a worker's captured output."""

    raw: str
    structured: bool = False
    result: str | None = None
    cost_usd: float | None = None
    duration_ms: int | None = None
    success_marker: bool = False

    @property
    def duration_seconds(self) -> float | None:
        if self.duration_ms is None:
            return None
        return self.duration_ms / 1000


def _coerce_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _load_json_object(text: str) -> dict[str, Any] | None:
    try:
        document = json.loads(text)
    except ValueError:
        document = None
    if isinstance(document, dict):
        return document

    # Worker stderr is captured into the same stream; the result object is the last line.
    for line in reversed(text.strip().splitlines()):
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            document = json.loads(line)
        except ValueError:
            continue
        if isinstance(document, dict):
            return document
    return None


def parse_artifact(raw: bytes | str) -> WorkerArtifact:
    """Parse worker output into a ``WorkerArtifact``; unstructured output is kept raw."""

    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    document = _load_json_object(text)
    if document is None:
        return WorkerArtifact(raw=text)

    cost = _coerce_number(document.get("total_cost_usd", document.get("cost_usd")))
    duration = _coerce_number(document.get("duration_ms"))
    result = document.get("result", document.get("content"))
    return WorkerArtifact(
        raw=text,
        structured=True,
        result=result if isinstance(result, str) else (json.dumps(result) if result is not None else None),
        cost_usd=cost,
        duration_ms=int(duration) if duration is not None else None,
        success_marker=document.get("subtype") == "success" and document.get("is_error") is not True,
    )


__all__ = [
    "InvalidTransitionError",
    "SessionRecord",
    "SessionStatus",
    "TERMINAL_STATUSES",
    "WorkerArtifact",
    "parse_artifact",
    "validate_session_id",
]
