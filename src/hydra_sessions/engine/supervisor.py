"""Per-session supervision of one worker process.

A ``Supervisor`` owns its worker from spawn to terminal status. Exit is
detected through the asyncio process handle; every tick (``liveness_interval``)
the supervisor also checks its deadline, its own stop request and the shared
cancellation token, so a hung worker never delays any other session.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from ..config import SessionSettings
from ..storage import (
    SessionNotFoundError,
    SessionRecord,
    SessionStatus,
    SessionStore,
    SessionStoreError,
    WorkerArtifact,
    parse_artifact,
)
from ..worker import ProcessProbe, WorkerRunner, WorkerRunnerError, terminate_pid, terminate_process

logger = logging.getLogger(__name__)


class SessionConflictError(RuntimeError):
    """Raised when a session id is already live."""


class CancellationToken:
    """Shared shutdown signal observed by every supervisor of a scheduler."""

    def __init__(self) -> None:
        self._cancelled = False
        self._event: asyncio.Event | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True
        if self._event is not None:
            self._event.set()

    async def wait(self) -> None:
        if self._event is None:
            self._event = asyncio.Event()
            if self._cancelled:
                self._event.set()
        await self._event.wait()


def resolve_exit_status(
    exit_code: int | None,
    artifact: WorkerArtifact | None,
) -> tuple[SessionStatus, str | None]:
    """Map an observed exit to a terminal status and failure reason.

    Exit code 0 means success and any other observed code means failure. When
    no exit code could be observed (the orchestrator that owned the process
    is gone) the worker's own success marker in its artifact decides.
    """

    if exit_code == 0:
        return SessionStatus.COMPLETED, None
    if exit_code is None:
        if artifact is not None and artifact.success_marker:
            return SessionStatus.COMPLETED, None
        return SessionStatus.FAILED, "unknown"
    if exit_code < 0:
        return SessionStatus.FAILED, f"signal {-exit_code}"
    return SessionStatus.FAILED, f"exit code {exit_code}"


def load_artifact(store: SessionStore, session_id: str) -> WorkerArtifact | None:
    try:
        raw = store.read_artifact(session_id)
    except SessionStoreError as exc:
        logger.warning("Cannot read session artifact", extra={"session_id": session_id, "error": str(exc)})
        return None
    if raw is None:
        return None
    return parse_artifact(raw)


def reconcile_orphan(record: SessionRecord, *, store: SessionStore, now: datetime) -> SessionRecord:
    """Finalize a ``running`` record whose process died without an owner to observe it."""

    status, reason = resolve_exit_status(None, load_artifact(store, record.id))
    record.finish(
        status,
        now=now,
        reason=reason,
        artifact_ref=str(store.artifact_path(record.id)),
    )
    store.put(record)
    logger.info(
        "Reconciled orphaned session",
        extra={"session_id": record.id, "status": record.display_status},
    )
    return record


class Supervisor:
    """Own one worker process from launch to terminal status."""

    def __init__(
        self,
        record: SessionRecord,
        *,
        store: SessionStore,
        runner: WorkerRunner,
        settings: SessionSettings,
        probe: ProcessProbe | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        self.record = record
        self._store = store
        self._runner = runner
        self._settings = settings
        self._probe = probe or ProcessProbe()
        self._cancel_token = cancel_token
        self._process: asyncio.subprocess.Process | None = None
        self._stop_event = asyncio.Event()
        self._requested: SessionStatus | None = None
        self._done = False
        self.store_error: str | None = None
        self.error: str | None = None

    @property
    def session_id(self) -> str:
        return self.record.id

    @property
    def done(self) -> bool:
        return self._done

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    def _guard_duplicate(self) -> None:
        try:
            existing = self._store.get(self.session_id)
        except SessionNotFoundError:
            return
        if existing.status is SessionStatus.PENDING:
            raise SessionConflictError(f"Session {self.session_id} is already being started")
        if existing.status is SessionStatus.RUNNING:
            if self._probe.is_alive(existing.pid):
                raise SessionConflictError(
                    f"Session {self.session_id} already running (PID: {existing.pid})"
                )
            reconcile_orphan(existing, store=self._store, now=self._probe.now())

    def _finalized_elsewhere(self) -> SessionRecord | None:
        """This session's stored record when another actor already made it terminal."""

        try:
            current = self._store.get(self.session_id)
        except SessionStoreError:
            return None
        # created_at is stamped per launch, so it tells this attempt from a replaced one.
        if current.is_terminal and current.created_at == self.record.created_at:
            return current
        return None

    async def launch(self) -> asyncio.subprocess.Process:
        """Spawn the worker and mark the session running.

        Raises ``SessionConflictError`` when the id is already live and
        ``WorkerRunnerError`` when the worker cannot be spawned (the session
        is then recorded as failed).
        """

        self._guard_duplicate()
        self.record.created_at = self._probe.now()
        self._store.put(self.record)

        try:
            process = await self._runner.start(
                self.session_id,
                self.record.prompt,
                output_path=self._store.artifact_path(self.session_id),
                model=self.record.model,
                budget=self.record.budget,
            )
        except WorkerRunnerError as exc:
            self.error = str(exc)
            self._write_terminal(SessionStatus.FAILED, reason=f"spawn error: {exc}")
            self._done = True
            raise

        self._process = process
        finalized = self._finalized_elsewhere()
        if finalized is not None:
            logger.warning(
                "Session finalized during spawn, terminating worker",
                extra={"session_id": self.session_id, "status": finalized.display_status, "pid": process.pid},
            )
            await terminate_process(process, grace_seconds=self._settings.grace_seconds)
            self.record = finalized
            self._done = True
            return process

        self.record.mark_running(pid=process.pid, now=self._probe.now())
        try:
            self._store.put(self.record)
        except SessionStoreError as exc:
            self.store_error = str(exc)
            logger.error(
                "Cannot persist running session",
                extra={"session_id": self.session_id, "error": str(exc)},
            )
        logger.info(
            "Started session",
            extra={
                "session_id": self.session_id,
                "pid": process.pid,
                "model": self.record.model,
                "budget": self.record.budget,
            },
        )
        return process

    def check_deadline(self) -> bool:
        """Request timeout termination once the session outlives ``session_timeout``."""

        if self._done or self._requested is not None:
            return False
        if self.record.status is not SessionStatus.RUNNING or self.record.started_at is None:
            return False
        elapsed = (self._probe.now() - self.record.started_at).total_seconds()
        if elapsed <= self._settings.session_timeout:
            return False
        logger.warning(
            "Session exceeded timeout, killing",
            extra={
                "session_id": self.session_id,
                "elapsed": round(elapsed, 1),
                "timeout": self._settings.session_timeout,
            },
        )
        self._requested = SessionStatus.TIMED_OUT
        self._stop_event.set()
        return True

    def stop(self) -> bool:
        """Request a graceful-then-forced stop; repeated or late calls are no-ops."""

        if self._done or self._requested is not None:
            return False
        self._requested = SessionStatus.STOPPED
        self._stop_event.set()
        return True

    async def run(self) -> SessionRecord:
        """Supervise the launched process until the session is terminal."""

        if self._process is None:
            raise RuntimeError(f"Session {self.session_id} has not been launched")
        if self._done:
            return self.record
        process = self._process

        exit_wait = asyncio.ensure_future(process.wait())
        stop_wait = asyncio.ensure_future(self._stop_event.wait())
        waiters: set[asyncio.Future] = {exit_wait, stop_wait}
        cancel_wait: asyncio.Future | None = None
        if self._cancel_token is not None:
            cancel_wait = asyncio.ensure_future(self._cancel_token.wait())
            waiters.add(cancel_wait)

        try:
            while True:
                await asyncio.wait(
                    waiters,
                    timeout=self._tick_timeout(),
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if exit_wait.done():
                    self._finish_exited(exit_wait.result())
                    break
                if cancel_wait is not None and cancel_wait.done():
                    self.stop()
                self.check_deadline()
                if self._requested is not None:
                    await self._terminate(self._requested)
                    break
        except asyncio.CancelledError:
            if not self.record.is_terminal:
                logger.warning("Supervision cancelled, stopping worker", extra={"session_id": self.session_id})
                await self._terminate(self._requested or SessionStatus.STOPPED)
            raise
        finally:
            for waiter in waiters:
                if not waiter.done():
                    waiter.cancel()
            self._done = True
        return self.record

    def _tick_timeout(self) -> float:
        interval = self._settings.liveness_interval
        if self._requested is not None or self.record.started_at is None:
            return interval
        elapsed = (self._probe.now() - self.record.started_at).total_seconds()
        remaining = self._settings.session_timeout - elapsed
        return max(min(interval, remaining), 0.01)

    def _finish_exited(self, returncode: int) -> None:
        artifact = load_artifact(self._store, self.session_id)
        status, reason = resolve_exit_status(returncode, artifact)
        self._write_terminal(status, reason=reason, exit_code=returncode)

    async def _terminate(self, status: SessionStatus) -> None:
        assert self._process is not None
        outcome = await terminate_process(self._process, grace_seconds=self._settings.grace_seconds)
        self._write_terminal(
            status,
            exit_code=self._process.returncode,
            termination_uncertain=outcome.uncertain,
        )

    def _write_terminal(
        self,
        status: SessionStatus,
        *,
        reason: str | None = None,
        exit_code: int | None = None,
        termination_uncertain: bool = False,
    ) -> None:
        current = self._finalized_elsewhere()
        if current is not None:
            # Finalized by an out-of-process stop or the reaper; keep that outcome.
            self.record = current
            logger.info(
                "Session already finalized elsewhere",
                extra={"session_id": self.session_id, "status": current.display_status},
            )
            return

        self.record.finish(
            status,
            now=self._probe.now(),
            reason=reason,
            exit_code=exit_code,
            artifact_ref=str(self._store.artifact_path(self.session_id)),
            termination_uncertain=termination_uncertain,
        )
        try:
            self._store.put(self.record)
        except SessionStoreError as exc:
            self.store_error = str(exc)
            logger.error(
                "Cannot persist terminal session state",
                extra={"session_id": self.session_id, "status": status.value, "error": str(exc)},
            )

        log = logger.warning if status is not SessionStatus.COMPLETED else logger.info
        log(
            "Session finished",
            extra={
                "session_id": self.session_id,
                "status": self.record.display_status,
                "exit_code": exit_code,
                "termination_uncertain": termination_uncertain,
            },
        )


async def stop_session(
    session_id: str,
    *,
    store: SessionStore,
    settings: SessionSettings,
    probe: ProcessProbe | None = None,
) -> SessionRecord | None:
    """Stop a session owned by another orchestrator process.

    Returns ``None`` for unknown ids and the unchanged record when the session
    is already terminal.
    """

    probe = probe or ProcessProbe()
    try:
        record = store.get(session_id)
    except SessionNotFoundError:
        return None
    if record.is_terminal:
        return record

    uncertain = False
    if record.status is SessionStatus.RUNNING and record.pid:
        outcome = await terminate_pid(record.pid, probe=probe, grace_seconds=settings.grace_seconds)
        uncertain = outcome.uncertain

    current = store.get(session_id)
    if current.is_terminal:
        return current
    current.finish(
        SessionStatus.STOPPED,
        now=probe.now(),
        artifact_ref=str(store.artifact_path(session_id)),
        termination_uncertain=uncertain,
    )
    store.put(current)
    logger.info("Stopped session", extra={"session_id": session_id, "pid": record.pid})
    return current


__all__ = [
    "CancellationToken",
    "SessionConflictError",
    "Supervisor",
    "load_artifact",
    "reconcile_orphan",
    "resolve_exit_status",
    "stop_session",
]
