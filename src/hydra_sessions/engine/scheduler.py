"""Admission control for batches of worker sessions."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping
from uuid import uuid4

from ..config import SessionSettings
from ..storage import (
    SessionRecord,
    SessionStatus,
    SessionStore,
    SessionStoreError,
)
from ..tasks import BatchValidationError, TaskSpec, enhance_prompt, validate_batch
from ..worker import ProcessProbe, WorkerRunner, WorkerRunnerError
from .aggregator import BatchSummary, EstimateParams, aggregate
from .supervisor import CancellationToken, SessionConflictError, Supervisor, load_artifact

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[list[SessionRecord]], None]


@dataclass(slots=True)
class SessionOutcome:
    """Final state of one task of a batch."""

    session_id: str
    status: SessionStatus
    failure_reason: str | None = None
    record: SessionRecord | None = None
    error: str | None = None

    @property
    def display_status(self) -> str:
        if self.record is not None:
            return self.record.display_status
        if self.status is SessionStatus.FAILED and self.failure_reason:
            return f"failed:{self.failure_reason}"
        return self.status.value


@dataclass(slots=True)
class RejectedTask:
    session_id: str
    reason: str


@dataclass(slots=True)
class BatchReport:
    batch_id: str
    started_at: datetime
    ended_at: datetime
    outcomes: list[SessionOutcome]
    summary: BatchSummary
    rejected: list[RejectedTask] = field(default_factory=list)
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return not self.rejected and all(
            outcome.status is SessionStatus.COMPLETED for outcome in self.outcomes
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat(),
            "cancelled": self.cancelled,
            "outcomes": [
                {
                    "session_id": outcome.session_id,
                    "status": outcome.status.value,
                    "failure_reason": outcome.failure_reason,
                    "error": outcome.error,
                }
                for outcome in self.outcomes
            ],
            "rejected": [
                {"session_id": item.session_id, "reason": item.reason} for item in self.rejected
            ],
            "summary": self.summary.to_dict(),
        }


def new_batch_id() -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    return f"batch-{stamp}-{uuid4().hex[:6]}"


class Scheduler:
    """Launch tasks in submission order without exceeding a concurrency ceiling.

    One asyncio task per admitted session runs its ``Supervisor``; the
    scheduler only counts live sessions, waits for slots and waits for the
    batch to drain. A failing or timed-out session never aborts its siblings.
    """

    def __init__(
        self,
        settings: SessionSettings,
        *,
        store: SessionStore,
        runner: WorkerRunner,
        probe: ProcessProbe | None = None,
    ) -> None:
        self._settings = settings
        self._store = store
        self._runner = runner
        self._probe = probe or ProcessProbe()
        self._cancel_token = CancellationToken()
        self._supervisors: dict[str, Supervisor] = {}
        self._wakeup: asyncio.Event | None = None
        self._estimate_params = EstimateParams(
            overhead_ratio=settings.overhead_ratio,
            cost_per_token=settings.cost_per_token,
        )

    @property
    def cancelled(self) -> bool:
        return self._cancel_token.cancelled

    def validate_batch(self, tasks: Iterable[TaskSpec | Mapping[str, Any]]) -> list[TaskSpec]:
        return validate_batch(tasks)

    def cancel(self) -> None:
        """Stop every running session and admit nothing further. Idempotent."""

        if not self._cancel_token.cancelled:
            logger.warning("Cancellation requested, stopping all sessions", extra={"running": self.running_count()})
        self._cancel_token.cancel()
        self._wake()

    def stop(self, session_id: str) -> bool:
        """Stop one in-process session; unknown or finished ids are a no-op."""

        supervisor = self._supervisors.get(session_id)
        if supervisor is None:
            return False
        return supervisor.stop()

    def running_count(self, batch: Iterable[Supervisor] | None = None) -> int:
        supervisors = batch if batch is not None else self._supervisors.values()
        return sum(1 for supervisor in supervisors if not supervisor.done)

    def _wake(self) -> None:
        if self._wakeup is not None:
            self._wakeup.set()

    async def _wait_tick(self, interval: float) -> None:
        assert self._wakeup is not None
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass

    async def _supervise(self, supervisor: Supervisor) -> None:
        try:
            await supervisor.run()
        except Exception as exc:
            supervisor.error = str(exc)
            logger.exception("Supervisor crashed", extra={"session_id": supervisor.session_id})
        finally:
            self._wake()

    async def _wait_for_slot(self, batch: list[Supervisor], ceiling: int) -> None:
        announced = False
        while not self.cancelled:
            assert self._wakeup is not None
            self._wakeup.clear()
            if self.running_count(batch) < ceiling:
                return
            if not announced:
                logger.info("Reached max parallel, waiting for slots", extra={"max_parallel": ceiling})
                announced = True
            await self._wait_tick(self._settings.slot_poll_interval)

    def _snapshot(self, batch_id: str) -> list[SessionRecord] | None:
        try:
            return self._store.list(batch_id=batch_id)
        except SessionStoreError as exc:
            logger.warning("Cannot read batch progress", extra={"batch_id": batch_id, "error": str(exc)})
            return None

    async def _wait_all(
        self,
        batch: list[Supervisor],
        batch_id: str,
        on_progress: ProgressCallback | None,
    ) -> None:
        while True:
            assert self._wakeup is not None
            self._wakeup.clear()
            for supervisor in batch:
                supervisor.check_deadline()
            if on_progress is not None:
                snapshot = self._snapshot(batch_id)
                if snapshot is not None:
                    on_progress(snapshot)
            running = self.running_count(batch)
            if running == 0:
                return
            logger.info("Waiting for sessions to complete", extra={"batch_id": batch_id, "running": running})
            await self._wait_tick(self._settings.completion_poll_interval)

    def _build_record(
        self,
        spec: TaskSpec,
        *,
        batch_id: str,
        model: str | None,
        budget: float | None,
    ) -> SessionRecord:
        prompt = enhance_prompt(spec.prompt, enabled=self._settings.enhance_prompts and spec.enhance)
        return SessionRecord(
            id=spec.id,
            prompt=prompt,
            model=spec.model or model or self._settings.default_model,
            budget=spec.budget if spec.budget is not None else (
                budget if budget is not None else self._settings.default_budget
            ),
            batch_id=batch_id,
        )

    async def submit(
        self,
        tasks: Iterable[TaskSpec | Mapping[str, Any]],
        *,
        ceiling: int | None = None,
        model: str | None = None,
        budget: float | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> BatchReport:
        """Run a batch to completion and report every task's terminal status.

        Raises ``BatchValidationError`` before spawning anything when the batch
        is malformed; all other failures are reported per task.
        """

        specs = self.validate_batch(tasks)
        ceiling = ceiling if ceiling is not None else self._settings.max_parallel
        if ceiling < 1:
            raise BatchValidationError([f"Concurrency ceiling must be >= 1, got {ceiling}"])

        self._wakeup = asyncio.Event()
        batch_id = new_batch_id()
        started_at = self._probe.now()
        batch: list[Supervisor] = []
        tasks_by_id: dict[str, asyncio.Task] = {}
        outcomes: dict[str, SessionOutcome] = {}
        rejected: list[RejectedTask] = []

        logger.info(
            "Starting multi-session run",
            extra={
                "batch_id": batch_id,
                "tasks": len(specs),
                "model": model or self._settings.default_model,
                "budget": budget if budget is not None else self._settings.default_budget,
                "max_parallel": ceiling,
            },
        )

        try:
            for spec in specs:
                await self._wait_for_slot(batch, ceiling)
                if self.cancelled:
                    outcomes[spec.id] = SessionOutcome(
                        session_id=spec.id,
                        status=SessionStatus.STOPPED,
                        error="cancelled before admission",
                    )
                    continue

                record = self._build_record(spec, batch_id=batch_id, model=model, budget=budget)
                supervisor = Supervisor(
                    record,
                    store=self._store,
                    runner=self._runner,
                    settings=self._settings,
                    probe=self._probe,
                    cancel_token=self._cancel_token,
                )
                try:
                    await supervisor.launch()
                except SessionConflictError as exc:
                    logger.warning("Rejected duplicate session", extra={"session_id": spec.id, "error": str(exc)})
                    rejected.append(RejectedTask(session_id=spec.id, reason=str(exc)))
                    continue
                except WorkerRunnerError as exc:
                    outcomes[spec.id] = SessionOutcome(
                        session_id=spec.id,
                        status=supervisor.record.status,
                        failure_reason=supervisor.record.failure_reason,
                        record=supervisor.record,
                        error=str(exc),
                    )
                    continue
                except SessionStoreError as exc:
                    logger.error("Cannot admit session", extra={"session_id": spec.id, "error": str(exc)})
                    outcomes[spec.id] = SessionOutcome(
                        session_id=spec.id,
                        status=SessionStatus.FAILED,
                        failure_reason="store error",
                        error=str(exc),
                    )
                    continue

                batch.append(supervisor)
                self._supervisors[spec.id] = supervisor
                tasks_by_id[spec.id] = asyncio.create_task(self._supervise(supervisor))

            await self._wait_all(batch, batch_id, on_progress)
        except BaseException:
            # Every admitted worker is stopped before the error propagates.
            self.cancel()
            await asyncio.gather(*tasks_by_id.values(), return_exceptions=True)
            raise
        finally:
            for supervisor in batch:
                if self._supervisors.get(supervisor.session_id) is supervisor:
                    del self._supervisors[supervisor.session_id]

        await asyncio.gather(*tasks_by_id.values())

        for supervisor in batch:
            record = supervisor.record
            outcomes[supervisor.session_id] = SessionOutcome(
                session_id=supervisor.session_id,
                status=record.status,
                failure_reason=record.failure_reason,
                record=record,
                error=supervisor.store_error or supervisor.error,
            )

        rejected_ids = {item.session_id for item in rejected}
        ordered = [outcomes[spec.id] for spec in specs if spec.id not in rejected_ids]
        admitted = [outcome.record for outcome in ordered if outcome.record is not None]
        summary = aggregate(
            admitted,
            artifacts={record.id: load_artifact(self._store, record.id) for record in admitted},
            now=self._probe.now(),
            params=self._estimate_params,
        )
        report = BatchReport(
            batch_id=batch_id,
            started_at=started_at,
            ended_at=self._probe.now(),
            outcomes=ordered,
            summary=summary,
            rejected=rejected,
            cancelled=self.cancelled,
        )
        logger.info(
            "Multi-session complete",
            extra={
                "batch_id": batch_id,
                "tasks": len(specs),
                "completed": summary.counts.completed,
                "total_cost": summary.measured.total_cost_usd,
                "parallel_duration": summary.measured.parallel_seconds,
            },
        )
        return report

    async def start_one(
        self,
        task: TaskSpec | Mapping[str, Any],
        *,
        model: str | None = None,
        budget: float | None = None,
    ) -> BatchReport:
        return await self.submit([task], ceiling=1, model=model, budget=budget)


__all__ = [
    "BatchReport",
    "ProgressCallback",
    "RejectedTask",
    "Scheduler",
    "SessionOutcome",
    "new_batch_id",
]
