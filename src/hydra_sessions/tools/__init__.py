"""Tool registration for the Hydra sessions MCP server."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from fastmcp import Context, FastMCP

from ..config import SessionSettings
from ..engine import (
    EstimateParams,
    Reaper,
    Scheduler,
    load_artifact,
    stop_session,
    summarize_store,
)
from ..history import HistoryError, SprintHistory, sprint_from_report
from ..storage import SessionNotFoundError, SessionStore
from ..tasks import BatchValidationError, validate_batch
from ..worker import ProcessProbe, WorkerRunner

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    run_batch: Any
    list_sessions: Any
    session_result: Any
    stop_session: Any
    clean_sessions: Any
    sprint_history: Any
    active_schedulers: list[Scheduler] = field(default_factory=list)


def register_tools(
    server: FastMCP,
    *,
    settings: SessionSettings,
    store: SessionStore,
    worker_runner: WorkerRunner | None,
    history: SprintHistory | None = None,
    probe: ProcessProbe | None = None,
) -> ToolHandles:
    """Register the session orchestration tools on the server."""

    probe = probe or ProcessProbe()
    active_schedulers: list[Scheduler] = []
    estimate_params = EstimateParams(
        overhead_ratio=settings.overhead_ratio,
        cost_per_token=settings.cost_per_token,
    )

    async def _run_batch(
        tasks: list[dict[str, Any]],
        *,
        max_parallel: int | None = None,
        model: str | None = None,
        budget: float | None = None,
        goal: str | None = None,
        record_history: bool = True,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Run a batch of worker sessions to completion and return the report."""

        if worker_runner is None:
            raise RuntimeError("Worker runner is unavailable; cannot run sessions")
        try:
            specs = validate_batch(tasks)
        except BatchValidationError as exc:
            raise ValueError("; ".join(exc.problems)) from exc

        scheduler = Scheduler(settings, store=store, runner=worker_runner, probe=probe)
        active_schedulers.append(scheduler)
        try:
            report = await scheduler.submit(specs, ceiling=max_parallel, model=model, budget=budget)
        finally:
            active_schedulers.remove(scheduler)

        payload = report.to_dict()
        if record_history and history is not None:
            sprint = sprint_from_report(
                report,
                store=store,
                prompts={spec.id: spec.prompt for spec in specs},
                goal=goal,
            )
            try:
                payload["sprint_id"] = history.add(sprint).id
            except HistoryError as exc:
                _emit_log(context, "warning", "Sprint history not recorded", extra={"error": str(exc)})

        _emit_log(
            context,
            "info",
            "Batch finished",
            extra={
                "batch_id": report.batch_id,
                "tasks": len(specs),
                "completed": report.summary.counts.completed,
            },
        )
        return payload

    def _list_sessions(
        batch_id: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """List stored sessions with batch totals."""

        records, summary = summarize_store(store, batch_id=batch_id, params=estimate_params)
        _emit_log(context, "debug", "Listing sessions", extra={"count": len(records)})
        return {
            "sessions": [record.model_dump(mode="json") for record in records],
            "summary": summary.to_dict(),
        }

    def _session_result(session_id: str, context: Context | None = None) -> dict[str, Any]:
        """Return a session's record together with its parsed result, cost and duration."""

        try:
            record = store.get(session_id)
        except SessionNotFoundError as exc:
            raise ValueError(f"Unknown session '{session_id}'") from exc
        artifact = load_artifact(store, session_id)
        payload: dict[str, Any] = {
            "session": record.model_dump(mode="json"),
            "result": None,
            "cost_usd": None,
            "duration_seconds": None,
        }
        if artifact is not None:
            payload.update(
                {
                    "result": artifact.result if artifact.structured else artifact.raw[-2000:],
                    "cost_usd": artifact.cost_usd,
                    "duration_seconds": artifact.duration_seconds,
                    "success_marker": artifact.success_marker,
                }
            )
        _emit_log(context, "debug", "Fetched session result", extra={"session_id": session_id})
        return payload

    async def _stop_session(session_id: str, context: Context | None = None) -> dict[str, Any]:
        """Stop a running session; stopping an unknown or finished session is a no-op."""

        for scheduler in active_schedulers:
            if scheduler.stop(session_id):
                _emit_log(context, "info", "Stop requested", extra={"session_id": session_id})
                return {"session_id": session_id, "status": "stopping"}

        record = await stop_session(session_id, store=store, settings=settings, probe=probe)
        if record is None:
            return {"session_id": session_id, "status": "not_found"}
        _emit_log(
            context,
            "info",
            "Stopped session",
            extra={"session_id": session_id, "status": record.display_status},
        )
        return {
            "session_id": session_id,
            "status": record.display_status,
            "termination_uncertain": record.termination_uncertain,
        }

    def _clean_sessions(
        session_ids: list[str] | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Delete finished sessions and reclassify stale ones."""

        reaper = Reaper(store, probe=probe, stale_threshold=settings.stale_threshold)
        report = reaper.reap(session_ids or None)
        _emit_log(
            context,
            "info",
            "Cleaned sessions",
            extra={"cleaned": len(report.cleaned), "stale": len(report.stale)},
        )
        return {
            "cleaned": report.cleaned,
            "stale": report.stale,
            "skipped": report.skipped,
            "errors": report.errors,
        }

    def _sprint_history(limit: int = 10, context: Context | None = None) -> dict[str, Any]:
        """Return recent sprints and cumulative statistics."""

        if history is None:
            raise RuntimeError("Sprint history is not configured")
        try:
            sprints = history.list(limit)
            stats = history.stats()
        except HistoryError as exc:
            raise RuntimeError(str(exc)) from exc
        return {
            "sprints": [sprint.model_dump(mode="json") for sprint in sprints],
            **stats,
        }

    tool_run_batch = server.tool(
        name="run_batch",
        description=(
            "Run a batch of worker CLI sessions in parallel. Each task needs an id and a "
            "prompt; model and budget may be overridden per task. Returns per-task status "
            "with measured cost and duration totals plus labelled efficiency estimates."
        ),
        annotations={
            "safety": {
                "level": "caution",
                "notes": "Workers run with the configured permission mode inside the project directory",
            }
        },
    )(_run_batch)

    tool_list_sessions = server.tool(
        name="list_sessions",
        description="List stored sessions (optionally for one batch) with status counts and totals.",
    )(_list_sessions)

    tool_session_result = server.tool(
        name="session_result",
        description="Fetch one session's result text, cost and duration.",
    )(_session_result)

    tool_stop_session = server.tool(
        name="stop_session",
        description="Stop a running session with SIGTERM, escalating to SIGKILL after the grace period.",
    )(_stop_session)

    tool_clean_sessions = server.tool(
        name="clean_sessions",
        description="Remove finished session records and mark abandoned ones as failed(stale).",
    )(_clean_sessions)

    tool_sprint_history = server.tool(
        name="sprint_history",
        description="Show recent sprint history entries and cumulative cost statistics.",
    )(_sprint_history)

    return ToolHandles(
        run_batch=tool_run_batch,
        list_sessions=tool_list_sessions,
        session_result=tool_session_result,
        stop_session=tool_stop_session,
        clean_sessions=tool_clean_sessions,
        sprint_history=tool_sprint_history,
        active_schedulers=active_schedulers,
    )


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Log through the MCP request context when it carries a logger, else the module logger."""

    payload = extra or {}
    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        log_method = getattr(ctx_logger, level, None) if ctx_logger is not None else None
        if callable(log_method):
            log_method(message, extra=payload)
            return
    getattr(logger, level, logger.info)(message, extra=payload)


__all__ = ["ToolHandles", "register_tools"]
