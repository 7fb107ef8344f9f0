"""FastMCP server bootstrap for Hydra sessions."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from fastmcp import Context, FastMCP

from . import __version__
from .config import SessionSettings, get_settings
from .engine import EstimateParams, summarize_store
from .history import SprintHistory
from .storage import SessionStore, SessionStoreError, create_store
from .tools import register_tools
from .worker import WorkerNotFoundError, WorkerRunner

FILE_HANDLER_NAME = "hydra-sessions-file"


def configure_logging(level: str, log_file: Path | None = None) -> None:
    """Configure root logging, optionally mirroring records into ``log_file``."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )
    if log_file is None:
        return

    root = logging.getLogger()
    for handler in list(root.handlers):
        if handler.get_name() == FILE_HANDLER_NAME:
            root.removeHandler(handler)
            handler.close()
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
    except OSError as exc:
        logging.getLogger(__name__).warning(
            "Cannot open log file", extra={"path": str(log_file), "error": str(exc)}
        )
        return
    file_handler.set_name(FILE_HANDLER_NAME)
    file_handler.setFormatter(
        logging.Formatter("[%(asctime)s] [%(levelname)s] %(name)s: %(message)s")
    )
    root.addHandler(file_handler)


def _run_sync(coro):
    """Execute an async coroutine on a dedicated event loop."""

    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def create_server(
    settings: Optional[SessionSettings] = None,
    worker_runner: WorkerRunner | None = None,
    store: SessionStore | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server with the status resource and session tools."""

    settings = settings or get_settings()
    store = store or create_store(settings)
    history = SprintHistory(settings.resolved_history_path)

    worker_metadata = {
        "available": False,
        "path": settings.worker_path,
        "version": None,
        "error": None,
    }
    if worker_runner is None:
        try:
            worker_runner = WorkerRunner(
                settings.worker_path,
                project_dir=settings.project_dir,
                permission_mode=settings.permission_mode,
            )
        except WorkerNotFoundError as exc:
            worker_metadata["error"] = str(exc)
            worker_runner = None
    if worker_runner is not None:
        worker_metadata["available"] = True
        worker_metadata["path"] = str(worker_runner.executable)
        try:
            version_result = _run_sync(worker_runner.version())
        except OSError as exc:
            worker_metadata["error"] = str(exc)
        else:
            if version_result.ok:
                worker_metadata["version"] = version_result.stdout.strip()
            else:
                worker_metadata["error"] = (
                    version_result.stderr.strip()
                    or f"Worker version command failed with exit code {version_result.returncode}"
                )

    server = FastMCP(
        name="Hydra Sessions",
        version=__version__,
        instructions=(
            "Hydra Sessions runs batches of worker CLI sessions in parallel under a "
            "concurrency ceiling and per-session timeout, and reports measured cost "
            "and duration. Use the provided tools to run, inspect, stop and clean sessions."
        ),
    )

    handles = register_tools(
        server,
        settings=settings,
        store=store,
        worker_runner=worker_runner,
        history=history,
    )
    estimate_params = EstimateParams(
        overhead_ratio=settings.overhead_ratio,
        cost_per_token=settings.cost_per_token,
    )

    @server.resource(
        "resource://hydra-sessions/status",
        name="hydra_sessions_status",
        title="Hydra Sessions Status",
        description="Current session counts, measured totals and runtime configuration.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing stored sessions."""

        storage_error = None
        sessions_preview: list[dict] = []
        summary = None
        try:
            records, batch_summary = summarize_store(store, params=estimate_params)
            summary = batch_summary.to_dict()
            sessions_preview = [
                {"session_id": record.id, "status": record.display_status, "batch_id": record.batch_id}
                for record in records[-5:]
            ]
        except SessionStoreError as exc:
            storage_error = str(exc)

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "worker": {"default_model": settings.default_model, **worker_metadata},
            "limits": {
                "max_parallel": settings.max_parallel,
                "session_timeout": settings.session_timeout,
                "grace_seconds": settings.grace_seconds,
            },
            "storage": {
                "backend": settings.store_backend,
                "sessions_dir": str(settings.sessions_dir),
                "error": storage_error,
            },
            "sessions": {
                "preview": sessions_preview,
                "summary": summary,
                "active_batches": len(handles.active_schedulers),
            },
            "request_id": getattr(context, "request_id", None),
        }
        return json.dumps(payload)

    setattr(server, "worker_runner", worker_runner)
    setattr(server, "worker_metadata", worker_metadata)
    setattr(server, "session_store", store)
    setattr(server, "sprint_history", history)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the Hydra sessions MCP server."""

    settings = get_settings()
    configure_logging(settings.log_level, log_file=settings.resolved_log_file)

    server = create_server(settings)
    logging.getLogger(__name__).info(
        "Launching Hydra sessions MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "store_backend": settings.store_backend,
            "worker_available": getattr(server, "worker_metadata", {}).get("available"),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
