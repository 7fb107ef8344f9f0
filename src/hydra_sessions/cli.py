"""Command-line front end for the Hydra session orchestrator."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal

from . import __version__
from .config import SessionSettings, get_settings
from .dashboard import render_report, render_result, render_status
from .engine import (
    BatchReport,
    EstimateParams,
    Reaper,
    Scheduler,
    aggregate,
    load_artifact,
    stop_session,
    summarize_store,
)
from .history import HistoryError, SprintHistory, git_changed_files, sprint_from_report
from .server import configure_logging
from .storage import (
    SessionNotFoundError,
    SessionRecord,
    SessionStatus,
    SessionStore,
    SessionStoreError,
    StoreUnavailableError,
    create_store,
)
from .tasks import BatchValidationError, TaskLoadError, TaskSpec, load_tasks
from .worker import ProcessProbe, WorkerNotFoundError, WorkerRunner

logger = logging.getLogger(__name__)

EXIT_INTERRUPTED = 130


def load_store(settings: SessionSettings) -> SessionStore:
    try:
        return create_store(settings)
    except StoreUnavailableError as exc:
        print(f"Session store unavailable: {exc}")
        raise SystemExit(1)
    except SessionStoreError as exc:
        print(f"Session store error: {exc}")
        raise SystemExit(1)


def load_runner(settings: SessionSettings) -> WorkerRunner:
    try:
        return WorkerRunner(
            settings.worker_path,
            project_dir=settings.project_dir,
            permission_mode=settings.permission_mode,
        )
    except WorkerNotFoundError as exc:
        print(f"Missing worker executable: {exc}")
        raise SystemExit(1)


def _estimate_params(settings: SessionSettings) -> EstimateParams:
    return EstimateParams(overhead_ratio=settings.overhead_ratio, cost_per_token=settings.cost_per_token)


def _artifact_sizes(store: SessionStore, records: list[SessionRecord]) -> dict[str, int]:
    sizes: dict[str, int] = {}
    for record in records:
        path = store.artifact_path(record.id)
        if path.exists():
            sizes[record.id] = path.stat().st_size
    return sizes


async def _run_batch(
    scheduler: Scheduler,
    tasks: list[TaskSpec],
    *,
    ceiling: int | None,
    model: str | None,
    budget: float | None,
    on_progress=None,
) -> BatchReport:
    loop = asyncio.get_running_loop()
    handled: list[int] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, scheduler.cancel)
            handled.append(sig)
        except (NotImplementedError, RuntimeError):
            continue
    try:
        return await scheduler.submit(
            tasks,
            ceiling=ceiling,
            model=model,
            budget=budget,
            on_progress=on_progress,
        )
    finally:
        for sig in handled:
            loop.remove_signal_handler(sig)


def _report_artifacts(store: SessionStore, report: BatchReport) -> dict:
    return {
        outcome.session_id: load_artifact(store, outcome.session_id)
        for outcome in report.outcomes
        if outcome.record is not None
    }


def cmd_start(args: argparse.Namespace) -> None:
    settings = get_settings()
    store = load_store(settings)
    runner = load_runner(settings)
    scheduler = Scheduler(settings, store=store, runner=runner)

    try:
        task = TaskSpec(id=args.task_id, prompt=args.prompt)
    except ValueError as exc:
        print(f"Invalid task: {exc}")
        raise SystemExit(1)

    model = args.model or settings.default_model
    budget = args.budget if args.budget is not None else settings.default_budget
    print(f"Starting session: {task.id}")
    print(f"Model: {model} | Budget: ${budget:g}")
    report = asyncio.run(_run_batch(scheduler, [task], ceiling=1, model=model, budget=budget))

    for rejected in report.rejected:
        print(rejected.reason)
        raise SystemExit(1)
    outcome = report.outcomes[0]
    print(f"Session {outcome.session_id}: {outcome.display_status}")
    if outcome.error:
        print(f"Error: {outcome.error}")
    print(render_result(outcome.record, load_artifact(store, outcome.session_id)))
    if report.cancelled:
        raise SystemExit(EXIT_INTERRUPTED)


def cmd_run_multi(args: argparse.Namespace) -> None:
    settings = get_settings()
    try:
        tasks = load_tasks(args.tasks)
    except TaskLoadError as exc:
        print(f"Invalid task batch: {exc}")
        raise SystemExit(1)
    except BatchValidationError as exc:
        for problem in exc.problems:
            print(problem)
        raise SystemExit(1)

    store = load_store(settings)
    runner = load_runner(settings)
    scheduler = Scheduler(settings, store=store, runner=runner)
    params = _estimate_params(settings)

    model = args.model or settings.default_model
    budget = args.budget if args.budget is not None else settings.default_budget
    ceiling = args.max_parallel if args.max_parallel is not None else settings.max_parallel
    print(f"Starting {len(tasks)} task(s) with max {ceiling} parallel sessions...")
    print(f"Model: {model} | Budget: ${budget:g} | Timeout: {settings.session_timeout:g}s")
    print(f"Prompt enhancement: {'ENABLED' if settings.enhance_prompts else 'DISABLED'}")

    def show_progress(records: list[SessionRecord]) -> None:
        artifacts = {record.id: load_artifact(store, record.id) for record in records}
        summary = aggregate(records, artifacts=artifacts, params=params)
        print(render_status(records, summary, artifact_sizes=_artifact_sizes(store, records)))

    try:
        report = asyncio.run(
            _run_batch(
                scheduler,
                tasks,
                ceiling=ceiling,
                model=model,
                budget=budget,
                on_progress=None if args.quiet else show_progress,
            )
        )
    except BatchValidationError as exc:
        for problem in exc.problems:
            print(problem)
        raise SystemExit(1)

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print(render_report(report, artifacts=_report_artifacts(store, report)))

    if not args.no_history:
        history = SprintHistory(settings.resolved_history_path)
        sprint = sprint_from_report(
            report,
            store=store,
            prompts={task.id: task.prompt for task in tasks},
            goal=args.goal,
            files_changed=git_changed_files(settings.project_dir),
        )
        try:
            sprint = history.add(sprint)
            print(f"Recorded sprint {sprint.id} to {history.path}")
        except HistoryError as exc:
            logger.warning("Sprint history not recorded", extra={"error": str(exc)})
            print(f"Sprint history not recorded: {exc}")

    if report.cancelled:
        raise SystemExit(EXIT_INTERRUPTED)


def cmd_status(args: argparse.Namespace) -> None:
    settings = get_settings()
    store = load_store(settings)
    reaper = Reaper(store, probe=ProcessProbe(), stale_threshold=settings.stale_threshold)
    try:
        reaper.reconcile()
        records, summary = summarize_store(store, batch_id=args.batch, params=_estimate_params(settings))
    except SessionStoreError as exc:
        print(f"Session store error: {exc}")
        raise SystemExit(1)
    if args.json:
        payload = {
            "sessions": [record.model_dump(mode="json") for record in records],
            "summary": summary.to_dict(),
        }
        print(json.dumps(payload, indent=2))
        return
    print(render_status(records, summary, artifact_sizes=_artifact_sizes(store, records)))


def cmd_list(args: argparse.Namespace) -> None:
    settings = get_settings()
    store = load_store(settings)
    records = store.list(batch_id=args.batch)
    print("Session IDs:")
    for record in records:
        print(f"  - {record.id}")
    if not records:
        print("  (no sessions found)")
    print("")
    print(f"Total: {len(records)} session(s)")


def _load_record(store: SessionStore, session_id: str) -> SessionRecord | None:
    try:
        return store.get(session_id)
    except SessionNotFoundError:
        return None


def cmd_result(args: argparse.Namespace) -> None:
    settings = get_settings()
    store = load_store(settings)
    artifact = load_artifact(store, args.task_id)
    if artifact is None:
        print("No output found")
        raise SystemExit(1)
    print(render_result(_load_record(store, args.task_id), artifact))


def cmd_output(args: argparse.Namespace) -> None:
    settings = get_settings()
    store = load_store(settings)
    artifact = load_artifact(store, args.task_id)
    if artifact is None:
        print(f"No output found for session: {args.task_id}")
        raise SystemExit(1)
    print(f"Output for session: {args.task_id}")
    print("═" * 63)
    print(artifact.result if artifact.structured and artifact.result is not None else artifact.raw)


def _stop(store: SessionStore, settings: SessionSettings, session_id: str) -> None:
    record = asyncio.run(stop_session(session_id, store=store, settings=settings))
    if record is None:
        print(f"Session {session_id} not found")
    elif record.termination_uncertain:
        print(f"Stopped session {session_id} (termination uncertain, PID: {record.pid})")
    elif record.status is SessionStatus.STOPPED:
        print(f"Stopped session {session_id}")
    else:
        print(f"Session {session_id} already {record.display_status}")


def cmd_stop(args: argparse.Namespace) -> None:
    settings = get_settings()
    store = load_store(settings)
    _stop(store, settings, args.task_id)


def cmd_stop_all(args: argparse.Namespace) -> None:
    settings = get_settings()
    store = load_store(settings)
    print("Stopping all sessions...")
    for record in store.list():
        if not record.is_terminal:
            _stop(store, settings, record.id)


def cmd_clean(args: argparse.Namespace) -> None:
    settings = get_settings()
    store = load_store(settings)
    print("Cleaning up session files...")
    reaper = Reaper(store, probe=ProcessProbe(), stale_threshold=settings.stale_threshold)
    report = reaper.reap(args.task_ids or None)
    for session_id in report.stale:
        print(f"Cleaned stale session: {session_id}")
    completed = len(report.cleaned) - len(report.stale)
    print(f"Cleaned {completed} completed + {len(report.stale)} stale session(s)")
    if report.errors:
        for session_id, error in report.errors.items():
            print(f"Failed to clean {session_id}: {error}")
        raise SystemExit(1)


def cmd_version(args: argparse.Namespace) -> None:
    print(f"Hydra Sessions v{__version__}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hydra-sessions",
        description="Run and supervise parallel worker CLI sessions",
    )
    sub = parser.add_subparsers(dest="cmd")

    p_start = sub.add_parser("start", help="Run one session in the foreground")
    p_start.add_argument("task_id")
    p_start.add_argument("prompt")
    p_start.add_argument("model", nargs="?")
    p_start.add_argument("budget", nargs="?", type=float)
    p_start.set_defaults(func=cmd_start)

    p_multi = sub.add_parser("run-multi", help="Run a batch of tasks in parallel")
    p_multi.add_argument("tasks", help="Inline JSON or a path to a .json/.yaml task file")
    p_multi.add_argument("model", nargs="?")
    p_multi.add_argument("budget", nargs="?", type=float)
    p_multi.add_argument("max_parallel", nargs="?", type=int)
    p_multi.add_argument("--goal", help="Sprint goal recorded to history")
    p_multi.add_argument("--no-history", action="store_true", help="Do not record the sprint")
    p_multi.add_argument("--quiet", action="store_true", help="Skip the progress dashboard")
    p_multi.add_argument("--json", action="store_true", help="Print the final report as JSON")
    p_multi.set_defaults(func=cmd_run_multi)

    p_status = sub.add_parser("status", help="Show the session dashboard")
    p_status.add_argument("--batch", help="Only sessions of this batch id")
    p_status.add_argument("--json", action="store_true", help="Output JSON")
    p_status.set_defaults(func=cmd_status)

    p_list = sub.add_parser("list", help="List session ids")
    p_list.add_argument("--batch", help="Only sessions of this batch id")
    p_list.set_defaults(func=cmd_list)

    p_result = sub.add_parser("result", help="Show a session's result with cost and duration")
    p_result.add_argument("task_id")
    p_result.set_defaults(func=cmd_result)

    p_output = sub.add_parser("output", help="Show a session's full output")
    p_output.add_argument("task_id")
    p_output.set_defaults(func=cmd_output)

    p_stop = sub.add_parser("stop", help="Stop a running session")
    p_stop.add_argument("task_id")
    p_stop.set_defaults(func=cmd_stop)

    p_stop_all = sub.add_parser("stop-all", help="Stop every running session")
    p_stop_all.set_defaults(func=cmd_stop_all)

    p_clean = sub.add_parser("clean", help="Remove finished and stale sessions")
    p_clean.add_argument("task_ids", nargs="*", help="Restrict cleanup to these ids")
    p_clean.set_defaults(func=cmd_clean)

    p_version = sub.add_parser("version", help="Show version")
    p_version.set_defaults(func=cmd_version)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    settings = get_settings()
    configure_logging(settings.log_level, log_file=settings.resolved_log_file)
    args.func(args)


if __name__ == "__main__":
    main()
