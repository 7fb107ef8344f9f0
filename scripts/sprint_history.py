"""Sprint history CLI: record and review multi-session sprints."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from hydra_sessions.config import SessionSettings
from hydra_sessions.history import HistoryError, SprintHistory

BOX_WIDTH = 66


def load_history(args: argparse.Namespace) -> SprintHistory:
    if args.path:
        return SprintHistory(Path(args.path))
    return SprintHistory(SessionSettings().resolved_history_path)


def _row(text: str) -> str:
    return f"║{text[:BOX_WIDTH].ljust(BOX_WIDTH)}║"


def cmd_add(args: argparse.Namespace) -> None:
    history = load_history(args)
    payload = args.data if args.data else sys.stdin.read()
    try:
        sprint = history.add(payload)
    except HistoryError as exc:
        print(f"Cannot record sprint: {exc}")
        raise SystemExit(1)
    totals = sprint.totals
    print(f"✅ Sprint {sprint.id} recorded")
    print(f"   Tasks: {totals.tasks_completed} completed, {totals.tasks_failed} failed")
    print(f"   Cost: ${totals.cost_usd}")
    print(f"   Duration: {round(totals.duration_seconds / 60)}m")


def cmd_list(args: argparse.Namespace) -> None:
    history = load_history(args)
    try:
        sprints = history.list(args.limit)
        total = len(history.load().sprints)
    except HistoryError as exc:
        print(str(exc))
        raise SystemExit(1)
    if not sprints:
        print("No sprints recorded yet.")
        return

    print("╔" + "═" * BOX_WIDTH + "╗")
    print(_row("  SPRINT HISTORY"))
    print("╠" + "═" * BOX_WIDTH + "╣")
    for sprint in sprints:
        totals = sprint.totals
        date = sprint.date.strftime("%Y-%m-%d") if sprint.date else ""
        tasks = f"{totals.tasks_completed}/{totals.tasks_completed + totals.tasks_failed}"
        print(
            _row(
                f"  {sprint.id:<25} │ {date:<12} │ {tasks:<5} │ ${totals.cost_usd:<6.2f} "
                f"│ {round(totals.duration_seconds / 60)}m"
            )
        )
        print(_row(f"    {sprint.goal[:60]}"))
        print("╠" + "─" * BOX_WIDTH + "╣")
    print(_row(f"  Showing {len(sprints)} of {total} sprints"))
    print("╚" + "═" * BOX_WIDTH + "╝")


def cmd_stats(args: argparse.Namespace) -> None:
    history = load_history(args)
    try:
        stats = history.stats()
    except HistoryError as exc:
        print(str(exc))
        raise SystemExit(1)
    if args.json:
        print(json.dumps(stats, indent=2))
        return

    cumulative = stats["cumulative"]
    print("╔" + "═" * BOX_WIDTH + "╗")
    print(_row("  SPRINT STATISTICS"))
    print("╠" + "═" * BOX_WIDTH + "╣")
    print(_row(f"  Total Sprints:        {cumulative['total_sprints']:>6}"))
    print(_row(f"  Total Tasks:          {cumulative['total_tasks']:>6}"))
    print(_row(f"  Total Cost:           ${cumulative['total_cost_usd']:>6.2f}"))
    print(_row(f"  Total Duration:       {round(cumulative['total_duration_seconds'] / 60):>6}m"))
    print("╠" + "─" * BOX_WIDTH + "╣")
    print(_row(f"  Avg Cost/Sprint:      ${cumulative['average_cost_per_sprint']:>6.2f}"))
    print(_row(f"  Avg Tasks/Sprint:     {cumulative['average_tasks_per_sprint']:>6}"))
    print("╠" + "─" * BOX_WIDTH + "╣")
    print(_row("  COST BY MONTH"))
    for month, cost in stats["cost_by_month"].items():
        print(_row(f"    {month}:  ${cost:>7.2f}"))
    print("╚" + "═" * BOX_WIDTH + "╝")


def cmd_report(args: argparse.Namespace) -> None:
    history = load_history(args)
    report = history.report(args.sprint_id)
    if report is None:
        print(f"Sprint {args.sprint_id or 'latest'} not found.")
        raise SystemExit(1)
    print(report)


def cmd_export(args: argparse.Namespace) -> None:
    history = load_history(args)
    print(history.export_csv() if args.format == "csv" else history.export_markdown())


def cmd_last(args: argparse.Namespace) -> None:
    history = load_history(args)
    sprint = history.last()
    if sprint is not None:
        print(sprint.model_dump_json(indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Track multi-session sprint costs and results")
    parser.add_argument("--path", help="History file (defaults to HYDRA_HISTORY_PATH)")
    sub = parser.add_subparsers(dest="cmd")

    p_add = sub.add_parser("add", help="Add a sprint record (JSON argument or stdin)")
    p_add.add_argument("data", nargs="?")
    p_add.set_defaults(func=cmd_add)

    p_list = sub.add_parser("list", help="List recent sprints")
    p_list.add_argument("--limit", type=int, default=10)
    p_list.set_defaults(func=cmd_list)

    p_stats = sub.add_parser("stats", help="Show cumulative statistics")
    p_stats.add_argument("--json", action="store_true", help="Output JSON")
    p_stats.set_defaults(func=cmd_stats)

    p_report = sub.add_parser("report", help="Markdown report for one sprint")
    p_report.add_argument("sprint_id", nargs="?")
    p_report.set_defaults(func=cmd_report)

    p_export = sub.add_parser("export", help="Export history as markdown or CSV")
    p_export.add_argument("format", nargs="?", choices=["md", "csv"], default="md")
    p_export.set_defaults(func=cmd_export)

    p_last = sub.add_parser("last", help="Show the last sprint as JSON")
    p_last.set_defaults(func=cmd_last)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
