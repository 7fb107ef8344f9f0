"""Sprint history: persisted batch summaries for cost tracking and retrospectives."""

from __future__ import annotations

import csv
import io
import logging
import os
import subprocess
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from pydantic import BaseModel, Field, ValidationError

from .engine import BatchReport, load_artifact
from .storage import SessionStatus, SessionStore

logger = logging.getLogger(__name__)

HISTORY_VERSION = "1.0"


class HistoryError(RuntimeError):
    """Raised when the history file cannot be read or written."""


class SprintTask(BaseModel):
    title: str
    status: str
    result: str | None = None
    duration_seconds: float = 0.0
    cost_usd: float = 0.0


class SprintTotals(BaseModel):
    tasks_completed: int = 0
    tasks_failed: int = 0
    duration_seconds: float = 0.0
    cost_usd: float = 0.0


class SprintCommit(BaseModel):
    hash: str | None = None
    message: str | None = None


class Sprint(BaseModel):
    id: str | None = None
    date: datetime | None = None
    goal: str = "Multi-session sprint"
    mode: str = "standard"
    tasks: list[SprintTask] = Field(default_factory=list)
    totals: SprintTotals | None = None
    files_changed: list[str] = Field(default_factory=list)
    commit: SprintCommit | None = None
    notes: str | None = None


class CumulativeStats(BaseModel):
    total_sprints: int = 0
    total_tasks: int = 0
    total_cost_usd: float = 0.0
    total_duration_seconds: float = 0.0
    average_cost_per_sprint: float = 0.0
    average_tasks_per_sprint: float = 0.0


class HistoryDocument(BaseModel):
    version: str = HISTORY_VERSION
    description: str = "Multi-session sprint history for cost tracking and retrospectives"
    sprints: list[Sprint] = Field(default_factory=list)
    cumulative: CumulativeStats = Field(default_factory=CumulativeStats)


def compute_totals(tasks: list[SprintTask]) -> SprintTotals:
    return SprintTotals(
        tasks_completed=sum(1 for task in tasks if task.status == SessionStatus.COMPLETED.value),
        tasks_failed=sum(1 for task in tasks if task.status != SessionStatus.COMPLETED.value),
        duration_seconds=max((task.duration_seconds for task in tasks), default=0.0),
        cost_usd=round(sum(task.cost_usd for task in tasks), 2),
    )


def compute_cumulative(sprints: list[Sprint]) -> CumulativeStats:
    if not sprints:
        return CumulativeStats()
    totals = [sprint.totals or SprintTotals() for sprint in sprints]
    total_tasks = sum(item.tasks_completed for item in totals)
    total_cost = sum(item.cost_usd for item in totals)
    return CumulativeStats(
        total_sprints=len(sprints),
        total_tasks=total_tasks,
        total_cost_usd=round(total_cost, 2),
        total_duration_seconds=sum(item.duration_seconds for item in totals),
        average_cost_per_sprint=round(total_cost / len(sprints), 2),
        average_tasks_per_sprint=round(total_tasks / len(sprints), 1),
    )


def _minutes(seconds: float) -> int:
    return round(seconds / 60)


class SprintHistory:
    """JSON-backed sprint log at ``path``."""

    def __init__(self, path: Path, *, clock: Callable[[], datetime] | None = None) -> None:
        self._path = Path(path)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> HistoryDocument:
        if not self._path.exists():
            return HistoryDocument()
        try:
            return HistoryDocument.model_validate_json(self._path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            raise HistoryError(f"Cannot read sprint history {self._path}: {exc}") from exc

    def save(self, document: HistoryDocument) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=".sprint-history.", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(document.model_dump_json(indent=2))
            os.replace(tmp_name, self._path)
        except OSError as exc:
            raise HistoryError(f"Cannot write sprint history {self._path}: {exc}") from exc

    def _next_id(self, document: HistoryDocument, now: datetime) -> str:
        prefix = f"sprint-{now.strftime('%Y-%m-%d')}"
        count = sum(1 for sprint in document.sprints if sprint.id and sprint.id.startswith(prefix))
        return f"{prefix}-{count + 1:03d}"

    def add(self, sprint: Sprint | dict[str, Any] | str) -> Sprint:
        """Append a sprint, filling in id, date and totals when absent."""

        try:
            if isinstance(sprint, str):
                sprint = Sprint.model_validate_json(sprint)
            elif isinstance(sprint, dict):
                sprint = Sprint.model_validate(sprint)
        except ValidationError as exc:
            raise HistoryError(f"Invalid sprint record: {exc}") from exc

        document = self.load()
        now = self._clock()
        if not sprint.id:
            sprint.id = self._next_id(document, now)
        if sprint.date is None:
            sprint.date = now
        if sprint.totals is None:
            sprint.totals = compute_totals(sprint.tasks)

        document.sprints.append(sprint)
        document.cumulative = compute_cumulative(document.sprints)
        self.save(document)
        logger.info(
            "Recorded sprint",
            extra={"sprint_id": sprint.id, "cost_usd": sprint.totals.cost_usd, "path": str(self._path)},
        )
        return sprint

    def list(self, limit: int = 10) -> list[Sprint]:
        """Most recent sprints first."""

        sprints = self.load().sprints
        return list(reversed(sprints[-limit:])) if limit > 0 else []

    def last(self) -> Sprint | None:
        sprints = self.load().sprints
        return sprints[-1] if sprints else None

    def get(self, sprint_id: str | None = None) -> Sprint | None:
        if sprint_id is None:
            return self.last()
        for sprint in self.load().sprints:
            if sprint.id == sprint_id:
                return sprint
        return None

    def stats(self) -> dict[str, Any]:
        document = self.load()
        cost_by_month: dict[str, float] = {}
        for sprint in document.sprints:
            if sprint.date is None:
                continue
            month = sprint.date.strftime("%Y-%m")
            totals = sprint.totals or SprintTotals()
            cost_by_month[month] = round(cost_by_month.get(month, 0.0) + totals.cost_usd, 2)
        return {
            "cumulative": document.cumulative.model_dump(),
            "cost_by_month": dict(sorted(cost_by_month.items())[-6:]),
        }

    def report(self, sprint_id: str | None = None) -> str | None:
        """Markdown report of one sprint (the latest by default)."""

        sprint = self.get(sprint_id)
        if sprint is None:
            return None
        totals = sprint.totals or SprintTotals()
        lines = [
            f"# Sprint Report: {sprint.id}",
            "",
            f"**Date:** {sprint.date.isoformat() if sprint.date else 'N/A'}",
            f"**Goal:** {sprint.goal}",
            f"**Mode:** {sprint.mode}",
            "",
            "## Summary",
            "",
            "| Metric | Value |",
            "|--------|-------|",
            f"| Tasks Completed | {totals.tasks_completed} |",
            f"| Tasks Failed | {totals.tasks_failed} |",
            f"| Duration | {_minutes(totals.duration_seconds)} minutes |",
            f"| Total Cost | ${totals.cost_usd:.2f} |",
            "",
            "## Tasks",
        ]
        for task in sprint.tasks:
            lines.extend(
                [
                    "",
                    f"### {task.title}",
                    f"- **Status:** {task.status}",
                    f"- **Result:** {task.result or 'N/A'}",
                    f"- **Duration:** {_minutes(task.duration_seconds)}m",
                    f"- **Cost:** ${task.cost_usd:.2f}",
                ]
            )
        lines.extend(["", "## Files Changed", ""])
        lines.extend(f"- {path}" for path in sprint.files_changed)
        commit = sprint.commit or SprintCommit()
        lines.extend(
            [
                "",
                "## Commit",
                "",
                f"- **Hash:** {commit.hash or 'N/A'}",
                f"- **Message:** {commit.message or 'N/A'}",
            ]
        )
        if sprint.notes:
            lines.extend(["", "## Notes", "", sprint.notes])
        return "\n".join(lines) + "\n"

    def export_markdown(self) -> str:
        document = self.load()
        cumulative = document.cumulative
        lines = [
            "# Multi-Session Sprint History",
            "",
            f"Generated: {self._clock().isoformat()}",
            "",
            "## Cumulative Statistics",
            "",
            "| Metric | Value |",
            "|--------|-------|",
            f"| Total Sprints | {cumulative.total_sprints} |",
            f"| Total Tasks | {cumulative.total_tasks} |",
            f"| Total Cost | ${cumulative.total_cost_usd:.2f} |",
            f"| Avg Cost/Sprint | ${cumulative.average_cost_per_sprint:.2f} |",
            "",
            "## Sprint Log",
            "",
            "| Date | Sprint ID | Goal | Tasks | Cost | Duration |",
            "|------|-----------|------|-------|------|----------|",
        ]
        for sprint in reversed(document.sprints):
            totals = sprint.totals or SprintTotals()
            date = sprint.date.strftime("%Y-%m-%d") if sprint.date else ""
            goal = sprint.goal if len(sprint.goal) <= 30 else f"{sprint.goal[:30]}..."
            tasks = f"{totals.tasks_completed}/{totals.tasks_completed + totals.tasks_failed}"
            lines.append(
                f"| {date} | {sprint.id} | {goal} | {tasks} | ${totals.cost_usd:.2f} "
                f"| {_minutes(totals.duration_seconds)}m |"
            )
        return "\n".join(lines) + "\n"

    def export_csv(self) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(
            [
                "sprint_id",
                "date",
                "goal",
                "tasks_completed",
                "tasks_failed",
                "cost_usd",
                "duration_minutes",
                "commit_hash",
            ]
        )
        for sprint in self.load().sprints:
            totals = sprint.totals or SprintTotals()
            writer.writerow(
                [
                    sprint.id,
                    sprint.date.isoformat() if sprint.date else "",
                    sprint.goal,
                    totals.tasks_completed,
                    totals.tasks_failed,
                    totals.cost_usd,
                    _minutes(totals.duration_seconds),
                    sprint.commit.hash if sprint.commit and sprint.commit.hash else "",
                ]
            )
        return buffer.getvalue()


def git_changed_files(project_dir: Path) -> list[str]:
    """Paths reported by ``git status --short``; empty outside a work tree."""

    try:
        completed = subprocess.run(
            ["git", "status", "--short"],
            cwd=project_dir,
            capture_output=True,
            text=True,
            timeout=10,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.debug("git status unavailable", extra={"error": str(exc)})
        return []
    if completed.returncode != 0:
        return []
    return [line[3:].strip() for line in completed.stdout.splitlines() if len(line) > 3]


def sprint_from_report(
    report: BatchReport,
    *,
    store: SessionStore,
    prompts: dict[str, str] | None = None,
    goal: str | None = None,
    files_changed: list[str] | None = None,
) -> Sprint:
    """Build a sprint entry from a finished batch."""

    prompts = prompts or {}
    tasks: list[SprintTask] = []
    for outcome in report.outcomes:
        artifact = load_artifact(store, outcome.session_id) if outcome.record is not None else None
        title = prompts.get(outcome.session_id, "")[:50] or outcome.session_id
        result = artifact.result[:200] if artifact is not None and artifact.result else None
        tasks.append(
            SprintTask(
                title=title,
                status=outcome.status.value,
                result=result,
                duration_seconds=(artifact.duration_seconds or 0.0) if artifact is not None else 0.0,
                cost_usd=(artifact.cost_usd or 0.0) if artifact is not None else 0.0,
            )
        )
    summary = report.summary
    return Sprint(
        date=report.ended_at,
        goal=goal or f"Multi-session sprint ({len(report.outcomes)} tasks)",
        mode="multi-session",
        tasks=tasks,
        totals=SprintTotals(
            tasks_completed=summary.counts.completed,
            tasks_failed=len(report.outcomes) - summary.counts.completed,
            duration_seconds=summary.measured.parallel_seconds,
            cost_usd=round(summary.measured.total_cost_usd, 2),
        ),
        files_changed=files_changed or [],
        notes=f"Batch {report.batch_id}",
    )


__all__ = [
    "CumulativeStats",
    "HistoryDocument",
    "HistoryError",
    "Sprint",
    "SprintCommit",
    "SprintHistory",
    "SprintTask",
    "SprintTotals",
    "compute_cumulative",
    "compute_totals",
    "git_changed_files",
    "sprint_from_report",
]
