"""Plain-text rendering of session status and batch reports."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Mapping

from .engine import BatchReport, BatchSummary, EfficiencyEstimate
from .storage import SessionRecord, SessionStatus, WorkerArtifact

RULE = "═" * 63
THIN_RULE = "─" * 63

STATUS_MARKERS = {
    SessionStatus.PENDING: "⏳",
    SessionStatus.RUNNING: "🔄",
    SessionStatus.COMPLETED: "✅",
    SessionStatus.FAILED: "❌",
    SessionStatus.TIMED_OUT: "⏱️",
    SessionStatus.STOPPED: "⏹️",
}


def _banner(title: str) -> list[str]:
    return [RULE, f"        {title}", RULE]


def _format_runtime(record: SessionRecord, now: datetime) -> str:
    runtime = record.runtime(now)
    if runtime is None:
        return ""
    seconds = int(runtime.total_seconds())
    return f"{seconds}s" if record.is_terminal else f"{seconds}s (running)"


def _format_cost(value: float) -> str:
    return f"${value:.4f}"


def _efficiency_marker(completion_rate: float) -> str:
    if completion_rate >= 80:
        return "🚀"
    if completion_rate >= 50:
        return "⚡"
    return "⚠️"


def _estimate_lines(estimated: EfficiencyEstimate, sequential_seconds: float) -> list[str]:
    speedup = f"{estimated.speedup:.1f}x" if estimated.speedup is not None else "N/A"
    return [
        f"  Estimated sequential runtime: {sequential_seconds:.0f}s | Estimated speedup: {speedup}",
        (
            f"  Estimated token savings: ~{estimated.tokens_saved} tokens "
            f"(~{_format_cost(estimated.cost_saved_usd)})"
        ),
        (
            f"  Estimated efficiency gain: {estimated.efficiency_percent:.1f}% "
            f"(assumes {estimated.params.overhead_ratio:.0%} sequential overhead)"
        ),
    ]


def render_status(
    records: Iterable[SessionRecord],
    summary: BatchSummary,
    *,
    artifact_sizes: Mapping[str, int] | None = None,
    now: datetime | None = None,
) -> str:
    """Dashboard of every known session followed by batch totals."""

    now = now or datetime.now(timezone.utc)
    artifact_sizes = artifact_sizes or {}
    lines = _banner("Hydra Session Status Dashboard")
    lines.append("")

    records = list(records)
    if not records:
        lines.append("  (no sessions found)")
    for record in records:
        size = artifact_sizes.get(record.id)
        preview = f"({size} bytes)" if size is not None else ""
        marker = STATUS_MARKERS.get(record.status, " ")
        uncertain = " [termination uncertain]" if record.termination_uncertain else ""
        lines.append(
            f"  {marker} {record.id:<20} {record.display_status:<15} "
            f"{_format_runtime(record, now):<15} {preview}{uncertain}".rstrip()
        )

    counts = summary.counts
    lines.extend(
        [
            "",
            THIN_RULE,
            (
                f"  Total: {counts.total} | Completed: {counts.completed} | Running: {counts.running} "
                f"| Failed: {counts.failed} | Timed out: {counts.timed_out} | Stopped: {counts.stopped}"
            ),
        ]
    )
    measured = summary.measured
    if counts.completed > 0 and measured.total_cost_usd > 0:
        marker = _efficiency_marker(counts.completion_rate)
        lines.append(
            f"  📊 Parallel runtime: {measured.parallel_seconds:.0f}s | "
            f"Total cost: {_format_cost(measured.total_cost_usd)}"
        )
        lines.append(
            f"  {marker} Estimated token efficiency: ~{summary.estimated.tokens_saved} tokens saved "
            f"(~{_format_cost(summary.estimated.cost_saved_usd)})"
        )
    lines.append(RULE)
    return "\n".join(lines)


def render_result(record: SessionRecord | None, artifact: WorkerArtifact | None) -> str:
    """Result text of one session with its measured cost and duration."""

    if artifact is None:
        return "No output found"
    if not artifact.structured:
        return artifact.raw
    lines = [artifact.result if artifact.result is not None else "No result field", ""]
    cost = artifact.cost_usd or 0.0
    duration = round(artifact.duration_seconds or 0)
    status = f" | Status: {record.display_status}" if record is not None else ""
    lines.append(f"Cost: {_format_cost(cost)} | Duration: {duration}s{status}")
    return "\n".join(lines)


def render_report(
    report: BatchReport,
    *,
    artifacts: Mapping[str, WorkerArtifact | None] | None = None,
) -> str:
    """Final per-task results for a batch, measured totals, then labelled estimates."""

    artifacts = artifacts or {}
    lines = ["", *_banner("All Sessions Complete - Results"), ""]
    for outcome in report.outcomes:
        lines.append(f"━━━ {outcome.session_id} ({outcome.display_status}) ━━━")
        if outcome.error:
            lines.append(f"Error: {outcome.error}")
        lines.append(render_result(outcome.record, artifacts.get(outcome.session_id)))
        lines.append("")
    for rejected in report.rejected:
        lines.append(f"━━━ {rejected.session_id} (rejected) ━━━")
        lines.append(rejected.reason)
        lines.append("")

    summary = report.summary
    measured = summary.measured
    lines.extend(
        [
            THIN_RULE,
            (
                f"  TOTAL: {_format_cost(measured.total_cost_usd)} | "
                f"{measured.parallel_seconds:.0f}s parallel runtime | "
                f"{summary.counts.completed}/{summary.counts.total} completed"
            ),
            *_estimate_lines(summary.estimated, measured.sequential_seconds),
        ]
    )
    if report.cancelled:
        lines.append("  Batch cancelled: remaining sessions were stopped")
    lines.append(RULE)
    return "\n".join(lines)


__all__ = ["render_report", "render_result", "render_status"]
