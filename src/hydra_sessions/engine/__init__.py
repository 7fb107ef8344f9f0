"""Session orchestration: supervision, scheduling, aggregation and reaping."""

from .aggregator import (
    BatchSummary,
    EfficiencyEstimate,
    EstimateParams,
    MeasuredTotals,
    StatusCounts,
    aggregate,
    estimate_efficiency,
    session_duration,
    summarize_store,
)
from .reaper import ReapReport, Reaper
from .scheduler import BatchReport, RejectedTask, Scheduler, SessionOutcome, new_batch_id
from .supervisor import (
    CancellationToken,
    SessionConflictError,
    Supervisor,
    load_artifact,
    reconcile_orphan,
    resolve_exit_status,
    stop_session,
)

__all__ = [
    "BatchReport",
    "BatchSummary",
    "CancellationToken",
    "EfficiencyEstimate",
    "EstimateParams",
    "MeasuredTotals",
    "ReapReport",
    "Reaper",
    "RejectedTask",
    "Scheduler",
    "SessionConflictError",
    "SessionOutcome",
    "StatusCounts",
    "Supervisor",
    "aggregate",
    "estimate_efficiency",
    "load_artifact",
    "new_batch_id",
    "reconcile_orphan",
    "resolve_exit_status",
    "session_duration",
    "stop_session",
    "summarize_store",
]
