"""Batch-level reduction of session records.

Measured figures (cost, durations, counts) come straight from records and
worker artifacts. Efficiency figures are projections from a fixed overhead
ratio and live in a separate ``EfficiencyEstimate`` so callers never confuse
the two.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from ..storage import SessionRecord, SessionStore, WorkerArtifact
from .supervisor import load_artifact


@dataclass(slots=True, frozen=True)
class EstimateParams:
    """Knobs for the heuristic efficiency projection."""

    # Extra context a sequential run is assumed to re-read per task.
    overhead_ratio: float = 0.3
    cost_per_token: float = 0.000015


@dataclass(slots=True)
class StatusCounts:
    pending: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0
    timed_out: int = 0
    stopped: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.running + self.completed + self.failed + self.timed_out + self.stopped

    @property
    def completion_rate(self) -> float:
        return (self.completed / self.total * 100) if self.total else 0.0


@dataclass(slots=True)
class MeasuredTotals:
    total_cost_usd: float = 0.0
    sequential_seconds: float = 0.0
    parallel_seconds: float = 0.0


@dataclass(slots=True)
class EfficiencyEstimate:
    """Heuristic projection; none of these values were measured."""

    speedup: float | None
    tokens_estimate: int
    sequential_tokens_estimate: int
    tokens_saved: int
    cost_saved_usd: float
    efficiency_percent: float
    params: EstimateParams = field(default_factory=EstimateParams)


@dataclass(slots=True)
class BatchSummary:
    counts: StatusCounts
    measured: MeasuredTotals
    estimated: EfficiencyEstimate

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["counts"]["total"] = self.counts.total
        return payload


def session_duration(
    record: SessionRecord,
    artifact: WorkerArtifact | None,
    *,
    now: datetime,
) -> float | None:
    """Seconds a session ran: the worker's own ``duration_ms`` when reported, else its runtime."""

    if artifact is not None and artifact.duration_seconds is not None:
        return artifact.duration_seconds
    runtime = record.runtime(now)
    return runtime.total_seconds() if runtime is not None else None


def estimate_efficiency(
    measured: MeasuredTotals,
    params: EstimateParams = EstimateParams(),
) -> EfficiencyEstimate:
    speedup = (
        measured.sequential_seconds / measured.parallel_seconds
        if measured.parallel_seconds > 0
        else None
    )
    tokens = round(measured.total_cost_usd / params.cost_per_token) if params.cost_per_token > 0 else 0
    sequential_tokens = round(tokens * (1 + params.overhead_ratio))
    saved = sequential_tokens - tokens
    return EfficiencyEstimate(
        speedup=speedup,
        tokens_estimate=tokens,
        sequential_tokens_estimate=sequential_tokens,
        tokens_saved=saved,
        cost_saved_usd=saved * params.cost_per_token,
        efficiency_percent=(saved / sequential_tokens * 100) if sequential_tokens > 0 else 0.0,
        params=params,
    )


def aggregate(
    records: Iterable[SessionRecord],
    *,
    artifacts: Mapping[str, WorkerArtifact | None] | None = None,
    now: datetime | None = None,
    params: EstimateParams = EstimateParams(),
) -> BatchSummary:
    """Reduce session records (and their parsed artifacts) into batch totals."""

    now = now or datetime.now(timezone.utc)
    artifacts = artifacts or {}
    counts = StatusCounts()
    measured = MeasuredTotals()

    for record in records:
        setattr(counts, record.status.value, getattr(counts, record.status.value) + 1)
        if not record.is_terminal:
            continue
        artifact = artifacts.get(record.id)
        if artifact is not None and artifact.cost_usd is not None:
            measured.total_cost_usd += artifact.cost_usd
        duration = session_duration(record, artifact, now=now)
        if duration is None:
            continue
        measured.sequential_seconds += duration
        measured.parallel_seconds = max(measured.parallel_seconds, duration)

    return BatchSummary(counts=counts, measured=measured, estimated=estimate_efficiency(measured, params))


def summarize_store(
    store: SessionStore,
    *,
    batch_id: str | None = None,
    now: datetime | None = None,
    params: EstimateParams = EstimateParams(),
) -> tuple[list[SessionRecord], BatchSummary]:
    """Load the store's current contents and aggregate them."""

    records = store.list(batch_id=batch_id)
    artifacts = {record.id: load_artifact(store, record.id) for record in records}
    return records, aggregate(records, artifacts=artifacts, now=now, params=params)


__all__ = [
    "BatchSummary",
    "EfficiencyEstimate",
    "EstimateParams",
    "MeasuredTotals",
    "StatusCounts",
    "aggregate",
    "estimate_efficiency",
    "session_duration",
    "summarize_store",
]
