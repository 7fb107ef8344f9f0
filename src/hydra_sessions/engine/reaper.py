"""Garbage collection of finished and abandoned session records."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable

from ..storage import (
    SessionNotFoundError,
    SessionRecord,
    SessionStatus,
    SessionStore,
    SessionStoreError,
)
from ..worker import ProcessProbe
from .supervisor import reconcile_orphan

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ReapReport:
    cleaned: list[str] = field(default_factory=list)
    stale: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)


class Reaper:
    """Remove terminal records and reclassify records nobody will finish.

    A record is stale when it is ``running`` with a dead process, or still
    ``pending``, for longer than ``stale_threshold`` seconds. Records with a
    live process are never touched. ``reconcile`` leaves a dead worker alone
    until its output has been quiet for ``settle_seconds``.
    """

    def __init__(
        self,
        store: SessionStore,
        *,
        probe: ProcessProbe | None = None,
        stale_threshold: float = 60,
        settle_seconds: float = 10,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._probe = probe or ProcessProbe()
        self._stale_threshold = stale_threshold
        self._settle_seconds = settle_seconds
        self._clock = clock or self._probe.now

    def _age(self, record: SessionRecord, now: datetime) -> float | None:
        anchor = record.started_at or record.created_at
        if anchor is None:
            return None
        return (now - anchor).total_seconds()

    def is_stale(self, record: SessionRecord, now: datetime | None = None) -> bool:
        if record.is_terminal:
            return False
        if record.status is SessionStatus.RUNNING and self._probe.is_alive(record.pid):
            return False
        age = self._age(record, now or self._clock())
        # Without a timestamp nothing shows the record was abandoned.
        return age is not None and age > self._stale_threshold

    def _recently_active(self, record: SessionRecord, now: datetime) -> bool:
        last = record.started_at
        try:
            mtime = self._store.artifact_path(record.id).stat().st_mtime
        except OSError:
            pass
        else:
            last = datetime.fromtimestamp(mtime, tz=timezone.utc)
        if last is None:
            return False
        return (now - last).total_seconds() < self._settle_seconds

    def reconcile(self) -> list[SessionRecord]:
        """Finalize ``running`` records whose worker died unobserved."""

        finalized: list[SessionRecord] = []
        now = self._clock()
        for record in self._store.list():
            if record.status is not SessionStatus.RUNNING or self._probe.is_alive(record.pid):
                continue
            if self._recently_active(record, now):
                continue
            try:
                finalized.append(reconcile_orphan(record, store=self._store, now=now))
            except SessionStoreError as exc:
                logger.warning(
                    "Cannot reconcile session",
                    extra={"session_id": record.id, "error": str(exc)},
                )
        return finalized

    def reap(self, ids: Iterable[str] | None = None) -> ReapReport:
        """Delete terminal and stale records, optionally restricted to ``ids``."""

        report = ReapReport()
        if ids is None:
            records: list[SessionRecord] = self._store.list()
        else:
            records = []
            for session_id in ids:
                try:
                    records.append(self._store.get(session_id))
                except SessionNotFoundError:
                    report.skipped.append(session_id)
                except SessionStoreError as exc:
                    report.errors[session_id] = str(exc)

        now = self._clock()
        for record in records:
            try:
                if not record.is_terminal:
                    if not self.is_stale(record, now):
                        report.skipped.append(record.id)
                        continue
                    record.finish(SessionStatus.FAILED, now=now, reason="stale")
                    self._store.put(record)
                    report.stale.append(record.id)
                    logger.info("Marked stale session", extra={"session_id": record.id})
                self._store.delete(record.id)
                report.cleaned.append(record.id)
            except SessionStoreError as exc:
                report.errors[record.id] = str(exc)
                logger.warning("Cannot clean session", extra={"session_id": record.id, "error": str(exc)})

        logger.info(
            "Cleaned sessions",
            extra={"cleaned": len(report.cleaned), "stale": len(report.stale), "skipped": len(report.skipped)},
        )
        return report


__all__ = ["ReapReport", "Reaper"]
