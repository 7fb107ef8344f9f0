"""Process liveness, signalling and graceful-then-forced termination."""

from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass
from datetime import datetime, timezone

import psutil

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TerminationOutcome:
    """How a termination sequence ended."""

    exited: bool
    forced: bool = False
    uncertain: bool = False


class ProcessProbe:
    """Clock and process-table access for sessions this process may not own."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def is_alive(self, pid: int | None) -> bool:
        if not pid:
            return False
        try:
            return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied:
            return True

    def send_signal(self, pid: int, sig: int) -> bool:
        """Deliver ``sig`` to ``pid``; return False when the process is already gone."""

        try:
            psutil.Process(pid).send_signal(sig)
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied as exc:
            logger.warning("Signal delivery denied", extra={"pid": pid, "signal": sig, "error": str(exc)})
            return False
        return True


async def terminate_process(
    process: asyncio.subprocess.Process,
    *,
    grace_seconds: float,
) -> TerminationOutcome:
    """SIGTERM an owned child, wait ``grace_seconds``, then SIGKILL it."""

    if process.returncode is not None:
        return TerminationOutcome(exited=True)
    try:
        process.terminate()
    except ProcessLookupError:
        return TerminationOutcome(exited=True)
    try:
        await asyncio.wait_for(process.wait(), timeout=grace_seconds)
        return TerminationOutcome(exited=True)
    except asyncio.TimeoutError:
        pass

    logger.warning("Graceful shutdown failed, force killing", extra={"pid": process.pid})
    try:
        process.kill()
    except ProcessLookupError:
        return TerminationOutcome(exited=True, forced=True)
    try:
        await asyncio.wait_for(process.wait(), timeout=grace_seconds or 1.0)
    except asyncio.TimeoutError:
        logger.error("Forced kill not confirmed", extra={"pid": process.pid})
        return TerminationOutcome(exited=False, forced=True, uncertain=True)
    return TerminationOutcome(exited=True, forced=True)


async def terminate_pid(
    pid: int,
    *,
    probe: ProcessProbe,
    grace_seconds: float,
    poll_interval: float = 0.2,
) -> TerminationOutcome:
    """Same sequence as ``terminate_process`` for a pid owned by another orchestrator."""

    if not probe.is_alive(pid):
        return TerminationOutcome(exited=True)
    loop = asyncio.get_running_loop()
    if probe.send_signal(pid, signal.SIGTERM):
        deadline = loop.time() + grace_seconds
        while loop.time() < deadline:
            if not probe.is_alive(pid):
                return TerminationOutcome(exited=True)
            await asyncio.sleep(poll_interval)
        logger.warning("Graceful shutdown failed, force killing", extra={"pid": pid})
    elif not probe.is_alive(pid):
        return TerminationOutcome(exited=True)
    else:
        logger.warning("SIGTERM not delivered, force killing", extra={"pid": pid})

    probe.send_signal(pid, signal.SIGKILL)
    deadline = loop.time() + max(grace_seconds, 1.0)
    while loop.time() < deadline:
        if not probe.is_alive(pid):
            return TerminationOutcome(exited=True, forced=True)
        await asyncio.sleep(poll_interval)
    logger.error("Forced kill not confirmed", extra={"pid": pid})
    return TerminationOutcome(exited=False, forced=True, uncertain=True)


__all__ = ["ProcessProbe", "TerminationOutcome", "terminate_pid", "terminate_process"]
