"""Environment helpers for worker subprocesses."""

from __future__ import annotations

import os
from typing import Mapping

# Interpreter variables leak the orchestrator's virtualenv into the worker, and the
# CLAUDECODE marker makes a nested claude CLI refuse to start.
_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
    "CLAUDECODE",
}


def worker_environment(
    session_id: str,
    *,
    model: str | None = None,
    additional: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Return the environment for one worker session."""

    env = {key: value for key, value in os.environ.items() if key not in _SANITIZED_VARS}
    env["HYDRA_SESSION_ID"] = session_id
    if model:
        env["HYDRA_SESSION_MODEL"] = model
    if additional:
        env.update(additional)
    return env


__all__ = ["worker_environment"]
