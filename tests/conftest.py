from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

from hydra_sessions.config import SessionSettings

SUCCESS_JSON = (
    '{"type":"result","subtype":"success","is_error":false,'
    '"result":"done","total_cost_usd":0.25,"duration_ms":1500}'
)


@pytest.fixture
def settings(tmp_path: Path) -> SessionSettings:
    settings = SessionSettings()
    settings.sessions_dir = tmp_path / "sessions"
    settings.project_dir = tmp_path
    settings.history_path = tmp_path / "history.json"
    settings.enhance_prompts = False
    settings.session_timeout = 30
    settings.grace_seconds = 0.3
    settings.liveness_interval = 0.05
    settings.slot_poll_interval = 0.05
    settings.completion_poll_interval = 0.05
    settings.stale_threshold = 60
    return settings


@pytest.fixture
def make_worker(tmp_path: Path) -> Callable[[str], Path]:
    """Write an executable ``/bin/sh`` worker whose body is ``body``."""

    def _make(body: str, name: str = "claude") -> Path:
        script = tmp_path / name
        script.write_text(f"#!/bin/sh\n{body}\n", encoding="utf-8")
        script.chmod(0o755)
        return script

    return _make
