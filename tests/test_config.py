from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from hydra_sessions.config import SessionSettings, get_settings


def test_defaults(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    settings = SessionSettings()

    assert settings.sessions_dir == Path("/tmp/hydra-sessions")
    assert settings.default_model == "sonnet"
    assert settings.default_budget == 5.0
    assert settings.max_parallel == 4
    assert settings.session_timeout == 600
    assert settings.grace_seconds == 5
    assert settings.store_backend == "file"
    assert settings.resolved_log_file == Path("/tmp/hydra-sessions/orchestrator.log")
    assert settings.resolved_history_path == tmp_path / ".claude" / "sprint-history.json"


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("HYDRA_SESSIONS_DIR", str(tmp_path / "sessions"))
    monkeypatch.setenv("HYDRA_MAX_PARALLEL", "8")
    monkeypatch.setenv("HYDRA_SESSION_TIMEOUT", "120")
    monkeypatch.setenv("HYDRA_STORE_BACKEND", " Chroma ")
    monkeypatch.setenv("HYDRA_LOG_LEVEL", "debug")
    monkeypatch.setenv("HYDRA_ENHANCE_PROMPTS", "false")
    monkeypatch.setenv("HYDRA_OVERHEAD_RATIO", "0.5")

    settings = SessionSettings()

    assert settings.sessions_dir == tmp_path / "sessions"
    assert settings.max_parallel == 8
    assert settings.session_timeout == 120
    assert settings.store_backend == "chroma"
    assert settings.log_level == "DEBUG"
    assert settings.enhance_prompts is False
    assert settings.overhead_ratio == 0.5


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("HYDRA_MAX_PARALLEL", "0"),
        ("HYDRA_SESSION_TIMEOUT", "-1"),
        ("HYDRA_GRACE_SECONDS", "-0.5"),
        ("HYDRA_STORE_BACKEND", "redis"),
        ("HYDRA_LOG_LEVEL", "loud"),
    ],
)
def test_invalid_values_are_rejected(monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)
    with pytest.raises(ValidationError):
        SessionSettings()


def test_get_settings_resolves_paths(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HYDRA_SESSIONS_DIR", "relative-sessions")
    get_settings.cache_clear()
    try:
        settings = get_settings()
        assert settings.sessions_dir == (tmp_path / "relative-sessions").resolve()
        assert get_settings() is settings
    finally:
        get_settings.cache_clear()
