"""Configuration management for Hydra sessions."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SessionSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    sessions_dir: Path = Field(
        default=Path("/tmp/hydra-sessions"), validation_alias="HYDRA_SESSIONS_DIR"
    )
    log_file: Path | None = Field(default=None, validation_alias="HYDRA_SESSIONS_LOG")
    project_dir: Path = Field(default_factory=Path.cwd, validation_alias="HYDRA_PROJECT_DIR")
    worker_path: str | None = Field(default=None, validation_alias="HYDRA_WORKER_PATH")
    default_model: str = Field(default="sonnet", validation_alias="HYDRA_DEFAULT_MODEL")
    default_budget: float = Field(default=5.0, validation_alias="HYDRA_DEFAULT_BUDGET")
    max_parallel: int = Field(default=4, validation_alias="HYDRA_MAX_PARALLEL")
    session_timeout: float = Field(default=600.0, validation_alias="HYDRA_SESSION_TIMEOUT")
    grace_seconds: float = Field(default=5.0, validation_alias="HYDRA_GRACE_SECONDS")
    liveness_interval: float = Field(default=2.0, validation_alias="HYDRA_LIVENESS_INTERVAL")
    slot_poll_interval: float = Field(default=5.0, validation_alias="HYDRA_SLOT_POLL_INTERVAL")
    completion_poll_interval: float = Field(
        default=10.0, validation_alias="HYDRA_COMPLETION_POLL_INTERVAL"
    )
    stale_threshold: float = Field(default=60.0, validation_alias="HYDRA_STALE_THRESHOLD")
    enhance_prompts: bool = Field(default=True, validation_alias="HYDRA_ENHANCE_PROMPTS")
    permission_mode: str = Field(
        default="bypassPermissions", validation_alias="HYDRA_PERMISSION_MODE"
    )
    store_backend: str = Field(default="file", validation_alias="HYDRA_STORE_BACKEND")
    chroma_persist_path: Path = Field(
        default=Path("./storage/chroma"), validation_alias="CHROMA_PERSIST_PATH"
    )
    history_path: Path | None = Field(default=None, validation_alias="HYDRA_HISTORY_PATH")
    overhead_ratio: float = Field(default=0.3, validation_alias="HYDRA_OVERHEAD_RATIO")
    cost_per_token: float = Field(default=0.000015, validation_alias="HYDRA_COST_PER_TOKEN")
    log_level: str = Field(default="INFO", validation_alias="HYDRA_LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "HYDRA_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("store_backend")
    @classmethod
    def _normalize_store_backend(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {"file", "chroma"}:
            raise ValueError("HYDRA_STORE_BACKEND must be 'file' or 'chroma'")
        return normalized

    @field_validator("max_parallel")
    @classmethod
    def _validate_max_parallel(cls, value: int) -> int:
        if value < 1:
            raise ValueError("HYDRA_MAX_PARALLEL must be >= 1")
        return value

    @field_validator(
        "session_timeout",
        "liveness_interval",
        "slot_poll_interval",
        "completion_poll_interval",
    )
    @classmethod
    def _validate_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeouts and poll intervals must be > 0")
        return value

    @field_validator("grace_seconds", "stale_threshold", "overhead_ratio", "cost_per_token")
    @classmethod
    def _validate_non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("value must be >= 0")
        return value

    @property
    def resolved_log_file(self) -> Path:
        return self.log_file or self.sessions_dir / "orchestrator.log"

    @property
    def resolved_history_path(self) -> Path:
        return self.history_path or self.project_dir / ".claude" / "sprint-history.json"


@lru_cache(maxsize=1)
def get_settings() -> SessionSettings:
    """Return cached settings instance."""

    settings = SessionSettings()
    settings.sessions_dir = settings.sessions_dir.expanduser().resolve()
    settings.project_dir = settings.project_dir.expanduser().resolve()
    settings.chroma_persist_path = settings.chroma_persist_path.expanduser().resolve()
    return settings


__all__ = ["SessionSettings", "get_settings"]
