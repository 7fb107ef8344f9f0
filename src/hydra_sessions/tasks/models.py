"""Task models for session batches."""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from pydantic import BaseModel, Field, ValidationError, field_validator

from ..storage.models import validate_session_id


class BatchValidationError(ValueError):
    """Raised when a batch is malformed; nothing from the batch has been started."""

    def __init__(self, problems: list[str]) -> None:
        super().__init__("; ".join(problems))
        self.problems = problems


class TaskSpec(BaseModel):
    """One unit of work submitted to the scheduler."""

    id: str = Field(..., description="Session id; must be unique within the batch.")
    prompt: str = Field(..., description="Prompt handed to the worker.")
    model: str | None = Field(default=None, description="Overrides the batch model.")
    budget: float | None = Field(default=None, description="Overrides the batch budget (USD).")
    enhance: bool = Field(
        default=True,
        description="Wrap the prompt with the validation and verification sections.",
    )

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        return validate_session_id(value)

    @field_validator("prompt")
    @classmethod
    def _require_prompt(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Task prompt must not be empty")
        return value

    @field_validator("budget")
    @classmethod
    def _validate_budget(cls, value: float | None) -> float | None:
        if value is not None and value < 0:
            raise ValueError("Task budget must be >= 0")
        return value


def _describe(index: int, raw: Any) -> str:
    if isinstance(raw, Mapping) and raw.get("id"):
        return f"Task '{raw['id']}'"
    return f"Task {index}"


def validate_batch(tasks: Iterable[TaskSpec | Mapping[str, Any]]) -> list[TaskSpec]:
    """Validate every task in a batch and return them in submission order.

    All problems are collected before raising so that a single
    ``BatchValidationError`` reports the whole batch.
    """

    problems: list[str] = []
    specs: list[TaskSpec] = []
    seen: set[str] = set()

    for index, raw in enumerate(tasks):
        if isinstance(raw, TaskSpec):
            spec = raw
        elif isinstance(raw, Mapping):
            label = _describe(index, raw)
            if not raw.get("id"):
                problems.append(f"Task {index} missing 'id' field")
                continue
            if not raw.get("prompt"):
                problems.append(f"{label} missing 'prompt' field")
                continue
            try:
                spec = TaskSpec.model_validate(dict(raw))
            except ValidationError as exc:
                details = ", ".join(error["msg"] for error in exc.errors())
                problems.append(f"{label} is invalid: {details}")
                continue
        else:
            problems.append(f"Task {index} must be an object, got {type(raw).__name__}")
            continue

        if spec.id in seen:
            problems.append(f"Duplicate task id '{spec.id}' in batch")
            continue
        seen.add(spec.id)
        specs.append(spec)

    if not specs and not problems:
        problems.append("Batch contains no tasks")
    if problems:
        raise BatchValidationError(problems)
    return specs


__all__ = ["BatchValidationError", "TaskSpec", "validate_batch"]
