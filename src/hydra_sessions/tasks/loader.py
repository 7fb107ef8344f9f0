"""Task batch loading utilities."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from .models import TaskSpec, validate_batch


class TaskLoadError(RuntimeError):
    """Raised when a task batch document cannot be read or parsed."""


def _parse_document(text: str, *, origin: str, yaml_allowed: bool) -> Any:
    try:
        return json.loads(text)
    except ValueError as json_error:
        if not yaml_allowed:
            raise TaskLoadError(f"Invalid JSON in {origin}: {json_error}") from json_error
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as exc:  # pragma: no cover - library type
        raise TaskLoadError(f"Failed to parse YAML in {origin}: {exc}") from exc


def load_tasks(source: str | Path) -> list[TaskSpec]:
    """Load a batch from inline JSON, or from a ``.json``/``.yaml``/``.yml`` file.

    The document is either a list of tasks or a mapping with a ``tasks`` list.
    Validation failures surface as ``BatchValidationError``.
    """

    path: Path | None = None
    if isinstance(source, Path):
        path = source
    else:
        stripped = source.strip()
        if not stripped.startswith(("[", "{")):
            path = Path(stripped)

    if path is not None:
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise TaskLoadError(f"Cannot read task file {path}: {exc}") from exc
        document = _parse_document(
            text,
            origin=str(path),
            yaml_allowed=path.suffix.lower() in {".yml", ".yaml"},
        )
    else:
        document = _parse_document(str(source), origin="task JSON", yaml_allowed=False)

    if isinstance(document, dict) and "tasks" in document:
        document = document["tasks"]
    if not isinstance(document, list):
        raise TaskLoadError("Task batch must be a list of task objects")

    return validate_batch(document)


__all__ = ["TaskLoadError", "load_tasks"]
