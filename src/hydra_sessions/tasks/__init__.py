"""Task batch models, loading and prompt decoration."""

from .loader import TaskLoadError, load_tasks
from .models import BatchValidationError, TaskSpec, validate_batch
from .prompts import enhance_prompt

__all__ = [
    "BatchValidationError",
    "TaskLoadError",
    "TaskSpec",
    "enhance_prompt",
    "load_tasks",
    "validate_batch",
]
