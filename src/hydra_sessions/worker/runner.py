"""Async launcher for worker CLI sessions."""

from __future__ import annotations

import asyncio
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from .utils import worker_environment

DEFAULT_EXECUTABLE = "claude"


class WorkerRunnerError(RuntimeError):
    """Base class for worker runner errors."""


class WorkerNotFoundError(WorkerRunnerError):
    """Raised when the worker executable cannot be located."""


class WorkerLaunchError(WorkerRunnerError):
    """Raised when the worker process cannot be spawned."""


@dataclass(slots=True)
class WorkerExecutionResult:
    """Holds the outcome of a short, fully-awaited worker invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class WorkerRunner:
    """Spawn worker CLI processes asynchronously.

    Each session runs ``<executable> -p <prompt> --model <model>
    --max-budget-usd <budget> --permission-mode <mode> --output-format json``
    with stdout and stderr redirected into the session's artifact file. The
    budget is handed to the worker as-is; nothing here meters it.
    """

    def __init__(
        self,
        executable: Path | str | None = None,
        *,
        project_dir: Path | None = None,
        permission_mode: str | None = "bypassPermissions",
        extra_args: Sequence[str] | None = None,
    ) -> None:
        self._executable_path = self._resolve_executable(executable)
        self._project_dir = Path(project_dir) if project_dir is not None else None
        self._permission_mode = permission_mode
        self._extra_args = tuple(extra_args or ())

    @staticmethod
    def _resolve_executable(explicit: Path | str | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            if isinstance(explicit, str) and "/" not in explicit:
                found = shutil.which(explicit)
                if found is not None:
                    return Path(found)
            raise WorkerNotFoundError(f"Worker executable not found at {candidate}")

        binary = shutil.which(DEFAULT_EXECUTABLE)
        if binary is None:
            raise WorkerNotFoundError(f"Worker executable '{DEFAULT_EXECUTABLE}' not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    def build_args(
        self,
        prompt: str,
        *,
        model: str | None = None,
        budget: float | None = None,
    ) -> list[str]:
        args: list[str] = [str(self._executable_path), "-p", prompt]
        if model:
            args.extend(["--model", model])
        if budget is not None:
            args.extend(["--max-budget-usd", f"{budget:g}"])
        if self._permission_mode:
            args.extend(["--permission-mode", self._permission_mode])
        args.extend(["--output-format", "json"])
        args.extend(self._extra_args)
        return args

    async def start(
        self,
        session_id: str,
        prompt: str,
        *,
        output_path: Path,
        model: str | None = None,
        budget: float | None = None,
    ) -> asyncio.subprocess.Process:
        """Spawn the worker and return its process handle without waiting for it."""

        args = self.build_args(prompt, model=model, budget=budget)
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            with output_path.open("wb") as output_handle:
                # Own session: operator interrupts reach workers only through the supervisor.
                return await asyncio.create_subprocess_exec(
                    *args,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=output_handle,
                    stderr=asyncio.subprocess.STDOUT,
                    cwd=str(self._project_dir) if self._project_dir else None,
                    env=worker_environment(session_id, model=model),
                    start_new_session=True,
                )
        except FileNotFoundError as exc:
            raise WorkerNotFoundError(f"Worker executable not found at {self._executable_path}") from exc
        except OSError as exc:
            raise WorkerLaunchError(f"Worker failed to start: {exc}") from exc

    async def version(self) -> WorkerExecutionResult:
        cmd = [str(self._executable_path), "--version"]
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout_bytes, stderr_bytes = await process.communicate()
        return WorkerExecutionResult(
            args=tuple(cmd),
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout_bytes.decode("utf-8", errors="replace"),
            stderr=stderr_bytes.decode("utf-8", errors="replace"),
        )


__all__ = [
    "DEFAULT_EXECUTABLE",
    "WorkerExecutionResult",
    "WorkerLaunchError",
    "WorkerNotFoundError",
    "WorkerRunner",
    "WorkerRunnerError",
]
