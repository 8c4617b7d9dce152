"""Subprocess runner for acquired scripts."""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path

from run_command_handler.errors import ExecutionError

logger = logging.getLogger(__name__)

STDOUT_FILE_NAME = "stdout"
STDERR_FILE_NAME = "stderr"


@dataclass(slots=True)
class ExecutionResult:
    """Execution outcome of one script run."""

    exit_code: int
    stdout_path: Path
    stderr_path: Path


class ExecutionRunner:
    """Run a script to completion with stdout/stderr captured to files in the work dir."""

    def __init__(self, *, os_name: str | None = None) -> None:
        self._os_name = os_name or os.name

    def run(
        self,
        script_path: Path,
        work_dir: Path,
        env: dict[str, str] | None = None,
        cwd: Path | None = None,
    ) -> ExecutionResult:
        """Run ``script_path``; output files live in ``work_dir``, the process runs in ``cwd``."""

        script_path = script_path.resolve()
        work_dir = work_dir.resolve()
        cwd = cwd.resolve() if cwd is not None else work_dir
        stdout_path = work_dir / STDOUT_FILE_NAME
        stderr_path = work_dir / STDERR_FILE_NAME
        run_args = _build_run_args(script_path, os_name=self._os_name)

        process_env = os.environ.copy()
        if env:
            process_env.update(env)

        logger.info("Executing %s in %s", script_path, cwd)
        try:
            with (
                stdout_path.open("wb") as stdout_handle,
                stderr_path.open("wb") as stderr_handle,
            ):
                completed = subprocess.run(  # noqa: S603
                    run_args,
                    cwd=cwd,
                    env=process_env,
                    stdin=subprocess.DEVNULL,
                    stdout=stdout_handle,
                    stderr=stderr_handle,
                    check=False,
                )
        except OSError as error:
            raise ExecutionError(
                f"failed to execute command: {error}",
                exit_code=None,
                stdout_path=stdout_path,
                stderr_path=stderr_path,
            ) from error

        logger.info("Script %s exited with code %d", script_path, completed.returncode)
        if completed.returncode != 0:
            raise ExecutionError(
                f"failed to execute command: command terminated with exit status "
                f"{completed.returncode}",
                exit_code=completed.returncode,
                stdout_path=stdout_path,
                stderr_path=stderr_path,
            )
        return ExecutionResult(
            exit_code=completed.returncode,
            stdout_path=stdout_path,
            stderr_path=stderr_path,
        )


def tail(path: Path, max_chars: int = 4096) -> str:
    """Last ``max_chars`` characters of a captured output file; empty when missing."""

    try:
        text = path.read_text("utf-8", errors="replace")
    except FileNotFoundError:
        return ""
    return text[-max_chars:]


def _build_run_args(script_path: Path, *, os_name: str) -> list[str]:
    if os_name == "nt":
        return ["cmd", "/c", str(script_path)]
    return ["/bin/sh", str(script_path)]
