"""
provisioner.execution.process - Child Process Runner
====================================================

Two ways to start a child process:

    run(argv)             await completion, capture stdout/stderr, real exit code
    spawn_detached(argv)  start in a new session and return immediately

Detached children are never awaited; their exit status is not observable.
Callers that use `spawn_detached` accept that visibility gap explicitly.

Both raise OSError when the executable cannot be started. Exit codes are
never negative: a child killed by signal N reports 128 + N, like a shell.
"""

from __future__ import annotations

import asyncio
import shlex
import subprocess
from typing import Mapping, Optional, Sequence

import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger()


class ProcessResult(BaseModel):
    """Outcome of an awaited child process."""

    argv: list[str] = Field(description="Command that was run")
    exit_code: int = Field(description="Exit status (128 + signal if killed)")
    stdout: str = Field(default="", description="Captured standard output")
    stderr: str = Field(default="", description="Captured standard error")

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class ProcessRunner:
    """Starts child processes for the execution engine."""

    def __init__(self) -> None:
        self._detached: list[subprocess.Popen] = []
        self._logger = logger.bind(component="process_runner")

    async def run(
        self,
        argv: Sequence[str],
        cwd: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> ProcessResult:
        """Run `argv` to completion.

        Raises:
            OSError: If the process cannot be spawned.
        """
        argv = [str(a) for a in argv]
        self._logger.debug("process_starting", command=shlex.join(argv), cwd=cwd)

        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env=dict(env) if env is not None else None,
        )
        stdout, stderr = await proc.communicate()

        exit_code = proc.returncode if proc.returncode is not None else 0
        if exit_code < 0:
            exit_code = 128 - exit_code

        return ProcessResult(
            argv=argv,
            exit_code=exit_code,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )

    def spawn_detached(
        self,
        argv: Sequence[str],
        cwd: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> int:
        """Start `argv` in its own session without waiting.

        Returns:
            The child's pid.

        Raises:
            OSError: If the process cannot be spawned.
        """
        argv = [str(a) for a in argv]
        proc = subprocess.Popen(
            argv,
            cwd=cwd,
            env=dict(env) if env is not None else None,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
        self.reap_detached()
        self._detached.append(proc)
        self._logger.info("process_detached", command=shlex.join(argv), pid=proc.pid)
        return proc.pid

    def reap_detached(self) -> int:
        """Collect detached children that have exited.

        Returns:
            Number of detached children still running.
        """
        self._detached = [proc for proc in self._detached if proc.poll() is None]
        return len(self._detached)
