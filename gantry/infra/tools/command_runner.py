"""Async subprocess execution with timeouts and process-group termination.

Commands run in their own process group so a timeout or cancellation kills
the whole tree (make spawns compilers and test binaries). Termination sends
SIGTERM, waits DEFAULT_KILL_GRACE_SECONDS, then SIGKILL.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_KILL_GRACE_SECONDS = 2.0
# Conventional exit code for timed out commands (matches coreutils timeout)
TIMEOUT_EXIT_CODE = 124


def _tail(text: str, max_chars: int, max_lines: int) -> str:
    lines = text.rstrip("\n").splitlines()[-max_lines:]
    joined = "\n".join(lines)
    if len(joined) > max_chars:
        return "..." + joined[-max_chars:]
    return joined


@dataclass
class CommandResult:
    """Result of a finished command."""

    command: list[str] | str
    returncode: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    def stdout_tail(self, max_chars: int = 800, max_lines: int = 20) -> str:
        return _tail(self.stdout, max_chars, max_lines)

    def stderr_tail(self, max_chars: int = 800, max_lines: int = 20) -> str:
        return _tail(self.stderr, max_chars, max_lines)


class CommandRunner:
    """Runs commands asynchronously in a fixed working directory.

    Attributes:
        cwd: Default working directory.
        timeout_seconds: Default timeout (None for no timeout).
        kill_grace_seconds: Time between SIGTERM and SIGKILL.
    """

    def __init__(
        self,
        cwd: Path | None = None,
        timeout_seconds: float | None = None,
        kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS,
    ) -> None:
        self.cwd = cwd
        self.timeout_seconds = timeout_seconds
        self.kill_grace_seconds = kill_grace_seconds

    async def run_async(
        self,
        cmd: list[str] | str,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        shell: bool = False,
        cwd: Path | None = None,
    ) -> CommandResult:
        """Run a command and capture its output.

        Args:
            cmd: Argument list, or a shell string when shell=True.
            env: Variables merged over os.environ.
            timeout: Overrides the runner's default timeout.
            shell: Run through /bin/sh.
            cwd: Overrides the runner's working directory.

        Returns:
            CommandResult. A timeout yields returncode TIMEOUT_EXIT_CODE and
            timed_out=True. If the awaiting task is cancelled the process
            group is terminated and CancelledError propagates.
        """
        effective_timeout = timeout if timeout is not None else self.timeout_seconds
        merged_env = {**os.environ, **(env or {})}
        work_dir = cwd if cwd is not None else self.cwd
        start = time.monotonic()

        if shell:
            if not isinstance(cmd, str):
                raise TypeError("shell=True requires a command string")
            proc = await asyncio.create_subprocess_shell(
                cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=merged_env,
                cwd=work_dir,
                start_new_session=True,
            )
        else:
            args = [cmd] if isinstance(cmd, str) else list(cmd)
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=merged_env,
                cwd=work_dir,
                start_new_session=True,
            )

        logger.debug("Started pid=%s: %s", proc.pid, cmd)
        try:
            stdout_b, stderr_b = await asyncio.wait_for(
                proc.communicate(), timeout=effective_timeout
            )
        except TimeoutError:
            await self._terminate(proc)
            logger.warning("Command timed out after %ss: %s", effective_timeout, cmd)
            return CommandResult(
                command=cmd,
                returncode=TIMEOUT_EXIT_CODE,
                timed_out=True,
                duration_seconds=time.monotonic() - start,
            )
        except asyncio.CancelledError:
            await self._terminate(proc)
            raise

        return CommandResult(
            command=cmd,
            returncode=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout_b.decode("utf-8", errors="replace"),
            stderr=stderr_b.decode("utf-8", errors="replace"),
            duration_seconds=time.monotonic() - start,
        )

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        try:
            os.killpg(proc.pid, signal.SIGTERM)
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=self.kill_grace_seconds)
        except TimeoutError:
            try:
                os.killpg(proc.pid, signal.SIGKILL)
            except ProcessLookupError:
                return
            await proc.wait()


async def run_command_async(
    cmd: list[str] | str,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    timeout_seconds: float | None = None,
    shell: bool = False,
) -> CommandResult:
    """Convenience wrapper: run one command with a throwaway CommandRunner."""
    return await CommandRunner(cwd=cwd).run_async(
        cmd, env=env, timeout=timeout_seconds, shell=shell
    )
