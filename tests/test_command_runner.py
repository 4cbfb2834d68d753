"""Integration tests for CommandRunner.

Tests cover:
- Command execution with exec and shell
- Timeout handling with process-group termination
- Cancellation of the awaiting task
- Output capture and tailing
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

import pytest

from gantry.infra.tools.command_runner import (
    TIMEOUT_EXIT_CODE,
    CommandResult,
    CommandRunner,
    run_command_async,
)

if TYPE_CHECKING:
    from pathlib import Path


pytestmark = pytest.mark.integration


class TestCommandResult:
    """Test CommandResult dataclass."""

    def test_ok_requires_zero_exit_and_no_timeout(self) -> None:
        assert CommandResult(command=["true"], returncode=0).ok
        assert not CommandResult(command=["false"], returncode=1).ok
        assert not CommandResult(command=["sleep"], returncode=0, timed_out=True).ok

    def test_stdout_tail_keeps_last_lines(self) -> None:
        stdout = "\n".join(f"line {i}" for i in range(50))
        result = CommandResult(command="x", returncode=0, stdout=stdout)

        tail = result.stdout_tail(max_lines=3)

        assert tail == "line 47\nline 48\nline 49"

    def test_tail_truncates_long_output(self) -> None:
        result = CommandResult(command="x", returncode=1, stderr="e" * 1000)

        tail = result.stderr_tail(max_chars=10)

        assert tail == "..." + "e" * 10


class TestCommandRunner:
    @pytest.mark.asyncio
    async def test_captures_stdout(self) -> None:
        result = await CommandRunner().run_async(["echo", "hello"])

        assert result.ok
        assert result.stdout == "hello\n"
        assert result.duration_seconds >= 0

    @pytest.mark.asyncio
    async def test_nonzero_exit(self) -> None:
        result = await CommandRunner().run_async(["false"])

        assert result.returncode == 1
        assert not result.ok
        assert not result.timed_out

    @pytest.mark.asyncio
    async def test_shell_mode_with_env(self) -> None:
        result = await CommandRunner().run_async(
            "echo $GANTRY_TEST_VALUE >&2; exit 3",
            env={"GANTRY_TEST_VALUE": "from-env"},
            shell=True,
        )

        assert result.returncode == 3
        assert result.stderr.strip() == "from-env"

    @pytest.mark.asyncio
    async def test_shell_requires_string(self) -> None:
        with pytest.raises(TypeError):
            await CommandRunner().run_async(["echo", "x"], shell=True)

    @pytest.mark.asyncio
    async def test_runs_in_cwd(self, tmp_path: Path) -> None:
        (tmp_path / "marker.txt").write_text("x")

        result = await CommandRunner(cwd=tmp_path).run_async(["ls"])

        assert "marker.txt" in result.stdout

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self) -> None:
        runner = CommandRunner(timeout_seconds=0.2, kill_grace_seconds=0.5)
        start = time.monotonic()

        result = await runner.run_async(["sleep", "30"])

        assert result.timed_out
        assert result.returncode == TIMEOUT_EXIT_CODE
        assert time.monotonic() - start < 5

    @pytest.mark.asyncio
    async def test_timeout_kills_child_processes(self) -> None:
        # The shell's child sleep must die with the process group
        runner = CommandRunner(kill_grace_seconds=0.5)
        start = time.monotonic()

        result = await runner.run_async("sleep 30 & wait", shell=True, timeout=0.2)

        assert result.timed_out
        assert time.monotonic() - start < 5

    @pytest.mark.asyncio
    async def test_cancellation_terminates_and_propagates(self) -> None:
        runner = CommandRunner(kill_grace_seconds=0.5)
        task = asyncio.create_task(runner.run_async(["sleep", "30"]))
        await asyncio.sleep(0.2)

        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await asyncio.wait_for(task, timeout=5)


class TestRunCommandAsync:
    @pytest.mark.asyncio
    async def test_convenience_wrapper(self, tmp_path: Path) -> None:
        result = await run_command_async(["pwd"], cwd=tmp_path)

        assert result.ok
        assert result.stdout.strip() == str(tmp_path)
