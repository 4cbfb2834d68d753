"""Runner provisioner driven by configured shell command templates.

The start template is run with {backend} and {profile} substituted; it must
block until the instance is reachable and print the runner label as the last
non-empty line of stdout. The stop template additionally receives {label}.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from gantry.core.errors import ProvisionError, TeardownError
from gantry.core.models import RunnerHandle
from gantry.infra.tools.command_runner import CommandRunner

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from pathlib import Path

logger = logging.getLogger(__name__)


def render_command(template: Sequence[str], values: Mapping[str, str]) -> list[str]:
    """Substitute placeholders in every argument of a command template.

    Raises:
        KeyError: If the template names an unknown placeholder.
    """
    return [arg.format(**values) for arg in template]


def _last_line(text: str) -> str:
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    return lines[-1] if lines else ""


class CommandProvisioner:
    """InstanceProvisioner that shells out to start/stop commands.

    The provisioning timeout and retries are applied by RunnerLifecycle;
    command_timeout only bounds a single command.
    """

    def __init__(
        self,
        start_command: Sequence[str],
        stop_command: Sequence[str],
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        command_timeout: float | None = None,
    ) -> None:
        if not start_command or not stop_command:
            raise ValueError("start and stop commands are required")
        self.start_command = tuple(start_command)
        self.stop_command = tuple(stop_command)
        self._env = dict(env or {})
        self._runner = CommandRunner(cwd=cwd, timeout_seconds=command_timeout)

    async def start(self, backend: str, profile: str) -> RunnerHandle:
        try:
            cmd = render_command(self.start_command, {"backend": backend, "profile": profile})
        except KeyError as e:
            raise ProvisionError(
                f"Unknown placeholder {e} in start command", backend=backend, profile=profile
            ) from e
        result = await self._runner.run_async(cmd, env=self._env)
        if result.timed_out:
            raise ProvisionError(
                "start command timed out", backend=backend, profile=profile, timed_out=True
            )
        if not result.ok:
            raise ProvisionError(
                f"start command exited {result.returncode}: {result.stderr_tail(300)}",
                backend=backend,
                profile=profile,
            )
        label = _last_line(result.stdout)
        if not label:
            raise ProvisionError(
                "start command printed no runner label", backend=backend, profile=profile
            )
        logger.info("Provisioned %s on %s/%s", label, backend, profile)
        return RunnerHandle(label=label, backend=backend, profile=profile)

    async def stop(self, handle: RunnerHandle) -> None:
        values = {"label": handle.label, "backend": handle.backend, "profile": handle.profile}
        try:
            cmd = render_command(self.stop_command, values)
        except KeyError as e:
            raise TeardownError(handle.label, f"unknown placeholder {e} in stop command") from e
        result = await self._runner.run_async(cmd, env=self._env)
        if not result.ok:
            detail = "timed out" if result.timed_out else (
                f"exited {result.returncode}: {result.stderr_tail(300)}"
            )
            raise TeardownError(handle.label, f"stop command {detail}")
        logger.info("Stopped %s", handle.label)
