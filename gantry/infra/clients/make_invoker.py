"""Build target invoker: `make <target>` locally or through an exec prefix.

With an exec prefix such as ("ssh", "{label}") the command runs on the
provisioned instance; env is then passed as VAR=value make arguments, which
make treats as variable overrides and exports to recipes.
"""

from __future__ import annotations

import logging
import shlex
from typing import TYPE_CHECKING

from gantry.infra.tools.command_runner import CommandRunner

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from pathlib import Path

    from gantry.core.models import RunnerHandle

logger = logging.getLogger(__name__)


class MakeTargetInvoker:
    """BuildTargetInvoker that runs make targets.

    Attributes:
        exec_prefix: Command template prepended to the make invocation.
            Placeholders: {label}, {backend}, {profile}.
        make: Make executable.
        remote_cwd: Directory to cd into on the instance (prefix mode only).
        output_tail_lines: Lines of output logged when a target fails.
    """

    def __init__(
        self,
        exec_prefix: Sequence[str] = (),
        make: str = "make",
        cwd: Path | None = None,
        remote_cwd: str | None = None,
        output_tail_lines: int = 40,
    ) -> None:
        self.exec_prefix = tuple(exec_prefix)
        self.make = make
        self.remote_cwd = remote_cwd
        self.output_tail_lines = output_tail_lines
        self._runner = CommandRunner(cwd=cwd)

    def build_command(
        self, handle: RunnerHandle, target: str, env: Mapping[str, str]
    ) -> tuple[list[str], dict[str, str] | None]:
        """Return (argv, local env) for invoking target."""
        if not self.exec_prefix:
            return [self.make, target], dict(env)

        values = {"label": handle.label, "backend": handle.backend, "profile": handle.profile}
        prefix = [arg.format(**values) for arg in self.exec_prefix]
        make_cmd = [self.make, target, *(f"{k}={v}" for k, v in sorted(env.items()))]
        remote = shlex.join(make_cmd)
        if self.remote_cwd:
            remote = f"cd {shlex.quote(self.remote_cwd)} && {remote}"
        return [*prefix, remote], None

    async def invoke(
        self, handle: RunnerHandle, target: str, env: Mapping[str, str]
    ) -> int:
        cmd, local_env = self.build_command(handle, target, env)
        logger.debug("Invoking %s on %s", target, handle.label)
        result = await self._runner.run_async(cmd, env=local_env)
        if not result.ok:
            logger.warning(
                "Target %s exited %d:\n%s",
                target,
                result.returncode,
                result.stdout_tail(max_chars=4000, max_lines=self.output_tail_lines),
            )
        return result.returncode
