"""Git-backed source checkout and change detection."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from gantry.core.errors import GantryError
from gantry.core.models import ChangeSet
from gantry.domain.path_filters import changed_groups, groups_from_mapping
from gantry.infra.tools.command_runner import CommandRunner

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

logger = logging.getLogger(__name__)

# Default timeout for git commands (seconds)
DEFAULT_GIT_TIMEOUT = 60.0
DEFAULT_BASE_REF = "HEAD~1"


class CheckoutError(GantryError):
    """Raised when git could not fetch or check out a ref."""


class GitChangedFilesDetector:
    """Computes changed files with `git diff --name-only base...HEAD`.

    Any git failure (unknown base in a shallow clone, not a repository)
    yields an indeterminate ChangeSet instead of an exception.
    """

    def __init__(self, repo_path: Path, timeout: float = DEFAULT_GIT_TIMEOUT) -> None:
        self.repo_path = repo_path
        self._runner = CommandRunner(cwd=repo_path, timeout_seconds=timeout)

    async def changed_files(self, base_ref: str | None) -> ChangeSet:
        if base_ref:
            # Three-dot form diffs against the merge base
            base = base_ref
            cmd = ["git", "diff", "--name-only", f"{base_ref}...HEAD"]
        else:
            base = DEFAULT_BASE_REF
            cmd = ["git", "diff", "--name-only", DEFAULT_BASE_REF, "HEAD"]
        result = await self._runner.run_async(cmd)
        if not result.ok:
            logger.warning(
                "git diff against %s failed (exit %d): %s",
                base,
                result.returncode,
                result.stderr_tail(200),
            )
            return ChangeSet.indeterminate()
        paths = [line.strip() for line in result.stdout.splitlines() if line.strip()]
        logger.debug("%d file(s) changed since %s", len(paths), base)
        return ChangeSet.of(paths)

    async def detect(
        self, base_ref: str | None, filter_groups: Mapping[str, Sequence[str]]
    ) -> dict[str, bool]:
        """Per filter group, whether it changed. Indeterminate counts as changed."""
        changes = await self.changed_files(base_ref)
        groups = groups_from_mapping(filter_groups)
        if not changes.determinate or not changes.paths:
            return {group.name: True for group in groups}
        return changed_groups(groups, changes)


class GitSourceCheckout:
    """SourceCheckout that fetches a ref into a local repository."""

    def __init__(
        self,
        repo_path: Path,
        remote: str = "origin",
        timeout: float = DEFAULT_GIT_TIMEOUT,
    ) -> None:
        self.repo_path = repo_path
        self.remote = remote
        self._runner = CommandRunner(cwd=repo_path, timeout_seconds=timeout)

    async def checkout(
        self, ref: str, depth: int | None = None, credentials: str | None = None
    ) -> Path:
        """Fetch ref from the remote and check it out detached.

        Raises:
            CheckoutError: If fetch or checkout fails.
        """
        fetch = ["git"]
        if credentials:
            fetch += [
                "-c",
                f"http.extraheader=AUTHORIZATION: bearer {credentials}",
            ]
        fetch += ["fetch", "--no-tags", self.remote, ref]
        if depth is not None:
            fetch.append(f"--depth={depth}")
        result = await self._runner.run_async(fetch)
        if not result.ok:
            raise CheckoutError(f"git fetch {ref} failed: {result.stderr_tail(300)}")

        result = await self._runner.run_async(["git", "checkout", "--detach", "FETCH_HEAD"])
        if not result.ok:
            raise CheckoutError(f"git checkout {ref} failed: {result.stderr_tail(300)}")
        logger.info("Checked out %s in %s", ref, self.repo_path)
        return self.repo_path
