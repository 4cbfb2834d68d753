"""Integration tests for git-backed change detection and checkout."""

from __future__ import annotations

import subprocess
from typing import TYPE_CHECKING

import pytest

from gantry.infra.clients.git_changes import (
    CheckoutError,
    GitChangedFilesDetector,
    GitSourceCheckout,
)

if TYPE_CHECKING:
    from pathlib import Path

pytestmark = pytest.mark.integration


def _git(repo: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args], cwd=repo, check=True, capture_output=True, text=True
    )
    return result.stdout.strip()


def _commit(repo: Path, files: dict[str, str], message: str) -> None:
    for name, content in files.items():
        path = repo / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    _git(repo, "add", "-A")
    _git(repo, "commit", "-q", "-m", message)


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    path = tmp_path / "repo"
    path.mkdir()
    _git(path, "init", "-q", "-b", "main")
    _git(path, "config", "user.email", "ci@example.com")
    _git(path, "config", "user.name", "CI")
    _commit(path, {"README.md": "readme\n"}, "initial")
    return path


class TestGitChangedFilesDetector:
    @pytest.mark.asyncio
    async def test_default_base_is_previous_commit(self, repo: Path) -> None:
        _commit(repo, {"tfhe/src/integer/mod.rs": "//\n", "Cargo.toml": "[workspace]\n"}, "c2")

        changes = await GitChangedFilesDetector(repo).changed_files(None)

        assert changes.determinate
        assert set(changes.paths) == {"tfhe/src/integer/mod.rs", "Cargo.toml"}

    @pytest.mark.asyncio
    async def test_base_ref_uses_merge_base(self, repo: Path) -> None:
        _git(repo, "checkout", "-q", "-b", "feature")
        _commit(repo, {"tfhe/src/shortint/lib.rs": "//\n"}, "feature work")
        _git(repo, "checkout", "-q", "main")
        _commit(repo, {"docs/index.md": "docs\n"}, "main moves on")
        _git(repo, "checkout", "-q", "feature")

        changes = await GitChangedFilesDetector(repo).changed_files("main")

        # Changes on main after the fork point are not part of the diff
        assert changes.paths == {"tfhe/src/shortint/lib.rs"}

    @pytest.mark.asyncio
    async def test_unknown_base_is_indeterminate(self, repo: Path) -> None:
        changes = await GitChangedFilesDetector(repo).changed_files("origin/does-not-exist")

        assert not changes.determinate

    @pytest.mark.asyncio
    async def test_outside_repository_is_indeterminate(self, tmp_path: Path) -> None:
        plain = tmp_path / "plain"
        plain.mkdir()

        changes = await GitChangedFilesDetector(plain).changed_files(None)

        assert not changes.determinate

    @pytest.mark.asyncio
    async def test_detect_per_group(self, repo: Path) -> None:
        _commit(repo, {"tfhe/src/integer/mod.rs": "//\n"}, "c2")

        result = await GitChangedFilesDetector(repo).detect(
            None,
            {"integer": ["tfhe/src/integer/**"], "gpu": ["backends/tfhe-cuda-backend/**"]},
        )

        assert result == {"integer": True, "gpu": False}

    @pytest.mark.asyncio
    async def test_detect_indeterminate_marks_all_changed(self, tmp_path: Path) -> None:
        result = await GitChangedFilesDetector(tmp_path).detect(
            None, {"integer": ["tfhe/src/integer/**"]}
        )

        assert result == {"integer": True}


class TestGitSourceCheckout:
    @pytest.mark.asyncio
    async def test_checks_out_fetched_ref(self, repo: Path, tmp_path: Path) -> None:
        clone = tmp_path / "clone"
        subprocess.run(["git", "clone", "-q", str(repo), str(clone)], check=True)
        _commit(repo, {"new.txt": "x\n"}, "after clone")
        head = _git(repo, "rev-parse", "HEAD")

        path = await GitSourceCheckout(clone).checkout("main")

        assert path == clone
        assert _git(clone, "rev-parse", "HEAD") == head

    @pytest.mark.asyncio
    async def test_unknown_ref_raises(self, repo: Path, tmp_path: Path) -> None:
        clone = tmp_path / "clone"
        subprocess.run(["git", "clone", "-q", str(repo), str(clone)], check=True)

        with pytest.raises(CheckoutError, match="git fetch"):
            await GitSourceCheckout(clone).checkout("refs/heads/missing")
