"""Pytest configuration for gantry tests."""

import os
from pathlib import Path

import pytest

from gantry.domain.path_filters import PathFilterGroup
from gantry.domain.pipeline_definition import PipelineDefinition, StepSpec


def pytest_configure(config: pytest.Config) -> None:
    """Configure test environment before collection.

    Sets up environment variables to:
    - Redirect run records to /tmp to avoid polluting ~/.config/gantry/runs/
    - Redirect concurrency lock files to /tmp
    - Disable per-run debug log files
    - Drop chat webhooks so no test posts to a real channel
    """
    os.environ["GANTRY_RUNS_DIR"] = "/tmp/gantry-test-runs"
    os.environ["GANTRY_LOCK_DIR"] = "/tmp/gantry-test-locks"
    os.environ["GANTRY_DISABLE_DEBUG_LOG"] = "1"
    os.environ.pop("SLACK_WEBHOOK", None)


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Default unmarked tests to unit category."""
    for item in items:
        if any(marker in item.keywords for marker in ("unit", "integration", "e2e")):
            continue
        item.add_marker(pytest.mark.unit)


@pytest.fixture
def integer_definition() -> PipelineDefinition:
    """Signed integer test pipeline gated on the integer filter group."""
    return PipelineDefinition(
        name="signed-integer-tests",
        backend="aws",
        profile="cpu-big",
        steps=(
            StepSpec("lint", "pcc"),
            StepSpec("tests", "test_signed_integer_ci", env={"FAST_TESTS": "TRUE"}),
            StepSpec("docs", "test_signed_integer_docs"),
        ),
        filters=(
            PathFilterGroup("integer", ("tfhe/src/integer/**", "tfhe/src/shortint/**")),
            PathFilterGroup("dependencies", ("Cargo.toml", "**/Cargo.lock")),
        ),
        env={"CARGO_TERM_COLOR": "always"},
    )


@pytest.fixture
def runs_dir(tmp_path: Path) -> Path:
    path = tmp_path / "runs"
    path.mkdir()
    return path
