"""Environment configuration and loading for gantry.

Centralizes config paths and dotenv loading. Call load_user_env() early so
webhook and token variables are present before GantryConfig.from_env().
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# User config directory (stores .env, runs, etc.)
USER_CONFIG_DIR = Path.home() / ".config" / "gantry"


def get_runs_dir() -> Path:
    """Get the runs directory, respecting GANTRY_RUNS_DIR env var.

    Evaluated at call time so values loaded from .env are honored.
    """
    return Path(os.environ.get("GANTRY_RUNS_DIR", str(USER_CONFIG_DIR / "runs")))


def get_pipeline_runs_dir(pipeline: str) -> Path:
    """Get runs directory segmented by pipeline name.

    Example: "Signed integer tests" -> <runs>/signed-integer-tests
    """
    return get_runs_dir() / encode_pipeline_name(pipeline)


def get_lock_dir() -> Path:
    """Get the lock directory, respecting GANTRY_LOCK_DIR env var."""
    return Path(os.environ.get("GANTRY_LOCK_DIR", "/tmp/gantry-locks"))


def load_user_env() -> None:
    """Load environment from ${USER_CONFIG_DIR}/.env (~/.config/gantry/.env)."""
    load_dotenv(dotenv_path=USER_CONFIG_DIR / ".env")


def load_env(repo_path: Path | None = None) -> None:
    """Load environment from user config and optionally a repository.

    Args:
        repo_path: Optional repository path. If provided, loads
            <repo_path>/.env with override=True.
    """
    load_user_env()
    if repo_path is not None:
        load_dotenv(dotenv_path=repo_path / ".env", override=True)


def encode_pipeline_name(pipeline: str) -> str:
    """Encode a pipeline name into a filesystem-safe directory name."""
    safe = "".join(c if c.isalnum() else "-" for c in pipeline.strip().lower())
    while "--" in safe:
        safe = safe.replace("--", "-")
    return safe.strip("-") or "pipeline"
