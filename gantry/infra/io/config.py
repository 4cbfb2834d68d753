"""Configuration dataclass for gantry.

Provides GantryConfig for centralized environment configuration. Programmatic
users construct it directly; the CLI loads it with from_env() after
load_user_env() has read ~/.config/gantry/.env.

Environment Variables:
    GANTRY_RUNS_DIR: Directory for run records (default: ~/.config/gantry/runs)
    GANTRY_LOCK_DIR: Directory for concurrency lock files (default: /tmp/gantry-locks)
    GANTRY_PROVISION_TIMEOUT: Seconds to wait for an instance (default: 1800)
    GANTRY_PROVISION_RETRIES: Provisioning attempts (default: 3)
    GANTRY_PROVISION_RETRY_DELAY: Seconds between attempts (default: 30)
    SLACK_WEBHOOK: Incoming webhook URL for notifications
    SLACK_CHANNEL: Channel override for notifications
    SLACK_USERNAME: Bot username for notifications
    SLACK_ICON: Bot icon URL for notifications
    GITHUB_TOKEN: Token for checkout and permission checks
    GITHUB_SERVER_URL / GITHUB_REPOSITORY / GITHUB_RUN_ID: Used to build the
        run URL linked from notifications
    GITHUB_API_URL: GitHub API base URL (default: https://api.github.com)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from gantry.infra.tools.env import USER_CONFIG_DIR

DEFAULT_PROVISION_TIMEOUT = 1800.0
DEFAULT_PROVISION_RETRIES = 3
DEFAULT_PROVISION_RETRY_DELAY = 30.0


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        message = "Configuration validation failed:\n" + "\n".join(
            f"  - {e}" for e in errors
        )
        super().__init__(message)


def _parse_float(name: str, default: float, errors: list[str]) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        errors.append(f"{name}: invalid number '{raw}'")
        return default


def _parse_int(name: str, default: int, errors: list[str]) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        errors.append(f"{name}: invalid integer '{raw}'")
        return default


def build_run_url(server_url: str | None, repository: str | None, run_id: str | None) -> str | None:
    """Build the Actions run URL (ACTION_RUN_URL in the workflows)."""
    if not (server_url and repository and run_id):
        return None
    return f"{server_url.rstrip('/')}/{repository}/actions/runs/{run_id}"


@dataclass(frozen=True)
class GantryConfig:
    """Centralized environment configuration.

    Attributes:
        runs_dir: Directory where run records are stored.
        lock_dir: Directory for concurrency lock files.
        provision_timeout: Seconds to wait for an instance to become reachable.
        provision_retries: Provisioning attempts before giving up.
        provision_retry_delay: Seconds between provisioning attempts.
        slack_webhook: Incoming webhook URL. Notifications are disabled
            when unset.
        slack_channel / slack_username / slack_icon: Message decoration.
        github_token: Token used for checkout and permission checks.
        github_api_url: GitHub REST API base URL.
        repository: "owner/name" of the repository running the pipeline.
        run_url: Link to the CI run, included in notifications.

    Example:
        config = GantryConfig(slack_webhook="https://hooks.slack.com/...")
        config = GantryConfig.from_env()
    """

    runs_dir: Path = field(default_factory=lambda: USER_CONFIG_DIR / "runs")
    lock_dir: Path = field(default_factory=lambda: Path("/tmp/gantry-locks"))

    provision_timeout: float = DEFAULT_PROVISION_TIMEOUT
    provision_retries: int = DEFAULT_PROVISION_RETRIES
    provision_retry_delay: float = DEFAULT_PROVISION_RETRY_DELAY

    slack_webhook: str | None = None
    slack_channel: str | None = None
    slack_username: str | None = None
    slack_icon: str | None = None

    github_token: str | None = None
    github_api_url: str = "https://api.github.com"
    repository: str | None = None
    run_url: str | None = None

    @property
    def notifications_enabled(self) -> bool:
        return bool(self.slack_webhook)

    @classmethod
    def from_env(cls, *, validate: bool = True) -> GantryConfig:
        """Create GantryConfig from environment variables.

        Args:
            validate: If True (default), run validate() and raise
                ConfigurationError on any errors. Parse errors are always
                raised.
        """
        parse_errors: list[str] = []
        repository = os.environ.get("GITHUB_REPOSITORY") or None

        config = cls(
            runs_dir=Path(
                os.environ.get("GANTRY_RUNS_DIR", str(USER_CONFIG_DIR / "runs"))
            ),
            lock_dir=Path(os.environ.get("GANTRY_LOCK_DIR", "/tmp/gantry-locks")),
            provision_timeout=_parse_float(
                "GANTRY_PROVISION_TIMEOUT", DEFAULT_PROVISION_TIMEOUT, parse_errors
            ),
            provision_retries=_parse_int(
                "GANTRY_PROVISION_RETRIES", DEFAULT_PROVISION_RETRIES, parse_errors
            ),
            provision_retry_delay=_parse_float(
                "GANTRY_PROVISION_RETRY_DELAY",
                DEFAULT_PROVISION_RETRY_DELAY,
                parse_errors,
            ),
            slack_webhook=os.environ.get("SLACK_WEBHOOK") or None,
            slack_channel=os.environ.get("SLACK_CHANNEL") or None,
            slack_username=os.environ.get("SLACK_USERNAME") or None,
            slack_icon=os.environ.get("SLACK_ICON") or None,
            github_token=os.environ.get("GITHUB_TOKEN") or None,
            github_api_url=os.environ.get("GITHUB_API_URL") or "https://api.github.com",
            repository=repository,
            run_url=build_run_url(
                os.environ.get("GITHUB_SERVER_URL"),
                repository,
                os.environ.get("GITHUB_RUN_ID"),
            ),
        )

        if parse_errors:
            raise ConfigurationError(parse_errors)
        if validate:
            errors = config.validate()
            if errors:
                raise ConfigurationError(errors)
        return config

    def validate(self) -> list[str]:
        """Validate configuration and return a list of errors."""
        errors: list[str] = []
        if self.provision_timeout <= 0:
            errors.append(
                f"provision_timeout must be positive, got {self.provision_timeout}"
            )
        if self.provision_retries < 1:
            errors.append(
                f"provision_retries must be at least 1, got {self.provision_retries}"
            )
        if self.provision_retry_delay < 0:
            errors.append(
                "provision_retry_delay must be non-negative, "
                f"got {self.provision_retry_delay}"
            )
        if self.slack_webhook and not self.slack_webhook.startswith(("https://", "http://")):
            errors.append("SLACK_WEBHOOK must be an http(s) URL")
        return errors
