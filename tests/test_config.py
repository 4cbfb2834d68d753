"""Unit tests for GantryConfig in gantry/infra/io/config.py."""

from __future__ import annotations

from pathlib import Path

import pytest

from gantry.infra.io.config import (
    DEFAULT_PROVISION_RETRIES,
    ConfigurationError,
    GantryConfig,
    build_run_url,
)

_ENV_VARS = (
    "GANTRY_RUNS_DIR",
    "GANTRY_LOCK_DIR",
    "GANTRY_PROVISION_TIMEOUT",
    "GANTRY_PROVISION_RETRIES",
    "GANTRY_PROVISION_RETRY_DELAY",
    "SLACK_WEBHOOK",
    "SLACK_CHANNEL",
    "GITHUB_TOKEN",
    "GITHUB_SERVER_URL",
    "GITHUB_REPOSITORY",
    "GITHUB_RUN_ID",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestGantryConfigDefaults:
    """Tests for GantryConfig default values."""

    def test_default_runs_dir(self) -> None:
        """Default runs_dir is ~/.config/gantry/runs."""
        config = GantryConfig()
        assert config.runs_dir == Path.home() / ".config" / "gantry" / "runs"

    def test_default_lock_dir(self) -> None:
        assert GantryConfig().lock_dir == Path("/tmp/gantry-locks")

    def test_notifications_disabled_without_webhook(self) -> None:
        assert GantryConfig().notifications_enabled is False
        assert GantryConfig(slack_webhook="https://hooks.slack.com/x").notifications_enabled


class TestFromEnv:
    """Tests for GantryConfig.from_env()."""

    def test_reads_environment(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("GANTRY_RUNS_DIR", "/tmp/runs")
        clean_env.setenv("GANTRY_PROVISION_TIMEOUT", "900")
        clean_env.setenv("SLACK_WEBHOOK", "https://hooks.slack.com/services/T/B/x")
        clean_env.setenv("SLACK_CHANNEL", "#ci")
        clean_env.setenv("GITHUB_SERVER_URL", "https://github.com")
        clean_env.setenv("GITHUB_REPOSITORY", "zama-ai/tfhe-rs")
        clean_env.setenv("GITHUB_RUN_ID", "42")

        config = GantryConfig.from_env()

        assert config.runs_dir == Path("/tmp/runs")
        assert config.provision_timeout == 900.0
        assert config.provision_retries == DEFAULT_PROVISION_RETRIES
        assert config.slack_channel == "#ci"
        assert config.repository == "zama-ai/tfhe-rs"
        assert config.run_url == "https://github.com/zama-ai/tfhe-rs/actions/runs/42"

    def test_parse_errors_always_raise(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("GANTRY_PROVISION_RETRIES", "many")
        with pytest.raises(ConfigurationError, match="GANTRY_PROVISION_RETRIES"):
            GantryConfig.from_env(validate=False)

    def test_validation_collects_all_errors(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("GANTRY_PROVISION_TIMEOUT", "0")
        clean_env.setenv("GANTRY_PROVISION_RETRIES", "0")
        clean_env.setenv("SLACK_WEBHOOK", "hooks.slack.com/x")

        with pytest.raises(ConfigurationError) as exc_info:
            GantryConfig.from_env()

        assert len(exc_info.value.errors) == 3

    def test_validate_false_skips_validation(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("GANTRY_PROVISION_RETRIES", "0")
        assert GantryConfig.from_env(validate=False).provision_retries == 0


class TestBuildRunUrl:
    def test_missing_part_gives_none(self) -> None:
        assert build_run_url("https://github.com", "o/r", None) is None

    def test_trailing_slash(self) -> None:
        assert (
            build_run_url("https://github.com/", "o/r", "1")
            == "https://github.com/o/r/actions/runs/1"
        )
