"""Factory for PipelineController.

Builds default collaborators from a PipelineDefinition and GantryConfig,
keeping any that the caller injects.

Usage:
    definition = load_pipeline(Path("gantry.yaml"))
    controller = create_controller(definition, GantryConfig.from_env())

    # With fakes for testing
    deps = ControllerDependencies(provisioner=fake, invoker=fake_invoker)
    controller = create_controller(definition, config, deps=deps)
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from gantry import __version__
from gantry.core.errors import ConfigError
from gantry.infra.tools.env import encode_pipeline_name
from gantry.orchestration.controller import PipelineController
from gantry.orchestration.types import ControllerConfig, ControllerDependencies
from gantry.pipeline.runner_lifecycle import ProvisionConfig

if TYPE_CHECKING:
    from gantry.core.protocols import (
        BuildTargetInvoker,
        InstanceProvisioner,
        PermissionChecker,
    )
    from gantry.domain.pipeline_definition import PipelineDefinition
    from gantry.infra.io.config import GantryConfig

__all__ = [
    "ControllerConfig",
    "ControllerDependencies",
    "create_controller",
]


def _derive_config(definition: PipelineDefinition, config: GantryConfig) -> ControllerConfig:
    """Definition values win over environment values, which win over defaults."""
    spec = definition.provisioner
    provision = ProvisionConfig(
        timeout=spec.timeout if spec.timeout is not None else config.provision_timeout,
        retries=spec.retries if spec.retries is not None else config.provision_retries,
        retry_delay=config.provision_retry_delay,
    )
    return ControllerConfig(
        provision=provision,
        run_url=config.run_url,
        slack_webhook=config.slack_webhook,
        runs_dir=config.runs_dir / encode_pipeline_name(definition.name),
        version=__version__,
    )


def _build_provisioner(definition: PipelineDefinition, repo_path: Path) -> InstanceProvisioner:
    from gantry.infra.clients.provisioner import CommandProvisioner

    spec = definition.provisioner
    if not spec.start or not spec.stop:
        raise ConfigError("provisioner.start and provisioner.stop are required to run")
    return CommandProvisioner(spec.start, spec.stop, cwd=repo_path)


def _build_invoker(definition: PipelineDefinition, repo_path: Path) -> BuildTargetInvoker:
    from gantry.infra.clients.make_invoker import MakeTargetInvoker

    spec = definition.invoker
    if spec.exec_prefix:
        return MakeTargetInvoker(
            exec_prefix=spec.exec_prefix, make=spec.make, remote_cwd=spec.cwd
        )
    cwd = repo_path / spec.cwd if spec.cwd else repo_path
    return MakeTargetInvoker(make=spec.make, cwd=cwd)


def _build_permission_checker(
    definition: PipelineDefinition, config: GantryConfig
) -> PermissionChecker | None:
    from gantry.infra.clients.github_permissions import GitHubPermissionChecker

    if definition.required_permission is None or not config.repository:
        return None
    return GitHubPermissionChecker(
        config.repository, token=config.github_token, api_url=config.github_api_url
    )


def create_controller(
    definition: PipelineDefinition,
    config: GantryConfig,
    deps: ControllerDependencies | None = None,
    repo_path: Path | None = None,
    controller_config: ControllerConfig | None = None,
) -> PipelineController:
    """Create a PipelineController with default collaborators.

    Args:
        definition: Loaded pipeline definition.
        config: Environment configuration.
        deps: Pre-built collaborators. Missing optional ones are created;
            None builds everything from the definition.
        repo_path: Repository working tree (default: current directory).
        controller_config: Overrides the derived controller configuration.

    Raises:
        ConfigError: If a required collaborator cannot be built.
    """
    from gantry.infra.clients.git_changes import GitChangedFilesDetector
    from gantry.infra.clients.slack_notifier import SlackWebhookNotifier
    from gantry.infra.concurrency import LockFileConcurrencyRegistry
    from gantry.infra.io.event_sink import ConsoleEventSink

    repo_path = (repo_path or Path.cwd()).resolve()
    if deps is None:
        deps = ControllerDependencies(
            provisioner=_build_provisioner(definition, repo_path),
            invoker=_build_invoker(definition, repo_path),
        )

    if deps.detector is None:
        deps.detector = GitChangedFilesDetector(repo_path)
    if deps.notifier is None and config.notifications_enabled:
        deps.notifier = SlackWebhookNotifier(
            channel=config.slack_channel,
            username=config.slack_username,
            icon_url=config.slack_icon,
        )
    if deps.permission_checker is None:
        deps.permission_checker = _build_permission_checker(definition, config)
    if deps.event_sink is None:
        deps.event_sink = ConsoleEventSink()
    if deps.registry is None:
        deps.registry = LockFileConcurrencyRegistry(config.lock_dir)

    return PipelineController(
        definition,
        controller_config or _derive_config(definition, config),
        deps,
    )
