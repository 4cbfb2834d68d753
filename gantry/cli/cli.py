#!/usr/bin/env python3
"""
gantry CLI: gated CI pipelines on ephemeral runner instances.

Usage:
    gantry run [OPTIONS]
    gantry gate [OPTIONS]
    gantry logs [list|show] [OPTIONS]
"""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Never

import typer

from gantry.core.errors import ConfigError
from gantry.core.models import (
    ChangeSet,
    ManualTrigger,
    PullRequestTrigger,
    PushTrigger,
    ScheduleTrigger,
    TriggerKind,
)
from gantry.domain.change_gate import ChangeGate
from gantry.domain.pipeline_loader import DEFAULT_PIPELINE_FILE, load_pipeline
from gantry.infra.io.config import ConfigurationError, GantryConfig
from gantry.infra.io.github_event import event_from_env
from gantry.infra.io.log_output.console import Colors, log, set_verbose
from gantry.infra.tools.env import load_user_env

from .logs import logs_app

if TYPE_CHECKING:
    from gantry.core.models import TriggerEvent
    from gantry.domain.pipeline_definition import PipelineDefinition
    from gantry.orchestration.controller import PipelineController
    from gantry.orchestration.types import PipelineResult

# Exit code for invalid configuration (matches typer's usage errors)
CONFIG_ERROR_EXIT_CODE = 2

# Bootstrap state: tracks whether bootstrap() has been called
_bootstrapped = False


def bootstrap() -> None:
    """Initialize environment.

    Idempotent. Loads environment variables from ~/.config/gantry/.env so
    webhook and token variables are visible to GantryConfig.from_env().
    """
    global _bootstrapped

    if _bootstrapped:
        return
    load_user_env()
    _bootstrapped = True


app = typer.Typer(
    name="gantry",
    help="Gated CI pipelines on ephemeral runner instances",
    add_completion=False,
)
app.add_typer(logs_app, name="logs")


def _config_error(message: str) -> Never:
    log("✗", message, Colors.RED)
    raise typer.Exit(CONFIG_ERROR_EXIT_CODE)


def _load_definition(file: Path) -> PipelineDefinition:
    try:
        return load_pipeline(file)
    except ConfigError as e:
        _config_error(str(e))


def _load_config() -> GantryConfig:
    try:
        return GantryConfig.from_env()
    except ConfigurationError as e:
        _config_error(str(e))


def build_event(
    event: str | None,
    *,
    label: str | None = None,
    action: str = "labeled",
    branch: str | None = None,
    ref: str = "",
    sha: str = "",
    repository: str = "",
    actor: str = "",
) -> TriggerEvent:
    """Build a trigger event from CLI options, or from the CI environment.

    Raises:
        ConfigError: If event is None and the environment has no event, or
            the event kind is unknown.
    """
    if event is None:
        return event_from_env()
    try:
        kind = TriggerKind(event)
    except ValueError:
        valid = ", ".join(k.value for k in TriggerKind)
        raise ConfigError(f"Invalid --event '{event}'. Valid values: {valid}") from None

    match kind:
        case TriggerKind.MANUAL:
            return ManualTrigger(ref=ref, sha=sha, repository=repository, actor=actor)
        case TriggerKind.PULL_REQUEST:
            return PullRequestTrigger(
                label=label, action=action, ref=ref, sha=sha, repository=repository, actor=actor
            )
        case TriggerKind.PUSH:
            if not branch and not ref.startswith("refs/heads/"):
                raise ConfigError("--branch (or --ref refs/heads/...) is required for push")
            return PushTrigger(
                branch=branch or ref.removeprefix("refs/heads/"),
                ref=ref,
                sha=sha,
                repository=repository,
                actor=actor,
            )
        case TriggerKind.SCHEDULE:
            return ScheduleTrigger(ref=ref, sha=sha, repository=repository, actor=actor)


def _checkout(repo_path: Path, ref: str, token: str | None) -> None:
    """Check out ref in repo_path with full history; exits 1 on failure."""
    from gantry.infra.clients.git_changes import CheckoutError, GitSourceCheckout

    checkout = GitSourceCheckout(repo_path.resolve())
    try:
        asyncio.run(checkout.checkout(ref, credentials=token))
    except CheckoutError as e:
        log("✗", str(e), Colors.RED)
        raise typer.Exit(1) from None
    log("◦", f"Checked out {ref}", Colors.MUTED)


async def _run_with_signals(
    controller: PipelineController, event: TriggerEvent, changes: ChangeSet | None
) -> PipelineResult:
    """Run the controller; SIGINT/SIGTERM set the run's interrupt event.

    SIGTERM is also how a newer run on another process supersedes this one.
    """
    interrupt_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    signals = (signal.SIGINT, signal.SIGTERM)
    for sig in signals:
        loop.add_signal_handler(sig, interrupt_event.set)
    try:
        return await controller.run(event, changes, interrupt_event)
    finally:
        for sig in signals:
            loop.remove_signal_handler(sig)


# Options shared by `run` and `gate`
FileOption = Annotated[
    Path,
    typer.Option("--file", "-f", help="Pipeline definition file"),
]
EventOption = Annotated[
    str | None,
    typer.Option(
        "--event",
        "-e",
        help="Trigger kind: manual, pull_request, push, schedule "
        "(default: read from GITHUB_EVENT_NAME/GITHUB_EVENT_PATH)",
    ),
]
LabelOption = Annotated[
    str | None,
    typer.Option("--label", help="Label attached by the pull request event"),
]
BranchOption = Annotated[
    str | None,
    typer.Option("--branch", help="Pushed branch (push events)"),
]
RefOption = Annotated[str, typer.Option("--ref", help="Git ref the event targets")]
ShaOption = Annotated[str, typer.Option("--sha", help="Commit sha the event targets")]
ActorOption = Annotated[str, typer.Option("--actor", help="Triggering user")]
ChangedOption = Annotated[
    list[str] | None,
    typer.Option(
        "--changed",
        help="Changed path (repeatable). Skips git change detection.",
    ),
]
RepoPathOption = Annotated[
    Path,
    typer.Option("--repo-path", help="Repository working tree"),
]
CheckoutRefOption = Annotated[
    str | None,
    typer.Option(
        "--checkout-ref",
        help="Fetch this ref into --repo-path and check it out before running",
    ),
]


@app.command()
def run(
    file: FileOption = Path(DEFAULT_PIPELINE_FILE),
    event: EventOption = None,
    label: LabelOption = None,
    branch: BranchOption = None,
    ref: RefOption = "",
    sha: ShaOption = "",
    actor: ActorOption = "",
    changed: ChangedOption = None,
    repo_path: RepoPathOption = Path("."),
    checkout_ref: CheckoutRefOption = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose output"),
    ] = False,
) -> Never:
    """Gate, provision, run the steps, tear down and notify."""
    from gantry.orchestration.factory import create_controller

    bootstrap()
    set_verbose(verbose)

    definition = _load_definition(file)
    config = _load_config()
    try:
        trigger = build_event(
            event,
            label=label,
            branch=branch,
            ref=ref,
            sha=sha,
            repository=config.repository or "",
            actor=actor,
        )
        controller = create_controller(definition, config, repo_path=repo_path)
    except ConfigError as e:
        _config_error(str(e))

    if checkout_ref:
        _checkout(repo_path, checkout_ref, config.github_token)
    changes = ChangeSet.of(changed) if changed else None
    result = asyncio.run(_run_with_signals(controller, trigger, changes))

    color = Colors.GREEN if result.outcome.ok else Colors.RED
    log("◦", f"{definition.name}: {result.state.value} ({result.outcome.summary()})", color)
    if result.record_path is not None:
        log("◦", f"Run record: {result.record_path}", Colors.MUTED)
    raise typer.Exit(result.exit_code)


@app.command()
def gate(
    file: FileOption = Path(DEFAULT_PIPELINE_FILE),
    event: EventOption = None,
    label: LabelOption = None,
    branch: BranchOption = None,
    ref: RefOption = "",
    sha: ShaOption = "",
    changed: ChangedOption = None,
    repo_path: RepoPathOption = Path("."),
) -> None:
    """Evaluate the change gate only and print the decision.

    Prints `run=true` or `run=false` as the last line, suitable for a
    workflow step output.
    """
    from gantry.infra.clients.git_changes import GitChangedFilesDetector

    bootstrap()
    definition = _load_definition(file)
    config = _load_config()
    try:
        trigger = build_event(
            event,
            label=label,
            branch=branch,
            ref=ref,
            sha=sha,
            repository=config.repository or "",
        )
    except ConfigError as e:
        _config_error(str(e))

    if changed:
        changes = ChangeSet.of(changed)
    elif definition.filters:
        detector = GitChangedFilesDetector(repo_path.resolve())
        changes = asyncio.run(detector.changed_files(definition.base_ref))
    else:
        changes = ChangeSet()

    decision = ChangeGate(definition.gate_policy).evaluate(
        trigger, changes, definition.filters, definition.force_on_manual
    )
    color = Colors.GREEN if decision.run else Colors.YELLOW
    log("◦", f"[GATE] {decision.reason}", color)
    for group in definition.filters:
        paths = group.matching_paths(changes)
        if paths:
            log("◦", f"{group.name}: {', '.join(paths)}", Colors.MUTED)
    print(f"run={'true' if decision.run else 'false'}")
