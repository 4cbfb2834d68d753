"""Shared types for the pipeline controller and its factory.

Design principles:
- ControllerConfig: All scalar configuration (bounds, URLs, paths)
- ControllerDependencies: All protocol implementations (DI for testability)
- PipelineResult: What one controller run produced
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path  # noqa: TC003 - needed at runtime for dataclass field
from typing import TYPE_CHECKING

from gantry.pipeline.runner_lifecycle import ProvisionConfig

if TYPE_CHECKING:
    from gantry.core.models import JobOutcome, PipelineState
    from gantry.core.protocols import (
        BuildTargetInvoker,
        ChangedFilesDetector,
        ChatNotifier,
        InstanceProvisioner,
        PermissionChecker,
        PipelineEventSink,
    )
    from gantry.domain.change_gate import GateDecision
    from gantry.infra.concurrency import (
        ConcurrencyRegistry,
        LockFileConcurrencyRegistry,
    )


@dataclass
class ControllerConfig:
    """Configuration for PipelineController.

    Attributes:
        provision: Provisioning timeout/retry bounds.
        run_url: Link to the CI run, used in notifications.
        slack_webhook: Chat webhook; notifications are dropped (and logged)
            when unset.
        runs_dir: Directory for run records. None disables run records.
        version: gantry version stored in run records.
        debug_log: Write a per-run debug log next to the run record.
    """

    provision: ProvisionConfig = field(default_factory=ProvisionConfig)
    run_url: str | None = None
    slack_webhook: str | None = None
    runs_dir: Path | None = None
    version: str = ""
    debug_log: bool = True


@dataclass
class ControllerDependencies:
    """Protocol implementations for PipelineController.

    Attributes:
        provisioner: Starts and stops runner instances.
        invoker: Runs build targets on an instance.
        detector: Computes the change set when the caller does not pass one.
        notifier: Posts chat notifications.
        permission_checker: Looks up the triggering actor's permission.
        event_sink: Receives run lifecycle events.
        registry: Concurrency registry (None: no concurrency control).
    """

    provisioner: InstanceProvisioner
    invoker: BuildTargetInvoker
    detector: ChangedFilesDetector | None = None
    notifier: ChatNotifier | None = None
    permission_checker: PermissionChecker | None = None
    event_sink: PipelineEventSink | None = None
    registry: ConcurrencyRegistry | LockFileConcurrencyRegistry | None = None


@dataclass
class PipelineResult:
    """Result of one controller run.

    Attributes:
        run_id: Run identifier (also names the run record).
        state: Terminal PipelineState.
        outcome: Job outcome.
        gate: Gate decision (None if the run ended before the gate).
        runner_label: Label of the provisioned instance, if any.
        teardown_error: Error from stopping the instance, if any.
        record_path: Path of the saved run record, if any.
    """

    run_id: str
    state: PipelineState
    outcome: JobOutcome
    gate: GateDecision | None = None
    runner_label: str | None = None
    teardown_error: str | None = None
    record_path: Path | None = None

    @property
    def exit_code(self) -> int:
        return self.outcome.exit_code
