"""Protocol definitions for the collaborators gantry drives.

The controller and pipeline stages only talk to the outside world through
these protocols: source checkout, change detection, instance provisioning,
build target invocation, chat notification, actor permissions and event
reporting. Concrete implementations live in gantry.infra.clients and
gantry.infra.io; in-memory fakes live in tests/fakes.

Design principles:
- Protocols use structural typing (typing.Protocol)
- Methods match exactly what the pipeline stages call
- All I/O-bound collaborator methods are async
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from pathlib import Path

    from gantry.core.models import (
        ChangeSet,
        JobOutcome,
        PipelineState,
        RunnerHandle,
        StepResult,
    )


# =============================================================================
# External collaborators
# =============================================================================


@runtime_checkable
class SourceCheckout(Protocol):
    """Protocol for producing a working tree at a ref."""

    async def checkout(
        self, ref: str, depth: int | None = None, credentials: str | None = None
    ) -> Path:
        """Check out ref and return the working tree path.

        Args:
            ref: Git ref or sha to check out.
            depth: History depth to fetch (None for full history, which change
                detection needs).
            credentials: Optional token used for fetching.
        """
        ...


@runtime_checkable
class ChangedFilesDetector(Protocol):
    """Protocol for computing which files changed since a base ref."""

    async def changed_files(self, base_ref: str | None) -> ChangeSet:
        """Return the change set between base_ref and HEAD.

        Implementations return ChangeSet.indeterminate() rather than raising
        when the diff cannot be computed.
        """
        ...

    async def detect(
        self, base_ref: str | None, filter_groups: Mapping[str, Sequence[str]]
    ) -> dict[str, bool]:
        """Return, per filter group name, whether any of its files changed."""
        ...


@runtime_checkable
class InstanceProvisioner(Protocol):
    """Protocol for the remote runner backend."""

    async def start(self, backend: str, profile: str) -> RunnerHandle:
        """Provision an instance and return its handle once it is reachable.

        Raises:
            ProvisionError: If the backend refused or failed the request.
        """
        ...

    async def stop(self, handle: RunnerHandle) -> None:
        """Destroy the instance.

        Raises:
            TeardownError: If the backend failed to stop the instance.
        """
        ...


@runtime_checkable
class BuildTargetInvoker(Protocol):
    """Protocol for executing one build target on an instance."""

    async def invoke(
        self, handle: RunnerHandle, target: str, env: Mapping[str, str]
    ) -> int:
        """Run target with env on the instance and return its exit code."""
        ...


@runtime_checkable
class ChatNotifier(Protocol):
    """Protocol for posting a message to a chat channel."""

    async def send(self, webhook: str, message: str, color: str) -> None:
        """Post message. Raises NotifyError on delivery failure."""
        ...


@runtime_checkable
class PermissionChecker(Protocol):
    """Protocol for checking a triggering actor's repository permission."""

    async def permission_level(self, actor: str) -> str | None:
        """Return the actor's permission ("admin", "write", ...) or None."""
        ...


# =============================================================================
# Event sink
# =============================================================================


@dataclass
class EventRunConfig:
    """Configuration snapshot for a run, passed to on_run_started."""

    run_id: str
    pipeline: str
    trigger: str
    ref: str
    backend: str
    profile: str
    step_names: list[str]
    concurrency_key: str | None = None
    cancel_in_progress: bool = False


@runtime_checkable
class PipelineEventSink(Protocol):
    """Protocol for receiving pipeline controller events.

    Implementations handle presentation (console, logging, metrics) while
    the controller focuses on coordination logic. All methods are
    synchronous and must not raise.
    """

    # -------------------------------------------------------------------------
    # Run lifecycle
    # -------------------------------------------------------------------------

    def on_run_started(self, config: EventRunConfig) -> None:
        """Called when the controller picks up a trigger event."""
        ...

    def on_run_completed(self, state: PipelineState, outcome: JobOutcome) -> None:
        """Called once the run reaches a terminal state."""
        ...

    # -------------------------------------------------------------------------
    # Gate
    # -------------------------------------------------------------------------

    def on_actor_checked(self, actor: str, allowed: bool, reason: str) -> None:
        """Called after the triggering-actor permission check."""
        ...

    def on_gate_evaluated(
        self, should_run: bool, reason: str, matched_groups: list[str]
    ) -> None:
        """Called with the change gate decision."""
        ...

    # -------------------------------------------------------------------------
    # Runner lifecycle
    # -------------------------------------------------------------------------

    def on_provisioning_started(
        self, backend: str, profile: str, attempt: int, max_attempts: int
    ) -> None:
        """Called before each provisioning attempt."""
        ...

    def on_provisioned(self, label: str, duration_seconds: float) -> None:
        """Called when an instance is reachable."""
        ...

    def on_provision_failed(self, error: str) -> None:
        """Called when provisioning failed for good."""
        ...

    def on_teardown_started(self, label: str) -> None:
        """Called before the instance is stopped."""
        ...

    def on_teardown_completed(self, label: str) -> None:
        """Called after the instance stopped."""
        ...

    def on_teardown_failed(self, label: str, error: str) -> None:
        """Called when stopping the instance failed."""
        ...

    # -------------------------------------------------------------------------
    # Concurrency
    # -------------------------------------------------------------------------

    def on_concurrency_wait(self, key: str) -> None:
        """Called when the run waits for an older run holding its key."""
        ...

    def on_superseded(self, key: str) -> None:
        """Called when a newer run cancelled this one."""
        ...

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def on_step_started(self, name: str, index: int, total: int) -> None:
        """Called before a step executes."""
        ...

    def on_step_finished(self, result: StepResult) -> None:
        """Called with every step result, including skipped steps."""
        ...

    # -------------------------------------------------------------------------
    # Notification
    # -------------------------------------------------------------------------

    def on_notification_sent(self, message: str) -> None:
        """Called after a chat notification was delivered."""
        ...

    def on_notification_failed(self, error: str) -> None:
        """Called when a chat notification could not be delivered."""
        ...
