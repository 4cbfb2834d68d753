"""Shared dataclasses for gantry.

This module provides the types that flow between the gate, the runner
lifecycle, the job runner and the controller. It has no dependencies on
other gantry layers so every layer can import it.

Types:
- TriggerKind / TriggerEvent: Typed trigger variants created by the CI platform
- ChangeSet: Files changed since a reference commit
- RunnerHandle: Token identifying a provisioned ephemeral instance
- StepStatus / StepResult: Result of a single job step
- JobStatus / JobOutcome: Aggregate result of a job
- PipelineState: Controller state machine states
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable


class TriggerKind(Enum):
    """Kind of event that started a pipeline run."""

    MANUAL = "manual"
    PULL_REQUEST = "pull_request"
    PUSH = "push"
    SCHEDULE = "schedule"


@dataclass(frozen=True)
class ManualTrigger:
    """Operator-initiated run (workflow_dispatch)."""

    ref: str = ""
    sha: str = ""
    repository: str = ""
    actor: str = ""

    @property
    def kind(self) -> TriggerKind:
        return TriggerKind.MANUAL


@dataclass(frozen=True)
class PullRequestTrigger:
    """Pull request event.

    Attributes:
        label: Name of the label attached by this event, if any.
        action: Pull request action (e.g. "labeled", "synchronize").
    """

    label: str | None
    action: str
    ref: str = ""
    sha: str = ""
    repository: str = ""
    actor: str = ""

    @property
    def kind(self) -> TriggerKind:
        return TriggerKind.PULL_REQUEST


@dataclass(frozen=True)
class PushTrigger:
    """Push to a branch."""

    branch: str
    ref: str = ""
    sha: str = ""
    repository: str = ""
    actor: str = ""

    @property
    def kind(self) -> TriggerKind:
        return TriggerKind.PUSH

    @property
    def effective_ref(self) -> str:
        return self.ref or f"refs/heads/{self.branch}"


@dataclass(frozen=True)
class ScheduleTrigger:
    """Cron-scheduled run."""

    ref: str = ""
    sha: str = ""
    repository: str = ""
    actor: str = ""

    @property
    def kind(self) -> TriggerKind:
        return TriggerKind.SCHEDULE


TriggerEvent = ManualTrigger | PullRequestTrigger | PushTrigger | ScheduleTrigger


def trigger_ref(event: TriggerEvent) -> str:
    """Return the git ref an event targets (push falls back to its branch)."""
    if isinstance(event, PushTrigger):
        return event.effective_ref
    return event.ref


@dataclass(frozen=True)
class ChangeSet:
    """Set of file paths changed since a reference commit.

    Attributes:
        paths: Repository-relative paths, using forward slashes.
        determinate: False when the detector could not compute a diff
            (shallow checkout, unknown base ref). An indeterminate set is
            never treated as "nothing changed".
    """

    paths: frozenset[str] = field(default_factory=frozenset)
    determinate: bool = True

    @classmethod
    def of(cls, paths: Iterable[str]) -> ChangeSet:
        return cls(
            paths=frozenset(p[2:] if p.startswith("./") else p for p in paths if p)
        )

    @classmethod
    def indeterminate(cls) -> ChangeSet:
        return cls(paths=frozenset(), determinate=False)

    @property
    def is_known_empty(self) -> bool:
        return self.determinate and not self.paths

    def __len__(self) -> int:
        return len(self.paths)


@dataclass(frozen=True)
class RunnerHandle:
    """Opaque token identifying a provisioned instance.

    Attributes:
        label: Runner label returned by the provisioner; the only value
            collaborators need to address the instance.
        backend: Backend the instance was created on (e.g. "aws").
        profile: Instance profile (e.g. "cpu-big", "single-h100").
    """

    label: str
    backend: str = ""
    profile: str = ""

    def __str__(self) -> str:
        return self.label


class StepStatus(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"
    # The step that was running when cancellation arrived
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class StepResult:
    """Result of a single job step.

    Attributes:
        name: Step name from the pipeline definition.
        status: Outcome of the step.
        cause: Failure/skip/cancel reason (None on success).
        exit_code: Exit code of the build target, when it ran to completion.
        continue_on_error: Whether a failure of this step is non-blocking.
        duration_seconds: Wall time spent in the step.
    """

    name: str
    status: StepStatus
    cause: str | None = None
    exit_code: int | None = None
    continue_on_error: bool = False
    duration_seconds: float = 0.0

    @classmethod
    def success(cls, name: str, duration_seconds: float = 0.0) -> StepResult:
        return cls(name, StepStatus.SUCCESS, exit_code=0, duration_seconds=duration_seconds)

    @classmethod
    def skipped(cls, name: str, cause: str) -> StepResult:
        return cls(name, StepStatus.SKIPPED, cause=cause)

    @property
    def blocking_failure(self) -> bool:
        """Whether this result fails the job."""
        return self.status is StepStatus.FAILURE and not self.continue_on_error


class JobStatus(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"


# Exit code reported for cancelled runs (128 + SIGINT)
CANCELLED_EXIT_CODE = 130


@dataclass
class JobOutcome:
    """Aggregate of step results plus the overall status.

    Attributes:
        status: Overall status.
        steps: Step results in execution order.
        cause: First blocking failure cause, or the cancellation/provisioning
            reason. None on success.
        failed_step: Name of the first blocking failed step, if any.
    """

    status: JobStatus
    steps: list[StepResult] = field(default_factory=list)
    cause: str | None = None
    failed_step: str | None = None

    @property
    def exit_code(self) -> int:
        match self.status:
            case JobStatus.SUCCESS | JobStatus.SKIPPED:
                return 0
            case JobStatus.CANCELLED:
                return CANCELLED_EXIT_CODE
            case JobStatus.FAILURE:
                return 1

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @classmethod
    def skipped(cls, cause: str) -> JobOutcome:
        return cls(status=JobStatus.SKIPPED, cause=cause)

    @classmethod
    def failure(cls, cause: str, steps: list[StepResult] | None = None) -> JobOutcome:
        return cls(status=JobStatus.FAILURE, steps=steps or [], cause=cause)

    @classmethod
    def cancelled(cls, cause: str, steps: list[StepResult] | None = None) -> JobOutcome:
        return cls(status=JobStatus.CANCELLED, steps=steps or [], cause=cause)

    def summary(self) -> str:
        """One-line human readable summary."""
        if self.status is JobStatus.FAILURE and self.failed_step:
            return f"{self.status.value}: step '{self.failed_step}' {self.cause}"
        if self.cause:
            return f"{self.status.value}: {self.cause}"
        return self.status.value


class PipelineState(Enum):
    """States of a single pipeline run."""

    PENDING = "pending"
    # Terminal: gate decided not to run
    GATED_SKIP = "gated_skip"
    PROVISIONING = "provisioning"
    RUNNING = "running"
    TEARING_DOWN = "tearing_down"
    DONE_SUCCESS = "done_success"
    DONE_FAILURE = "done_failure"
    DONE_CANCELLED = "done_cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset(
    {
        PipelineState.GATED_SKIP,
        PipelineState.DONE_SUCCESS,
        PipelineState.DONE_FAILURE,
        PipelineState.DONE_CANCELLED,
    }
)
