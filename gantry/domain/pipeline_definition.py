"""Configuration dataclasses for gantry.yaml pipeline definitions.

A pipeline definition names the runner to provision, the path filter groups
that gate the run, the ordered build steps, and how to notify. It is parsed
by gantry.domain.pipeline_loader into these frozen dataclasses so the
definition cannot be modified after loading.

Key types:
- StepSpec: One build target with env, timeout and error policy
- ProvisionerSpec: Command templates used to start/stop runners
- InvokerSpec: How build targets are executed on the runner
- NotifySpec: When and what to post to the chat channel
- PipelineDefinition: Top-level definition
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from gantry.domain.change_gate import DEFAULT_APPROVAL_LABELS, GatePolicy
from gantry.domain.concurrency import DEFAULT_PROTECTED_REFS

if TYPE_CHECKING:
    from gantry.core.models import TriggerKind
    from gantry.domain.path_filters import PathFilterGroup


@dataclass(frozen=True)
class StepSpec:
    """A single job step.

    Attributes:
        name: Display name.
        target: Build target passed to the invoker (e.g. "test_signed_integer_ci").
        env: Step-specific environment, layered over the job context env.
        continue_on_error: A failure is recorded but does not abort the job.
        timeout: Seconds before the step is failed (None for no limit).
        only_on: Trigger kinds the step runs for (None for all).
    """

    name: str
    target: str
    env: dict[str, str] = field(default_factory=dict)
    continue_on_error: bool = False
    timeout: float | None = None
    only_on: frozenset[TriggerKind] | None = None

    def applies_to(self, kind: TriggerKind) -> bool:
        return self.only_on is None or kind in self.only_on


@dataclass(frozen=True)
class ProvisionerSpec:
    """Command templates for the runner backend.

    Placeholders: {backend}, {profile} in start; {label}, {backend},
    {profile} in stop. The start command prints the runner label as the
    last non-empty line of stdout.
    """

    start: tuple[str, ...] = ()
    stop: tuple[str, ...] = ()
    timeout: float | None = None
    retries: int | None = None


@dataclass(frozen=True)
class InvokerSpec:
    """How build targets are executed.

    Attributes:
        exec_prefix: Command prefix that runs a command on the runner
            (e.g. ("ssh", "{label}")). Empty runs locally.
        make: Make executable.
        cwd: Working directory on the runner.
    """

    exec_prefix: tuple[str, ...] = ()
    make: str = "make"
    cwd: str | None = None


class NotifyOn(Enum):
    """When to post a chat notification."""

    ALWAYS = "always"
    # Failure and cancellation
    FAILURE = "failure"
    NEVER = "never"


# Raised by str.format for a malformed or mismatched message template
TEMPLATE_ERRORS = (KeyError, IndexError, ValueError, AttributeError)


@dataclass(frozen=True)
class NotifySpec:
    on: NotifyOn = NotifyOn.FAILURE
    # Format fields: {pipeline}, {status}, {url}
    message: str = "{pipeline} finished with status: {status}. ({url})"

    def render(self, pipeline: str, status: str, url: str) -> str:
        """Fill the message template; raises one of TEMPLATE_ERRORS if it is malformed."""
        return self.message.format(pipeline=pipeline, status=status, url=url)


@dataclass(frozen=True)
class PipelineDefinition:
    """Top-level configuration from gantry.yaml.

    Attributes:
        name: Pipeline identity (also the concurrency key prefix).
        backend: Runner backend (e.g. "aws", "hyperstack").
        profile: Runner profile (e.g. "cpu-big", "single-h100").
        steps: Ordered job steps.
        filters: Path filter groups that gate the run (empty: full run).
        env: Base job environment.
        event_env: Extra job environment per trigger kind.
        approval_labels: Pull request labels that approve a run.
        protected_refs: Refs whose runs are never cancelled.
        canonical_repository: Only this repository runs push/schedule events.
        required_permission: Minimum repository permission of the
            triggering actor (None disables the check).
        force_on_manual: Manual runs bypass path filters.
        base_ref: Base ref for change detection (None: previous commit).
        notify: Notification policy.
        provisioner: Provisioner command templates.
        invoker: Build target invocation settings.
    """

    name: str
    backend: str
    profile: str
    steps: tuple[StepSpec, ...]
    filters: tuple[PathFilterGroup, ...] = ()
    env: dict[str, str] = field(default_factory=dict)
    event_env: dict[TriggerKind, dict[str, str]] = field(default_factory=dict)
    approval_labels: tuple[str, ...] = DEFAULT_APPROVAL_LABELS
    protected_refs: tuple[str, ...] = DEFAULT_PROTECTED_REFS
    canonical_repository: str | None = None
    required_permission: str | None = None
    force_on_manual: bool = True
    base_ref: str | None = None
    notify: NotifySpec = field(default_factory=NotifySpec)
    provisioner: ProvisionerSpec = field(default_factory=ProvisionerSpec)
    invoker: InvokerSpec = field(default_factory=InvokerSpec)

    @property
    def gate_policy(self) -> GatePolicy:
        return GatePolicy(
            approval_labels=self.approval_labels,
            canonical_repository=self.canonical_repository,
        )

    def env_for(self, kind: TriggerKind) -> dict[str, str]:
        """Base env with the trigger-kind overrides applied."""
        return {**self.env, **self.event_env.get(kind, {})}
