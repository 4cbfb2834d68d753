"""Pipeline lifecycle state machine for controller control flow.

Extracts the gate/provision/run/teardown policy as a pure state machine that
can be tested without provisioners or subprocesses.

The state machine is data-in/data-out: it receives events and returns
effects (actions the controller should take). The controller remains
responsible for I/O while the lifecycle owns all policy decisions, most
importantly the teardown invariant: once provisioning succeeded, every path
to a terminal state passes through TEARING_DOWN exactly once.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING

from gantry.core.models import JobOutcome, JobStatus, PipelineState

if TYPE_CHECKING:
    from gantry.core.models import RunnerHandle
    from gantry.domain.change_gate import GateDecision


class Effect(Enum):
    """Effects/actions the controller should perform."""

    # Provision a runner instance
    PROVISION = auto()
    # Execute the job steps on the instance
    RUN_STEPS = auto()
    # Stop the instance
    TEARDOWN = auto()
    # Terminal effects
    COMPLETE_SKIPPED = auto()
    COMPLETE_SUCCESS = auto()
    COMPLETE_FAILURE = auto()
    COMPLETE_CANCELLED = auto()


_COMPLETE_EFFECTS = {
    PipelineState.GATED_SKIP: Effect.COMPLETE_SKIPPED,
    PipelineState.DONE_SUCCESS: Effect.COMPLETE_SUCCESS,
    PipelineState.DONE_FAILURE: Effect.COMPLETE_FAILURE,
    PipelineState.DONE_CANCELLED: Effect.COMPLETE_CANCELLED,
}


@dataclass
class LifecycleContext:
    """Mutable state accumulated across transitions.

    Attributes:
        handle: Runner handle once provisioning succeeded.
        teardown_required: Set at provisioning success; cleared when the
            teardown transition has been taken.
        outcome: Job outcome (set by gate skip, provision failure, job end
            or cancellation).
        teardown_error: Error from stopping the instance, if any. Reported
            but never changes the outcome.
        gate: Gate decision, for reporting.
    """

    handle: RunnerHandle | None = None
    teardown_required: bool = False
    outcome: JobOutcome | None = None
    teardown_error: str | None = None
    gate: GateDecision | None = None


@dataclass
class TransitionResult:
    """Result of a state transition."""

    state: PipelineState
    effect: Effect
    # Optional message explaining the transition (for logging)
    message: str | None = None


class PipelineLifecycle:
    """Pure state machine for one pipeline run.

    Pending -> Gated-Skip
    Pending -> Provisioning -> Running -> Tearing-Down -> Done-*
    Provisioning -> Done-Failure | Done-Cancelled (nothing to tear down)
    """

    def __init__(self) -> None:
        self._state = PipelineState.PENDING

    @property
    def state(self) -> PipelineState:
        """Current lifecycle state."""
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state.is_terminal

    def _expect(self, *states: PipelineState, event: str) -> None:
        if self._state not in states:
            raise ValueError(f"Unexpected state for {event}: {self._state}")

    def _finish(
        self, state: PipelineState, message: str | None = None
    ) -> TransitionResult:
        self._state = state
        return TransitionResult(state, _COMPLETE_EFFECTS[state], message)

    def on_actor_denied(self, ctx: LifecycleContext, reason: str) -> TransitionResult:
        """Triggering actor lacks permission: fail without provisioning."""
        self._expect(PipelineState.PENDING, event="actor_denied")
        ctx.outcome = JobOutcome.failure(reason)
        return self._finish(PipelineState.DONE_FAILURE, reason)

    def on_gate(self, ctx: LifecycleContext, decision: GateDecision) -> TransitionResult:
        """Handle the change gate decision."""
        self._expect(PipelineState.PENDING, event="gate")
        ctx.gate = decision
        if not decision.run:
            ctx.outcome = JobOutcome.skipped(decision.reason)
            return self._finish(PipelineState.GATED_SKIP, decision.reason)
        self._state = PipelineState.PROVISIONING
        return TransitionResult(self._state, Effect.PROVISION, decision.reason)

    def on_provisioned(
        self, ctx: LifecycleContext, handle: RunnerHandle
    ) -> TransitionResult:
        """Provisioning succeeded: teardown becomes mandatory from here on."""
        self._expect(PipelineState.PROVISIONING, event="provisioned")
        ctx.handle = handle
        ctx.teardown_required = True
        self._state = PipelineState.RUNNING
        return TransitionResult(self._state, Effect.RUN_STEPS, f"Runner {handle.label}")

    def on_provision_failed(
        self, ctx: LifecycleContext, error: str
    ) -> TransitionResult:
        self._expect(PipelineState.PROVISIONING, event="provision_failed")
        ctx.outcome = JobOutcome.failure(f"provisioning failed: {error}")
        return self._finish(PipelineState.DONE_FAILURE, error)

    def on_job_finished(
        self, ctx: LifecycleContext, outcome: JobOutcome
    ) -> TransitionResult:
        """Steps completed, failed or were cancelled."""
        self._expect(PipelineState.RUNNING, event="job_finished")
        ctx.outcome = outcome
        return self._begin_teardown(ctx, outcome.summary())

    def on_job_error(self, ctx: LifecycleContext, error: Exception) -> TransitionResult:
        """The job runner raised instead of returning an outcome."""
        self._expect(PipelineState.RUNNING, event="job_error")
        ctx.outcome = JobOutcome.failure(f"job error: {error}")
        return self._begin_teardown(ctx, f"Error: {error}")

    def on_cancelled(self, ctx: LifecycleContext, reason: str) -> TransitionResult:
        """Cancellation arrived outside of the job runner.

        Can be called from any state. Once an instance exists the run still
        goes through teardown.
        """
        if self.is_terminal:
            return TransitionResult(
                self._state, _COMPLETE_EFFECTS[self._state], "Cancel after terminal state"
            )
        if self._state is PipelineState.TEARING_DOWN:
            # The job already finished; its outcome stands
            return TransitionResult(self._state, Effect.TEARDOWN, "Already tearing down")

        steps = ctx.outcome.steps if ctx.outcome else None
        ctx.outcome = JobOutcome.cancelled(reason, steps)
        if self._state is PipelineState.RUNNING:
            return self._begin_teardown(ctx, f"Cancelled: {reason}")
        return self._finish(PipelineState.DONE_CANCELLED, reason)

    def _begin_teardown(self, ctx: LifecycleContext, message: str) -> TransitionResult:
        self._state = PipelineState.TEARING_DOWN
        return TransitionResult(self._state, Effect.TEARDOWN, message)

    def on_teardown_finished(
        self, ctx: LifecycleContext, error: str | None = None
    ) -> TransitionResult:
        """Instance stop attempted; pick the terminal state from the outcome.

        A teardown error is recorded but does not change the outcome.
        """
        self._expect(PipelineState.TEARING_DOWN, event="teardown_finished")
        if not ctx.teardown_required:
            raise ValueError("Teardown finished twice")
        ctx.teardown_required = False
        ctx.teardown_error = error

        outcome = ctx.outcome
        if outcome is None:
            outcome = ctx.outcome = JobOutcome.failure("job produced no outcome")
        match outcome.status:
            case JobStatus.SUCCESS | JobStatus.SKIPPED:
                return self._finish(PipelineState.DONE_SUCCESS)
            case JobStatus.CANCELLED:
                return self._finish(PipelineState.DONE_CANCELLED, outcome.cause)
            case JobStatus.FAILURE:
                return self._finish(PipelineState.DONE_FAILURE, outcome.cause)
