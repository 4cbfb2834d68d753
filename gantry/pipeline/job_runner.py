"""JobRunner: execute the ordered job steps on a provisioned instance.

Steps run strictly in order. The first blocking failure aborts the job and
every later step is recorded as skipped. A continue_on_error step's failure
is recorded but neither aborts nor fails the job. When the run's interrupt
event is set the in-flight step is cancelled and the remaining steps are
skipped.

Environment flows through an explicit JobContext: the pipeline env with the
trigger-kind overrides applied, layered under each step's own env.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from gantry.core.errors import RunCancelledError, SupersededError
from gantry.core.models import JobOutcome, JobStatus, StepResult, StepStatus
from gantry.infra.interrupts import run_with_timeout_and_interrupt
from gantry.infra.io.event_sink import NullEventSink

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from gantry.core.models import RunnerHandle, TriggerEvent
    from gantry.core.protocols import BuildTargetInvoker, PipelineEventSink
    from gantry.domain.concurrency import ConcurrencySpec
    from gantry.domain.pipeline_definition import StepSpec
    from gantry.infra.concurrency import (
        ConcurrencyRegistry,
        LockFileConcurrencyRegistry,
    )

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobContext:
    """State threaded through the steps of one job.

    Attributes:
        env: Job environment, trigger-kind overrides already applied.
        event: Trigger event of the run.
        handle: Instance the steps run on.
    """

    event: TriggerEvent
    env: Mapping[str, str] = field(default_factory=dict)
    handle: RunnerHandle | None = None

    @classmethod
    def for_event(
        cls,
        event: TriggerEvent,
        env: Mapping[str, str],
        event_env: Mapping[object, Mapping[str, str]] | None = None,
        handle: RunnerHandle | None = None,
    ) -> JobContext:
        """Build the context, layering the overrides for event.kind over env."""
        overrides = (event_env or {}).get(event.kind, {})
        return cls(event=event, env={**env, **overrides}, handle=handle)

    def step_env(self, step: StepSpec) -> dict[str, str]:
        return {**self.env, **step.env}


@dataclass
class JobRunner:
    """Runs job steps through a BuildTargetInvoker.

    Attributes:
        invoker: Executes one build target on the instance.
        event_sink: Receives step started/finished events.
        registry: Concurrency registry; without one, concurrency specs are
            ignored.
    """

    invoker: BuildTargetInvoker
    event_sink: PipelineEventSink = field(default_factory=NullEventSink)
    registry: ConcurrencyRegistry | LockFileConcurrencyRegistry | None = None

    async def run(
        self,
        handle: RunnerHandle,
        steps: Sequence[StepSpec],
        context: JobContext,
        concurrency: ConcurrencySpec | None = None,
        interrupt_event: asyncio.Event | None = None,
        started_at: float | None = None,
    ) -> JobOutcome:
        """Run steps in order on handle and return the job outcome.

        Holds the concurrency slot for the whole job when both a
        ConcurrencySpec and a registry are given. started_at is the run's
        start time, which orders it against other runs of the same key.
        Never raises for step failures.
        """
        interrupt = interrupt_event if interrupt_event is not None else asyncio.Event()
        if concurrency is None or self.registry is None:
            return await self._run_steps(handle, steps, context, interrupt)

        try:
            async with self.registry.slot(
                concurrency,
                interrupt,
                on_wait=self.event_sink.on_concurrency_wait,
                started_at=started_at,
            ) as lease:
                outcome = await self._run_steps(handle, steps, context, interrupt)
                if outcome.status is JobStatus.CANCELLED and lease.was_superseded:
                    self.event_sink.on_superseded(lease.key)
                    outcome.cause = f"superseded by a newer run of {lease.key}"
                return outcome
        except SupersededError as e:
            self.event_sink.on_superseded(e.key)
            return self._cancelled_before_start(steps, str(e))
        except RunCancelledError as e:
            return self._cancelled_before_start(steps, str(e))

    def _cancelled_before_start(self, steps: Sequence[StepSpec], cause: str) -> JobOutcome:
        # Cancelled before the slot was ours: nothing ran
        results = [StepResult.skipped(step.name, cause) for step in steps]
        for result in results:
            self.event_sink.on_step_finished(result)
        return JobOutcome.cancelled(cause, results)

    async def _run_steps(
        self,
        handle: RunnerHandle,
        steps: Sequence[StepSpec],
        context: JobContext,
        interrupt: asyncio.Event,
    ) -> JobOutcome:
        results: list[StepResult] = []
        failed: StepResult | None = None
        cancel_cause: str | None = None
        total = len(steps)
        kind = context.event.kind

        for index, step in enumerate(steps, start=1):
            if cancel_cause is not None:
                result = StepResult.skipped(step.name, "run cancelled")
            elif failed is not None:
                result = StepResult.skipped(step.name, f"step '{failed.name}' failed")
            elif not step.applies_to(kind):
                result = StepResult.skipped(step.name, f"not run on {kind.value}")
            elif interrupt.is_set():
                cancel_cause = "run cancelled before step started"
                result = StepResult.skipped(step.name, "run cancelled")
            else:
                self.event_sink.on_step_started(step.name, index, total)
                result = await self._run_step(handle, step, context, interrupt)

            if result.status is StepStatus.CANCELLED:
                cancel_cause = f"cancelled during step '{step.name}'"
            elif result.blocking_failure:
                failed = result
            results.append(result)
            self.event_sink.on_step_finished(result)

        if cancel_cause is not None:
            return JobOutcome.cancelled(cancel_cause, results)
        if failed is not None:
            return JobOutcome(
                status=JobStatus.FAILURE,
                steps=results,
                cause=failed.cause,
                failed_step=failed.name,
            )
        return JobOutcome(status=JobStatus.SUCCESS, steps=results)

    async def _run_step(
        self,
        handle: RunnerHandle,
        step: StepSpec,
        context: JobContext,
        interrupt: asyncio.Event,
    ) -> StepResult:
        start = time.monotonic()
        try:
            exit_code, timed_out, interrupted = await run_with_timeout_and_interrupt(
                self.invoker.invoke(handle, step.target, context.step_env(step)),
                step.timeout,
                interrupt,
            )
        except Exception as e:
            logger.exception("Step %s raised", step.name)
            return StepResult(
                step.name,
                StepStatus.FAILURE,
                cause=f"invoker error: {e}",
                continue_on_error=step.continue_on_error,
                duration_seconds=time.monotonic() - start,
            )
        duration = time.monotonic() - start

        if interrupted:
            return StepResult(
                step.name,
                StepStatus.CANCELLED,
                cause="run cancelled",
                continue_on_error=step.continue_on_error,
                duration_seconds=duration,
            )
        if timed_out:
            return StepResult(
                step.name,
                StepStatus.FAILURE,
                cause=f"timed out after {step.timeout:.0f}s",
                continue_on_error=step.continue_on_error,
                duration_seconds=duration,
            )
        if exit_code != 0:
            return StepResult(
                step.name,
                StepStatus.FAILURE,
                cause=f"exited with code {exit_code}",
                exit_code=exit_code,
                continue_on_error=step.continue_on_error,
                duration_seconds=duration,
            )
        return StepResult.success(step.name, duration)
