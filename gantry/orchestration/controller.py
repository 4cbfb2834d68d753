"""PipelineController: gate, provision, run, tear down, notify.

The controller owns I/O and coordination; every policy decision about the
next state is delegated to the pure PipelineLifecycle. The teardown of a
provisioned instance is registered on an AsyncExitStack the moment
provisioning succeeds, so it runs however the job ends: success, failure,
an exception from the job runner, cancellation via the interrupt event, or
cancellation of the controller task itself.

    Pending -> Gated-Skip
    Pending -> Provisioning -> Running -> Tearing-Down -> Done-*
    Provisioning -> Done-Failure | Done-Cancelled
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from contextlib import AsyncExitStack
from typing import TYPE_CHECKING

from gantry.core.errors import (
    GantryError,
    PermissionCheckError,
    ProvisionError,
    RunCancelledError,
    TeardownError,
)
from gantry.core.models import (
    ChangeSet,
    ManualTrigger,
    PipelineState,
    PullRequestTrigger,
    trigger_ref,
)
from gantry.core.protocols import EventRunConfig
from gantry.domain.actor_policy import ActorDecision, check_actor
from gantry.domain.change_gate import ChangeGate, GateDecision
from gantry.domain.concurrency import concurrency_for
from gantry.domain.lifecycle import Effect, LifecycleContext, PipelineLifecycle
from gantry.domain.pipeline_definition import NotifyOn
from gantry.infra.io.event_sink import NullEventSink
from gantry.infra.io.log_output.run_metadata import RunRecord, RunRecordConfig
from gantry.orchestration.types import PipelineResult
from gantry.pipeline.job_runner import JobContext, JobRunner
from gantry.pipeline.notification import NotificationSink, NotifyContext
from gantry.pipeline.runner_lifecycle import RunnerLifecycle

if TYPE_CHECKING:
    from pathlib import Path

    from gantry.core.models import RunnerHandle, TriggerEvent
    from gantry.domain.concurrency import ConcurrencySpec
    from gantry.domain.pipeline_definition import PipelineDefinition
    from gantry.orchestration.types import ControllerConfig, ControllerDependencies

logger = logging.getLogger(__name__)

# Triggers started on demand by a person; only these are permission checked
_ACTOR_CHECKED_TRIGGERS = (ManualTrigger, PullRequestTrigger)


class PipelineController:
    """Runs one pipeline definition for trigger events.

    Usage:
        controller = PipelineController(definition, ControllerConfig(), deps)
        result = await controller.run(event)
        sys.exit(result.exit_code)
    """

    def __init__(
        self,
        definition: PipelineDefinition,
        config: ControllerConfig,
        deps: ControllerDependencies,
    ) -> None:
        self.definition = definition
        self.config = config
        self._deps = deps
        self.event_sink = deps.event_sink or NullEventSink()
        self.gate = ChangeGate(definition.gate_policy)
        self.notifications = NotificationSink(
            deps.notifier,
            config.slack_webhook,
            definition.name,
            definition.notify,
            self.event_sink,
        )
        self.job_runner = JobRunner(deps.invoker, self.event_sink, deps.registry)

    async def run(
        self,
        event: TriggerEvent,
        changes: ChangeSet | None = None,
        interrupt_event: asyncio.Event | None = None,
    ) -> PipelineResult:
        """Run the pipeline for event.

        Args:
            event: Trigger event.
            changes: Change set; computed with the detector when None and
                the gate needs it.
            interrupt_event: Setting it cancels the run (teardown still runs).

        Returns:
            PipelineResult in a terminal state. Only cancellation of the
            calling task propagates (after teardown).
        """
        interrupt = interrupt_event if interrupt_event is not None else asyncio.Event()
        started_at = time.time()
        run_id = str(uuid.uuid4())
        concurrency = concurrency_for(
            self.definition.name, event, self.definition.protected_refs
        )
        lifecycle = PipelineLifecycle()
        ctx = LifecycleContext()
        record = self._create_record(run_id, event, concurrency)

        self.event_sink.on_run_started(
            EventRunConfig(
                run_id=run_id,
                pipeline=self.definition.name,
                trigger=event.kind.value,
                ref=trigger_ref(event),
                backend=self.definition.backend,
                profile=self.definition.profile,
                step_names=[step.name for step in self.definition.steps],
                concurrency_key=concurrency.key,
                cancel_in_progress=concurrency.cancel_in_progress,
            )
        )

        try:
            await self._drive(
                lifecycle, ctx, event, changes, concurrency, interrupt, started_at
            )
        except asyncio.CancelledError:
            if not lifecycle.is_terminal:
                lifecycle.on_cancelled(ctx, "controller task cancelled")
            self._complete(run_id, lifecycle, ctx, record)
            raise

        if self._should_notify(lifecycle.state) and ctx.outcome is not None:
            await self.notifications.notify(
                ctx.outcome, NotifyContext(url=self.config.run_url)
            )
        return self._complete(run_id, lifecycle, ctx, record)

    # -------------------------------------------------------------------------
    # Phases
    # -------------------------------------------------------------------------

    async def _drive(
        self,
        lifecycle: PipelineLifecycle,
        ctx: LifecycleContext,
        event: TriggerEvent,
        changes: ChangeSet | None,
        concurrency: ConcurrencySpec,
        interrupt: asyncio.Event,
        started_at: float,
    ) -> None:
        decision = await self._check_actor(event)
        if decision is not None and not decision.allowed:
            lifecycle.on_actor_denied(ctx, decision.reason)
            return

        gate = await self._evaluate_gate(event, changes)
        self.event_sink.on_gate_evaluated(gate.run, gate.reason, list(gate.matched_groups))
        transition = lifecycle.on_gate(ctx, gate)
        if transition.effect is not Effect.PROVISION:
            return
        await self._provision_and_run(
            lifecycle, ctx, event, concurrency, interrupt, started_at
        )

    async def _check_actor(self, event: TriggerEvent) -> ActorDecision | None:
        """Check the triggering actor; None when no check applies."""
        required = self.definition.required_permission
        if required is None or not isinstance(event, _ACTOR_CHECKED_TRIGGERS):
            return None
        checker = self._deps.permission_checker
        if checker is None:
            logger.warning(
                "required_permission=%s but no permission checker configured; "
                "skipping actor check",
                required,
            )
            return None

        if not event.actor:
            decision = check_actor(event.actor, None, required)
        else:
            try:
                level = await checker.permission_level(event.actor)
            except PermissionCheckError as e:
                decision = ActorDecision(False, f"permission check for {event.actor} failed: {e}")
            else:
                decision = check_actor(event.actor, level, required)
        self.event_sink.on_actor_checked(event.actor, decision.allowed, decision.reason)
        return decision

    async def _evaluate_gate(
        self, event: TriggerEvent, changes: ChangeSet | None
    ) -> GateDecision:
        definition = self.definition
        if changes is None:
            changes = await self._detect_changes(event)
        return self.gate.evaluate(
            event, changes, definition.filters, definition.force_on_manual
        )

    async def _detect_changes(self, event: TriggerEvent) -> ChangeSet:
        definition = self.definition
        if not definition.filters:
            return ChangeSet()
        if isinstance(event, ManualTrigger) and definition.force_on_manual:
            return ChangeSet()
        if self._deps.detector is None:
            logger.warning("Path filters configured but no change detector available")
            return ChangeSet.indeterminate()
        return await self._deps.detector.changed_files(definition.base_ref)

    async def _provision_and_run(
        self,
        lifecycle: PipelineLifecycle,
        ctx: LifecycleContext,
        event: TriggerEvent,
        concurrency: ConcurrencySpec,
        interrupt: asyncio.Event,
        started_at: float,
    ) -> None:
        definition = self.definition
        runner = RunnerLifecycle(
            self._deps.provisioner, self.config.provision, self.event_sink, interrupt
        )
        async with AsyncExitStack() as stack:
            try:
                handle = await runner.start(definition.backend, definition.profile)
            except ProvisionError as e:
                lifecycle.on_provision_failed(ctx, str(e))
                return
            except RunCancelledError as e:
                lifecycle.on_cancelled(ctx, str(e))
                return

            lifecycle.on_provisioned(ctx, handle)
            stack.push_async_callback(self._teardown, runner, lifecycle, ctx, handle)

            context = JobContext.for_event(event, definition.env, definition.event_env, handle)
            try:
                outcome = await self.job_runner.run(
                    handle, definition.steps, context, concurrency, interrupt, started_at
                )
            except Exception as e:
                logger.exception("Job runner raised")
                lifecycle.on_job_error(ctx, e)
            else:
                lifecycle.on_job_finished(ctx, outcome)

    async def _teardown(
        self,
        runner: RunnerLifecycle,
        lifecycle: PipelineLifecycle,
        ctx: LifecycleContext,
        handle: RunnerHandle,
    ) -> None:
        if lifecycle.state is PipelineState.RUNNING:
            # The job never reported back (controller task cancelled)
            lifecycle.on_cancelled(ctx, "run aborted")

        error: str | None = None
        try:
            await runner.stop(handle)
        except TeardownError as e:
            logger.error("%s", e)
            error = str(e)
        lifecycle.on_teardown_finished(ctx, error)
        if error is not None:
            await self.notifications.notify_teardown_failure(
                handle.label, error, self.config.run_url
            )

    # -------------------------------------------------------------------------
    # Completion
    # -------------------------------------------------------------------------

    def _should_notify(self, state: PipelineState) -> bool:
        policy = self.definition.notify.on
        if state is PipelineState.GATED_SKIP or policy is NotifyOn.NEVER:
            return False
        if policy is NotifyOn.ALWAYS:
            return True
        return state in (PipelineState.DONE_FAILURE, PipelineState.DONE_CANCELLED)

    def _create_record(
        self, run_id: str, event: TriggerEvent, concurrency: ConcurrencySpec
    ) -> RunRecord | None:
        if self.config.runs_dir is None:
            return None
        return RunRecord(
            RunRecordConfig(
                pipeline=self.definition.name,
                trigger=event.kind.value,
                ref=trigger_ref(event),
                sha=event.sha,
                actor=event.actor,
                backend=self.definition.backend,
                profile=self.definition.profile,
                concurrency_key=concurrency.key,
                run_url=self.config.run_url,
            ),
            version=self.config.version,
            runs_dir=self.config.runs_dir,
            run_id=run_id,
            debug_log=self.config.debug_log,
        )

    def _complete(
        self,
        run_id: str,
        lifecycle: PipelineLifecycle,
        ctx: LifecycleContext,
        record: RunRecord | None,
    ) -> PipelineResult:
        outcome = ctx.outcome
        if outcome is None:
            raise GantryError(f"run {run_id} reached {lifecycle.state.value} without an outcome")
        state = lifecycle.state
        runner_label = ctx.handle.label if ctx.handle else None
        self.event_sink.on_run_completed(state, outcome)

        record_path: Path | None = None
        if record is not None:
            if ctx.gate is not None:
                record.record_gate(
                    ctx.gate.run,
                    ctx.gate.reason,
                    ctx.gate.matched_groups,
                    ctx.gate.indeterminate,
                )
            record.record_result(state.value, outcome, runner_label, ctx.teardown_error)
            try:
                record_path = record.save()
            except OSError as e:
                logger.warning("Could not save run record: %s", e)
                record.cleanup()

        return PipelineResult(
            run_id=run_id,
            state=state,
            outcome=outcome,
            gate=ctx.gate,
            runner_label=runner_label,
            teardown_error=ctx.teardown_error,
            record_path=record_path,
        )
