"""Event sink implementations for PipelineController.

Provides concrete implementations of the PipelineEventSink protocol:
- BaseEventSink: Base class with no-op implementations
- NullEventSink: Silent sink for testing
- ConsoleEventSink: Colored console output
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from gantry.core.models import PipelineState, StepStatus
from gantry.core.protocols import EventRunConfig, PipelineEventSink
from gantry.infra.io.log_output.console import (
    Colors,
    log,
    log_verbose,
    truncate_text,
)

if TYPE_CHECKING:
    from gantry.core.models import JobOutcome, StepResult

__all__ = [
    "BaseEventSink",
    "ConsoleEventSink",
    "EventRunConfig",
    "NullEventSink",
    "PipelineEventSink",
]

logger = logging.getLogger(__name__)


class BaseEventSink:
    """No-op implementation of every PipelineEventSink method.

    Subclasses override only the events they care about.
    """

    def on_run_started(self, config: EventRunConfig) -> None:
        pass

    def on_run_completed(self, state: PipelineState, outcome: JobOutcome) -> None:
        pass

    def on_actor_checked(self, actor: str, allowed: bool, reason: str) -> None:
        pass

    def on_gate_evaluated(
        self, should_run: bool, reason: str, matched_groups: list[str]
    ) -> None:
        pass

    def on_provisioning_started(
        self, backend: str, profile: str, attempt: int, max_attempts: int
    ) -> None:
        pass

    def on_provisioned(self, label: str, duration_seconds: float) -> None:
        pass

    def on_provision_failed(self, error: str) -> None:
        pass

    def on_teardown_started(self, label: str) -> None:
        pass

    def on_teardown_completed(self, label: str) -> None:
        pass

    def on_teardown_failed(self, label: str, error: str) -> None:
        pass

    def on_concurrency_wait(self, key: str) -> None:
        pass

    def on_superseded(self, key: str) -> None:
        pass

    def on_step_started(self, name: str, index: int, total: int) -> None:
        pass

    def on_step_finished(self, result: StepResult) -> None:
        pass

    def on_notification_sent(self, message: str) -> None:
        pass

    def on_notification_failed(self, error: str) -> None:
        pass


class NullEventSink(BaseEventSink):
    """Event sink that discards every event."""


_STEP_ICONS = {
    StepStatus.SUCCESS: ("✓", Colors.GREEN),
    StepStatus.FAILURE: ("✗", Colors.RED),
    StepStatus.SKIPPED: ("○", Colors.GRAY),
    StepStatus.CANCELLED: ("⊘", Colors.YELLOW),
}

_STATE_COLORS = {
    PipelineState.GATED_SKIP: Colors.GRAY,
    PipelineState.DONE_SUCCESS: Colors.GREEN,
    PipelineState.DONE_FAILURE: Colors.RED,
    PipelineState.DONE_CANCELLED: Colors.YELLOW,
}


class ConsoleEventSink(BaseEventSink):
    """Event sink that writes one colored line per event to stdout.

    Every event is also mirrored to the module logger at DEBUG so the
    per-run debug log file carries the same trail.
    """

    def __init__(self, scope: str | None = None) -> None:
        self._scope = scope

    def _log(self, icon: str, message: str, color: str = Colors.RESET) -> None:
        logger.debug("%s %s", icon, message)
        log(icon, message, color, scope=self._scope)

    # -------------------------------------------------------------------------
    # Run lifecycle
    # -------------------------------------------------------------------------

    def on_run_started(self, config: EventRunConfig) -> None:
        self._log("▶", f"[START] {config.pipeline} ({config.trigger} {config.ref})", Colors.BOLD)
        log_verbose("run", f"Run id: {config.run_id}", scope=self._scope)
        log_verbose(
            "run", f"Runner: {config.backend}/{config.profile}", scope=self._scope
        )
        log_verbose("run", f"Steps: {', '.join(config.step_names)}", scope=self._scope)
        if config.concurrency_key:
            mode = "cancel-in-progress" if config.cancel_in_progress else "queue"
            log_verbose(
                "run",
                f"Concurrency: {config.concurrency_key} ({mode})",
                scope=self._scope,
            )

    def on_run_completed(self, state: PipelineState, outcome: JobOutcome) -> None:
        color = _STATE_COLORS.get(state, Colors.RESET)
        self._log("■", f"[DONE] {state.value}: {outcome.summary()}", color)

    # -------------------------------------------------------------------------
    # Gate
    # -------------------------------------------------------------------------

    def on_actor_checked(self, actor: str, allowed: bool, reason: str) -> None:
        if allowed:
            log_verbose("actor", reason, scope=self._scope)
        else:
            self._log("✗", f"[ACTOR] {reason}", Colors.RED)

    def on_gate_evaluated(
        self, should_run: bool, reason: str, matched_groups: list[str]
    ) -> None:
        verdict = "run" if should_run else "skip"
        color = Colors.CYAN if should_run else Colors.GRAY
        self._log("◆", f"[GATE] {verdict}: {reason}", color)

    # -------------------------------------------------------------------------
    # Runner lifecycle
    # -------------------------------------------------------------------------

    def on_provisioning_started(
        self, backend: str, profile: str, attempt: int, max_attempts: int
    ) -> None:
        self._log("⏳", f"[PROVISION] {backend}/{profile} attempt {attempt}/{max_attempts}")

    def on_provisioned(self, label: str, duration_seconds: float) -> None:
        self._log("✓", f"[PROVISION] {label} ready in {duration_seconds:.1f}s", Colors.GREEN)

    def on_provision_failed(self, error: str) -> None:
        self._log("✗", f"[PROVISION] {error}", Colors.RED)

    def on_teardown_started(self, label: str) -> None:
        self._log("⏏", f"[TEARDOWN] stopping {label}")

    def on_teardown_completed(self, label: str) -> None:
        self._log("✓", f"[TEARDOWN] {label} stopped", Colors.GREEN)

    def on_teardown_failed(self, label: str, error: str) -> None:
        self._log("⚠", f"[TEARDOWN] {label}: {error}", Colors.YELLOW)

    # -------------------------------------------------------------------------
    # Concurrency
    # -------------------------------------------------------------------------

    def on_concurrency_wait(self, key: str) -> None:
        self._log("…", f"[CONCURRENCY] waiting for {key}", Colors.MUTED)

    def on_superseded(self, key: str) -> None:
        self._log("⊘", f"[CONCURRENCY] superseded by a newer run of {key}", Colors.YELLOW)

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def on_step_started(self, name: str, index: int, total: int) -> None:
        self._log("→", f"[STEP {index}/{total}] {name}")

    def on_step_finished(self, result: StepResult) -> None:
        icon, color = _STEP_ICONS[result.status]
        detail = f" ({truncate_text(result.cause, 120)})" if result.cause else ""
        suffix = " [continue-on-error]" if result.continue_on_error and result.cause else ""
        self._log(
            icon,
            f"[STEP] {result.name}: {result.status.value} "
            f"in {result.duration_seconds:.1f}s{detail}{suffix}",
            color,
        )

    # -------------------------------------------------------------------------
    # Notification
    # -------------------------------------------------------------------------

    def on_notification_sent(self, message: str) -> None:
        log_verbose("notify", f"Sent: {message}", scope=self._scope)

    def on_notification_failed(self, error: str) -> None:
        self._log("⚠", f"[NOTIFY] {error}", Colors.YELLOW)
