"""NotificationSink: best-effort chat reporting of terminal job status.

notify() never raises. Delivery problems (no webhook, transport errors,
rejected payloads) are logged and reported to the event sink, and the job
outcome is left exactly as it was.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from gantry.core.errors import NotifyError
from gantry.core.models import JobStatus
from gantry.domain.pipeline_definition import TEMPLATE_ERRORS, NotifySpec
from gantry.infra.io.event_sink import NullEventSink

if TYPE_CHECKING:
    from gantry.core.models import JobOutcome
    from gantry.core.protocols import ChatNotifier, PipelineEventSink

logger = logging.getLogger(__name__)

STATUS_COLORS: dict[JobStatus, str] = {
    JobStatus.SUCCESS: "good",
    JobStatus.FAILURE: "danger",
    JobStatus.CANCELLED: "warning",
    JobStatus.SKIPPED: "#808080",
}
TEARDOWN_FAILURE_COLOR = "danger"
_NO_URL = "no run url"


@dataclass(frozen=True)
class NotifyContext:
    """Per-notification details.

    Attributes:
        url: Link to the CI run.
        color: Attachment color; derived from the status when None.
    """

    url: str | None = None
    color: str | None = None


class NotificationSink:
    """Formats and delivers terminal status messages through a ChatNotifier."""

    def __init__(
        self,
        notifier: ChatNotifier | None,
        webhook: str | None,
        pipeline: str,
        spec: NotifySpec | None = None,
        event_sink: PipelineEventSink | None = None,
    ) -> None:
        self._notifier = notifier
        self._webhook = webhook
        self.pipeline = pipeline
        self.spec = spec or NotifySpec()
        self._event_sink = event_sink or NullEventSink()

    def format_message(self, outcome: JobOutcome, url: str | None) -> str:
        """"<pipeline> finished with status: <status>. (<url>)" plus the cause."""
        status = outcome.status.value
        try:
            message = self.spec.render(self.pipeline, status, url or _NO_URL)
        except TEMPLATE_ERRORS as e:
            logger.warning("Bad notify message template (%s); using default", e)
            message = NotifySpec().render(self.pipeline, status, url or _NO_URL)
        if outcome.status is not JobStatus.SUCCESS and outcome.cause:
            detail = (
                f"step '{outcome.failed_step}' {outcome.cause}"
                if outcome.failed_step
                else outcome.cause
            )
            message = f"{message}\n{detail}"
        return message

    async def notify(self, outcome: JobOutcome, context: NotifyContext | None = None) -> bool:
        """Post the outcome. Returns True if delivered; never raises."""
        context = context or NotifyContext()
        message = self.format_message(outcome, context.url)
        color = context.color or STATUS_COLORS[outcome.status]
        return await self._deliver(message, color)

    async def notify_teardown_failure(
        self, label: str, error: str, url: str | None = None
    ) -> bool:
        """Report an instance that could not be stopped (it may still be billing)."""
        message = (
            f"{self.pipeline}: failed to stop runner {label}. "
            f"Manual cleanup may be needed. ({url or _NO_URL})\n{error}"
        )
        return await self._deliver(message, TEARDOWN_FAILURE_COLOR)

    async def _deliver(self, message: str, color: str) -> bool:
        try:
            if self._notifier is None or not self._webhook:
                raise NotifyError("no chat webhook configured")
            await self._notifier.send(self._webhook, message, color)
        except Exception as e:
            logger.warning("Notification not delivered: %s", e)
            self._event_sink.on_notification_failed(str(e))
            return False
        self._event_sink.on_notification_sent(message)
        return True
