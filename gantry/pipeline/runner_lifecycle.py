"""RunnerLifecycle: provision and guarantee teardown of one ephemeral instance.

start() suspends until the provisioner returns a reachable instance, retrying
transient ProvisionErrors, bounded by one overall provisioning timeout and
aborted by the run's interrupt event. stop() asks the provisioner at most
once per handle; a repeated stop is logged and ignored.

Usage:
    lifecycle = RunnerLifecycle(provisioner, ProvisionConfig(timeout=900))
    async with lifecycle.provisioned("aws", "cpu-big") as handle:
        ...
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING

from gantry.core.errors import ProvisionError, RunCancelledError, TeardownError
from gantry.infra.interrupts import (
    InterruptGuard,
    run_with_interrupt_checks,
    run_with_timeout_and_interrupt,
)
from gantry.infra.io.config import (
    DEFAULT_PROVISION_RETRIES,
    DEFAULT_PROVISION_RETRY_DELAY,
    DEFAULT_PROVISION_TIMEOUT,
)
from gantry.infra.io.event_sink import NullEventSink

if TYPE_CHECKING:
    import asyncio
    from collections.abc import AsyncIterator

    from gantry.core.models import RunnerHandle
    from gantry.core.protocols import InstanceProvisioner, PipelineEventSink

logger = logging.getLogger(__name__)

DEFAULT_TEARDOWN_TIMEOUT = 600.0


@dataclass(frozen=True)
class ProvisionConfig:
    """Provisioning bounds.

    Attributes:
        timeout: Seconds for the whole start(), retries included.
        retries: Attempts before the last ProvisionError is raised.
        retry_delay: Seconds between attempts.
        teardown_timeout: Seconds before a hanging stop counts as failed.
    """

    timeout: float = DEFAULT_PROVISION_TIMEOUT
    retries: int = DEFAULT_PROVISION_RETRIES
    retry_delay: float = DEFAULT_PROVISION_RETRY_DELAY
    teardown_timeout: float = DEFAULT_TEARDOWN_TIMEOUT


class RunnerLifecycle:
    """Starts and stops runner instances through an InstanceProvisioner."""

    def __init__(
        self,
        provisioner: InstanceProvisioner,
        config: ProvisionConfig | None = None,
        event_sink: PipelineEventSink | None = None,
        interrupt_event: asyncio.Event | None = None,
    ) -> None:
        self._provisioner = provisioner
        self.config = config or ProvisionConfig()
        self._event_sink = event_sink or NullEventSink()
        self._interrupt_event = interrupt_event
        self._started: set[RunnerHandle] = set()
        self._stopped: set[RunnerHandle] = set()

    def is_stopped(self, handle: RunnerHandle) -> bool:
        return handle in self._stopped

    async def start(self, backend: str, profile: str) -> RunnerHandle:
        """Provision an instance and return its handle once reachable.

        Raises:
            ProvisionError: All attempts failed, or the timeout elapsed
                (timed_out=True).
            RunCancelledError: The interrupt event was set.
        """
        guard = InterruptGuard(self._interrupt_event, "Run cancelled before provisioning")
        guard.raise_if_interrupted()
        config = self.config
        attempts = 0
        started_at = time.monotonic()

        async def attempt() -> RunnerHandle:
            nonlocal attempts
            attempts += 1
            self._event_sink.on_provisioning_started(backend, profile, attempts, config.retries)
            return await self._provisioner.start(backend, profile)

        def on_retry(next_attempt: int, error: Exception) -> None:
            logger.warning(
                "Provisioning %s/%s failed (attempt %d/%d): %s",
                backend,
                profile,
                next_attempt - 1,
                config.retries,
                error,
            )

        try:
            handle, timed_out, interrupted = await run_with_timeout_and_interrupt(
                run_with_interrupt_checks(
                    attempt,
                    self._interrupt_event,
                    max_retries=config.retries,
                    retry_delay=config.retry_delay,
                    on_retry=on_retry,
                    retry_on=(ProvisionError,),
                ),
                config.timeout,
                self._interrupt_event,
            )
        except ProvisionError as e:
            self._event_sink.on_provision_failed(str(e))
            raise

        if interrupted:
            raise RunCancelledError("Run cancelled during provisioning")
        if timed_out or handle is None:
            error = ProvisionError(
                f"instance {backend}/{profile} not reachable within {config.timeout:.0f}s",
                backend=backend,
                profile=profile,
                timed_out=True,
            )
            self._event_sink.on_provision_failed(str(error))
            raise error

        self._started.add(handle)
        self._event_sink.on_provisioned(handle.label, time.monotonic() - started_at)
        return handle

    async def stop(self, handle: RunnerHandle) -> None:
        """Stop an instance returned by start(). A second stop is a no-op.

        Not interruptible: teardown must run even for cancelled runs.

        Raises:
            TeardownError: The provisioner failed or timed out.
            ValueError: handle was not returned by this lifecycle's start().
        """
        if handle in self._stopped:
            logger.warning("Ignoring repeated stop of %s", handle.label)
            return
        if handle not in self._started:
            raise ValueError(f"Runner {handle.label} was not started by this lifecycle")
        self._stopped.add(handle)

        self._event_sink.on_teardown_started(handle.label)
        try:
            _, timed_out, _ = await run_with_timeout_and_interrupt(
                self._provisioner.stop(handle), self.config.teardown_timeout, None
            )
            if timed_out:
                raise TeardownError(
                    handle.label, f"stop timed out after {self.config.teardown_timeout:.0f}s"
                )
        except TeardownError as e:
            self._event_sink.on_teardown_failed(handle.label, str(e))
            raise
        except Exception as e:
            error = TeardownError(handle.label, f"{type(e).__name__}: {e}")
            self._event_sink.on_teardown_failed(handle.label, str(error))
            raise error from e
        self._event_sink.on_teardown_completed(handle.label)

    @asynccontextmanager
    async def provisioned(self, backend: str, profile: str) -> AsyncIterator[RunnerHandle]:
        """Hold an instance for the duration of the block.

        The stop is registered as soon as start() returns, so it runs
        however the block exits.
        """
        handle = await self.start(backend, profile)
        try:
            yield handle
        finally:
            await self.stop(handle)
