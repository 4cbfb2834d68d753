"""Cancellation helpers shared by provisioning, steps and concurrency waits.

A run is cancelled by setting its interrupt event: SIGINT/SIGTERM in the
CLI, or a newer run superseding the same concurrency key. Every blocking
wait in a run goes through these helpers so the in-flight operation is
abandoned as soon as the event is set.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine  # noqa: TC003 - runtime for TypeVar
from typing import TYPE_CHECKING, Generic, NamedTuple, TypeVar

from gantry.core.errors import RunCancelledError

if TYPE_CHECKING:
    from collections.abc import Awaitable

__all__ = [
    "BoundedResult",
    "InterruptGuard",
    "RunCancelledError",
    "await_interruptible",
    "run_with_interrupt_checks",
    "run_with_timeout_and_interrupt",
]

T = TypeVar("T")


class InterruptGuard:
    """Raises RunCancelledError once the run's interrupt event is set.

    A guard over None never fires.
    """

    def __init__(self, event: asyncio.Event | None, reason: str = "Run cancelled") -> None:
        self._event = event
        self._reason = reason

    def is_interrupted(self) -> bool:
        return self._event is not None and self._event.is_set()

    def raise_if_interrupted(self) -> None:
        if self.is_interrupted():
            raise RunCancelledError(self._reason)


async def await_interruptible(delay: float, interrupt_event: asyncio.Event | None) -> bool:
    """Sleep for delay seconds; True if the interrupt event cut the sleep short."""
    if interrupt_event is None:
        await asyncio.sleep(delay)
        return False
    if interrupt_event.is_set():
        return True
    try:
        await asyncio.wait_for(interrupt_event.wait(), timeout=delay)
    except TimeoutError:
        return False
    return True


async def run_with_interrupt_checks(
    attempt_fn: Callable[[], Awaitable[T]],
    interrupt_event: asyncio.Event | None,
    max_retries: int = 3,
    retry_delay: float = 1.0,
    on_retry: Callable[[int, Exception], None] | None = None,
    retry_on: tuple[type[Exception], ...] = (Exception,),
) -> T:
    """Call attempt_fn up to max_retries times.

    Only exceptions in retry_on are retried; the last one is re-raised when
    attempts run out. on_retry receives the number of the attempt about to
    start and the error that caused it.

    Raises:
        RunCancelledError: If the interrupt event is set between attempts
            or during the retry delay.
    """
    guard = InterruptGuard(interrupt_event, "Run cancelled during retry delay")
    for attempt in range(1, max_retries + 1):
        try:
            return await attempt_fn()
        except RunCancelledError:
            raise
        except retry_on as e:
            if attempt == max_retries:
                raise
            guard.raise_if_interrupted()
            if on_retry is not None:
                on_retry(attempt + 1, e)
            if await await_interruptible(retry_delay, interrupt_event):
                guard.raise_if_interrupted()
    raise ValueError(f"max_retries must be at least 1, got {max_retries}")


class BoundedResult(NamedTuple, Generic[T]):
    """Outcome of run_with_timeout_and_interrupt.

    At most one of timed_out and interrupted is True; value is None
    whenever either is.
    """

    value: T | None
    timed_out: bool
    interrupted: bool


async def run_with_timeout_and_interrupt(
    coro: Coroutine[object, object, T],
    timeout: float | None,
    interrupt_event: asyncio.Event | None,
) -> BoundedResult[T]:
    """Await coro bounded by timeout and by the interrupt event.

    The coroutine is cancelled and awaited when the timeout elapses or the
    event is set. Its own exceptions propagate. If the calling task is
    cancelled, the coroutine is cancelled too.
    """
    work = asyncio.create_task(coro)
    interrupt = interrupt_event if interrupt_event is not None else asyncio.Event()
    watcher = asyncio.create_task(interrupt.wait())
    try:
        done, _ = await asyncio.wait(
            {work, watcher}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
        )
    except BaseException:
        work.cancel()
        watcher.cancel()
        raise

    if work in done:
        await _cancel_and_wait(watcher)
        return BoundedResult(work.result(), timed_out=False, interrupted=False)

    await _cancel_and_wait(work)
    await _cancel_and_wait(watcher)
    if watcher in done:
        return BoundedResult(None, timed_out=False, interrupted=True)
    return BoundedResult(None, timed_out=True, interrupted=False)


async def _cancel_and_wait(task: asyncio.Task[object]) -> None:
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
