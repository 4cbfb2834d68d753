"""Concurrency registries: at most one run per concurrency key.

Two implementations share the slot() interface:
- ConcurrencyRegistry: in-process, for runs that share an event loop
- LockFileConcurrencyRegistry: cross-process, one pid lock file per key

Runs are ordered by their start time, not by when they reach the slot.
When the key allows cancel-in-progress, a newer run cancels the run holding
the key (in-process: sets its interrupt event; cross-process: SIGTERM to the
owner pid, which the CLI turns into an interrupt) and then waits for the
slot to be released. An older run that finds a newer holder gives up with
SupersededError instead.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import os
import signal
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from gantry.core.errors import RunCancelledError, SupersededError
from gantry.infra.interrupts import InterruptGuard

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable
    from pathlib import Path

    from gantry.domain.concurrency import ConcurrencySpec

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1.0


@dataclass
class SlotLease:
    """A held concurrency slot.

    Attributes:
        key: Concurrency key.
        cancel_event: Interrupt event of the holding run.
        started_at: Wall-clock start time of the holding run.
        superseded: Set when a newer run cancelled the holder.
    """

    key: str
    cancel_event: asyncio.Event
    started_at: float = 0.0
    superseded: bool = False
    released: asyncio.Event = field(default_factory=asyncio.Event)
    marker: Path | None = None

    @property
    def was_superseded(self) -> bool:
        """Whether a newer run cancelled the holder (in this or another process)."""
        return self.superseded or (self.marker is not None and self.marker.exists())


async def _wait_released(lease: SlotLease, own_cancel: asyncio.Event) -> None:
    """Wait until lease is released or the waiting run is itself cancelled."""
    released = asyncio.create_task(lease.released.wait())
    cancelled = asyncio.create_task(own_cancel.wait())
    try:
        await asyncio.wait({released, cancelled}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        released.cancel()
        cancelled.cancel()


class ConcurrencyRegistry:
    """In-process registry of concurrency slots."""

    def __init__(self) -> None:
        self._holders: dict[str, SlotLease] = {}

    def holder(self, key: str) -> SlotLease | None:
        return self._holders.get(key)

    @asynccontextmanager
    async def slot(
        self,
        spec: ConcurrencySpec,
        cancel_event: asyncio.Event,
        on_wait: Callable[[str], None] | None = None,
        started_at: float | None = None,
    ) -> AsyncIterator[SlotLease]:
        """Hold the slot for spec.key for the duration of the block.

        Args:
            started_at: Start time of the requesting run; now when None.

        Raises:
            SupersededError: If a newer run holds a cancel-in-progress key.
            RunCancelledError: If cancel_event is set while waiting.
        """
        started = time.time() if started_at is None else started_at
        guard = InterruptGuard(cancel_event, "Run cancelled while waiting for concurrency slot")
        while (current := self._holders.get(spec.key)) is not None:
            guard.raise_if_interrupted()
            if spec.cancel_in_progress:
                if current.started_at > started:
                    logger.info("Newer run already holds %s; giving up", spec.key)
                    raise SupersededError(spec.key)
                if not current.cancel_event.is_set():
                    logger.info("Cancelling older run holding %s", spec.key)
                    current.superseded = True
                    current.cancel_event.set()
            if on_wait is not None:
                on_wait(spec.key)
            await _wait_released(current, cancel_event)
        guard.raise_if_interrupted()

        lease = SlotLease(key=spec.key, cancel_event=cancel_event, started_at=started)
        self._holders[spec.key] = lease
        try:
            yield lease
        finally:
            if self._holders.get(spec.key) is lease:
                del self._holders[spec.key]
            lease.released.set()


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by another user
        return True
    return True


class LockFileConcurrencyRegistry:
    """Cross-process registry backed by O_CREAT|O_EXCL lock files.

    A lock file holds the owner pid on its first line and the owner run's
    start time on the second. A lock whose owner pid is no longer alive is
    stale and reclaimed. A superseding run drops a "<lock>.superseded"
    marker before signalling the owner so the owner can report why it was
    cancelled.
    """

    def __init__(
        self,
        lock_dir: Path,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        pid_alive: Callable[[int], bool] = _pid_alive,
    ) -> None:
        self.lock_dir = lock_dir
        self.poll_interval = poll_interval
        self._pid_alive = pid_alive

    def lock_path(self, key: str) -> Path:
        safe = "".join(c if c.isalnum() or c in "-." else "_" for c in key)[:80]
        digest = hashlib.sha1(key.encode()).hexdigest()[:10]
        return self.lock_dir / f"{safe}-{digest}.lock"

    def _read_lock(self, path: Path) -> tuple[int | None, float | None]:
        """Owner pid and start time; either is None when unreadable."""
        try:
            lines = path.read_text().split()
        except OSError:
            return None, None
        try:
            pid = int(lines[0])
        except (IndexError, ValueError):
            return None, None
        try:
            return pid, float(lines[1])
        except (IndexError, ValueError):
            return pid, None

    def _try_acquire(self, path: Path, started_at: float) -> bool:
        try:
            fd = os.open(str(path), os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            return False
        try:
            os.write(fd, f"{os.getpid()}\n{started_at!r}\n".encode())
        finally:
            os.close(fd)
        return True

    @asynccontextmanager
    async def slot(
        self,
        spec: ConcurrencySpec,
        cancel_event: asyncio.Event,
        on_wait: Callable[[str], None] | None = None,
        started_at: float | None = None,
    ) -> AsyncIterator[SlotLease]:
        """Hold the lock file for spec.key for the duration of the block.

        Args:
            started_at: Start time of the requesting run; now when None.

        Raises:
            SupersededError: If a newer run holds a cancel-in-progress key.
            RunCancelledError: If cancel_event is set while waiting.
        """
        started = time.time() if started_at is None else started_at
        self.lock_dir.mkdir(parents=True, exist_ok=True)
        path = self.lock_path(spec.key)
        marker = path.with_name(path.name + ".superseded")
        guard = InterruptGuard(cancel_event, "Run cancelled while waiting for concurrency slot")
        signalled: int | None = None
        announced = False

        while not self._try_acquire(path, started):
            guard.raise_if_interrupted()
            owner, owner_started = self._read_lock(path)
            if owner is None:
                # Owner is mid-write; look again next poll
                pass
            elif not self._pid_alive(owner):
                logger.warning("Reclaiming stale lock %s (pid %d)", path, owner)
                path.unlink(missing_ok=True)
                continue
            elif spec.cancel_in_progress and owner != os.getpid():
                if owner_started is not None and owner_started > started:
                    logger.info("Newer run pid=%d already holds %s; giving up", owner, spec.key)
                    raise SupersededError(spec.key)
                if signalled != owner:
                    logger.info("Cancelling older run pid=%d holding %s", owner, spec.key)
                    marker.write_text(str(os.getpid()))
                    try:
                        os.kill(owner, signal.SIGTERM)
                    except ProcessLookupError:
                        pass
                    signalled = owner
            if on_wait is not None and not announced:
                on_wait(spec.key)
                announced = True
            try:
                await asyncio.wait_for(cancel_event.wait(), timeout=self.poll_interval)
            except TimeoutError:
                pass

        # A marker left by a run that died before releasing is not ours
        marker.unlink(missing_ok=True)
        lease = SlotLease(
            key=spec.key, cancel_event=cancel_event, started_at=started, marker=marker
        )
        try:
            yield lease
        finally:
            if marker.exists():
                lease.superseded = True
                marker.unlink(missing_ok=True)
            if self._read_lock(path)[0] == os.getpid():
                path.unlink(missing_ok=True)
            lease.released.set()


__all__ = [
    "ConcurrencyRegistry",
    "LockFileConcurrencyRegistry",
    "RunCancelledError",
    "SlotLease",
    "SupersededError",
]
