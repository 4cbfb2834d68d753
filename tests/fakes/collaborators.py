"""Fakes for the external collaborators the controller drives."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from gantry.core.errors import NotifyError
from gantry.core.models import ChangeSet, RunnerHandle
from gantry.domain.path_filters import PathFilterGroup, changed_groups

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence


@dataclass
class FakeProvisioner:
    """InstanceProvisioner with scripted failures.

    Attributes:
        start_errors: Raised by successive start() calls before one succeeds.
        start_delay: Seconds each start() takes.
        stop_error: Raised by every stop() call when set.
        stop_delay: Seconds each stop() takes.
    """

    start_errors: list[Exception] = field(default_factory=list)
    start_delay: float = 0.0
    stop_error: Exception | None = None
    stop_delay: float = 0.0
    start_calls: int = 0
    stopped: list[RunnerHandle] = field(default_factory=list)
    active: set[RunnerHandle] = field(default_factory=set)

    async def start(self, backend: str, profile: str) -> RunnerHandle:
        self.start_calls += 1
        if self.start_delay:
            await asyncio.sleep(self.start_delay)
        if self.start_errors:
            raise self.start_errors.pop(0)
        handle = RunnerHandle(f"runner-{self.start_calls}", backend, profile)
        self.active.add(handle)
        return handle

    async def stop(self, handle: RunnerHandle) -> None:
        self.stopped.append(handle)
        if self.stop_delay:
            await asyncio.sleep(self.stop_delay)
        if self.stop_error is not None:
            raise self.stop_error
        self.active.discard(handle)


@dataclass(frozen=True)
class InvokeCall:
    handle: RunnerHandle
    target: str
    env: dict[str, str]


@dataclass
class FakeInvoker:
    """BuildTargetInvoker with per-target behavior.

    Attributes:
        exit_codes: Exit code per target (default 0).
        delays: Seconds a target runs before returning.
        errors: Exception raised by a target.
        block: Targets that run until cancelled.
    """

    exit_codes: dict[str, int] = field(default_factory=dict)
    delays: dict[str, float] = field(default_factory=dict)
    errors: dict[str, Exception] = field(default_factory=dict)
    block: set[str] = field(default_factory=set)
    calls: list[InvokeCall] = field(default_factory=list)
    cancelled: list[str] = field(default_factory=list)
    started: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def targets(self) -> list[str]:
        return [call.target for call in self.calls]

    async def invoke(
        self, handle: RunnerHandle, target: str, env: Mapping[str, str]
    ) -> int:
        self.calls.append(InvokeCall(handle, target, dict(env)))
        self.started.set()
        try:
            if target in self.block:
                await asyncio.Event().wait()
            if target in self.delays:
                await asyncio.sleep(self.delays[target])
        except asyncio.CancelledError:
            self.cancelled.append(target)
            raise
        if target in self.errors:
            raise self.errors[target]
        return self.exit_codes.get(target, 0)


@dataclass
class FakeNotifier:
    """ChatNotifier that records messages, or fails with error."""

    error: Exception | None = None
    sent: list[tuple[str, str, str]] = field(default_factory=list)
    attempts: int = 0

    @property
    def messages(self) -> list[str]:
        return [message for _, message, _ in self.sent]

    async def send(self, webhook: str, message: str, color: str) -> None:
        self.attempts += 1
        if self.error is not None:
            raise self.error
        if not webhook:
            raise NotifyError("empty webhook")
        self.sent.append((webhook, message, color))


@dataclass
class FakeDetector:
    """ChangedFilesDetector returning a fixed change set."""

    changes: ChangeSet = field(default_factory=ChangeSet)
    base_refs: list[str | None] = field(default_factory=list)

    @classmethod
    def of(cls, *paths: str) -> FakeDetector:
        return cls(ChangeSet.of(paths))

    async def changed_files(self, base_ref: str | None) -> ChangeSet:
        self.base_refs.append(base_ref)
        return self.changes

    async def detect(
        self, base_ref: str | None, filter_groups: Mapping[str, Sequence[str]]
    ) -> dict[str, bool]:
        changes = await self.changed_files(base_ref)
        groups = [PathFilterGroup(name, tuple(p)) for name, p in filter_groups.items()]
        return changed_groups(groups, changes)


@dataclass
class FakePermissionChecker:
    """PermissionChecker with fixed levels per actor."""

    levels: dict[str, str] = field(default_factory=dict)
    error: Exception | None = None
    checked: list[str] = field(default_factory=list)

    async def permission_level(self, actor: str) -> str | None:
        self.checked.append(actor)
        if self.error is not None:
            raise self.error
        return self.levels.get(actor)
