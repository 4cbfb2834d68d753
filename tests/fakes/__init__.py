"""In-memory fake implementations for testing.

This module provides fake implementations of the gantry protocols for use
in unit and integration tests. Fakes are preferred over mocks because they:

1. Implement real protocol contracts, catching interface mismatches at test time
2. Provide deterministic, predictable behavior without call-order dependencies
3. Enable behavior-based testing (assert outputs/state) over interaction testing

Available fakes:
- FakeProvisioner: Scripted instance provisioning with call counting
- FakeInvoker: Per-target exit codes, delays and exceptions
- FakeNotifier: Records chat messages, optionally fails delivery
- FakeDetector: Returns a fixed ChangeSet
- FakePermissionChecker: Fixed permission levels per actor
- FakeEventSink: Event capture with completeness verification
- FakeHttpSession: Scripted aiohttp-style responses for the HTTP clients

Usage:
    from tests.fakes import FakeInvoker, FakeProvisioner

    async def test_something():
        provisioner = FakeProvisioner()
        invoker = FakeInvoker(exit_codes={"test_gpu": 2})
        # test code that uses them
"""

from tests.fakes.collaborators import (
    FakeDetector,
    FakeInvoker,
    FakeNotifier,
    FakePermissionChecker,
    FakeProvisioner,
    InvokeCall,
)
from tests.fakes.event_sink import FakeEventSink, RecordedEvent
from tests.fakes.http import FakeHttpSession, FakeResponse

__all__ = [
    "FakeDetector",
    "FakeEventSink",
    "FakeHttpSession",
    "FakeInvoker",
    "FakeNotifier",
    "FakePermissionChecker",
    "FakeProvisioner",
    "FakeResponse",
    "InvokeCall",
    "RecordedEvent",
]
