"""Contract test for FakeEventSink and BaseEventSink protocol completeness.

Ensures the sinks implement all methods of the PipelineEventSink protocol.
"""

import inspect

import pytest

from gantry.core.protocols import PipelineEventSink
from gantry.infra.io.event_sink import BaseEventSink
from tests.fakes.event_sink import FakeEventSink


def _public_methods(cls: type) -> set[str]:
    return {
        name
        for name, _ in inspect.getmembers(cls, predicate=inspect.isfunction)
        if not name.startswith("_")
    }


@pytest.mark.unit
@pytest.mark.parametrize("sink_cls", [FakeEventSink, BaseEventSink])
def test_sink_implements_all_protocol_methods(sink_cls: type) -> None:
    """Every PipelineEventSink method is implemented."""
    missing = _public_methods(PipelineEventSink) - _public_methods(sink_cls)
    assert not missing, f"{sink_cls.__name__} missing protocol methods: {sorted(missing)}"


@pytest.mark.unit
def test_fake_event_sink_has_event_helper() -> None:
    """has_event() correctly identifies recorded events."""
    sink = FakeEventSink()

    assert not sink.has_event("run_started")

    sink.on_run_started(config=None)  # type: ignore[arg-type]
    assert sink.has_event("run_started")
    assert not sink.has_event("run_completed")


@pytest.mark.unit
def test_fake_event_sink_clear() -> None:
    """clear() removes all recorded events."""
    sink = FakeEventSink()

    sink.on_concurrency_wait(key="k")
    sink.on_superseded(key="k")
    assert sink.names() == ["concurrency_wait", "superseded"]

    sink.clear()
    assert len(sink.events) == 0


@pytest.mark.unit
@pytest.mark.parametrize("method", sorted(_public_methods(PipelineEventSink)))
def test_fake_event_sink_records_keyword_calls(method: str) -> None:
    """Each hook can be called with its protocol parameters by keyword."""
    sink = FakeEventSink()
    params = [
        p for p in inspect.signature(getattr(PipelineEventSink, method)).parameters
        if p != "self"
    ]
    kwargs = {p: f"<{p}>" for p in params}

    getattr(sink, method)(**kwargs)

    assert len(sink.events) == 1
    assert sink.events[0].name == method.removeprefix("on_")
    assert sink.events[0].kwargs == kwargs
