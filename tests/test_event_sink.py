"""Tests for event_sink module."""

import pytest

from gantry.core.models import JobOutcome, JobStatus, PipelineState, StepResult, StepStatus
from gantry.infra.io.event_sink import (
    BaseEventSink,
    ConsoleEventSink,
    EventRunConfig,
    NullEventSink,
    PipelineEventSink,
)


def _config() -> EventRunConfig:
    return EventRunConfig(
        run_id="1234abcd",
        pipeline="gpu-tests",
        trigger="push",
        ref="refs/heads/main",
        backend="hyperstack",
        profile="single-h100",
        step_names=["pcc", "tests"],
        concurrency_key="gpu-tests_refs/heads/main1234",
    )


class TestNullEventSink:
    def test_satisfies_protocol(self) -> None:
        assert isinstance(NullEventSink(), PipelineEventSink)
        assert isinstance(BaseEventSink(), PipelineEventSink)

    def test_all_methods_are_silent(self, capsys: pytest.CaptureFixture[str]) -> None:
        sink = NullEventSink()
        sink.on_run_started(_config())
        sink.on_step_finished(StepResult.success("pcc"))
        sink.on_run_completed(PipelineState.DONE_SUCCESS, JobOutcome(status=JobStatus.SUCCESS))
        assert capsys.readouterr().out == ""


class TestConsoleEventSink:
    def test_satisfies_protocol(self) -> None:
        assert isinstance(ConsoleEventSink(), PipelineEventSink)

    def test_step_lines(self, capsys: pytest.CaptureFixture[str]) -> None:
        sink = ConsoleEventSink(scope="gpu-tests")
        sink.on_step_started("tests", 2, 3)
        sink.on_step_finished(
            StepResult("tests", StepStatus.FAILURE, cause="exited with code 2", exit_code=2)
        )
        out = capsys.readouterr().out
        assert "[gpu-tests]" in out
        assert "[STEP 2/3] tests" in out
        assert "tests: failure" in out
        assert "exited with code 2" in out

    def test_continue_on_error_marker(self, capsys: pytest.CaptureFixture[str]) -> None:
        ConsoleEventSink().on_step_finished(
            StepResult(
                "lint", StepStatus.FAILURE, cause="exited with code 1", continue_on_error=True
            )
        )
        assert "[continue-on-error]" in capsys.readouterr().out

    def test_gate_and_completion(self, capsys: pytest.CaptureFixture[str]) -> None:
        sink = ConsoleEventSink()
        sink.on_run_started(_config())
        sink.on_gate_evaluated(False, "nothing relevant changed", [])
        sink.on_run_completed(
            PipelineState.GATED_SKIP, JobOutcome.skipped("nothing relevant changed")
        )
        out = capsys.readouterr().out
        assert "[START] gpu-tests (push refs/heads/main)" in out
        assert "[GATE] skip: nothing relevant changed" in out
        assert "[DONE] gated_skip" in out

    def test_teardown_failure_is_visible(self, capsys: pytest.CaptureFixture[str]) -> None:
        ConsoleEventSink().on_teardown_failed("runner-1", "stop timed out")
        assert "[TEARDOWN] runner-1: stop timed out" in capsys.readouterr().out
