"""Unit tests for gantry/infra/io/log_output/run_metadata.py.

Tests for:
- RunRecord serialization/deserialization
- Debug log handler lifecycle
"""

import json
import logging
from pathlib import Path

import pytest

from gantry.core.models import JobOutcome, JobStatus, StepResult, StepStatus
from gantry.infra.io.log_output.run_metadata import (
    RunRecord,
    RunRecordConfig,
    cleanup_debug_logging,
    configure_debug_logging,
)

CONFIG = RunRecordConfig(
    pipeline="signed-integer-tests",
    trigger="pull_request",
    ref="refs/pull/3/merge",
    sha="abc",
    actor="octocat",
    backend="aws",
    profile="cpu-big",
    concurrency_key="signed-integer-tests_refs/pull/3/merge",
)


class TestRunRecord:
    def test_save_and_load(self, tmp_path: Path) -> None:
        record = RunRecord(CONFIG, "0.1.0", runs_dir=tmp_path, debug_log=False)
        record.record_gate(True, "changes match integer", ("integer",))
        outcome = JobOutcome(
            status=JobStatus.FAILURE,
            steps=[
                StepResult.success("lint", 1.5),
                StepResult("tests", StepStatus.FAILURE, cause="exited with code 2", exit_code=2),
                StepResult.skipped("docs", "step 'tests' failed"),
            ],
            cause="exited with code 2",
            failed_step="tests",
        )
        record.record_result("done_failure", outcome, "runner-1", None)

        path = record.save()

        assert path.parent == tmp_path
        assert path.name.endswith(f"_{record.short_id}.json")
        data = json.loads(path.read_text())
        assert data["outcome"]["exit_code"] == 1
        assert data["outcome"]["steps"][1]["status"] == "failure"

        loaded = RunRecord.load(path)
        assert loaded.run_id == record.run_id
        assert loaded.config == CONFIG
        assert loaded.gate is not None and loaded.gate.matched_groups == ["integer"]
        assert loaded.outcome is not None
        assert loaded.outcome.failed_step == "tests"
        assert [s.status for s in loaded.outcome.steps] == [
            StepStatus.SUCCESS,
            StepStatus.FAILURE,
            StepStatus.SKIPPED,
        ]
        assert loaded.completed_at is not None

    def test_gate_skip_record_has_no_steps(self, tmp_path: Path) -> None:
        record = RunRecord(CONFIG, "0.1.0", runs_dir=tmp_path, debug_log=False)
        record.record_gate(False, "nothing relevant changed")
        record.record_result("gated_skip", JobOutcome.skipped("nothing relevant changed"))

        loaded = RunRecord.load(record.save())

        assert loaded.state == "gated_skip"
        assert loaded.outcome is not None and loaded.outcome.steps == []
        assert loaded.runner_label is None

    def test_default_runs_dir_is_per_pipeline(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("GANTRY_RUNS_DIR", str(tmp_path))
        record = RunRecord(CONFIG, "0.1.0", debug_log=False)
        assert record.runs_dir == tmp_path / "signed-integer-tests"


class TestDebugLogging:
    def test_disabled_by_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GANTRY_DISABLE_DEBUG_LOG", "1")
        assert configure_debug_logging("run-1", tmp_path) is None

    def test_handler_lifecycle(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("GANTRY_DISABLE_DEBUG_LOG", raising=False)
        path = configure_debug_logging("run-2", tmp_path)
        assert path is not None

        logging.getLogger("gantry.test").debug("hello debug log")
        assert cleanup_debug_logging("run-2")
        assert "hello debug log" in path.read_text()
        assert not cleanup_debug_logging("run-2")
