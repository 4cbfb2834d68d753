"""Run records for gantry pipeline runs.

Each controller run writes one JSON file under the pipeline's runs directory:
the trigger, the gate decision, every step result, the terminal state and
whether teardown succeeded. `gantry logs` reads them back.
"""

import json
import logging
import os
import uuid
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from gantry.core.models import JobOutcome, JobStatus, StepResult, StepStatus
from gantry.infra.tools.env import get_pipeline_runs_dir

_HANDLER_PREFIX = "gantry_debug_"


def configure_debug_logging(run_id: str, runs_dir: Path) -> Path | None:
    """Write DEBUG+ records of the 'gantry' logger namespace to a file.

    The file sits next to the run record:
    {runs_dir}/{timestamp}_{short_id}.debug.log

    Best-effort: returns None if the file cannot be created, or if
    GANTRY_DISABLE_DEBUG_LOG=1.
    """
    if os.environ.get("GANTRY_DISABLE_DEBUG_LOG") == "1":
        return None

    try:
        runs_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now(UTC).strftime("%Y-%m-%dT%H-%M-%S")
        log_path = runs_dir / f"{timestamp}_{run_id[:8]}.debug.log"

        handler = logging.FileHandler(log_path)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s %(levelname)s %(name)s: %(message)s",
                datefmt="%H:%M:%S",
            )
        )
        handler.set_name(f"{_HANDLER_PREFIX}{run_id}")

        gantry_logger = logging.getLogger("gantry")
        gantry_logger.setLevel(logging.DEBUG)
        # Drop handlers left behind by earlier runs in this process
        for existing in gantry_logger.handlers[:]:
            if (existing.get_name() or "").startswith(_HANDLER_PREFIX):
                existing.close()
                gantry_logger.removeHandler(existing)
        gantry_logger.addHandler(handler)
        return log_path
    except OSError:
        return None


def cleanup_debug_logging(run_id: str) -> bool:
    """Close and remove the debug handler of run_id.

    Returns:
        True if a handler was found and removed.
    """
    gantry_logger = logging.getLogger("gantry")
    for handler in gantry_logger.handlers[:]:
        if handler.get_name() == f"{_HANDLER_PREFIX}{run_id}":
            handler.close()
            gantry_logger.removeHandler(handler)
            return True
    return False


@dataclass
class RunRecordConfig:
    """What was asked for: pipeline, trigger and runner."""

    pipeline: str
    trigger: str
    ref: str
    sha: str = ""
    actor: str = ""
    backend: str = ""
    profile: str = ""
    concurrency_key: str | None = None
    run_url: str | None = None


@dataclass
class GateRecord:
    run: bool
    reason: str
    matched_groups: list[str] = field(default_factory=list)
    indeterminate: bool = False


class RunRecord:
    """Tracks and persists the record of a single pipeline run.

    Creates {runs_dir}/{timestamp}_{short_id}.json containing the run
    configuration, gate decision, step results, terminal state, runner label
    and teardown error.
    """

    def __init__(
        self,
        config: RunRecordConfig,
        version: str,
        runs_dir: Path | None = None,
        run_id: str | None = None,
        debug_log: bool = True,
    ) -> None:
        self.run_id = run_id or str(uuid.uuid4())
        self.started_at = datetime.now(UTC)
        self.completed_at: datetime | None = None
        self.config = config
        self.version = version
        self.runs_dir = (
            runs_dir if runs_dir is not None else get_pipeline_runs_dir(config.pipeline)
        )
        self.gate: GateRecord | None = None
        self.state: str | None = None
        self.outcome: JobOutcome | None = None
        self.runner_label: str | None = None
        self.teardown_error: str | None = None
        self.debug_log_path: Path | None = (
            configure_debug_logging(self.run_id, self.runs_dir) if debug_log else None
        )

    @property
    def short_id(self) -> str:
        return self.run_id[:8]

    def record_gate(
        self,
        run: bool,
        reason: str,
        matched_groups: tuple[str, ...] = (),
        indeterminate: bool = False,
    ) -> None:
        self.gate = GateRecord(run, reason, list(matched_groups), indeterminate)

    def record_result(
        self,
        state: str,
        outcome: JobOutcome,
        runner_label: str | None = None,
        teardown_error: str | None = None,
    ) -> None:
        self.state = state
        self.outcome = outcome
        self.runner_label = runner_label
        self.teardown_error = teardown_error

    def _to_dict(self) -> dict[str, Any]:
        outcome = self.outcome
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "version": self.version,
            "config": asdict(self.config),
            "gate": asdict(self.gate) if self.gate else None,
            "state": self.state,
            "outcome": {
                "status": outcome.status.value,
                "exit_code": outcome.exit_code,
                "cause": outcome.cause,
                "failed_step": outcome.failed_step,
                "steps": [
                    {**asdict(step), "status": step.status.value}
                    for step in outcome.steps
                ],
            }
            if outcome
            else None,
            "runner_label": self.runner_label,
            "teardown_error": self.teardown_error,
            "debug_log_path": str(self.debug_log_path) if self.debug_log_path else None,
        }

    @classmethod
    def load(cls, path: Path) -> "RunRecord":
        """Load a run record from a JSON file.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            json.JSONDecodeError: If the file is invalid JSON.
        """
        with open(path) as f:
            data = json.load(f)

        record = cls.__new__(cls)
        record.run_id = data["run_id"]
        record.started_at = datetime.fromisoformat(data["started_at"])
        record.completed_at = (
            datetime.fromisoformat(data["completed_at"]) if data.get("completed_at") else None
        )
        record.version = data.get("version", "")
        record.config = RunRecordConfig(**data["config"])
        record.runs_dir = path.parent
        gate = data.get("gate")
        record.gate = GateRecord(**gate) if gate else None
        record.state = data.get("state")
        outcome = data.get("outcome")
        record.outcome = (
            JobOutcome(
                status=JobStatus(outcome["status"]),
                steps=[
                    StepResult(
                        name=s["name"],
                        status=StepStatus(s["status"]),
                        cause=s.get("cause"),
                        exit_code=s.get("exit_code"),
                        continue_on_error=s.get("continue_on_error", False),
                        duration_seconds=s.get("duration_seconds", 0.0),
                    )
                    for s in outcome.get("steps", [])
                ],
                cause=outcome.get("cause"),
                failed_step=outcome.get("failed_step"),
            )
            if outcome
            else None
        )
        record.runner_label = data.get("runner_label")
        record.teardown_error = data.get("teardown_error")
        debug_log_path = data.get("debug_log_path")
        record.debug_log_path = Path(debug_log_path) if debug_log_path else None
        return record

    def cleanup(self) -> None:
        """Remove the debug log handler. Idempotent."""
        if self.debug_log_path is not None:
            cleanup_debug_logging(self.run_id)

    def save(self) -> Path:
        """Write the record as {timestamp}_{short_id}.json and return its path."""
        self.completed_at = datetime.now(UTC)
        self.cleanup()

        self.runs_dir.mkdir(parents=True, exist_ok=True)
        timestamp = self.started_at.strftime("%Y-%m-%dT%H-%M-%S")
        path = self.runs_dir / f"{timestamp}_{self.short_id}.json"
        with open(path, "w") as f:
            json.dump(self._to_dict(), f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        return path
