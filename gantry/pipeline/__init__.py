"""Pipeline stages driven by PipelineController.

Each module represents a stage with explicit inputs/outputs and can be
tested in isolation with the fakes in tests/fakes.

Modules:
    runner_lifecycle: Provisioning with retries/timeout and at-most-once teardown
    job_runner: Ordered step execution with fail-fast and cancellation
    notification: Best-effort chat reporting of the terminal status
"""

from gantry.pipeline.job_runner import JobContext, JobRunner
from gantry.pipeline.notification import NotificationSink, NotifyContext
from gantry.pipeline.runner_lifecycle import ProvisionConfig, RunnerLifecycle

__all__ = [
    "JobContext",
    "JobRunner",
    "NotificationSink",
    "NotifyContext",
    "ProvisionConfig",
    "RunnerLifecycle",
]
