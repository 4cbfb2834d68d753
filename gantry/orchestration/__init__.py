"""Pipeline controller and its factory."""

from gantry.orchestration.controller import PipelineController
from gantry.orchestration.factory import create_controller
from gantry.orchestration.types import (
    ControllerConfig,
    ControllerDependencies,
    PipelineResult,
)

__all__ = [
    "ControllerConfig",
    "ControllerDependencies",
    "PipelineController",
    "PipelineResult",
    "create_controller",
]
