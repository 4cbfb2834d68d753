"""Exception taxonomy for gantry.

Only ProvisionError (and step failures, which are recorded as StepResult
values rather than raised) affect a run's JobOutcome. TeardownError and
NotifyError are contained by the component that observes them.
GateIndeterminateError never escapes the gate: it fails safe to "run".
"""

from __future__ import annotations


class GantryError(Exception):
    """Base class for all gantry errors."""


class ConfigError(GantryError):
    """Raised when a pipeline definition or configuration is invalid."""


class GateIndeterminateError(GantryError):
    """Raised when the change set cannot answer whether files changed."""


class ProvisionError(GantryError):
    """Raised when an ephemeral instance could not be provisioned.

    Attributes:
        backend: Backend that was asked for the instance.
        profile: Requested instance profile.
        timed_out: True if provisioning exceeded its timeout.
    """

    def __init__(
        self, message: str, *, backend: str = "", profile: str = "", timed_out: bool = False
    ) -> None:
        self.backend = backend
        self.profile = profile
        self.timed_out = timed_out
        super().__init__(message)


class TeardownError(GantryError):
    """Raised when stopping an instance fails. Logged, never escalated."""

    def __init__(self, label: str, message: str) -> None:
        self.label = label
        super().__init__(f"Teardown of {label} failed: {message}")


class NotifyError(GantryError):
    """Raised by chat notifiers. Always swallowed by NotificationSink."""


class RunCancelledError(GantryError):
    """Raised when a run is cancelled (signal or superseded concurrency key).

    Named to avoid confusion with asyncio.CancelledError, which is reserved
    for task cancellation.
    """


class SupersededError(RunCancelledError):
    """Raised when a newer run of the same concurrency key already holds it."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"superseded by a newer run of {key}")


class PermissionCheckError(GantryError):
    """Raised when the triggering actor's permission could not be looked up."""
