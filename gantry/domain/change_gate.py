"""ChangeGate: decide whether an expensive test class should run.

The gate is pure: it receives a typed trigger event, the change set and the
configured filter groups and returns a decision. It never performs I/O.

Policy:
- manual: always run (operator escape hatch), unless force_on_manual is off,
  in which case manual events are path-filtered like a push
- pull_request: run only when the event carries an approval label, and then
  only if the changes touch a filter group (or no filters are configured)
- push/schedule: run if the changes touch a filter group, or if no filters
  are configured (full-run fallback); events from a repository other than the
  configured canonical one never run
- an empty or indeterminate change set cannot prove that nothing relevant
  changed, so it fails safe to "run"
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, assert_never

from gantry.core.errors import GateIndeterminateError
from gantry.core.models import (
    ManualTrigger,
    PullRequestTrigger,
    PushTrigger,
    ScheduleTrigger,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from gantry.core.models import ChangeSet, TriggerEvent
    from gantry.domain.path_filters import PathFilterGroup

logger = logging.getLogger(__name__)

DEFAULT_APPROVAL_LABELS: tuple[str, ...] = ("approved",)


@dataclass(frozen=True)
class GateDecision:
    """Result of a gate evaluation.

    Attributes:
        run: Whether the test class should run.
        reason: Human readable reason, logged and stored in the run record.
        matched_groups: Filter groups whose patterns matched a changed path.
        indeterminate: True when the decision came from the fail-safe branch.
    """

    run: bool
    reason: str
    matched_groups: tuple[str, ...] = ()
    indeterminate: bool = False

    def __bool__(self) -> bool:
        return self.run


@dataclass(frozen=True)
class GatePolicy:
    """Static gate configuration.

    Attributes:
        approval_labels: A pull request label containing any of these
            strings counts as approval.
        canonical_repository: When set, push/schedule events from other
            repositories (forks) never run.
    """

    approval_labels: tuple[str, ...] = DEFAULT_APPROVAL_LABELS
    canonical_repository: str | None = None


@dataclass
class ChangeGate:
    """Evaluates trigger events and change sets against filter groups."""

    policy: GatePolicy = field(default_factory=GatePolicy)

    def evaluate(
        self,
        event: TriggerEvent,
        changes: ChangeSet,
        filters: Sequence[PathFilterGroup] | None,
        force_on_manual: bool = True,
    ) -> GateDecision:
        match event:
            case ManualTrigger():
                if force_on_manual:
                    return GateDecision(True, "manual invocation")
                return self._path_decision(changes, filters)
            case PullRequestTrigger(label=label):
                if not self._is_approval(label):
                    return GateDecision(
                        False, f"pull request not approved (label={label!r})"
                    )
                return self._path_decision(changes, filters)
            case PushTrigger() | ScheduleTrigger():
                canonical = self.policy.canonical_repository
                if canonical and event.repository and event.repository != canonical:
                    return GateDecision(
                        False,
                        f"repository {event.repository} is not {canonical}",
                    )
                return self._path_decision(changes, filters)
            case _:
                assert_never(event)

    def should_run(
        self,
        event: TriggerEvent,
        changes: ChangeSet,
        filters: Sequence[PathFilterGroup] | None,
        force_on_manual: bool = True,
    ) -> bool:
        return self.evaluate(event, changes, filters, force_on_manual).run

    def _is_approval(self, label: str | None) -> bool:
        if not label:
            return False
        return any(approval in label for approval in self.policy.approval_labels)

    def _path_decision(
        self, changes: ChangeSet, filters: Sequence[PathFilterGroup] | None
    ) -> GateDecision:
        if not filters:
            return GateDecision(True, "no path filters configured (full run)")
        try:
            _require_determinate(changes)
        except GateIndeterminateError as e:
            logger.warning("Change set indeterminate, running anyway: %s", e)
            return GateDecision(
                True, f"change set indeterminate ({e}); running", indeterminate=True
            )

        matched = tuple(group.name for group in filters if group.any_changed(changes))
        if matched:
            return GateDecision(
                True, f"changes match {', '.join(matched)}", matched_groups=matched
            )
        return GateDecision(
            False,
            f"{len(changes)} changed file(s) match none of "
            f"{', '.join(g.name for g in filters)}",
        )


def _require_determinate(changes: ChangeSet) -> None:
    """Raise GateIndeterminateError if changes cannot prove "nothing relevant".

    An empty change set is indeterminate too: a shallow checkout or a missing
    base commit produces no paths, and that must not read as "no changes".
    """
    if not changes.determinate:
        raise GateIndeterminateError("change detection failed")
    if not changes.paths:
        raise GateIndeterminateError("change set is empty")


def should_run(
    event: TriggerEvent,
    changes: ChangeSet,
    filters: Sequence[PathFilterGroup] | None,
    force_on_manual: bool = True,
    *,
    policy: GatePolicy | None = None,
) -> bool:
    """Module-level convenience wrapper around ChangeGate.should_run."""
    return ChangeGate(policy or GatePolicy()).should_run(
        event, changes, filters, force_on_manual
    )
