"""Concurrency keys and the cancel-in-progress policy.

A run's concurrency key is scoped to (pipeline identity, ref). At most one
run holds a key at a time. A newer run for the same key cancels the older
one, except on protected refs: there the key also carries the commit sha
(so successive pushes never queue behind each other) and cancellation is
disabled so a release-validation run is never interrupted.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from gantry.core.models import trigger_ref

if TYPE_CHECKING:
    from collections.abc import Iterable

    from gantry.core.models import TriggerEvent

DEFAULT_PROTECTED_REFS: tuple[str, ...] = ("refs/heads/main",)


@dataclass(frozen=True)
class ConcurrencySpec:
    """Concurrency settings for one run.

    Attributes:
        key: Group identifier shared by runs that must not overlap.
        cancel_in_progress: Whether a newer run cancels an in-flight older
            run holding the same key.
    """

    key: str
    cancel_in_progress: bool

    def __str__(self) -> str:
        return self.key


def normalize_ref(ref: str) -> str:
    """Expand a bare branch name to a full ref."""
    if not ref or ref.startswith("refs/"):
        return ref
    return f"refs/heads/{ref}"


def is_protected(ref: str, protected_refs: Iterable[str]) -> bool:
    full = normalize_ref(ref)
    return any(full == normalize_ref(p) for p in protected_refs)


def concurrency_for(
    pipeline: str,
    event: TriggerEvent,
    protected_refs: Iterable[str] = DEFAULT_PROTECTED_REFS,
) -> ConcurrencySpec:
    """Compute the ConcurrencySpec for a run of pipeline triggered by event."""
    ref = normalize_ref(trigger_ref(event)) or "detached"
    if is_protected(ref, protected_refs):
        return ConcurrencySpec(
            key=f"{pipeline}_{ref}{event.sha}", cancel_in_progress=False
        )
    return ConcurrencySpec(key=f"{pipeline}_{ref}", cancel_in_progress=True)
