"""Triggering actor permission policy.

Runs that spend paid runner time can require the triggering actor to hold
at least a given repository permission. Permission levels are ordered
none < read < triage < write < maintain < admin.
"""

from __future__ import annotations

from dataclasses import dataclass

PERMISSION_ORDER: tuple[str, ...] = ("none", "read", "triage", "write", "maintain", "admin")


def permission_rank(level: str | None) -> int:
    """Rank a permission level; unknown or missing levels rank as "none"."""
    if level is None:
        return 0
    try:
        return PERMISSION_ORDER.index(level.lower())
    except ValueError:
        return 0


@dataclass(frozen=True)
class ActorDecision:
    allowed: bool
    reason: str


def check_actor(actor: str, level: str | None, required: str) -> ActorDecision:
    """Decide whether actor with permission level satisfies required."""
    if permission_rank(required) == 0 and required.lower() != "none":
        raise ValueError(f"Unknown permission level: {required}")
    if not actor:
        return ActorDecision(False, "triggering actor is unknown")
    if permission_rank(level) >= permission_rank(required):
        return ActorDecision(True, f"{actor} has {level} permission")
    return ActorDecision(
        False,
        f"{actor} does not have {required} permission on this repository "
        f"(current permission level is {level or 'none'})",
    )
