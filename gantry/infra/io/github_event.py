"""Build a TriggerEvent from the GitHub Actions environment.

GitHub Actions exposes the event name in GITHUB_EVENT_NAME and the webhook
payload as a JSON file at GITHUB_EVENT_PATH.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

from gantry.core.errors import ConfigError
from gantry.core.models import (
    ManualTrigger,
    PullRequestTrigger,
    PushTrigger,
    ScheduleTrigger,
)

if TYPE_CHECKING:
    from collections.abc import Mapping

    from gantry.core.models import TriggerEvent

_MANUAL_EVENTS = frozenset({"workflow_dispatch", "repository_dispatch", "manual"})
_PULL_REQUEST_EVENTS = frozenset({"pull_request", "pull_request_target"})


def load_event_payload(path: Path | None) -> dict[str, Any]:
    """Read the webhook payload; a missing path yields an empty payload."""
    if path is None or not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Failed to read event payload {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Event payload {path} must be a JSON object")
    return data


def event_from_payload(
    event_name: str,
    payload: Mapping[str, Any],
    *,
    ref: str = "",
    sha: str = "",
    repository: str = "",
    actor: str = "",
) -> TriggerEvent:
    """Map a GitHub event name and payload to a TriggerEvent.

    Raises:
        ConfigError: For event names gantry does not handle.
    """
    repository = repository or (payload.get("repository") or {}).get("full_name", "")
    actor = actor or (payload.get("sender") or {}).get("login", "")

    if event_name in _MANUAL_EVENTS:
        return ManualTrigger(ref=ref, sha=sha, repository=repository, actor=actor)

    if event_name in _PULL_REQUEST_EVENTS:
        pr = payload.get("pull_request") or {}
        head = pr.get("head") or {}
        label = (payload.get("label") or {}).get("name")
        return PullRequestTrigger(
            label=label,
            action=payload.get("action", ""),
            ref=ref or (f"refs/pull/{pr['number']}/merge" if "number" in pr else ""),
            sha=sha or head.get("sha", ""),
            repository=repository,
            actor=actor,
        )

    if event_name == "push":
        push_ref = ref or payload.get("ref", "")
        branch = push_ref.removeprefix("refs/heads/")
        return PushTrigger(
            branch=branch,
            ref=push_ref,
            sha=sha or payload.get("after", ""),
            repository=repository,
            actor=actor,
        )

    if event_name == "schedule":
        return ScheduleTrigger(ref=ref, sha=sha, repository=repository, actor=actor)

    raise ConfigError(f"Unsupported event: {event_name}")


def event_from_env(env: Mapping[str, str] | None = None) -> TriggerEvent:
    """Build the TriggerEvent of the current GitHub Actions job.

    Raises:
        ConfigError: If GITHUB_EVENT_NAME is unset or unsupported.
    """
    env = os.environ if env is None else env
    event_name = env.get("GITHUB_EVENT_NAME", "")
    if not event_name:
        raise ConfigError("GITHUB_EVENT_NAME is not set; pass --event instead")
    event_path = env.get("GITHUB_EVENT_PATH")
    payload = load_event_payload(Path(event_path) if event_path else None)
    return event_from_payload(
        event_name,
        payload,
        ref=env.get("GITHUB_REF", ""),
        sha=env.get("GITHUB_SHA", ""),
        repository=env.get("GITHUB_REPOSITORY", ""),
        actor=env.get("GITHUB_TRIGGERING_ACTOR") or env.get("GITHUB_ACTOR", ""),
    )
