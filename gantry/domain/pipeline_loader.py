"""YAML loader for gantry.yaml pipeline definitions.

Loads, parses and validates a pipeline definition with strict schema
validation: unknown fields are rejected and every error names the field it
refers to.

Key functions:
- load_pipeline: Load and validate a definition file
- parse_pipeline: Build a PipelineDefinition from already-parsed data
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import yaml

from gantry.core.errors import ConfigError
from gantry.core.models import TriggerKind
from gantry.domain.actor_policy import PERMISSION_ORDER
from gantry.domain.path_filters import PathFilterGroup
from gantry.domain.pipeline_definition import (
    TEMPLATE_ERRORS,
    InvokerSpec,
    NotifyOn,
    NotifySpec,
    PipelineDefinition,
    ProvisionerSpec,
    StepSpec,
)

if TYPE_CHECKING:
    from pathlib import Path

DEFAULT_PIPELINE_FILE = "gantry.yaml"


class PipelineFileMissingError(ConfigError):
    """Raised when the pipeline definition file does not exist."""

    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(f"Pipeline definition not found: {path}")


_ALLOWED_TOP_LEVEL_FIELDS = frozenset(
    {
        "name",
        "backend",
        "profile",
        "steps",
        "filters",
        "env",
        "event_env",
        "approval_labels",
        "protected_refs",
        "canonical_repository",
        "required_permission",
        "force_on_manual",
        "base_ref",
        "notify",
        "provisioner",
        "invoker",
    }
)
_STEP_FIELDS = frozenset({"name", "target", "env", "continue_on_error", "timeout", "only_on"})
_NOTIFY_FIELDS = frozenset({"on", "message"})
_PROVISIONER_FIELDS = frozenset({"start", "stop", "timeout", "retries"})
_INVOKER_FIELDS = frozenset({"exec_prefix", "make", "cwd"})


def load_pipeline(path: Path) -> PipelineDefinition:
    """Load and validate a pipeline definition.

    Raises:
        ConfigError: If the file is missing, is not valid YAML, contains
            unknown fields or has invalid values.
    """
    if not path.exists():
        raise PipelineFileMissingError(path)
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Failed to read {path}: {e}") from e
    return parse_pipeline(_parse_yaml(content, str(path)))


def _parse_yaml(content: str, source: str) -> dict[str, Any]:
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax in {source}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{source} must be a YAML mapping, got {type(data).__name__}")
    return data


def _check_fields(data: dict[str, Any], allowed: frozenset[str], where: str) -> None:
    unknown = set(data.keys()) - allowed
    if unknown:
        # str() handles non-string YAML keys (null, integers)
        first = sorted(str(k) for k in unknown)[0]
        raise ConfigError(f"Unknown field '{first}' in {where}")


def _require_str(data: dict[str, Any], key: str, where: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"'{key}' is required in {where} and must be a non-empty string")
    return value.strip()


def _optional_str(data: dict[str, Any], key: str, where: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"'{key}' must be a string in {where}, got {type(value).__name__}")
    return value


def _optional_number(data: dict[str, Any], key: str, where: str) -> float | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError(f"'{key}' must be a positive number in {where}")
    return float(value)


def _str_list(value: Any, key: str, where: str) -> tuple[str, ...]:  # noqa: ANN401
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"'{key}' must be a string or list of strings in {where}")
    return tuple(value)


def _parse_env(value: Any, where: str) -> dict[str, str]:  # noqa: ANN401
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"'env' must be a mapping in {where}")
    env: dict[str, str] = {}
    for key, raw in value.items():
        if isinstance(raw, bool):
            # YAML reads TRUE/FALSE as booleans; the build wants the literal text
            raise ConfigError(
                f"env var '{key}' in {where} is a boolean; quote it (e.g. \"TRUE\")"
            )
        if not isinstance(raw, (str, int, float)):
            raise ConfigError(f"env var '{key}' in {where} must be a scalar")
        env[str(key)] = str(raw)
    return env


def _parse_trigger_kinds(value: Any, where: str) -> frozenset[TriggerKind]:  # noqa: ANN401
    kinds: set[TriggerKind] = set()
    for name in _str_list(value, "only_on", where):
        try:
            kinds.add(TriggerKind(name))
        except ValueError:
            valid = ", ".join(k.value for k in TriggerKind)
            raise ConfigError(
                f"Invalid trigger '{name}' in {where}. Valid values: {valid}"
            ) from None
    return frozenset(kinds)


def _parse_step(data: Any, index: int) -> StepSpec:  # noqa: ANN401
    where = f"step {index}"
    if isinstance(data, str):
        # Shorthand: the build target doubles as the name
        if not data.strip():
            raise ConfigError(f"{where} cannot be an empty string")
        return StepSpec(name=data.strip(), target=data.strip())
    if not isinstance(data, dict):
        raise ConfigError(f"{where} must be a string or mapping, got {type(data).__name__}")
    _check_fields(data, _STEP_FIELDS, where)

    target = _require_str(data, "target", where)
    name = _optional_str(data, "name", where) or target
    continue_on_error = data.get("continue_on_error", False)
    if not isinstance(continue_on_error, bool):
        raise ConfigError(f"'continue_on_error' must be a boolean in {where}")
    only_on = data.get("only_on")
    return StepSpec(
        name=name,
        target=target,
        env=_parse_env(data.get("env"), where),
        continue_on_error=continue_on_error,
        timeout=_optional_number(data, "timeout", where),
        only_on=_parse_trigger_kinds(only_on, where) if only_on is not None else None,
    )


def _parse_steps(value: Any) -> tuple[StepSpec, ...]:  # noqa: ANN401
    if not isinstance(value, list) or not value:
        raise ConfigError("'steps' is required and must be a non-empty list")
    steps = tuple(_parse_step(item, i) for i, item in enumerate(value))
    names = [s.name for s in steps]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ConfigError(f"Duplicate step name '{duplicates[0]}'")
    return steps


def _parse_filters(value: Any) -> tuple[PathFilterGroup, ...]:  # noqa: ANN401
    if value is None:
        return ()
    if not isinstance(value, dict):
        raise ConfigError("'filters' must be a mapping of group name to patterns")
    groups: list[PathFilterGroup] = []
    for name, patterns in value.items():
        where = f"filter group '{name}'"
        parsed = _str_list(patterns, "patterns", where)
        if not parsed:
            raise ConfigError(f"{where} must list at least one pattern")
        groups.append(PathFilterGroup(str(name), parsed))
    return tuple(groups)


def _parse_event_env(value: Any) -> dict[TriggerKind, dict[str, str]]:  # noqa: ANN401
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError("'event_env' must be a mapping of trigger to env")
    result: dict[TriggerKind, dict[str, str]] = {}
    for name, env in value.items():
        (kind,) = _parse_trigger_kinds(str(name), "event_env")
        result[kind] = _parse_env(env, f"event_env.{name}")
    return result


def _parse_notify(value: Any) -> NotifySpec:  # noqa: ANN401
    if value is None:
        return NotifySpec()
    if not isinstance(value, dict):
        raise ConfigError("'notify' must be a mapping")
    # YAML 1.1 reads a bare `on` key as boolean true
    value = {("on" if k is True else k): v for k, v in value.items()}
    _check_fields(value, _NOTIFY_FIELDS, "notify")
    on_raw = value.get("on", NotifyOn.FAILURE.value)
    try:
        on = NotifyOn(on_raw)
    except ValueError:
        valid = ", ".join(m.value for m in NotifyOn)
        raise ConfigError(f"Invalid notify.on '{on_raw}'. Valid values: {valid}") from None
    message = _optional_str(value, "message", "notify")
    if not message:
        return NotifySpec(on=on)
    spec = NotifySpec(on=on, message=message)
    try:
        spec.render(pipeline="", status="", url="")
    except TEMPLATE_ERRORS as e:
        raise ConfigError(
            f"Invalid notify.message template: {e!r}. Fields: {{pipeline}}, {{status}}, {{url}}"
        ) from None
    return spec


def _parse_provisioner(value: Any) -> ProvisionerSpec:  # noqa: ANN401
    if value is None:
        return ProvisionerSpec()
    if not isinstance(value, dict):
        raise ConfigError("'provisioner' must be a mapping")
    _check_fields(value, _PROVISIONER_FIELDS, "provisioner")
    retries = value.get("retries")
    if retries is not None and (
        isinstance(retries, bool) or not isinstance(retries, int) or retries < 1
    ):
        raise ConfigError("'retries' must be a positive integer in provisioner")
    return ProvisionerSpec(
        start=_str_list(value.get("start", []), "start", "provisioner"),
        stop=_str_list(value.get("stop", []), "stop", "provisioner"),
        timeout=_optional_number(value, "timeout", "provisioner"),
        retries=retries,
    )


def _parse_invoker(value: Any) -> InvokerSpec:  # noqa: ANN401
    if value is None:
        return InvokerSpec()
    if not isinstance(value, dict):
        raise ConfigError("'invoker' must be a mapping")
    _check_fields(value, _INVOKER_FIELDS, "invoker")
    return InvokerSpec(
        exec_prefix=_str_list(value.get("exec_prefix", []), "exec_prefix", "invoker"),
        make=_optional_str(value, "make", "invoker") or "make",
        cwd=_optional_str(value, "cwd", "invoker"),
    )


def parse_pipeline(data: dict[str, Any]) -> PipelineDefinition:
    """Build a PipelineDefinition from a parsed YAML mapping."""
    _check_fields(data, _ALLOWED_TOP_LEVEL_FIELDS, "pipeline definition")
    where = "pipeline definition"

    required_permission = _optional_str(data, "required_permission", where)
    if required_permission is not None and required_permission not in PERMISSION_ORDER:
        raise ConfigError(
            f"Invalid required_permission '{required_permission}'. "
            f"Valid values: {', '.join(PERMISSION_ORDER)}"
        )

    force_on_manual = data.get("force_on_manual", True)
    if not isinstance(force_on_manual, bool):
        raise ConfigError("'force_on_manual' must be a boolean")

    kwargs: dict[str, Any] = {}
    if "approval_labels" in data:
        kwargs["approval_labels"] = _str_list(
            data["approval_labels"], "approval_labels", where
        )
    if "protected_refs" in data:
        kwargs["protected_refs"] = _str_list(data["protected_refs"], "protected_refs", where)

    return PipelineDefinition(
        name=_require_str(data, "name", where),
        backend=_require_str(data, "backend", where),
        profile=_require_str(data, "profile", where),
        steps=_parse_steps(data.get("steps")),
        filters=_parse_filters(data.get("filters")),
        env=_parse_env(data.get("env"), where),
        event_env=_parse_event_env(data.get("event_env")),
        canonical_repository=_optional_str(data, "canonical_repository", where),
        required_permission=required_permission,
        force_on_manual=force_on_manual,
        base_ref=_optional_str(data, "base_ref", where),
        notify=_parse_notify(data.get("notify")),
        provisioner=_parse_provisioner(data.get("provisioner")),
        invoker=_parse_invoker(data.get("invoker")),
        **kwargs,
    )
