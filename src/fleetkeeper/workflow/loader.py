from __future__ import annotations

import math
import os
from decimal import Decimal, InvalidOperation
from pathlib import Path

import yaml

from fleetkeeper.clients.aws import AwsCliClient
from fleetkeeper.clients.base import ClusterClient, ResourceRef
from fleetkeeper.clients.kubectl import KubectlClient
from fleetkeeper.core.errors import ManifestValidationError, WorkflowValidationError
from fleetkeeper.core.fanout import Policy, parse_policy
from fleetkeeper.core.targets import Target
from fleetkeeper.manifests.builders import from_dict
from fleetkeeper.probes.conditions import (
    DEFAULT_DEADLINE_S,
    DEFAULT_INTERVAL_S,
    DEFAULT_PROBE_TIMEOUT_S,
    ConditionSpec,
    build_condition,
)
from fleetkeeper.workflow.runner import Workflow
from fleetkeeper.workflow.steps import Action, ActionStep, ApplyManifests, DeleteResources, StepPolicy

SCHEMA_VERSION = "workflow.v0"
_AWS_CONDITIONS = {"stack_complete", "eks_cluster_active"}

_DURATION_UNITS = {
    "ms": Decimal("0.001"),
    "s": Decimal(1),
    "m": Decimal(60),
    "h": Decimal(3600),
}


def parse_duration_s(value: object) -> float:
    """Parse ``250ms``, ``30s``, ``10m``, ``1h`` or a bare number of seconds."""
    raw = value
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: '{raw}' (use e.g. 30s or 10m)")
    if isinstance(value, (int, float)):
        if not math.isfinite(value) or value < 0:
            raise ValueError(f"invalid duration: '{raw}' (use e.g. 30s or 10m)")
        return float(value)
    text = str(value).strip().lower()
    unit = "s"
    number = text
    for suffix in ("ms", "s", "m", "h"):
        if text.endswith(suffix):
            unit = suffix
            number = text[: -len(suffix)]
            break
    try:
        parsed = Decimal(number)
    except InvalidOperation as exc:
        raise ValueError(f"invalid duration: '{raw}' (use e.g. 30s or 10m)") from exc
    if not number or not parsed.is_finite() or parsed < 0:
        raise ValueError(f"invalid duration: '{raw}' (use e.g. 30s or 10m)")
    return float(parsed * _DURATION_UNITS[unit])


def _parse_env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def default_interval_s() -> float:
    return _parse_env_float("FLEETKEEPER_POLL_INTERVAL", DEFAULT_INTERVAL_S)


def default_probe_timeout_s() -> float:
    return _parse_env_float("FLEETKEEPER_PROBE_TIMEOUT", DEFAULT_PROBE_TIMEOUT_S)


def default_clients() -> dict[str, ClusterClient]:
    return {"kubectl": KubectlClient(), "aws": AwsCliClient()}


def _expect_dict(value: object, *, path: str) -> dict:
    if not isinstance(value, dict):
        raise WorkflowValidationError(f"{path} must be an object")
    return value


def _expect_list(value: object, *, path: str) -> list:
    if not isinstance(value, list):
        raise WorkflowValidationError(f"{path} must be an array")
    return value


def _expect_str(value: object, *, path: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise WorkflowValidationError(f"{path} is required and must be a non-empty string")
    return value.strip()


def _optional_str(value: object, *, path: str) -> str | None:
    if value is None:
        return None
    return _expect_str(value, path=path)


def _duration(value: object, *, path: str, default: float | None) -> float | None:
    if value is None:
        return default
    try:
        parsed = parse_duration_s(value)
    except ValueError as exc:
        raise WorkflowValidationError(f"{path}: {exc}") from exc
    if parsed <= 0:
        raise WorkflowValidationError(f"{path} must be greater than zero")
    return parsed


def _policy(value: object, *, path: str, default: Policy) -> Policy:
    if value is None:
        return default
    try:
        return parse_policy(str(value))
    except ValueError as exc:
        raise WorkflowValidationError(f"{path}: {exc}") from exc


def _parse_targets(value: object) -> list[Target]:
    items = _expect_list(value, path="targets")
    if not items:
        raise WorkflowValidationError("targets must not be empty")
    targets: list[Target] = []
    seen: set[str] = set()
    for idx, item in enumerate(items):
        path = f"targets[{idx}]"
        payload = _expect_dict(item, path=path)
        name = _expect_str(payload.get("name"), path=f"{path}.name")
        if name in seen:
            raise WorkflowValidationError(f"{path}.name '{name}' is duplicated")
        seen.add(name)
        targets.append(
            Target(
                name=name,
                region=_expect_str(payload.get("region"), path=f"{path}.region"),
                context=_optional_str(payload.get("context"), path=f"{path}.context") or name,
                aws_profile=_optional_str(payload.get("aws_profile"), path=f"{path}.aws_profile"),
            )
        )
    return targets


def _parse_wait(value: object, *, path: str) -> tuple[ConditionSpec, Policy, str]:
    payload = _expect_dict(value, path=path)
    condition = _expect_str(payload.get("condition"), path=f"{path}.condition")
    backoff = payload.get("backoff", 1.0)
    if isinstance(backoff, bool) or not isinstance(backoff, (int, float)) or backoff < 1.0:
        raise WorkflowValidationError(f"{path}.backoff must be a number >= 1.0")
    timing = {
        "interval_s": _duration(payload.get("interval"), path=f"{path}.interval", default=default_interval_s()),
        "deadline_s": _duration(payload.get("timeout"), path=f"{path}.timeout", default=DEFAULT_DEADLINE_S),
        "probe_timeout_s": _duration(
            payload.get("probe_timeout"), path=f"{path}.probe_timeout", default=default_probe_timeout_s()
        ),
        "backoff": float(backoff),
        "max_interval_s": _duration(payload.get("max_interval"), path=f"{path}.max_interval", default=None),
    }
    try:
        spec = build_condition(
            condition,
            name=_expect_str(payload.get("name"), path=f"{path}.name"),
            kind=_optional_str(payload.get("kind"), path=f"{path}.kind"),
            namespace=_optional_str(payload.get("namespace"), path=f"{path}.namespace"),
            condition_type=_optional_str(payload.get("type"), path=f"{path}.type"),
            **timing,
        )
    except ValueError as exc:
        raise WorkflowValidationError(f"{path}: {exc}") from exc
    fanout = _policy(payload.get("fanout"), path=f"{path}.fanout", default=Policy.BEST_EFFORT)
    return spec, fanout, condition


def _parse_action(payload: dict, *, path: str) -> Action | None:
    if "apply" in payload and "delete" in payload:
        raise WorkflowValidationError(f"{path}: apply and delete are mutually exclusive")
    if "apply" in payload:
        items = _expect_list(payload.get("apply"), path=f"{path}.apply")
        if not items:
            raise WorkflowValidationError(f"{path}.apply must not be empty")
        manifests = []
        for idx, item in enumerate(items):
            try:
                manifests.append(from_dict(item, source=f"{path}.apply[{idx}]"))
            except ManifestValidationError as exc:
                raise WorkflowValidationError(str(exc)) from exc
        return ApplyManifests(manifests=manifests)
    if "delete" in payload:
        items = _expect_list(payload.get("delete"), path=f"{path}.delete")
        if not items:
            raise WorkflowValidationError(f"{path}.delete must not be empty")
        refs = []
        for idx, item in enumerate(items):
            ref = _expect_dict(item, path=f"{path}.delete[{idx}]")
            refs.append(
                ResourceRef(
                    kind=_expect_str(ref.get("kind"), path=f"{path}.delete[{idx}].kind"),
                    name=_expect_str(ref.get("name"), path=f"{path}.delete[{idx}].name"),
                    namespace=_optional_str(ref.get("namespace"), path=f"{path}.delete[{idx}].namespace"),
                )
            )
        ignore = payload.get("ignore_not_found", True)
        if not isinstance(ignore, bool):
            raise WorkflowValidationError(f"{path}.ignore_not_found must be a boolean")
        return DeleteResources(refs=refs, ignore_not_found=ignore)
    return None


def _default_client_name(action: Action | None, condition: str | None) -> str:
    if isinstance(action, DeleteResources) and any(ref.is_aws for ref in action.refs):
        return "aws"
    if action is None and condition in _AWS_CONDITIONS:
        return "aws"
    return "kubectl"


def _parse_step(value: object, *, idx: int, clients: dict[str, ClusterClient]) -> ActionStep:
    path = f"steps[{idx}]"
    payload = _expect_dict(value, path=path)
    name = _expect_str(payload.get("name"), path=f"{path}.name")
    action = _parse_action(payload, path=path)

    post_condition: ConditionSpec | None = None
    fanout = Policy.BEST_EFFORT
    condition: str | None = None
    if payload.get("wait") is not None:
        post_condition, fanout, condition = _parse_wait(payload.get("wait"), path=f"{path}.wait")
    if action is None and post_condition is None:
        raise WorkflowValidationError(f"{path}: one of apply, delete or wait is required")

    raw_policy = payload.get("policy", StepPolicy.FATAL.value)
    try:
        policy = StepPolicy(str(raw_policy).strip().lower())
    except ValueError as exc:
        raise WorkflowValidationError(f"{path}.policy must be 'fatal' or 'advisory'") from exc

    client_name = _optional_str(payload.get("client"), path=f"{path}.client") or _default_client_name(
        action, condition
    )
    if client_name not in clients:
        raise WorkflowValidationError(
            f"{path}.client '{client_name}' is unknown (expected one of: {', '.join(sorted(clients))})"
        )

    return ActionStep(
        name=name,
        client=clients[client_name],
        action=action,
        post_condition=post_condition,
        policy=policy,
        fanout_policy=fanout,
        action_timeout_s=_duration(
            payload.get("action_timeout"), path=f"{path}.action_timeout", default=120.0
        ),
    )


def parse_workflow(
    payload: object,
    *,
    source: str = "workflow",
    clients: dict[str, ClusterClient] | None = None,
) -> Workflow:
    data = _expect_dict(payload, path=source)
    if data.get("schema_version") != SCHEMA_VERSION:
        raise WorkflowValidationError(f"{source}: schema_version must be '{SCHEMA_VERSION}'")
    name = _expect_str(data.get("name"), path="name")
    clients = clients if clients is not None else default_clients()

    steps_raw = _expect_list(data.get("steps"), path="steps")
    if not steps_raw:
        raise WorkflowValidationError("steps must not be empty")
    steps = [_parse_step(item, idx=idx, clients=clients) for idx, item in enumerate(steps_raw)]
    names = [step.name for step in steps]
    duplicated = sorted({n for n in names if names.count(n) > 1})
    if duplicated:
        raise WorkflowValidationError(f"steps: duplicated names: {', '.join(duplicated)}")

    return Workflow(
        name=name,
        targets=_parse_targets(data.get("targets")),
        steps=steps,
        policy=_policy(data.get("policy"), path="policy", default=Policy.BEST_EFFORT),
        deadline_s=_duration(data.get("deadline"), path="deadline", default=None),
    )


def load_workflow(path: Path, *, clients: dict[str, ClusterClient] | None = None) -> Workflow:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise WorkflowValidationError(f"{path}: cannot read workflow file: {exc}") from exc
    try:
        payload = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise WorkflowValidationError(f"{path}: invalid YAML: {exc}") from exc
    return parse_workflow(payload, source=str(path), clients=clients)
