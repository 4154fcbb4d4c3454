"""Read-only condition probes and the waits the runbooks keep repeating."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from fleetkeeper.clients.aws import EKS_CLUSTER_KIND, STACK_KIND
from fleetkeeper.clients.base import ClusterClient, ResourceRef
from fleetkeeper.core.outcome import ProbeResult
from fleetkeeper.core.targets import Target

DEFAULT_INTERVAL_S = 10.0
DEFAULT_DEADLINE_S = 300.0
DEFAULT_PROBE_TIMEOUT_S = 20.0

NOT_FOUND = "not_found"

Predicate = Callable[[dict | None], bool]


def _never(_state: dict | None) -> bool:
    return False


def _default_observe(state: dict | None) -> object:
    return NOT_FOUND if state is None else "present"


@dataclass(frozen=True)
class ConditionSpec:
    description: str
    ref: ResourceRef
    success: Predicate
    failure: Predicate = _never
    observe: Callable[[dict | None], object] = _default_observe
    interval_s: float = DEFAULT_INTERVAL_S
    deadline_s: float = DEFAULT_DEADLINE_S
    probe_timeout_s: float = DEFAULT_PROBE_TIMEOUT_S
    backoff: float = 1.0
    max_interval_s: float | None = None

    def to_dict(self) -> dict:
        return {
            "description": self.description,
            "ref": self.ref.to_dict(),
            "interval_s": self.interval_s,
            "deadline_s": self.deadline_s,
            "probe_timeout_s": self.probe_timeout_s,
            "backoff": self.backoff,
            "max_interval_s": self.max_interval_s,
        }


class ResourceProbe:
    """Evaluate a ConditionSpec against the live state returned by ``client.get``."""

    def __init__(self, client: ClusterClient, spec: ConditionSpec) -> None:
        self.client = client
        self.spec = spec

    def __call__(self, target: Target, *, timeout_s: float) -> ProbeResult:
        state = self.client.get(self.spec.ref, target, timeout_s=timeout_s)
        observed = self.spec.observe(state)
        if state is not None and self.spec.failure(state):
            return ProbeResult.failed(
                f"{self.spec.description}: {self.spec.ref.display()} reported {observed}",
                value=observed,
            )
        if self.spec.success(state):
            return ProbeResult.satisfied(observed)
        return ProbeResult.pending(observed)


def probe_factory(client: ClusterClient, spec: ConditionSpec) -> Callable[[Target], ResourceProbe]:
    return lambda _target: ResourceProbe(client, spec)


def _dig(obj: object, *path: object) -> object:
    cur = obj
    for key in path:
        if isinstance(key, int):
            if not isinstance(cur, list) or len(cur) <= key:
                return None
            cur = cur[key]
            continue
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def find_condition(state: dict | None, condition_type: str) -> dict | None:
    conditions = _dig(state, "status", "conditions")
    if not isinstance(conditions, list):
        return None
    for item in conditions:
        if isinstance(item, dict) and item.get("type") == condition_type:
            return item
    return None


def condition_true(
    kind: str,
    name: str,
    namespace: str | None = None,
    *,
    condition_type: str = "Ready",
    failure_reasons: tuple[str, ...] = (),
    **timing: float,
) -> ConditionSpec:
    def observe(state: dict | None) -> object:
        if state is None:
            return NOT_FOUND
        cond = find_condition(state, condition_type)
        if cond is None:
            return f"{condition_type}=Unknown"
        reason = cond.get("reason")
        status = f"{condition_type}={cond.get('status')}"
        return f"{status} ({reason})" if reason else status

    def success(state: dict | None) -> bool:
        cond = find_condition(state, condition_type)
        return cond is not None and cond.get("status") == "True"

    def failure(state: dict | None) -> bool:
        cond = find_condition(state, condition_type)
        return (
            cond is not None
            and cond.get("status") == "False"
            and cond.get("reason") in failure_reasons
        )

    return ConditionSpec(
        description=f"{kind}/{name} {condition_type}=True",
        ref=ResourceRef(kind, name, namespace),
        success=success,
        failure=failure,
        observe=observe,
        **timing,
    )


def crd_established(name: str, **timing: float) -> ConditionSpec:
    return condition_true("crd", name, condition_type="Established", **timing)


def deployment_available(name: str, namespace: str, **timing: float) -> ConditionSpec:
    def observe(state: dict | None) -> object:
        if state is None:
            return NOT_FOUND
        ready = _dig(state, "status", "readyReplicas") or 0
        desired = _dig(state, "spec", "replicas")
        return f"{ready}/{desired if desired is not None else 1} ready"

    def success(state: dict | None) -> bool:
        cond = find_condition(state, "Available")
        return cond is not None and cond.get("status") == "True"

    def failure(state: dict | None) -> bool:
        cond = find_condition(state, "Progressing")
        return (
            cond is not None
            and cond.get("status") == "False"
            and cond.get("reason") == "ProgressDeadlineExceeded"
        )

    return ConditionSpec(
        description=f"deployment/{name} available",
        ref=ResourceRef("deployment", name, namespace),
        success=success,
        failure=failure,
        observe=observe,
        **timing,
    )


def statefulset_ready(name: str, namespace: str, **timing: float) -> ConditionSpec:
    def replicas(state: dict | None) -> tuple[int, int]:
        desired = _dig(state, "spec", "replicas")
        ready = _dig(state, "status", "readyReplicas") or 0
        return int(ready), int(desired if desired is not None else 1)

    def observe(state: dict | None) -> object:
        if state is None:
            return NOT_FOUND
        ready, desired = replicas(state)
        return f"{ready}/{desired} ready"

    def success(state: dict | None) -> bool:
        if state is None:
            return False
        ready, desired = replicas(state)
        return ready >= desired

    return ConditionSpec(
        description=f"statefulset/{name} ready",
        ref=ResourceRef("statefulset", name, namespace),
        success=success,
        observe=observe,
        **timing,
    )


def _lb_address(state: dict | None) -> str | None:
    ingress = _dig(state, "status", "loadBalancer", "ingress", 0)
    if not isinstance(ingress, dict):
        return None
    address = ingress.get("hostname") or ingress.get("ip")
    return str(address) if address else None


def load_balancer_ready(name: str, namespace: str, **timing: float) -> ConditionSpec:
    def observe(state: dict | None) -> object:
        if state is None:
            return NOT_FOUND
        return _lb_address(state) or "pending"

    return ConditionSpec(
        description=f"service/{name} load balancer provisioned",
        ref=ResourceRef("service", name, namespace),
        success=lambda state: _lb_address(state) is not None,
        observe=observe,
        **timing,
    )


_ARGOCD_FAILED_PHASES = {"Failed", "Error"}


def argocd_application_healthy(name: str, namespace: str = "argocd", **timing: float) -> ConditionSpec:
    def observe(state: dict | None) -> object:
        if state is None:
            return NOT_FOUND
        sync = _dig(state, "status", "sync", "status") or "Unknown"
        health = _dig(state, "status", "health", "status") or "Unknown"
        phase = _dig(state, "status", "operationState", "phase")
        text = f"sync={sync} health={health}"
        return f"{text} phase={phase}" if phase else text

    def success(state: dict | None) -> bool:
        return (
            _dig(state, "status", "sync", "status") == "Synced"
            and _dig(state, "status", "health", "status") == "Healthy"
        )

    def failure(state: dict | None) -> bool:
        return _dig(state, "status", "operationState", "phase") in _ARGOCD_FAILED_PHASES

    return ConditionSpec(
        description=f"application/{name} synced and healthy",
        ref=ResourceRef("applications.argoproj.io", name, namespace),
        success=success,
        failure=failure,
        observe=observe,
        **timing,
    )


def resource_deleted(kind: str, name: str, namespace: str | None = None, **timing: float) -> ConditionSpec:
    def observe(state: dict | None) -> object:
        if state is None:
            return "deleted"
        phase = _dig(state, "status", "phase")
        return f"present ({phase})" if phase else "present"

    return ConditionSpec(
        description=f"{kind}/{name} deleted",
        ref=ResourceRef(kind, name, namespace),
        success=lambda state: state is None,
        observe=observe,
        **timing,
    )


_STACK_OK = {"CREATE_COMPLETE", "UPDATE_COMPLETE", "IMPORT_COMPLETE"}
_STACK_TERMINAL_BAD = {"ROLLBACK_COMPLETE", "UPDATE_ROLLBACK_COMPLETE", "DELETE_COMPLETE"}


def stack_complete(name: str, **timing: float) -> ConditionSpec:
    def observe(state: dict | None) -> object:
        if state is None:
            return NOT_FOUND
        return state.get("StackStatus") or "UNKNOWN"

    def failure(state: dict | None) -> bool:
        status = str((state or {}).get("StackStatus") or "")
        return status.endswith("_FAILED") or status in _STACK_TERMINAL_BAD

    return ConditionSpec(
        description=f"stack/{name} complete",
        ref=ResourceRef(STACK_KIND, name),
        success=lambda state: (state or {}).get("StackStatus") in _STACK_OK,
        failure=failure,
        observe=observe,
        **timing,
    )


def eks_cluster_active(name: str, **timing: float) -> ConditionSpec:
    def observe(state: dict | None) -> object:
        if state is None:
            return NOT_FOUND
        return state.get("status") or "UNKNOWN"

    return ConditionSpec(
        description=f"eks cluster/{name} active",
        ref=ResourceRef(EKS_CLUSTER_KIND, name),
        success=lambda state: (state or {}).get("status") == "ACTIVE",
        failure=lambda state: (state or {}).get("status") == "FAILED",
        observe=observe,
        **timing,
    )


def build_condition(
    condition: str,
    *,
    name: str,
    kind: str | None = None,
    namespace: str | None = None,
    condition_type: str | None = None,
    **timing: float,
) -> ConditionSpec:
    """Build a named condition; raises ``ValueError`` on unknown names or missing fields."""

    def need(value: str | None, field_name: str) -> str:
        if not value:
            raise ValueError(f"condition '{condition}' requires {field_name}")
        return value

    if condition == "condition_true":
        return condition_true(
            need(kind, "kind"),
            name,
            namespace,
            condition_type=condition_type or "Ready",
            **timing,
        )
    if condition == "crd_established":
        return crd_established(name, **timing)
    if condition == "deployment_available":
        return deployment_available(name, need(namespace, "namespace"), **timing)
    if condition == "statefulset_ready":
        return statefulset_ready(name, need(namespace, "namespace"), **timing)
    if condition == "load_balancer_ready":
        return load_balancer_ready(name, need(namespace, "namespace"), **timing)
    if condition == "argocd_application_healthy":
        return argocd_application_healthy(name, namespace or "argocd", **timing)
    if condition == "resource_deleted":
        return resource_deleted(need(kind, "kind"), name, namespace, **timing)
    if condition == "stack_complete":
        return stack_complete(name, **timing)
    if condition == "eks_cluster_active":
        return eks_cluster_active(name, **timing)
    raise ValueError(f"unknown condition: '{condition}' (expected one of: {', '.join(CONDITION_NAMES)})")


CONDITION_NAMES = (
    "argocd_application_healthy",
    "condition_true",
    "crd_established",
    "deployment_available",
    "eks_cluster_active",
    "load_balancer_ready",
    "resource_deleted",
    "stack_complete",
    "statefulset_ready",
)
