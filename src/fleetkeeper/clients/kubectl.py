from __future__ import annotations

import json
import os

from fleetkeeper.clients.base import Ack, ClusterClient, ResourceRef
from fleetkeeper.clients.process import first_line, run_cmd, split_warnings
from fleetkeeper.core.errors import ActionApplyError, ManifestValidationError, TransientQueryError
from fleetkeeper.core.targets import Target
from fleetkeeper.k8s.rbac_diagnostics import parse_k8s_forbidden
from fleetkeeper.manifests.builders import Manifest


def _is_not_found(stderr: str | None) -> bool:
    # Only the API server's NotFound answer; client-side "not found" errors stay transient.
    return "(notfound)" in (stderr or "").lower()


def _failure_detail(res: dict) -> str:
    if res.get("error") == "not_found":
        return "kubectl_not_found"
    if res.get("error") == "timeout":
        return "kubectl_timeout"
    return first_line(res.get("stderr")) or f"kubectl_failed rc={res.get('rc')}"


class KubectlClient(ClusterClient):
    def __init__(self, kubectl: str | None = None) -> None:
        self.kubectl = kubectl or os.environ.get("KUBECTL", "kubectl")

    def _argv(self, target: Target, args: list[str]) -> list[str]:
        return [self.kubectl, "--context", target.context, *args]

    def _action_error(self, verb: str, ref: str, res: dict, target: Target) -> ActionApplyError:
        forbidden = parse_k8s_forbidden(res.get("stderr") or "", context=target.context)
        return ActionApplyError(
            f"kubectl {verb} {ref} failed on {target.name}: {_failure_detail(res)}",
            rc=res.get("rc"),
            stderr=res.get("stderr"),
            diagnostic=forbidden.to_dict() if forbidden else None,
        )

    def apply(self, manifest: object, target: Target, *, timeout_s: float = 60.0) -> Ack:
        if not isinstance(manifest, Manifest):
            raise ActionApplyError(f"kubectl apply expects a Manifest, got {type(manifest).__name__}")
        try:
            manifest.validate()
        except ManifestValidationError as exc:
            raise ActionApplyError(f"invalid manifest: {exc}") from exc
        res = run_cmd(
            self._argv(target, ["apply", "-f", "-"]),
            timeout_s=timeout_s,
            input_text=manifest.to_yaml(),
        )
        if res.get("rc") != 0:
            raise self._action_error("apply", manifest.ref, res, target)
        return Ack(
            ref=manifest.ref,
            warnings=split_warnings(res.get("stderr")),
            detail=first_line(res.get("stdout")) or None,
        )

    def get(self, ref: ResourceRef, target: Target, *, timeout_s: float = 20.0) -> dict | None:
        args = ["get", ref.kind, ref.name]
        if ref.namespace:
            args += ["-n", ref.namespace]
        args += ["-o", "json"]
        res = run_cmd(self._argv(target, args), timeout_s=timeout_s)
        if res.get("rc") != 0:
            if res.get("error") is None and _is_not_found(res.get("stderr")):
                return None
            forbidden = parse_k8s_forbidden(res.get("stderr") or "", context=target.context)
            if forbidden is not None:
                raise TransientQueryError(f"forbidden: {forbidden.hint}")
            raise TransientQueryError(_failure_detail(res))
        try:
            payload = json.loads(res.get("stdout") or "{}")
        except json.JSONDecodeError as exc:
            raise TransientQueryError(f"invalid kubectl json: {exc}") from exc
        if not isinstance(payload, dict):
            raise TransientQueryError("invalid kubectl json: not an object")
        return payload

    def delete(
        self,
        ref: ResourceRef,
        target: Target,
        *,
        ignore_not_found: bool = True,
        timeout_s: float = 60.0,
    ) -> Ack:
        args = ["delete", ref.kind, ref.name]
        if ref.namespace:
            args += ["-n", ref.namespace]
        args += [f"--ignore-not-found={'true' if ignore_not_found else 'false'}", "--wait=false"]
        res = run_cmd(self._argv(target, args), timeout_s=timeout_s)
        if res.get("rc") != 0:
            raise self._action_error("delete", ref.display(), res, target)
        warnings = split_warnings(res.get("stderr"))
        stdout = first_line(res.get("stdout"))
        if ignore_not_found and not stdout:
            # kubectl prints nothing when --ignore-not-found skipped a missing object.
            warnings.append(f"{ref.display()} not found; nothing deleted")
        return Ack(ref=ref.display(), warnings=warnings, detail=stdout or None)
