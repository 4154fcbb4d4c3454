from __future__ import annotations

import json
import os
import re

from fleetkeeper.clients.base import Ack, ClusterClient, ResourceRef
from fleetkeeper.clients.process import first_line, run_cmd
from fleetkeeper.core.errors import ActionApplyError, TransientQueryError
from fleetkeeper.core.targets import Target

STACK_KIND = "aws:cloudformation-stack"
EKS_CLUSTER_KIND = "aws:eks-cluster"

_NOT_FOUND = re.compile(r"\(ResourceNotFoundException\)|Stack with id \S+ does not exist", re.IGNORECASE)


def _is_not_found(stderr: str | None) -> bool:
    return _NOT_FOUND.search(stderr or "") is not None


class AwsCliClient(ClusterClient):
    """Read CloudFormation stacks and EKS clusters through the aws CLI."""

    def __init__(self, aws: str | None = None) -> None:
        self.aws = aws or os.environ.get("AWS_CLI", "aws")

    def _argv(self, target: Target, args: list[str]) -> list[str]:
        argv = [self.aws, *args, "--region", target.region, "--output", "json"]
        if target.aws_profile:
            argv += ["--profile", target.aws_profile]
        return argv

    def _describe(self, ref: ResourceRef) -> tuple[list[str], str]:
        if ref.kind == STACK_KIND:
            return ["cloudformation", "describe-stacks", "--stack-name", ref.name], "Stacks"
        if ref.kind == EKS_CLUSTER_KIND:
            return ["eks", "describe-cluster", "--name", ref.name], "cluster"
        raise TransientQueryError(f"unsupported aws resource kind: {ref.kind}")

    def apply(self, manifest: object, target: Target, *, timeout_s: float = 60.0) -> Ack:
        raise ActionApplyError("aws client does not support apply; provision stacks with the CDK app")

    def get(self, ref: ResourceRef, target: Target, *, timeout_s: float = 20.0) -> dict | None:
        args, key = self._describe(ref)
        res = run_cmd(self._argv(target, args), timeout_s=timeout_s)
        if res.get("rc") != 0:
            if res.get("error") is None and _is_not_found(res.get("stderr")):
                return None
            if res.get("error") == "not_found":
                raise TransientQueryError("aws_cli_not_found")
            if res.get("error") == "timeout":
                raise TransientQueryError("aws_cli_timeout")
            raise TransientQueryError(first_line(res.get("stderr")) or f"aws_failed rc={res.get('rc')}")
        try:
            payload = json.loads(res.get("stdout") or "{}")
        except json.JSONDecodeError as exc:
            raise TransientQueryError(f"invalid aws json: {exc}") from exc
        value = payload.get(key) if isinstance(payload, dict) else None
        if isinstance(value, list):
            value = value[0] if value else None
        if value is None:
            return None
        if not isinstance(value, dict):
            raise TransientQueryError(f"invalid aws json: {key} is not an object")
        return value

    def delete(
        self,
        ref: ResourceRef,
        target: Target,
        *,
        ignore_not_found: bool = True,
        timeout_s: float = 60.0,
    ) -> Ack:
        if ref.kind != STACK_KIND:
            raise ActionApplyError(f"aws client cannot delete {ref.kind}")
        res = run_cmd(
            self._argv(target, ["cloudformation", "delete-stack", "--stack-name", ref.name]),
            timeout_s=timeout_s,
        )
        if res.get("rc") != 0:
            if ignore_not_found and res.get("error") is None and _is_not_found(res.get("stderr")):
                return Ack(ref=ref.display(), warnings=[f"{ref.display()} not found; nothing deleted"])
            raise ActionApplyError(
                f"aws cloudformation delete-stack {ref.name} failed on {target.name}: "
                f"{first_line(res.get('stderr')) or res.get('error') or res.get('rc')}",
                rc=res.get("rc"),
                stderr=res.get("stderr"),
            )
        return Ack(ref=ref.display())
