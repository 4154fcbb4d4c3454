"""Best-effort parsing for Kubernetes RBAC forbidden errors."""

from __future__ import annotations

import re
from dataclasses import dataclass


_FORBIDDEN_PATTERN = re.compile(
    r'User\s+"(?P<user>[^"]+)"\s+cannot\s+(?P<verb>[a-z]+)\s+resource\s+"(?P<resource>[^"]+)"\s+'
    r'in\s+API\s+group\s+"(?P<api_group>[^"]*)"\s+'
    r'(?:(?:in\s+the\s+namespace\s+"(?P<namespace>[^"]+)")|(?:at\s+the\s+cluster\s+scope))',
    re.IGNORECASE,
)

_NAME_PATTERN = re.compile(r'"(?P<name>[^"]+)"\s+is forbidden:', re.IGNORECASE)


@dataclass(frozen=True)
class ForbiddenDiagnostic:
    user: str
    verb: str
    resource: str
    api_group: str
    namespace: str | None
    name: str | None
    context: str | None = None

    @property
    def scope(self) -> str:
        return "namespaced" if self.namespace else "cluster"

    @property
    def suggested_rule(self) -> dict:
        rule: dict = {
            "apiGroups": [self.api_group],
            "resources": [self.resource],
            "verbs": [self.verb],
        }
        if self.name:
            rule["resourceNames"] = [self.name]
        return rule

    @property
    def hint(self) -> str:
        if self.scope == "namespaced":
            role, binding = f'Role in namespace "{self.namespace}"', "RoleBinding"
        else:
            role, binding = "ClusterRole", "ClusterRoleBinding"
        where = f' on context "{self.context}"' if self.context else ""
        return (
            f"Grant a {role}{where} allowing {self.verb} on {self.resource} "
            f'(apiGroup "{self.api_group}") and bind it to "{self.user}" with a {binding}. '
            "On EKS, map the IAM principal in the aws-auth ConfigMap or an access entry first."
        )

    def to_dict(self) -> dict:
        return {
            "user": self.user,
            "verb": self.verb,
            "resource": self.resource,
            "api_group": self.api_group,
            "namespace": self.namespace,
            "name": self.name,
            "context": self.context,
            "scope": self.scope,
            "suggested_rule": self.suggested_rule,
            "hint": self.hint,
        }


def parse_k8s_forbidden(text: str, *, context: str | None = None) -> ForbiddenDiagnostic | None:
    """Parse a kubectl Forbidden error into a structured RBAC diagnostic."""
    if not isinstance(text, str) or not text.strip():
        return None
    raw = text.strip()
    lower = raw.lower()
    if "forbidden" not in lower or "cannot" not in lower:
        return None

    match = _FORBIDDEN_PATTERN.search(raw)
    if not match:
        return None

    name_match = _NAME_PATTERN.search(raw)
    return ForbiddenDiagnostic(
        user=match.group("user"),
        verb=match.group("verb").lower(),
        resource=match.group("resource"),
        api_group=match.group("api_group"),
        namespace=match.group("namespace"),
        name=name_match.group("name") if name_match else None,
        context=context,
    )
