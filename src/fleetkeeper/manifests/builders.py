"""Typed Kubernetes manifests, rendered per target and validated before apply."""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field, replace
from string import Template

import yaml

from fleetkeeper.core.errors import ManifestValidationError
from fleetkeeper.core.targets import Target

_DNS1123_SUBDOMAIN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$")
_DNS1123_LABEL = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
_PLACEHOLDER = re.compile(r"\$\{?(target|region|context)\b")

CLUSTER_SCOPED_KINDS = {
    "Namespace",
    "ClusterRole",
    "ClusterRoleBinding",
    "CustomResourceDefinition",
    "PersistentVolume",
    "StorageClass",
    "ProviderConfig",
    "Provider",
    "Configuration",
    "ClusterPolicy",
}

ARGOCD_NAMESPACE = "argocd"
IN_CLUSTER_SERVER = "https://kubernetes.default.svc"


def _render_value(value: object, mapping: dict[str, str]) -> object:
    if isinstance(value, str):
        return Template(value).safe_substitute(mapping)
    if isinstance(value, dict):
        return {k: _render_value(v, mapping) for k, v in value.items()}
    if isinstance(value, list):
        return [_render_value(v, mapping) for v in value]
    return value


@dataclass(frozen=True)
class Manifest:
    kind: str
    name: str
    api_version: str = "v1"
    namespace: str | None = None
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    # Top-level fields besides apiVersion/kind/metadata (spec, data, stringData, type...).
    body: dict = field(default_factory=dict)

    @property
    def ref(self) -> str:
        if self.namespace:
            return f"{self.kind}/{self.name} -n {self.namespace}"
        return f"{self.kind}/{self.name}"

    def validate(self) -> Manifest:
        if not self.kind.strip():
            raise ManifestValidationError("kind must be a non-empty string")
        if not self.api_version.strip():
            raise ManifestValidationError(f"{self.kind}: apiVersion must be a non-empty string")
        if len(self.name) > 253 or not _DNS1123_SUBDOMAIN.match(self.name):
            raise ManifestValidationError(
                f"{self.kind}: name '{self.name}' must be a lowercase RFC 1123 subdomain"
            )
        if self.namespace is not None:
            if self.kind in CLUSTER_SCOPED_KINDS:
                raise ManifestValidationError(f"{self.ref}: {self.kind} is cluster-scoped")
            if len(self.namespace) > 63 or not _DNS1123_LABEL.match(self.namespace):
                raise ManifestValidationError(
                    f"{self.kind}/{self.name}: namespace '{self.namespace}' must be an RFC 1123 label"
                )
        reserved = {"apiVersion", "kind", "metadata"} & set(self.body)
        if reserved:
            raise ManifestValidationError(
                f"{self.ref}: body must not set {', '.join(sorted(reserved))}"
            )
        unrendered = sorted(set(_PLACEHOLDER.findall(self.to_yaml())))
        if unrendered:
            raise ManifestValidationError(
                f"{self.ref}: unrendered placeholders: {', '.join(unrendered)}"
            )
        return self

    def render(self, target: Target) -> Manifest:
        """Substitute ``$target``, ``$region`` and ``$context`` placeholders."""
        mapping = {"target": target.name, "region": target.region, "context": target.context}
        return replace(
            self,
            name=_render_value(self.name, mapping),
            namespace=_render_value(self.namespace, mapping),
            labels=_render_value(dict(self.labels), mapping),
            annotations=_render_value(dict(self.annotations), mapping),
            body=_render_value(copy.deepcopy(self.body), mapping),
        )

    def to_dict(self) -> dict:
        metadata: dict = {"name": self.name}
        if self.namespace:
            metadata["namespace"] = self.namespace
        if self.labels:
            metadata["labels"] = dict(self.labels)
        if self.annotations:
            metadata["annotations"] = dict(self.annotations)
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": metadata,
            **copy.deepcopy(self.body),
        }

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False, default_flow_style=False)


def to_yaml_stream(manifests: list[Manifest]) -> str:
    return yaml.safe_dump_all(
        [m.to_dict() for m in manifests], sort_keys=False, default_flow_style=False
    )


def namespace(name: str, labels: dict[str, str] | None = None) -> Manifest:
    return Manifest(kind="Namespace", name=name, labels=dict(labels or {}))


def secret(
    name: str,
    namespace: str,
    string_data: dict[str, str],
    *,
    secret_type: str = "Opaque",
) -> Manifest:
    return Manifest(
        kind="Secret",
        name=name,
        namespace=namespace,
        body={"type": secret_type, "stringData": dict(string_data)},
    )


def argocd_application(
    name: str,
    *,
    repo_url: str,
    destination_namespace: str,
    target_revision: str = "HEAD",
    chart: str | None = None,
    path: str | None = None,
    helm_values: dict | None = None,
    project: str = "default",
    server: str = IN_CLUSTER_SERVER,
    namespace: str = ARGOCD_NAMESPACE,
    automated: bool = True,
    prune: bool = True,
    self_heal: bool = True,
    create_namespace: bool = True,
    server_side_apply: bool = False,
) -> Manifest:
    if (chart is None) == (path is None):
        raise ManifestValidationError(f"Application/{name}: exactly one of chart or path is required")

    source: dict = {"repoURL": repo_url, "targetRevision": target_revision}
    if chart is not None:
        source["chart"] = chart
    else:
        source["path"] = path
    if helm_values:
        source["helm"] = {"values": yaml.safe_dump(helm_values, sort_keys=False)}

    sync_policy: dict = {}
    if automated:
        sync_policy["automated"] = {"prune": prune, "selfHeal": self_heal}
    sync_options: list[str] = []
    if create_namespace:
        sync_options.append("CreateNamespace=true")
    if server_side_apply:
        sync_options.append("ServerSideApply=true")
    if sync_options:
        sync_policy["syncOptions"] = sync_options

    spec: dict = {
        "project": project,
        "source": source,
        "destination": {"server": server, "namespace": destination_namespace},
    }
    if sync_policy:
        spec["syncPolicy"] = sync_policy
    return Manifest(
        kind="Application",
        api_version="argoproj.io/v1alpha1",
        name=name,
        namespace=namespace,
        body={"spec": spec},
    )


def from_dict(payload: dict, *, source: str = "manifest") -> Manifest:
    """Build a Manifest from either a full Kubernetes object or the short form."""
    if not isinstance(payload, dict):
        raise ManifestValidationError(f"{source} must be an object")
    kind = payload.get("kind")
    if not isinstance(kind, str) or not kind.strip():
        raise ManifestValidationError(f"{source}.kind is required")

    if "metadata" in payload:
        metadata = payload.get("metadata")
        if not isinstance(metadata, dict):
            raise ManifestValidationError(f"{source}.metadata must be an object")
        name = metadata.get("name")
        ns = metadata.get("namespace")
        labels = metadata.get("labels") or {}
        annotations = metadata.get("annotations") or {}
        body = {k: v for k, v in payload.items() if k not in {"apiVersion", "kind", "metadata"}}
    else:
        name = payload.get("name")
        ns = payload.get("namespace")
        labels = payload.get("labels") or {}
        annotations = payload.get("annotations") or {}
        body = payload.get("body") or {}

    if not isinstance(name, str) or not name.strip():
        raise ManifestValidationError(f"{source}.name is required")
    if ns is not None and not isinstance(ns, str):
        raise ManifestValidationError(f"{source}.namespace must be a string")
    if not isinstance(labels, dict) or not isinstance(annotations, dict):
        raise ManifestValidationError(f"{source}: labels/annotations must be objects")
    if not isinstance(body, dict):
        raise ManifestValidationError(f"{source}.body must be an object")

    api_version = payload.get("apiVersion") or payload.get("api_version") or "v1"
    return Manifest(
        kind=kind.strip(),
        name=name.strip(),
        api_version=str(api_version),
        namespace=ns.strip() if isinstance(ns, str) and ns.strip() else None,
        labels={str(k): str(v) for k, v in labels.items()},
        annotations={str(k): str(v) for k, v in annotations.items()},
        body=body,
    )
