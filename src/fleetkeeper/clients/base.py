from __future__ import annotations

from dataclasses import dataclass, field

from fleetkeeper.core.targets import Target


@dataclass(frozen=True)
class ResourceRef:
    kind: str
    name: str
    namespace: str | None = None

    @property
    def is_aws(self) -> bool:
        return self.kind.startswith("aws:")

    def display(self) -> str:
        if self.namespace:
            return f"{self.kind}/{self.name} -n {self.namespace}"
        return f"{self.kind}/{self.name}"

    def to_dict(self) -> dict:
        return {"kind": self.kind, "name": self.name, "namespace": self.namespace}


@dataclass
class Ack:
    ref: str
    warnings: list[str] = field(default_factory=list)
    detail: str | None = None

    def to_dict(self) -> dict:
        return {"ref": self.ref, "warnings": list(self.warnings), "detail": self.detail}


class ClusterClient:
    """Apply / get / delete surface against one target's cluster or cloud account.

    ``get`` returns ``None`` when the resource does not exist and raises
    ``TransientQueryError`` when the query itself failed. ``apply`` and
    ``delete`` raise ``ActionApplyError``.
    """

    def apply(self, manifest: object, target: Target, *, timeout_s: float = 60.0) -> Ack:
        raise NotImplementedError

    def get(self, ref: ResourceRef, target: Target, *, timeout_s: float = 20.0) -> dict | None:
        raise NotImplementedError

    def delete(
        self,
        ref: ResourceRef,
        target: Target,
        *,
        ignore_not_found: bool = True,
        timeout_s: float = 60.0,
    ) -> Ack:
        raise NotImplementedError
