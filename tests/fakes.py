from __future__ import annotations

import threading
from typing import Callable

from fleetkeeper.clients.base import Ack, ClusterClient, ResourceRef
from fleetkeeper.core.errors import ActionApplyError
from fleetkeeper.core.outcome import ProbeResult
from fleetkeeper.core.targets import Target
from fleetkeeper.manifests.builders import Manifest

EAST = Target(name="east", region="us-east-1", context="east-cluster")
WEST = Target(name="west", region="us-west-2", context="west-cluster")


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class ScriptedProbe:
    """Probe whose answer is a function of the fake clock's current time."""

    def __init__(self, clock: FakeClock, script: Callable[[float], ProbeResult]) -> None:
        self.clock = clock
        self.script = script
        self.calls: list[float] = []
        self.timeouts: list[float] = []

    def __call__(self, target: Target, *, timeout_s: float) -> ProbeResult:
        self.calls.append(self.clock())
        self.timeouts.append(timeout_s)
        return self.script(self.clock())


class FakeClient(ClusterClient):
    """In-memory cluster state keyed by (context, kind, namespace, name)."""

    def __init__(self) -> None:
        self.objects: dict[tuple, dict] = {}
        self.applied: list[tuple[str, str]] = []
        self.deleted: list[tuple[str, str]] = []
        self.reject: set[str] = set()
        self.lock = threading.Lock()

    @staticmethod
    def _key(target: Target, kind: str, name: str, namespace: str | None) -> tuple:
        return (target.context, kind.lower(), namespace, name)

    def put(self, target: Target, ref: ResourceRef, state: dict) -> None:
        with self.lock:
            self.objects[self._key(target, ref.kind, ref.name, ref.namespace)] = state

    def apply(self, manifest: object, target: Target, *, timeout_s: float = 60.0) -> Ack:
        assert isinstance(manifest, Manifest)
        if manifest.name in self.reject:
            raise ActionApplyError(f"admission webhook denied {manifest.ref}", rc=1, stderr="denied")
        manifest.validate()
        with self.lock:
            self.objects[self._key(target, manifest.kind, manifest.name, manifest.namespace)] = manifest.to_dict()
            self.applied.append((target.name, manifest.ref))
        return Ack(ref=manifest.ref)

    def get(self, ref: ResourceRef, target: Target, *, timeout_s: float = 20.0) -> dict | None:
        with self.lock:
            return self.objects.get(self._key(target, ref.kind, ref.name, ref.namespace))

    def delete(
        self,
        ref: ResourceRef,
        target: Target,
        *,
        ignore_not_found: bool = True,
        timeout_s: float = 60.0,
    ) -> Ack:
        with self.lock:
            existed = self.objects.pop(self._key(target, ref.kind, ref.name, ref.namespace), None)
            self.deleted.append((target.name, ref.display()))
        if existed is None:
            if not ignore_not_found:
                raise ActionApplyError(f"{ref.display()} not found", rc=1)
            return Ack(ref=ref.display(), warnings=[f"{ref.display()} not found; nothing deleted"])
        return Ack(ref=ref.display())
