"""Run one poller per target concurrently and aggregate the outcomes."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, TypeVar

from fleetkeeper.core.cancel import CancelToken
from fleetkeeper.core.outcome import Outcome, OutcomeStatus
from fleetkeeper.core.poller import ConditionProbe, PollSpec, Poller
from fleetkeeper.core.targets import Target

T = TypeVar("T")


class Policy(str, Enum):
    ALL_MUST_SUCCEED = "all_must_succeed"
    BEST_EFFORT = "best_effort"


def parse_policy(value: str | Policy) -> Policy:
    if isinstance(value, Policy):
        return value
    text = str(value).strip().lower().replace("-", "_")
    try:
        return Policy(text)
    except ValueError as exc:
        allowed = ", ".join(p.value for p in Policy)
        raise ValueError(f"invalid policy: '{value}' (expected one of: {allowed})") from exc


@dataclass(frozen=True)
class FanOutResult:
    policy: Policy
    outcomes: dict[str, Outcome] = field(default_factory=dict)

    def count(self, status: OutcomeStatus) -> int:
        return sum(1 for outcome in self.outcomes.values() if outcome.status == status)

    @property
    def counts(self) -> dict[str, int]:
        return {status.value: self.count(status) for status in OutcomeStatus}

    @property
    def success(self) -> bool:
        if not self.outcomes:
            return False
        if self.policy == Policy.ALL_MUST_SUCCEED:
            return all(outcome.ok for outcome in self.outcomes.values())
        return self.count(OutcomeStatus.SATISFIED) >= 1

    def to_dict(self) -> dict:
        return {
            "policy": self.policy.value,
            "success": self.success,
            "counts": self.counts,
            "outcomes": {name: outcome.to_dict() for name, outcome in self.outcomes.items()},
        }


class FanOutCoordinator:
    def __init__(self, poller_factory: Callable[[Target], Poller] | None = None) -> None:
        self.poller_factory = poller_factory or (lambda _target: Poller())

    def map(self, targets: list[Target], fn: Callable[[Target], T]) -> dict[str, T]:
        """Call ``fn`` once per target, one thread each, and wait for all of them."""
        if not targets:
            return {}
        with ThreadPoolExecutor(max_workers=len(targets), thread_name_prefix="fk-target") as pool:
            futures = {target.name: pool.submit(fn, target) for target in targets}
            return {name: future.result() for name, future in futures.items()}

    def _poll_one(
        self,
        target: Target,
        probe_factory: Callable[[Target], ConditionProbe],
        spec: PollSpec,
        cancel: CancelToken,
    ) -> Outcome:
        try:
            probe = probe_factory(target)
            return self.poller_factory(target).run(probe, spec, target, cancel)
        except Exception as exc:
            # One target's crash is recorded as its outcome; siblings keep polling.
            return Outcome.failed(f"probe_error: {type(exc).__name__}: {exc}")

    def run(
        self,
        targets: list[Target],
        probe_factory: Callable[[Target], ConditionProbe],
        spec: PollSpec,
        policy: Policy = Policy.BEST_EFFORT,
        cancel: CancelToken | None = None,
    ) -> FanOutResult:
        cancel = cancel or CancelToken()
        outcomes = self.map(
            targets,
            lambda target: self._poll_one(target, probe_factory, spec, cancel),
        )
        return FanOutResult(policy=policy, outcomes=outcomes)
