"""Side-effecting steps with an optional post-condition."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from fleetkeeper.audit.explain import ExplainLog
from fleetkeeper.clients.base import Ack, ClusterClient, ResourceRef
from fleetkeeper.core.cancel import CancelToken
from fleetkeeper.core.errors import ActionApplyError, DeadlineExceeded, TerminalResourceError
from fleetkeeper.core.fanout import Policy
from fleetkeeper.core.outcome import Outcome, OutcomeStatus
from fleetkeeper.core.poller import Poller
from fleetkeeper.core.state_machine import StepState, StepStateMachine
from fleetkeeper.core.targets import Target
from fleetkeeper.manifests.builders import Manifest
from fleetkeeper.probes.conditions import ConditionSpec, ResourceProbe


class StepPolicy(str, Enum):
    FATAL = "fatal"
    ADVISORY = "advisory"


class StepStatus(str, Enum):
    SUCCEEDED = "succeeded"
    SUCCEEDED_WITH_WARNING = "succeeded_with_warning"
    FAILED = "failed"


class Action:
    def run(self, client: ClusterClient, target: Target, *, timeout_s: float) -> list[Ack]:
        raise NotImplementedError

    def describe(self) -> str:
        return type(self).__name__


@dataclass
class ApplyManifests(Action):
    manifests: list[Manifest]

    def rendered(self, target: Target) -> list[Manifest]:
        return [manifest.render(target) for manifest in self.manifests]

    def run(self, client: ClusterClient, target: Target, *, timeout_s: float) -> list[Ack]:
        return [client.apply(m, target, timeout_s=timeout_s) for m in self.rendered(target)]

    def describe(self) -> str:
        return "apply " + ", ".join(m.ref for m in self.manifests)


@dataclass
class DeleteResources(Action):
    refs: list[ResourceRef]
    ignore_not_found: bool = True

    def run(self, client: ClusterClient, target: Target, *, timeout_s: float) -> list[Ack]:
        return [
            client.delete(ref, target, ignore_not_found=self.ignore_not_found, timeout_s=timeout_s)
            for ref in self.refs
        ]

    def describe(self) -> str:
        return "delete " + ", ".join(ref.display() for ref in self.refs)


@dataclass
class ActionStep:
    name: str
    client: ClusterClient
    action: Action | None = None
    post_condition: ConditionSpec | None = None
    policy: StepPolicy = StepPolicy.FATAL
    fanout_policy: Policy = Policy.BEST_EFFORT
    action_timeout_s: float = 120.0


@dataclass
class StepResult:
    step: str
    target: str
    status: StepStatus
    state: StepState
    error_kind: str | None = None
    detail: str | None = None
    warnings: list[str] = field(default_factory=list)
    outcome: Outcome | None = None
    error: dict | None = None

    @property
    def failed(self) -> bool:
        return self.status == StepStatus.FAILED

    def to_dict(self) -> dict:
        return {
            "step": self.step,
            "target": self.target,
            "status": self.status.value,
            "state": self.state.value,
            "error_kind": self.error_kind,
            "detail": self.detail,
            "warnings": list(self.warnings),
            "outcome": self.outcome.to_dict() if self.outcome else None,
            "error": self.error,
        }


@dataclass
class ActionPhase:
    """What happened to one target when the step's side effect ran."""

    machine: StepStateMachine
    acks: list[Ack] = field(default_factory=list)
    result: StepResult | None = None

    @property
    def warnings(self) -> list[str]:
        return [w for ack in self.acks for w in ack.warnings]


def run_action(step: ActionStep, target: Target, explain: ExplainLog | None = None) -> ActionPhase:
    machine = StepStateMachine()
    if step.action is None:
        machine.transition(StepState.ACTION_APPLIED)
        return ActionPhase(machine=machine)

    try:
        acks = step.action.run(step.client, target, timeout_s=step.action_timeout_s)
    except ActionApplyError as exc:
        error_kind, error = type(exc).__name__, exc.to_dict()
        detail = str(exc)
    except Exception as exc:
        # Unexpected client errors fail this target's step, not its siblings.
        error_kind, error = type(exc).__name__, {"message": str(exc)}
        detail = f"{type(exc).__name__}: {exc}"
    else:
        machine.transition(StepState.ACTION_APPLIED)
        if explain is not None:
            explain.emit(
                "action_applied",
                {"step": step.name, "target": target.name, "acks": [a.to_dict() for a in acks]},
            )
        return ActionPhase(machine=machine, acks=acks)

    machine.transition(StepState.ACTION_FAILED)
    if explain is not None:
        explain.emit(
            "action_failed",
            {"step": step.name, "target": target.name, "error_kind": error_kind, "error": error},
        )
    return ActionPhase(
        machine=machine,
        result=StepResult(
            step=step.name,
            target=target.name,
            status=StepStatus.FAILED,
            state=StepState.ACTION_FAILED,
            error_kind=error_kind,
            detail=detail,
            error=error,
        ),
    )


def _ok_status(warnings: list[str]) -> StepStatus:
    return StepStatus.SUCCEEDED_WITH_WARNING if warnings else StepStatus.SUCCEEDED


_OUTCOME_STATE = {
    OutcomeStatus.SATISFIED: StepState.SATISFIED,
    OutcomeStatus.TIMED_OUT: StepState.TIMED_OUT,
    OutcomeStatus.FAILED: StepState.FAILED,
    OutcomeStatus.CANCELLED: StepState.CANCELLED,
}

_OUTCOME_ERROR_KIND = {
    OutcomeStatus.TIMED_OUT: DeadlineExceeded.__name__,
    OutcomeStatus.FAILED: TerminalResourceError.__name__,
    OutcomeStatus.CANCELLED: "Cancelled",
}


def finish_step(step: ActionStep, target: Target, phase: ActionPhase, outcome: Outcome | None) -> StepResult:
    if phase.result is not None:
        return phase.result
    warnings = phase.warnings
    if outcome is None:
        return StepResult(
            step=step.name,
            target=target.name,
            status=_ok_status(warnings),
            state=phase.machine.state,
            detail=step.action.describe() if step.action else None,
            warnings=warnings,
        )

    phase.machine.transition(_OUTCOME_STATE[outcome.status])
    if outcome.status == OutcomeStatus.SATISFIED:
        return StepResult(
            step=step.name,
            target=target.name,
            status=_ok_status(warnings),
            state=phase.machine.state,
            detail=f"{step.post_condition.description}: {outcome.value}",
            warnings=warnings,
            outcome=outcome,
        )
    if outcome.status == OutcomeStatus.TIMED_OUT:
        detail = (
            f"{step.post_condition.description}: still {outcome.value} "
            f"after {round(outcome.elapsed_s, 1)}s"
        )
        if outcome.detail:
            detail += f" (last error: {outcome.detail})"
    else:
        detail = outcome.detail
    return StepResult(
        step=step.name,
        target=target.name,
        status=StepStatus.FAILED,
        state=phase.machine.state,
        error_kind=_OUTCOME_ERROR_KIND[outcome.status],
        detail=detail,
        warnings=warnings,
        outcome=outcome,
    )


def execute(
    step: ActionStep,
    target: Target,
    *,
    poller: Poller | None = None,
    cancel: CancelToken | None = None,
    explain: ExplainLog | None = None,
) -> StepResult:
    """Run one step against one target: side effect, then its post-condition."""
    phase = run_action(step, target, explain)
    if phase.result is not None or step.post_condition is None:
        return finish_step(step, target, phase, None)
    phase.machine.transition(StepState.POLLING)
    poller = poller or Poller(explain=explain)
    outcome = poller.run(ResourceProbe(step.client, step.post_condition), step.post_condition, target, cancel)
    return finish_step(step, target, phase, outcome)
