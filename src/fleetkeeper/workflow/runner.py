"""Run an ordered list of steps across every target of a workflow."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from fleetkeeper.audit.explain import ExplainLog
from fleetkeeper.core.cancel import CancelToken, cancel_after
from fleetkeeper.core.fanout import FanOutCoordinator, FanOutResult, Policy
from fleetkeeper.core.poller import Poller
from fleetkeeper.core.state_machine import StepState
from fleetkeeper.core.targets import Target
from fleetkeeper.probes.conditions import probe_factory
from fleetkeeper.workflow.steps import (
    ActionPhase,
    ActionStep,
    StepPolicy,
    StepResult,
    StepStatus,
    finish_step,
    run_action,
)


class TargetStatus(str, Enum):
    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class Workflow:
    name: str
    targets: list[Target]
    steps: list[ActionStep]
    policy: Policy = Policy.BEST_EFFORT
    deadline_s: float | None = None


@dataclass
class TargetReport:
    target: Target
    steps: list[StepResult] = field(default_factory=list)
    halted_at: str | None = None
    completed: bool = False

    @property
    def status(self) -> TargetStatus:
        if self.halted_at is not None:
            return TargetStatus.FAILED
        if not self.completed:
            return TargetStatus.CANCELLED
        if any(result.failed for result in self.steps):
            return TargetStatus.PARTIAL
        return TargetStatus.SUCCEEDED

    @property
    def failed_steps(self) -> list[str]:
        return [result.step for result in self.steps if result.failed]

    def to_dict(self) -> dict:
        return {
            **self.target.to_dict(),
            "status": self.status.value,
            "halted_at": self.halted_at,
            "completed": self.completed,
            "failed_steps": self.failed_steps,
            "steps": [result.to_dict() for result in self.steps],
        }


@dataclass
class WorkflowResult:
    workflow: str
    policy: Policy
    targets: dict[str, TargetReport] = field(default_factory=dict)
    fanouts: dict[str, FanOutResult] = field(default_factory=dict)
    cancelled: bool = False
    cancel_reason: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def statuses(self) -> dict[str, TargetStatus]:
        return {name: report.status for name, report in self.targets.items()}

    @property
    def counts(self) -> dict[str, int]:
        values = list(self.statuses().values())
        return {status.value: values.count(status) for status in TargetStatus}

    @property
    def success(self) -> bool:
        statuses = list(self.statuses().values())
        if not statuses:
            return False
        if self.policy == Policy.ALL_MUST_SUCCEED:
            return all(status == TargetStatus.SUCCEEDED for status in statuses)
        return any(status in (TargetStatus.SUCCEEDED, TargetStatus.PARTIAL) for status in statuses)

    def to_dict(self) -> dict:
        return {
            "schema": "workflow_result.v0",
            "workflow": self.workflow,
            "policy": self.policy.value,
            "success": self.success,
            "cancelled": self.cancelled,
            "cancel_reason": self.cancel_reason,
            "started_at": self.started_at.isoformat(timespec="seconds") if self.started_at else None,
            "finished_at": self.finished_at.isoformat(timespec="seconds") if self.finished_at else None,
            "counts": self.counts,
            "targets": {name: report.to_dict() for name, report in self.targets.items()},
            "fanouts": {name: fanout.to_dict() for name, fanout in self.fanouts.items()},
        }


class WorkflowRunner:
    def __init__(
        self,
        *,
        coordinator: FanOutCoordinator | None = None,
        explain: ExplainLog | None = None,
        cancel: CancelToken | None = None,
    ) -> None:
        self.explain = explain
        self.coordinator = coordinator or FanOutCoordinator(
            poller_factory=lambda _target: Poller(explain=explain)
        )
        self.cancel = cancel or CancelToken()

    def _emit(self, event: str, payload: dict) -> None:
        if self.explain is not None:
            self.explain.emit(event, payload)

    def _run_step(self, step: ActionStep, active: list[Target]) -> tuple[dict[str, StepResult], FanOutResult | None]:
        phases: dict[str, ActionPhase] = self.coordinator.map(
            active, lambda target: run_action(step, target, self.explain)
        )
        by_name = {target.name: target for target in active}

        fanout: FanOutResult | None = None
        if step.post_condition is not None:
            applied = [by_name[name] for name, phase in phases.items() if phase.result is None]
            for name in (t.name for t in applied):
                phases[name].machine.transition(StepState.POLLING)
            fanout = self.coordinator.run(
                applied,
                probe_factory(step.client, step.post_condition),
                step.post_condition,
                step.fanout_policy,
                self.cancel,
            )

        results: dict[str, StepResult] = {}
        for name, phase in phases.items():
            outcome = fanout.outcomes.get(name) if fanout is not None else None
            results[name] = finish_step(step, by_name[name], phase, outcome)
        return results, fanout

    def run(self, workflow: Workflow) -> WorkflowResult:
        result = WorkflowResult(
            workflow=workflow.name,
            policy=workflow.policy,
            targets={target.name: TargetReport(target=target) for target in workflow.targets},
            started_at=datetime.now(timezone.utc),
        )
        self._emit(
            "workflow_started",
            {
                "workflow": workflow.name,
                "policy": workflow.policy.value,
                "targets": [target.to_dict() for target in workflow.targets],
                "steps": [step.name for step in workflow.steps],
            },
        )
        timer = None
        if workflow.deadline_s is not None:
            timer = cancel_after(self.cancel, workflow.deadline_s)
        try:
            for step in workflow.steps:
                if self.cancel.cancelled:
                    break
                active = [
                    report.target for report in result.targets.values() if report.halted_at is None
                ]
                if not active:
                    break
                self._emit(
                    "step_started",
                    {"step": step.name, "targets": [t.name for t in active], "policy": step.policy.value},
                )
                step_results, fanout = self._run_step(step, active)
                if fanout is not None:
                    result.fanouts[step.name] = fanout
                for name, step_result in step_results.items():
                    report = result.targets[name]
                    report.steps.append(step_result)
                    if (
                        step_result.failed
                        and step.policy == StepPolicy.FATAL
                        and step_result.state != StepState.CANCELLED
                    ):
                        report.halted_at = step.name
                    self._emit("step_result", step_result.to_dict())
            if not self.cancel.cancelled:
                for report in result.targets.values():
                    if report.halted_at is None:
                        report.completed = True
        finally:
            if timer is not None:
                timer.cancel()

        result.cancelled = self.cancel.cancelled
        result.cancel_reason = self.cancel.reason
        result.finished_at = datetime.now(timezone.utc)
        self._emit(
            "workflow_finished",
            {
                "workflow": workflow.name,
                "success": result.success,
                "cancelled": result.cancelled,
                "counts": result.counts,
            },
        )
        return result


def step_statuses(result: WorkflowResult, target: str) -> dict[str, StepStatus]:
    return {step.step: step.status for step in result.targets[target].steps}
