"""Drive one condition probe against one target until it settles."""

from __future__ import annotations

import time
from typing import Callable, Protocol

from fleetkeeper.audit.explain import ExplainLog
from fleetkeeper.core.cancel import CancelToken
from fleetkeeper.core.errors import TerminalResourceError, TransientQueryError
from fleetkeeper.core.outcome import Outcome, ProbeResult, ProbeStatus
from fleetkeeper.core.targets import Target


class ConditionProbe(Protocol):
    def __call__(self, target: Target, *, timeout_s: float) -> ProbeResult: ...


class PollSpec(Protocol):
    description: str
    interval_s: float
    deadline_s: float
    probe_timeout_s: float
    backoff: float
    max_interval_s: float | None


class Poller:
    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] | None = None,
        explain: ExplainLog | None = None,
    ) -> None:
        self.clock = clock
        self._sleep = sleep
        self.explain = explain

    def _emit(self, event: str, payload: dict) -> None:
        if self.explain is not None:
            self.explain.emit(event, payload)

    def _wait(self, seconds: float, cancel: CancelToken) -> None:
        if self._sleep is not None:
            self._sleep(seconds)
            return
        cancel.wait(seconds)

    def _call_probe(self, probe: ConditionProbe, target: Target, timeout_s: float) -> ProbeResult:
        try:
            return probe(target, timeout_s=timeout_s)
        except TransientQueryError as exc:
            return ProbeResult.pending(diagnostic=str(exc))
        except TerminalResourceError as exc:
            return ProbeResult.failed(str(exc))

    def run(
        self,
        probe: ConditionProbe,
        spec: PollSpec,
        target: Target,
        cancel: CancelToken | None = None,
    ) -> Outcome:
        cancel = cancel or CancelToken()
        started = self.clock()
        interval = float(spec.interval_s)
        attempts = 0
        last_value: object = None
        last_diagnostic: str | None = None

        while True:
            elapsed = self.clock() - started
            if cancel.cancelled:
                outcome = Outcome.cancelled(last_value, attempts=attempts, elapsed_s=elapsed)
                break

            remaining = spec.deadline_s - elapsed
            result = self._call_probe(
                probe,
                target,
                timeout_s=max(0.0, min(spec.probe_timeout_s, remaining)),
            )
            attempts += 1
            self._emit(
                "probe",
                {
                    "target": target.name,
                    "condition": spec.description,
                    "attempt": attempts,
                    "elapsed_s": round(self.clock() - started, 3),
                    **result.to_dict(),
                },
            )

            if result.status == ProbeStatus.SATISFIED:
                outcome = Outcome.satisfied(
                    result.value, attempts=attempts, elapsed_s=self.clock() - started
                )
                break
            if result.status == ProbeStatus.FAILED:
                outcome = Outcome.failed(
                    result.reason or "failed",
                    value=result.value,
                    attempts=attempts,
                    elapsed_s=self.clock() - started,
                )
                break

            last_value = result.value
            last_diagnostic = result.diagnostic

            remaining = spec.deadline_s - (self.clock() - started)
            if remaining > 0:
                self._wait(min(interval, remaining), cancel)
            if spec.backoff > 1.0:
                interval *= spec.backoff
                if spec.max_interval_s is not None:
                    interval = min(interval, spec.max_interval_s)

            elapsed = self.clock() - started
            if elapsed >= spec.deadline_s and not cancel.cancelled:
                outcome = Outcome.timed_out(
                    last_value,
                    attempts=attempts,
                    elapsed_s=elapsed,
                    diagnostic=last_diagnostic,
                )
                break

        self._emit(
            "poll_outcome",
            {"target": target.name, "condition": spec.description, **outcome.to_dict()},
        )
        return outcome
