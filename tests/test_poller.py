from __future__ import annotations

from fakes import EAST, FakeClock, ScriptedProbe

from fleetkeeper.audit.explain import ExplainLog
from fleetkeeper.clients.base import ResourceRef
from fleetkeeper.core.cancel import CancelToken
from fleetkeeper.core.errors import TerminalResourceError, TransientQueryError
from fleetkeeper.core.outcome import OutcomeStatus, ProbeResult
from fleetkeeper.core.poller import Poller
from fleetkeeper.probes.conditions import ConditionSpec


def _spec(**kw) -> ConditionSpec:
    base = {
        "description": "deployment/app available",
        "ref": ResourceRef("deployment", "app", "default"),
        "success": lambda state: False,
        "interval_s": 5.0,
        "deadline_s": 30.0,
        "probe_timeout_s": 20.0,
    }
    base.update(kw)
    return ConditionSpec(**base)


def _poller(clock: FakeClock, explain: ExplainLog | None = None) -> Poller:
    return Poller(clock=clock, sleep=clock.sleep, explain=explain)


def test_satisfied_returns_value_and_stops_probing() -> None:
    clock = FakeClock()
    probe = ScriptedProbe(
        clock, lambda t: ProbeResult.satisfied("1/1 ready") if t >= 10 else ProbeResult.pending("0/1 ready")
    )

    outcome = _poller(clock).run(probe, _spec(), EAST)

    assert outcome.status == OutcomeStatus.SATISFIED
    assert outcome.value == "1/1 ready"
    assert probe.calls == [0.0, 5.0, 10.0]
    assert outcome.attempts == 3


def test_pending_until_deadline_times_out_with_last_value() -> None:
    clock = FakeClock()
    probe = ScriptedProbe(clock, lambda t: ProbeResult.pending(f"pending@{int(t)}"))

    outcome = _poller(clock).run(probe, _spec(), EAST)

    assert outcome.status == OutcomeStatus.TIMED_OUT
    assert outcome.value == "pending@25"
    assert outcome.detail is None
    assert outcome.elapsed_s >= 30.0
    assert max(probe.calls) < 30.0


def test_failed_short_circuits_regardless_of_deadline() -> None:
    clock = FakeClock()
    probe = ScriptedProbe(
        clock,
        lambda t: ProbeResult.failed("ProgressDeadlineExceeded") if t >= 5 else ProbeResult.pending("0/1"),
    )

    outcome = _poller(clock).run(probe, _spec(deadline_s=3600.0), EAST)

    assert outcome.status == OutcomeStatus.FAILED
    assert outcome.detail == "ProgressDeadlineExceeded"
    assert len(probe.calls) == 2


def test_transient_errors_are_pending_and_surface_in_timeout_detail() -> None:
    clock = FakeClock()

    def probe(target, *, timeout_s):
        raise TransientQueryError("kubectl_timeout")

    outcome = _poller(clock).run(probe, _spec(deadline_s=10.0), EAST)

    assert outcome.status == OutcomeStatus.TIMED_OUT
    assert outcome.detail == "kubectl_timeout"


def test_terminal_resource_error_maps_to_failed() -> None:
    clock = FakeClock()

    def probe(target, *, timeout_s):
        raise TerminalResourceError("stack ROLLBACK_COMPLETE")

    outcome = _poller(clock).run(probe, _spec(), EAST)

    assert outcome.status == OutcomeStatus.FAILED
    assert outcome.attempts == 1
    assert "ROLLBACK_COMPLETE" in outcome.detail


def test_probe_timeout_never_exceeds_remaining_deadline() -> None:
    clock = FakeClock()
    probe = ScriptedProbe(clock, lambda t: ProbeResult.pending())

    _poller(clock).run(probe, _spec(deadline_s=30.0, probe_timeout_s=8.0), EAST)

    assert probe.timeouts[0] == 8.0
    assert probe.timeouts[-1] == 5.0


def test_backoff_grows_interval_up_to_cap() -> None:
    clock = FakeClock()
    probe = ScriptedProbe(clock, lambda t: ProbeResult.pending())

    _poller(clock).run(
        probe,
        _spec(interval_s=1.0, backoff=2.0, max_interval_s=4.0, deadline_s=20.0),
        EAST,
    )

    assert clock.sleeps[:5] == [1.0, 2.0, 4.0, 4.0, 4.0]


def test_cancel_before_first_probe() -> None:
    clock = FakeClock()
    probe = ScriptedProbe(clock, lambda t: ProbeResult.pending())
    cancel = CancelToken()
    cancel.cancel()

    outcome = _poller(clock).run(probe, _spec(), EAST, cancel)

    assert outcome.status == OutcomeStatus.CANCELLED
    assert probe.calls == []


def test_cancel_is_checked_between_iterations() -> None:
    clock = FakeClock()
    cancel = CancelToken()

    def script(t: float) -> ProbeResult:
        if t >= 10:
            cancel.cancel("interrupted")
        return ProbeResult.pending("waiting")

    probe = ScriptedProbe(clock, script)
    outcome = _poller(clock).run(probe, _spec(deadline_s=600.0), EAST, cancel)

    assert outcome.status == OutcomeStatus.CANCELLED
    assert outcome.value == "waiting"
    assert probe.calls == [0.0, 5.0, 10.0]


def test_real_sleep_wakes_up_on_cancel() -> None:
    cancel = CancelToken()

    def probe(target, *, timeout_s):
        cancel.cancel()
        return ProbeResult.pending()

    outcome = Poller().run(probe, _spec(interval_s=60.0, deadline_s=600.0), EAST, cancel)

    assert outcome.status == OutcomeStatus.CANCELLED
    assert outcome.elapsed_s < 5.0


def test_attempts_are_logged(tmp_path) -> None:
    clock = FakeClock()
    explain = ExplainLog(tmp_path / "explain.jsonl")
    probe = ScriptedProbe(
        clock, lambda t: ProbeResult.satisfied("ok") if t >= 5 else ProbeResult.pending("no")
    )

    _poller(clock, explain).run(probe, _spec(), EAST)

    probes = explain.of_kind("probe")
    assert [p["payload"]["status"] for p in probes] == ["pending", "satisfied"]
    assert probes[0]["payload"]["target"] == "east"
    assert explain.of_kind("poll_outcome")[0]["payload"]["status"] == "satisfied"
    assert len((tmp_path / "explain.jsonl").read_text(encoding="utf-8").splitlines()) == 3
