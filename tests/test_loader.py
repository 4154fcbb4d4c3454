from __future__ import annotations

from pathlib import Path

import pytest
from fakes import FakeClient

from fleetkeeper.core.errors import WorkflowValidationError
from fleetkeeper.core.fanout import Policy
from fleetkeeper.workflow.loader import load_workflow, parse_duration_s, parse_workflow
from fleetkeeper.workflow.steps import ApplyManifests, DeleteResources, StepPolicy

WORKFLOW = """
schema_version: workflow.v0
name: deploy-jenkins
policy: all-must-succeed
deadline: 30m
targets:
  - {name: east, region: us-east-1, context: multi-region-eks-east}
  - {name: west, region: us-west-2}
steps:
  - name: namespace
    apply: [{kind: Namespace, name: jenkins-app}]
  - name: argocd-app
    apply:
      - kind: Application
        apiVersion: argoproj.io/v1alpha1
        name: jenkins-lts
        namespace: argocd
        body:
          spec:
            project: default
            source: {repoURL: https://charts.jenkins.io, chart: jenkins, targetRevision: 5.5.2}
            destination: {server: https://kubernetes.default.svc, namespace: jenkins-app}
    wait:
      condition: argocd_application_healthy
      name: jenkins-lts
      interval: 15s
      timeout: 10m
      probe_timeout: 500ms
      backoff: 2
      max_interval: 1m
  - name: remove-test-pod
    policy: advisory
    delete: [{kind: pod, name: test-privileged, namespace: default}]
    ignore_not_found: true
  - name: stack
    wait: {condition: stack_complete, name: eks-$target, fanout: all_must_succeed}
"""


def _clients() -> dict:
    return {"kubectl": FakeClient(), "aws": FakeClient()}


def _base(**overrides) -> dict:
    payload = {
        "schema_version": "workflow.v0",
        "name": "wf",
        "targets": [{"name": "east", "region": "us-east-1"}],
        "steps": [{"name": "ns", "apply": [{"kind": "Namespace", "name": "a"}]}],
    }
    payload.update(overrides)
    return payload


def test_load_workflow_from_yaml(tmp_path: Path) -> None:
    path = tmp_path / "workflow.yaml"
    path.write_text(WORKFLOW, encoding="utf-8")
    clients = _clients()

    wf = load_workflow(path, clients=clients)

    assert wf.name == "deploy-jenkins"
    assert wf.policy == Policy.ALL_MUST_SUCCEED
    assert wf.deadline_s == 1800.0
    assert [t.context for t in wf.targets] == ["multi-region-eks-east", "west"]
    assert [s.name for s in wf.steps] == ["namespace", "argocd-app", "remove-test-pod", "stack"]

    app = wf.steps[1]
    assert isinstance(app.action, ApplyManifests)
    assert app.action.manifests[0].api_version == "argoproj.io/v1alpha1"
    assert app.post_condition.ref.kind == "applications.argoproj.io"
    assert app.post_condition.interval_s == 15.0
    assert app.post_condition.deadline_s == 600.0
    assert app.post_condition.probe_timeout_s == 0.5
    assert app.post_condition.backoff == 2.0
    assert app.post_condition.max_interval_s == 60.0
    assert app.policy == StepPolicy.FATAL
    assert app.client is clients["kubectl"]

    cleanup = wf.steps[2]
    assert isinstance(cleanup.action, DeleteResources)
    assert cleanup.policy == StepPolicy.ADVISORY
    assert cleanup.action.refs[0].display() == "pod/test-privileged -n default"

    stack = wf.steps[3]
    assert stack.action is None
    assert stack.client is clients["aws"]
    assert stack.fanout_policy == Policy.ALL_MUST_SUCCEED


def test_env_defaults_for_wait_timing(monkeypatch) -> None:
    monkeypatch.setenv("FLEETKEEPER_POLL_INTERVAL", "3")
    monkeypatch.setenv("FLEETKEEPER_PROBE_TIMEOUT", "not-a-number")
    wf = parse_workflow(
        _base(steps=[{"name": "crd", "wait": {"condition": "crd_established", "name": "x.example.com"}}]),
        clients=_clients(),
    )
    spec = wf.steps[0].post_condition
    assert spec.interval_s == 3.0
    assert spec.probe_timeout_s == 20.0
    assert spec.deadline_s == 300.0


@pytest.mark.parametrize(
    "overrides,match",
    [
        ({"schema_version": "workflow.v1"}, "schema_version must be 'workflow.v0'"),
        ({"targets": []}, "targets must not be empty"),
        (
            {"targets": [{"name": "a", "region": "r"}, {"name": "a", "region": "r"}]},
            r"targets\[1\].name 'a' is duplicated",
        ),
        ({"targets": [{"name": "a"}]}, r"targets\[0\].region is required"),
        ({"steps": []}, "steps must not be empty"),
        ({"steps": [{"name": "x"}]}, "one of apply, delete or wait is required"),
        (
            {"steps": [{"name": "x", "apply": [{"kind": "Namespace", "name": "a"}], "delete": []}]},
            "mutually exclusive",
        ),
        ({"steps": [{"name": "x", "apply": [{"kind": "Namespace"}]}]}, r"steps\[0\].apply\[0\].name is required"),
        (
            {"steps": [{"name": "x", "wait": {"condition": "bogus", "name": "a"}}]},
            r"steps\[0\].wait: unknown condition",
        ),
        (
            {"steps": [{"name": "x", "wait": {"condition": "crd_established", "name": "a", "timeout": "soon"}}]},
            r"steps\[0\].wait.timeout: invalid duration",
        ),
        (
            {"steps": [{"name": "x", "wait": {"condition": "crd_established", "name": "a", "interval": 0}}]},
            "must be greater than zero",
        ),
        (
            {"steps": [{"name": "x", "wait": {"condition": "crd_established", "name": "a", "backoff": 0.5}}]},
            "backoff must be a number >= 1.0",
        ),
        (
            {"steps": [{"name": "x", "policy": "maybe", "apply": [{"kind": "Namespace", "name": "a"}]}]},
            "policy must be 'fatal' or 'advisory'",
        ),
        (
            {"steps": [{"name": "x", "client": "helm", "apply": [{"kind": "Namespace", "name": "a"}]}]},
            "client 'helm' is unknown",
        ),
        (
            {
                "steps": [
                    {"name": "x", "apply": [{"kind": "Namespace", "name": "a"}]},
                    {"name": "x", "apply": [{"kind": "Namespace", "name": "b"}]},
                ]
            },
            "duplicated names: x",
        ),
        ({"policy": "majority"}, "policy: invalid policy"),
        (
            {
                "steps": [
                    {
                        "name": "x",
                        "delete": [{"kind": "pod", "name": "p"}],
                        "ignore_not_found": "yes",
                    }
                ]
            },
            "ignore_not_found must be a boolean",
        ),
    ],
)
def test_parse_workflow_rejects(overrides: dict, match: str) -> None:
    with pytest.raises(WorkflowValidationError, match=match):
        parse_workflow(_base(**overrides), clients=_clients())


def test_load_workflow_reports_bad_yaml_and_missing_file(tmp_path: Path) -> None:
    bad = tmp_path / "bad.yaml"
    bad.write_text("steps: [unclosed", encoding="utf-8")
    with pytest.raises(WorkflowValidationError, match="invalid YAML"):
        load_workflow(bad, clients=_clients())
    with pytest.raises(WorkflowValidationError, match="cannot read workflow file"):
        load_workflow(tmp_path / "missing.yaml", clients=_clients())
    empty = tmp_path / "empty.yaml"
    empty.write_text("", encoding="utf-8")
    with pytest.raises(WorkflowValidationError, match="must be an object"):
        load_workflow(empty, clients=_clients())


def test_aws_delete_defaults_to_aws_client() -> None:
    clients = _clients()
    wf = parse_workflow(
        _base(steps=[{"name": "rm", "delete": [{"kind": "aws:cloudformation-stack", "name": "eks-east"}]}]),
        clients=clients,
    )
    assert wf.steps[0].client is clients["aws"]


@pytest.mark.parametrize(
    "raw,expected",
    [("250ms", 0.25), ("30s", 30.0), ("10m", 600.0), ("1h", 3600.0), ("45", 45.0), (2.5, 2.5), ("1.5m", 90.0)],
)
def test_parse_duration_s(raw, expected: float) -> None:
    assert parse_duration_s(raw) == expected


@pytest.mark.parametrize(
    "raw", ["", "s", "ten", "-5s", True, -1, "nan", "NaN", "inf", "-inf", "infs", "snan", float("nan"), float("inf")]
)
def test_parse_duration_s_rejects(raw) -> None:
    with pytest.raises(ValueError, match="invalid duration"):
        parse_duration_s(raw)


def test_bundled_example_workflow_loads() -> None:
    path = Path(__file__).resolve().parents[1] / "examples" / "deploy-jenkins.yaml"
    wf = load_workflow(path, clients=_clients())

    assert [t.context for t in wf.targets] == ["multi-region-eks-east", "multi-region-eks-west"]
    namespace = wf.steps[1].action.rendered(wf.targets[1])[0].validate()
    assert namespace.labels["topology.kubernetes.io/region"] == "us-west-2"
    for target in wf.targets:
        for step in wf.steps:
            if isinstance(step.action, ApplyManifests):
                for manifest in step.action.rendered(target):
                    manifest.validate()


@pytest.mark.parametrize("value", ["nan", "inf", float("nan"), float("inf")])
def test_non_finite_timeouts_are_validation_errors(value) -> None:
    wait = {"condition": "crd_established", "name": "a", "timeout": value}
    with pytest.raises(WorkflowValidationError, match=r"steps\[0\].wait.timeout: invalid duration"):
        parse_workflow(_base(steps=[{"name": "x", "wait": wait}]), clients=_clients())
