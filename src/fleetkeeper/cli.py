"""Command-line interface for FleetKeeper."""

from __future__ import annotations

import argparse
import os
import shutil
import signal
import sys
from dataclasses import replace
from pathlib import Path

from fleetkeeper import __version__ as FK_VERSION
from fleetkeeper.audit.explain import ExplainLog
from fleetkeeper.clients.aws import AwsCliClient
from fleetkeeper.clients.kubectl import KubectlClient
from fleetkeeper.core.cancel import DEADLINE_EXCEEDED, CancelToken
from fleetkeeper.core.errors import ManifestValidationError, WorkflowValidationError
from fleetkeeper.core.fanout import FanOutCoordinator, Policy, parse_policy
from fleetkeeper.core.outcome import OutcomeStatus
from fleetkeeper.core.poller import Poller
from fleetkeeper.core.targets import Target, select_targets
from fleetkeeper.manifests.builders import to_yaml_stream
from fleetkeeper.probes.conditions import CONDITION_NAMES, build_condition, probe_factory
from fleetkeeper.report.summary import render_summary, write_report
from fleetkeeper.workflow.loader import (
    default_interval_s,
    default_probe_timeout_s,
    load_workflow,
    parse_duration_s,
)
from fleetkeeper.workflow.runner import WorkflowRunner
from fleetkeeper.workflow.steps import ApplyManifests

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID = 2
EXIT_CANCELLED = 130


def _parse_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _duration_arg(value: str) -> float:
    try:
        parsed = parse_duration_s(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc
    if parsed <= 0:
        raise argparse.ArgumentTypeError(f"invalid duration: '{value}' (must be > 0)")
    return parsed


def _policy_arg(value: str) -> Policy:
    try:
        return parse_policy(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _error(message: str) -> None:
    print(f"ERROR: {message}", file=sys.stderr)


def _install_sigint(cancel: CancelToken, explain: ExplainLog | None = None):
    def handler(_signum, _frame) -> None:
        if explain is not None:
            explain.emit("cancel_requested", {"reason": "interrupted"})
        print("Interrupt received; stopping pollers...", file=sys.stderr)
        cancel.cancel("interrupted")

    return signal.signal(signal.SIGINT, handler)


def cmd_run(args: argparse.Namespace) -> int:
    workflow_path = Path(args.workflow)
    try:
        workflow = load_workflow(workflow_path)
        targets = select_targets(workflow.targets, _parse_csv(args.targets))
    except (WorkflowValidationError, ValueError) as exc:
        _error(str(exc))
        return EXIT_INVALID

    workflow = replace(
        workflow,
        targets=targets,
        policy=args.policy or workflow.policy,
        deadline_s=args.deadline if args.deadline is not None else workflow.deadline_s,
    )
    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)
    explain = ExplainLog(out_dir / "explain.jsonl")
    cancel = CancelToken()
    previous = _install_sigint(cancel, explain)
    try:
        result = WorkflowRunner(explain=explain, cancel=cancel).run(workflow)
    finally:
        signal.signal(signal.SIGINT, previous)

    latest, _summary = write_report(out_dir, result, workflow_path=str(workflow_path))
    print(render_summary(result), end="")
    print(f"Report: {latest}")
    if result.cancelled and result.cancel_reason != DEADLINE_EXCEEDED:
        return EXIT_CANCELLED
    return EXIT_OK if result.success else EXIT_FAILED


def cmd_validate(args: argparse.Namespace) -> int:
    try:
        workflow = load_workflow(Path(args.workflow))
        for step in workflow.steps:
            if isinstance(step.action, ApplyManifests):
                for target in workflow.targets:
                    for manifest in step.action.rendered(target):
                        manifest.validate()
    except (WorkflowValidationError, ManifestValidationError) as exc:
        _error(str(exc))
        return EXIT_INVALID
    print(
        f"OK {workflow.name}: {len(workflow.targets)} targets, {len(workflow.steps)} steps, "
        f"policy {workflow.policy.value}"
    )
    return EXIT_OK


def cmd_render(args: argparse.Namespace) -> int:
    try:
        workflow = load_workflow(Path(args.workflow))
        targets = select_targets(workflow.targets, [args.target] if args.target else [])
        manifests = []
        for target in targets:
            for step in workflow.steps:
                if isinstance(step.action, ApplyManifests):
                    manifests.extend(m.validate() for m in step.action.rendered(target))
    except (WorkflowValidationError, ManifestValidationError, ValueError) as exc:
        _error(str(exc))
        return EXIT_INVALID
    sys.stdout.write(to_yaml_stream(manifests))
    return EXIT_OK


def cmd_wait(args: argparse.Namespace) -> int:
    contexts: list[str] = []
    for raw in args.context or []:
        contexts.extend(_parse_csv(raw))
    contexts = list(dict.fromkeys(contexts))
    if not contexts:
        _error("at least one --context is required")
        return EXIT_INVALID
    try:
        spec = build_condition(
            args.condition,
            name=args.name,
            kind=args.kind,
            namespace=args.namespace,
            condition_type=args.type,
            interval_s=args.interval or default_interval_s(),
            deadline_s=args.timeout,
            probe_timeout_s=args.probe_timeout or default_probe_timeout_s(),
        )
    except ValueError as exc:
        _error(str(exc))
        return EXIT_INVALID

    if spec.ref.is_aws and not args.region:
        _error(f"--region is required for {args.condition}")
        return EXIT_INVALID
    client = AwsCliClient() if spec.ref.is_aws else KubectlClient()
    targets = [Target(name=ctx, region=args.region or "", context=ctx) for ctx in contexts]
    explain = ExplainLog(Path(args.out) / "explain.jsonl") if args.out else None
    coordinator = FanOutCoordinator(poller_factory=lambda _target: Poller(explain=explain))
    cancel = CancelToken()
    previous = _install_sigint(cancel, explain)
    try:
        fanout = coordinator.run(targets, probe_factory(client, spec), spec, args.policy, cancel)
    finally:
        signal.signal(signal.SIGINT, previous)

    for name, outcome in fanout.outcomes.items():
        mark = "PASS" if outcome.ok else "FAIL"
        line = f"{mark} {name}: {outcome.status.value}"
        if outcome.value is not None:
            line += f" ({outcome.value})"
        if outcome.detail and outcome.status != OutcomeStatus.SATISFIED:
            line += f" - {outcome.detail}"
        print(line)
    print(f"Wait result: {'PASS' if fanout.success else 'FAIL'} ({spec.description})")
    if cancel.cancelled:
        return EXIT_CANCELLED
    return EXIT_OK if fanout.success else EXIT_FAILED


def _collect_doctor_checks() -> tuple[list[dict], bool]:
    checks: list[dict] = []
    kubectl = str(os.environ.get("KUBECTL", "")).strip() or "kubectl"
    checks.append(
        {
            "label": "kubectl present",
            "ok": bool(shutil.which(kubectl)),
            "hint": "Install kubectl and add it to PATH (or set KUBECTL).",
        }
    )
    aws = str(os.environ.get("AWS_CLI", "")).strip() or "aws"
    checks.append(
        {
            "label": "aws cli present",
            "ok": bool(shutil.which(aws)),
            "hint": "Install AWS CLI v2 and add it to PATH (or set AWS_CLI).",
        }
    )
    kubeconfig_raw = str(os.environ.get("KUBECONFIG", "")).strip()
    kubeconfig_path = (
        Path(kubeconfig_raw.split(os.pathsep)[0]) if kubeconfig_raw else Path.home() / ".kube" / "config"
    )
    checks.append(
        {
            "label": f"kubeconfig readable ({kubeconfig_path})",
            "ok": kubeconfig_path.is_file() and os.access(kubeconfig_path, os.R_OK),
            "hint": "Run `aws eks update-kubeconfig --region <region> --name <cluster> --alias <context>`.",
        }
    )
    ok = all(bool(item.get("ok")) for item in checks)
    return checks, ok


def cmd_doctor(_args: argparse.Namespace) -> int:
    checks, ok = _collect_doctor_checks()
    for check in checks:
        if check["ok"]:
            print(f"PASS {check['label']}")
            continue
        print(f"FAIL {check['label']}")
        print(f"  hint: {check['hint']}")
    print(f"Doctor result: {'PASS' if ok else 'FAIL'}")
    return EXIT_OK if ok else EXIT_INVALID


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fk")
    parser.add_argument("--version", action="version", version=f"fleetkeeper {FK_VERSION}")

    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run a workflow across its targets")
    run.add_argument("--workflow", required=True, help="Path to workflow YAML")
    run.add_argument("--targets", help="Comma-separated subset of target names")
    run.add_argument(
        "--policy",
        type=_policy_arg,
        help="Override workflow policy (best_effort or all_must_succeed)",
    )
    run.add_argument("--deadline", type=_duration_arg, help="Workflow-wide deadline (e.g. 30m)")
    run.add_argument("--out", default="report", help="Output directory")
    run.set_defaults(func=cmd_run)

    validate = sub.add_parser("validate", help="Validate a workflow file and its manifests")
    validate.add_argument("--workflow", required=True, help="Path to workflow YAML")
    validate.set_defaults(func=cmd_validate)

    render = sub.add_parser("render", help="Print rendered manifests as a YAML stream")
    render.add_argument("--workflow", required=True, help="Path to workflow YAML")
    render.add_argument("--target", help="Render for one target only")
    render.set_defaults(func=cmd_render)

    wait = sub.add_parser("wait", help="Wait for a condition on one or more contexts")
    wait.add_argument(
        "--context",
        action="append",
        help="Kube context (repeatable or comma-separated)",
    )
    wait.add_argument("--region", help="AWS region (for aws conditions)")
    wait.add_argument("--condition", required=True, choices=CONDITION_NAMES, help="Condition name")
    wait.add_argument("--kind", help="Resource kind (condition_true, resource_deleted)")
    wait.add_argument("--name", required=True, help="Resource name")
    wait.add_argument("--namespace", help="Resource namespace")
    wait.add_argument("--type", help="Condition type for condition_true (default Ready)")
    wait.add_argument("--timeout", type=_duration_arg, default=300.0, help="Deadline (default 5m)")
    wait.add_argument("--interval", type=_duration_arg, help="Poll interval")
    wait.add_argument("--probe-timeout", type=_duration_arg, help="Timeout per probe call")
    wait.add_argument("--policy", type=_policy_arg, default="best_effort", help="Fan-out policy")
    wait.add_argument("--out", help="Directory for explain.jsonl")
    wait.set_defaults(func=cmd_wait)

    doctor = sub.add_parser("doctor", help="Check local prerequisites")
    doctor.set_defaults(func=cmd_doctor)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
