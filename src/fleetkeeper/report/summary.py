from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

from fleetkeeper import __version__
from fleetkeeper.workflow.runner import WorkflowResult
from fleetkeeper.workflow.steps import StepStatus

REPORT_SCHEMA = "workflow_report.v0"

_STEP_MARK = {
    StepStatus.SUCCEEDED: "PASS",
    StepStatus.SUCCEEDED_WITH_WARNING: "WARN",
    StepStatus.FAILED: "FAIL",
}


def build_report(result: WorkflowResult, *, workflow_path: str | None = None) -> dict:
    payload = result.to_dict()
    payload["schema"] = REPORT_SCHEMA
    payload["fleetkeeper_version"] = __version__
    payload["workflow_path"] = workflow_path
    return payload


def render_summary(result: WorkflowResult) -> str:
    verdict = "PASS" if result.success else "FAIL"
    lines = [
        f"# Workflow {result.workflow}",
        "",
        f"- Result: {verdict} (policy {result.policy.value})",
    ]
    if result.cancelled:
        lines.append(f"- Cancelled: {result.cancel_reason or 'yes'}")
    counts = ", ".join(f"{k}={v}" for k, v in result.counts.items() if v)
    lines.append(f"- Targets: {counts or 'none'}")
    for name, report in result.targets.items():
        lines += ["", f"## {name} ({report.target.region}, {report.target.context}): {report.status.value}"]
        if report.halted_at:
            lines.append(f"Halted at step `{report.halted_at}`.")
        for step in report.steps:
            line = f"- {_STEP_MARK[step.status]} {step.step}"
            if step.detail:
                line += f": {step.detail}"
            lines.append(line)
            for warning in step.warnings:
                lines.append(f"  - warning: {warning}")
            if step.error and step.error.get("diagnostic"):
                lines.append(f"  - hint: {step.error['diagnostic'].get('hint')}")
    return "\n".join(lines) + "\n"


def _write_json(path: Path, payload: dict) -> None:
    path.write_text(
        json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True, default=str) + "\n",
        encoding="utf-8",
    )


def write_report(out_dir: Path, result: WorkflowResult, *, workflow_path: str | None = None) -> tuple[Path, Path]:
    """Write the latest + timestamped JSON reports and summary.md; returns (latest, summary)."""
    out_dir.mkdir(parents=True, exist_ok=True)
    payload = build_report(result, workflow_path=workflow_path)
    ts = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    latest = out_dir / "workflow_report_latest.json"
    _write_json(out_dir / f"workflow_report_{ts}.json", payload)
    _write_json(latest, payload)
    summary = out_dir / "summary.md"
    summary.write_text(render_summary(result), encoding="utf-8")
    return latest, summary
