from __future__ import annotations

import subprocess


def run_cmd(argv: list[str], timeout_s: float = 20.0, input_text: str | None = None) -> dict:
    """Run command capturing stdout/stderr. Never raises; returns a dict."""
    try:
        cp = subprocess.run(
            argv,
            capture_output=True,
            text=True,
            timeout=timeout_s,
            input=input_text,
        )
        return {
            "argv": argv,
            "ok": cp.returncode == 0,
            "rc": cp.returncode,
            "stdout": cp.stdout,
            "stderr": cp.stderr,
            "error": None,
        }
    except FileNotFoundError as e:
        return {
            "argv": argv,
            "ok": False,
            "rc": 127,
            "stdout": "",
            "stderr": str(e),
            "error": "not_found",
        }
    except subprocess.TimeoutExpired as e:
        return {
            "argv": argv,
            "ok": False,
            "rc": 124,
            "stdout": _as_text(e.stdout),
            "stderr": _as_text(e.stderr),
            "error": "timeout",
        }


def _as_text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def first_line(text: str | None, limit: int = 300) -> str:
    for line in (text or "").splitlines():
        stripped = line.strip()
        if stripped:
            return stripped[:limit]
    return ""


def split_warnings(stderr: str | None) -> list[str]:
    warnings: list[str] = []
    for line in (stderr or "").splitlines():
        stripped = line.strip()
        if stripped.lower().startswith("warning:"):
            warnings.append(stripped)
    return warnings
