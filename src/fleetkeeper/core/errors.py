from __future__ import annotations


class FleetkeeperError(Exception):
    """Base class for fleetkeeper errors."""


class TransientQueryError(FleetkeeperError):
    """A read-only query failed in a way that may resolve on retry."""


class TerminalResourceError(FleetkeeperError):
    """The queried resource reported an explicit, non-recoverable error state."""


class DeadlineExceeded(FleetkeeperError):
    """A poll ran past its deadline while the condition was still pending."""


class ActionApplyError(FleetkeeperError):
    """A side-effecting action was rejected. Never retried."""

    def __init__(
        self,
        message: str,
        *,
        rc: int | None = None,
        stderr: str | None = None,
        diagnostic: dict | None = None,
    ) -> None:
        super().__init__(message)
        self.rc = rc
        self.stderr = stderr
        self.diagnostic = diagnostic

    def to_dict(self) -> dict:
        return {
            "message": str(self),
            "rc": self.rc,
            "stderr": self.stderr,
            "diagnostic": self.diagnostic,
        }


class ManifestValidationError(ValueError):
    """Raised when a manifest fails validation before apply."""


class WorkflowValidationError(ValueError):
    """Raised when a workflow file fails validation."""
