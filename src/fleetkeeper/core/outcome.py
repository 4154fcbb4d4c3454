from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ProbeStatus(str, Enum):
    PENDING = "pending"
    SATISFIED = "satisfied"
    FAILED = "failed"


@dataclass(frozen=True)
class ProbeResult:
    status: ProbeStatus
    value: object = None
    reason: str | None = None
    # Set when a transient query error was folded into Pending.
    diagnostic: str | None = None

    @classmethod
    def pending(cls, value: object = None, diagnostic: str | None = None) -> ProbeResult:
        return cls(ProbeStatus.PENDING, value=value, diagnostic=diagnostic)

    @classmethod
    def satisfied(cls, value: object = None) -> ProbeResult:
        return cls(ProbeStatus.SATISFIED, value=value)

    @classmethod
    def failed(cls, reason: str, value: object = None) -> ProbeResult:
        return cls(ProbeStatus.FAILED, value=value, reason=reason)

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "value": self.value,
            "reason": self.reason,
            "diagnostic": self.diagnostic,
        }


class OutcomeStatus(str, Enum):
    SATISFIED = "satisfied"
    TIMED_OUT = "timed_out"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Outcome:
    status: OutcomeStatus
    value: object = None
    detail: str | None = None
    attempts: int = 0
    elapsed_s: float = 0.0

    @classmethod
    def satisfied(cls, value: object, *, attempts: int, elapsed_s: float) -> Outcome:
        return cls(OutcomeStatus.SATISFIED, value=value, attempts=attempts, elapsed_s=elapsed_s)

    @classmethod
    def timed_out(
        cls,
        last_value: object,
        *,
        attempts: int,
        elapsed_s: float,
        diagnostic: str | None = None,
    ) -> Outcome:
        return cls(
            OutcomeStatus.TIMED_OUT,
            value=last_value,
            detail=diagnostic,
            attempts=attempts,
            elapsed_s=elapsed_s,
        )

    @classmethod
    def failed(cls, detail: str, *, value: object = None, attempts: int = 0, elapsed_s: float = 0.0) -> Outcome:
        return cls(OutcomeStatus.FAILED, value=value, detail=detail, attempts=attempts, elapsed_s=elapsed_s)

    @classmethod
    def cancelled(cls, last_value: object, *, attempts: int, elapsed_s: float) -> Outcome:
        return cls(
            OutcomeStatus.CANCELLED,
            value=last_value,
            detail="cancelled",
            attempts=attempts,
            elapsed_s=elapsed_s,
        )

    @property
    def ok(self) -> bool:
        return self.status == OutcomeStatus.SATISFIED

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "value": self.value,
            "detail": self.detail,
            "attempts": self.attempts,
            "elapsed_s": round(self.elapsed_s, 3),
        }
