from __future__ import annotations

import threading

DEADLINE_EXCEEDED = "deadline_exceeded"


class CancelToken:
    """Cooperative cancellation shared by every poller of a run."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout_s: float) -> bool:
        """Sleep up to ``timeout_s``; returns True early when cancelled."""
        if timeout_s <= 0:
            return self._event.is_set()
        return self._event.wait(timeout_s)


def cancel_after(token: CancelToken, seconds: float, reason: str = DEADLINE_EXCEEDED) -> threading.Timer:
    timer = threading.Timer(seconds, token.cancel, kwargs={"reason": reason})
    timer.daemon = True
    timer.start()
    return timer
