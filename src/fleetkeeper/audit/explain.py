from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path


@dataclass
class ExplainLog:
    """JSONL event log. Events stay in memory only when ``path`` is None."""

    path: Path | None = None
    events: list[dict] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def emit(self, event: str, payload: dict) -> None:
        record = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "event": event,
            "payload": payload,
        }
        with self._lock:
            if self.path is None:
                self.events.append(record)
                return
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")

    def records(self) -> list[dict]:
        with self._lock:
            if self.path is None:
                return list(self.events)
            if not self.path.exists():
                return []
            with self.path.open("r", encoding="utf-8") as f:
                return [json.loads(line) for line in f if line.strip()]

    def of_kind(self, event: str) -> list[dict]:
        return [record for record in self.records() if record["event"] == event]
