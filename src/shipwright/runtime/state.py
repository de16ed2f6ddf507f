"""
Liveness and readiness state of a running service.

The two flags are independent: a process can be live (bound, answering)
long before it is ready (dependencies initialized), and it stays live
while it drains after readiness has been withdrawn for shutdown.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class HealthState:
    """Thread-safe liveness/readiness flags with timestamps."""

    live: bool = False
    ready: bool = False
    live_since: str | None = None
    ready_since: str | None = None
    changed_at: str = field(default_factory=_now)
    reason: str | None = "starting"
    shutting_down: bool = False
    in_flight: int = 0
    dependencies: dict[str, str] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def mark_live(self) -> None:
        with self._lock:
            if not self.live:
                self.live = True
                self.live_since = self.changed_at = _now()

    def mark_ready(self) -> bool:
        """Flip readiness on. Ignored once shutdown has begun; returns the new value."""
        with self._lock:
            if self.shutting_down:
                return False
            if not self.ready:
                self.ready = True
                self.reason = None
                self.ready_since = self.changed_at = _now()
            return True

    def mark_not_ready(self, reason: str) -> None:
        with self._lock:
            self.ready = False
            self.ready_since = None
            self.reason = reason
            self.changed_at = _now()

    def begin_shutdown(self) -> None:
        """Withdraw readiness immediately; liveness is left untouched."""
        with self._lock:
            self.shutting_down = True
        self.mark_not_ready("shutting down")

    def set_dependency(self, name: str, status: str) -> None:
        with self._lock:
            self.dependencies[name] = status

    def request_started(self) -> None:
        with self._lock:
            self.in_flight += 1

    def request_finished(self) -> None:
        with self._lock:
            self.in_flight -= 1

    def liveness(self) -> dict[str, Any]:
        with self._lock:
            return {
                "status": "alive",
                "live_since": self.live_since,
                "in_flight": self.in_flight,
                "shutting_down": self.shutting_down,
                "timestamp": _now(),
            }

    def readiness(self) -> dict[str, Any]:
        with self._lock:
            return {
                "status": "ready" if self.ready else "not_ready",
                "ready": self.ready,
                "ready_since": self.ready_since,
                "reason": self.reason,
                "dependencies": dict(self.dependencies),
                "timestamp": _now(),
            }
