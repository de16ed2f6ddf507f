"""
Supervised process handle and exit report.

A SupervisedProcess moves strictly starting -> running -> terminating ->
exited. Exited is terminal; a new launch needs a new handle.
"""

import signal
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ProcessState(str, Enum):
    """Lifecycle states of a supervised child."""

    STARTING = "starting"
    RUNNING = "running"
    TERMINATING = "terminating"
    EXITED = "exited"


_NEXT_STATE = {
    ProcessState.STARTING: ProcessState.RUNNING,
    ProcessState.RUNNING: ProcessState.TERMINATING,
    ProcessState.TERMINATING: ProcessState.EXITED,
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def signal_name(returncode: int | None) -> str | None:
    """Name of the signal that ended a process, from a Popen returncode."""
    if returncode is None or returncode >= 0:
        return None
    try:
        return signal.Signals(-returncode).name
    except ValueError:
        return f"SIG{-returncode}"


@dataclass
class SupervisedProcess:
    """Live handle on one launched artifact process."""

    pid: int
    command: list[str]
    restart_count: int = 0
    state: ProcessState = ProcessState.STARTING
    returncode: int | None = None
    stop_requested: bool = False
    forced: bool = False
    started_at: str = field(default_factory=_now)
    live_at: str | None = None
    exited_at: str | None = None

    @property
    def live_confirmed(self) -> bool:
        return self.live_at is not None

    @property
    def signal_name(self) -> str | None:
        return signal_name(self.returncode)

    def transition(self, new_state: ProcessState) -> None:
        """
        Advance the lifecycle by exactly one step.

        Raises:
            ValueError: If ``new_state`` is not the next state
        """
        if _NEXT_STATE.get(self.state) != new_state:
            raise ValueError(f"Invalid transition {self.state.value} -> {new_state.value}")
        self.state = new_state
        if new_state == ProcessState.EXITED:
            self.exited_at = _now()

    def mark_live(self) -> None:
        if self.live_at is None:
            self.live_at = _now()

    def report(self) -> "ExitReport":
        if self.state != ProcessState.EXITED:
            raise ValueError(f"Process {self.pid} has not exited (state={self.state.value})")
        return ExitReport(
            pid=self.pid,
            returncode=self.returncode,
            signal_name=self.signal_name,
            requested=self.stop_requested,
            forced=self.forced,
            live_confirmed=self.live_confirmed,
            restart_count=self.restart_count,
        )


@dataclass(frozen=True)
class ExitReport:
    """How a supervised process ended, reported upward without retrying."""

    pid: int
    returncode: int | None
    signal_name: str | None
    requested: bool
    forced: bool
    live_confirmed: bool
    restart_count: int = 0

    @property
    def succeeded(self) -> bool:
        """A requested shutdown always counts as success; otherwise the code decides."""
        return self.requested or self.returncode == 0

    def describe(self) -> str:
        if self.signal_name:
            how = f"killed by {self.signal_name}"
        else:
            how = f"exit code {self.returncode}"
        reason = "requested stop" if self.requested else "unexpected exit"
        forced = ", forced" if self.forced else ""
        return f"pid {self.pid}: {how} ({reason}{forced})"

    def to_dict(self) -> dict[str, Any]:
        return {
            "pid": self.pid,
            "returncode": self.returncode,
            "signal": self.signal_name,
            "requested": self.requested,
            "forced": self.forced,
            "live_confirmed": self.live_confirmed,
            "restart_count": self.restart_count,
            "succeeded": self.succeeded,
        }
