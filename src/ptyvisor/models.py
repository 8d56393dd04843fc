"""Data models for ptyvisor."""

import threading
from dataclasses import dataclass, field
from enum import Enum


class ProcessStatus(Enum):
    """Normalized status of a single OS process."""

    RUNNING = "running"
    SLEEPING = "sleeping"
    WAITING = "waiting"
    STOPPED = "stopped"
    ZOMBIE = "zombie"
    DEAD = "dead"
    IDLE = "idle"
    PAGING = "paging"
    UNKNOWN = "unknown"


class CommandStatus(Enum):
    """Status reported for a dispatched command as a whole."""

    RUNNING = "running"
    SLEEPING = "sleeping"
    WAITING = "waiting"
    FINISHING = "finishing"
    PAUSED = "paused"
    DONE = "done"
    ERROR = "error"
    STOPPED = "stopped"


@dataclass(slots=True, frozen=True)
class ProcessSnapshot:
    """Immutable snapshot of one process at one poll tick."""

    pid: int
    parent_pid: int
    raw_state: str  # 'R', 'S+', 'Ss', 'Z', etc.
    command: str
    memory: int  # RSS in kilobytes
    cpu_percent: float


@dataclass(slots=True, frozen=True)
class InterpretedState:
    """Normalized status plus a human readable description."""

    status: ProcessStatus
    description: str


@dataclass(slots=True)
class CommandState:
    """Mutable bookkeeping for the command dispatched into one session."""

    command_sent: bool = False
    command_process_detected: bool = False
    command_finished: bool = False
    tracked_pids: set[int] = field(default_factory=set)
    exit_code: int | None = None
    ctrl_c_pressed: bool = False
    ctrl_d_pressed: bool = False
    ctrl_z_pressed: bool = False
    kill_requested: bool = False
    finish_reported: bool = False
    last_reported_status: CommandStatus | None = None
    idle_ticks: int = 0
    monitor_stop: threading.Event = field(default_factory=threading.Event)


@dataclass(slots=True, frozen=True)
class SessionInfo:
    """Point-in-time view of a live session."""

    session_id: str
    pid: int | None
    alive: bool
    exit_code: int | None
    signal: int | None

    def to_dict(self) -> dict:
        """Convert to dictionary representation."""
        return {
            "session_id": self.session_id,
            "pid": self.pid,
            "alive": self.alive,
            "exit_code": self.exit_code,
            "signal": self.signal,
        }
