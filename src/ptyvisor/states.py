"""Process state interpretation.

Decodes ps-style state codes (a base letter followed by modifier flags) into
a normalized status, and folds the states of every process belonging to a
command into one aggregate status.

PUBLIC API:
  - interpret: Map a raw state code to an InterpretedState
  - aggregate: Derive the command status from interpreted process states
  - BASE_STATES: Base letter lookup table
  - MODIFIERS: Modifier flag lookup table
"""

from collections.abc import Iterable

from ptyvisor.models import CommandStatus, InterpretedState, ProcessStatus

BASE_STATES: dict[str, tuple[ProcessStatus, str]] = {
    "R": (ProcessStatus.RUNNING, "Running or runnable"),
    "S": (ProcessStatus.SLEEPING, "Interruptible sleep (waiting)"),
    "D": (ProcessStatus.WAITING, "Uninterruptible sleep (I/O)"),
    "U": (ProcessStatus.WAITING, "Uninterruptible wait"),
    "T": (ProcessStatus.STOPPED, "Stopped by signal (Ctrl+Z)"),
    "t": (ProcessStatus.STOPPED, "Stopped by debugger during tracing"),
    "Z": (ProcessStatus.ZOMBIE, "Zombie (terminated, not reaped)"),
    "X": (ProcessStatus.DEAD, "Dead"),
    "I": (ProcessStatus.IDLE, "Idle kernel thread"),
    "W": (ProcessStatus.PAGING, "Paging (swapped out)"),
}

MODIFIERS: dict[str, str] = {
    "+": "foreground",
    "<": "high priority",
    "N": "low priority",
    "L": "locked in memory",
    "s": "session leader",
    "l": "multi-threaded",
    "E": "trying to exit",
}

_AGGREGATE_DESCRIPTIONS: dict[CommandStatus, str] = {
    CommandStatus.PAUSED: "Paused (stopped by signal)",
    CommandStatus.FINISHING: "Finishing (waiting to be reaped)",
    CommandStatus.WAITING: "Waiting on I/O",
    CommandStatus.SLEEPING: "Sleeping (waiting for input or events)",
    CommandStatus.RUNNING: "Running",
}


def interpret(raw_state: str) -> InterpretedState:
    """Interpret a raw process state code.

    The first character selects the base status. Every recognized modifier
    after it adds a clause to the description without changing the status.

    Args:
        raw_state: State code as printed by ps (e.g. "S+", "Ss", "R").

    Returns:
        InterpretedState; unknown base codes map to ProcessStatus.UNKNOWN.
    """
    if not raw_state or raw_state[0] not in BASE_STATES:
        return InterpretedState(ProcessStatus.UNKNOWN, f"Unknown state: {raw_state}")

    status, description = BASE_STATES[raw_state[0]]
    flags = [MODIFIERS[c] for c in raw_state[1:] if c in MODIFIERS]
    if flags:
        description = f"{description} ({', '.join(flags)})"
    return InterpretedState(status, description)


def aggregate(states: Iterable[InterpretedState]) -> tuple[CommandStatus, str]:
    """Derive a single command status from its processes' states.

    Precedence: stopped > zombie > uninterruptible wait > all sleeping > running.

    Args:
        states: Interpreted states of every process of the command.

    Returns:
        Tuple of (status, description).
    """
    statuses = {s.status for s in states}

    if ProcessStatus.STOPPED in statuses:
        result = CommandStatus.PAUSED
    elif ProcessStatus.ZOMBIE in statuses:
        result = CommandStatus.FINISHING
    elif ProcessStatus.WAITING in statuses:
        result = CommandStatus.WAITING
    elif statuses and statuses <= {ProcessStatus.SLEEPING, ProcessStatus.IDLE}:
        result = CommandStatus.SLEEPING
    else:
        result = CommandStatus.RUNNING

    return result, _AGGREGATE_DESCRIPTIONS[result]
