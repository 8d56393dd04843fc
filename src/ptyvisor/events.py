"""Events emitted by the supervisor."""

from dataclasses import dataclass, field
from enum import Enum
from queue import Queue
from typing import Any


class EventKind(Enum):
    """Kinds of supervisor events."""

    OUTPUT = "output"
    COMMAND_STARTED = "command_started"
    COMMAND_STATUS_UPDATE = "command_status_update"
    COMMAND_FINISHED = "command_finished"
    PROCESS_TERMINATING = "process_terminating"
    PROCESS_TERMINATED = "process_terminated"
    PROCESS_ENDED = "process_ended"


@dataclass(slots=True, frozen=True)
class SupervisorEvent:
    """One event for one session, as pushed to the event queue."""

    kind: EventKind
    session_id: str
    payload: dict[str, Any] = field(default_factory=dict)


EventQueue = Queue[SupervisorEvent]


def error_output(session_id: str, message: str) -> SupervisorEvent:
    """Build an output event carrying a user visible error line."""
    return SupervisorEvent(EventKind.OUTPUT, session_id, {"data": f"\r\nError: {message}\r\n".encode()})
