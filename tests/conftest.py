"""Shared fixtures for ptyvisor tests."""

import os
import time
from queue import Empty, Queue

import pytest

from ptyvisor.config import SupervisorConfig
from ptyvisor.events import EventKind, SupervisorEvent
from ptyvisor.models import ProcessSnapshot
from ptyvisor.session import pty_available
from ptyvisor.supervisor import Supervisor

requires_pty = pytest.mark.skipif(
    not pty_available() or not os.path.exists("/bin/sh"),
    reason="needs ptyprocess and /bin/sh",
)


def row(pid: int, parent_pid: int, raw_state: str = "S", command: str = "sleep") -> ProcessSnapshot:
    """Build a ProcessSnapshot with dummy resource figures."""
    return ProcessSnapshot(
        pid=pid,
        parent_pid=parent_pid,
        raw_state=raw_state,
        command=command,
        memory=1024,
        cpu_percent=0.0,
    )


class EventLog:
    """Drains a supervisor event queue and lets tests wait for events."""

    def __init__(self, queue: Queue[SupervisorEvent]) -> None:
        self.queue = queue
        self.events: list[SupervisorEvent] = []

    def _find(self, session_id: str, kind: EventKind) -> SupervisorEvent | None:
        for event in self.events:
            if event.session_id == session_id and event.kind == kind:
                return event
        return None

    def wait_for(self, session_id: str, kind: EventKind, timeout: float = 10.0) -> SupervisorEvent:
        """Wait until an event of this kind was emitted for session_id."""
        deadline = time.monotonic() + timeout
        while True:
            found = self._find(session_id, kind)
            if found is not None:
                return found
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise AssertionError(f"No {kind.value} event for {session_id!r} within {timeout}s")
            try:
                self.events.append(self.queue.get(timeout=remaining))
            except Empty:
                continue

    def drain(self, duration: float = 0.0) -> None:
        """Collect everything that arrives within duration seconds."""
        deadline = time.monotonic() + duration
        while True:
            try:
                self.events.append(self.queue.get(timeout=max(0.0, deadline - time.monotonic())))
            except Empty:
                return

    def of(self, session_id: str, kind: EventKind | None = None) -> list[SupervisorEvent]:
        """Events for session_id, excluding output unless asked for."""
        return [
            e
            for e in self.events
            if e.session_id == session_id and (e.kind == kind if kind else e.kind != EventKind.OUTPUT)
        ]


@pytest.fixture
def fast_config() -> SupervisorConfig:
    """Config with short delays and a plain POSIX shell."""
    return SupervisorConfig(
        shell="/bin/sh",
        settle_delay=0.3,
        poll_interval=0.2,
        probe_timeout=5.0,
        quick_check_ticks=5,
    )


@pytest.fixture
def supervisor(fast_config):
    """Supervisor that kills its sessions after the test."""
    sup = Supervisor(config=fast_config)
    try:
        yield sup
    finally:
        sup.shutdown(timeout=5.0)


@pytest.fixture
def event_log(supervisor) -> EventLog:
    return EventLog(supervisor.events)
