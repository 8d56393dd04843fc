"""Supervisor facade used by the rest of the application.

PUBLIC API:
  - Supervisor: spawn/write/resize/kill/kill_all/info/list_active/is_supported
"""

import logging
import time
from pathlib import Path
from queue import Queue

from ptyvisor.config import SupervisorConfig
from ptyvisor.events import EventKind, EventQueue, SupervisorEvent, error_output
from ptyvisor.exceptions import SpawnUnavailable, SupervisorError
from ptyvisor.models import SessionInfo
from ptyvisor.registry import SessionRegistry
from ptyvisor.session import TerminalSession, pty_available
from ptyvisor.tree import ProcessTreeInspector, default_process_table

logger = logging.getLogger(__name__)


class Supervisor:
    """
    Launches shell commands in pseudo-terminals and supervises them.

    Events for every session are pushed to one thread-safe Queue. No method
    raises for OS failures: spawn errors become a single output event and
    operations on unknown sessions are logged no-ops.
    """

    def __init__(
        self,
        events: EventQueue | None = None,
        config: SupervisorConfig | None = None,
        inspector: ProcessTreeInspector | None = None,
    ) -> None:
        """
        Initialize the Supervisor.

        Args:
            events: Queue receiving SupervisorEvents. A new one is created if omitted.
            config: Supervisor settings. Defaults to SupervisorConfig().
            inspector: Process tree source shared by all monitor loops.
        """
        self.config = config or SupervisorConfig()
        self.events: EventQueue = events if events is not None else Queue()
        self._inspector = inspector or ProcessTreeInspector(
            default_process_table(self.config.process_table, self.config.ps_timeout)
        )
        self._registry = SessionRegistry()
        self._supported = pty_available()
        if not self._supported:
            logger.warning("Pseudo-terminals are not available on this host; spawns will fail")

    def is_supported(self) -> bool:
        """Check if the pty facility was available at startup."""
        return self._supported

    def spawn(
        self,
        command: str,
        session_id: str,
        cols: int | None = None,
        rows: int | None = None,
        working_dir: str | Path | None = None,
    ) -> bool:
        """Spawn a shell for session_id and dispatch command into it.

        Returns:
            True if a new session was started.
        """
        if not self._registry.reserve(session_id):
            logger.warning(f"Session {session_id} already has an active process")
            return False

        session = TerminalSession(
            session_id,
            command,
            self.events,
            self._inspector,
            self.config,
            cols=cols,
            rows=rows,
            working_dir=working_dir,
            on_exit=self._registry.remove,
        )
        try:
            if not self._supported:
                raise SpawnUnavailable("Terminal functionality not available (ptyprocess missing)")
            session.start()
        except SupervisorError as e:
            kill_requested = self._registry.release(session_id)
            logger.error(f"Failed to spawn PTY for session {session_id}: {e}")
            self.events.put(error_output(session_id, str(e)))
            if kill_requested:
                self.events.put(SupervisorEvent(EventKind.PROCESS_TERMINATED, session_id))
            return False

        kill_requested = self._registry.commit(session)
        session.run()
        if kill_requested:
            logger.info(f"Session {session_id} was killed while spawning")
            session.kill()
        return True

    def write(self, session_id: str, data: bytes | str) -> None:
        """Write raw input to a session."""
        session = self._registry.get(session_id)
        if session is None:
            logger.warning(f"No active PTY found for input on session {session_id}")
            return
        session.write(data)

    def resize(self, session_id: str, cols: int, rows: int) -> None:
        """Resize a session's terminal."""
        session = self._registry.get(session_id)
        if session is None:
            logger.warning(f"No active PTY found to resize for session {session_id}")
            return
        session.resize(cols, rows)

    def kill(self, session_id: str) -> None:
        """Kill a session's shell. Exit is confirmed by a process_terminated event."""
        session, outcome = self._registry.kill_target(session_id)
        if session is not None:
            session.kill()
        elif outcome == "deferred":
            logger.info(f"Session {session_id} is still spawning, killing it once started")
        elif outcome == "exited":
            logger.debug(f"Session {session_id} already exited, nothing to kill")
        else:
            logger.info(f"No active PTY process found for session {session_id} to kill")
            self.events.put(SupervisorEvent(EventKind.PROCESS_TERMINATED, session_id))

    def kill_all(self) -> dict[str, int]:
        """Kill every live session without waiting for exit confirmation.

        Returns:
            Dict with killed_count and total_count.
        """
        session_ids = self._registry.ids()
        killed_count = 0

        for session_id in session_ids:
            session = self._registry.get(session_id)
            if session is not None and session.kill():
                killed_count += 1

        logger.info(f"Killed {killed_count} of {len(session_ids)} PTY processes")
        return {"killed_count": killed_count, "total_count": len(session_ids)}

    def info(self, session_id: str) -> SessionInfo | None:
        """Get a point-in-time view of a live session, or None."""
        session = self._registry.get(session_id)
        return session.info() if session is not None else None

    def list_active(self) -> list[SessionInfo]:
        """Get info for every live session."""
        return [session.info() for session in self._registry.sessions()]

    def shutdown(self, timeout: float = 5.0) -> bool:
        """Kill all sessions and wait for their exit callbacks.

        Returns:
            True if every session exited within the timeout.
        """
        sessions = self._registry.sessions()
        self.kill_all()
        deadline = time.monotonic() + timeout
        for session in sessions:
            if not session.wait_closed(max(0.0, deadline - time.monotonic())):
                logger.warning(f"Session {session.session_id} did not exit within {timeout}s")
                return False
        return True

    def __enter__(self) -> "Supervisor":
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()
