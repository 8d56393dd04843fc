"""Session registry.

PUBLIC API:
  - SessionRegistry: Thread-safe map from session id to TerminalSession
"""

import threading
from collections import deque

from ptyvisor.session import TerminalSession


class SessionRegistry:
    """
    Thread-safe map from session id to its live TerminalSession.

    Ids are reserved before the pty is spawned so two concurrent spawns with
    the same id cannot both succeed; a failed spawn releases the reservation
    and the id never becomes visible. A kill that arrives while the spawn is
    in progress is remembered and handed back on commit or release. Sessions
    are removed only by their exit callback. The ids of recently exited
    sessions are remembered so a late kill can tell "already exited" apart
    from "never existed".
    """

    def __init__(self, exited_history: int = 256) -> None:
        self._sessions: dict[str, TerminalSession] = {}
        self._pending: set[str] = set()
        self._kill_on_commit: set[str] = set()
        self._exited: deque[str] = deque(maxlen=exited_history)
        self._lock = threading.Lock()

    def reserve(self, session_id: str) -> bool:
        """Reserve an id for a session about to spawn.

        Returns:
            False if the id is already live or being spawned.
        """
        with self._lock:
            if session_id in self._sessions or session_id in self._pending:
                return False
            self._pending.add(session_id)
            return True

    def kill_target(self, session_id: str) -> tuple[TerminalSession | None, str]:
        """Resolve a kill request against the registry in one step.

        An id that is still spawning is flagged to be killed once committed.

        Returns:
            Tuple of (session, outcome) where outcome is "live", "deferred",
            "exited" or "unknown". Only "live" carries a session.
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                return session, "live"
            if session_id in self._pending:
                self._kill_on_commit.add(session_id)
                return None, "deferred"
            if session_id in self._exited:
                return None, "exited"
            return None, "unknown"

    def release(self, session_id: str) -> bool:
        """Drop a reservation whose spawn failed.

        Returns:
            True if a kill was requested while the spawn was in progress.
        """
        with self._lock:
            self._pending.discard(session_id)
            if session_id in self._kill_on_commit:
                self._kill_on_commit.discard(session_id)
                return True
            return False

    def commit(self, session: TerminalSession) -> bool:
        """Make a spawned session visible under its reserved id.

        Returns:
            True if a kill was requested while the spawn was in progress.
        """
        session_id = session.session_id
        with self._lock:
            self._pending.discard(session_id)
            self._sessions[session_id] = session
            if session_id in self._kill_on_commit:
                self._kill_on_commit.discard(session_id)
                return True
            return False

    def remove(self, session_id: str) -> TerminalSession | None:
        """Remove a session once its shell has exited."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is not None:
                self._exited.append(session_id)
            return session

    def get(self, session_id: str) -> TerminalSession | None:
        with self._lock:
            return self._sessions.get(session_id)

    def ids(self) -> list[str]:
        """Snapshot of live session ids."""
        with self._lock:
            return list(self._sessions)

    def sessions(self) -> list[TerminalSession]:
        """Snapshot of live sessions."""
        with self._lock:
            return list(self._sessions.values())

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
