"""Terminal session supervision.

A TerminalSession owns one shell running inside a pseudo-terminal and two
daemon threads:

- the reader thread forwards pty output, watches it for the exit-code probe
  result and runs the exit callback once the shell has exited;
- the monitor thread dispatches the command after a settle delay, then polls
  the shell's process tree and reports status transitions.

Every CommandState mutation and every lifecycle event happens under the
session lock. Writes to the pty happen outside it.

PUBLIC API:
  - TerminalSession: One supervised pty session
  - pty_available: Whether ptyprocess can be used on this host
"""

import logging
import os
import select
import signal
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

import psutil

from ptyvisor.config import SupervisorConfig
from ptyvisor.events import EventKind, EventQueue, SupervisorEvent, error_output
from ptyvisor.exceptions import ExitCodeUnrecoverable, ProcessListUnavailable, SpawnFailed, SpawnUnavailable
from ptyvisor.models import CommandState, CommandStatus, ProcessSnapshot, SessionInfo
from ptyvisor.probe import ExitProbe
from ptyvisor.states import aggregate, interpret
from ptyvisor.tree import ProcessTreeInspector

try:
    import ptyprocess
except ImportError:  # Not installable on Windows
    ptyprocess = None

logger = logging.getLogger(__name__)

# Control bytes that flag operator intent on the write path
CTRL_C = b"\x03"
CTRL_D = b"\x04"
CTRL_Z = b"\x1a"

KILL_SIGNAL = getattr(signal, "SIGKILL", signal.SIGTERM)


def pty_available() -> bool:
    """Check if pseudo-terminals can be spawned on this host."""
    return ptyprocess is not None and os.name == "posix"


def _process_detail(row: ProcessSnapshot) -> dict[str, Any]:
    state = interpret(row.raw_state)
    return {
        "pid": row.pid,
        "command": row.command,
        "state": row.raw_state,
        "status": state.status.value,
        "description": state.description,
        "memory": row.memory,
        "cpu_percent": row.cpu_percent,
    }


class TerminalSession:
    """One shell in a pseudo-terminal, with the command dispatched into it."""

    def __init__(
        self,
        session_id: str,
        command: str,
        events: EventQueue,
        inspector: ProcessTreeInspector,
        config: SupervisorConfig,
        cols: int | None = None,
        rows: int | None = None,
        working_dir: str | Path | None = None,
        on_exit: Callable[[str], None] | None = None,
    ) -> None:
        """
        Initialize the session without spawning anything.

        Args:
            session_id: Caller supplied unique id.
            command: Shell line to dispatch once the shell has settled.
            events: Queue receiving this session's events.
            inspector: Process tree source for the monitor loop.
            config: Shared supervisor settings.
            cols: Terminal width. Defaults to config.default_cols.
            rows: Terminal height. Defaults to config.default_rows.
            working_dir: Shell working directory. Defaults to the cwd.
            on_exit: Called with session_id from the exit callback.
        """
        self.session_id = session_id
        self.command = command
        self.cols = cols or config.default_cols
        self.rows = rows or config.default_rows
        self.working_dir = str(working_dir) if working_dir else os.getcwd()
        self.state: CommandState | None = CommandState()
        self.probe = ExitProbe()
        self.terminated = False
        self.closing = False
        self.exit_code: int | None = None
        self.signal: int | None = None

        self._events = events
        self._inspector = inspector
        self._config = config
        self._on_exit = on_exit
        self._lock = threading.Lock()
        self._pty = None
        self._reader: threading.Thread | None = None
        self._monitor: threading.Thread | None = None
        self._probe_timer: threading.Timer | None = None
        self._exited = threading.Event()

    @property
    def pid(self) -> int | None:
        """PID of the shell running in the pty."""
        return self._pty.pid if self._pty is not None else None

    # ----- Lifecycle -----

    def start(self) -> None:
        """Spawn the shell in a new pseudo-terminal.

        Raises:
            SpawnUnavailable: If ptyprocess cannot be used on this host.
            SpawnFailed: If the OS refuses to spawn the shell.
        """
        if not pty_available():
            raise SpawnUnavailable("Terminal functionality not available (ptyprocess missing)")

        try:
            self._pty = ptyprocess.PtyProcess.spawn(
                [self._config.shell],
                cwd=self.working_dir,
                env=self._config.spawn_env(),
                dimensions=(self.rows, self.cols),
            )
        except (OSError, ptyprocess.PtyProcessError) as e:
            raise SpawnFailed(f"Error spawning terminal: {e}") from e

        logger.info(f"PTY spawned for session {self.session_id} with PID {self._pty.pid}, executing: {self.command}")

    def run(self) -> None:
        """Start the reader and monitor threads."""
        self._reader = threading.Thread(
            target=self._read_loop,
            daemon=True,
            name=f"SessionReader-{self.session_id}",
        )
        self._monitor = threading.Thread(
            target=self._monitor_loop,
            daemon=True,
            name=f"SessionMonitor-{self.session_id}",
        )
        self._reader.start()
        self._monitor.start()

    def wait_closed(self, timeout: float | None = None) -> bool:
        """Wait until the exit callback has run."""
        return self._exited.wait(timeout)

    # ----- Operations -----

    def write(self, data: bytes | str) -> None:
        """Forward input to the pty, flagging interrupt bytes first."""
        if isinstance(data, str):
            data = data.encode()

        with self._lock:
            if self.terminated or self.closing:
                return
            state = self.state
            if state is not None:
                state.ctrl_c_pressed |= CTRL_C in data
                state.ctrl_d_pressed |= CTRL_D in data
                state.ctrl_z_pressed |= CTRL_Z in data

        # The reader may close the pty between the check above and this write
        try:
            self._pty.write(data)
        except (OSError, ValueError) as e:
            logger.warning(f"Write to session {self.session_id} failed: {e}")

    def resize(self, cols: int, rows: int) -> None:
        """Resize the pty. Failures are logged and ignored."""
        try:
            self._pty.setwinsize(rows, cols)
            self.cols, self.rows = cols, rows
        except (OSError, ValueError) as e:
            logger.error(f"Error resizing PTY for session {self.session_id}: {e}")

    def kill(self) -> bool:
        """Forcefully terminate the shell.

        The session stays registered until the exit callback confirms the exit.
        Never signals a shell the reader thread has already reaped.

        Returns:
            True if the signal was delivered (or the shell was already gone).
        """
        with self._lock:
            if self.terminated or self.closing:
                return False
            if self.state is not None:
                self.state.kill_requested = True
            self._emit(EventKind.PROCESS_TERMINATING)

            logger.info(f"Killing PTY process with PID {self.pid} for session {self.session_id}")
            try:
                os.kill(self.pid, KILL_SIGNAL)
            except ProcessLookupError:
                logger.debug(f"PTY process {self.pid} for session {self.session_id} already exited")
            except OSError as e:
                logger.error(f"Failed to kill PTY process {self.pid}: {e}")
                self._events.put(error_output(self.session_id, f"Error killing process: {e}"))
                return False
        return True

    def info(self) -> SessionInfo:
        """Point-in-time view of the session's shell."""
        alive = False
        if self.pid is not None:
            try:
                alive = psutil.Process(self.pid).status() != psutil.STATUS_ZOMBIE
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                pass
        return SessionInfo(
            session_id=self.session_id,
            pid=self.pid,
            alive=alive and not self.terminated,
            exit_code=self.exit_code,
            signal=self.signal,
        )

    # ----- Reader thread -----

    def _read_loop(self) -> None:
        """Forward output until the shell has exited, then run the exit callback."""
        pty = self._pty
        last_alive_check = time.monotonic()

        while True:
            try:
                ready, _, _ = select.select([pty.fd], [], [], self._config.read_timeout)
                if ready:
                    chunk = pty.read(self._config.read_size)
                    self._handle_output(chunk)

                # Orphans may keep the pty open after the shell is gone
                now = time.monotonic()
                if now - last_alive_check >= self._config.read_timeout:
                    last_alive_check = now
                    if not pty.isalive():
                        break
            except EOFError:
                break
            except (OSError, ValueError, ptyprocess.PtyProcessError) as e:
                logger.debug(f"PTY reader for session {self.session_id} stopped: {e}")
                break

        self._handle_exit()

    def _handle_output(self, chunk: bytes) -> None:
        self._events.put(SupervisorEvent(EventKind.OUTPUT, self.session_id, {"data": chunk}))

        if not self.probe.pending:
            return
        code = self.probe.feed(chunk)
        if code is None:
            return

        with self._lock:
            state = self.state
            if self.terminated or state is None or state.finish_reported:
                return
            self._cancel_probe_timer()
            state.exit_code = code
            self._mark_finished(state)
            if code == 0:
                self._report_finished(state, CommandStatus.DONE, "Command completed successfully", exit_code=code)
            else:
                self._report_finished(state, CommandStatus.ERROR, f"Command failed with exit code {code}", exit_code=code)

    def _handle_exit(self) -> None:
        """Exit callback: the only place a session is torn down."""
        # No writes or signals may reach the pty once it is being reaped
        with self._lock:
            if self.closing:
                return
            self.closing = True

        pty = self._pty
        try:
            pty.wait()
        except (OSError, ptyprocess.PtyProcessError) as e:
            logger.debug(f"Waiting on PTY for session {self.session_id} failed: {e}")
        exit_code, exit_signal = pty.exitstatus, pty.signalstatus
        try:
            pty.close(force=True)
        except (OSError, ptyprocess.PtyProcessError) as e:
            logger.debug(f"Closing PTY for session {self.session_id} failed: {e}")

        with self._lock:
            if self.terminated:
                return
            self.terminated = True
            if self.state is not None:
                self.state.monitor_stop.set()
            self._cancel_probe_timer()
            self.state = None
            self.exit_code = exit_code
            self.signal = exit_signal
            if self._on_exit is not None:
                self._on_exit(self.session_id)

            logger.info(f"PTY for session {self.session_id} exited with code {exit_code}, signal {exit_signal}")
            self._emit(EventKind.PROCESS_TERMINATED)
            message = f"\r\nProcess exited with code {exit_code}"
            if exit_signal:
                message += f", signal {exit_signal}"
            self._emit(EventKind.OUTPUT, {"data": f"{message}\r\n".encode()})
            self._emit(EventKind.PROCESS_ENDED, {"code": exit_code, "signal": exit_signal})

        self._exited.set()

    # ----- Monitor thread -----

    def _monitor_loop(self) -> None:
        """Dispatch the command, then poll the process tree until finished."""
        state = self.state
        if state is None or state.monitor_stop.wait(self._config.settle_delay):
            return
        if not self._dispatch(state):
            return

        while not state.monitor_stop.wait(self._config.poll_interval):
            try:
                self._tick(state)
            except ProcessListUnavailable as e:
                logger.debug(f"No process information for session {self.session_id} this tick: {e}")
            except Exception:
                logger.exception(f"Monitor tick failed for session {self.session_id}")

    def _dispatch(self, state: CommandState) -> bool:
        with self._lock:
            if self.terminated or self.closing or state.kill_requested:
                return False
        try:
            self._pty.write(f"{self.command}{self._config.line_terminator}".encode())
        except (OSError, ValueError) as e:
            logger.error(f"Failed to dispatch command to session {self.session_id}: {e}")
            return False
        with self._lock:
            state.command_sent = True
        logger.info(f"Dispatched command to session {self.session_id}")
        return True

    def _workload(self, rows: list[ProcessSnapshot]) -> list[ProcessSnapshot]:
        """Drop the supervisor's own bookkeeping processes."""
        ignored = self._config.ignored_commands
        return [r for r in rows if os.path.basename(r.command) not in ignored]

    def _tick(self, state: CommandState) -> None:
        """One poll of the shell's process tree."""
        if state.command_finished or state.kill_requested or self.terminated:
            return

        processes = self._workload(self._inspector.list_descendants(self.pid))
        send_probe = False

        with self._lock:
            if self.terminated or state.command_finished or state.kill_requested:
                return

            if processes:
                self._observe(state, processes)
                return

            if state.command_process_detected:
                self._mark_finished(state)
                if state.ctrl_c_pressed:
                    self._report_finished(state, CommandStatus.STOPPED, "terminated (Ctrl+C)", was_killed=True)
                elif state.ctrl_d_pressed:
                    self._report_finished(state, CommandStatus.STOPPED, "terminated by EOF", was_eof=True)
                else:
                    send_probe = not self.probe.pending
                    self._arm_probe_timer()
            elif not self.probe.pending:
                state.idle_ticks += 1
                if state.idle_ticks >= self._config.quick_check_ticks:
                    logger.debug(f"No command process seen in session {self.session_id}, probing exit code")
                    send_probe = True
                    self._arm_probe_timer()

            if send_probe:
                self.probe.arm()

        if send_probe:
            self._send_probe()

    def _observe(self, state: CommandState, processes: list[ProcessSnapshot]) -> None:
        pids = {p.pid for p in processes}
        if not state.command_process_detected:
            state.command_process_detected = True
            logger.info(f"Command started in session {self.session_id}: pids {sorted(pids)}")
            self._emit(EventKind.COMMAND_STARTED)
        state.tracked_pids.update(pids)
        # A quick-check probe is still queued in the shell; wait for the command
        self._cancel_probe_timer()

        status, description = aggregate(interpret(p.raw_state) for p in processes)
        if status == state.last_reported_status:
            return
        state.last_reported_status = status
        logger.debug(f"Session {self.session_id} status: {status.value}")
        self._emit(
            EventKind.COMMAND_STATUS_UPDATE,
            {
                "status": status.value,
                "description": description,
                "process_details": [_process_detail(p) for p in processes],
                "process_count": len(processes),
            },
        )

    def _mark_finished(self, state: CommandState) -> None:
        state.command_finished = True
        state.monitor_stop.set()

    def _report_finished(self, state: CommandState, status: CommandStatus, exit_status: str, **extra: Any) -> None:
        if state.finish_reported:
            return
        state.finish_reported = True
        logger.info(f"Command in session {self.session_id} finished: {exit_status}")
        self._emit(EventKind.COMMAND_FINISHED, {"status": status.value, "exit_status": exit_status, **extra})

    # ----- Exit probe -----

    def _send_probe(self) -> None:
        try:
            self._pty.write(self.probe.command(self._config.line_terminator).encode())
        except (OSError, ValueError) as e:
            logger.debug(f"Could not write exit probe to session {self.session_id}: {e}")

    def _arm_probe_timer(self) -> None:
        self._cancel_probe_timer()
        self._probe_timer = threading.Timer(self._config.probe_timeout, self._on_probe_timeout)
        self._probe_timer.daemon = True
        self._probe_timer.start()

    def _cancel_probe_timer(self) -> None:
        if self._probe_timer is not None:
            self._probe_timer.cancel()
            self._probe_timer = None

    def _on_probe_timeout(self) -> None:
        with self._lock:
            state = self.state
            if self.terminated or state is None or state.finish_reported or state.kill_requested:
                return
            error = ExitCodeUnrecoverable(f"no exit code marker within {self._config.probe_timeout}s")
            logger.warning(f"Session {self.session_id}: {error}")
            self._mark_finished(state)
            self._report_finished(state, CommandStatus.DONE, "Command completed (exit code unknown)", exit_code=None)

    def _emit(self, kind: EventKind, payload: dict[str, Any] | None = None) -> None:
        self._events.put(SupervisorEvent(kind, self.session_id, payload or {}))
