"""Verification Test: Load Test - many concurrent sessions.

Runs many sessions at once and checks each one is monitored independently,
including when the process table is slow for one of them.
"""

import os
import time

import pytest

from conftest import EventLog, requires_pty
from ptyvisor.events import EventKind
from ptyvisor.supervisor import Supervisor
from ptyvisor.tree import ProcessTreeInspector


class SlowForOneRoot(ProcessTreeInspector):
    """Inspector that hangs whenever it is asked about one particular shell."""

    def __init__(self, delay: float) -> None:
        super().__init__()
        self.delay = delay
        self.slow_pid: int | None = None

    def list_descendants(self, root_pid: int):
        if root_pid == self.slow_pid:
            time.sleep(self.delay)
        return super().list_descendants(root_pid)


@requires_pty
class TestLoadTest:
    """Load test verification suite tests."""

    def test_many_concurrent_sessions(self, fast_config):
        """
        Test that every session of a large batch reports its own lifecycle.

        In CI environments, we scale down the number of sessions to avoid
        resource exhaustion while still validating the behavior.
        """
        is_ci = os.environ.get("CI", "false").lower() == "true"
        num_sessions = 8 if is_ci else 20

        sup = Supervisor(config=fast_config)
        log = EventLog(sup.events)
        ids = [f"load-{i}" for i in range(num_sessions)]

        try:
            for session_id in ids:
                assert sup.spawn("sleep 2", session_id)
            assert len(sup.list_active()) == num_sessions

            for session_id in ids:
                finished = log.wait_for(session_id, EventKind.COMMAND_FINISHED, timeout=30.0)
                assert finished.payload["exit_code"] == 0
        finally:
            sup.shutdown(timeout=10.0)

        log.drain(0.5)
        for session_id in ids:
            assert len(log.of(session_id, EventKind.COMMAND_STARTED)) == 1
            assert len(log.of(session_id, EventKind.PROCESS_TERMINATED)) == 1

    def test_slow_process_table_does_not_stall_others(self, fast_config):
        """Test a hanging listing for one session leaves the others on schedule."""
        inspector = SlowForOneRoot(delay=10.0)
        sup = Supervisor(config=fast_config, inspector=inspector)
        log = EventLog(sup.events)

        try:
            assert sup.spawn("sleep 30", "slow")
            inspector.slow_pid = sup.info("slow").pid
            assert sup.spawn("sleep 1", "fast")

            start = time.monotonic()
            log.wait_for("fast", EventKind.COMMAND_FINISHED, timeout=8.0)
            assert time.monotonic() - start < 8.0
            assert log.of("slow", EventKind.COMMAND_STARTED) == []
        finally:
            sup.shutdown(timeout=5.0)

    @pytest.mark.parametrize("process_table", ["ps", "psutil"])
    def test_both_process_tables_track_commands(self, fast_config, process_table):
        """Test either table source drives a command to completion."""
        if process_table == "ps" and not os.path.exists("/bin/ps") and not os.path.exists("/usr/bin/ps"):
            pytest.skip("ps is not installed")
        fast_config.process_table = process_table
        sup = Supervisor(config=fast_config)
        log = EventLog(sup.events)

        try:
            assert sup.spawn("sleep 1", "table")
            log.wait_for("table", EventKind.COMMAND_STARTED)
            finished = log.wait_for("table", EventKind.COMMAND_FINISHED, timeout=15.0)
            assert finished.payload["status"] == "done"
        finally:
            sup.shutdown(timeout=5.0)
