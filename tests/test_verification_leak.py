"""Verification Test: Resource leak check.

Spawns and kills sessions repeatedly and checks that threads, child
processes and file descriptors return to their baseline. Every session owns a
pty fd, two threads and a shell, so a missed exit callback shows up here.
"""

import gc
import threading
import time

import psutil

from conftest import EventLog, requires_pty
from ptyvisor.events import EventKind
from ptyvisor.supervisor import Supervisor


def get_current_memory_mb() -> float:
    """Get current process memory usage in MB."""
    process = psutil.Process()
    return process.memory_info().rss / (1024 * 1024)


def wait_until(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.1)
    return predicate()


@requires_pty
class TestResourceLeakCheck:
    """Leak verification suite tests."""

    def test_spawn_kill_cycles_release_resources(self, fast_config):
        """
        Test that repeated spawn/kill cycles leave nothing behind.

        After every session has reported process_terminated, no reader or
        monitor thread, no child process and no pty fd may remain.
        """
        gc.collect()
        me = psutil.Process()
        baseline_threads = threading.active_count()
        baseline_fds = me.num_fds()

        sup = Supervisor(config=fast_config)
        log = EventLog(sup.events)

        for cycle in range(5):
            ids = [f"leak-{cycle}-{i}" for i in range(3)]
            for session_id in ids:
                assert sup.spawn("sleep 30", session_id)
            for session_id in ids:
                log.wait_for(session_id, EventKind.COMMAND_STARTED)
            sup.kill_all()
            for session_id in ids:
                log.wait_for(session_id, EventKind.PROCESS_TERMINATED)

        assert sup.list_active() == []
        assert wait_until(lambda: not me.children(recursive=True)), "Child processes left behind"
        assert wait_until(lambda: threading.active_count() <= baseline_threads), (
            f"Threads left behind: {[t.name for t in threading.enumerate()]}"
        )
        assert wait_until(lambda: me.num_fds() <= baseline_fds + 2), "File descriptors leaked"

    def test_memory_stability_short(self, fast_config):
        """
        Test that a long-lived monitored session does not grow memory.

        Runs one session for several seconds of polling and checks the RSS
        delta stays small.
        """
        gc.collect()
        sup = Supervisor(config=fast_config)
        log = EventLog(sup.events)

        try:
            assert sup.spawn("sleep 30", "mem")
            log.wait_for("mem", EventKind.COMMAND_STARTED)
            log.drain(1.0)
            initial_memory = get_current_memory_mb()

            log.drain(5.0)
            gc.collect()
            final_memory = get_current_memory_mb()
        finally:
            sup.shutdown(timeout=5.0)

        delta = final_memory - initial_memory
        assert delta < 5.0, f"Memory grew by {delta:.2f}MB while polling"
