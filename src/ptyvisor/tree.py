"""Process tree inspection.

Reads the whole OS process table in one pass and walks it from a root pid to
collect every transitive descendant.

PUBLIC API:
  - ProcessTable: Protocol for one-shot process table sources
  - PsProcessTable: Table read from a single ps invocation
  - PsutilProcessTable: Table read from a single psutil scan
  - default_process_table: Pick a table source for this host
  - build_children_index: Map parent pid to child pids
  - collect_descendants: Walk an index from a root pid
  - ProcessTreeInspector: list_descendants(root_pid) over a table source
"""

import logging
import os
import shutil
import subprocess
from collections import deque
from typing import Protocol

import psutil

from ptyvisor.exceptions import ProcessListUnavailable
from ptyvisor.models import ProcessSnapshot

logger = logging.getLogger(__name__)

PS_ARGS = ["ps", "-A", "-o", "pid=,ppid=,stat=,rss=,%cpu=,comm="]

# psutil status -> ps base letter
_PSUTIL_STATE_LETTERS = {
    psutil.STATUS_RUNNING: "R",
    psutil.STATUS_SLEEPING: "S",
    psutil.STATUS_DISK_SLEEP: "D",
    psutil.STATUS_STOPPED: "T",
    psutil.STATUS_TRACING_STOP: "t",
    psutil.STATUS_ZOMBIE: "Z",
    psutil.STATUS_DEAD: "X",
    psutil.STATUS_WAKING: "R",
    psutil.STATUS_IDLE: "I",
    psutil.STATUS_LOCKED: "D",
    psutil.STATUS_WAITING: "D",
    psutil.STATUS_PARKED: "I",
}


class ProcessTable(Protocol):
    """A source that returns every process on the host in one shot."""

    def snapshot(self) -> list[ProcessSnapshot]:
        """Return one row per process, raising ProcessListUnavailable on failure."""
        ...


def parse_ps_output(output: str) -> list[ProcessSnapshot]:
    """Parse `ps -o pid=,ppid=,stat=,rss=,%cpu=,comm=` output.

    Rows that do not parse are skipped.

    Args:
        output: Raw stdout of the ps invocation.
    """
    rows = []
    for line in output.splitlines():
        fields = line.split(None, 5)
        if len(fields) < 6:
            continue
        try:
            rows.append(
                ProcessSnapshot(
                    pid=int(fields[0]),
                    parent_pid=int(fields[1]),
                    raw_state=fields[2],
                    command=fields[5].strip(),
                    memory=int(fields[3]),
                    cpu_percent=float(fields[4].replace(",", ".")),
                )
            )
        except ValueError:
            logger.debug(f"Skipping unparsable ps row: {line!r}")
    return rows


class PsProcessTable:
    """Process table read from a single, time-bounded ps invocation."""

    def __init__(self, timeout: float = 2.0) -> None:
        self._timeout = timeout

    def snapshot(self) -> list[ProcessSnapshot]:
        try:
            result = subprocess.run(PS_ARGS, capture_output=True, text=True, timeout=self._timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ProcessListUnavailable(f"ps failed: {e}") from e

        if result.returncode != 0:
            raise ProcessListUnavailable(f"ps exited with {result.returncode}: {result.stderr.strip()}")

        return parse_ps_output(result.stdout)


def _psutil_state_code(info: dict) -> str:
    """Build a ps-style state code from psutil process info."""
    code = _PSUTIL_STATE_LETTERS.get(info.get("status"), "?")

    nice = info.get("nice") or 0
    if nice < 0:
        code += "<"
    elif nice > 0:
        code += "N"

    try:
        if os.getsid(info["pid"]) == info["pid"]:
            code += "s"
    except OSError:
        pass

    if (info.get("num_threads") or 1) > 1:
        code += "l"
    return code


class PsutilProcessTable:
    """Process table read from a single psutil scan.

    Used where no ps binary is installed. Processes that vanish or deny
    access mid-scan are skipped.
    """

    _ATTRS = ["pid", "ppid", "status", "name", "memory_info", "cpu_percent", "nice", "num_threads"]

    def snapshot(self) -> list[ProcessSnapshot]:
        rows = []
        try:
            for proc in psutil.process_iter(attrs=self._ATTRS):
                try:
                    with proc.oneshot():
                        info = proc.info
                        mem_info = info.get("memory_info")
                        rows.append(
                            ProcessSnapshot(
                                pid=info["pid"],
                                parent_pid=info.get("ppid") or 0,
                                raw_state=_psutil_state_code(info),
                                command=info.get("name") or "",
                                memory=mem_info.rss // 1024 if mem_info else 0,
                                cpu_percent=info.get("cpu_percent") or 0.0,
                            )
                        )
                except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                    continue
        except (psutil.Error, OSError) as e:
            raise ProcessListUnavailable(f"psutil scan failed: {e}") from e
        return rows


def default_process_table(kind: str = "auto", ps_timeout: float = 2.0) -> ProcessTable:
    """Pick a process table source.

    Args:
        kind: "ps", "psutil" or "auto" (ps when the binary is installed).
        ps_timeout: Time bound for each ps invocation.
    """
    if kind == "psutil" or (kind == "auto" and shutil.which("ps") is None):
        return PsutilProcessTable()
    return PsProcessTable(timeout=ps_timeout)


def build_children_index(rows: list[ProcessSnapshot]) -> dict[int, list[ProcessSnapshot]]:
    """Build a map of parent pid -> child rows."""
    children: dict[int, list[ProcessSnapshot]] = {}
    for row in rows:
        children.setdefault(row.parent_pid, []).append(row)
    return children


def collect_descendants(children: dict[int, list[ProcessSnapshot]], root_pid: int) -> list[ProcessSnapshot]:
    """Collect all transitive descendants of root_pid, breadth first.

    Args:
        children: Index from build_children_index.
        root_pid: PID whose descendants to collect (not included).
    """
    result = []
    visited = {root_pid}
    pending = deque([root_pid])

    while pending:
        pid = pending.popleft()
        for child in sorted(children.get(pid, []), key=lambda r: r.pid):
            if child.pid in visited:
                continue  # Prevent cycles
            visited.add(child.pid)
            result.append(child)
            pending.append(child.pid)

    return result


class ProcessTreeInspector:
    """Lists the live descendants of a root process."""

    def __init__(self, table: ProcessTable | None = None) -> None:
        self._table = table or default_process_table()

    def list_descendants(self, root_pid: int) -> list[ProcessSnapshot]:
        """Return every transitive descendant of root_pid.

        Raises:
            ProcessListUnavailable: If the process table cannot be read.
        """
        rows = self._table.snapshot()
        return collect_descendants(build_children_index(rows), root_pid)
