"""Exit-code recovery by sentinel read-back.

An interactive shell does not expose the exit status of the command it just
ran, so the probe asks the shell to print it next to a unique marker and then
scans the terminal output for that marker.

PUBLIC API:
  - ExitProbe: Build the probe line and match its result in output
"""

import re
import time
import uuid

MARKER_PREFIX = "__PTYVISOR_EXIT_"

# Output tail kept for matching markers split across reads
_BUFFER_LIMIT = 4096


class ExitProbe:
    """Sentinel probe for one session.

    The line written to the shell prints the marker from two separate
    arguments, so the terminal's echo of the typed line never contains the
    contiguous marker and only the shell's real output matches.
    """

    def __init__(self, token: str | None = None) -> None:
        self.token = token or uuid.uuid4().hex[:12]
        self.marker = f"{MARKER_PREFIX}{self.token}"
        self._pattern = re.compile(re.escape(self.marker) + r":(\d+)")
        self._buffer = ""
        self.sent_at: float | None = None

    @property
    def pending(self) -> bool:
        """True once the probe line has been queued for the shell."""
        return self.sent_at is not None

    def arm(self) -> None:
        """Record that the probe line is about to be written."""
        self.sent_at = time.monotonic()

    def command(self, line_terminator: str = "\r") -> str:
        """Shell line that prints the marker and the last exit status."""
        return f"printf '%s%s:%d\\n' {MARKER_PREFIX} {self.token} $?{line_terminator}"

    def feed(self, chunk: bytes) -> int | None:
        """Scan a chunk of terminal output for the probe result.

        Args:
            chunk: Raw bytes read from the pty.

        Returns:
            The exit code once the marker is seen, otherwise None.
        """
        self._buffer += chunk.decode("utf-8", errors="replace")
        match = self._pattern.search(self._buffer)
        if match:
            self._buffer = ""
            return int(match.group(1))
        self._buffer = self._buffer[-_BUFFER_LIMIT:]
        return None
