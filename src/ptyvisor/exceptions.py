"""Supervisor exceptions.

PUBLIC API:
  - SupervisorError: Base exception for all supervisor failures
  - SpawnUnavailable: No pseudo-terminal facility on this host
  - SpawnFailed: The OS refused to create the pseudo-terminal
  - ProcessListUnavailable: The process table could not be read this tick
  - ExitCodeUnrecoverable: The exit-code sentinel was never observed
"""


class SupervisorError(Exception):
    """Base exception for all supervisor failures."""

    pass


class SpawnUnavailable(SupervisorError):
    """Raised when the pseudo-terminal library cannot be used on this host."""

    pass


class SpawnFailed(SupervisorError):
    """Raised when spawning the shell inside a pseudo-terminal fails."""

    pass


class ProcessListUnavailable(SupervisorError):
    """Raised when the OS process table cannot be queried."""

    pass


class ExitCodeUnrecoverable(SupervisorError):
    """Raised when the exit-code probe times out without a match."""

    pass
