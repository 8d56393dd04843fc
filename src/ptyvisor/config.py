"""Configuration for ptyvisor.

Defaults can be overridden from the [supervisor] table of a ptyvisor.toml.
"""

import logging
import os
import tomllib
from dataclasses import dataclass, field, fields, replace
from pathlib import Path

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "ptyvisor.toml"


def _default_shell() -> str:
    return os.environ.get("SHELL") or "/bin/bash"


@dataclass(slots=True)
class SupervisorConfig:
    """Settings shared by every session of a Supervisor."""

    shell: str = field(default_factory=_default_shell)
    term_name: str = "xterm-color"
    default_cols: int = 80
    default_rows: int = 24
    settle_delay: float = 0.5
    poll_interval: float = 1.0
    ps_timeout: float = 2.0
    probe_timeout: float = 5.0
    quick_check_ticks: int = 3
    line_terminator: str = "\r"
    read_size: int = 4096
    read_timeout: float = 0.2
    process_table: str = "auto"
    ignored_commands: tuple[str, ...] = ("ps",)
    env: dict[str, str] = field(default_factory=lambda: {"LANG": "en_US.UTF-8"})

    def __post_init__(self) -> None:
        self.poll_interval = max(0.1, self.poll_interval)  # Minimum 0.1 seconds
        self.ignored_commands = tuple(self.ignored_commands)

    def spawn_env(self) -> dict[str, str]:
        """Environment for the shell: the host environment plus overrides."""
        env = dict(os.environ)
        env["TERM"] = self.term_name
        env.update(self.env)
        return env


def find_config_file() -> Path | None:
    """Find ptyvisor.toml in current or parent directories."""
    current = Path.cwd()

    for parent in [current] + list(current.parents):
        config_file = parent / CONFIG_FILENAME
        if config_file.exists():
            return config_file

    return None


def load_config(path: Path | None = None) -> SupervisorConfig:
    """Load configuration from a TOML file.

    Args:
        path: File to read. Searched for from the cwd upwards when omitted.

    Returns:
        SupervisorConfig with file values applied over the defaults.
    """
    config = SupervisorConfig()
    if path is None:
        path = find_config_file()
    if path is None or not path.exists():
        return config

    with open(path, "rb") as f:
        data = tomllib.load(f).get("supervisor", {})

    known = {f.name for f in fields(SupervisorConfig)}
    overrides = {}
    for key, value in data.items():
        if key not in known:
            logger.warning(f"Ignoring unknown setting {key!r} in {path}")
            continue
        overrides[key] = tuple(value) if key == "ignored_commands" else value

    logger.debug(f"Loaded {len(overrides)} settings from {path}")
    return replace(config, **overrides)
