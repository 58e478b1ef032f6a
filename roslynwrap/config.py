"""Proxy configuration dataclass."""

from __future__ import annotations

import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from roslynwrap.errors import ConfigError

TransportMode = Literal["stdio", "pipe"]
TRANSPORT_MODES: tuple[str, ...] = ("stdio", "pipe")

CONFIG_FILE = ".roslynwrap.yml"
LOG_DIR_NAME = "roslynwrap"


@dataclass
class ProxyConfig:
    """Configuration for a single proxy session."""

    lsp: str
    project_root: str = field(default_factory=lambda: str(Path.cwd()))
    transport: TransportMode = "pipe"
    log_level: str = "Information"
    traffic_log: str = ""  # empty = no traffic log
    poll_interval: float = 1.0
    extra_args: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.lsp:
            raise ConfigError("No language server executable configured (--lsp)")
        if self.transport not in TRANSPORT_MODES:
            raise ConfigError(
                f"Unknown transport '{self.transport}'. Available: {', '.join(TRANSPORT_MODES)}"
            )
        if self.poll_interval <= 0:
            raise ConfigError("poll_interval must be positive")
        # Resolve to absolute path
        self.project_root = str(Path(self.project_root).resolve())

    @property
    def log_directory(self) -> Path:
        """Where the language server writes its own logs."""
        return Path(tempfile.gettempdir()) / LOG_DIR_NAME / Path(self.project_root).stem


def load_config(project_root: str) -> dict[str, Any] | None:
    """Load config from .roslynwrap.yml if it exists, else return None."""
    import yaml

    config_path = Path(project_root) / CONFIG_FILE
    if not config_path.exists():
        return None
    with config_path.open() as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid {CONFIG_FILE}: {e}") from e
    return data if isinstance(data, dict) else None
