"""Installer configuration.

Timeouts are environment-tuned and can be overridden with ``MCP_INSTALL_*``
environment variables. They must keep the ordering
``command_timeout < recovery_timeout < operation_timeout``.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from mcp_sandbox_install.errors import ConfigError

ENV_PREFIX = "MCP_INSTALL_"


@dataclass(frozen=True)
class InstallerConfig:
    command_timeout: float = 120.0
    recovery_timeout: float = 180.0
    operation_timeout: float = 300.0
    pid_file_name: str = "vite-process.pid"
    dev_command: List[str] = field(default_factory=lambda: ["npm", "run", "dev"])
    dev_process_pattern: str = "vite"
    watch_files: List[str] = field(
        default_factory=lambda: ["package.json", "vite.config.js"]
    )
    port_release_delay: float = 1.0
    startup_delay: float = 3.0

    def __post_init__(self) -> None:
        if not 0 < self.command_timeout < self.recovery_timeout < self.operation_timeout:
            raise ConfigError(
                "Timeouts must satisfy 0 < command < recovery < operation",
                details={
                    "command_timeout": self.command_timeout,
                    "recovery_timeout": self.recovery_timeout,
                    "operation_timeout": self.operation_timeout,
                },
            )
        if self.port_release_delay < 0 or self.startup_delay < 0:
            raise ConfigError("Delays cannot be negative")
        if not self.dev_command:
            raise ConfigError("Dev server command cannot be empty")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "InstallerConfig":
        """Build a config from MCP_INSTALL_* variables, falling back to defaults."""
        environ = os.environ if environ is None else environ
        values: Dict[str, object] = {}

        for name in (
            "command_timeout",
            "recovery_timeout",
            "operation_timeout",
            "port_release_delay",
            "startup_delay",
        ):
            raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is None or not raw.strip():
                continue
            try:
                values[name] = float(raw)
            except ValueError:
                raise ConfigError(
                    f"Invalid value for {ENV_PREFIX}{name.upper()}: {raw!r}",
                    details={"name": name, "value": raw},
                )

        if raw := environ.get(f"{ENV_PREFIX}PID_FILE_NAME"):
            values["pid_file_name"] = raw.strip()
        if raw := environ.get(f"{ENV_PREFIX}DEV_COMMAND"):
            values["dev_command"] = raw.split()
        if raw := environ.get(f"{ENV_PREFIX}DEV_PROCESS_PATTERN"):
            values["dev_process_pattern"] = raw.strip()
        if raw := environ.get(f"{ENV_PREFIX}WATCH_FILES"):
            values["watch_files"] = [f.strip() for f in raw.split(",") if f.strip()]

        return cls(**values)
