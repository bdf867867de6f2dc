"""Process-level runtime settings read from the environment."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field


@dataclass(slots=True)
class CommandSettings:
    """External command binaries used by the collaborator adapters."""

    doctl_binary: str = "doctl"
    ssh_binary: str = "ssh"
    scp_binary: str = "scp"
    rsync_binary: str = "rsync"
    ssh_connect_timeout_seconds: int = 30


@dataclass(slots=True)
class Settings:
    """Application settings; per-job options live in the job state file."""

    log_level: str = "INFO"
    commands: CommandSettings = field(default_factory=CommandSettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with defaults suitable for an operator shell."""

        return cls(
            log_level=os.getenv("FLEETJOB_LOG_LEVEL", "INFO").strip().upper(),
            commands=CommandSettings(
                doctl_binary=os.getenv("FLEETJOB_DOCTL_BINARY", "doctl"),
                ssh_binary=os.getenv("FLEETJOB_SSH_BINARY", "ssh"),
                scp_binary=os.getenv("FLEETJOB_SCP_BINARY", "scp"),
                rsync_binary=os.getenv("FLEETJOB_RSYNC_BINARY", "rsync"),
                ssh_connect_timeout_seconds=_env_int(
                    "FLEETJOB_SSH_CONNECT_TIMEOUT_SECONDS",
                    default=30,
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the adapters cannot use."""

        if self.log_level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown FLEETJOB_LOG_LEVEL: {self.log_level!r}.")
        if self.commands.ssh_connect_timeout_seconds <= 0:
            raise ValueError("FLEETJOB_SSH_CONNECT_TIMEOUT_SECONDS must be > 0.")
        for name, value in (
            ("FLEETJOB_DOCTL_BINARY", self.commands.doctl_binary),
            ("FLEETJOB_SSH_BINARY", self.commands.ssh_binary),
            ("FLEETJOB_SCP_BINARY", self.commands.scp_binary),
            ("FLEETJOB_RSYNC_BINARY", self.commands.rsync_binary),
        ):
            if not value.strip():
                raise ValueError(f"{name} must be non-empty.")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error
