"""Collaborator interfaces for machine provisioning and remote transport."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from fleetjob.orchestrator.models import JobConfig, Machine, Task


@dataclass(slots=True)
class ProvisionedMachine:
    """Identity returned by the provider for a freshly created machine."""

    id: str
    ip: str


class Provisioner(Protocol):
    """Creates and destroys remote machines."""

    def create(self, name: str, config: JobConfig) -> ProvisionedMachine:
        """Create one machine and wait until it has an address."""

    def delete(self, machine: Machine) -> None:
        """Destroy the machine."""


class Transport(Protocol):
    """Runs commands on and transfers files to and from a machine."""

    def copy(self, binary: Path, inputs: list[Path], machine: Machine, config: JobConfig) -> None:
        """Ship the job binary and its inputs into the remote home directory."""

    def run_install(self, cmd: str, machine: Machine, config: JobConfig) -> None:
        """Run the one-off install command."""

    def start_task(self, task: Task, machine: Machine, config: JobConfig) -> None:
        """Start the task detached in a fresh working directory named after it."""

    def probe_done(self, task: Task, machine: Machine, config: JobConfig) -> bool:
        """Return whether the task's completion marker exists."""

    def fetch_results(
        self,
        task: Task,
        machine: Machine,
        config: JobConfig,
        local_dir: Path,
    ) -> None:
        """Mirror the task's remote working directory into ``local_dir``."""
