"""Controller for the job run CLI command."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from fleetjob.config import Settings
from fleetjob.orchestrator.backend import DoctlProvisioner, Provisioner, SshTransport, Transport
from fleetjob.orchestrator.scheduler import JobScheduler, RunSummary
from fleetjob.orchestrator.state import JobStore


@dataclass(slots=True)
class RunJobCommand:
    """CLI input for one job run."""

    job_path: Path


@dataclass(slots=True)
class RunJobResult:
    """Run report to render in CLI."""

    lines: list[str]
    success: bool


class JobCliController:
    """Wires settings, state file and collaborators into the scheduler."""

    def __init__(
        self,
        *,
        provisioner: Provisioner | None = None,
        transport: Transport | None = None,
    ) -> None:
        self.provisioner = provisioner
        self.transport = transport

    def run_job(self, command: RunJobCommand, settings: Settings) -> RunJobResult:
        store = JobStore(command.job_path)
        job = store.load()
        scheduler = JobScheduler(
            job=job,
            store=store,
            provisioner=self.provisioner or _doctl_provisioner(settings),
            transport=self.transport or _ssh_transport(settings),
        )
        summary = scheduler.run()
        return RunJobResult(
            lines=_summary_lines(summary, job_path=command.job_path),
            success=not summary.interrupted,
        )


def _doctl_provisioner(settings: Settings) -> DoctlProvisioner:
    return DoctlProvisioner(binary=settings.commands.doctl_binary)


def _ssh_transport(settings: Settings) -> SshTransport:
    return SshTransport(
        ssh_binary=settings.commands.ssh_binary,
        scp_binary=settings.commands.scp_binary,
        rsync_binary=settings.commands.rsync_binary,
        connect_timeout_seconds=settings.commands.ssh_connect_timeout_seconds,
    )


def _summary_lines(summary: RunSummary, *, job_path: Path) -> list[str]:
    lines = [
        "Run summary: "
        f"machines_created={summary.machines_created} "
        f"bootstrapped={summary.machines_bootstrapped} "
        f"dispatched={summary.dispatched} completed={summary.completed} "
        f"fetches={summary.fetches} machines_deleted={summary.machines_deleted}",
    ]
    if summary.interrupted:
        lines.append(f"Run interrupted; resume with: fleetjob {job_path}")
    else:
        lines.append("All tasks finished and all machines deleted.")
    return lines
