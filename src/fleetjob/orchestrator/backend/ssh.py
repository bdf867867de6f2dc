"""Remote execution and file transfer over ssh, scp and rsync."""

from __future__ import annotations

import logging
import shlex
import subprocess
from pathlib import Path

from fleetjob.orchestrator.errors import TransportError
from fleetjob.orchestrator.models import JobConfig, Machine, Task

logger = logging.getLogger(__name__)

SSH_OPTIONS: tuple[str, ...] = (
    "-q",
    "-o",
    "StrictHostKeyChecking=no",
    "-o",
    "UserKnownHostsFile=/dev/null",
)

EXIT_MARKER = "exit_status"


class SshTransport:
    """Drive task working directories on a machine through its ssh login."""

    def __init__(
        self,
        *,
        ssh_binary: str = "ssh",
        scp_binary: str = "scp",
        rsync_binary: str = "rsync",
        connect_timeout_seconds: int = 30,
    ) -> None:
        self.ssh_binary = ssh_binary
        self.scp_binary = scp_binary
        self.rsync_binary = rsync_binary
        self.options = [*SSH_OPTIONS, "-o", f"ConnectTimeout={connect_timeout_seconds}"]

    def copy(self, binary: Path, inputs: list[Path], machine: Machine, config: JobConfig) -> None:
        logger.info("Copying binary and inputs to machine %s", machine.name)
        args = [
            self.scp_binary,
            *self.options,
            "-C",
            str(binary),
            *(str(path) for path in inputs),
            f"{_login(config, machine)}:",
        ]
        self._check(args, action=f"copy binary and inputs to machine {machine.name}")

    def run_install(self, cmd: str, machine: Machine, config: JobConfig) -> None:
        logger.info("Installing required software on machine %s", machine.name)
        self._check(
            self._ssh_args(config, machine, cmd),
            action=f"install required software on machine {machine.name}",
        )

    def start_task(self, task: Task, machine: Machine, config: JobConfig) -> None:
        logger.info("Starting task %s on machine %s", task.name, machine.name)
        self._check(
            self._ssh_args(config, machine, build_start_command(task)),
            action=f"start task {task.name} on machine {machine.name}",
        )

    def probe_done(self, task: Task, machine: Machine, config: JobConfig) -> bool:
        logger.debug("Checking task %s on machine %s", task.name, machine.name)
        marker = shlex.quote(f"{task.name}/{EXIT_MARKER}")
        action = f"check task {task.name} on machine {machine.name}"
        result = self._run(
            self._ssh_args(config, machine, f"test -f {marker}"),
            action=action,
            quiet=True,
        )
        if result.returncode == 0:
            return True
        if result.returncode == 1:
            return False
        raise TransportError(f"Failed to {action} (exit code {result.returncode}).")

    def fetch_results(
        self,
        task: Task,
        machine: Machine,
        config: JobConfig,
        local_dir: Path,
    ) -> None:
        logger.info("Fetching results of task %s from machine %s", task.name, machine.name)
        local_dir.mkdir(parents=True, exist_ok=True)
        args = [
            self.rsync_binary,
            "-e",
            shlex.join([self.ssh_binary, *self.options]),
            "--recursive",
            "--delete",
            "--inplace",
            "--compress",
            f"{_login(config, machine)}:{shlex.quote(task.name)}/",
            str(local_dir / task.name),
        ]
        self._check(args, action=f"fetch results of task {task.name} from machine {machine.name}")

    def _ssh_args(self, config: JobConfig, machine: Machine, command: str) -> list[str]:
        return [self.ssh_binary, *self.options, _login(config, machine), "--", command]

    def _check(self, args: list[str], *, action: str) -> None:
        result = self._run(args, action=action)
        if result.returncode != 0:
            raise TransportError(f"Failed to {action} (exit code {result.returncode}).")

    def _run(
        self,
        args: list[str],
        *,
        action: str,
        quiet: bool = False,
    ) -> subprocess.CompletedProcess[bytes]:
        try:
            return subprocess.run(  # noqa: S603
                args,
                stdout=subprocess.DEVNULL if quiet else None,
                check=False,
            )
        except FileNotFoundError as error:
            raise TransportError(f"Failed to {action}: command not found: {args[0]}") from error
        except OSError as error:
            raise TransportError(f"Failed to {action}: {error}") from error


def build_start_command(task: Task) -> str:
    """Shell line that recreates the task directory and runs the task detached.

    The exit status is written to the completion marker once the command
    returns, whatever its outcome.
    """

    name = shlex.quote(task.name)
    body = shlex.quote(f"{task.cmd}; echo $? > {EXIT_MARKER}")
    return (
        f"rm -rf {name} && mkdir {name} && cd {name} && "
        f"(nohup sh -c {body} >stdout 2>stderr </dev/null &)"
    )


def _login(config: JobConfig, machine: Machine) -> str:
    return f"{config.ssh_user}@{machine.ip}"
