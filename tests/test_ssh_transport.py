from __future__ import annotations

import shlex
import subprocess
from pathlib import Path

import allure
import pytest
from fakes import make_job

from fleetjob.orchestrator.backend import ssh
from fleetjob.orchestrator.backend.ssh import SshTransport, build_start_command
from fleetjob.orchestrator.errors import TransportError
from fleetjob.orchestrator.models import Machine, Task

pytestmark = [
    allure.epic("Remote Collaborators"),
    allure.feature("SSH Transport"),
]

OPTIONS = [
    "-q",
    "-o",
    "StrictHostKeyChecking=no",
    "-o",
    "UserKnownHostsFile=/dev/null",
    "-o",
    "ConnectTimeout=7",
]


class _Recorder:
    def __init__(self, returncode: int = 0) -> None:
        self.returncode = returncode
        self.calls: list[tuple[list[str], dict]] = []

    def __call__(self, args, **kwargs):
        self.calls.append((list(args), kwargs))
        return subprocess.CompletedProcess(args, self.returncode)


@pytest.fixture()
def recorder(monkeypatch) -> _Recorder:
    recorder = _Recorder()
    monkeypatch.setattr(ssh.subprocess, "run", recorder)
    return recorder


@pytest.fixture()
def transport() -> SshTransport:
    return SshTransport(connect_timeout_seconds=7)


@pytest.fixture()
def machine() -> Machine:
    return Machine.provisioned(name="fleet-0", id="101", ip="203.0.113.7", slots=1)


def test_copy_sends_binary_and_inputs_to_home_directory(recorder, transport, machine) -> None:
    job = make_job([])

    transport.copy(job.binary, job.inputs, machine, job.config)

    args, _ = recorder.calls[0]
    assert args == [
        "scp",
        *OPTIONS,
        "-C",
        "bin/solver",
        "data/a.txt",
        "data/b.txt",
        "root@203.0.113.7:",
    ]


def test_install_runs_command_through_ssh_login(recorder, transport, machine) -> None:
    job = make_job([])

    transport.run_install("apt-get install -y libfoo", machine, job.config)

    args, kwargs = recorder.calls[0]
    assert args == ["ssh", *OPTIONS, "root@203.0.113.7", "--", "apt-get install -y libfoo"]
    assert kwargs["stdout"] is None


def test_start_task_runs_detached_start_command(recorder, transport, machine) -> None:
    job = make_job([])
    task = Task(name="sim-3", cmd="./solver --seed 3")

    transport.start_task(task, machine, job.config)

    args, _ = recorder.calls[0]
    assert args[-1] == build_start_command(task)
    assert args[-2] == "--"


def test_start_command_recreates_directory_and_records_exit_status() -> None:
    command = build_start_command(Task(name="sim 3", cmd="./solver > out.txt"))

    assert command.startswith("rm -rf 'sim 3' && mkdir 'sim 3' && cd 'sim 3' && ")
    assert "nohup sh -c" in command
    assert shlex.quote("./solver > out.txt; echo $? > exit_status") in command
    assert command.endswith(">stdout 2>stderr </dev/null &)")


@pytest.mark.parametrize(("returncode", "expected"), [(0, True), (1, False)])
def test_probe_maps_marker_test_exit_code(
    recorder,
    transport,
    machine,
    returncode: int,
    expected: bool,
) -> None:
    recorder.returncode = returncode
    job = make_job([])

    assert transport.probe_done(Task(name="t1", cmd="x"), machine, job.config) is expected

    args, kwargs = recorder.calls[0]
    assert args[-1] == "test -f t1/exit_status"
    assert kwargs["stdout"] is subprocess.DEVNULL


def test_probe_connection_failure_is_transport_error(recorder, transport, machine) -> None:
    recorder.returncode = 255
    job = make_job([])

    with pytest.raises(TransportError, match="exit code 255"):
        transport.probe_done(Task(name="t1", cmd="x"), machine, job.config)


def test_fetch_mirrors_task_directory_into_results_dir(
    recorder,
    transport,
    machine,
    tmp_path: Path,
) -> None:
    job = make_job([])
    local_dir = tmp_path / "results"

    transport.fetch_results(Task(name="t1", cmd="x"), machine, job.config, local_dir)

    args, _ = recorder.calls[0]
    assert local_dir.is_dir()
    assert args[0] == "rsync"
    assert args[1:3] == ["-e", shlex.join(["ssh", *OPTIONS])]
    assert "--delete" in args
    assert args[-2:] == ["root@203.0.113.7:t1/", str(local_dir / "t1")]


def test_failed_command_raises_transport_error(recorder, transport, machine) -> None:
    recorder.returncode = 2
    job = make_job([])

    with pytest.raises(TransportError, match="install required software on machine fleet-0"):
        transport.run_install("false", machine, job.config)


def test_missing_binary_is_reported(monkeypatch, machine) -> None:
    def _missing(args, **kwargs):
        raise FileNotFoundError(args[0])

    monkeypatch.setattr(ssh.subprocess, "run", _missing)
    transport = SshTransport(ssh_binary="/nowhere/ssh")

    with pytest.raises(TransportError, match="command not found: /nowhere/ssh"):
        transport.start_task(Task(name="t", cmd="x"), machine, make_job([]).config)
