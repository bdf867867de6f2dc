"""JSON job state file: the write-ahead record of every orchestration step."""

from __future__ import annotations

import json
import logging
from collections import deque
from dataclasses import fields
from pathlib import Path
from typing import Any
from uuid import uuid4

from fleetjob.common import from_iso
from fleetjob.orchestrator.errors import StateFileError
from fleetjob.orchestrator.models import Job, JobConfig, Machine, Task, TaskRange

logger = logging.getLogger(__name__)

_CONFIG_FIELDS = {item.name: item for item in fields(JobConfig)}


def job_to_dict(job: Job) -> dict[str, Any]:
    """Render the job aggregate as a plain JSON document."""

    return {
        "binary": str(job.binary),
        "inputs": [str(path) for path in job.inputs],
        "config": _config_to_dict(job.config),
        "machines": [_machine_to_dict(machine) for machine in job.machines],
        "tasks": [_task_to_dict(task) for task in job.tasks],
    }


def job_from_dict(raw: Any) -> Job:
    """Rebuild the job aggregate, validating every field."""

    if not isinstance(raw, dict):
        raise StateFileError("Job state must be a JSON object.")

    binary = raw.get("binary")
    if not isinstance(binary, str) or not binary.strip():
        raise StateFileError("binary must be a non-empty string.")
    raw_inputs = raw.get("inputs", [])
    if not isinstance(raw_inputs, list) or not all(isinstance(item, str) for item in raw_inputs):
        raise StateFileError("inputs must be an array of strings.")

    config = _config_from_dict(raw.get("config"))

    raw_machines = raw.get("machines", [])
    if not isinstance(raw_machines, list):
        raise StateFileError("machines must be an array.")
    machines = [
        _machine_from_dict(item, where=f"machines[{index}]", slots=config.tasks_per_machine)
        for index, item in enumerate(raw_machines)
    ]
    names = [machine.name for machine in machines]
    if len(set(names)) != len(names):
        raise StateFileError("machines contain duplicate names.")

    raw_tasks = raw.get("tasks", [])
    if not isinstance(raw_tasks, list):
        raise StateFileError("tasks must be an array.")
    tasks = deque(
        _task_from_dict(item, where=f"tasks[{index}]") for index, item in enumerate(raw_tasks)
    )

    return Job(
        binary=Path(binary),
        inputs=[Path(item) for item in raw_inputs],
        config=config,
        machines=machines,
        tasks=tasks,
    )


def read_job(path: Path) -> Job:
    """Load the job state file."""

    try:
        raw = json.loads(path.read_text("utf-8"))
    except FileNotFoundError as error:
        raise StateFileError(f"Job state file not found: {path}") from error
    except OSError as error:
        raise StateFileError(f"Failed to read job state file {path}: {error}") from error
    except UnicodeDecodeError as error:
        raise StateFileError(f"Job state file {path} is not valid UTF-8: {error}") from error
    except json.JSONDecodeError as error:
        raise StateFileError(f"Job state file {path} is not valid JSON: {error}") from error

    try:
        return job_from_dict(raw)
    except StateFileError as error:
        raise StateFileError(f"Invalid job state file {path}: {error}") from error


def write_job(path: Path, job: Job) -> None:
    """Replace the job state file atomically.

    The document is written to a sibling temp file and renamed over the
    target, so a crash leaves either the previous or the new state on disk.
    """

    payload = json.dumps(job_to_dict(job), ensure_ascii=False, indent=2, sort_keys=True)
    tmp_path = path.with_name(f"{path.name}.tmp-{uuid4().hex}")
    try:
        tmp_path.write_text(payload + "\n", "utf-8")
        tmp_path.replace(path)
    except OSError as error:
        tmp_path.unlink(missing_ok=True)
        raise StateFileError(f"Failed to write job state file {path}: {error}") from error


class JobStore:
    """Binds a job to its state file path for load/save round trips."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> Job:
        job = read_job(self.path)
        logger.debug(
            "Loaded job state from %s: machines=%d queued=%d",
            self.path,
            len(job.machines),
            len(job.tasks),
        )
        return job

    def save(self, job: Job) -> None:
        write_job(self.path, job)

    def results_dir(self, job: Job) -> Path:
        """Resolve the results directory relative to the state file."""

        return self.resolve(job.config.results_dir)

    def payload(self, job: Job) -> tuple[Path, list[Path]]:
        """Binary and input paths to ship, resolved relative to the state file."""

        return self.resolve(job.binary), [self.resolve(path) for path in job.inputs]

    def resolve(self, path: Path) -> Path:
        if path.is_absolute():
            return path
        return self.path.parent / path


def _config_to_dict(config: JobConfig) -> dict[str, Any]:
    payload: dict[str, Any] = {name: getattr(config, name) for name in _CONFIG_FIELDS}
    payload["results_dir"] = str(config.results_dir)
    return payload


def _config_from_dict(raw: Any) -> JobConfig:
    if not isinstance(raw, dict):
        raise StateFileError("config must be an object.")

    unknown = sorted(set(raw) - set(_CONFIG_FIELDS))
    if unknown:
        raise StateFileError(f"config has unknown keys: {', '.join(unknown)}.")

    values: dict[str, Any] = {}
    for name, value in raw.items():
        values[name] = _coerce_config_value(name, value)
    for required in ("max_machines", "name"):
        if required not in values:
            raise StateFileError(f"config.{required} is required.")

    config = JobConfig(**values)
    try:
        config.validate()
    except ValueError as error:
        raise StateFileError(str(error)) from error
    return config


def _coerce_config_value(name: str, value: Any) -> Any:
    default = _CONFIG_FIELDS[name].default
    if name in {"max_machines", "tasks_per_machine"}:
        if isinstance(value, bool) or not isinstance(value, int):
            raise StateFileError(f"config.{name} must be an integer.")
        return value
    if name == "check_interval":
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise StateFileError(f"config.{name} must be a number of seconds.")
        return float(value)
    if isinstance(default, bool):
        if not isinstance(value, bool):
            raise StateFileError(f"config.{name} must be a boolean.")
        return value
    if not isinstance(value, str):
        raise StateFileError(f"config.{name} must be a string.")
    if name == "results_dir":
        return Path(value)
    return value


def _machine_to_dict(machine: Machine) -> dict[str, Any]:
    return {
        "name": machine.name,
        "id": machine.id,
        "ip": machine.ip,
        "tasks": [None if task is None else _task_to_dict(task) for task in machine.tasks],
        "next_check": machine.next_check.isoformat() if machine.next_check else None,
        "bootstrapped": machine.bootstrapped,
    }


def _machine_from_dict(raw: Any, *, where: str, slots: int) -> Machine:
    if not isinstance(raw, dict):
        raise StateFileError(f"{where} must be an object.")
    for key in ("name", "id", "ip"):
        value = raw.get(key)
        if not isinstance(value, str) or not value.strip():
            raise StateFileError(f"{where}.{key} must be a non-empty string.")

    raw_slots = raw.get("tasks", [])
    if not isinstance(raw_slots, list):
        raise StateFileError(f"{where}.tasks must be an array.")
    tasks: list[Task | None] = [
        None if item is None else _task_from_dict(item, where=f"{where}.tasks[{index}]")
        for index, item in enumerate(raw_slots)
    ]
    if any(task is not None and task.range is not None for task in tasks):
        raise StateFileError(f"{where}.tasks may only hold concrete task instances.")
    # Slots beyond tasks_per_machine are kept so running work is never dropped.
    tasks.extend([None] * (slots - len(tasks)))

    raw_next_check = raw.get("next_check")
    if raw_next_check is not None and not isinstance(raw_next_check, str):
        raise StateFileError(f"{where}.next_check must be an ISO timestamp or null.")
    try:
        next_check = from_iso(raw_next_check) if raw_next_check else None
    except ValueError as error:
        raise StateFileError(f"{where}.next_check is not a valid timestamp.") from error

    bootstrapped = raw.get("bootstrapped")
    if bootstrapped is None:
        bootstrapped = any(task is not None for task in tasks)
    elif not isinstance(bootstrapped, bool):
        raise StateFileError(f"{where}.bootstrapped must be a boolean.")

    return Machine(
        name=raw["name"],
        id=raw["id"],
        ip=raw["ip"],
        tasks=tasks,
        next_check=next_check,
        bootstrapped=bootstrapped,
    )


def _task_to_dict(task: Task) -> dict[str, Any]:
    return {
        "name": task.name,
        "cmd": task.cmd,
        "range": None if task.range is None else [task.range.start, task.range.end],
    }


def _task_from_dict(raw: Any, *, where: str) -> Task:
    if not isinstance(raw, dict):
        raise StateFileError(f"{where} must be an object.")
    name = raw.get("name")
    cmd = raw.get("cmd")
    if not isinstance(name, str) or not name.strip():
        raise StateFileError(f"{where}.name must be a non-empty string.")
    if not isinstance(cmd, str) or not cmd.strip():
        raise StateFileError(f"{where}.cmd must be a non-empty string.")

    raw_range = raw.get("range")
    if raw_range is None:
        return Task(name=name, cmd=cmd)
    if (
        not isinstance(raw_range, list)
        or len(raw_range) != 2  # noqa: PLR2004
        or not all(isinstance(item, int) and not isinstance(item, bool) for item in raw_range)
    ):
        raise StateFileError(f"{where}.range must be [start, end] integers or null.")
    try:
        task_range = TaskRange(start=raw_range[0], end=raw_range[1])
    except ValueError as error:
        raise StateFileError(f"{where}.range: {error}") from error
    return Task(name=name, cmd=cmd, range=task_range)
