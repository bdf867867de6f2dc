"""Domain models for the job aggregate: tasks, machines and job config."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path

INDEX_PLACEHOLDER = "{{index}}"


@dataclass(slots=True, frozen=True)
class TaskRange:
    """Half-open replication interval ``[start, end)``."""

    start: int
    end: int

    def __post_init__(self) -> None:
        if self.end <= self.start:
            raise ValueError(f"Task range [{self.start}, {self.end}) is empty.")

    @property
    def width(self) -> int:
        return self.end - self.start


@dataclass(slots=True)
class Task:
    """Task template, or a concrete instance once its range is consumed."""

    name: str
    cmd: str
    range: TaskRange | None = None

    @property
    def multiplicity(self) -> int:
        """Number of concrete instances this template still expands into."""

        return 1 if self.range is None else self.range.width

    def instance(self, index: int) -> Task:
        """Bind the template to one replication index."""

        token = str(index)
        return Task(
            name=self.name.replace(INDEX_PLACEHOLDER, token),
            cmd=self.cmd.replace(INDEX_PLACEHOLDER, token),
        )


def expand_next(queue: deque[Task]) -> Task | None:
    """Pop the next concrete task instance from the head of the queue.

    A ranged template yields the instance for its current ``start``; the
    remainder of the range, if any, is pushed to the tail so other templates
    keep their turn. Returns ``None`` once the queue is exhausted.
    """

    if not queue:
        return None

    task = queue.popleft()
    if task.range is None:
        return task

    if task.range.width > 1:
        queue.append(replace(task, range=TaskRange(task.range.start + 1, task.range.end)))

    return task.instance(task.range.start)


@dataclass(slots=True)
class JobConfig:
    """Static run parameters stored alongside the job state."""

    max_machines: int
    name: str
    image: str = ""
    size: str = ""
    region: str = ""
    ssh_key: str = ""
    ssh_user: str = "root"
    install_cmd: str = ""
    tasks_per_machine: int = 1
    check_interval: float = 60.0
    fetch_partial_results: bool = False
    results_dir: Path = Path(".")

    def validate(self) -> None:
        """Raise ``ValueError`` for settings the scheduler cannot honour."""

        if self.max_machines < 1:
            raise ValueError("config.max_machines must be >= 1.")
        if self.tasks_per_machine < 1:
            raise ValueError("config.tasks_per_machine must be >= 1.")
        if self.check_interval <= 0:
            raise ValueError("config.check_interval must be > 0.")
        if not self.name.strip():
            raise ValueError("config.name must be a non-empty machine name prefix.")
        if not self.ssh_user.strip():
            raise ValueError("config.ssh_user must be non-empty.")


@dataclass(slots=True)
class Machine:
    """One provisioned remote node and its task slots."""

    name: str
    id: str
    ip: str
    tasks: list[Task | None] = field(default_factory=list)
    next_check: datetime | None = None
    bootstrapped: bool = False

    @classmethod
    def provisioned(cls, *, name: str, id: str, ip: str, slots: int) -> Machine:  # noqa: A002
        return cls(name=name, id=id, ip=ip, tasks=[None] * slots)

    @property
    def is_idle(self) -> bool:
        return all(task is None for task in self.tasks)

    def assign(self, slot: int, task: Task) -> None:
        if self.tasks[slot] is not None:
            raise ValueError(f"Slot {slot} of machine {self.name} is already occupied.")
        self.tasks[slot] = task

    def release(self, slot: int) -> Task:
        task = self.tasks[slot]
        if task is None:
            raise ValueError(f"Slot {slot} of machine {self.name} is empty.")
        self.tasks[slot] = None
        return task


@dataclass(slots=True)
class Job:
    """Root aggregate persisted in the job state file."""

    binary: Path
    config: JobConfig
    inputs: list[Path] = field(default_factory=list)
    machines: list[Machine] = field(default_factory=list)
    tasks: deque[Task] = field(default_factory=deque)

    def machine(self, name: str) -> Machine:
        for machine in self.machines:
            if machine.name == name:
                return machine
        raise KeyError(name)

    def remove_machine(self, name: str) -> Machine:
        """Drop a machine from the pool, keeping the order of the others."""

        machine = self.machine(name)
        self.machines.remove(machine)
        return machine

    def pending_instances(self) -> int:
        return sum(task.multiplicity for task in self.tasks)

    def running_instances(self) -> int:
        return sum(1 for machine in self.machines for task in machine.tasks if task is not None)
