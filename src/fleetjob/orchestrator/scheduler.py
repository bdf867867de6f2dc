"""Event loop that provisions the pool, feeds task slots and retires machines."""

from __future__ import annotations

import logging
import signal
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta

from fleetjob.common import utc_now
from fleetjob.orchestrator.backend.base import Provisioner, Transport
from fleetjob.orchestrator.models import Job, JobConfig, Machine, Task, expand_next
from fleetjob.orchestrator.pool import CheckQueue, next_machine_name, target_machine_count
from fleetjob.orchestrator.state import JobStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RunSummary:
    """Aggregate scheduler counters for CLI reporting."""

    machines_created: int = 0
    machines_bootstrapped: int = 0
    dispatched: int = 0
    completed: int = 0
    fetches: int = 0
    machines_deleted: int = 0
    interrupted: bool = False


class JobScheduler:
    """Drives one job from its persisted state until the pool is drained.

    Every state change is written through ``store`` before the loop moves
    on, so a killed run can be resumed from the state file.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        job: Job,
        store: JobStore,
        provisioner: Provisioner,
        transport: Transport,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
        stop_poll_seconds: float = 1.0,
    ) -> None:
        self.job = job
        self.store = store
        self.provisioner = provisioner
        self.transport = transport
        self.checks = CheckQueue()
        self.summary = RunSummary()
        self.stop_poll_seconds = stop_poll_seconds
        self._clock = clock
        self._sleep = sleep
        self._stop_requested = False

    @property
    def config(self) -> JobConfig:
        return self.job.config

    def run(self) -> RunSummary:
        """Provision, bootstrap, then process slot checks until none remain."""

        with self._signal_handlers():
            self.provision()
            self.bootstrap()
            self.seed_checks()
            while not self._stop_requested and self.run_once():
                pass

        drained = not self.job.machines and not self.job.tasks
        self.summary.interrupted = self._stop_requested and not drained
        return self.summary

    def provision(self) -> None:
        """Create machines until the pool reaches its target size."""

        target = target_machine_count(self.job.tasks, self.config)
        logger.info("Machine pool: %d live, target %d", len(self.job.machines), target)
        while len(self.job.machines) < target:
            if self._stop_requested:
                return
            name = next_machine_name(self.config.name, self.job.machines)
            created = self.provisioner.create(name, self.config)
            machine = Machine.provisioned(
                name=name,
                id=created.id,
                ip=created.ip,
                slots=self.config.tasks_per_machine,
            )
            self.job.machines.append(machine)
            self.summary.machines_created += 1
            logger.info("Machine %s is up: id=%s ip=%s", name, created.id, created.ip)
            self._persist()

    def bootstrap(self) -> None:
        """Ship the payload and run the install command on fresh machines."""

        for machine in self.job.machines:
            if machine.bootstrapped:
                continue
            if self._stop_requested:
                return
            binary, inputs = self.store.payload(self.job)
            self.transport.copy(binary, inputs, machine, self.config)
            if self.config.install_cmd.strip():
                self.transport.run_install(self.config.install_cmd, machine, self.config)
            else:
                logger.info("No install command configured for machine %s", machine.name)
            machine.bootstrapped = True
            self.summary.machines_bootstrapped += 1
            self._persist()

    def seed_checks(self) -> None:
        """Queue one check per slot.

        Empty slots are due now. Occupied slots keep the machine's persisted
        ``next_check`` when it lies in the future.
        """

        now = self._clock()
        for machine in self.job.machines:
            resume_at = max(now, machine.next_check) if machine.next_check else now
            for slot, task in enumerate(machine.tasks):
                if (machine.name, slot) not in self.checks:
                    self.checks.push(now if task is None else resume_at, machine.name, slot)
            machine.next_check = self.checks.earliest_for(machine.name)

    def run_once(self) -> bool:
        """Handle the earliest slot check; return ``False`` once none are left."""

        entry = self.checks.peek()
        if entry is None:
            return False

        self._wait_until(entry.due)
        if self._stop_requested:
            return True

        self.checks.pop()
        machine = self.job.machine(entry.machine)
        machine.next_check = self.checks.earliest_for(machine.name)
        self._check_slot(machine, entry.slot)
        return True

    def _check_slot(self, machine: Machine, slot: int) -> None:
        task = machine.tasks[slot]
        if task is not None and not self._collect(machine, slot, task):
            self._schedule(machine, slot)
            self._persist()
            return

        next_task = expand_next(self.job.tasks)
        if next_task is not None:
            self.transport.start_task(next_task, machine, self.config)
            machine.assign(slot, next_task)
            self.summary.dispatched += 1
            self._schedule(machine, slot)
            self._persist()
        elif machine.is_idle:
            self._decommission(machine)
        elif task is None:
            # Slot stays empty; only the machine's next_check moved.
            self._persist()

    def _collect(self, machine: Machine, slot: int, task: Task) -> bool:
        """Probe a running task, fetch its results and free the slot once it is done."""

        finished = self.transport.probe_done(task, machine, self.config)
        if finished or self.config.fetch_partial_results:
            self.transport.fetch_results(
                task,
                machine,
                self.config,
                self.store.results_dir(self.job),
            )
            self.summary.fetches += 1
        if finished:
            machine.release(slot)
            self.summary.completed += 1
            logger.info("Task %s finished on machine %s", task.name, machine.name)
            self._persist()
        return finished

    def _schedule(self, machine: Machine, slot: int) -> None:
        due = self._clock() + timedelta(seconds=self.config.check_interval)
        self.checks.push(due, machine.name, slot)
        machine.next_check = self.checks.earliest_for(machine.name)

    def _decommission(self, machine: Machine) -> None:
        if not machine.is_idle or self.job.tasks:
            raise RuntimeError(f"Refusing to delete machine {machine.name} with work remaining.")

        self.provisioner.delete(machine)
        dropped = self.checks.discard_machine(machine.name)
        self.job.remove_machine(machine.name)
        self.summary.machines_deleted += 1
        logger.info(
            "Machine %s deleted (dropped %d pending checks, %d machines left)",
            machine.name,
            dropped,
            len(self.job.machines),
        )
        self._persist()

    def _persist(self) -> None:
        self.store.save(self.job)

    def _wait_until(self, due: datetime) -> None:
        while not self._stop_requested:
            remaining = (due - self._clock()).total_seconds()
            if remaining <= 0:
                return
            self._sleep(min(self.stop_poll_seconds, remaining))

    def request_stop(self, *, signal_name: str | None = None) -> None:
        if not self._stop_requested:
            logger.warning(
                "Stop requested (%s); state is saved, re-run the same job file to resume.",
                signal_name or "manual",
            )
        self._stop_requested = True

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self.request_stop(signal_name=name)

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            yield
            return
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
