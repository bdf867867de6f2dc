from __future__ import annotations

import random
from datetime import UTC, datetime, timedelta

import allure
import pytest
from fakes import make_job, ranged

from fleetjob.orchestrator.models import Machine, Task
from fleetjob.orchestrator.pool import CheckQueue, next_machine_name, target_machine_count

pytestmark = [
    allure.epic("Orchestration Engine"),
    allure.feature("Pool Sizing & Check Queue"),
]

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def test_target_counts_range_widths_and_single_tasks() -> None:
    job = make_job(
        [ranged("a", "a", 0, 3), Task(name="b", cmd="b"), ranged("c", "c", 5, 6)],
        max_machines=50,
    )

    assert target_machine_count(job.tasks, job.config) == 5


def test_target_is_capped_by_max_machines() -> None:
    job = make_job([ranged("a", "a", 0, 100)], max_machines=4)

    assert target_machine_count(job.tasks, job.config) == 4


def test_target_is_zero_for_empty_queue() -> None:
    job = make_job([])

    assert target_machine_count(job.tasks, job.config) == 0


@pytest.mark.parametrize("seed", range(20))
def test_target_never_exceeds_cap_or_outstanding_volume(seed: int) -> None:
    rng = random.Random(seed)
    tasks: list[Task] = []
    for index in range(rng.randint(0, 8)):
        if rng.random() < 0.5:
            tasks.append(Task(name=f"t{index}", cmd="x"))
        else:
            start = rng.randint(-5, 5)
            tasks.append(ranged(f"r{index}", "x", start, start + rng.randint(1, 6)))
    job = make_job(tasks, max_machines=rng.randint(1, 10))

    target = target_machine_count(job.tasks, job.config)

    assert target <= job.config.max_machines
    assert target <= job.pending_instances()
    assert target == min(job.pending_instances(), job.config.max_machines)


def test_next_machine_name_reuses_lowest_free_suffix() -> None:
    machines = [
        Machine.provisioned(name="fleet-0", id="1", ip="10.0.0.1", slots=1),
        Machine.provisioned(name="fleet-2", id="3", ip="10.0.0.3", slots=1),
    ]

    assert next_machine_name("fleet", []) == "fleet-0"
    assert next_machine_name("fleet", machines) == "fleet-1"


def test_check_queue_orders_by_due_then_insertion() -> None:
    queue = CheckQueue()
    queue.push(T0 + timedelta(seconds=5), "m-1", 0)
    queue.push(T0, "m-2", 0)
    queue.push(T0, "m-0", 1)
    queue.push(T0, "m-0", 0)

    popped = []
    while queue:
        entry = queue.pop()
        popped.append((entry.machine, entry.slot))

    assert popped == [("m-2", 0), ("m-0", 1), ("m-0", 0), ("m-1", 0)]


def test_check_queue_rejects_second_pending_entry_for_same_slot() -> None:
    queue = CheckQueue()
    queue.push(T0, "m-0", 0)

    with pytest.raises(ValueError, match="already has a pending check"):
        queue.push(T0 + timedelta(seconds=1), "m-0", 0)

    queue.pop()
    queue.push(T0 + timedelta(seconds=1), "m-0", 0)
    assert ("m-0", 0) in queue


def test_removing_machine_drops_its_checks_and_keeps_others_addressable() -> None:
    job = make_job([])
    job.machines = [
        Machine.provisioned(name=f"fleet-{index}", id=str(index), ip=f"10.0.0.{index}", slots=2)
        for index in range(3)
    ]
    queue = CheckQueue()
    for machine in job.machines:
        for slot in range(2):
            queue.push(T0 + timedelta(seconds=slot), machine.name, slot)

    assert queue.discard_machine("fleet-0") == 2
    removed = job.remove_machine("fleet-0")

    assert removed.ip == "10.0.0.0"
    assert [machine.name for machine in job.machines] == ["fleet-1", "fleet-2"]
    remaining = queue.entries()
    assert {entry.machine for entry in remaining} == {"fleet-1", "fleet-2"}
    assert [(entry.machine, entry.slot) for entry in remaining] == [
        ("fleet-1", 0),
        ("fleet-2", 0),
        ("fleet-1", 1),
        ("fleet-2", 1),
    ]
    for entry in remaining:
        machine = job.machine(entry.machine)
        assert machine.ip == f"10.0.0.{entry.machine.rsplit('-', 1)[1]}"
    assert ("fleet-0", 0) not in queue
    queue.push(T0, "fleet-0", 0)


def test_earliest_for_reports_next_due_of_machine() -> None:
    queue = CheckQueue()
    queue.push(T0 + timedelta(seconds=30), "m-0", 0)
    queue.push(T0 + timedelta(seconds=10), "m-0", 1)
    queue.push(T0, "m-1", 0)

    assert queue.earliest_for("m-0") == T0 + timedelta(seconds=10)
    assert queue.earliest_for("m-9") is None
