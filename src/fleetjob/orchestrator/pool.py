"""Machine pool sizing, naming and the time-ordered slot check queue."""

from __future__ import annotations

import heapq
import itertools
from collections.abc import Iterable
from datetime import datetime
from typing import NamedTuple

from fleetjob.orchestrator.models import JobConfig, Machine, Task


def target_machine_count(tasks: Iterable[Task], config: JobConfig) -> int:
    """Pool size justified by the outstanding task volume, capped by config."""

    outstanding = sum(task.multiplicity for task in tasks)
    return min(outstanding, config.max_machines)


def next_machine_name(prefix: str, machines: Iterable[Machine]) -> str:
    """Lowest ``<prefix>-<n>`` name not taken by a live machine."""

    taken = {machine.name for machine in machines}
    for index in itertools.count():
        candidate = f"{prefix}-{index}"
        if candidate not in taken:
            return candidate
    raise AssertionError("unreachable")  # pragma: no cover


class SlotCheck(NamedTuple):
    """One scheduled probe of a machine slot."""

    due: datetime
    machine: str
    slot: int


class CheckQueue:
    """Min-heap of slot checks ordered by due time, then insertion order.

    Entries address machines by name, so removing a machine from the pool
    never invalidates entries held for the others.
    """

    def __init__(self) -> None:
        self._heap: list[tuple[datetime, int, str, int]] = []
        self._pending: set[tuple[str, int]] = set()
        self._sequence = itertools.count()

    def __len__(self) -> int:
        return len(self._heap)

    def __contains__(self, key: object) -> bool:
        return key in self._pending

    def push(self, due: datetime, machine: str, slot: int) -> None:
        key = (machine, slot)
        if key in self._pending:
            raise ValueError(f"Slot {slot} of machine {machine} already has a pending check.")
        self._pending.add(key)
        heapq.heappush(self._heap, (due, next(self._sequence), machine, slot))

    def peek(self) -> SlotCheck | None:
        if not self._heap:
            return None
        due, _, machine, slot = self._heap[0]
        return SlotCheck(due=due, machine=machine, slot=slot)

    def pop(self) -> SlotCheck:
        due, _, machine, slot = heapq.heappop(self._heap)
        self._pending.discard((machine, slot))
        return SlotCheck(due=due, machine=machine, slot=slot)

    def discard_machine(self, machine: str) -> int:
        """Drop every pending check for ``machine``; return how many were removed."""

        kept = [entry for entry in self._heap if entry[2] != machine]
        removed = len(self._heap) - len(kept)
        if removed:
            heapq.heapify(kept)
            self._heap = kept
            self._pending = {key for key in self._pending if key[0] != machine}
        return removed

    def earliest_for(self, machine: str) -> datetime | None:
        dues = [entry[0] for entry in self._heap if entry[2] == machine]
        return min(dues) if dues else None

    def entries(self) -> list[SlotCheck]:
        """Pending checks in processing order."""

        return [
            SlotCheck(due=due, machine=machine, slot=slot)
            for due, _, machine, slot in sorted(self._heap)
        ]
