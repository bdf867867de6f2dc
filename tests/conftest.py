"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest
from fakes import FakeClock, FakeRemote, Harness

from fleetjob.orchestrator.models import Job
from fleetjob.orchestrator.state import write_job


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def job_path(tmp_path: Path) -> Path:
    return tmp_path / "job.json"


@pytest.fixture()
def harness_factory(job_path: Path):
    """Write ``job`` to the state file and build a scheduler over it."""

    def _build(job: Job | None, remote: FakeRemote, **kwargs) -> Harness:
        if job is not None:
            write_job(job_path, job)
        return Harness(job_path, remote, **kwargs)

    return _build
