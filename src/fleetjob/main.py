"""CLI entrypoint for fleetjob."""

import logging
from pathlib import Path

import rich_click as click

from fleetjob import __version__
from fleetjob.config import Settings
from fleetjob.orchestrator.controllers import JobCliController, RunJobCommand
from fleetjob.orchestrator.errors import FleetJobError

click.rich_click.USE_MARKDOWN = True
JOB_CONTROLLER = JobCliController()


@click.command()
@click.version_option(version=__version__, prog_name="fleetjob")
@click.argument("job_path", type=click.Path(path_type=Path, dir_okay=False))
def fleetjob(job_path: Path) -> None:
    """Run the batch job described by **JOB_PATH** until every task is done.

    The job state file is rewritten after every step; re-run the same
    command to resume an interrupted job.
    """

    try:
        settings = Settings.from_env()
        settings.validate()
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _configure_logging(settings.log_level)

    try:
        result = JOB_CONTROLLER.run_job(RunJobCommand(job_path=job_path), settings)
    except FleetJobError as error:
        raise click.ClickException(str(error)) from error

    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Job run interrupted before all tasks finished.")


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    fleetjob()
