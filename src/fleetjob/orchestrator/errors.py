"""Error types surfaced by the orchestrator to the CLI."""

from __future__ import annotations


class FleetJobError(RuntimeError):
    """Base class for failures that abort a job run."""


class ProvisioningError(FleetJobError):
    """Remote machine create/delete failed or returned malformed output."""


class TransportError(FleetJobError):
    """Copy, install, dispatch, probe or fetch against a machine failed."""


class StateFileError(FleetJobError):
    """Job state file is missing, unreadable, malformed or could not be written."""
