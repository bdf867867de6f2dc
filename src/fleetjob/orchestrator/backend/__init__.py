"""Provisioning and transport collaborators."""

from fleetjob.orchestrator.backend.base import ProvisionedMachine, Provisioner, Transport
from fleetjob.orchestrator.backend.doctl import DoctlProvisioner
from fleetjob.orchestrator.backend.ssh import SSH_OPTIONS, SshTransport

__all__ = [
    "SSH_OPTIONS",
    "DoctlProvisioner",
    "ProvisionedMachine",
    "Provisioner",
    "SshTransport",
    "Transport",
]
