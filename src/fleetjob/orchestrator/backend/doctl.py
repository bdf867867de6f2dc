"""DigitalOcean droplet provisioning through the ``doctl`` CLI."""

from __future__ import annotations

import ipaddress
import logging
import subprocess

from fleetjob.orchestrator.backend.base import ProvisionedMachine
from fleetjob.orchestrator.errors import ProvisioningError
from fleetjob.orchestrator.models import JobConfig, Machine

logger = logging.getLogger(__name__)


class DoctlProvisioner:
    """Create and delete droplets, one blocking ``doctl`` call each."""

    def __init__(self, *, binary: str = "doctl") -> None:
        self.binary = binary

    def create(self, name: str, config: JobConfig) -> ProvisionedMachine:
        logger.info("Creating machine %s", name)
        args = [
            self.binary,
            "compute",
            "droplet",
            "create",
            "--wait",
            "--image",
            config.image,
            "--size",
            config.size,
            "--region",
            config.region,
            "--ssh-keys",
            config.ssh_key,
            "--format",
            "ID,PublicIPv4",
            "--no-header",
            name,
        ]
        result = self._run(args, action=f"create machine {name}", capture=True)
        return parse_create_output(result.stdout, name=name)

    def delete(self, machine: Machine) -> None:
        logger.info("Deleting machine %s", machine.name)
        self._run(
            [self.binary, "compute", "droplet", "delete", "--force", machine.id],
            action=f"delete machine {machine.name}",
            capture=False,
        )

    def _run(
        self,
        args: list[str],
        *,
        action: str,
        capture: bool,
    ) -> subprocess.CompletedProcess[str]:
        try:
            result = subprocess.run(  # noqa: S603
                args,
                stdout=subprocess.PIPE if capture else None,
                text=True,
                check=False,
            )
        except FileNotFoundError as error:
            raise ProvisioningError(
                f"Failed to {action}: command not found: {self.binary}",
            ) from error
        except OSError as error:
            raise ProvisioningError(f"Failed to {action}: {error}") from error

        if result.returncode != 0:
            raise ProvisioningError(f"Failed to {action} (exit code {result.returncode}).")
        return result


def parse_create_output(stdout: str, *, name: str) -> ProvisionedMachine:
    """Extract droplet id and public IPv4 from ``--format ID,PublicIPv4`` output."""

    fields = stdout.split()
    if not fields:
        raise ProvisioningError(f"Missing droplet id for machine {name}.")
    if len(fields) < 2:  # noqa: PLR2004
        raise ProvisioningError(f"Missing droplet IP for machine {name}.")

    droplet_id, ip = fields[0], fields[1]
    if not droplet_id.isdigit():
        raise ProvisioningError(f"Malformed droplet id for machine {name}: {droplet_id!r}")
    try:
        ipaddress.ip_address(ip)
    except ValueError as error:
        raise ProvisioningError(f"Malformed droplet IP for machine {name}: {ip!r}") from error
    return ProvisionedMachine(id=droplet_id, ip=ip)
