"""Read-only reports: regions and existing VMs.

Nothing in this module creates, updates or deletes Azure resources.

VM listing resolves the public IP and FQDN of each VM with one extra
`az network public-ip list` per VM.
"""

import logging
from dataclasses import dataclass
from typing import Any

from tsbuild.azure_cli import AzureCLI

logger = logging.getLogger(__name__)


@dataclass
class RegionInfo:
    """Azure region as reported by az account list-locations."""

    name: str
    display_name: str = ""
    regional_display_name: str = ""


@dataclass
class VMSummary:
    """One row of the VM report."""

    name: str
    resource_group: str
    location: str
    power_state: str = ""
    public_ip: str = ""
    fqdn: str = ""

    def is_running(self) -> bool:
        return self.power_state == "VM running"

    def as_row(self) -> list[str]:
        return [
            self.name,
            self.resource_group,
            self.location,
            self.power_state,
            self.public_ip,
            self.fqdn,
        ]


class VMLister:
    """Produce region and VM reports through the Azure CLI."""

    def __init__(self, cli: AzureCLI):
        self.cli = cli

    def list_regions(self) -> list[RegionInfo]:
        """List the subscription's regions sorted by name."""
        regions = [
            RegionInfo(
                name=item.get("name", ""),
                display_name=item.get("displayName", ""),
                regional_display_name=item.get("regionalDisplayName", ""),
            )
            for item in self.cli.list_locations()
            if item.get("name")
        ]
        return sorted(regions, key=lambda r: r.name)

    def list_vms(self) -> list[VMSummary]:
        """List all VMs with their public IP and FQDN."""
        vms: list[VMSummary] = []
        for vm_data in self.cli.list_vms():
            summary = VMSummary(
                name=vm_data.get("name", ""),
                resource_group=vm_data.get("resourceGroup", ""),
                location=vm_data.get("location", ""),
                power_state=vm_data.get("powerState") or "",
            )
            public_ip, fqdn = self.resolve_public_endpoint(summary.name, summary.resource_group)
            summary.public_ip = public_ip
            summary.fqdn = fqdn
            vms.append(summary)

        logger.debug(f"Found {len(vms)} VMs")
        return vms

    def resolve_public_endpoint(self, vm_name: str, resource_group: str) -> tuple[str, str]:
        """Find public IP and FQDN of a VM by its IP configuration id.

        Returns:
            (ip, fqdn); either may be empty. Multiple matches are joined with
            spaces.
        """
        records = self.cli.list_public_ips(resource_group)
        matches = [r for r in records if self._belongs_to(r, vm_name)]

        ips = [r.get("ipAddress") for r in matches if r.get("ipAddress")]
        fqdns = [
            (r.get("dnsSettings") or {}).get("fqdn")
            for r in matches
            if (r.get("dnsSettings") or {}).get("fqdn")
        ]
        return " ".join(ips), " ".join(fqdns)

    @staticmethod
    def _belongs_to(record: dict[str, Any], vm_name: str) -> bool:
        ip_config = record.get("ipConfiguration") or {}
        return vm_name in (ip_config.get("id") or "")


__all__ = ["RegionInfo", "VMLister", "VMSummary"]
