"""Rendering helpers for `tsbuild --list`.

Tables are printed with rich; the data comes from VMLister.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from tsbuild.vm_lister import RegionInfo, VMLister, VMSummary

logger = logging.getLogger(__name__)

__all__ = [
    "build_region_table",
    "build_vm_table",
    "show_regions",
    "show_vms",
]


def _state_rich(power_state: str) -> str:
    if not power_state:
        return "[dim]-[/dim]"
    if power_state == "VM running":
        return f"[green]{escape(power_state)}[/green]"
    if power_state in ("VM deallocated", "VM stopped"):
        return f"[red]{escape(power_state)}[/red]"
    return f"[yellow]{escape(power_state)}[/yellow]"


def build_region_table(regions: list[RegionInfo]) -> Table:
    table = Table(title="Azure Regions", show_header=True, header_style="bold")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Display Name")
    table.add_column("Regional Display Name")

    for region in regions:
        table.add_row(
            escape(region.name),
            escape(region.display_name),
            escape(region.regional_display_name),
        )
    return table


def build_vm_table(vms: list[VMSummary]) -> Table:
    """Build the VM table; empty IP/FQDN cells stay empty."""
    table = Table(title="Azure VMs", show_header=True, header_style="bold")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Resource Group")
    table.add_column("Location")
    table.add_column("Power State")
    table.add_column("Public IP", style="magenta")
    table.add_column("FQDN")

    for vm in vms:
        table.add_row(
            escape(vm.name),
            escape(vm.resource_group),
            escape(vm.location),
            _state_rich(vm.power_state),
            escape(vm.public_ip),
            escape(vm.fqdn),
        )
    return table


def show_regions(lister: VMLister, console: Console | None = None) -> int:
    """Print the region table. Returns the number of regions."""
    console = console or Console()
    regions = lister.list_regions()
    console.print(build_region_table(regions))
    return len(regions)


def show_vms(lister: VMLister, console: Console | None = None) -> int:
    """Print the VM table, or "No VMs found." Returns the number of VMs."""
    console = console or Console()
    console.print("[dim]Fetching VMs...[/dim]")
    vms = lister.list_vms()
    if not vms:
        console.print("No VMs found.")
        return 0

    console.print(build_vm_table(vms))
    running = sum(1 for vm in vms if vm.is_running())
    console.print(f"\nTotal: {len(vms)} VMs ({running} running)")
    return len(vms)
