"""
Shared test fixtures and configuration for tsbuild tests.

This module provides common fixtures used across the unit tests:
- A recording fake of the AzureCLI seam
- Build configurations without real sleeps
- Temporary cloud-init and SSH key files
- Progress display writing to a buffer
"""

import io
from pathlib import Path
from typing import Any

import pytest

from tsbuild.azure_cli import AzureCLIError
from tsbuild.config_manager import BuildConfig
from tsbuild.modules.progress import ProgressDisplay

# ============================================================================
# AZURE CLI FAKE
# ============================================================================

SAMPLE_SKUS = [
    {
        "name": "Standard_B2s",
        "resourceType": "virtualMachines",
        "restrictions": [],
        "capabilities": [
            {"name": "vCPUs", "value": "2"},
            {"name": "MemoryGB", "value": "4"},
        ],
    },
    {
        "name": "Standard_B1ms",
        "resourceType": "virtualMachines",
        "restrictions": [],
        "capabilities": [
            {"name": "vCPUs", "value": "1"},
            {"name": "MemoryGB", "value": "2"},
        ],
    },
    {
        "name": "Standard_B1ls",
        "resourceType": "virtualMachines",
        "restrictions": [],
        "capabilities": [
            {"name": "vCPUs", "value": "1"},
            {"name": "MemoryGB", "value": "0.5"},
        ],
    },
]

SAMPLE_IMAGES = [
    {
        "urn": "Canonical:ubuntu-24_04-lts-daily:server:24.04.202409010",
        "version": "24.04.202409010",
    },
    {
        "urn": "Canonical:ubuntu-24_04-lts-daily:server:24.04.202410150",
        "version": "24.04.202410150",
    },
]

TAILSCALE_STATUS_MESSAGE = (
    "Enable succeeded: \n[stdout]\n100.64.0.7  exit-ams-01  user@  linux  -\n\n[stderr]\n"
)
EMPTY_RUN_COMMAND_MESSAGE = "Enable succeeded: \n[stdout]\n\n[stderr]\n"


class FakeAzureCLI:
    """In-memory stand-in for AzureCLI that records every call.

    Attributes are plain data so tests can adjust responses before a run.
    Lists of states are consumed one per call; the last entry repeats.
    """

    MUTATING = {
        "login_device_code",
        "create_group",
        "create_nsg",
        "create_nsg_rule",
        "create_vm",
        "set_custom_script",
        "run_shell_script",
    }

    def __init__(self):
        self.calls: list[tuple[str, tuple, dict]] = []
        self.logged_in = True
        self.account = {
            "id": "00000000-1111-2222-3333-444444444444",
            "name": "Test Subscription",
            "tenantId": "tenant-1",
            "user": {"name": "operator@example.com"},
        }
        self.locations = [
            {"name": "westeurope", "displayName": "West Europe", "regionalDisplayName": "(Europe) West Europe"},
            {"name": "eastus", "displayName": "East US", "regionalDisplayName": "(US) East US"},
        ]
        self.vms: list[dict[str, Any]] = []
        self.public_ips: dict[str, list[dict[str, Any]]] = {}
        self.group_exists_result = False
        self.skus = list(SAMPLE_SKUS)
        self.images = list(SAMPLE_IMAGES)
        self.power_states: list[str | None] = ["VM running"]
        self.provisioning_states: list[str | None] = ["Succeeded"]
        self.agent_states: list[str | None] = ["Ready"]
        self.run_command_messages: list[str] = [TAILSCALE_STATUS_MESSAGE]
        self.vm_details = {"publicIps": "20.1.2.3", "fqdns": "exit-ams-01.westeurope.cloudapp.azure.com"}
        self.fail_on: dict[str, AzureCLIError] = {}

    def _record(self, method: str, *args, **kwargs) -> None:
        self.calls.append((method, args, kwargs))
        if method in self.fail_on:
            raise self.fail_on[method]

    @staticmethod
    def _next(states: list) -> Any:
        if len(states) > 1:
            return states.pop(0)
        return states[0] if states else None

    def called(self, method: str) -> list[tuple[tuple, dict]]:
        return [(args, kwargs) for name, args, kwargs in self.calls if name == method]

    def method_names(self) -> list[str]:
        return [name for name, _, _ in self.calls]

    def mutating_calls(self) -> list[str]:
        return [name for name in self.method_names() if name in self.MUTATING]

    # Account

    def account_show(self):
        self._record("account_show")
        if not self.logged_in:
            raise AzureCLIError("Please run 'az login' to setup account.", returncode=1)
        return self.account

    def login_device_code(self):
        self._record("login_device_code")
        self.logged_in = True

    def list_locations(self):
        self._record("list_locations")
        return self.locations

    # Inventory

    def list_vms(self):
        self._record("list_vms")
        return self.vms

    def list_public_ips(self, resource_group):
        self._record("list_public_ips", resource_group)
        return self.public_ips.get(resource_group, [])

    def list_skus(self, location, size_family):
        self._record("list_skus", location, size_family)
        return self.skus

    def list_images(self, publisher, offer):
        self._record("list_images", publisher, offer)
        return self.images

    # Resource group and network

    def group_exists(self, name):
        self._record("group_exists", name)
        return self.group_exists_result

    def create_group(self, name, location):
        self._record("create_group", name, location)
        return {"name": name, "location": location}

    def create_nsg(self, resource_group, name, location):
        self._record("create_nsg", resource_group, name, location)
        return {"name": name}

    def create_nsg_rule(self, resource_group, nsg_name, rule_name, **kwargs):
        self._record("create_nsg_rule", resource_group, nsg_name, rule_name, **kwargs)
        return {"name": rule_name}

    # Virtual machines

    def create_vm(self, **kwargs):
        self._record("create_vm", **kwargs)
        return {"powerState": "VM running", "publicIpAddress": "20.1.2.3", "fqdns": ""}

    def get_power_state(self, resource_group, name):
        self._record("get_power_state", resource_group, name)
        return self._next(self.power_states)

    def get_provisioning_state(self, resource_group, name):
        self._record("get_provisioning_state", resource_group, name)
        return self._next(self.provisioning_states)

    def get_agent_status(self, resource_group, name):
        self._record("get_agent_status", resource_group, name)
        return self._next(self.agent_states)

    def show_vm_details(self, resource_group, name):
        self._record("show_vm_details", resource_group, name)
        return self.vm_details

    def set_custom_script(self, resource_group, vm_name, protected_settings):
        self._record("set_custom_script", resource_group, vm_name, protected_settings)
        return {"provisioningState": "Succeeded"}

    def run_shell_script(self, resource_group, vm_name, script, timeout=120):
        self._record("run_shell_script", resource_group, vm_name, script)
        return self._next(self.run_command_messages)


@pytest.fixture
def fake_az():
    """Recording fake of the AzureCLI seam with a happy-path catalog."""
    return FakeAzureCLI()


# ============================================================================
# CONFIGURATION FIXTURES
# ============================================================================


@pytest.fixture
def build_config():
    """BuildConfig with tiny poll counts and no delays."""
    return BuildConfig(
        vm_ready_attempts=3,
        vm_ready_delay=0.0,
        agent_ready_attempts=3,
        agent_ready_delay=0.0,
        tailscale_attempts=3,
        tailscale_delay=0.0,
    )


@pytest.fixture
def temp_home_dir(tmp_path, monkeypatch):
    """Temporary home directory so ~/.tsbuild/config.toml is never the real one."""
    home_dir = tmp_path / "home"
    home_dir.mkdir()
    monkeypatch.setenv("HOME", str(home_dir))
    monkeypatch.setattr(Path, "home", lambda: home_dir)
    return home_dir


# ============================================================================
# FILE FIXTURES
# ============================================================================


@pytest.fixture
def cloud_init_file(tmp_path):
    """Minimal cloud-init document."""
    path = tmp_path / "cloud-init.yaml"
    path.write_text("#cloud-config\npackage_update: true\n")
    return path


@pytest.fixture
def ssh_public_key(tmp_path):
    """OpenSSH public key file."""
    path = tmp_path / "id_ed25519.pub"
    path.write_text("ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIFakeKeyForTests operator@laptop\n")
    return path


# ============================================================================
# PROGRESS FIXTURES
# ============================================================================


@pytest.fixture
def progress_buffer():
    """ProgressDisplay writing ASCII output to a StringIO."""
    return ProgressDisplay(use_unicode=False, output_file=io.StringIO())
