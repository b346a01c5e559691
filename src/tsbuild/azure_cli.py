"""Azure CLI access layer.

Every call tsbuild makes to Azure goes through the AzureCLI class in this
module. It exposes the handful of operations the lister and the provisioner
need, runs them as `az ... --output json` subprocesses and returns parsed
JSON. Keeping them behind one class gives the build workflow a single seam
for test doubles.

Security:
- No shell=True
- Commands are logged only after sanitization
- Extension settings (which carry the Tailscale key) are handed to az through
  a 0600 temp file instead of the process argument list
"""

import json
import logging
import os
import subprocess
import tempfile
from pathlib import Path
from typing import Any

from tsbuild.modules.validation import sanitize_azure_error
from tsbuild.security import sanitize_azure_command

logger = logging.getLogger(__name__)


class AzureCLIError(Exception):
    """Raised when an az command fails, times out or returns unreadable output."""

    def __init__(self, message: str, cmd: list[str] | None = None, returncode: int | None = None,
                 stderr: str = ""):
        super().__init__(message)
        self.cmd = cmd or []
        self.returncode = returncode
        self.stderr = stderr


class AzureCLI:
    """Thin wrapper over the az executable.

    Read-only operations: account_show, list_locations, list_vms,
    list_public_ips, group_exists, list_skus, list_images, get_instance_view,
    get_power_state, get_agent_status, get_provisioning_state, show_vm_details.

    Mutating operations: login_device_code, create_group, create_nsg,
    create_nsg_rule, create_vm, set_custom_script, run_shell_script.
    """

    CUSTOM_SCRIPT_EXTENSION = "customScript"
    CUSTOM_SCRIPT_PUBLISHER = "Microsoft.Azure.Extensions"

    def __init__(self, timeout: int = 600, executable: str = "az"):
        """Initialize the wrapper.

        Args:
            timeout: Default subprocess timeout in seconds
            executable: az binary name or path
        """
        self.timeout = timeout
        self.executable = executable

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def run(self, args: list[str], *, timeout: int | None = None, parse_json: bool = True) -> Any:
        """Run an az command and return its parsed JSON output.

        Args:
            args: Arguments after "az", e.g. ["vm", "list"]
            timeout: Override of the default timeout
            parse_json: Append --output json and decode stdout

        Returns:
            Decoded JSON (None for empty output) or raw stdout text

        Raises:
            AzureCLIError: Non-zero exit, timeout, missing binary or bad JSON
        """
        cmd = [self.executable, *args]
        if parse_json and "--output" not in args:
            cmd.extend(["--output", "json"])

        display = sanitize_azure_command(cmd)
        logger.debug(f"Executing: {display}")

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout or self.timeout,
                check=False,
            )
        except FileNotFoundError as e:
            raise AzureCLIError("Azure CLI not found.", cmd=cmd) from e
        except subprocess.TimeoutExpired as e:
            raise AzureCLIError(
                f"Command timed out after {e.timeout}s: {display}", cmd=cmd
            ) from e

        if result.returncode != 0:
            message = sanitize_azure_error(result.stderr)
            logger.debug(f"az exited with {result.returncode}: {message}")
            raise AzureCLIError(
                f"{display} failed: {message}",
                cmd=cmd,
                returncode=result.returncode,
                stderr=result.stderr,
            )

        if not parse_json:
            return result.stdout

        output = result.stdout.strip()
        if not output:
            return None

        try:
            return json.loads(output)
        except json.JSONDecodeError as e:
            raise AzureCLIError(f"Failed to parse output of {display}", cmd=cmd) from e

    # ------------------------------------------------------------------
    # Account
    # ------------------------------------------------------------------

    def account_show(self) -> dict[str, Any]:
        """Return the active subscription (fails when not logged in)."""
        return self.run(["account", "show"], timeout=30) or {}

    def login_device_code(self) -> None:
        """Run the interactive device-code login flow.

        Output is not captured so the operator sees the device code and URL.

        Raises:
            AzureCLIError: If login fails or az is missing
        """
        cmd = [self.executable, "login", "--use-device-code", "--output", "none"]
        logger.debug(f"Executing: {sanitize_azure_command(cmd)}")
        try:
            result = subprocess.run(cmd, check=False)
        except FileNotFoundError as e:
            raise AzureCLIError("Azure CLI not found.", cmd=cmd) from e
        if result.returncode != 0:
            raise AzureCLIError(
                f"az login exited with status {result.returncode}",
                cmd=cmd,
                returncode=result.returncode,
            )

    def list_locations(self) -> list[dict[str, Any]]:
        return self.run(["account", "list-locations"], timeout=60) or []

    # ------------------------------------------------------------------
    # Inventory
    # ------------------------------------------------------------------

    def list_vms(self) -> list[dict[str, Any]]:
        """List every VM in the subscription with power state details."""
        return self.run(["vm", "list", "--show-details"], timeout=120) or []

    def list_public_ips(self, resource_group: str) -> list[dict[str, Any]]:
        return self.run(
            ["network", "public-ip", "list", "--resource-group", resource_group], timeout=60
        ) or []

    def list_skus(self, location: str, size_family: str) -> list[dict[str, Any]]:
        return self.run(
            [
                "vm",
                "list-skus",
                "--location",
                location,
                "--size",
                size_family,
                "--resource-type",
                "virtualMachines",
            ],
            timeout=120,
        ) or []

    def list_images(self, publisher: str, offer: str) -> list[dict[str, Any]]:
        return self.run(
            ["vm", "image", "list", "--publisher", publisher, "--offer", offer, "--all"],
            timeout=180,
        ) or []

    # ------------------------------------------------------------------
    # Resource group and network
    # ------------------------------------------------------------------

    def group_exists(self, name: str) -> bool:
        result = self.run(["group", "exists", "--name", name], timeout=30)
        return result is True or str(result).strip().lower() == "true"

    def create_group(self, name: str, location: str) -> dict[str, Any]:
        return self.run(["group", "create", "--name", name, "--location", location]) or {}

    def create_nsg(self, resource_group: str, name: str, location: str) -> dict[str, Any]:
        return self.run(
            [
                "network",
                "nsg",
                "create",
                "--resource-group",
                resource_group,
                "--name",
                name,
                "--location",
                location,
            ]
        ) or {}

    def create_nsg_rule(
        self,
        resource_group: str,
        nsg_name: str,
        rule_name: str,
        *,
        priority: int,
        source_address: str,
        destination_port: int = 22,
    ) -> dict[str, Any]:
        """Create a single inbound TCP allow rule."""
        return self.run(
            [
                "network",
                "nsg",
                "rule",
                "create",
                "--resource-group",
                resource_group,
                "--nsg-name",
                nsg_name,
                "--name",
                rule_name,
                "--priority",
                str(priority),
                "--protocol",
                "Tcp",
                "--direction",
                "Inbound",
                "--source-address-prefixes",
                source_address,
                "--source-port-ranges",
                "*",
                "--destination-address-prefixes",
                "*",
                "--destination-port-ranges",
                str(destination_port),
                "--access",
                "Allow",
            ]
        ) or {}

    # ------------------------------------------------------------------
    # Virtual machines
    # ------------------------------------------------------------------

    def create_vm(
        self,
        *,
        resource_group: str,
        name: str,
        image: str,
        size: str,
        admin_username: str,
        custom_data: Path,
        os_disk_size_gb: int | None = None,
        ssh_key_path: Path | None = None,
        nsg_name: str | None = None,
        dns_label: str | None = None,
        tags: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Create a VM and return the az vm create result."""
        args = [
            "vm",
            "create",
            "--resource-group",
            resource_group,
            "--name",
            name,
            "--image",
            image,
            "--size",
            size,
            "--admin-username",
            admin_username,
            "--custom-data",
            str(custom_data),
        ]
        if os_disk_size_gb:
            args.extend(["--os-disk-size-gb", str(os_disk_size_gb)])
        if ssh_key_path:
            args.extend(["--ssh-key-values", str(ssh_key_path)])
        else:
            args.append("--generate-ssh-keys")
        if nsg_name:
            args.extend(["--nsg", nsg_name])
        if dns_label:
            args.extend(["--public-ip-address-dns-name", dns_label])
        if tags:
            args.append("--tags")
            args.extend(f"{key}={value}" for key, value in tags.items())

        return self.run(args) or {}

    def get_instance_view(self, resource_group: str, name: str) -> dict[str, Any]:
        return self.run(
            ["vm", "get-instance-view", "--resource-group", resource_group, "--name", name],
            timeout=60,
        ) or {}

    def get_power_state(self, resource_group: str, name: str) -> str | None:
        """Display status of the PowerState/* entry, e.g. "VM running"."""
        view = self.get_instance_view(resource_group, name)
        statuses = (view.get("instanceView") or {}).get("statuses") or []
        for status in statuses:
            if str(status.get("code", "")).startswith("PowerState/"):
                return status.get("displayStatus")
        return None

    def get_agent_status(self, resource_group: str, name: str) -> str | None:
        """Display status reported by the in-guest VM agent, e.g. "Ready"."""
        view = self.get_instance_view(resource_group, name)
        agent = (view.get("instanceView") or {}).get("vmAgent") or {}
        statuses = agent.get("statuses") or []
        if not statuses:
            return None
        return statuses[0].get("displayStatus")

    def get_provisioning_state(self, resource_group: str, name: str) -> str | None:
        vm = self.run(
            ["vm", "show", "--resource-group", resource_group, "--name", name], timeout=60
        ) or {}
        return vm.get("provisioningState")

    def show_vm_details(self, resource_group: str, name: str) -> dict[str, Any]:
        """az vm show -d: includes publicIps and fqdns."""
        return self.run(
            ["vm", "show", "--show-details", "--resource-group", resource_group, "--name", name],
            timeout=60,
        ) or {}

    def set_custom_script(
        self, resource_group: str, vm_name: str, protected_settings: str
    ) -> dict[str, Any]:
        """Install the Linux CustomScript extension with protected settings.

        Args:
            protected_settings: JSON text, e.g. {"commandToExecute": "..."}
        """
        fd, settings_path = tempfile.mkstemp(prefix="tsbuild-", suffix=".json")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(protected_settings)
            return self.run(
                [
                    "vm",
                    "extension",
                    "set",
                    "--resource-group",
                    resource_group,
                    "--vm-name",
                    vm_name,
                    "--name",
                    self.CUSTOM_SCRIPT_EXTENSION,
                    "--publisher",
                    self.CUSTOM_SCRIPT_PUBLISHER,
                    "--protected-settings",
                    f"@{settings_path}",
                ]
            ) or {}
        finally:
            Path(settings_path).unlink(missing_ok=True)

    def run_shell_script(
        self, resource_group: str, vm_name: str, script: str, timeout: int = 120
    ) -> str:
        """Run a script through RunShellScript and return the raw message text."""
        result = self.run(
            [
                "vm",
                "run-command",
                "invoke",
                "--resource-group",
                resource_group,
                "--name",
                vm_name,
                "--command-id",
                "RunShellScript",
                "--scripts",
                script,
            ],
            timeout=timeout,
        ) or {}
        values = result.get("value") or [{}]
        return values[0].get("message") or ""


__all__ = ["AzureCLI", "AzureCLIError"]
