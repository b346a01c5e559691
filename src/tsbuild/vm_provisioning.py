"""Exit node provisioning module.

This module runs the build workflow: it creates (if needed) a per-region
resource group, picks a VM size and image, locks SSH down to the caller's IP,
creates the VM with a cloud-init payload, waits for it to come up, and then
hands Tailscale installation to the CustomScript extension.

Phases run strictly in order. A failing phase raises and nothing already
created is rolled back; the three wait phases only warn when they time out.

Security:
- The Tailscale key is read from a hidden prompt and never logged
- SSH is admitted only from the caller's current public IP
- Sanitized logging of every az command
"""

import contextlib
import logging
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from functools import partial
from pathlib import Path

import click

from tsbuild.azure_cli import AzureCLI, AzureCLIError
from tsbuild.bootstrap import (
    BootstrapOptions,
    build_bootstrap_command,
    build_protected_settings,
    build_status_script,
    new_run_marker,
    parse_run_command_stdout,
)
from tsbuild.config_manager import BuildConfig
from tsbuild.image_selector import select_latest_image
from tsbuild.ip_discovery import discover_public_ip
from tsbuild.modules.progress import ProgressDisplay
from tsbuild.modules.validation import ValidationError, validate_auth_key
from tsbuild.retry_handler import poll_until
from tsbuild.vm_size_selector import parse_sku_catalog, select_vm_size

logger = logging.getLogger(__name__)

CLOUD_INIT_FILE_NAME = "cloud-init.yaml"
SSH_RULE_NAME = "AllowSSHFromMyIP"


class ProvisioningError(Exception):
    """Raised when a build phase fails."""

    pass


@dataclass
class BuildRequest:
    """What the operator asked for on the command line."""

    hostname: str
    region: str
    ssh_key_path: Path | None = None
    cloud_init_file: Path | None = None


@dataclass
class VMDetails:
    """The VM created by a build."""

    name: str
    resource_group: str
    location: str
    size: str
    image: str
    nsg_name: str | None = None
    dns_label: str | None = None
    public_ip: str | None = None
    fqdn: str | None = None


@dataclass
class BuildResult:
    """Summary of a finished build."""

    vm: VMDetails
    vm_ready: bool
    agent_ready: bool
    tailscale_ready: bool
    tailscale_status: str = ""
    run_marker: str | None = None


def prompt_for_auth_key() -> str:
    """Read the Tailscale key from the terminal without echo."""
    return click.prompt(
        "Enter Tailscale Key", hide_input=True, default="", show_default=False
    )


class ExitNodeProvisioner:
    """Build an Azure VM and join it to Tailscale as an exit node.

    All collaborators are injected so the workflow can run against a test
    double of AzureCLI without a terminal, network or real sleeps.
    """

    def __init__(
        self,
        config: BuildConfig,
        cli: AzureCLI,
        *,
        prompt_secret: Callable[[], str] = prompt_for_auth_key,
        discover_ip: Callable[[], str] | None = None,
        progress: ProgressDisplay | None = None,
        sleep: Callable[[float], None] | None = None,
        marker_factory: Callable[[], str] = new_run_marker,
    ):
        self.config = config
        self.cli = cli
        self.prompt_secret = prompt_secret
        self.discover_ip = discover_ip or partial(
            discover_public_ip,
            url=config.ip_discovery_url,
            timeout=config.ip_discovery_timeout,
        )
        self.progress = progress or ProgressDisplay()
        self.sleep = sleep or time.sleep
        self.marker_factory = marker_factory

    @contextlib.contextmanager
    def _phase(self, description: str) -> Iterator[None]:
        try:
            yield
        except AzureCLIError as e:
            raise ProvisioningError(f"{description} failed: {e}") from e

    # ------------------------------------------------------------------
    # Workflow
    # ------------------------------------------------------------------

    def build(self, request: BuildRequest) -> BuildResult:
        """Run the full build workflow.

        Raises:
            ValidationError: Empty key or missing cloud-init file
            IPDiscoveryError: Caller IP unavailable
            ImageSelectionError: Empty image catalog
            ProvisioningError: Any az call failed
        """
        auth_key = self.capture_auth_key()
        cloud_init = self.resolve_cloud_init(request)

        caller_ip = None
        if self.config.create_nsg:
            caller_ip = self.discover_caller_ip()

        resource_group = self.config.resource_group_for(request.region)
        self.ensure_resource_group(resource_group, request.region)

        size = self.choose_vm_size(request.region)
        image = self.choose_image()

        nsg_name = None
        if self.config.create_nsg and caller_ip:
            nsg_name = self.create_network_security_group(
                resource_group, request.hostname, request.region, caller_ip
            )

        vm = self.create_vm(request, resource_group, size, image, cloud_init, nsg_name)

        vm_ready = agent_ready = False
        if self.config.wait_for_ready:
            vm_ready = self.wait_for_vm_running(vm)
        self.load_vm_endpoint(vm)
        if self.config.wait_for_ready:
            agent_ready = self.wait_for_vm_agent(vm)

        run_marker = self.marker_factory() if self.config.use_run_marker else None
        self.start_tailscale_bootstrap(vm, auth_key, run_marker)
        tailscale_ready, status = self.wait_for_tailscale(vm, run_marker)

        return BuildResult(
            vm=vm,
            vm_ready=vm_ready,
            agent_ready=agent_ready,
            tailscale_ready=tailscale_ready,
            tailscale_status=status,
            run_marker=run_marker,
        )

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def capture_auth_key(self) -> str:
        """Prompt for the Tailscale key; empty input aborts the build."""
        return validate_auth_key(self.prompt_secret())

    def resolve_cloud_init(self, request: BuildRequest) -> Path:
        """Locate the cloud-init document handed to the VM.

        Precedence: --cloud-init, config cloud_init_file, ./cloud-init.yaml.

        Raises:
            ValidationError: If the file does not exist
        """
        if request.cloud_init_file:
            path = Path(request.cloud_init_file)
        elif self.config.cloud_init_file:
            path = Path(self.config.cloud_init_file)
        else:
            path = Path.cwd() / CLOUD_INIT_FILE_NAME
        path = path.expanduser()

        if not path.is_file():
            raise ValidationError(f"{CLOUD_INIT_FILE_NAME} not found ({path})")
        return path

    def discover_caller_ip(self) -> str:
        self.progress.step("Fetching your public IP...")
        caller_ip = self.discover_ip()
        self.progress.done(f"Detected public IP: {caller_ip}")
        return caller_ip

    def ensure_resource_group(self, resource_group: str, location: str) -> bool:
        """Create the resource group only when it does not exist yet.

        Returns:
            True if the group was created by this call
        """
        self.progress.step(f"Ensuring resource group {resource_group} exists in {location}...")
        with self._phase(f"Resource group {resource_group}"):
            if self.cli.group_exists(resource_group):
                logger.debug(f"Resource group {resource_group} already exists")
                return False
            self.progress.step(f"Creating resource group {resource_group} in {location}...")
            self.cli.create_group(resource_group, location)
        return True

    def choose_vm_size(self, location: str) -> str:
        if not self.config.dynamic_vm_size:
            self.progress.done(f"Using configured VM size: {self.config.vm_size}")
            return self.config.vm_size

        self.progress.step(f"Selecting smallest available VM in {location}...")
        with self._phase("VM size lookup"):
            skus = self.cli.list_skus(location, self.config.size_family)

        candidates = parse_sku_catalog(skus)
        size = select_vm_size(
            candidates,
            max_vcpus=self.config.max_vcpus,
            max_memory_gb=self.config.max_memory_gb,
            fallback=self.config.fallback_vm_size,
        )
        if not any(c.fits(self.config.max_vcpus, self.config.max_memory_gb) for c in candidates):
            self.progress.warn(
                f"No VM with {self.config.max_vcpus} vCPU and {self.config.max_memory_gb:g}GB "
                f"RAM found in {location}. Defaulting to {size}."
            )
        self.progress.done(f"Selected VM size: {size}")
        return size

    def choose_image(self) -> str:
        if not self.config.dynamic_image:
            self.progress.done(f"Using configured image: {self.config.image}")
            return self.config.image

        self.progress.step(f"Selecting latest {self.config.image_offer} image...")
        with self._phase("Image lookup"):
            images = self.cli.list_images(self.config.image_publisher, self.config.image_offer)
        image = select_latest_image(images)
        self.progress.done(f"Selected image: {image}")
        return image

    def create_network_security_group(
        self, resource_group: str, hostname: str, location: str, caller_ip: str
    ) -> str:
        """Create {hostname}-nsg with one SSH rule restricted to caller_ip."""
        nsg_name = f"{hostname}-nsg"
        self.progress.step(f"Creating network security group {nsg_name}...")
        with self._phase(f"Network security group {nsg_name}"):
            self.cli.create_nsg(resource_group, nsg_name, location)
            self.progress.step(f"Adding SSH inbound rule restricted to {caller_ip}...")
            self.cli.create_nsg_rule(
                resource_group,
                nsg_name,
                SSH_RULE_NAME,
                priority=self.config.ssh_rule_priority,
                source_address=caller_ip,
                destination_port=22,
            )
        return nsg_name

    def create_vm(
        self,
        request: BuildRequest,
        resource_group: str,
        size: str,
        image: str,
        cloud_init: Path,
        nsg_name: str | None,
    ) -> VMDetails:
        dns_label = request.hostname.lower() if nsg_name else None
        tags = {"managed-by": "tsbuild", "role": "tailscale-exit-node"}
        tags.update(self.config.extra_tags)

        self.progress.step(f"Creating VM {request.hostname} (usually takes about 3 minutes)...")
        with self._phase(f"VM creation for {request.hostname}"):
            result = self.cli.create_vm(
                resource_group=resource_group,
                name=request.hostname,
                image=image,
                size=size,
                admin_username=self.config.admin_username,
                custom_data=cloud_init,
                os_disk_size_gb=self.config.os_disk_size_gb,
                ssh_key_path=request.ssh_key_path,
                nsg_name=nsg_name,
                dns_label=dns_label,
                tags=tags,
            )
        self.progress.done(f"VM {request.hostname} created")

        return VMDetails(
            name=request.hostname,
            resource_group=resource_group,
            location=request.region,
            size=size,
            image=image,
            nsg_name=nsg_name,
            dns_label=dns_label,
            public_ip=result.get("publicIpAddress") or None,
            fqdn=result.get("fqdns") or None,
        )

    def wait_for_vm_running(self, vm: VMDetails) -> bool:
        """Poll until power state and provisioning state agree the VM is up.

        Both values come from the same attempt; a VM that reports running on
        one attempt and Succeeded on another is not ready.
        """
        self.progress.step("Waiting for VM to be running and provisioning succeeded...")

        def observe() -> tuple[str | None, str | None]:
            return (
                self.cli.get_power_state(vm.resource_group, vm.name),
                self.cli.get_provisioning_state(vm.resource_group, vm.name),
            )

        def on_retry(attempt: int, value: tuple[str | None, str | None] | None) -> None:
            power, provisioning = value or (None, None)
            self.progress.retry(
                f"VM not ready yet (Power: {power or 'unknown'}, "
                f"Provisioning: {provisioning or 'unknown'})",
                attempt,
                self.config.vm_ready_attempts,
            )

        result = poll_until(
            observe,
            is_vm_ready,
            max_attempts=self.config.vm_ready_attempts,
            delay=self.config.vm_ready_delay,
            description="VM readiness",
            sleep=self.sleep,
            on_retry=on_retry,
            tolerated_exceptions=(AzureCLIError,),
        )
        if result.succeeded:
            self.progress.done("VM is running and provisioned.")
        else:
            self.progress.warn("VM did not report ready in time, continuing anyway.")
        return result.succeeded

    def load_vm_endpoint(self, vm: VMDetails) -> VMDetails:
        """Fill in public IP and FQDN from az vm show -d."""
        self.progress.step("Fetching VM details...")
        with self._phase(f"Fetching details of {vm.name}"):
            details = self.cli.show_vm_details(vm.resource_group, vm.name)
        vm.public_ip = details.get("publicIps") or vm.public_ip
        vm.fqdn = details.get("fqdns") or vm.fqdn
        return vm

    def wait_for_vm_agent(self, vm: VMDetails) -> bool:
        self.progress.step("Waiting for VM agent to be ready...")

        def on_retry(attempt: int, state: str | None) -> None:
            self.progress.retry(
                f"VM Agent state: {state or 'unknown'}", attempt, self.config.agent_ready_attempts
            )

        result = poll_until(
            lambda: self.cli.get_agent_status(vm.resource_group, vm.name),
            lambda state: state == "Ready",
            max_attempts=self.config.agent_ready_attempts,
            delay=self.config.agent_ready_delay,
            description="VM agent",
            sleep=self.sleep,
            on_retry=on_retry,
            tolerated_exceptions=(AzureCLIError,),
        )
        if result.succeeded:
            self.progress.done("VM Agent is ready.")
        else:
            self.progress.warn("VM Agent did not report Ready in time, continuing anyway.")
        return result.succeeded

    def start_tailscale_bootstrap(
        self, vm: VMDetails, auth_key: str, run_marker: str | None = None
    ) -> None:
        """Hand the Tailscale install/join command to the CustomScript extension.

        az returns once the extension is accepted; the command itself may
        still be running on the VM.
        """
        self.progress.step("Setting CustomScript extension for Tailscale...")
        command = build_bootstrap_command(auth_key, BootstrapOptions(run_marker=run_marker))
        with self._phase("Tailscale bootstrap extension"):
            self.cli.set_custom_script(
                vm.resource_group, vm.name, build_protected_settings(command)
            )
        self.progress.done(f"VM '{vm.name}' created and Tailscale setup initiated.")

    def wait_for_tailscale(self, vm: VMDetails, run_marker: str | None = None) -> tuple[bool, str]:
        """Poll `tailscale status` on the VM until it prints something.

        Returns:
            (succeeded, status output)
        """
        self.progress.step("Waiting for Tailscale to start...")
        script = build_status_script(run_marker)

        def observe() -> str:
            message = self.cli.run_shell_script(vm.resource_group, vm.name, script)
            return parse_run_command_stdout(message)

        result = poll_until(
            observe,
            bool,
            max_attempts=self.config.tailscale_attempts,
            delay=self.config.tailscale_delay,
            description="Tailscale status",
            sleep=self.sleep,
            on_retry=lambda attempt, _: self.progress.retry(
                "Tailscale not ready yet", attempt, self.config.tailscale_attempts
            ),
            tolerated_exceptions=(AzureCLIError,),
        )
        if result.succeeded:
            self.progress.done("Tailscale node is up:")
            return True, result.value or ""

        self.progress.warn("Tailscale did not report status in time.")
        return False, ""


def is_vm_ready(observation: tuple[str | None, str | None] | None) -> bool:
    """True when one observation shows 'VM running' and 'Succeeded' together."""
    if not observation:
        return False
    power, provisioning = observation
    return power == "VM running" and (provisioning or "").lower() == "succeeded"


__all__ = [
    "BuildRequest",
    "BuildResult",
    "ExitNodeProvisioner",
    "ProvisioningError",
    "VMDetails",
    "is_vm_ready",
    "prompt_for_auth_key",
]
