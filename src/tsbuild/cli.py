"""CLI entry point for tsbuild.

This module provides the command-line interface and the orchestration of the
three operations: list regions, list VMs, and build an exit node.

Commands:
    tsbuild --list regions
    tsbuild --list vms
    tsbuild --build -h HOSTNAME -r REGION [--ssh-key PATH]
"""

import logging
import sys
from pathlib import Path
from typing import Any

import click
from rich.console import Console

from tsbuild import __version__
from tsbuild.azure_auth import AuthenticationError, AzureAuthenticator
from tsbuild.azure_cli import AzureCLI, AzureCLIError
from tsbuild.commands._list_helpers import show_regions, show_vms
from tsbuild.config_manager import BuildConfig, ConfigError, ConfigManager
from tsbuild.image_selector import ImageSelectionError
from tsbuild.ip_discovery import IPDiscoveryError
from tsbuild.log_sanitizer import LogSanitizer, install_secret_filter
from tsbuild.modules.prerequisites import PrerequisiteError
from tsbuild.modules.progress import ProgressDisplay
from tsbuild.modules.validation import (
    ValidationError,
    validate_hostname,
    validate_region,
    validate_ssh_public_key,
)
from tsbuild.vm_lister import VMLister
from tsbuild.vm_provisioning import (
    BuildRequest,
    BuildResult,
    ExitNodeProvisioner,
    ProvisioningError,
)

logger = logging.getLogger(__name__)

LIST_TARGETS = ("regions", "vms")

# Everything tsbuild raises on purpose; anything else is a bug.
TSBUILD_ERRORS = (
    AuthenticationError,
    AzureCLIError,
    ConfigError,
    ImageSelectionError,
    IPDiscoveryError,
    PrerequisiteError,
    ProvisioningError,
    ValidationError,
)


class TsbuildUsageError(click.UsageError):
    """Invalid invocation. Exits with status 1 like every other failure."""

    exit_code = 1


class TsbuildCommand(click.Command):
    """Click command that reports every usage error with exit status 1.

    click uses status 2 for parse errors; tsbuild has a single failure status.
    """

    def make_context(self, info_name: Any, args: list[str], parent: Any = None, **extra: Any):
        try:
            return super().make_context(info_name, args, parent=parent, **extra)
        except click.UsageError as e:
            e.exit_code = 1
            raise

    def invoke(self, ctx: click.Context) -> Any:
        try:
            return super().invoke(ctx)
        except click.UsageError as e:
            # Errors raised from the callback carry no context; attach it for the usage line
            if e.ctx is None:
                e.ctx = ctx
            e.exit_code = 1
            raise


def classify_invocation(
    list_target: str | None,
    build: bool,
    hostname: str | None,
    region: str | None,
    ssh_key: Path | None,
    cloud_init: Path | None,
) -> str:
    """Decide which operation an invocation asks for.

    Returns:
        "regions", "vms" or "build"

    Raises:
        TsbuildUsageError: For any combination that is not exactly one operation
    """
    if list_target and build:
        raise TsbuildUsageError("--list and --build cannot be used together")

    if list_target:
        extras = [
            name
            for name, value in (
                ("--hostname", hostname),
                ("--region", region),
                ("--ssh-key", ssh_key),
                ("--cloud-init", cloud_init),
            )
            if value
        ]
        if extras:
            raise TsbuildUsageError(f"{', '.join(extras)} can only be used with --build")
        return list_target.lower()

    if build:
        if not hostname or not region:
            raise TsbuildUsageError("--build requires both -h HOSTNAME and -r REGION")
        return "build"

    raise TsbuildUsageError("Specify --list regions, --list vms or --build")


def build_request_from_options(
    hostname: str,
    region: str,
    ssh_key: Path | None,
    cloud_init: Path | None,
) -> BuildRequest:
    """Validate build options into a BuildRequest.

    Raises:
        TsbuildUsageError: If hostname, region or SSH key are invalid
    """
    try:
        request = BuildRequest(
            hostname=validate_hostname(hostname),
            region=validate_region(region),
            ssh_key_path=validate_ssh_public_key(ssh_key) if ssh_key else None,
            cloud_init_file=cloud_init,
        )
    except ValidationError as e:
        raise TsbuildUsageError(str(e)) from e
    return request


class TsbuildOrchestrator:
    """Run one tsbuild operation and map failures to exit codes.

    Exit codes:
        0: success
        1: any tsbuild error (precondition, validation, az failure)
        130: interrupted
    """

    def __init__(
        self,
        config: BuildConfig,
        cli: AzureCLI | None = None,
        progress: ProgressDisplay | None = None,
        console: Console | None = None,
    ):
        self.config = config
        self.cli = cli or AzureCLI(timeout=config.az_timeout)
        self.progress = progress or ProgressDisplay()
        self.console = console or Console()

    def run(self, operation: str, request: BuildRequest | None = None) -> int:
        try:
            session = AzureAuthenticator(self.cli).ensure_session()
            logger.debug(f"Azure subscription: {session.describe()}")

            if operation == "regions":
                show_regions(VMLister(self.cli), self.console)
                return 0
            if operation == "vms":
                show_vms(VMLister(self.cli), self.console)
                return 0

            if request is None:
                raise ValueError("build requires a BuildRequest")
            result = self._build(request)
            self._display_build_result(result)
            return 0

        except TSBUILD_ERRORS as e:
            click.echo(click.style(f"Error: {e}", fg="red"), err=True)
            return 1
        except (KeyboardInterrupt, click.Abort):
            # click.prompt turns Ctrl+C and EOF into Abort
            click.echo(
                click.style(
                    "Cancelled by user. Resources created so far were not removed.",
                    fg="yellow",
                ),
                err=True,
            )
            return 130
        except Exception as e:
            logger.exception("Unexpected error")
            click.echo(
                click.style(f"Unexpected error: {LogSanitizer.sanitize_exception(e)}", fg="red"),
                err=True,
            )
            return 1

    def _build(self, request: BuildRequest) -> BuildResult:
        provisioner = ExitNodeProvisioner(self.config, self.cli, progress=self.progress)
        return provisioner.build(request)

    def _display_build_result(self, result: BuildResult) -> None:
        vm = result.vm
        self.console.print()
        self.console.print(f"[bold]VM:[/bold] {vm.name} ({vm.size}, {vm.location})")
        self.console.print(f"[bold]Resource group:[/bold] {vm.resource_group}")
        self.console.print(f"[bold]Image:[/bold] {vm.image}")
        self.console.print(f"[bold]Public IP:[/bold] {vm.public_ip or '-'}")
        self.console.print(f"[bold]FQDN:[/bold] {vm.fqdn or '-'}")

        if result.tailscale_ready:
            self.console.print("[bold]Tailscale status:[/bold]")
            # Printed without markup; the status output may contain brackets
            self.console.print(result.tailscale_status, markup=False)
        else:
            self.console.print(
                "[yellow]Tailscale did not report status yet. "
                f"Check with: az vm run-command invoke -g {vm.resource_group} -n {vm.name} "
                "--command-id RunShellScript --scripts 'tailscale status'[/yellow]"
            )


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    install_secret_filter()


@click.command(
    cls=TsbuildCommand,
    context_settings={"help_option_names": ["--help"]},
)
@click.option(
    "--list",
    "list_target",
    type=click.Choice(LIST_TARGETS, case_sensitive=False),
    help="List Azure regions or existing VMs",
)
@click.option("--build", is_flag=True, help="Build a Tailscale exit node VM")
@click.option("-h", "--hostname", help="VM name (also the DNS label)")
@click.option("-r", "--region", help="Azure region, e.g. westeurope")
@click.option(
    "--ssh-key",
    type=click.Path(path_type=Path, dir_okay=False),
    help="SSH public key file (default: let az generate keys)",
)
@click.option(
    "--cloud-init",
    type=click.Path(path_type=Path, dir_okay=False),
    help="cloud-init file (default: cloud-init.yaml in the current working directory)",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path, dir_okay=False),
    help="Config file (default: ~/.tsbuild/config.toml)",
)
@click.option("-v", "--verbose", is_flag=True, help="Show debug output, including az commands")
@click.version_option(version=__version__, prog_name="tsbuild")
def main(
    list_target: str | None,
    build: bool,
    hostname: str | None,
    region: str | None,
    ssh_key: Path | None,
    cloud_init: Path | None,
    config_path: Path | None,
    verbose: bool,
) -> None:
    """tsbuild - build Tailscale exit nodes on Azure.

    \b
    EXAMPLES:
        $ tsbuild --list regions
        $ tsbuild --list vms
        $ tsbuild --build -h exit-ams-01 -r westeurope
        $ tsbuild --build -h exit-ams-01 -r westeurope --ssh-key ~/.ssh/id_ed25519.pub

    \b
    The build reads cloud-init.yaml from the current working directory, not
    from the tsbuild install location, and prompts for a Tailscale auth key.
    """
    operation = classify_invocation(list_target, build, hostname, region, ssh_key, cloud_init)

    request = None
    if operation == "build":
        request = build_request_from_options(hostname, region, ssh_key, cloud_init)

    configure_logging(verbose)

    try:
        config = ConfigManager.load_config(str(config_path) if config_path else None)
    except ConfigError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)

    orchestrator = TsbuildOrchestrator(config)
    sys.exit(orchestrator.run(operation, request))


if __name__ == "__main__":
    main()
