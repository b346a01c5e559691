"""Tailscale bootstrap command templating.

The exit node is joined to the tailnet by a single shell command that the
CustomScript extension runs as root:

    1. write the auth key to a private temp file
    2. download and run the Tailscale installer
    3. tailscale up with the key, advertising an exit node
    4. delete the temp file

Steps are joined with ";" so step 4 runs even when the join fails. Nothing in
this module executes anything; it only builds strings.

Because the extension call returns before the command finishes on the VM,
the status check afterwards could be answered by an older Tailscale install.
A run marker ties the two together: step 3 records a per-build marker file
only when `tailscale up` succeeds, and the status script reports nothing
until that file exists.
"""

import json
import re
import shlex
import uuid
from dataclasses import dataclass

TAILSCALE_INSTALL_URL = "https://tailscale.com/install.sh"
DEFAULT_KEY_PATH = "/tmp/tskey"
MARKER_DIR = "/var/lib/tsbuild"

_MARKER_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
_PATH_PATTERN = re.compile(r"^/[A-Za-z0-9_./-]+$")


@dataclass(frozen=True)
class BootstrapOptions:
    """Knobs for the bootstrap command."""

    key_path: str = DEFAULT_KEY_PATH
    install_url: str = TAILSCALE_INSTALL_URL
    advertise_exit_node: bool = True
    accept_routes: bool = True
    run_marker: str | None = None

    def __post_init__(self):
        if not _PATH_PATTERN.match(self.key_path):
            raise ValueError(f"Unsafe key path: {self.key_path!r}")
        if self.run_marker is not None and not _MARKER_PATTERN.match(self.run_marker):
            raise ValueError(f"Unsafe run marker: {self.run_marker!r}")


def new_run_marker() -> str:
    """Return a fresh marker identifying one build."""
    return f"run-{uuid.uuid4().hex[:16]}"


def marker_path(run_marker: str) -> str:
    return f"{MARKER_DIR}/{run_marker}"


def build_tailscale_up_args(options: BootstrapOptions, key_path: str) -> str:
    args = ["tailscale", "up", f'--authkey="$(cat {key_path})"']
    if options.advertise_exit_node:
        args.append("--advertise-exit-node")
    if options.accept_routes:
        args.append("--accept-routes")
    return " ".join(args)


def build_bootstrap_steps(auth_key: str, options: BootstrapOptions | None = None) -> list[str]:
    """Return the four bootstrap steps: write key, install, join, delete key.

    Raises:
        ValueError: If the auth key is empty
    """
    if not auth_key or not auth_key.strip():
        raise ValueError("Tailscale auth key must not be empty")

    opts = options or BootstrapOptions()
    key_path = opts.key_path

    write_key = f"(umask 077; printf '%s' {shlex.quote(auth_key)} > {key_path})"
    install = f"curl -fsSL {shlex.quote(opts.install_url)} | sh"
    join = build_tailscale_up_args(opts, key_path)
    if opts.run_marker:
        join += f" && mkdir -p {MARKER_DIR} && touch {marker_path(opts.run_marker)}"
    delete_key = f"rm -f {key_path}"

    return [write_key, install, join, delete_key]


def build_bootstrap_command(auth_key: str, options: BootstrapOptions | None = None) -> str:
    """Return the bootstrap steps as one shell command string.

    Example:
        >>> build_bootstrap_command("tskey-auth-abc")
        "(umask 077; printf '%s' tskey-auth-abc > /tmp/tskey); curl -fsSL ... | sh; ..."
    """
    return "; ".join(build_bootstrap_steps(auth_key, options))


def build_protected_settings(command: str) -> str:
    """JSON protected settings for the Linux CustomScript extension."""
    return json.dumps({"commandToExecute": command})


def build_status_script(run_marker: str | None = None) -> str:
    """Script whose stdout is non-empty once Tailscale is up for this build."""
    if run_marker:
        if not _MARKER_PATTERN.match(run_marker):
            raise ValueError(f"Unsafe run marker: {run_marker!r}")
        return f"test -f {marker_path(run_marker)} && tailscale status"
    return "tailscale status"


def parse_run_command_stdout(message: str | None) -> str:
    """Extract the stdout section of a RunShellScript message.

    az returns "Enable succeeded: \\n[stdout]\\n...\\n[stderr]\\n..." even when
    the script printed nothing, so the raw message is never empty.
    """
    if not message:
        return ""
    if "[stdout]" not in message:
        return message.strip()
    stdout = message.split("[stdout]", 1)[1]
    stdout = stdout.split("[stderr]", 1)[0]
    return stdout.strip()


__all__ = [
    "BootstrapOptions",
    "DEFAULT_KEY_PATH",
    "MARKER_DIR",
    "TAILSCALE_INSTALL_URL",
    "build_bootstrap_command",
    "build_bootstrap_steps",
    "build_protected_settings",
    "build_status_script",
    "new_run_marker",
    "parse_run_command_stdout",
]
