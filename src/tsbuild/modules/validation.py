"""Shared validation utilities for build inputs.

Everything the operator types ends up in an az argument list or a DNS label,
so it is checked here before the first external call.

Public API:
    validate_hostname: VM name / DNS label validation
    validate_region: Azure location name validation
    validate_ssh_public_key: SSH public key file validation
    validate_auth_key: Tailscale key presence check
    sanitize_azure_error: Extract a display-safe message from az stderr
    ValidationError: Base exception for validation failures
"""

import re
from pathlib import Path

# DNS label rules: the hostname is lowercased into --public-ip-address-dns-name
HOSTNAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9-]{1,61}[A-Za-z0-9]$")
REGION_PATTERN = re.compile(r"^[A-Za-z0-9]{2,40}$")

PUBLIC_KEY_PREFIXES = ("ssh-", "ecdsa-", "sk-ssh-", "sk-ecdsa-")


class ValidationError(Exception):
    """Raised when validation fails."""

    pass


def validate_hostname(hostname: str) -> str:
    """Validate a VM hostname.

    The hostname doubles as the VM name, the NSG name prefix and (lowercased)
    the public IP DNS label, so the strictest of those rules applies.

    Returns:
        The hostname, unchanged

    Raises:
        ValidationError: If the hostname is not a valid DNS label

    Example:
        >>> validate_hostname("exit-ams-01")
        'exit-ams-01'
        >>> validate_hostname("exit_node")
        ValidationError: Invalid hostname 'exit_node'...
    """
    if not hostname:
        raise ValidationError("Hostname cannot be empty")

    if not HOSTNAME_PATTERN.match(hostname):
        raise ValidationError(
            f"Invalid hostname '{hostname}': use 3-63 letters, digits and hyphens, "
            f"starting with a letter and not ending with a hyphen"
        )

    return hostname


def validate_region(region: str) -> str:
    """Validate and normalize an Azure region name.

    Returns:
        Lowercased region name (e.g. "westeurope")

    Raises:
        ValidationError: If the region contains anything but letters and digits
    """
    if not region:
        raise ValidationError("Region cannot be empty")

    if not REGION_PATTERN.match(region):
        raise ValidationError(
            f"Invalid region '{region}': expected an Azure location name such as "
            f"'westeurope' (see: tsbuild --list regions)"
        )

    return region.lower()


def validate_ssh_public_key(path: str | Path) -> Path:
    """Validate an SSH public key file.

    Returns:
        Resolved path to the key file

    Raises:
        ValidationError: If the file is missing, unreadable or a private key
    """
    key_path = Path(path).expanduser()

    if not key_path.is_file():
        raise ValidationError(f"SSH public key not found: {key_path}")

    try:
        content = key_path.read_text().strip()
    except (OSError, UnicodeDecodeError) as e:
        raise ValidationError(f"Cannot read SSH public key {key_path}: {e}") from e

    if content.startswith("-----BEGIN"):
        raise ValidationError(
            f"{key_path} looks like a private key. Pass the .pub file instead."
        )

    if not content.startswith(PUBLIC_KEY_PREFIXES):
        raise ValidationError(f"{key_path} does not look like an OpenSSH public key")

    return key_path.resolve()


def validate_auth_key(auth_key: str | None) -> str:
    """Check that a Tailscale auth key was provided.

    Returns:
        The key with surrounding whitespace removed

    Raises:
        ValidationError: If the key is empty
    """
    if auth_key is None or not auth_key.strip():
        raise ValidationError("No Tailscale key provided. Aborting.")
    return auth_key.strip()


def sanitize_azure_error(stderr: str) -> str:
    """Sanitize Azure CLI error messages for user display.

    Example:
        >>> sanitize_azure_error("ERROR: (ResourceNotFound) VM 'my-vm' not found\\nDetails: ...")
        "VM 'my-vm' not found"
    """
    if not stderr:
        return "Unknown error"

    patterns = [
        r"ERROR: \((\w+)\) (.+?)(?:\n|$)",  # ERROR: (Code) message
        r"ERROR: (.+?)(?:\n|$)",  # ERROR: message
        r"error: (.+?)(?:\n|$)",  # error: message (lowercase)
    ]

    for pattern in patterns:
        match = re.search(pattern, stderr, re.IGNORECASE)
        if match:
            if len(match.groups()) > 1:
                return match.group(2).strip()
            return match.group(1).strip()

    lines = [line.strip() for line in stderr.split("\n") if line.strip()]
    if lines:
        return lines[0]

    return stderr.strip()


__all__ = [
    "ValidationError",
    "sanitize_azure_error",
    "validate_auth_key",
    "validate_hostname",
    "validate_region",
    "validate_ssh_public_key",
]
