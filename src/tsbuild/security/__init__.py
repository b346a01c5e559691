"""Security module for tsbuild.

This module provides security utilities for protecting sensitive data in tsbuild:

- AzureCommandSanitizer: Sanitize Azure CLI commands before display/logging

Example:
    >>> from tsbuild.security import AzureCommandSanitizer
    >>> AzureCommandSanitizer.sanitize_args(["az", "vm", "extension", "set",
    ...     "--protected-settings", '{"commandToExecute": "..."}'])
    ['az', 'vm', 'extension', 'set', '--protected-settings', '[REDACTED]']
"""

from tsbuild.security.azure_command_sanitizer import (
    AzureCommandSanitizer,
    sanitize_azure_command,
)

__all__ = [
    "AzureCommandSanitizer",
    "sanitize_azure_command",
]
