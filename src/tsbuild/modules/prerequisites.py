"""
Prerequisites Checker Module

Verifies the Azure CLI is installed before any operation runs.

Security Requirements:
- Read-only system checks
- No subprocess calls
"""

import logging
import platform
import shutil

logger = logging.getLogger(__name__)


class PrerequisiteError(Exception):
    """Raised when the Azure CLI is not installed."""

    pass


class PrerequisiteChecker:
    """Check that `az` is on PATH and explain how to install it if not."""

    AZ_BINARY = "az"

    @classmethod
    def find_az(cls) -> str | None:
        """Return the path of the az executable, or None.

        Security: Uses shutil.which (safe, no subprocess)
        """
        path = shutil.which(cls.AZ_BINARY)
        if path:
            logger.debug(f"Found {cls.AZ_BINARY} at {path}")
        else:
            logger.debug(f"Tool not found: {cls.AZ_BINARY}")
        return path

    @classmethod
    def ensure_available(cls) -> str:
        """
        Return the az path, raising with install guidance if it is missing.

        Raises:
            PrerequisiteError: If az is not on PATH
        """
        path = cls.find_az()
        if not path:
            raise PrerequisiteError(cls.format_missing_message(cls.detect_platform()))
        return path

    @classmethod
    def detect_platform(cls) -> str:
        """
        Detect the operating system platform.

        Returns:
            str: Platform name (macos, linux, wsl, windows, unknown)
        """
        system = platform.system().lower()

        if system == "darwin":
            return "macos"
        if system == "linux":
            if cls._is_wsl():
                return "wsl"
            return "linux"
        if system == "windows":
            return "windows"
        return "unknown"

    @classmethod
    def _is_wsl(cls) -> bool:
        """Check if running in Windows Subsystem for Linux."""
        try:
            with open("/proc/version") as f:
                version = f.read().lower()
                return "microsoft" in version or "wsl" in version
        except (FileNotFoundError, PermissionError) as e:
            logger.debug(f"Failed to check for WSL: {e}")
            return False

    @classmethod
    def format_missing_message(cls, platform_name: str) -> str:
        """
        Format installation instructions for the Azure CLI.

        Example:
            >>> print(PrerequisiteChecker.format_missing_message("macos"))
            Azure CLI not found.
            ...
        """
        return "\n".join(
            [
                "Azure CLI not found.",
                "",
                "Install Azure CLI:",
                f"  {cls._az_install_hint(platform_name)}",
                "",
                "After installing, run 'tsbuild' again.",
            ]
        )

    @classmethod
    def _az_install_hint(cls, platform_name: str) -> str:
        if platform_name == "macos":
            return "brew install azure-cli"
        if platform_name in ("linux", "wsl"):
            return "curl -sL https://aka.ms/InstallAzureCLIDeb | sudo bash"
        if platform_name == "windows":
            return "Download from: https://aka.ms/installazurecliwindows"
        return "See: https://docs.microsoft.com/cli/azure/install-azure-cli"
