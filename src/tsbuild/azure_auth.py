"""Azure authentication handler module.

tsbuild never handles Azure credentials itself. It asks the Azure CLI whether
a session exists and, if not, hands the terminal to `az login
--use-device-code`. Tokens stay in ~/.azure/ under az's control.

Security:
- No credential storage
- Delegates to az CLI
"""

import logging
from dataclasses import dataclass
from typing import Optional

from tsbuild.azure_cli import AzureCLI, AzureCLIError
from tsbuild.modules.prerequisites import PrerequisiteChecker

logger = logging.getLogger(__name__)


class AuthenticationError(Exception):
    """Raised when Azure authentication fails."""

    pass


@dataclass
class AzureSession:
    """Active az CLI session summary."""

    subscription_id: Optional[str] = None
    subscription_name: Optional[str] = None
    user: Optional[str] = None

    def describe(self) -> str:
        description = self.subscription_name or "unknown subscription"
        if self.subscription_id:
            description += f" ({self.subscription_id[:8]}...)"
        if self.user:
            description += f" as {self.user}"
        return description


class AzureAuthenticator:
    """Ensure the Azure CLI is installed and logged in.

    Example:
        >>> session = AzureAuthenticator(AzureCLI()).ensure_session()
        >>> print(session.describe())
    """

    def __init__(self, cli: AzureCLI):
        self.cli = cli

    def check_session(self) -> Optional[AzureSession]:
        """Return the current session, or None when az has no login."""
        try:
            account = self.cli.account_show()
        except AzureCLIError as e:
            logger.debug(f"No active az session: {e}")
            return None
        return self._session_from_account(account)

    def ensure_session(self) -> AzureSession:
        """Verify an authenticated az session, logging in if needed.

        Raises:
            PrerequisiteError: If az is not installed
            AuthenticationError: If the device-code login fails
        """
        PrerequisiteChecker.ensure_available()

        session = self.check_session()
        if session is not None:
            logger.debug(f"Using Azure subscription {session.describe()}")
            return session

        logger.info("Please login to Azure CLI")
        try:
            self.cli.login_device_code()
        except AzureCLIError as e:
            raise AuthenticationError(f"Azure login failed: {e}") from e

        session = self.check_session()
        if session is None:
            raise AuthenticationError(
                "Azure login did not produce an active session. Run: az login --use-device-code"
            )
        logger.info(f"Logged in to Azure: {session.describe()}")
        return session

    @staticmethod
    def _session_from_account(account: dict) -> AzureSession:
        user = account.get("user") or {}
        return AzureSession(
            subscription_id=account.get("id"),
            subscription_name=account.get("name"),
            user=user.get("name"),
        )


__all__ = ["AuthenticationError", "AzureAuthenticator", "AzureSession"]
