"""Log sanitization module for preventing secret leakage.

The Tailscale auth key passes through tsbuild in memory only, but it ends up
inside az command lines and, on failure, inside az error output. This module
masks it wherever it could surface in a log record or an error message.

Design Philosophy:
- Security first: err on side of over-redaction
- Pattern-based: not brittle keyword matching
"""

import logging
import re
from re import Pattern
from typing import ClassVar


class LogSanitizer:
    """Sanitize sensitive data from logs and error messages.

    All methods are class methods and can be called without instantiation.
    """

    REDACTED = "[REDACTED]"

    SECRET_PATTERNS: ClassVar[dict[str, Pattern]] = {
        "tailscale_key": re.compile(r"()tskey-[A-Za-z0-9_-]+"),
        "authkey_assignment": re.compile(r"(--auth-?key[=\s]+)([^\s\"'&;]+)", re.IGNORECASE),
        "command_to_execute": re.compile(r'("commandToExecute"\s*:\s*)"(?:[^"\\]|\\.)*"'),
        "password": re.compile(r'(password["\']?\s*[:=]\s*["\']?)([^\s"\'&,\)]+)', re.IGNORECASE),
        "authorization_bearer": re.compile(r"(Authorization:\s*Bearer\s+)([^\s]+)", re.IGNORECASE),
    }

    @classmethod
    def sanitize(cls, message: str) -> str:
        """Sanitize message by redacting sensitive patterns.

        Examples:
            >>> LogSanitizer.sanitize("tailscale up --authkey=tskey-auth-k123")
            'tailscale up --authkey=[REDACTED]'
        """
        if not isinstance(message, str):
            message = str(message)

        result = message
        for pattern in cls.SECRET_PATTERNS.values():
            result = pattern.sub(r"\1" + cls.REDACTED, result)
        return result

    @classmethod
    def sanitize_exception(cls, exc: BaseException) -> str:
        """Return the sanitized string form of an exception."""
        return cls.sanitize(str(exc))


class SecretRedactingFilter(logging.Filter):
    """Logging filter that runs every record through LogSanitizer.

    Formats the record once with its args so secrets passed as %-style
    arguments are caught too.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True
        record.msg = LogSanitizer.sanitize(message)
        record.args = None
        return True


def install_secret_filter(logger: logging.Logger | None = None) -> None:
    """Attach a SecretRedactingFilter to every handler of a logger.

    Args:
        logger: Logger whose handlers get the filter (default: root logger)
    """
    target = logger or logging.getLogger()
    for handler in target.handlers:
        if not any(isinstance(f, SecretRedactingFilter) for f in handler.filters):
            handler.addFilter(SecretRedactingFilter())


__all__ = ["LogSanitizer", "SecretRedactingFilter", "install_secret_filter"]
