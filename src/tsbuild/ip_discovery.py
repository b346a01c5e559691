"""Caller public IP discovery.

The SSH rule on the exit node's NSG admits only the operator's current public
address. That address comes from a plain-HTTP "what is my IP" service.
"""

import ipaddress
import logging

import requests

logger = logging.getLogger(__name__)

DEFAULT_IP_DISCOVERY_URL = "http://ifconfig.co/ip"


class IPDiscoveryError(Exception):
    """Raised when the caller's public IP cannot be determined."""

    pass


def discover_public_ip(url: str = DEFAULT_IP_DISCOVERY_URL, timeout: int = 10) -> str:
    """Return the caller's public IP address as seen by an external service.

    Args:
        url: Service returning the address as plain text
        timeout: Request timeout in seconds

    Returns:
        The IP address string (IPv4 or IPv6)

    Raises:
        IPDiscoveryError: On network failure, HTTP error, empty body or a body
            that is not an IP address
    """
    try:
        response = requests.get(
            url, timeout=timeout, headers={"Accept": "text/plain", "User-Agent": "curl/8"}
        )
        response.raise_for_status()
    except requests.RequestException as e:
        raise IPDiscoveryError(f"Could not determine public IP: {e}") from e

    body = response.text.strip()
    if not body:
        raise IPDiscoveryError("Could not determine public IP: empty response")

    try:
        address = ipaddress.ip_address(body)
    except ValueError as e:
        raise IPDiscoveryError(
            f"Could not determine public IP: unexpected response {body[:40]!r}"
        ) from e

    logger.debug(f"Public IP from {url}: {address}")
    return str(address)


__all__ = ["DEFAULT_IP_DISCOVERY_URL", "IPDiscoveryError", "discover_public_ip"]
