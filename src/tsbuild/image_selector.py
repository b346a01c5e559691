"""Newest-image lookup for a marketplace publisher/offer."""

import logging
import re
from typing import Any

logger = logging.getLogger(__name__)


class ImageSelectionError(Exception):
    """Raised when no image can be selected."""

    pass


def version_key(version: str) -> tuple[int, ...]:
    """Sort key for dotted image versions such as "24.04.202410010".

    Non-numeric fragments sort as 0 so odd versions cannot crash the sort.
    """
    parts = re.split(r"[.\-]", version or "")
    return tuple(int(part) if part.isdigit() else 0 for part in parts)


def select_latest_image(images: list[dict[str, Any]]) -> str:
    """Return the URN of the newest image in an az vm image list result.

    Raises:
        ImageSelectionError: If the list holds no usable image
    """
    usable = [image for image in images if image.get("urn") and image.get("version")]
    if not usable:
        raise ImageSelectionError("No images found for the configured publisher/offer")

    latest = max(usable, key=lambda image: version_key(image["version"]))
    logger.debug(f"Latest image {latest['urn']} out of {len(usable)}")
    return latest["urn"]


__all__ = ["ImageSelectionError", "select_latest_image", "version_key"]
