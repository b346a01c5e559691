"""VM size selection from the regional SKU catalog.

An exit node only relays traffic, so the smallest burstable size that is
actually offered in the target region is good enough. The catalog comes from
`az vm list-skus`; each entry carries its hardware as a list of
{"name": ..., "value": ...} capabilities with string values.
"""

import logging
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_SIZE = "Standard_B1s"


@dataclass(frozen=True)
class SkuCandidate:
    """A VM size with the capabilities used for ranking."""

    name: str
    vcpus: float
    memory_gb: float

    def fits(self, max_vcpus: float, max_memory_gb: float) -> bool:
        return self.vcpus <= max_vcpus and self.memory_gb <= max_memory_gb


def _capability(sku: dict[str, Any], name: str) -> float | None:
    for capability in sku.get("capabilities") or []:
        if capability.get("name") == name:
            try:
                return float(capability.get("value"))
            except (TypeError, ValueError):
                return None
    return None


def _is_restricted(sku: dict[str, Any]) -> bool:
    """True when the SKU is blocked for this subscription in the queried location."""
    for restriction in sku.get("restrictions") or []:
        if restriction.get("type") == "Location":
            return True
    return False


def parse_sku_catalog(skus: list[dict[str, Any]]) -> list[SkuCandidate]:
    """Turn az vm list-skus JSON into candidates, in catalog order.

    Entries missing vCPUs or MemoryGB, non-VM resource types and
    location-restricted SKUs are skipped.
    """
    candidates: list[SkuCandidate] = []
    for sku in skus:
        if sku.get("resourceType", "virtualMachines") != "virtualMachines":
            continue
        if _is_restricted(sku):
            logger.debug(f"Skipping restricted SKU {sku.get('name')}")
            continue
        vcpus = _capability(sku, "vCPUs")
        memory = _capability(sku, "MemoryGB")
        name = sku.get("name")
        if not name or vcpus is None or memory is None:
            continue
        candidates.append(SkuCandidate(name=name, vcpus=vcpus, memory_gb=memory))
    return candidates


def select_vm_size(
    candidates: list[SkuCandidate],
    max_vcpus: float = 2,
    max_memory_gb: float = 2.0,
    fallback: str = DEFAULT_FALLBACK_SIZE,
) -> str:
    """Pick the qualifying size with the least memory.

    A candidate qualifies when vCPUs <= max_vcpus AND memory <= max_memory_gb.
    Among qualifying candidates the smallest memory wins; equal memory keeps
    catalog order. With no qualifying candidate the fallback size is returned.

    Example:
        >>> select_vm_size([SkuCandidate("A", 1, 1), SkuCandidate("B", 2, 2),
        ...                 SkuCandidate("C", 4, 4)])
        'A'
    """
    qualifying = [c for c in candidates if c.fits(max_vcpus, max_memory_gb)]
    if not qualifying:
        return fallback
    return min(qualifying, key=lambda c: c.memory_gb).name


__all__ = ["DEFAULT_FALLBACK_SIZE", "SkuCandidate", "parse_sku_catalog", "select_vm_size"]
