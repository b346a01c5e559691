"""tsbuild - Azure Tailscale exit node builder

Philosophy:
- Ruthless simplicity
- Delegate everything to az CLI (no Azure SDK, no stored credentials)
- Fail fast with helpful guidance

The tsbuild CLI creates an Ubuntu VM on Azure, hands it a cloud-init payload,
and joins it to a Tailscale network as an exit node.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
