"""Configuration management module.

Build settings live in a BuildConfig value that is passed explicitly to the
provisioner. Defaults reproduce the stock exit-node build; operators can
override them in ~/.tsbuild/config.toml or through TSBUILD_* environment
variables.

Example config.toml:

    resource_group_prefix = "tailscale-nodes"
    image_offer = "ubuntu-24_04-lts-daily"
    cloud_init_file = "~/tsbuild/cloud-init.yaml"
    create_nsg = true
"""

import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import tomli

logger = logging.getLogger(__name__)

ENV_OVERRIDES = {
    "TSBUILD_RESOURCE_GROUP_PREFIX": "resource_group_prefix",
    "TSBUILD_IMAGE_OFFER": "image_offer",
    "TSBUILD_CLOUD_INIT_FILE": "cloud_init_file",
    "TSBUILD_IP_DISCOVERY_URL": "ip_discovery_url",
}


class ConfigError(Exception):
    """Raised when configuration operations fail."""

    pass


@dataclass(frozen=True)
class BuildConfig:
    """Settings for an exit node build."""

    resource_group_prefix: str = "tailscale-nodes"
    admin_username: str = "tsuser"

    # Image selection
    dynamic_image: bool = True
    image_publisher: str = "Canonical"
    image_offer: str = "ubuntu-24_04-lts-daily"
    image: str = "Ubuntu2404"  # used when dynamic_image is off

    # Size selection
    dynamic_vm_size: bool = True
    size_family: str = "Standard_B"
    max_vcpus: int = 2
    max_memory_gb: float = 2.0
    vm_size: str = "Standard_B1s"  # used when dynamic_vm_size is off
    fallback_vm_size: str = "Standard_B1s"
    os_disk_size_gb: int = 5

    # Network
    create_nsg: bool = True
    ssh_rule_priority: int = 1000
    ip_discovery_url: str = "http://ifconfig.co/ip"
    ip_discovery_timeout: int = 10

    cloud_init_file: str | None = None

    # Polling
    wait_for_ready: bool = True
    vm_ready_attempts: int = 20
    vm_ready_delay: float = 10.0
    agent_ready_attempts: int = 30
    agent_ready_delay: float = 10.0
    tailscale_attempts: int = 10
    tailscale_delay: float = 5.0
    use_run_marker: bool = True

    az_timeout: int = 600
    extra_tags: dict[str, str] = field(default_factory=dict)

    def resource_group_for(self, region: str) -> str:
        """Resource group that holds exit nodes for a region."""
        return f"{self.resource_group_prefix}-{region}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BuildConfig":
        """Create from a parsed TOML table.

        Raises:
            ConfigError: On unknown keys or values of the wrong type
        """
        known = {f.name: f for f in fields(cls)}
        unknown = sorted(set(data) - set(known))
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")

        defaults = cls()
        for key, value in data.items():
            _check_type(key, value, getattr(defaults, key))

        return replace(defaults, **data)


def _check_type(key: str, value: Any, default: Any) -> None:
    if default is None:
        expected: tuple[type, ...] = (str,)
    elif isinstance(default, bool):
        expected = (bool,)
    elif isinstance(default, float):
        expected = (int, float)
    elif isinstance(default, int):
        expected = (int,)
    else:
        expected = (type(default),)

    # bool is an int subclass; do not accept true/false for counts
    if isinstance(value, bool) and bool not in expected:
        raise ConfigError(f"Config key '{key}' must be a number, got {value!r}")
    if not isinstance(value, expected):
        names = "/".join(t.__name__ for t in expected)
        raise ConfigError(f"Config key '{key}' must be {names}, got {value!r}")


class ConfigManager:
    """Load tsbuild configuration.

    Configuration is read from ~/.tsbuild/config.toml. The file is optional;
    tsbuild never writes it.
    """

    CONFIG_DIR_NAME = ".tsbuild"
    CONFIG_FILE_NAME = "config.toml"

    @classmethod
    def default_config_path(cls) -> Path:
        return Path.home() / cls.CONFIG_DIR_NAME / cls.CONFIG_FILE_NAME

    @classmethod
    def load_config(cls, custom_path: str | None = None) -> BuildConfig:
        """Load configuration from file, then apply environment overrides.

        Args:
            custom_path: Explicit config file (must exist)

        Returns:
            BuildConfig

        Raises:
            ConfigError: If an explicit file is missing or any file is invalid
        """
        if custom_path:
            config_path = Path(custom_path).expanduser()
            if not config_path.exists():
                raise ConfigError(f"Config file not found: {config_path}")
        else:
            config_path = cls.default_config_path()

        data: dict[str, Any] = {}
        if config_path.exists():
            try:
                with open(config_path, "rb") as f:
                    data = tomli.load(f)
                logger.debug(f"Loaded config from {config_path}")
            except (tomli.TOMLDecodeError, OSError) as e:
                raise ConfigError(f"Failed to parse config file {config_path}: {e}") from e
        else:
            logger.debug(f"No config file at {config_path}, using defaults")

        config = BuildConfig.from_dict(data)
        return cls.apply_env_overrides(config)

    @classmethod
    def apply_env_overrides(
        cls, config: BuildConfig, environ: dict[str, str] | None = None
    ) -> BuildConfig:
        """Apply TSBUILD_* environment variables on top of a config."""
        env = os.environ if environ is None else environ
        overrides = {
            attr: env[var] for var, attr in ENV_OVERRIDES.items() if env.get(var)
        }
        if overrides:
            logger.debug(f"Config overrides from environment: {', '.join(sorted(overrides))}")
            return replace(config, **overrides)
        return config


__all__ = ["BuildConfig", "ConfigError", "ConfigManager"]
