"""Unit tests for config_manager module."""

import pytest

from tsbuild.config_manager import BuildConfig, ConfigError, ConfigManager


class TestBuildConfig:
    def test_defaults_match_stock_build(self):
        config = BuildConfig()

        assert config.resource_group_prefix == "tailscale-nodes"
        assert config.admin_username == "tsuser"
        assert config.image_offer == "ubuntu-24_04-lts-daily"
        assert config.fallback_vm_size == "Standard_B1s"
        assert config.os_disk_size_gb == 5
        assert (config.vm_ready_attempts, config.vm_ready_delay) == (20, 10.0)
        assert (config.agent_ready_attempts, config.agent_ready_delay) == (30, 10.0)
        assert (config.tailscale_attempts, config.tailscale_delay) == (10, 5.0)

    def test_resource_group_for(self):
        assert BuildConfig().resource_group_for("westeurope") == "tailscale-nodes-westeurope"

    def test_from_dict_rejects_unknown_keys(self):
        with pytest.raises(ConfigError, match="Unknown config keys: colour"):
            BuildConfig.from_dict({"colour": "blue"})

    @pytest.mark.parametrize(
        "data",
        [
            {"max_vcpus": "2"},
            {"create_nsg": "yes"},
            {"vm_ready_attempts": True},
            {"cloud_init_file": 3},
        ],
    )
    def test_from_dict_rejects_wrong_types(self, data):
        with pytest.raises(ConfigError):
            BuildConfig.from_dict(data)

    def test_int_accepted_for_float_fields(self):
        assert BuildConfig.from_dict({"max_memory_gb": 4}).max_memory_gb == 4

    def test_to_dict_skips_none(self):
        assert "cloud_init_file" not in BuildConfig().to_dict()


class TestLoadConfig:
    def test_missing_default_file_gives_defaults(self, temp_home_dir, monkeypatch):
        monkeypatch.delenv("TSBUILD_IMAGE_OFFER", raising=False)

        assert ConfigManager.load_config() == BuildConfig()

    def test_loads_default_file(self, temp_home_dir):
        config_dir = temp_home_dir / ".tsbuild"
        config_dir.mkdir()
        (config_dir / "config.toml").write_text(
            'resource_group_prefix = "ts-exit"\ncreate_nsg = false\n\n[extra_tags]\nowner = "netops"\n'
        )

        config = ConfigManager.load_config()

        assert config.resource_group_prefix == "ts-exit"
        assert config.create_nsg is False
        assert config.extra_tags == {"owner": "netops"}

    def test_explicit_missing_file_is_error(self, tmp_path):
        with pytest.raises(ConfigError, match="Config file not found"):
            ConfigManager.load_config(str(tmp_path / "nope.toml"))

    def test_invalid_toml_is_error(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("this is = = not toml")

        with pytest.raises(ConfigError, match="Failed to parse config file"):
            ConfigManager.load_config(str(path))


class TestEnvOverrides:
    def test_overrides_applied(self):
        config = ConfigManager.apply_env_overrides(
            BuildConfig(),
            {
                "TSBUILD_RESOURCE_GROUP_PREFIX": "exit",
                "TSBUILD_CLOUD_INIT_FILE": "/etc/tsbuild/cloud-init.yaml",
            },
        )

        assert config.resource_group_prefix == "exit"
        assert config.cloud_init_file == "/etc/tsbuild/cloud-init.yaml"

    def test_empty_values_ignored(self):
        config = ConfigManager.apply_env_overrides(BuildConfig(), {"TSBUILD_IMAGE_OFFER": ""})

        assert config.image_offer == "ubuntu-24_04-lts-daily"

    def test_env_wins_over_file(self, tmp_path, monkeypatch):
        path = tmp_path / "config.toml"
        path.write_text('ip_discovery_url = "http://file.example/ip"\n')
        monkeypatch.setenv("TSBUILD_IP_DISCOVERY_URL", "http://env.example/ip")

        assert ConfigManager.load_config(str(path)).ip_discovery_url == "http://env.example/ip"
