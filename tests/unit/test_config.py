"""Unit tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from vantage_controller.config import VantageConfig
from vantage_controller.const import DEFAULT_VID_RANGE, MAX_DEVICES
from vantage_controller.exceptions import ConfigError


class TestFromEnv:
    """``VANTAGE_*`` environment variables."""

    def test_minimal(self) -> None:
        config = VantageConfig.from_env({"VANTAGE_HOST": "10.0.0.5"})
        assert config.host == "10.0.0.5"
        assert config.use_cache is True
        assert config.force_tls is False
        assert config.omit == []
        assert config.vid_range == DEFAULT_VID_RANGE
        assert config.max_devices == MAX_DEVICES
        assert config.has_credentials is False
        assert config.mqtt.topic == "vantage"

    @pytest.mark.parametrize("env", [{}, {"VANTAGE_HOST": ""}, {"VANTAGE_HOST": "   "}])
    def test_host_required(self, env: dict[str, str]) -> None:
        with pytest.raises(ConfigError):
            VantageConfig.from_env(env)

    def test_full(self) -> None:
        config = VantageConfig.from_env(
            {
                "VANTAGE_HOST": "ctrl",
                "VANTAGE_USERNAME": "admin",
                "VANTAGE_PASSWORD": "pw",
                "VANTAGE_USE_CACHE": "false",
                "VANTAGE_FORCE_TLS": "yes",
                "VANTAGE_OMIT": "12, 34,",
                "VANTAGE_RANGE": "10,500",
                "VANTAGE_CACHE_PATH": "/data/vantage.dc",
                "VANTAGE_MQTT_HOST": "broker",
                "VANTAGE_MQTT_PORT": "8883",
                "VANTAGE_TOPIC": "house",
            }
        )
        assert config.has_credentials
        assert config.use_cache is False
        assert config.force_tls is True
        assert config.omit == [12, 34]
        assert config.vid_range == (10, 500)
        assert config.cache_path == "/data/vantage.dc"
        assert (config.mqtt.host, config.mqtt.port, config.mqtt.topic) == ("broker", 8883, "house")

    def test_cache_path_follows_base_dir(self) -> None:
        config = VantageConfig.from_env({"VANTAGE_HOST": "ctrl", "VANTAGE_PERSISTENT_BASE_DIR": "/srv"})
        assert config.cache_path == "/srv/vantage.dc"

    @pytest.mark.parametrize(
        "extra",
        [
            {"VANTAGE_RANGE": "500,10"},
            {"VANTAGE_RANGE": "10"},
            {"VANTAGE_OMIT": "12,abc"},
            {"VANTAGE_MAX_DEVICES": "0"},
        ],
    )
    def test_invalid_values(self, extra: dict[str, str]) -> None:
        with pytest.raises(ConfigError):
            VantageConfig.from_env({"VANTAGE_HOST": "ctrl", **extra})


class TestFromYaml:
    """YAML overlay on the environment."""

    def test_aliases_and_mqtt_merge(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(
            "ipaddress: 192.168.1.20\n"
            "usecache: false\n"
            "range: 1,99\n"
            "forceSSL: true\n"
            "omit: [5, 6]\n"
            "mqtt:\n"
            "  username: bridge\n",
            encoding="utf-8",
        )
        config = VantageConfig.from_yaml(path, env={"VANTAGE_MQTT_HOST": "broker"})
        assert config.host == "192.168.1.20"
        assert config.use_cache is False
        assert config.vid_range == (1, 99)
        assert config.force_tls is True
        assert config.omit == [5, 6]
        assert (config.mqtt.host, config.mqtt.username) == ("broker", "bridge")

    def test_yaml_overrides_env(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("host: from-yaml\n", encoding="utf-8")
        assert VantageConfig.from_yaml(path, env={"VANTAGE_HOST": "from-env"}).host == "from-yaml"

    def test_empty_file_uses_env(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("", encoding="utf-8")
        assert VantageConfig.from_yaml(path, env={"VANTAGE_HOST": "ctrl"}).host == "ctrl"

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError):
            VantageConfig.from_yaml(tmp_path / "absent.yaml", env={"VANTAGE_HOST": "ctrl"})

    @pytest.mark.parametrize("content", ["host: [unclosed\n", "- a\n- b\n"])
    def test_bad_content(self, tmp_path: Path, content: str) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(content, encoding="utf-8")
        with pytest.raises(ConfigError):
            VantageConfig.from_yaml(path, env={"VANTAGE_HOST": "ctrl"})
