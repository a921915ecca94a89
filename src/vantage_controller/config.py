"""Bridge configuration.

``VantageConfig`` gathers every toggle the bridge needs. It is normally built
from ``VANTAGE_*`` environment variables (optionally loaded from a dotenv
file by the CLI), and can be overlaid with a YAML file.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ValidationError, field_validator, model_validator

from vantage_controller.const import (
    CACHE_FILE_NAME,
    DEFAULT_VID_RANGE,
    DISCOVERY_DEADLINE,
    DISCOVERY_QUIET_PERIOD,
    INTERFACE_QUERY_TIMEOUT,
    MAX_DEVICES,
    PERSISTENT_BASE_DIR,
    PROBE_TIMEOUT,
    RECONNECT_DELAY,
    YES_ANSWER,
)
from vantage_controller.exceptions import ConfigError
from vantage_controller.logging_abstraction import get_logger

__all__ = ["MQTTSettings", "VantageConfig"]

logger = get_logger(__name__)

# host-side locations older installs kept the configuration document in
LEGACY_CACHE_PATHS: tuple[str, ...] = ("/tmp/vantage.dc", "/home/pi/vantage.dc")


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    return raw.casefold() in YES_ANSWER


def _env_str(env: Mapping[str, str], name: str) -> str | None:
    raw = env.get(name)
    return raw if raw else None


class MQTTSettings(BaseModel):
    """Broker connection and topic layout for the Home Assistant bridge."""

    host: str = "homeassistant.local"
    port: int = 1883
    username: str | None = None
    password: str | None = None
    topic: str = "vantage"
    ha_topic: str = "homeassistant"
    birth_msg: str = "online"
    will_msg: str = "offline"
    reconnect_delay: float = 10.0


class VantageConfig(BaseModel):
    host: str
    username: str | None = None
    password: str | None = None
    use_cache: bool = True
    cache_path: str = f"{PERSISTENT_BASE_DIR}/{CACHE_FILE_NAME}"
    legacy_cache_paths: tuple[str, ...] = LEGACY_CACHE_PATHS
    force_tls: bool = False
    omit: list[int] = []
    vid_range: tuple[int, int] = DEFAULT_VID_RANGE
    fetch_interfaces: bool = True
    probe_timeout: float = PROBE_TIMEOUT
    reconnect_delay: float = RECONNECT_DELAY
    discovery_quiet_period: float = DISCOVERY_QUIET_PERIOD
    discovery_deadline: float = DISCOVERY_DEADLINE
    interface_query_timeout: float = INTERFACE_QUERY_TIMEOUT
    max_devices: int = MAX_DEVICES
    mqtt: MQTTSettings = MQTTSettings()

    @field_validator("host")
    @classmethod
    def _host_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            msg = "controller host must not be empty"
            raise ValueError(msg)
        return value

    @field_validator("omit", mode="before")
    @classmethod
    def _split_omit(cls, value: Any) -> Any:
        # "12, 34" as written in env files and the YAML shorthand
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        if isinstance(value, int):
            return [value]
        return value

    @field_validator("vid_range", mode="before")
    @classmethod
    def _split_range(cls, value: Any) -> Any:
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(",")]
            if len(parts) != 2:
                msg = f"range must be 'lo,hi', got {value!r}"
                raise ValueError(msg)
            return tuple(parts)
        return value

    @model_validator(mode="after")
    def _check(self) -> VantageConfig:
        lo, hi = self.vid_range
        if lo > hi:
            msg = f"range lower bound {lo} exceeds upper bound {hi}"
            raise ValueError(msg)
        if self.max_devices < 1:
            msg = "max_devices must be positive"
            raise ValueError(msg)
        if bool(self.username) != bool(self.password):
            logger.warning("config: only one of username/password is set, login will be skipped")
        return self

    @property
    def has_credentials(self) -> bool:
        return bool(self.username) and bool(self.password)

    @classmethod
    def _validate(cls, data: Mapping[str, Any], source: str) -> VantageConfig:
        try:
            return cls.model_validate(dict(data))
        except ValidationError as e:
            msg = f"invalid configuration from {source}: {e}"
            raise ConfigError(msg) from e

    @classmethod
    def env_values(cls, env: Mapping[str, str] | None = None) -> dict[str, Any]:
        """Raw field values found in ``VANTAGE_*`` environment variables."""
        env = os.environ if env is None else env
        data: dict[str, Any] = {
            "host": env.get("VANTAGE_HOST", ""),
            "username": _env_str(env, "VANTAGE_USERNAME"),
            "password": _env_str(env, "VANTAGE_PASSWORD"),
            "use_cache": _env_bool(env, "VANTAGE_USE_CACHE", True),
            "force_tls": _env_bool(env, "VANTAGE_FORCE_TLS", False),
            "fetch_interfaces": _env_bool(env, "VANTAGE_FETCH_INTERFACES", True),
        }
        base_dir = env.get("VANTAGE_PERSISTENT_BASE_DIR") or PERSISTENT_BASE_DIR
        data["cache_path"] = env.get("VANTAGE_CACHE_PATH") or f"{base_dir}/{CACHE_FILE_NAME}"
        if omit := env.get("VANTAGE_OMIT"):
            data["omit"] = omit
        if vid_range := env.get("VANTAGE_RANGE"):
            data["vid_range"] = vid_range
        for field, name in (
            ("probe_timeout", "VANTAGE_PROBE_TIMEOUT"),
            ("reconnect_delay", "VANTAGE_RECONNECT_DELAY"),
            ("discovery_quiet_period", "VANTAGE_DISCOVERY_QUIET_PERIOD"),
            ("discovery_deadline", "VANTAGE_DISCOVERY_DEADLINE"),
            ("interface_query_timeout", "VANTAGE_INTERFACE_QUERY_TIMEOUT"),
            ("max_devices", "VANTAGE_MAX_DEVICES"),
        ):
            if value := env.get(name):
                data[field] = value

        mqtt: dict[str, Any] = {}
        for field, name in (
            ("host", "VANTAGE_MQTT_HOST"),
            ("port", "VANTAGE_MQTT_PORT"),
            ("username", "VANTAGE_MQTT_USER"),
            ("password", "VANTAGE_MQTT_PASS"),
            ("topic", "VANTAGE_TOPIC"),
            ("ha_topic", "VANTAGE_HASS_TOPIC"),
            ("birth_msg", "VANTAGE_HASS_BIRTH_MSG"),
            ("will_msg", "VANTAGE_HASS_WILL_MSG"),
            ("reconnect_delay", "VANTAGE_MQTT_CONN_DELAY"),
        ):
            if value := env.get(name):
                mqtt[field] = value
        data["mqtt"] = mqtt
        return data

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> VantageConfig:
        """Build the configuration from ``VANTAGE_*`` environment variables.

        Raises:
            ConfigError: a value is missing or invalid (e.g. no ``VANTAGE_HOST``)

        """
        return cls._validate(cls.env_values(env), "environment")

    @classmethod
    def from_yaml(cls, path: str | Path, env: Mapping[str, str] | None = None) -> VantageConfig:
        """Overlay a YAML file on the environment values.

        Keys use the field names (``host``, ``omit``, ``vid_range``, ...);
        ``ipaddress``, ``usecache``, ``range`` and ``forceSSL`` are accepted
        as aliases. A ``mqtt`` mapping is merged key by key.

        Raises:
            ConfigError: the file is missing, not YAML, or holds invalid values

        """
        config_file = Path(path).expanduser()
        try:
            with config_file.open(encoding="utf-8") as f:
                loaded = yaml.safe_load(f)
        except OSError as e:
            msg = f"cannot read config file {config_file}: {e}"
            raise ConfigError(msg) from e
        except yaml.YAMLError as e:
            msg = f"cannot parse config file {config_file}: {e}"
            raise ConfigError(msg) from e
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            msg = f"config file {config_file} must contain a mapping"
            raise ConfigError(msg)

        data = cls.env_values(env)
        for alias, field in (
            ("ipaddress", "host"),
            ("usecache", "use_cache"),
            ("range", "vid_range"),
            ("forceSSL", "force_tls"),
        ):
            if alias in loaded and field not in loaded:
                loaded[field] = loaded.pop(alias)
        mqtt_overlay = loaded.pop("mqtt", None) or {}
        data.update({k: v for k, v in loaded.items() if v is not None})
        if isinstance(mqtt_overlay, dict):
            data["mqtt"] = {**data.get("mqtt", {}), **mqtt_overlay}
        logger.info("config: loaded %s", config_file.as_posix(), extra={"keys": sorted(loaded)})
        return cls._validate(data, config_file.as_posix())
