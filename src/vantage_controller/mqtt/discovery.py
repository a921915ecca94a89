"""MQTT discovery helpers for Home Assistant device registration.

Every device maps to one entity: dimmers and RGB loads are lights, relays are
switches, blinds are covers and thermostats are climate entities. State is
published as one JSON document per device on ``<topic>/status/<uuid>``.
"""

from __future__ import annotations

import asyncio
import re
import unicodedata
from typing import TYPE_CHECKING, Any

from vantage_controller.const import ORIGIN_STRUCT, VANTAGE_MANUFACTURER, VANTAGE_VERSION
from vantage_controller.devices.models import DeviceKind, VantageDevice
from vantage_controller.logging_abstraction import get_logger

if TYPE_CHECKING:
    from vantage_controller.mqtt.client import MQTTClient

__all__ = [
    "ENTITY_COMPONENTS",
    "DiscoveryHelper",
    "build_entity_config",
    "config_topic",
    "device_uuid",
    "slugify",
]

logger = get_logger(__name__)

ENTITY_COMPONENTS: dict[DeviceKind, str] = {
    DeviceKind.RELAY: "switch",
    DeviceKind.DIMMER: "light",
    DeviceKind.RGB: "light",
    DeviceKind.BLIND: "cover",
    DeviceKind.THERMOSTAT: "climate",
}

CLIMATE_MODES = ["off", "heat", "cool", "auto"]


def slugify(text: str) -> str:
    """
    Convert text to a slug suitable for entity IDs.
    E.g., 'Kitchen Island Pendants' -> 'kitchen_island_pendants'
    """
    text = unicodedata.normalize("NFKD", text)
    text = text.encode("ascii", "ignore").decode("ascii")
    text = text.lower()
    text = re.sub(r"[^a-z0-9]+", "_", text)
    return text.strip("_")


def device_uuid(vid: int) -> str:
    return f"vantage-{vid}"


def config_topic(ha_topic: str, device: VantageDevice) -> str:
    return f"{ha_topic}/{ENTITY_COMPONENTS[device.kind]}/{device_uuid(device.vid)}/config"


def _device_registry(device: VantageDevice) -> dict[str, Any]:
    registry: dict[str, Any] = {
        "identifiers": [f"vantage_{device.vid}"],
        "manufacturer": VANTAGE_MANUFACTURER,
        "model": device.load_type or device.object_type,
        "name": device.name,
        "sw_version": VANTAGE_VERSION,
    }
    if device.area:
        registry["suggested_area"] = device.area
    return registry


def build_entity_config(device: VantageDevice, topic: str) -> dict[str, Any]:
    """Home Assistant discovery payload for *device*."""
    uuid = device_uuid(device.vid)
    state_topic = f"{topic}/status/{uuid}"
    command_topic = f"{topic}/set/{uuid}"
    conf: dict[str, Any] = {
        "object_id": slugify(device.name) or uuid,
        "name": None,
        "unique_id": f"vantage_{device.vid}",
        "avty_t": f"{topic}/availability",
        "origin": ORIGIN_STRUCT,
        "device": _device_registry(device),
    }

    if device.kind is DeviceKind.RELAY:
        conf.update(
            {
                "command_topic": command_topic,
                "state_topic": state_topic,
                "value_template": "{{ value_json.state }}",
                "payload_on": "ON",
                "payload_off": "OFF",
            }
        )
    elif device.kind in (DeviceKind.DIMMER, DeviceKind.RGB):
        conf.update(
            {
                "schema": "json",
                "command_topic": command_topic,
                "state_topic": state_topic,
                "brightness": True,
                "brightness_scale": 100,
            }
        )
        if device.kind is DeviceKind.RGB:
            conf["supported_color_modes"] = ["hs"]
        else:
            conf["supported_color_modes"] = ["brightness"]
    elif device.kind is DeviceKind.BLIND:
        conf.update(
            {
                "command_topic": command_topic,
                "state_topic": state_topic,
                "value_template": "{{ value_json.state }}",
                "position_topic": state_topic,
                "position_template": "{{ value_json.position }}",
                "set_position_topic": f"{command_topic}/position",
                "payload_open": "OPEN",
                "payload_close": "CLOSE",
                "payload_stop": None,
                "position_open": 100,
                "position_closed": 0,
            }
        )
    else:
        conf.update(
            {
                "modes": CLIMATE_MODES,
                "mode_command_topic": f"{command_topic}/mode",
                "mode_state_topic": state_topic,
                "mode_state_template": "{{ value_json.mode }}",
                "temperature_command_topic": f"{command_topic}/temperature",
                "temperature_state_topic": state_topic,
                "temperature_state_template": "{{ value_json.target_temperature }}",
                "current_temperature_topic": state_topic,
                "current_temperature_template": "{{ value_json.current_temperature }}",
                "action_topic": state_topic,
                "action_template": "{{ value_json.action }}",
                "temperature_unit": "F" if device.thermostat.units else "C",
                "precision": 0.5,
                "temp_step": 0.5,
            }
        )
    return conf


class DiscoveryHelper:
    """Publishes and removes retained discovery configs."""

    def __init__(self, mqtt_client: MQTTClient) -> None:
        self.client = mqtt_client
        self.lp = f"{mqtt_client.lp}discovery:"

    async def register_device(self, device: VantageDevice) -> bool:
        lp = f"{self.lp}register:"
        conf = build_entity_config(device, self.client.topic)
        tpc = config_topic(self.client.ha_topic, device)
        logger.debug("%s %s (vid %d) -> %s", lp, device.name, device.vid, tpc)
        return await self.client.publish_json_msg(tpc, conf, retain=True)

    async def remove_device(self, device: VantageDevice) -> bool:
        """Clear the retained config so Home Assistant drops the entity."""
        lp = f"{self.lp}remove:"
        tpc = config_topic(self.client.ha_topic, device)
        logger.info("%s removing %s (vid %d)", lp, device.name, device.vid)
        return await self.client.publish(tpc, b"", retain=True)

    async def homeassistant_discovery(self, devices: list[VantageDevice]) -> bool:
        """Announce every device, then mark the bridge available."""
        lp = f"{self.lp}announce:"
        logger.info("%s announcing %d devices to Home Assistant", lp, len(devices))
        results = await asyncio.gather(*(self.register_device(d) for d in devices))
        await self.client.publish(
            f"{self.client.topic}/availability",
            self.client.settings.birth_msg.encode(),
            retain=True,
        )
        ok = all(results)
        if not ok:
            logger.warning("%s %d of %d configs failed to publish", lp, results.count(False), len(results))
        return ok
