"""MQTT command routing.

Topics look like ``<topic>/set/vantage-<vid>[/<attribute>]``. The bare
device topic carries light JSON commands or plain ``ON``/``OFF``/``OPEN``/
``CLOSE`` payloads; ``position``, ``mode`` and ``temperature`` carry a
single value.
"""

from __future__ import annotations

import json
from json import JSONDecodeError
from typing import TYPE_CHECKING, Any

from vantage_controller.correlation import correlation_context
from vantage_controller.devices.commands import DeviceCommands
from vantage_controller.devices.models import DeviceKind, ThermostatMode
from vantage_controller.logging_abstraction import get_logger

if TYPE_CHECKING:
    from vantage_controller.mqtt.client import MQTTClient

__all__ = ["CommandRouter", "parse_vid"]

logger = get_logger(__name__)

_MODES = {
    "off": ThermostatMode.OFF,
    "heat": ThermostatMode.HEAT,
    "cool": ThermostatMode.COOL,
    "auto": ThermostatMode.AUTO,
    "heat_cool": ThermostatMode.AUTO,
}


def parse_vid(device_id: str) -> int | None:
    """``vantage-123`` -> 123."""
    prefix, _, raw = device_id.partition("-")
    if prefix != "vantage" or not raw.isdigit():
        return None
    return int(raw)


class CommandRouter:
    """Helper class for routing MQTT messages to device commands."""

    def __init__(self, mqtt_client: MQTTClient) -> None:
        self.client = mqtt_client
        self.lp = f"{mqtt_client.lp}router:"

    @property
    def commands(self) -> DeviceCommands | None:
        return self.client.bridge.commands

    async def route(self, topic: str, payload: bytes) -> bool:
        """Handle one received message. Returns True when a command was issued."""
        lp = f"{self.lp}route:"
        if not payload:
            logger.debug("%s empty payload for %s, skipping...", lp, topic)
            return False
        parts = topic.split("/")
        if parts[0] == self.client.ha_topic:
            await self._handle_hass_topic(parts, payload)
            return False
        if len(parts) < 3 or parts[0] != self.client.topic or parts[1] != "set":
            logger.warning("%s Unknown command: %s => %s", lp, topic, payload)
            return False
        with correlation_context():
            return await self._handle_set(parts[2], parts[3:], payload)

    async def _handle_hass_topic(self, parts: list[str], payload: bytes) -> None:
        lp = f"{self.lp}hass:"
        if len(parts) < 2 or parts[1] != "status":
            return
        status = payload.decode(errors="replace").casefold()
        if status == self.client.settings.birth_msg.casefold():
            logger.info("%s Home Assistant is online, re-announcing devices and state", lp)
            await self.client.announce()
        elif status == self.client.settings.will_msg.casefold():
            logger.info("%s received Last Will msg from Home Assistant, HASS is offline!", lp)
        else:
            logger.warning("%s Unknown HASS status message: %s", lp, payload)

    async def _handle_set(self, device_id: str, extra: list[str], payload: bytes) -> bool:
        lp = f"{self.lp}set:"
        commands = self.commands
        if commands is None:
            logger.warning("%s bridge not started, dropping command for %s", lp, device_id)
            return False
        vid = parse_vid(device_id)
        device = commands.registry.get(vid) if vid is not None else None
        if vid is None or device is None:
            logger.warning(
                "%s Device %s not found, has it been omitted or removed from the controller?",
                lp,
                device_id,
            )
            return False
        text = payload.decode(errors="replace").strip()
        attribute = extra[0] if extra else None
        logger.info(
            "%s %s (vid %d) %s <- %s",
            lp,
            device.name,
            vid,
            attribute or device.kind.value,
            text,
        )
        try:
            if attribute is None:
                return await self._handle_device_payload(vid, device.kind, text)
            return await self._handle_attribute(vid, attribute, text)
        except ValueError:
            logger.warning("%s bad value %r for %s/%s", lp, text, device_id, attribute)
            return False

    async def _handle_device_payload(self, vid: int, kind: DeviceKind, text: str) -> bool:
        commands = self.commands
        assert commands is not None
        if kind is DeviceKind.BLIND:
            keyword = text.casefold()
            if keyword == "open":
                await commands.set_blind_position(vid, 100)
            elif keyword == "close":
                await commands.set_blind_position(vid, 0)
            else:
                logger.warning("%s unsupported cover command %r", self.lp, text)
                return False
            return True
        if text.startswith("{"):
            try:
                json_data = json.loads(text)
            except JSONDecodeError:
                logger.exception("%s bad json message: {%s} EXCEPTION", self.lp, text)
                return False
            return await self._handle_json_payload(vid, kind, json_data)
        keyword = text.casefold()
        if keyword in ("on", "off"):
            await commands.set_power(vid, keyword == "on")
            return True
        logger.warning("%s Unknown payload: %s, skipping...", self.lp, text)
        return False

    async def _handle_json_payload(self, vid: int, kind: DeviceKind, json_data: dict[str, Any]) -> bool:
        commands = self.commands
        assert commands is not None
        state = str(json_data.get("state", "")).upper()
        if state == "OFF":
            await commands.set_power(vid, False)
            return True
        issued = False
        color = json_data.get("color")
        if kind is DeviceKind.RGB and isinstance(color, dict) and "h" in color and "s" in color:
            await commands.set_hs_color(vid, round(float(color["h"])), round(float(color["s"])))
            issued = True
        if "brightness" in json_data:
            await commands.set_brightness(vid, int(json_data["brightness"]))
            issued = True
        elif state == "ON" and not issued:
            await commands.set_power(vid, True)
            issued = True
        return issued

    async def _handle_attribute(self, vid: int, attribute: str, text: str) -> bool:
        commands = self.commands
        assert commands is not None
        if attribute == "position":
            await commands.set_blind_position(vid, round(float(text)))
        elif attribute == "mode":
            mode = _MODES.get(text.casefold())
            if mode is None:
                logger.warning("%s unsupported thermostat mode %r", self.lp, text)
                return False
            await commands.set_thermostat_mode(vid, mode)
        elif attribute == "temperature":
            await commands.set_target_temperature(vid, float(text))
        else:
            logger.warning("%s unknown attribute %r for vid %d", self.lp, attribute, vid)
            return False
        return True
