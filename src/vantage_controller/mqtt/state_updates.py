"""JSON state documents published for each device."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from vantage_controller.devices.models import (
    DeviceKind,
    HeatingCoolingState,
    PositionState,
    ThermostatMode,
    VantageDevice,
)
from vantage_controller.logging_abstraction import get_logger
from vantage_controller.mqtt.discovery import device_uuid

if TYPE_CHECKING:
    from vantage_controller.mqtt.client import MQTTClient

__all__ = ["StateUpdateHelper", "build_device_state"]

logger = get_logger(__name__)

_ACTIONS = {
    HeatingCoolingState.OFF: "off",
    HeatingCoolingState.HEATING: "heating",
    HeatingCoolingState.COOLING: "cooling",
}


def _cover_state(device: VantageDevice) -> str:
    blind = device.blind
    if blind.position_state == PositionState.INCREASING:
        return "opening"
    if blind.position_state == PositionState.DECREASING:
        return "closing"
    return "closed" if blind.position == 0 else "open"


def build_device_state(device: VantageDevice) -> dict[str, Any]:
    """State document matching the templates in the discovery config."""
    if device.kind is DeviceKind.BLIND:
        return {"state": _cover_state(device), "position": device.blind.position}
    if device.kind is DeviceKind.THERMOSTAT:
        t = device.thermostat
        return {
            "mode": ThermostatMode(t.mode).name.lower(),
            "action": _ACTIONS[HeatingCoolingState(t.running_state)],
            "current_temperature": t.temperature,
            "target_temperature": t.target_temperature,
            "heating_setpoint": t.heating_setpoint,
            "cooling_setpoint": t.cooling_setpoint,
        }
    load = device.load
    state: dict[str, Any] = {"state": "ON" if load.power else "OFF"}
    if device.kind is DeviceKind.RELAY:
        return state
    state["brightness"] = load.brightness
    if device.kind is DeviceKind.RGB:
        state["color_mode"] = "hs"
        state["color"] = {"h": load.hue, "s": load.saturation}
    else:
        state["color_mode"] = "brightness"
    return state


class StateUpdateHelper:
    """Helper class for publishing device state updates to MQTT."""

    def __init__(self, mqtt_client: MQTTClient) -> None:
        self.client = mqtt_client
        self.lp = f"{mqtt_client.lp}state:"

    async def publish_device_state(self, device: VantageDevice) -> bool:
        tpc = f"{self.client.topic}/status/{device_uuid(device.vid)}"
        payload = build_device_state(device)
        logger.debug("%s %s (vid %d) -> %s", self.lp, device.name, device.vid, payload)
        return await self.client.publish_json_msg(tpc, payload)

    async def publish_all(self, devices: list[VantageDevice]) -> int:
        """Publish the state of every device; returns how many succeeded."""
        published = 0
        for device in devices:
            if await self.publish_device_state(device):
                published += 1
        return published
