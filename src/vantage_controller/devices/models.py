"""Device records produced by discovery and their live state."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum, StrEnum

from pydantic import BaseModel

from vantage_controller.protocol.events import ThermostatMode

__all__ = [
    "BlindState",
    "DeviceKind",
    "HeatingCoolingState",
    "LoadState",
    "PositionState",
    "TemperatureUnits",
    "ThermostatMode",
    "ThermostatState",
    "VantageDevice",
]


class DeviceKind(StrEnum):
    RELAY = "relay"
    DIMMER = "dimmer"
    RGB = "rgb"
    BLIND = "blind"
    THERMOSTAT = "thermostat"


class PositionState(IntEnum):
    DECREASING = 0
    INCREASING = 1
    STOPPED = 2


class HeatingCoolingState(IntEnum):
    OFF = 0
    HEATING = 1
    COOLING = 2


class TemperatureUnits(IntEnum):
    CELSIUS = 0
    FAHRENHEIT = 1


class LoadState(BaseModel):
    """Relay, dimmer and RGB load state. Hue and saturation only apply to RGB loads."""

    brightness: int = 100
    power: bool = False
    hue: int = 0
    saturation: int = 0


class BlindState(BaseModel):
    position: int = 100
    position_state: PositionState = PositionState.STOPPED


class ThermostatState(BaseModel):
    temperature: float = 0.0
    target_temperature: float = 0.0
    heating_setpoint: float = 0.0
    cooling_setpoint: float = 0.0
    mode: ThermostatMode = ThermostatMode.OFF
    running_state: HeatingCoolingState = HeatingCoolingState.OFF
    units: TemperatureUnits = TemperatureUnits.CELSIUS


@dataclass
class VantageDevice:
    """One controllable object from the controller configuration.

    ``vid`` is stable across discovery runs for an unchanged configuration.
    Only the state object matching ``kind`` is meaningful.
    """

    vid: int
    name: str
    kind: DeviceKind
    object_type: str
    load_type: str | None = None
    area: str | None = None
    load: LoadState = field(default_factory=LoadState)
    blind: BlindState = field(default_factory=BlindState)
    thermostat: ThermostatState = field(default_factory=ThermostatState)

    @property
    def is_load(self) -> bool:
        return self.kind in (DeviceKind.RELAY, DeviceKind.DIMMER, DeviceKind.RGB)

    @property
    def state(self) -> LoadState | BlindState | ThermostatState:
        if self.kind is DeviceKind.BLIND:
            return self.blind
        if self.kind is DeviceKind.THERMOSTAT:
            return self.thermostat
        return self.load

    def same_identity(self, other: VantageDevice) -> bool:
        """True when *other* describes the same object with the same metadata."""
        return (self.vid, self.name, self.kind, self.object_type, self.area) == (
            other.vid,
            other.name,
            other.kind,
            other.object_type,
            other.area,
        )
