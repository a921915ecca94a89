"""Device records, the live registry and vid-keyed device commands."""

from .commands import DeviceCommands
from .models import (
    BlindState,
    DeviceKind,
    HeatingCoolingState,
    LoadState,
    PositionState,
    TemperatureUnits,
    ThermostatState,
    VantageDevice,
)
from .registry import DeviceRegistry, RegistryDiff

__all__ = [
    "BlindState",
    "DeviceCommands",
    "DeviceKind",
    "DeviceRegistry",
    "HeatingCoolingState",
    "LoadState",
    "PositionState",
    "RegistryDiff",
    "TemperatureUnits",
    "ThermostatState",
    "VantageDevice",
]
