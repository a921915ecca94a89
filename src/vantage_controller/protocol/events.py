"""Typed events decoded from the command channel."""

from __future__ import annotations

from typing import TypeAlias

from dataclasses import dataclass
from enum import IntEnum

__all__ = [
    "MODE_ONLY",
    "BlindStatusChange",
    "InterfaceSupportAnswer",
    "LoadStatusChange",
    "StatusEvent",
    "ThermostatDidChange",
    "ThermostatIndoorModeChange",
    "ThermostatIndoorTemperatureChange",
    "ThermostatMode",
]

# target temperature of a mode change that carries no temperature
MODE_ONLY = -1.0


class ThermostatMode(IntEnum):
    OFF = 0
    HEAT = 1
    COOL = 2
    AUTO = 3

    @classmethod
    def from_token(cls, token: str) -> ThermostatMode:
        """Map a controller mode token (OFF, HEAT, COOL, AUTO, ...) to a mode."""
        if "OFF" in token:
            return cls.OFF
        if "HEAT" in token:
            return cls.HEAT
        if "COOL" in token:
            return cls.COOL
        return cls.AUTO


@dataclass(frozen=True, slots=True)
class LoadStatusChange:
    """Load level report. ``hsl_channel`` is set for RGBLoad.GetHSL replies."""

    vid: int
    value: int
    hsl_channel: int | None = None


@dataclass(frozen=True, slots=True)
class BlindStatusChange:
    vid: int
    position: int


@dataclass(frozen=True, slots=True)
class ThermostatDidChange:
    """Controller-wide temperature tick; a trigger to re-query thermostats."""

    raw_value: str = ""


@dataclass(frozen=True, slots=True)
class ThermostatIndoorTemperatureChange:
    vid: int
    temperature: float


@dataclass(frozen=True, slots=True)
class ThermostatIndoorModeChange:
    vid: int
    mode: ThermostatMode
    target_temperature: float = MODE_ONLY

    @property
    def mode_only(self) -> bool:
        return self.target_temperature == MODE_ONLY


@dataclass(frozen=True, slots=True)
class InterfaceSupportAnswer:
    vid: int
    iid: int
    supported: bool


StatusEvent: TypeAlias = (
    LoadStatusChange
    | BlindStatusChange
    | ThermostatDidChange
    | ThermostatIndoorTemperatureChange
    | ThermostatIndoorModeChange
    | InterfaceSupportAnswer
)
