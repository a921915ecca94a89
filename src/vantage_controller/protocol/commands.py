"""Command channel line encoding.

Module-level functions render one controller operation into its wire line
(newline included). ``CommandEncoder`` binds them to a writer, normally the
``CommandSession``, so callers can issue operations by vid without knowing
the syntax. Nothing here retries: a write to a disconnected session is
dropped and logged by the session.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Literal, Protocol, TypeAlias

from vantage_controller.const import LOGGING_CATEGORIES
from vantage_controller.protocol.events import ThermostatMode

__all__ = [
    "CommandEncoder",
    "LineWriter",
    "SetpointKind",
    "event_logging_lines",
    "get_blind_position",
    "get_indoor_temperature",
    "get_load",
    "get_load_hsl",
    "get_outdoor_temperature",
    "get_thermostat_mode",
    "get_thermostat_setpoint",
    "is_interface_supported",
    "login",
    "ramp_load",
    "route_target_temperature",
    "session_preamble",
    "set_blind_position",
    "set_load_hsl",
    "set_relay",
    "set_thermostat_mode",
    "set_thermostat_setpoint",
    "status_all",
]

SetpointKind: TypeAlias = Literal["HEAT", "COOL"]

HEAT = "HEAT"
COOL = "COOL"


def _number(value: float) -> str:
    """Render whole numbers without a trailing ``.0``."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def login(username: str, password: str) -> str:
    return f"Login {username} {password}\n"


def status_all() -> str:
    return "STATUS ALL\n"


def event_logging_lines(categories: Iterable[str] = LOGGING_CATEGORIES) -> list[str]:
    """ELENABLE for every category, then ELLOG for every category."""
    categories = tuple(categories)
    return [f"ELENABLE 1 {cat} ON\n" for cat in categories] + [f"ELLOG {cat} ON\n" for cat in categories]


def session_preamble(username: str | None, password: str | None) -> list[str]:
    """Lines sent on every (re)connect of the command channel."""
    lines: list[str] = []
    if username and password:
        lines.append(login(username, password))
    lines.append(status_all())
    lines.extend(event_logging_lines())
    return lines


def get_load(vid: int) -> str:
    return f"GETLOAD {vid}\n"


def get_load_hsl(vid: int, channel: int) -> str:
    """Query one HSL channel: 0 hue, 1 saturation, 2 lightness."""
    return f"INVOKE {vid} RGBLoad.GetHSL {channel}\n"


def set_load_hsl(vid: int, hue: float, saturation: float, lightness: float, seconds: float = 1) -> str:
    return f"INVOKE {vid} RGBLoad.SetHSL {_number(hue)} {_number(saturation)} {_number(lightness)} {_number(seconds)}\n"


def ramp_load(vid: int, level: float, seconds: float = 1) -> str:
    return f"INVOKE {vid} Load.Ramp 6 {_number(seconds)} {_number(level)}\n"


def set_relay(vid: int, level: float) -> str:
    return f"LOAD {vid} {_number(level)}\n"


def set_blind_position(vid: int, position: float) -> str:
    return f"BLIND {vid} POS {_number(position)}\n"


def get_blind_position(vid: int) -> str:
    return f"GETBLIND {vid}\n"


def set_thermostat_mode(vid: int, mode: ThermostatMode) -> str:
    return f"THERMOP {vid} {ThermostatMode(mode).name}\n"


def get_thermostat_mode(vid: int) -> str:
    return f"GETTHERMOP {vid}\n"


def get_thermostat_setpoint(vid: int, kind: SetpointKind) -> str:
    return f"GETTHERMTEMP {vid} {kind}\n"


def set_thermostat_setpoint(vid: int, kind: SetpointKind, value: float) -> str:
    return f"THERMTEMP {vid} {kind} {_number(value)}\n"


def route_target_temperature(
    vid: int,
    value: float,
    mode: ThermostatMode,
    heating: float,
    cooling: float,
) -> list[str]:
    """Pick the setpoint a target temperature applies to.

    Heat and cool modes write their own setpoint. Auto writes the cooling
    setpoint when the value is above it, the heating setpoint when below it,
    and nothing when it sits between the two. Off writes nothing.
    """
    if mode == ThermostatMode.HEAT:
        return [set_thermostat_setpoint(vid, HEAT, value)]
    if mode == ThermostatMode.COOL:
        return [set_thermostat_setpoint(vid, COOL, value)]
    if mode == ThermostatMode.AUTO:
        if value > cooling:
            return [set_thermostat_setpoint(vid, COOL, value)]
        if value < heating:
            return [set_thermostat_setpoint(vid, HEAT, value)]
    return []


def get_indoor_temperature(vid: int) -> str:
    return f"INVOKE {vid} Thermostat.GetIndoorTemperature\n"


def get_outdoor_temperature(vid: int) -> str:
    return f"INVOKE {vid} Thermostat.GetOutdoorTemperature\n"


def is_interface_supported(vid: int, iid: int) -> str:
    return f"INVOKE {vid} Object.IsInterfaceSupported {iid}\n"


class LineWriter(Protocol):
    async def send_lines(self, lines: list[str]) -> bool: ...


class CommandEncoder:
    """Issues encoded operations through a ``LineWriter``."""

    lp: str = "encoder:"

    def __init__(self, writer: LineWriter) -> None:
        self.writer = writer

    async def _send(self, *lines: str) -> None:
        if lines:
            await self.writer.send_lines(list(lines))

    async def set_relay(self, vid: int, on: bool) -> None:
        await self._send(set_relay(vid, 100 if on else 0))

    async def set_relay_level(self, vid: int, level: float) -> None:
        await self._send(set_relay(vid, level))

    async def ramp_load(self, vid: int, level: float, seconds: float = 1) -> None:
        await self._send(ramp_load(vid, level, seconds))

    async def set_hsl(self, vid: int, hue: float, saturation: float, lightness: float, seconds: float = 1) -> None:
        await self._send(set_load_hsl(vid, hue, saturation, lightness, seconds))

    async def set_blind_position(self, vid: int, position: float) -> None:
        await self._send(set_blind_position(vid, position))

    async def set_thermostat_mode(self, vid: int, mode: ThermostatMode) -> None:
        await self._send(set_thermostat_mode(vid, mode))

    async def set_target_temperature(
        self, vid: int, value: float, mode: ThermostatMode, heating: float, cooling: float
    ) -> None:
        await self._send(*route_target_temperature(vid, value, mode, heating, cooling))

    async def query_load(self, vid: int) -> None:
        await self._send(get_load(vid))

    async def query_hsl(self, vid: int) -> None:
        await self._send(*(get_load_hsl(vid, channel) for channel in (0, 1, 2)))

    async def query_blind(self, vid: int) -> None:
        await self._send(get_blind_position(vid))

    async def query_thermostat(self, vid: int) -> None:
        await self._send(
            get_indoor_temperature(vid),
            get_thermostat_mode(vid),
            get_thermostat_setpoint(vid, HEAT),
            get_thermostat_setpoint(vid, COOL),
        )

    async def query_outdoor_temperature(self, vid: int) -> None:
        await self._send(get_outdoor_temperature(vid))
