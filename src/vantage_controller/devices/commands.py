"""Device-level operations keyed by vid.

Each setter updates the local record first (so the host sees the change
immediately) and then writes to the controller. The controller's own status
lines later confirm or correct the optimistic value through the registry.
"""

from __future__ import annotations

from vantage_controller.devices.models import (
    DeviceKind,
    HeatingCoolingState,
    PositionState,
    TemperatureUnits,
    ThermostatMode,
    VantageDevice,
)
from vantage_controller.devices.registry import DeviceRegistry, target_for_mode
from vantage_controller.logging_abstraction import get_logger
from vantage_controller.protocol.commands import CommandEncoder

__all__ = ["DeviceCommands"]

logger = get_logger(__name__)


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


class DeviceCommands:
    """Optimistic setters plus the getter queries used to prime device state."""

    lp: str = "device_commands:"

    def __init__(self, registry: DeviceRegistry, encoder: CommandEncoder) -> None:
        self.registry = registry
        self.encoder = encoder

    def _device(self, vid: int, *kinds: DeviceKind) -> VantageDevice | None:
        device = self.registry.get(vid)
        if device is None:
            logger.warning("%s unknown vid %d", self.lp, vid)
            return None
        if kinds and device.kind not in kinds:
            logger.warning(
                "%s vid %d is a %s, expected %s",
                self.lp,
                vid,
                device.kind.value,
                "/".join(k.value for k in kinds),
            )
            return None
        return device

    def _load(self, vid: int) -> VantageDevice | None:
        device = self._device(vid)
        if device is not None and not device.is_load:
            logger.warning("%s vid %d is a %s, expected a load", self.lp, vid, device.kind.value)
            return None
        return device

    async def _write_level(self, device: VantageDevice, level: int) -> None:
        if device.kind is DeviceKind.RELAY:
            await self.encoder.set_relay_level(device.vid, level)
        else:
            await self.encoder.ramp_load(device.vid, level)

    # Loads

    async def set_power(self, vid: int, on: bool) -> None:
        """Switch a load. Turning on a load sitting at 0% restores full brightness."""
        lp = f"{self.lp}set_power:"
        device = self._load(vid)
        if device is None:
            return
        load = device.load
        load.power = on
        if on and load.brightness == 0:
            load.brightness = 100
        level = load.brightness if on else 0
        logger.debug("%s %d (%s) -> %s", lp, vid, device.name, "on" if on else "off")
        self.registry.notify(device)
        await self._write_level(device, level)

    async def set_brightness(self, vid: int, brightness: int) -> None:
        lp = f"{self.lp}set_brightness:"
        device = self._load(vid)
        if device is None:
            return
        load = device.load
        load.brightness = int(_clamp(brightness, 0, 100))
        load.power = load.brightness > 0
        logger.debug("%s %d (%s) -> %d", lp, vid, device.name, load.brightness)
        self.registry.notify(device)
        level = load.brightness if load.power else 0
        if device.kind is DeviceKind.RGB:
            await self.encoder.set_hsl(vid, load.hue, load.saturation, level)
        await self._write_level(device, level)

    async def set_hue(self, vid: int, hue: int) -> None:
        device = self._device(vid, DeviceKind.RGB)
        if device is None:
            return
        load = device.load
        load.power = True
        load.hue = int(_clamp(hue, 0, 360))
        self.registry.notify(device)
        await self.encoder.set_hsl(vid, load.hue, load.saturation, load.brightness)

    async def set_saturation(self, vid: int, saturation: int) -> None:
        device = self._device(vid, DeviceKind.RGB)
        if device is None:
            return
        load = device.load
        load.power = True
        load.saturation = int(_clamp(saturation, 0, 100))
        self.registry.notify(device)
        await self.encoder.set_hsl(vid, load.hue, load.saturation, load.brightness)

    async def set_hs_color(self, vid: int, hue: int, saturation: int) -> None:
        """Set hue and saturation in a single SetHSL write."""
        device = self._device(vid, DeviceKind.RGB)
        if device is None:
            return
        load = device.load
        load.power = True
        load.hue = int(_clamp(hue, 0, 360))
        load.saturation = int(_clamp(saturation, 0, 100))
        self.registry.notify(device)
        await self.encoder.set_hsl(vid, load.hue, load.saturation, load.brightness)

    # Blinds

    async def set_blind_position(self, vid: int, position: int) -> None:
        device = self._device(vid, DeviceKind.BLIND)
        if device is None:
            return
        blind = device.blind
        target = int(_clamp(position, 0, 100))
        if target > blind.position:
            blind.position_state = PositionState.INCREASING
        elif target < blind.position:
            blind.position_state = PositionState.DECREASING
        blind.position = target
        self.registry.notify(device)
        await self.encoder.set_blind_position(vid, target)

    # Thermostats

    async def set_thermostat_mode(self, vid: int, mode: ThermostatMode) -> None:
        lp = f"{self.lp}set_thermostat_mode:"
        device = self._device(vid, DeviceKind.THERMOSTAT)
        if device is None:
            return
        state = device.thermostat
        state.mode = ThermostatMode(mode)
        state.target_temperature = target_for_mode(state)
        logger.info("%s %d (%s) -> %s", lp, vid, device.name, state.mode.name)
        self.registry.notify(device)
        await self.encoder.set_thermostat_mode(vid, state.mode)

    async def set_target_temperature(self, vid: int, value: float) -> None:
        """Set the setpoint matching the current mode.

        A thermostat that is off switches locally to heat when the target is
        above the room temperature and to cool when it is below.
        """
        lp = f"{self.lp}set_target_temperature:"
        device = self._device(vid, DeviceKind.THERMOSTAT)
        if device is None:
            return
        state = device.thermostat
        state.target_temperature = value
        if state.mode == ThermostatMode.OFF:
            if value > state.temperature:
                state.mode = ThermostatMode.HEAT
                state.running_state = HeatingCoolingState.HEATING
            elif value < state.temperature:
                state.mode = ThermostatMode.COOL
                state.running_state = HeatingCoolingState.COOLING
        if state.mode == ThermostatMode.HEAT:
            state.heating_setpoint = value
        elif state.mode == ThermostatMode.COOL:
            state.cooling_setpoint = value
        logger.info("%s %d (%s) -> %.1f in %s", lp, vid, device.name, value, state.mode.name)
        self.registry.notify(device)
        await self.encoder.set_target_temperature(
            vid,
            value,
            state.mode,
            state.heating_setpoint,
            state.cooling_setpoint,
        )

    def set_temperature_units(self, vid: int, units: TemperatureUnits) -> None:
        """Display units are local only; nothing is written."""
        device = self._device(vid, DeviceKind.THERMOSTAT)
        if device is None:
            return
        device.thermostat.units = TemperatureUnits(units)
        self.registry.notify(device)

    # Queries

    async def prime(self, vid: int) -> None:
        """Ask the controller for the current values of one device."""
        device = self._device(vid)
        if device is None:
            return
        if device.kind is DeviceKind.THERMOSTAT:
            await self.encoder.query_thermostat(vid)
        elif device.kind is DeviceKind.RGB:
            await self.encoder.query_hsl(vid)
            await self.encoder.query_load(vid)
        elif device.kind is DeviceKind.BLIND:
            await self.encoder.query_blind(vid)
        else:
            await self.encoder.query_load(vid)

    async def prime_all(self) -> None:
        for device in self.registry:
            await self.prime(device.vid)

    async def refresh_thermostats(self, vids: list[int] | None = None) -> None:
        """Re-query every thermostat (or just *vids*) after a temperature tick."""
        if vids is None:
            vids = [d.vid for d in self.registry.of_kind(DeviceKind.THERMOSTAT)]
        for vid in vids:
            await self.encoder.query_thermostat(vid)

    async def query_outdoor_temperature(self, vid: int) -> None:
        if self._device(vid, DeviceKind.THERMOSTAT) is not None:
            await self.encoder.query_outdoor_temperature(vid)
