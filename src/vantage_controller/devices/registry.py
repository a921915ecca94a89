"""Live device records and the event-to-state mapping."""

from __future__ import annotations

from typing import TypeAlias

from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field

from vantage_controller.const import (
    MAX_COOLING_SETPOINT,
    MAX_HEATING_SETPOINT,
    MAX_INDOOR_TEMPERATURE,
    MAX_TARGET_TEMPERATURE,
)
from vantage_controller.devices.models import (
    DeviceKind,
    HeatingCoolingState,
    PositionState,
    ThermostatMode,
    ThermostatState,
    VantageDevice,
)
from vantage_controller.logging_abstraction import get_logger
from vantage_controller.protocol.events import (
    BlindStatusChange,
    InterfaceSupportAnswer,
    LoadStatusChange,
    StatusEvent,
    ThermostatDidChange,
    ThermostatIndoorModeChange,
    ThermostatIndoorTemperatureChange,
)

__all__ = [
    "DeviceListener",
    "DeviceRegistry",
    "RegistryDiff",
    "running_state",
    "target_for_mode",
]

logger = get_logger(__name__)

DeviceListener: TypeAlias = Callable[[VantageDevice], None]


@dataclass
class RegistryDiff:
    added: list[int] = field(default_factory=list)
    updated: list[int] = field(default_factory=list)
    removed: list[int] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.updated or self.removed)


def running_state(state: ThermostatState, mode: ThermostatMode) -> HeatingCoolingState:
    """Whether a thermostat in *mode* is currently calling for heat or cooling."""
    if mode == ThermostatMode.HEAT and state.temperature <= state.heating_setpoint:
        return HeatingCoolingState.HEATING
    if mode == ThermostatMode.COOL and state.temperature >= state.cooling_setpoint:
        return HeatingCoolingState.COOLING
    if mode == ThermostatMode.AUTO:
        if state.temperature <= state.heating_setpoint:
            return HeatingCoolingState.HEATING
        if state.temperature >= state.cooling_setpoint:
            return HeatingCoolingState.COOLING
    return HeatingCoolingState.OFF


def target_for_mode(state: ThermostatState) -> float:
    """Target temperature shown for the thermostat's current mode."""
    if state.mode == ThermostatMode.HEAT:
        return state.heating_setpoint
    if state.mode == ThermostatMode.COOL:
        return state.cooling_setpoint
    if state.mode == ThermostatMode.AUTO:
        return state.heating_setpoint if state.temperature <= state.heating_setpoint else state.cooling_setpoint
    return state.target_temperature


class DeviceRegistry:
    """Owns the current device set, keyed by vid, in discovery order."""

    lp: str = "registry:"

    def __init__(self) -> None:
        self._devices: dict[int, VantageDevice] = {}
        self._listeners: list[DeviceListener] = []

    def __len__(self) -> int:
        return len(self._devices)

    def __iter__(self) -> Iterator[VantageDevice]:
        return iter(list(self._devices.values()))

    def __contains__(self, vid: object) -> bool:
        return vid in self._devices

    def get(self, vid: int) -> VantageDevice | None:
        return self._devices.get(vid)

    def of_kind(self, kind: DeviceKind) -> list[VantageDevice]:
        return [d for d in self._devices.values() if d.kind is kind]

    def replace(self, devices: Iterable[VantageDevice]) -> RegistryDiff:
        """Swap in a fresh device set.

        Records whose vid survives keep their live state; only their metadata
        is refreshed.
        """
        lp = f"{self.lp}replace:"
        diff = RegistryDiff()
        fresh: dict[int, VantageDevice] = {}
        for device in devices:
            existing = self._devices.get(device.vid)
            if existing is None:
                diff.added.append(device.vid)
                fresh[device.vid] = device
                continue
            if not existing.same_identity(device):
                diff.updated.append(device.vid)
                if existing.kind is not device.kind:
                    fresh[device.vid] = device
                    continue
                existing.name = device.name
                existing.object_type = device.object_type
                existing.load_type = device.load_type
                existing.area = device.area
            fresh[device.vid] = existing
        diff.removed = [vid for vid in self._devices if vid not in fresh]
        self._devices = fresh
        logger.info(
            "%s %d devices (%d added, %d updated, %d removed)",
            lp,
            len(fresh),
            len(diff.added),
            len(diff.updated),
            len(diff.removed),
        )
        return diff

    # Listeners

    def add_listener(self, listener: DeviceListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def notify(self, device: VantageDevice) -> None:
        for listener in list(self._listeners):
            try:
                listener(device)
            except Exception:
                logger.exception("%s listener %r failed for vid %d", self.lp, listener, device.vid)

    # Events

    def apply(self, event: StatusEvent) -> list[int]:
        """Apply one decoded event to the matching device.

        Returns the vids whose state changed, or for ``ThermostatDidChange``
        the vids of every thermostat that should be re-queried.
        """
        if isinstance(event, ThermostatDidChange):
            return [d.vid for d in self.of_kind(DeviceKind.THERMOSTAT)]
        if isinstance(event, InterfaceSupportAnswer):
            return []

        device = self._devices.get(event.vid)
        if device is None:
            logger.debug("%s event for unknown vid %d: %r", self.lp, event.vid, event)
            return []

        if isinstance(event, LoadStatusChange):
            self._apply_load(device, event)
        elif isinstance(event, BlindStatusChange):
            device.blind.position = event.position
            device.blind.position_state = PositionState.STOPPED
            logger.debug("%s blind %d (%s) position %d", self.lp, device.vid, device.name, event.position)
        elif isinstance(event, ThermostatIndoorTemperatureChange):
            self._apply_temperature(device, event)
        else:
            self._apply_mode(device, event)
        self.notify(device)
        return [device.vid]

    def _apply_load(self, device: VantageDevice, event: LoadStatusChange) -> None:
        load = device.load
        if device.kind is DeviceKind.RGB and event.hsl_channel is not None:
            if event.hsl_channel == 0:
                load.hue = event.value
            elif event.hsl_channel == 1:
                load.saturation = event.value
            else:
                load.brightness = event.value
                load.power = event.value > 0
            logger.debug(
                "%s rgb %d (%s) H:%d S:%d L:%d",
                self.lp,
                device.vid,
                device.name,
                load.hue,
                load.saturation,
                load.brightness,
            )
            return
        load.brightness = event.value
        load.power = event.value > 0
        logger.debug("%s %s %d (%s) level %d", self.lp, device.kind.value, device.vid, device.name, event.value)

    def _apply_temperature(self, device: VantageDevice, event: ThermostatIndoorTemperatureChange) -> None:
        temperature = event.temperature
        if temperature > MAX_INDOOR_TEMPERATURE:
            logger.warning(
                "%s thermostat %d (%s) reports %.1f, it is most likely not working; consider omitting it",
                self.lp,
                device.vid,
                device.name,
                temperature,
            )
            temperature = MAX_INDOOR_TEMPERATURE
        device.thermostat.temperature = temperature

    def _apply_mode(self, device: VantageDevice, event: ThermostatIndoorModeChange) -> None:
        state = device.thermostat
        if event.mode_only:
            state.running_state = running_state(state, event.mode)
            state.mode = event.mode
            return
        value = event.target_temperature
        state.target_temperature = min(MAX_TARGET_TEMPERATURE, value)
        if event.mode == ThermostatMode.HEAT:
            state.heating_setpoint = min(MAX_HEATING_SETPOINT, value)
        elif event.mode == ThermostatMode.COOL:
            state.cooling_setpoint = min(MAX_COOLING_SETPOINT, value)
        state.target_temperature = target_for_mode(state)
