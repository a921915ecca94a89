"""Unit tests for optimistic device setters and priming queries."""

from __future__ import annotations

import pytest
from conftest import RecordingWriter, make_device

from vantage_controller.devices.commands import DeviceCommands
from vantage_controller.devices.models import (
    DeviceKind,
    HeatingCoolingState,
    PositionState,
    TemperatureUnits,
    ThermostatMode,
    VantageDevice,
)
from vantage_controller.devices.registry import DeviceRegistry
from vantage_controller.protocol.commands import CommandEncoder


@pytest.fixture
def registry() -> DeviceRegistry:
    registry = DeviceRegistry()
    registry.replace(
        [
            make_device(3, DeviceKind.RELAY),
            make_device(12, DeviceKind.DIMMER),
            make_device(9, DeviceKind.RGB),
            make_device(4, DeviceKind.BLIND),
            make_device(7, DeviceKind.THERMOSTAT),
        ]
    )
    return registry


@pytest.fixture
def device_commands(registry: DeviceRegistry, recording_writer: RecordingWriter) -> DeviceCommands:
    return DeviceCommands(registry, CommandEncoder(recording_writer))


def device(registry: DeviceRegistry, vid: int) -> VantageDevice:
    found = registry.get(vid)
    assert found is not None
    return found


class TestLoads:
    """Power, brightness and colour."""

    @pytest.mark.asyncio
    async def test_power_on_from_zero_restores_full_brightness(
        self,
        device_commands: DeviceCommands,
        registry: DeviceRegistry,
        recording_writer: RecordingWriter,
    ) -> None:
        device(registry, 12).load.brightness = 0
        await device_commands.set_power(12, True)
        assert device(registry, 12).load.brightness == 100
        assert recording_writer.lines == ["INVOKE 12 Load.Ramp 6 1 100\n"]

    @pytest.mark.asyncio
    async def test_power_on_keeps_last_brightness(
        self,
        device_commands: DeviceCommands,
        registry: DeviceRegistry,
        recording_writer: RecordingWriter,
    ) -> None:
        device(registry, 12).load.brightness = 40
        await device_commands.set_power(12, True)
        assert recording_writer.lines == ["INVOKE 12 Load.Ramp 6 1 40\n"]

    @pytest.mark.asyncio
    async def test_relay_off(self, device_commands: DeviceCommands, recording_writer: RecordingWriter) -> None:
        await device_commands.set_power(3, False)
        assert recording_writer.lines == ["LOAD 3 0\n"]

    @pytest.mark.asyncio
    async def test_brightness_clamped(
        self,
        device_commands: DeviceCommands,
        registry: DeviceRegistry,
        recording_writer: RecordingWriter,
    ) -> None:
        await device_commands.set_brightness(12, 150)
        assert device(registry, 12).load.brightness == 100
        await device_commands.set_brightness(12, 0)
        assert device(registry, 12).load.power is False
        assert recording_writer.lines == ["INVOKE 12 Load.Ramp 6 1 100\n", "INVOKE 12 Load.Ramp 6 1 0\n"]

    @pytest.mark.asyncio
    async def test_rgb_brightness_writes_hsl_then_ramp(
        self,
        device_commands: DeviceCommands,
        registry: DeviceRegistry,
        recording_writer: RecordingWriter,
    ) -> None:
        load = device(registry, 9).load
        load.hue, load.saturation = 120, 50
        await device_commands.set_brightness(9, 60)
        assert recording_writer.lines == ["INVOKE 9 RGBLoad.SetHSL 120 50 60 1\n", "INVOKE 9 Load.Ramp 6 1 60\n"]

    @pytest.mark.asyncio
    async def test_hs_color_single_write(
        self,
        device_commands: DeviceCommands,
        registry: DeviceRegistry,
        recording_writer: RecordingWriter,
    ) -> None:
        await device_commands.set_hs_color(9, 400, 80)
        load = device(registry, 9).load
        assert (load.hue, load.saturation, load.power) == (360, 80, True)
        assert recording_writer.lines == ["INVOKE 9 RGBLoad.SetHSL 360 80 100 1\n"]

    @pytest.mark.asyncio
    async def test_hue_and_saturation(self, device_commands: DeviceCommands, recording_writer: RecordingWriter) -> None:
        await device_commands.set_hue(9, 30)
        await device_commands.set_saturation(9, 70)
        assert recording_writer.lines == ["INVOKE 9 RGBLoad.SetHSL 30 0 100 1\n", "INVOKE 9 RGBLoad.SetHSL 30 70 100 1\n"]

    @pytest.mark.asyncio
    async def test_listener_sees_optimistic_state(
        self,
        device_commands: DeviceCommands,
        registry: DeviceRegistry,
    ) -> None:
        seen: list[bool] = []
        registry.add_listener(lambda d: seen.append(d.load.power))
        await device_commands.set_power(12, True)
        assert seen == [True]


class TestRejected:
    """Unknown vids and wrong kinds write nothing."""

    @pytest.mark.asyncio
    async def test_unknown_vid(self, device_commands: DeviceCommands, recording_writer: RecordingWriter) -> None:
        await device_commands.set_power(999, True)
        assert recording_writer.lines == []

    @pytest.mark.asyncio
    async def test_wrong_kind(self, device_commands: DeviceCommands, recording_writer: RecordingWriter) -> None:
        await device_commands.set_blind_position(12, 50)
        await device_commands.set_hue(12, 10)
        await device_commands.set_thermostat_mode(4, ThermostatMode.HEAT)
        assert recording_writer.lines == []

    @pytest.mark.asyncio
    async def test_load_setters_skip_other_kinds(
        self,
        device_commands: DeviceCommands,
        registry: DeviceRegistry,
        recording_writer: RecordingWriter,
    ) -> None:
        await device_commands.set_power(4, True)
        await device_commands.set_brightness(7, 40)
        assert recording_writer.lines == []
        assert device(registry, 4).load.power is False


class TestBlinds:
    """Blind position writes."""

    @pytest.mark.asyncio
    async def test_direction_tracked(
        self,
        device_commands: DeviceCommands,
        registry: DeviceRegistry,
        recording_writer: RecordingWriter,
    ) -> None:
        blind = device(registry, 4).blind
        blind.position = 20
        await device_commands.set_blind_position(4, 80)
        assert (blind.position, blind.position_state) == (80, PositionState.INCREASING)
        await device_commands.set_blind_position(4, -5)
        assert (blind.position, blind.position_state) == (0, PositionState.DECREASING)
        assert recording_writer.lines == ["BLIND 4 POS 80\n", "BLIND 4 POS 0\n"]


class TestThermostats:
    """Mode and target temperature writes."""

    @pytest.mark.asyncio
    async def test_mode(
        self,
        device_commands: DeviceCommands,
        registry: DeviceRegistry,
        recording_writer: RecordingWriter,
    ) -> None:
        state = device(registry, 7).thermostat
        state.cooling_setpoint = 24.0
        await device_commands.set_thermostat_mode(7, ThermostatMode.COOL)
        assert state.target_temperature == 24.0
        assert recording_writer.lines == ["THERMOP 7 COOL\n"]

    @pytest.mark.asyncio
    async def test_target_while_off_switches_to_heat(
        self,
        device_commands: DeviceCommands,
        registry: DeviceRegistry,
        recording_writer: RecordingWriter,
    ) -> None:
        state = device(registry, 7).thermostat
        state.temperature = 19.0
        await device_commands.set_target_temperature(7, 22.0)
        assert state.mode is ThermostatMode.HEAT
        assert state.running_state is HeatingCoolingState.HEATING
        assert state.heating_setpoint == 22.0
        assert recording_writer.lines == ["THERMTEMP 7 HEAT 22\n"]

    @pytest.mark.asyncio
    async def test_target_while_off_switches_to_cool(
        self,
        device_commands: DeviceCommands,
        registry: DeviceRegistry,
        recording_writer: RecordingWriter,
    ) -> None:
        state = device(registry, 7).thermostat
        state.temperature = 26.0
        await device_commands.set_target_temperature(7, 23.5)
        assert state.mode is ThermostatMode.COOL
        assert recording_writer.lines == ["THERMTEMP 7 COOL 23.5\n"]

    @pytest.mark.asyncio
    async def test_auto_between_setpoints_writes_nothing(
        self,
        device_commands: DeviceCommands,
        registry: DeviceRegistry,
        recording_writer: RecordingWriter,
    ) -> None:
        state = device(registry, 7).thermostat
        state.mode = ThermostatMode.AUTO
        state.heating_setpoint, state.cooling_setpoint = 20.0, 24.0
        await device_commands.set_target_temperature(7, 22.0)
        assert recording_writer.lines == []
        assert state.target_temperature == 22.0

    def test_units_are_local(
        self,
        device_commands: DeviceCommands,
        registry: DeviceRegistry,
        recording_writer: RecordingWriter,
    ) -> None:
        device_commands.set_temperature_units(7, TemperatureUnits.FAHRENHEIT)
        assert device(registry, 7).thermostat.units is TemperatureUnits.FAHRENHEIT
        assert recording_writer.lines == []


class TestPriming:
    """Getter queries per device kind."""

    @pytest.mark.asyncio
    async def test_prime_all(self, device_commands: DeviceCommands, recording_writer: RecordingWriter) -> None:
        await device_commands.prime_all()
        assert recording_writer.lines == [
            "GETLOAD 3\n",
            "GETLOAD 12\n",
            "INVOKE 9 RGBLoad.GetHSL 0\n",
            "INVOKE 9 RGBLoad.GetHSL 1\n",
            "INVOKE 9 RGBLoad.GetHSL 2\n",
            "GETLOAD 9\n",
            "GETBLIND 4\n",
            "INVOKE 7 Thermostat.GetIndoorTemperature\n",
            "GETTHERMOP 7\n",
            "GETTHERMTEMP 7 HEAT\n",
            "GETTHERMTEMP 7 COOL\n",
        ]

    @pytest.mark.asyncio
    async def test_refresh_thermostats(self, device_commands: DeviceCommands, recording_writer: RecordingWriter) -> None:
        await device_commands.refresh_thermostats()
        assert len(recording_writer.lines) == 4
        assert all(" 7 " in line for line in recording_writer.lines)

    @pytest.mark.asyncio
    async def test_outdoor_temperature(
        self, device_commands: DeviceCommands, recording_writer: RecordingWriter
    ) -> None:
        await device_commands.query_outdoor_temperature(7)
        await device_commands.query_outdoor_temperature(12)
        assert recording_writer.lines == ["INVOKE 7 Thermostat.GetOutdoorTemperature\n"]
