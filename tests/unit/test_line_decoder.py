"""Unit tests for command channel line decoding and framing."""

from __future__ import annotations

import pytest

from vantage_controller.protocol.events import (
    MODE_ONLY,
    BlindStatusChange,
    InterfaceSupportAnswer,
    LoadStatusChange,
    ThermostatDidChange,
    ThermostatIndoorModeChange,
    ThermostatIndoorTemperatureChange,
    ThermostatMode,
)
from vantage_controller.protocol.line_decoder import LineFramer, decode_line, decode_lines


class TestLoadLines:
    """Load level reports."""

    def test_status_load(self) -> None:
        assert decode_line("S:LOAD 123 75.000") == [LoadStatusChange(123, 75)]

    def test_getload_reply(self) -> None:
        assert decode_line("R:GETLOAD 45 0.000\r") == [LoadStatusChange(45, 0)]

    def test_hsl_reply_carries_channel(self) -> None:
        events = decode_line("R:INVOKE 300 120 RGBLoad.GetHSL 0")
        assert events == [LoadStatusChange(300, 120, hsl_channel=0)]

    def test_load_prefix_requires_space(self) -> None:
        # LOADGROUP lines are not load reports
        assert decode_line("S:LOADGROUP 5 100") == []


class TestBlindLines:
    """Blind position reports."""

    @pytest.mark.parametrize(
        "line",
        ["S:BLIND 77 40.000", "R:GETBLIND 77 40", "R:INVOKE 77 40 Blind.GetPosition"],
    )
    def test_blind_position(self, line: str) -> None:
        assert decode_line(line) == [BlindStatusChange(77, 40)]


class TestThermostatLines:
    """Thermostat ticks, temperatures and modes."""

    def test_temp_tick(self) -> None:
        assert decode_line("S:TEMP 12 21.5") == [ThermostatDidChange("21.5")]

    @pytest.mark.parametrize("line", ["S:TEMP 12", "S:TEMP"])
    def test_temp_tick_without_value(self, line: str) -> None:
        assert decode_line(line) == [ThermostatDidChange("")]

    def test_indoor_temperature(self) -> None:
        events = decode_line("R:INVOKE 88 21.75 Thermostat.GetIndoorTemperature")
        assert events == [ThermostatIndoorTemperatureChange(88, 21.75)]

    def test_mode_only(self) -> None:
        events = decode_line("S:THERMOP 88 HEAT")
        assert events == [ThermostatIndoorModeChange(88, ThermostatMode.HEAT, MODE_ONLY)]
        assert events[0].mode_only

    def test_getthermop_reply(self) -> None:
        (event,) = decode_line("R:GETTHERMOP 88 OFF")
        assert isinstance(event, ThermostatIndoorModeChange)
        assert event.mode is ThermostatMode.OFF

    def test_setpoint_reply(self) -> None:
        (event,) = decode_line("R:THERMTEMP 88 COOL 24.5")
        assert event == ThermostatIndoorModeChange(88, ThermostatMode.COOL, 24.5)
        assert not event.mode_only

    def test_unknown_mode_token_is_auto(self) -> None:
        (event,) = decode_line("S:THERMOP 88 EMERGENCY")
        assert event.mode is ThermostatMode.AUTO


class TestInterfaceSupport:
    """Object.IsInterfaceSupported replies."""

    def test_supported(self) -> None:
        events = decode_line("R:INVOKE 10 1 Object.IsInterfaceSupported 55")
        assert events == [InterfaceSupportAnswer(vid=10, iid=55, supported=True)]

    def test_unsupported(self) -> None:
        (event,) = decode_line("R:INVOKE 10 0 Object.IsInterfaceSupported 55")
        assert event.supported is False


class TestMalformedLines:
    """Bad lines are dropped without raising."""

    def test_non_numeric_vid(self) -> None:
        assert decode_line("S:LOAD abc 50") == []

    def test_missing_value(self) -> None:
        assert decode_line("S:LOAD 12") == []

    def test_blank_and_unknown(self) -> None:
        assert decode_line("") == []
        assert decode_line("   ") == []
        assert decode_line("S:BTN 12 PRESS") == []


def test_decode_lines_preserves_order() -> None:
    """Events come back in line order."""
    events = decode_lines("S:LOAD 1 10\nS:BLIND 2 20\nS:LOAD 3 30\n")
    assert events == [LoadStatusChange(1, 10), BlindStatusChange(2, 20), LoadStatusChange(3, 30)]


def test_decoding_twice_yields_events_twice() -> None:
    chunk = "S:LOAD 118 75\r\nR:THERMTEMP 42 COOL 24.5\r\n"
    assert decode_lines(chunk + chunk) == decode_lines(chunk) * 2


class TestLineFramer:
    """Splitting chunks into lines."""

    def test_partial_line_is_carried(self) -> None:
        framer = LineFramer()
        assert framer.feed(b"S:LOAD 1 5") == []
        assert framer.pending == "S:LOAD 1 5"
        assert framer.feed(b"0\nS:LOAD 2 ") == ["S:LOAD 1 50"]
        assert framer.feed(b"7\n") == ["S:LOAD 2 7"]
        assert framer.pending == ""

    def test_split_utf8_sequence(self) -> None:
        framer = LineFramer()
        encoded = "S:X é\n".encode()
        assert framer.feed(encoded[:-2]) == []
        assert framer.feed(encoded[-2:]) == ["S:X é"]

    def test_reset_drops_partial(self) -> None:
        framer = LineFramer()
        framer.feed(b"S:LOAD 1")
        framer.reset()
        assert framer.pending == ""
        assert framer.feed(b"S:LOAD 2 3\n") == ["S:LOAD 2 3"]

    def test_oversized_partial_is_discarded(self) -> None:
        framer = LineFramer()
        assert framer.feed(b"x" * (17 * 1024)) == []
        assert framer.pending == ""
