"""Command channel line decoding.

The controller streams newline-terminated ASCII lines. Spontaneous status
lines start with ``S:`` and replies to issued requests start with ``R:``.
``decode_line`` classifies a single line; rules are evaluated independently
so a line matching several rules yields several events. Decoding keeps no
state between calls; ``LineFramer`` is the only stateful piece and is owned
by the command session, which carries a trailing partial line into the next
chunk.
"""

from __future__ import annotations

import codecs
import re

from vantage_controller.exceptions import LineDecodeError
from vantage_controller.logging_abstraction import get_logger
from vantage_controller.metrics import record_decode_error, record_line_decoded
from vantage_controller.protocol.events import (
    MODE_ONLY,
    BlindStatusChange,
    InterfaceSupportAnswer,
    LoadStatusChange,
    StatusEvent,
    ThermostatDidChange,
    ThermostatIndoorModeChange,
    ThermostatIndoorTemperatureChange,
    ThermostatMode,
)

__all__ = [
    "LineFramer",
    "decode_line",
    "decode_lines",
]

logger = get_logger(__name__)

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")
_MODE_TOKENS = ("S:THERMOP", "R:GETTHERMOP", "R:THERMTEMP")
# longest partial line kept between chunks
MAX_PARTIAL_LINE = 16 * 1024


def _token(tokens: list[str], index: int, line: str) -> str:
    if index >= len(tokens):
        raise LineDecodeError("missing_token", line)
    return tokens[index]


def _int(tokens: list[str], index: int, line: str) -> int:
    """Leading-integer parse, so ``75.000`` reads as 75."""
    match = _LEADING_INT.match(_token(tokens, index, line))
    if match is None:
        raise LineDecodeError("not_an_integer", line)
    return int(match.group(1))


def _float(tokens: list[str], index: int, line: str) -> float:
    try:
        return float(_token(tokens, index, line))
    except ValueError:
        raise LineDecodeError("not_a_number", line) from None


def _blind(tokens: list[str], line: str) -> StatusEvent | None:
    head = tokens[0]
    invoke_blind = head == "R:INVOKE" and len(tokens) > 3 and "Blind" in tokens[3]
    if not (line.startswith(("S:BLIND", "R:GETBLIND")) or invoke_blind):
        return None
    return BlindStatusChange(_int(tokens, 1, line), _int(tokens, 2, line))


def _load(tokens: list[str], line: str) -> StatusEvent | None:
    if not line.startswith(("S:LOAD ", "R:GETLOAD ")):
        return None
    return LoadStatusChange(_int(tokens, 1, line), _int(tokens, 2, line))


def _hsl(tokens: list[str], line: str) -> StatusEvent | None:
    if tokens[0] != "R:INVOKE" or len(tokens) <= 3 or "RGBLoad.GetHSL" not in tokens[3]:
        return None
    return LoadStatusChange(_int(tokens, 1, line), _int(tokens, 2, line), hsl_channel=_int(tokens, 4, line))


def _temp_tick(tokens: list[str], line: str) -> StatusEvent | None:
    if tokens[0] != "S:TEMP":
        return None
    # the refresh is broadcast whatever the tick carries
    return ThermostatDidChange(tokens[2] if len(tokens) > 2 else "")


def _indoor_temperature(tokens: list[str], line: str) -> StatusEvent | None:
    if tokens[0] != "R:INVOKE" or len(tokens) <= 3 or "Thermostat.GetIndoorTemperature" not in tokens[3]:
        return None
    return ThermostatIndoorTemperatureChange(_int(tokens, 1, line), _float(tokens, 2, line))


def _mode(tokens: list[str], line: str) -> StatusEvent | None:
    head = tokens[0]
    if head not in _MODE_TOKENS:
        return None
    mode = ThermostatMode.from_token(_token(tokens, 2, line))
    target = _float(tokens, 3, line) if head == "R:THERMTEMP" else MODE_ONLY
    return ThermostatIndoorModeChange(_int(tokens, 1, line), mode, target)


def _interface_support(tokens: list[str], line: str) -> StatusEvent | None:
    if not line.startswith("R:INVOKE") or "Object.IsInterfaceSupported" not in line:
        return None
    return InterfaceSupportAnswer(
        vid=_int(tokens, 1, line),
        iid=_int(tokens, 4, line),
        supported=bool(_int(tokens, 2, line)),
    )


_RULES = (_blind, _load, _hsl, _temp_tick, _indoor_temperature, _mode, _interface_support)


def decode_line(line: str) -> list[StatusEvent]:
    """Decode one status line into zero or more events.

    A rule that matches but cannot extract its fields is logged and counted;
    the remaining rules still run.
    """
    line = line.strip()
    if not line:
        return []
    tokens = line.split(" ")
    events: list[StatusEvent] = []
    for rule in _RULES:
        try:
            event = rule(tokens, line)
        except LineDecodeError as e:
            logger.warning(
                "line_decoder: dropping malformed line: %s",
                e,
                extra={"reason": e.reason, "rule": rule.__name__.lstrip("_")},
            )
            record_decode_error(e.reason)
            continue
        if event is not None:
            record_line_decoded(type(event).__name__)
            events.append(event)
    return events


def decode_lines(text: str) -> list[StatusEvent]:
    """Decode every line of *text*, preserving line order."""
    events: list[StatusEvent] = []
    for line in text.split("\n"):
        events.extend(decode_line(line))
    return events


class LineFramer:
    """Splits a byte stream into complete lines, holding back a trailing partial line."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._partial = ""

    def feed(self, data: bytes) -> list[str]:
        text = self._partial + self._decoder.decode(data)
        *lines, self._partial = text.split("\n")
        if len(self._partial) > MAX_PARTIAL_LINE:
            logger.warning(
                "line_framer: discarding %d bytes without a line terminator",
                len(self._partial),
            )
            record_decode_error("line_too_long")
            self._partial = ""
        return lines

    def reset(self) -> None:
        self._decoder.reset()
        self._partial = ""

    @property
    def pending(self) -> str:
        return self._partial
