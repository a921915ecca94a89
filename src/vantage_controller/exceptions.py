"""Exception hierarchy for the Vantage bridge.

Errors raised inside the protocol layers are caught at line, chunk or
connection granularity and logged; none of them are meant to reach the
process level. ``ConfigError`` is the exception the CLI treats as fatal.
"""

from __future__ import annotations


class VantageError(Exception):
    """Base exception for every error raised by this package."""


class ConfigError(VantageError):
    """Invalid or incomplete bridge configuration."""


class VantageProtocolError(VantageError):
    """Base exception for controller protocol errors."""


class LineDecodeError(VantageProtocolError):
    """A command channel status line cannot be decoded.

    Attributes:
        reason: Short failure reason used as a metrics label
        line_preview: First 64 characters of the offending line

    """

    def __init__(self, reason: str, line: str = "") -> None:
        self.reason: str = reason
        self.line_preview: str = line[:64]
        super().__init__(f"Line decode failed: {reason} ({self.line_preview!r})")


class ConfigReplyError(VantageProtocolError):
    """A configuration channel reply parsed as XML but has an unexpected shape.

    Attributes:
        reason: Specific failure reason
        reply: Name of the reply envelope

    """

    def __init__(self, reason: str, reply: str = "unknown") -> None:
        self.reason: str = reason
        self.reply: str = reply
        super().__init__(f"Unexpected {reply} reply: {reason}")


class DiscoveryError(VantageProtocolError):
    """Discovery finished without producing a configuration document.

    Attributes:
        reason: Specific failure reason
        objects: Objects accumulated before the failure

    """

    def __init__(self, reason: str, objects: int = 0) -> None:
        self.reason: str = reason
        self.objects: int = objects
        super().__init__(f"Discovery failed: {reason} ({objects} objects accumulated)")
