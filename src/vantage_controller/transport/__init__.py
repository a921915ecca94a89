"""Controller transports: socket wrapper, plaintext/TLS probing and the command session."""

from .command_session import CommandSession, SessionState
from .probe import ChannelChoice, TransportChoice, probe, select_transports
from .socket_abstraction import ControllerConnection, open_stream

__all__ = [
    "ChannelChoice",
    "CommandSession",
    "ControllerConnection",
    "SessionState",
    "TransportChoice",
    "open_stream",
    "probe",
    "select_transports",
]
