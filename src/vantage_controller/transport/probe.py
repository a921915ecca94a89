"""Plaintext vs TLS selection for the command and configuration channels.

Each channel has a plaintext port and a TLS port. A controller that only
accepts TLS still accepts a plaintext TCP connection, but never answers on
it, so the selector writes a harmless request to the plaintext port and
waits for any reply byte. Silence or a close before the first byte selects
the TLS port.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from vantage_controller.const import (
    COMMAND_PORT,
    COMMAND_PORT_TLS,
    COMMAND_PROBE_TEXT,
    CONFIG_PORT,
    CONFIG_PORT_TLS,
    CONFIG_PROBE_TEXT,
    PROBE_TIMEOUT,
)
from vantage_controller.instrumentation import timed_async
from vantage_controller.logging_abstraction import get_logger
from vantage_controller.metrics import record_probe
from vantage_controller.transport.socket_abstraction import StreamOpener, open_stream

__all__ = [
    "ChannelChoice",
    "TransportChoice",
    "probe",
    "select_transports",
]

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ChannelChoice:
    port: int
    use_tls: bool


@dataclass(frozen=True, slots=True)
class TransportChoice:
    command: ChannelChoice
    configuration: ChannelChoice


async def probe(
    host: str,
    port: int,
    probe_text: str,
    timeout: float = PROBE_TIMEOUT,
    opener: StreamOpener | None = None,
) -> bool:
    """Return True when *port* answers *probe_text* with at least one byte.

    Network errors count as "not usable" and are only logged. The probe
    socket is always closed before returning.
    """
    lp = f"probe[{host}:{port}]:"
    opener = opener or open_stream
    writer: asyncio.StreamWriter | None = None
    outcome = "silent"
    try:
        # one budget covers connect, write and the first reply byte
        async with asyncio.timeout(timeout):
            reader, writer = await opener(host, port, False)
            writer.write(probe_text.encode())
            await writer.drain()
            data = await reader.read(1)
        if data:
            outcome = "answered"
        else:
            outcome = "closed"
    except TimeoutError:
        outcome = "timeout"
    except OSError as e:
        outcome = "error"
        logger.warning("%s %s", lp, e, extra={"host": host, "port": port, "error": str(e)})
    finally:
        if writer is not None:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError as e:
                logger.debug("%s close: %s", lp, e)

    record_probe(port, outcome)
    usable = outcome == "answered"
    logger.info("%s %s -> %s", lp, outcome, "plaintext" if usable else "tls", extra={"port": port, "outcome": outcome})
    return usable


@timed_async("transport_probe")
async def select_transports(
    host: str,
    force_tls: bool = False,
    timeout: float = PROBE_TIMEOUT,
    opener: StreamOpener | None = None,
) -> TransportChoice:
    """Decide port and security for both channels, probing them concurrently."""
    if force_tls:
        logger.info("probe: TLS forced by configuration, skipping probes")
        return TransportChoice(
            command=ChannelChoice(COMMAND_PORT_TLS, True),
            configuration=ChannelChoice(CONFIG_PORT_TLS, True),
        )

    command_plain, config_plain = await asyncio.gather(
        probe(host, COMMAND_PORT, COMMAND_PROBE_TEXT, timeout, opener),
        probe(host, CONFIG_PORT, CONFIG_PROBE_TEXT, timeout, opener),
    )
    return TransportChoice(
        command=ChannelChoice(COMMAND_PORT, False) if command_plain else ChannelChoice(COMMAND_PORT_TLS, True),
        configuration=ChannelChoice(CONFIG_PORT, False) if config_plain else ChannelChoice(CONFIG_PORT_TLS, True),
    )
