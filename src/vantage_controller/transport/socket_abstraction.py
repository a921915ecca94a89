"""Asyncio controller socket with optional TLS, deadlines and instrumentation."""

from __future__ import annotations

from typing import TypeAlias

import asyncio
import ssl
import time
from collections.abc import Awaitable, Callable

from vantage_controller.logging_abstraction import get_logger

__all__ = [
    "ControllerConnection",
    "StreamOpener",
    "insecure_ssl_context",
    "open_stream",
]

logger = get_logger(__name__)

StreamOpener: TypeAlias = Callable[[str, int, bool], Awaitable[tuple[asyncio.StreamReader, asyncio.StreamWriter]]]


def insecure_ssl_context() -> ssl.SSLContext:
    """Client context for the controller's self-signed certificates."""
    ctx = ssl.create_default_context(ssl.Purpose.SERVER_AUTH)
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


async def open_stream(host: str, port: int, use_tls: bool) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    return await asyncio.open_connection(host, port, ssl=insecure_ssl_context() if use_tls else None)


class ControllerConnection:
    """One plaintext or TLS connection to a controller port."""

    def __init__(
        self,
        host: str,
        port: int,
        use_tls: bool = False,
        connect_timeout: float = 10.0,
        io_timeout: float = 5.0,
        max_read_size: int = 65536,
        opener: StreamOpener | None = None,
    ) -> None:
        """
        Args:
            host: Controller address
            port: Controller port
            use_tls: Wrap the socket in TLS (no certificate validation)
            connect_timeout: Connection timeout in seconds
            io_timeout: Drain timeout for writes in seconds
            max_read_size: Maximum bytes returned by one ``recv``
            opener: Coroutine returning ``(reader, writer)``; defaults to ``open_stream``
        """
        self.host = host
        self.port = port
        self.use_tls = use_tls
        self.connect_timeout = connect_timeout
        self.io_timeout = io_timeout
        self.max_read_size = max_read_size
        self._opener: StreamOpener = opener or open_stream
        self.reader: asyncio.StreamReader | None = None
        self.writer: asyncio.StreamWriter | None = None
        self._connected = False
        self._write_lock = asyncio.Lock()
        self.lp = f"conn[{host}:{port}{'/tls' if use_tls else ''}]:"

    @property
    def _extra(self) -> dict[str, object]:
        return {"host": self.host, "port": self.port, "tls": self.use_tls}

    async def connect(self) -> bool:
        """Open the connection. Returns False on timeout or socket error."""
        lp = f"{self.lp}connect:"
        start_time = time.perf_counter()
        try:
            self.reader, self.writer = await asyncio.wait_for(
                self._opener(self.host, self.port, self.use_tls),
                timeout=self.connect_timeout,
            )
        except TimeoutError:
            logger.warning(
                "%s timed out after %.1fms",
                lp,
                (time.perf_counter() - start_time) * 1000,
                extra={**self._extra, "error": "timeout"},
            )
            return False
        except (OSError, ssl.SSLError) as e:
            logger.warning(
                "%s failed after %.1fms: %s",
                lp,
                (time.perf_counter() - start_time) * 1000,
                e,
                extra={**self._extra, "error": str(e)},
            )
            return False
        self._connected = True
        logger.info(
            "%s connected in %.1fms",
            lp,
            (time.perf_counter() - start_time) * 1000,
            extra=self._extra,
        )
        return True

    async def send(self, data: bytes) -> bool:
        """Write *data* and drain, serialized with other writers on this connection."""
        lp = f"{self.lp}send:"
        async with self._write_lock:
            if not self._connected or self.writer is None:
                logger.warning("%s not connected, dropping %d bytes", lp, len(data), extra=self._extra)
                return False
            try:
                self.writer.write(data)
                await asyncio.wait_for(self.writer.drain(), timeout=self.io_timeout)
            except TimeoutError:
                logger.warning("%s drain timed out", lp, extra={**self._extra, "error": "timeout"})
                return False
            except OSError as e:
                logger.warning("%s failed: %s", lp, e, extra={**self._extra, "error": str(e)})
                self._connected = False
                return False
        logger.debug("%s %d bytes", lp, len(data), extra={**self._extra, "bytes": len(data)})
        return True

    async def recv(self) -> bytes | None:
        """Wait for the next chunk. Returns None on EOF or socket error."""
        lp = f"{self.lp}recv:"
        if not self._connected or self.reader is None:
            return None
        try:
            data = await self.reader.read(self.max_read_size)
        except (OSError, ssl.SSLError) as e:
            logger.warning("%s failed: %s", lp, e, extra={**self._extra, "error": str(e)})
            self._connected = False
            return None
        if not data:
            logger.info("%s connection closed by peer", lp, extra=self._extra)
            self._connected = False
            return None
        return data

    async def close(self) -> None:
        if self.writer is None:
            return
        lp = f"{self.lp}close:"
        writer = self.writer
        self.writer = None
        self.reader = None
        self._connected = False
        try:
            writer.close()
            await asyncio.wait_for(writer.wait_closed(), timeout=self.io_timeout)
        except (OSError, ssl.SSLError, TimeoutError) as e:
            logger.debug("%s %s: %s", lp, type(e).__name__, e, extra=self._extra)

    @property
    def is_connected(self) -> bool:
        return self._connected

    def __repr__(self) -> str:
        status = "connected" if self._connected else "disconnected"
        return f"ControllerConnection({self.host}:{self.port}, tls={self.use_tls}, {status})"
