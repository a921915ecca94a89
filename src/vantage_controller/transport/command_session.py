"""Command channel session: connect, preamble, event streaming and reconnect.

The session owns one ``ControllerConnection`` at a time. After connecting it
sends the login / status / event-logging preamble, then decodes every inbound
chunk into typed events and hands them to subscribers in line order. When the
connection ends for any reason the old connection is dropped, and a new one
is attempted after a fixed delay, until ``stop()`` is called.

Writes issued while the channel is down are dropped, not queued: callers that
need a state change to stick must resend it after reconnection.
"""

from __future__ import annotations

from typing import TypeAlias

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from enum import Enum

from vantage_controller.const import INTERFACE_QUERY_TIMEOUT, RECONNECT_DELAY
from vantage_controller.logging_abstraction import get_logger
from vantage_controller.metrics import (
    record_command_sent,
    record_connection_state,
    record_interface_query,
    record_reconnect,
)
from vantage_controller.protocol import commands
from vantage_controller.protocol.events import InterfaceSupportAnswer, StatusEvent
from vantage_controller.protocol.line_decoder import LineFramer, decode_line
from vantage_controller.transport.probe import ChannelChoice
from vantage_controller.transport.socket_abstraction import ControllerConnection, StreamOpener

__all__ = [
    "CommandSession",
    "EventHandler",
    "SessionState",
]

logger = get_logger(__name__)

EventHandler: TypeAlias = Callable[[StatusEvent], Awaitable[None] | None]


class SessionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    RECONNECTING = "reconnecting"


class CommandSession:
    """Long-lived command channel to one controller."""

    lp: str = "session:"

    def __init__(
        self,
        host: str,
        channel: ChannelChoice,
        username: str | None = None,
        password: str | None = None,
        reconnect_delay: float = RECONNECT_DELAY,
        interface_query_timeout: float = INTERFACE_QUERY_TIMEOUT,
        opener: StreamOpener | None = None,
    ) -> None:
        self.host = host
        self.channel = channel
        self.username = username
        self.password = password
        self.reconnect_delay = reconnect_delay
        self.interface_query_timeout = interface_query_timeout
        self._opener = opener
        self._connection: ControllerConnection | None = None
        self._framer = LineFramer()
        self._subscribers: list[EventHandler] = []
        self._pending_queries: dict[tuple[int, int], asyncio.Future[bool]] = {}
        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()
        self._streaming_event = asyncio.Event()
        self.state = SessionState.DISCONNECTED
        self.reconnects = 0

    # Lifecycle

    def start(self) -> asyncio.Task[None]:
        """Start the connect/stream/reconnect loop (idempotent)."""
        if self._task is None or self._task.done():
            self._stop_event.clear()
            self._task = asyncio.create_task(self._run(), name="vantage_command_session")
        return self._task

    async def stop(self) -> None:
        """Stop reconnecting, close the socket and fail pending interface queries."""
        lp = f"{self.lp}stop:"
        self._stop_event.set()
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                logger.debug("%s session task cancelled", lp)
        await self._drop_connection()
        for future in self._pending_queries.values():
            if not future.done():
                future.cancel()
        self._pending_queries.clear()
        self._set_state(SessionState.DISCONNECTED)

    async def wait_streaming(self, timeout: float | None = None) -> bool:
        """Wait until the preamble has been sent on a live connection."""
        try:
            await asyncio.wait_for(self._streaming_event.wait(), timeout)
        except TimeoutError:
            return False
        return True

    @property
    def is_streaming(self) -> bool:
        return self.state is SessionState.STREAMING

    def _set_state(self, state: SessionState) -> None:
        if state is not self.state:
            logger.debug("%s %s -> %s", self.lp, self.state.value, state.value)
        self.state = state
        if state is SessionState.STREAMING:
            self._streaming_event.set()
        else:
            self._streaming_event.clear()
        record_connection_state("command", state.value)

    async def _run(self) -> None:
        lp = f"{self.lp}run:"
        try:
            while not self._stop_event.is_set():
                reason = "connect_failed"
                self._set_state(SessionState.CONNECTING)
                connection = ControllerConnection(
                    self.host,
                    self.channel.port,
                    use_tls=self.channel.use_tls,
                    opener=self._opener,
                )
                try:
                    if await connection.connect():
                        self._connection = connection
                        self._framer.reset()
                        await self._write(connection, commands.session_preamble(self.username, self.password))
                        self._set_state(SessionState.STREAMING)
                        logger.info("%s streaming from %s:%s", lp, self.host, self.channel.port)
                        await self._receive_loop(connection)
                        reason = "closed"
                except OSError as e:
                    reason = "error"
                    logger.warning("%s connection error: %s", lp, e)
                except Exception:
                    reason = "error"
                    logger.exception("%s unexpected error in session loop", lp)
                finally:
                    await self._drop_connection()

                if self._stop_event.is_set():
                    break
                self._set_state(SessionState.RECONNECTING)
                self.reconnects += 1
                record_reconnect(reason)
                logger.info(
                    "%s %s, reconnecting in %.1fs",
                    lp,
                    reason,
                    self.reconnect_delay,
                    extra={"reason": reason, "reconnects": self.reconnects},
                )
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.reconnect_delay)
                except TimeoutError:
                    pass
        finally:
            self._set_state(SessionState.DISCONNECTED)

    async def _drop_connection(self) -> None:
        connection, self._connection = self._connection, None
        if connection is not None:
            await connection.close()

    async def _receive_loop(self, connection: ControllerConnection) -> None:
        while True:
            data = await connection.recv()
            if data is None:
                return
            for line in self._framer.feed(data):
                for event in decode_line(line):
                    await self._dispatch(event)

    # Events

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Register *handler* for every decoded event. Returns an unsubscribe callable."""
        self._subscribers.append(handler)

        def unsubscribe() -> None:
            if handler in self._subscribers:
                self._subscribers.remove(handler)

        return unsubscribe

    async def _dispatch(self, event: StatusEvent) -> None:
        if isinstance(event, InterfaceSupportAnswer):
            self._resolve_interface_query(event)
            return
        for handler in list(self._subscribers):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("%s subscriber %r failed on %r", self.lp, handler, event)

    # Writes

    async def _write(self, connection: ControllerConnection, lines: list[str]) -> bool:
        ok = await connection.send("".join(lines).encode())
        outcome = "sent" if ok else "failed"
        for line in lines:
            record_command_sent(line.split(" ", 1)[0].strip(), outcome)
        return ok

    async def send_lines(self, lines: list[str]) -> bool:
        """Write *lines* as one serialized write. Returns False when dropped."""
        connection = self._connection
        if connection is None or self.state is not SessionState.STREAMING:
            logger.warning(
                "%s channel %s, dropping %d line(s) (not replayed after reconnect)",
                f"{self.lp}send:",
                self.state.value,
                len(lines),
                extra={"lines": [line.strip() for line in lines]},
            )
            for line in lines:
                record_command_sent(line.split(" ", 1)[0].strip(), "dropped")
            return False
        logger.debug("%s %s", f"{self.lp}send:", " | ".join(line.strip() for line in lines))
        return await self._write(connection, lines)

    # Interface support queries

    async def query_interface_support(self, vid: int, iid: int, timeout: float | None = None) -> bool:
        """Ask the controller whether object *vid* implements interface *iid*.

        Concurrent queries for the same pair share one request. No answer
        within *timeout* seconds counts as unsupported.
        """
        lp = f"{self.lp}interface_query:"
        key = (vid, iid)
        timeout = self.interface_query_timeout if timeout is None else timeout
        future = self._pending_queries.get(key)
        if future is None:
            future = asyncio.get_running_loop().create_future()
            self._pending_queries[key] = future
            if not await self.send_lines([commands.is_interface_supported(vid, iid)]):
                self._pending_queries.pop(key, None)
                record_interface_query("unsent")
                return False
        try:
            supported = await asyncio.wait_for(asyncio.shield(future), timeout=timeout)
        except TimeoutError:
            if self._pending_queries.get(key) is future:
                del self._pending_queries[key]
            record_interface_query("timeout")
            logger.warning("%s no answer for vid=%s iid=%s after %.1fs", lp, vid, iid, timeout)
            return False
        except asyncio.CancelledError:
            if self._stop_event.is_set():
                return False
            raise
        record_interface_query("supported" if supported else "unsupported")
        return supported

    def _resolve_interface_query(self, answer: InterfaceSupportAnswer) -> None:
        future = self._pending_queries.pop((answer.vid, answer.iid), None)
        if future is None:
            logger.debug("%s unsolicited interface answer %r", self.lp, answer)
            return
        if not future.done():
            future.set_result(answer.supported)

    @property
    def pending_queries(self) -> int:
        return len(self._pending_queries)
