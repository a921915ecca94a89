"""Configuration channel discovery state machine.

One run enumerates every supported object type on every sub-controller:

    connect -> [introspect] -> [login] -> OpenFilter -> GetFilterResults -> OpenFilter -> ...

Object types are requested in ``OBJECT_TYPES`` order. After the last type
the controller index is incremented and the cursor wraps to the first type.
The enumeration ends when an OpenFilter reply echoes a controller index other
than the one requested (the first reply of a run may instead re-base the
index). The accumulated objects are then wrapped in a synthetic
``<Project><Objects>`` document, cached and returned.

Replies are only ever decoded from complete envelopes pulled out of a
``ReplyBuffer``; an incomplete buffer simply waits for the next read.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from vantage_controller.const import (
    DISCOVERY_DEADLINE,
    DISCOVERY_QUIET_PERIOD,
    OBJECT_TYPES,
)
from vantage_controller.correlation import correlation_context
from vantage_controller.discovery.cache import ConfigurationCache
from vantage_controller.exceptions import ConfigReplyError, DiscoveryError
from vantage_controller.instrumentation import timed_async
from vantage_controller.logging_abstraction import get_logger
from vantage_controller.metrics import record_connection_state, record_discovery_page, record_discovery_run
from vantage_controller.protocol.config_messages import (
    ConfigReply,
    GetFilterResultsReply,
    IntrospectionReply,
    LoginReply,
    OpenFilterReply,
    ReplyBuffer,
    build_configuration_document,
    decode_reply,
    get_filter_results_request,
    introspection_request,
    login_request,
    open_filter_request,
)
from vantage_controller.transport.probe import ChannelChoice
from vantage_controller.transport.socket_abstraction import ControllerConnection, StreamOpener

__all__ = [
    "ConfigurationFetcher",
    "DiscoveryAccumulator",
    "DiscoveryResult",
    "FetchState",
]

logger = get_logger(__name__)


class FetchState(Enum):
    CONNECTING = "connecting"
    INTROSPECTING = "introspecting"
    LOGGING_IN = "logging_in"
    OPENING_FILTER = "opening_filter"
    READING_RESULTS = "reading_results"
    DONE = "done"


@dataclass
class DiscoveryAccumulator:
    """Per-run enumeration state; discarded when the run ends."""

    controller: int = 1
    cursor: int = 0
    handles: set[str] = field(default_factory=set)
    objects: list[dict[str, Any]] = field(default_factory=list)
    first_filter_reply: bool = True

    @property
    def object_type(self) -> str:
        return OBJECT_TYPES[self.cursor]

    def advance(self) -> None:
        self.cursor += 1
        if self.cursor >= len(OBJECT_TYPES):
            self.cursor = 0
            self.controller += 1


@dataclass(frozen=True, slots=True)
class DiscoveryResult:
    document: str
    source: str
    interfaces: dict[str, int] = field(default_factory=dict)
    objects: int = 0
    partial: bool = False


class ConfigurationFetcher:
    """Runs discovery against the configuration channel, or replays the cache."""

    lp: str = "discovery:"

    def __init__(
        self,
        host: str,
        channel: ChannelChoice,
        cache: ConfigurationCache | None = None,
        username: str | None = None,
        password: str | None = None,
        use_cache: bool = True,
        fetch_interfaces: bool = True,
        quiet_period: float = DISCOVERY_QUIET_PERIOD,
        deadline: float = DISCOVERY_DEADLINE,
        opener: StreamOpener | None = None,
    ) -> None:
        self.host = host
        self.channel = channel
        self.cache = cache
        self.username = username
        self.password = password
        self.use_cache = use_cache
        self.fetch_interfaces = fetch_interfaces
        self.quiet_period = quiet_period
        self.deadline = deadline
        self._opener = opener
        self.state = FetchState.DONE
        self.interfaces: dict[str, int] = {}
        self._buffer = ReplyBuffer()

    @property
    def _has_credentials(self) -> bool:
        return bool(self.username) and bool(self.password)

    @timed_async("discovery")
    async def fetch(self) -> DiscoveryResult:
        """Return the configuration document for the controller.

        Raises:
            DiscoveryError: the channel could not be opened, or nothing was
                accumulated before it closed or the overall deadline passed

        """
        with correlation_context():
            start = time.perf_counter()
            if self.use_cache and self.cache is not None:
                document = await self.cache.load()
                if document is not None:
                    record_discovery_run("cache", time.perf_counter() - start)
                    return DiscoveryResult(document=document, source="cache", interfaces=dict(self.interfaces))
            try:
                result = await self._fetch_from_controller()
            except DiscoveryError as e:
                record_discovery_run("failed", time.perf_counter() - start)
                logger.warning("%s %s", self.lp, e, extra={"reason": e.reason, "objects": e.objects})
                raise
            record_discovery_run("partial" if result.partial else "complete", time.perf_counter() - start)
            return result

    async def _fetch_from_controller(self) -> DiscoveryResult:
        lp = f"{self.lp}fetch:"
        self._set_state(FetchState.CONNECTING)
        self._buffer.clear()
        connection = ControllerConnection(
            self.host,
            self.channel.port,
            use_tls=self.channel.use_tls,
            opener=self._opener,
        )
        if not await connection.connect():
            self._set_state(FetchState.DONE)
            raise DiscoveryError("connect_failed")
        record_connection_state("configuration", "streaming")
        acc = DiscoveryAccumulator()
        try:
            await self._begin(connection, acc)
            loop = asyncio.get_running_loop()
            deadline = loop.time() + self.deadline
            # the quiet period restarts only when a reply moves the run forward
            last_advance = loop.time()
            progress = self._progress(acc)
            while True:
                try:
                    reply = await self._next_reply(connection, min(last_advance + self.quiet_period, deadline))
                except TimeoutError:
                    if loop.time() >= deadline:
                        if acc.objects:
                            logger.warning("%s deadline passed, finishing with %d objects", lp, len(acc.objects))
                            return await self._finish(acc, partial=True)
                        raise DiscoveryError("deadline", 0) from None
                    if self.state is FetchState.INTROSPECTING:
                        logger.warning("%s no introspection reply, continuing without interfaces", lp)
                        await self._after_introspection(connection, acc)
                    elif acc.objects:
                        logger.warning(
                            "%s no progress for %.1fs, finishing with %d objects",
                            lp,
                            self.quiet_period,
                            len(acc.objects),
                        )
                        return await self._finish(acc, partial=True)
                    else:
                        logger.debug("%s still waiting for the controller (%s)", lp, self.state.value)
                    last_advance, progress = loop.time(), self._progress(acc)
                    continue
                if reply is None:
                    if acc.objects:
                        logger.warning("%s channel closed, finishing with %d objects", lp, len(acc.objects))
                        return await self._finish(acc, partial=True)
                    raise DiscoveryError("connection_closed", 0)
                if await self._handle(connection, acc, reply):
                    return await self._finish(acc, partial=False)
                if (current := self._progress(acc)) != progress:
                    last_advance, progress = loop.time(), current
        finally:
            self._set_state(FetchState.DONE)
            await connection.close()
            record_connection_state("configuration", "disconnected")

    def _set_state(self, state: FetchState) -> None:
        if state is not self.state:
            logger.debug("%s %s -> %s", self.lp, self.state.value, state.value)
        self.state = state

    def _progress(self, acc: DiscoveryAccumulator) -> tuple[FetchState, int, int, int, int]:
        return self.state, acc.controller, acc.cursor, len(acc.handles), len(self.interfaces)

    async def _next_reply(self, connection: ControllerConnection, expires_at: float) -> ConfigReply | None:
        """Decode the next complete envelope, reading more data as needed.

        Returns None on EOF. Raises TimeoutError when nothing decodable
        arrives before the loop time *expires_at*, however much data is read.
        """
        lp = f"{self.lp}next_reply:"
        async with asyncio.timeout_at(expires_at):
            while True:
                document = self._buffer.next_document()
                if document is not None:
                    try:
                        return decode_reply(document)
                    except ConfigReplyError as e:
                        logger.warning("%s %s", lp, e, extra={"reply": e.reply, "reason": e.reason})
                        continue
                data = await connection.recv()
                if data is None:
                    return None
                self._buffer.feed(data)

    async def _send(self, connection: ControllerConnection, request: str) -> None:
        if not await connection.send(request.encode()):
            logger.warning("%s write failed in state %s", self.lp, self.state.value)

    async def _begin(self, connection: ControllerConnection, acc: DiscoveryAccumulator) -> None:
        if self.fetch_interfaces:
            self._set_state(FetchState.INTROSPECTING)
            await self._send(connection, introspection_request())
            return
        await self._after_introspection(connection, acc)

    async def _after_introspection(self, connection: ControllerConnection, acc: DiscoveryAccumulator) -> None:
        if self._has_credentials:
            self._set_state(FetchState.LOGGING_IN)
            await self._send(connection, login_request(self.username or "", self.password or ""))
            return
        await self._open_filter(connection, acc)

    async def _open_filter(self, connection: ControllerConnection, acc: DiscoveryAccumulator) -> None:
        self._set_state(FetchState.OPENING_FILTER)
        logger.debug("%s requesting %s on controller %d", self.lp, acc.object_type, acc.controller)
        await self._send(connection, open_filter_request(acc.controller, acc.object_type))

    async def _handle(self, connection: ControllerConnection, acc: DiscoveryAccumulator, reply: ConfigReply) -> bool:
        """Advance the run for one reply. Returns True when enumeration is over."""
        lp = f"{self.lp}handle:"
        if isinstance(reply, IntrospectionReply):
            self.interfaces.update(reply.interfaces)
            logger.info("%s %d interfaces reported", lp, len(reply.interfaces))
            if self.state is FetchState.INTROSPECTING:
                await self._after_introspection(connection, acc)
            return False

        if isinstance(reply, LoginReply):
            if reply.success:
                logger.info("%s login successful", lp)
            else:
                logger.warning("%s login failed, requesting data anyway", lp)
            self._buffer.clear()
            acc.controller, acc.cursor = 1, 0
            await self._open_filter(connection, acc)
            return False

        if isinstance(reply, OpenFilterReply):
            return await self._handle_open_filter(connection, acc, reply)

        if isinstance(reply, GetFilterResultsReply):
            if self.state is not FetchState.READING_RESULTS:
                logger.warning("%s unexpected GetFilterResults reply in state %s", lp, self.state.value)
                return False
            self._collect(acc, reply)
            acc.advance()
            await self._open_filter(connection, acc)
            return False

        logger.warning("%s unhandled reply %r", lp, reply)
        return False

    async def _handle_open_filter(
        self,
        connection: ControllerConnection,
        acc: DiscoveryAccumulator,
        reply: OpenFilterReply,
    ) -> bool:
        lp = f"{self.lp}open_filter:"
        first = acc.first_filter_reply
        acc.first_filter_reply = False
        if reply.controller != acc.controller:
            if first and reply.controller is not None:
                logger.info("%s controller reported index %d, adopting it", lp, reply.controller)
                acc.controller = reply.controller
            elif not first:
                logger.info(
                    "%s controller %d does not exist, enumeration complete",
                    lp,
                    acc.controller,
                    extra={"objects": len(acc.objects)},
                )
                return True
        if reply.handle in acc.handles:
            logger.warning("%s filter handle %s already read, waiting", lp, reply.handle)
            return False
        acc.handles.add(reply.handle)
        self._set_state(FetchState.READING_RESULTS)
        await self._send(connection, get_filter_results_request(reply.handle))
        return False

    def _collect(self, acc: DiscoveryAccumulator, reply: GetFilterResultsReply) -> None:
        object_type = acc.object_type
        record_discovery_page(object_type)
        for entry in reply.objects:
            element = entry.get(object_type)
            if element is None and len(entry) == 1:
                element = next(iter(entry.values()))
            if not isinstance(element, dict):
                logger.debug("%s skipping %s entry without attributes: %r", self.lp, object_type, entry)
                continue
            element["ObjectType"] = object_type
            acc.objects.append({object_type: element})
        logger.debug(
            "%s %s on controller %d: %d objects",
            self.lp,
            object_type,
            acc.controller,
            len(reply.objects),
        )

    async def _finish(self, acc: DiscoveryAccumulator, partial: bool) -> DiscoveryResult:
        document = build_configuration_document(acc.objects)
        if self.cache is not None:
            await self.cache.save(document)
        logger.info(
            "%s assembled %d objects%s",
            self.lp,
            len(acc.objects),
            " (partial)" if partial else "",
            extra={"objects": len(acc.objects), "partial": partial, "handles": len(acc.handles)},
        )
        return DiscoveryResult(
            document=document,
            source="network",
            interfaces=dict(self.interfaces),
            objects=len(acc.objects),
            partial=partial,
        )
