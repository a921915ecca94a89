"""Orchestration of one controller: transports, command session, discovery and device state."""

from __future__ import annotations

from typing import TypeAlias

import asyncio
import inspect
from collections.abc import Awaitable, Callable

from vantage_controller.config import VantageConfig
from vantage_controller.devices.commands import DeviceCommands
from vantage_controller.devices.models import VantageDevice
from vantage_controller.devices.registry import DeviceRegistry, RegistryDiff
from vantage_controller.discovery.cache import ConfigurationCache
from vantage_controller.discovery.device_list import build_devices
from vantage_controller.discovery.fetcher import ConfigurationFetcher
from vantage_controller.exceptions import ConfigReplyError, DiscoveryError
from vantage_controller.logging_abstraction import get_logger
from vantage_controller.metrics import record_devices_discovered
from vantage_controller.protocol.commands import CommandEncoder
from vantage_controller.protocol.events import StatusEvent, ThermostatDidChange
from vantage_controller.transport.command_session import CommandSession
from vantage_controller.transport.probe import TransportChoice, select_transports
from vantage_controller.transport.socket_abstraction import StreamOpener

__all__ = ["DeviceListListener", "VantageBridge"]

logger = get_logger(__name__)

DeviceListListener: TypeAlias = Callable[[list[VantageDevice], RegistryDiff], Awaitable[None] | None]

# how long priming waits for the command channel before giving up
PRIME_WAIT_SECONDS = 30.0


class VantageBridge:
    """Runs the protocol client for one controller and keeps ``registry`` current.

    Start-up order: select transports, start the command session, run
    discovery (cache or network), replace the registry contents, notify
    device-list listeners, then prime every device once the command channel
    is streaming.
    """

    lp: str = "bridge:"

    def __init__(self, config: VantageConfig, opener: StreamOpener | None = None) -> None:
        self.config = config
        self._opener = opener
        self.registry = DeviceRegistry()
        self.cache = ConfigurationCache(config.cache_path, config.legacy_cache_paths)
        self.interfaces: dict[str, int] = {}
        self.transports: TransportChoice | None = None
        self.session: CommandSession | None = None
        self.encoder: CommandEncoder | None = None
        self.commands: DeviceCommands | None = None
        self._device_list_listeners: list[DeviceListListener] = []
        self._unsubscribe: Callable[[], None] | None = None
        self._discovery_lock = asyncio.Lock()
        self._ready = asyncio.Event()

    async def start(self) -> None:
        lp = f"{self.lp}start:"
        cfg = self.config
        logger.info("%s controller at %s", lp, cfg.host)
        self.transports = await select_transports(cfg.host, cfg.force_tls, cfg.probe_timeout, self._opener)
        logger.info(
            "%s command %d%s, configuration %d%s",
            lp,
            self.transports.command.port,
            " (TLS)" if self.transports.command.use_tls else "",
            self.transports.configuration.port,
            " (TLS)" if self.transports.configuration.use_tls else "",
        )
        self.session = CommandSession(
            cfg.host,
            self.transports.command,
            username=cfg.username,
            password=cfg.password,
            reconnect_delay=cfg.reconnect_delay,
            interface_query_timeout=cfg.interface_query_timeout,
            opener=self._opener,
        )
        self.encoder = CommandEncoder(self.session)
        self.commands = DeviceCommands(self.registry, self.encoder)
        self._unsubscribe = self.session.subscribe(self._on_event)
        self.session.start()
        await self.discover(use_cache=cfg.use_cache)

    async def stop(self) -> None:
        logger.info("%s stopping", self.lp)
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self.session is not None:
            await self.session.stop()

    # Discovery

    async def discover(self, use_cache: bool | None = None) -> RegistryDiff | None:
        """Fetch the configuration, rebuild the device list and prime new devices.

        Returns None when discovery failed; the previous device set is kept.
        """
        lp = f"{self.lp}discover:"
        if self.transports is None:
            logger.error("%s transports not selected, call start() first", lp)
            return None
        use_cache = self.config.use_cache if use_cache is None else use_cache
        async with self._discovery_lock:
            devices = await self._load_devices(use_cache)
            if devices is None:
                return None
            diff = self.registry.replace(devices)
            record_devices_discovered(len(self.registry))
        await self._notify_device_list(diff)
        self._ready.set()
        await self.prime([*diff.added, *diff.updated])
        return diff

    async def _load_devices(self, use_cache: bool) -> list[VantageDevice] | None:
        lp = f"{self.lp}load_devices:"
        assert self.transports is not None
        fetcher = ConfigurationFetcher(
            self.config.host,
            self.transports.configuration,
            cache=self.cache,
            username=self.config.username,
            password=self.config.password,
            use_cache=use_cache,
            fetch_interfaces=self.config.fetch_interfaces,
            quiet_period=self.config.discovery_quiet_period,
            deadline=self.config.discovery_deadline,
            opener=self._opener,
        )
        try:
            result = await fetcher.fetch()
        except DiscoveryError as e:
            logger.error("%s %s", lp, e, extra={"reason": e.reason})
            return None
        self.interfaces.update(result.interfaces)
        try:
            devices = build_devices(
                result.document,
                omit=self.config.omit,
                vid_range=self.config.vid_range,
                max_devices=self.config.max_devices,
            )
        except ConfigReplyError as e:
            if result.source != "cache":
                logger.error("%s assembled configuration is unreadable: %s", lp, e)
                return None
            logger.warning("%s cached configuration is unreadable (%s), asking the controller", lp, e)
            self.cache.clear()
            return await self._load_devices(use_cache=False)
        logger.info(
            "%s %d devices from %s%s",
            lp,
            len(devices),
            result.source,
            " (partial)" if result.partial else "",
        )
        return devices

    async def rediscover(self) -> RegistryDiff | None:
        """Ignore the cache and enumerate the controller again."""
        return await self.discover(use_cache=False)

    async def wait_ready(self, timeout: float | None = None) -> bool:
        """Wait until a device list has been published at least once."""
        try:
            await asyncio.wait_for(self._ready.wait(), timeout)
        except TimeoutError:
            return False
        return True

    async def prime(self, vids: list[int] | None = None) -> None:
        """Query the initial state of *vids* (default: every device)."""
        lp = f"{self.lp}prime:"
        if self.session is None or self.commands is None:
            return
        if not await self.session.wait_streaming(PRIME_WAIT_SECONDS):
            logger.warning("%s command channel not streaming, initial values not requested", lp)
            return
        targets = [d.vid for d in self.registry] if vids is None else vids
        for vid in targets:
            await self.commands.prime(vid)
        logger.debug("%s requested state for %d devices", lp, len(targets))

    # Device-list listeners

    def add_device_list_listener(self, listener: DeviceListListener) -> Callable[[], None]:
        self._device_list_listeners.append(listener)

        def remove() -> None:
            if listener in self._device_list_listeners:
                self._device_list_listeners.remove(listener)

        return remove

    async def _notify_device_list(self, diff: RegistryDiff) -> None:
        devices = list(self.registry)
        for listener in list(self._device_list_listeners):
            try:
                result = listener(devices, diff)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("%s device list listener %r failed", self.lp, listener)

    # Events and queries

    async def _on_event(self, event: StatusEvent) -> None:
        vids = self.registry.apply(event)
        if isinstance(event, ThermostatDidChange) and vids and self.commands is not None:
            await self.commands.refresh_thermostats(vids)

    async def is_interface_supported(self, vid: int, interface: str) -> bool:
        """Ask whether object *vid* implements the named interface.

        Interfaces missing from the introspection table count as unsupported.
        """
        iid = self.interfaces.get(interface)
        if iid is None or self.session is None:
            logger.debug("%s interface %r unknown, treating as unsupported", self.lp, interface)
            return False
        return await self.session.query_interface_support(vid, iid)
