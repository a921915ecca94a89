"""MQTT client that mirrors the bridge's devices into Home Assistant."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import aiomqtt

from vantage_controller.bridge import VantageBridge
from vantage_controller.config import MQTTSettings
from vantage_controller.devices.models import VantageDevice
from vantage_controller.devices.registry import RegistryDiff
from vantage_controller.logging_abstraction import get_logger
from vantage_controller.mqtt.command_routing import CommandRouter
from vantage_controller.mqtt.discovery import DiscoveryHelper, config_topic, slugify
from vantage_controller.mqtt.state_updates import StateUpdateHelper

__all__ = ["MQTTClient"]

logger = get_logger(__name__)


class MQTTClient:
    """Publishes discovery configs and state, and routes ``<topic>/set/#`` commands."""

    lp: str = "mqtt:"

    def __init__(self, bridge: VantageBridge, settings: MQTTSettings | None = None) -> None:
        self.bridge = bridge
        self.settings = settings or bridge.config.mqtt
        self.topic = self.settings.topic or "vantage"
        self.ha_topic = self.settings.ha_topic or "homeassistant"
        self.broker_client_id = f"vantage_controller_{slugify(bridge.config.host)}"
        self.client: aiomqtt.Client | None = None
        self._connected = False
        self.start_task: asyncio.Task[None] | None = None
        # last announced record per vid, needed to clear configs of vanished vids
        self._announced: dict[int, VantageDevice] = {}
        self._pending: set[asyncio.Task[Any]] = set()
        self._remove_listeners: list[Any] = []

        self.discovery = DiscoveryHelper(self)
        self.state_updates = StateUpdateHelper(self)
        self.command_router = CommandRouter(self)

    @property
    def is_connected(self) -> bool:
        """Check if MQTT client is connected to the broker."""
        return self._connected

    def attach(self) -> None:
        """Listen to the bridge's registry and device-list changes."""
        if self._remove_listeners:
            return
        self._remove_listeners = [
            self.bridge.registry.add_listener(self._on_device_changed),
            self.bridge.add_device_list_listener(self._on_device_list),
        ]

    def detach(self) -> None:
        for remove in self._remove_listeners:
            remove()
        self._remove_listeners = []

    def _build_client(self) -> aiomqtt.Client:
        lwt = aiomqtt.Will(
            topic=f"{self.topic}/availability",
            payload=self.settings.will_msg.encode(),
            retain=True,
        )
        return aiomqtt.Client(
            hostname=self.settings.host,
            port=int(self.settings.port) if self.settings.port else 1883,
            username=self.settings.username,
            password=self.settings.password,
            identifier=self.broker_client_id,
            will=lwt,
        )

    def _get_connection_delay(self, lp: str) -> float:
        delay = self.settings.reconnect_delay
        if delay <= 0:
            logger.debug(
                "%s MQTT connection delay is less than or equal to 0, which is probably a typo, setting to 5...",
                lp,
            )
            return 5.0
        return delay

    # Connection lifecycle

    async def connect(self) -> bool:
        lp = f"{self.lp}connect:"
        self._connected = False
        logger.debug("%s Connecting to MQTT broker %s:%s...", lp, self.settings.host, self.settings.port)
        self.client = self._build_client()
        try:
            _ = await self.client.__aenter__()
        except aiomqtt.MqttError as mqtt_err_exc:
            logger.warning("%s Connection failed [MqttError] -> %s", lp, mqtt_err_exc)
            if "code:134" in str(mqtt_err_exc):
                logger.error(
                    "%s Bad username or password, check your MQTT credentials (username: %s)",
                    lp,
                    self.settings.username,
                )
            return False
        self._connected = True
        logger.info("%s Connected to MQTT broker: %s port: %s", lp, self.settings.host, self.settings.port)
        _ = await self.send_birth_msg()
        await self.announce()
        return True

    async def start(self) -> None:
        """Connect, subscribe and receive until cancelled, reconnecting on broker errors."""
        lp = f"{self.lp}start:"
        self.attach()
        try:
            while True:
                if await self.connect():
                    try:
                        await self._start_receiver(lp)
                    except aiomqtt.MqttError:
                        self._connected = False
                    else:
                        continue
                delay = self._get_connection_delay(lp)
                logger.info(
                    "%s MQTT broker unavailable, sleeping for %s seconds before re-trying...",
                    lp,
                    delay,
                )
                await asyncio.sleep(delay)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("%s MQTT start() EXCEPTION", lp)

    async def _start_receiver(self, lp: str) -> None:
        logger.info("%s Starting MQTT receiver...", lp)
        rcv_lp = f"{self.lp}rcv:"
        assert self.client is not None, "client must be initialized"
        topics = [f"{self.topic}/set/#", f"{self.ha_topic}/status"]
        for topic in topics:
            await self.client.subscribe(topic, qos=0)
        logger.debug("%s Subscribed to MQTT topics: %s. Waiting for MQTT messages...", rcv_lp, topics)
        try:
            async for message in self.client.messages:
                payload = message.payload
                if isinstance(payload, str):
                    payload = payload.encode()
                elif not isinstance(payload, (bytes, bytearray)):
                    payload = b"" if payload is None else str(payload).encode()
                try:
                    await self.command_router.route(message.topic.value, bytes(payload))
                except Exception:
                    logger.exception("%s failed to handle message on %s", rcv_lp, message.topic.value)
        except asyncio.CancelledError:
            logger.debug("%s MQTT receiver task cancelled, propagating...", rcv_lp)
            raise
        except aiomqtt.MqttError as msg_err:
            logger.warning("%s MQTT error: %s", rcv_lp, msg_err)
            raise

    async def stop(self) -> None:
        lp = f"{self.lp}stop:"
        self.detach()
        for task in list(self._pending):
            task.cancel()
        if self._connected:
            _ = await self.send_will_msg()
        try:
            if self.client is not None:
                logger.debug("%s Disconnecting from broker...", lp)
                await self.client.__aexit__(None, None, None)
        except aiomqtt.MqttError as ce:
            logger.warning("%s MQTT disconnect failed: %s", lp, ce)
        except Exception as e:
            logger.warning("%s MQTT disconnect failed: %s", lp, e)
        else:
            logger.info("%s Disconnected from MQTT broker", lp)
        finally:
            self._connected = False
            if self.start_task and not self.start_task.done():
                _ = self.start_task.cancel()

    async def send_birth_msg(self) -> bool:
        return await self._send_status(self.settings.birth_msg, f"{self.lp}send_birth_msg:")

    async def send_will_msg(self) -> bool:
        return await self._send_status(self.settings.will_msg, f"{self.lp}send_will_msg:")

    async def _send_status(self, message: str, lp: str) -> bool:
        if not self._connected:
            return False
        logger.debug("%s Sending %s to %s/availability", lp, message, self.topic)
        return await self.publish(f"{self.topic}/availability", message.encode(), retain=True)

    # Publishing

    async def publish(self, topic: str, msg_data: bytes, retain: bool = False) -> bool:
        """Publish a message to the MQTT broker."""
        lp = f"{self.lp}publish:"
        if not self._connected or self.client is None:
            return False
        try:
            _ = await self.client.publish(topic, msg_data, qos=0, retain=retain)
        except aiomqtt.MqttCodeError as mqtt_code_exc:
            logger.warning("%s [MqttCodeError] -> %s", lp, mqtt_code_exc)
            self._connected = False
        except aiomqtt.MqttError as mqtt_err:
            logger.warning("%s [MqttError] -> %s", lp, mqtt_err)
            self._connected = False
        except asyncio.CancelledError as can_exc:
            logger.warning("%s [Task Cancelled] -> %s", lp, can_exc)
        except Exception as e:
            logger.warning("%s [Exception] -> %s", lp, e)
        else:
            return True
        return False

    async def publish_json_msg(self, topic: str, msg_data: dict[str, Any], retain: bool = False) -> bool:
        return await self.publish(topic, json.dumps(msg_data).encode(), retain=retain)

    async def announce(self) -> None:
        """Publish discovery configs and current state for every device."""
        devices = list(self.bridge.registry)
        if not self._connected:
            return
        await self.discovery.homeassistant_discovery(devices)
        self._announced = {d.vid: d for d in devices}
        await self.state_updates.publish_all(devices)

    # Bridge listeners

    def _on_device_changed(self, device: VantageDevice) -> None:
        if not self._connected:
            return
        task = asyncio.get_running_loop().create_task(self.state_updates.publish_device_state(device))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _on_device_list(self, devices: list[VantageDevice], diff: RegistryDiff) -> None:
        lp = f"{self.lp}device_list:"
        if not self._connected:
            logger.debug("%s not connected, devices are announced on connect", lp)
            return
        for vid in diff.removed:
            gone = self._announced.pop(vid, None)
            if gone is not None:
                await self.discovery.remove_device(gone)
        for vid in diff.updated:
            old = self._announced.get(vid)
            fresh = self.bridge.registry.get(vid)
            # a kind change moves the entity to another component
            if old is not None and fresh is not None and config_topic(self.ha_topic, old) != config_topic(
                self.ha_topic, fresh
            ):
                await self.discovery.remove_device(old)
        changed = [d for d in devices if d.vid in diff.added or d.vid in diff.updated]
        for device in changed:
            await self.discovery.register_device(device)
            await self.state_updates.publish_device_state(device)
        self._announced = {d.vid: d for d in devices}
        logger.info(
            "%s %d announced, %d removed",
            lp,
            len(changed),
            len(diff.removed),
        )
