"""Unit tests for the controller bridge: start-up, discovery, priming and events."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from pathlib import Path

import pytest
import pytest_asyncio
from conftest import FakeController, ScriptedVantage

from vantage_controller.bridge import VantageBridge
from vantage_controller.config import VantageConfig
from vantage_controller.const import COMMAND_PORT, CONFIG_PORT
from vantage_controller.devices.models import DeviceKind, VantageDevice
from vantage_controller.devices.registry import RegistryDiff
from vantage_controller.protocol.config_messages import parse_configuration_document
from vantage_controller.transport.probe import ChannelChoice

OBJECTS = {
    (1, "Area"): ['<Area VID="1"><Name>Kitchen</Name></Area>'],
    (1, "Load"): [
        '<Load VID="12"><Name>Pendant</Name><Area>1</Area><LoadType>Incandescent</LoadType></Load>',
        '<Load VID="13"><Name>Fan</Name><Area>1</Area><LoadType>Motor</LoadType></Load>',
    ],
    (1, "Thermostat"): ['<Thermostat VID="40"><Name>Hall</Name></Thermostat>'],
}


def command_responder(data: bytes) -> list[bytes]:
    replies: list[bytes] = []
    for line in data.decode().splitlines():
        tokens = line.split()
        if line == "STATUS ALL":
            replies.append(b"R:STATUS ALL\n")
        elif tokens and tokens[0] == "GETLOAD":
            replies.append(f"R:GETLOAD {tokens[1]} 55\n".encode())
        elif "Object.IsInterfaceSupported" in line:
            replies.append(f"R:INVOKE {tokens[1]} 1 Object.IsInterfaceSupported {tokens[3]}\n".encode())
    return replies


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def vantage(fake_controller: FakeController) -> ScriptedVantage:
    scripted = ScriptedVantage({key: list(value) for key, value in OBJECTS.items()})
    fake_controller.responders[CONFIG_PORT] = scripted
    fake_controller.responders[COMMAND_PORT] = command_responder
    return scripted


@pytest.fixture
def config(tmp_path: Path) -> VantageConfig:
    return VantageConfig(
        host="ctrl",
        cache_path=str(tmp_path / "vantage.dc"),
        legacy_cache_paths=(),
        probe_timeout=0.5,
        reconnect_delay=0.01,
        discovery_quiet_period=0.2,
        discovery_deadline=2.0,
    )


@pytest_asyncio.fixture
async def make_bridge(
    fake_controller: FakeController,
    vantage: ScriptedVantage,
) -> AsyncIterator[Callable[[VantageConfig], VantageBridge]]:
    bridges: list[VantageBridge] = []

    def _make(config: VantageConfig) -> VantageBridge:
        bridge = VantageBridge(config, opener=fake_controller.opener)
        bridges.append(bridge)
        return bridge

    yield _make
    for bridge in bridges:
        await bridge.stop()


class TestStart:
    """Transport selection, discovery and priming."""

    @pytest.mark.asyncio
    async def test_devices_discovered_and_primed(
        self,
        config: VantageConfig,
        fake_controller: FakeController,
        make_bridge: Callable[[VantageConfig], VantageBridge],
    ) -> None:
        bridge = make_bridge(config)
        published: list[tuple[list[int], list[int]]] = []
        bridge.add_device_list_listener(lambda devices, diff: published.append(([d.vid for d in devices], diff.added)))

        await bridge.start()

        assert bridge.transports is not None
        assert bridge.transports.command == ChannelChoice(COMMAND_PORT, False)
        assert [(d.vid, d.kind) for d in bridge.registry] == [
            (12, DeviceKind.DIMMER),
            (13, DeviceKind.RELAY),
            (40, DeviceKind.THERMOSTAT),
        ]
        assert published == [([12, 13, 40], [12, 13, 40])]
        assert bridge.interfaces == {"Load": 11}
        assert await bridge.wait_ready(0.1)

        session_writer = fake_controller.writers(COMMAND_PORT)[-1]
        assert "GETLOAD 12\n" in session_writer.text
        assert "GETTHERMOP 40\n" in session_writer.text
        pendant = bridge.registry.get(12)
        assert pendant is not None
        await wait_until(lambda: pendant.load.brightness == 55)
        assert pendant.load.power is True

    @pytest.mark.asyncio
    async def test_second_start_uses_cache(
        self,
        config: VantageConfig,
        fake_controller: FakeController,
        make_bridge: Callable[[VantageConfig], VantageBridge],
    ) -> None:
        first = make_bridge(config)
        await first.start()
        await first.stop()
        before = len(fake_controller.writers(CONFIG_PORT))

        second = make_bridge(config)
        await second.start()

        # only the transport probe touches the configuration port
        assert len(fake_controller.writers(CONFIG_PORT)) == before + 1
        assert len(second.registry) == 3

    @pytest.mark.asyncio
    async def test_unreadable_cache_is_replaced(
        self,
        config: VantageConfig,
        make_bridge: Callable[[VantageConfig], VantageBridge],
    ) -> None:
        cache_file = Path(config.cache_path)
        cache_file.write_text("<Project><Objects>", encoding="utf-8")
        bridge = make_bridge(config)

        await bridge.start()

        assert len(bridge.registry) == 3
        assert len(parse_configuration_document(cache_file.read_text(encoding="utf-8"))) == 4

    @pytest.mark.asyncio
    async def test_discover_before_start(
        self,
        config: VantageConfig,
        make_bridge: Callable[[VantageConfig], VantageBridge],
    ) -> None:
        bridge = make_bridge(config)
        assert await bridge.discover() is None
        assert await bridge.wait_ready(0.01) is False


class TestRediscover:
    """Device set refreshes after start-up."""

    @pytest.mark.asyncio
    async def test_new_device_reported_in_diff(
        self,
        config: VantageConfig,
        vantage: ScriptedVantage,
        make_bridge: Callable[[VantageConfig], VantageBridge],
    ) -> None:
        bridge = make_bridge(config)
        await bridge.start()
        diffs: list[RegistryDiff] = []

        async def on_list(_devices: list[VantageDevice], diff: RegistryDiff) -> None:
            diffs.append(diff)

        bridge.add_device_list_listener(on_list)
        vantage.objects[(1, "QISBlind")] = ['<QISBlind VID="4"><Name>Shade</Name><Area>1</Area></QISBlind>']

        diff = await bridge.rediscover()

        assert diff is not None
        assert diff.added == [4]
        assert diffs == [diff]
        blind = bridge.registry.get(4)
        assert blind is not None
        assert blind.name == "Kitchen Shade"

    @pytest.mark.asyncio
    async def test_failed_discovery_keeps_devices(
        self,
        config: VantageConfig,
        fake_controller: FakeController,
        make_bridge: Callable[[VantageConfig], VantageBridge],
    ) -> None:
        bridge = make_bridge(config)
        await bridge.start()
        fake_controller.refused.add(CONFIG_PORT)

        assert await bridge.rediscover() is None
        assert len(bridge.registry) == 3

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_stop_others(
        self,
        config: VantageConfig,
        make_bridge: Callable[[VantageConfig], VantageBridge],
    ) -> None:
        bridge = make_bridge(config)
        seen: list[int] = []

        def broken(_devices: list[VantageDevice], _diff: RegistryDiff) -> None:
            raise RuntimeError("boom")

        bridge.add_device_list_listener(broken)
        remove = bridge.add_device_list_listener(lambda devices, _diff: seen.append(len(devices)))
        await bridge.start()
        remove()
        await bridge.rediscover()
        assert seen == [3]


class TestEvents:
    """Events arriving on the command channel."""

    @pytest.mark.asyncio
    async def test_temperature_tick_requeries_thermostats(
        self,
        config: VantageConfig,
        fake_controller: FakeController,
        make_bridge: Callable[[VantageConfig], VantageBridge],
    ) -> None:
        bridge = make_bridge(config)
        await bridge.start()
        session_writer = fake_controller.writers(COMMAND_PORT)[-1]
        await wait_until(lambda: session_writer.text.count("GETTHERMOP 40\n") == 1)

        session_writer.feed(b"S:TEMP 40 21.5\n")

        await wait_until(lambda: session_writer.text.count("GETTHERMOP 40\n") == 2)

    @pytest.mark.asyncio
    async def test_interface_support(
        self,
        config: VantageConfig,
        make_bridge: Callable[[VantageConfig], VantageBridge],
    ) -> None:
        bridge = make_bridge(config)
        await bridge.start()
        assert await bridge.is_interface_supported(12, "Load") is True
        assert await bridge.is_interface_supported(12, "Keypad") is False
