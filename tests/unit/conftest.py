"""Shared fixtures for unit tests.

``FakeController`` stands in for the network: its ``opener`` matches the
``StreamOpener`` signature and hands out real ``asyncio.StreamReader``
objects whose data is scripted by a responder callback reacting to writes.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Callable
from typing import Any, TypeAlias

import pytest

from vantage_controller.devices.models import DeviceKind, VantageDevice

Responder: TypeAlias = Callable[[bytes], list[bytes]]


class ScriptedWriter:
    """Minimal ``StreamWriter`` double that records writes and scripts replies."""

    def __init__(self, reader: asyncio.StreamReader, responder: Responder | None = None) -> None:
        self.reader = reader
        self.responder = responder
        self.written = bytearray()
        self.closed = False
        self._eof = False

    def write(self, data: bytes) -> None:
        self.written += data
        if self.responder is not None:
            for reply in self.responder(bytes(data)):
                # an empty chunk closes the stream
                if reply:
                    self.feed(reply)
                else:
                    self.feed_eof()

    def feed(self, data: bytes) -> None:
        if not self._eof:
            self.reader.feed_data(data)

    def feed_eof(self) -> None:
        if not self._eof:
            self._eof = True
            self.reader.feed_eof()

    async def drain(self) -> None:
        return None

    def close(self) -> None:
        self.closed = True
        self.feed_eof()

    async def wait_closed(self) -> None:
        return None

    def is_closing(self) -> bool:
        return self.closed

    @property
    def text(self) -> str:
        return self.written.decode()


class FakeController:
    """Scriptable controller reachable through ``opener``.

    ``responders`` maps a port to a callable producing reply chunks for each
    write. Ports listed in ``refused`` raise ``ConnectionRefusedError``.
    """

    def __init__(self) -> None:
        self.responders: dict[int, Responder] = {}
        self.initial: dict[int, list[bytes]] = {}
        self.refused: set[int] = set()
        self.connections: list[tuple[int, bool, ScriptedWriter]] = []

    async def opener(self, host: str, port: int, use_tls: bool) -> tuple[asyncio.StreamReader, Any]:
        if port in self.refused:
            raise ConnectionRefusedError(f"{host}:{port} refused")
        reader = asyncio.StreamReader()
        writer = ScriptedWriter(reader, self.responders.get(port))
        for chunk in self.initial.get(port, []):
            writer.feed(chunk)
        self.connections.append((port, use_tls, writer))
        return reader, writer

    def writers(self, port: int) -> list[ScriptedWriter]:
        return [writer for p, _tls, writer in self.connections if p == port]


@pytest.fixture
def fake_controller() -> FakeController:
    return FakeController()


class RecordingWriter:
    """``LineWriter`` that keeps every line it was asked to send."""

    def __init__(self, accept: bool = True) -> None:
        self.lines: list[str] = []
        self.accept = accept

    async def send_lines(self, lines: list[str]) -> bool:
        self.lines.extend(lines)
        return self.accept


@pytest.fixture
def recording_writer() -> RecordingWriter:
    return RecordingWriter()


def make_device(vid: int, kind: DeviceKind, name: str | None = None, **kwargs: Any) -> VantageDevice:
    object_types = {
        DeviceKind.RELAY: "Load",
        DeviceKind.DIMMER: "Load",
        DeviceKind.RGB: "Vantage.DDGColorLoad",
        DeviceKind.BLIND: "QISBlind",
        DeviceKind.THERMOSTAT: "Thermostat",
    }
    return VantageDevice(
        vid=vid,
        name=name or f"Device {vid}",
        kind=kind,
        object_type=kwargs.pop("object_type", object_types[kind]),
        **kwargs,
    )


@pytest.fixture
def device_factory() -> Callable[..., VantageDevice]:
    return make_device


def project_document(objects: list[str]) -> str:
    """Wrap raw ``<Object>`` bodies in a configuration document."""
    body = "".join(f"<Object>{obj}</Object>" for obj in objects)
    return f"<Project><Objects>{body}</Objects></Project>"


_MASTER = re.compile(r"<\?Master (\d+)\?>")
_OBJECT_TYPE = re.compile(r"<ObjectType>(.*?)</ObjectType>")
_HANDLE = re.compile(r"<hFilter>(.*?)</hFilter>")

INTROSPECTION_REPLY = (
    "<IIntrospection><GetInterfaces><return>"
    "<Interface><Name>Load</Name><IID>11</IID></Interface>"
    "</return></GetInterfaces></IIntrospection>"
)


class ScriptedVantage:
    """Configuration channel responder.

    Hands out one OpenFilter handle per request and echoes the requested
    ``<?Master N?>`` index while that controller exists. Objects are served
    from ``objects`` keyed by ``(controller, object_type)``.
    """

    def __init__(self, objects: dict[tuple[int, str], list[str]], controllers: tuple[int, ...] = (1,)) -> None:
        self.objects = objects
        self.controllers = controllers
        self.handles: dict[str, tuple[int, str]] = {}
        self.answer_introspection = True
        self.close_at_type: str | None = None
        self.stall_at_type: str | None = None
        self.split_replies = False
        self.requests: list[str] = []

    def __call__(self, data: bytes) -> list[bytes]:
        request = data.decode()
        self.requests.append(request)
        reply = self._reply(request)
        if reply is None:
            return []
        if reply == "":
            return [b""]
        encoded = reply.encode()
        if self.split_replies:
            return [encoded[:7], encoded[7:20], encoded[20:]]
        return [encoded]

    def _reply(self, request: str) -> str | None:
        if "<IIntrospection>" in request:
            return INTROSPECTION_REPLY if self.answer_introspection else None
        if "<ILogin>" in request:
            return "<ILogin><Login><return>true</return></Login></ILogin>"
        if "<OpenFilter>" in request:
            master_match = _MASTER.search(request)
            type_match = _OBJECT_TYPE.search(request)
            assert master_match is not None and type_match is not None
            controller, object_type = int(master_match.group(1)), type_match.group(1)
            if object_type == self.stall_at_type:
                return None
            if object_type == self.close_at_type:
                return ""
            # unknown indexes echo the first controller
            echo = controller if controller in self.controllers else self.controllers[0]
            handle = str(len(self.handles) + 100)
            self.handles[handle] = (controller, object_type)
            return f"<?Master {echo}?><IConfiguration><OpenFilter><return>{handle}</return></OpenFilter></IConfiguration>"
        if "<GetFilterResults>" in request:
            handle_match = _HANDLE.search(request)
            assert handle_match is not None
            controller, object_type = self.handles[handle_match.group(1)]
            body = "".join(f"<Object>{obj}</Object>" for obj in self.objects.get((controller, object_type), []))
            return f"<IConfiguration><GetFilterResults><return>{body}</return></GetFilterResults></IConfiguration>"
        return None
