"""Configuration channel (XML) request builders and reply decoding.

The configuration port speaks a request/reply protocol where each reply is
one XML envelope (``<ILogin>``, ``<IConfiguration>``, ``<IIntrospection>``,
optionally wrapped in ``<smarterHome>``) that may arrive split across any
number of TCP reads. ``ReplyBuffer`` accumulates reads and hands back one
complete envelope at a time; ``decode_reply`` turns an envelope into one of
the typed reply variants below.
"""

from __future__ import annotations

import codecs
import re
from dataclasses import dataclass, field
from typing import Any, cast, TypeAlias
from xml.parsers.expat import ExpatError

import xmltodict

from vantage_controller.const import CONFIG_PROBE_TEXT, FILTER_PAGE_SIZE
from vantage_controller.exceptions import ConfigReplyError
from vantage_controller.logging_abstraction import get_logger
from vantage_controller.metrics import record_decode_error

__all__ = [
    "ConfigReply",
    "GetFilterResultsReply",
    "IntrospectionReply",
    "LoginReply",
    "OpenFilterReply",
    "ReplyBuffer",
    "build_configuration_document",
    "decode_reply",
    "get_filter_results_request",
    "introspection_request",
    "login_request",
    "open_filter_request",
    "parse_configuration_document",
]

logger = get_logger(__name__)

_ENVELOPE_START = re.compile(r"<(smarterHome|ILogin|IConfiguration|IIntrospection)[\s/>]")
_MASTER = re.compile(r"<\?Master\s+(\d+)\s*\?>")
_MASTER_PREFIX = re.compile(r"<\?Master\s+\d+\s*\?>\s*$")
_BOM = "\ufeff"
# room for one GetFilterResults page of FILTER_PAGE_SIZE objects
MAX_REPLY_SIZE = FILTER_PAGE_SIZE * 8 * 1024


# Requests


def _unparse(tree: dict[str, Any]) -> str:
    return xmltodict.unparse(tree, full_document=False)


def login_request(username: str, password: str) -> str:
    return _unparse({"ILogin": {"Login": {"call": {"User": username, "Password": password}}}}) + "\n"


def introspection_request() -> str:
    return CONFIG_PROBE_TEXT


def open_filter_request(controller: int, object_type: str) -> str:
    body = _unparse({"IConfiguration": {"OpenFilter": {"call": {"Objects": {"ObjectType": object_type}}}}})
    return f"<?Master {controller}?>{body}\n"


def get_filter_results_request(handle: str, count: int = FILTER_PAGE_SIZE) -> str:
    call = {"Count": str(count), "WholeObject": "true", "hFilter": handle}
    return _unparse({"IConfiguration": {"GetFilterResults": {"call": call}}}) + "\n"


# Replies


@dataclass(frozen=True, slots=True)
class LoginReply:
    success: bool


@dataclass(frozen=True, slots=True)
class OpenFilterReply:
    """Filter handle plus the controller index echoed in ``<?Master N?>``, if any."""

    handle: str
    controller: int | None


@dataclass(frozen=True, slots=True)
class GetFilterResultsReply:
    """Raw result objects, each a single-key ``{element_name: element}`` mapping."""

    objects: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class IntrospectionReply:
    interfaces: dict[str, int] = field(default_factory=dict)


ConfigReply: TypeAlias = LoginReply | OpenFilterReply | GetFilterResultsReply | IntrospectionReply


def _as_list(node: Any) -> list[Any]:
    if node is None:
        return []
    if isinstance(node, list):
        return cast("list[Any]", node)
    return [node]


def _child(node: Any, key: str) -> Any:
    if isinstance(node, dict):
        return cast("dict[str, Any]", node).get(key)
    return None


def _text(node: Any) -> str | None:
    """Text content of a parsed element, whether or not it carried attributes."""
    if node is None:
        return None
    if isinstance(node, dict):
        text = cast("dict[str, Any]", node).get("#text")
        return None if text is None else str(text)
    return str(node)


def _decode_introspection(node: Any) -> IntrospectionReply:
    result = _child(_child(node, "GetInterfaces"), "return")
    if result is None:
        raise ConfigReplyError("missing GetInterfaces/return", "IIntrospection")
    interfaces: dict[str, int] = {}
    for entry in _as_list(_child(result, "Interface")):
        name = _text(_child(entry, "Name"))
        iid = _text(_child(entry, "IID"))
        if name and iid and iid.strip().isdigit():
            interfaces[name] = int(iid)
    return IntrospectionReply(interfaces)


def _decode_configuration(node: Any, document: str) -> ConfigReply:
    if not isinstance(node, dict):
        raise ConfigReplyError("empty envelope", "IConfiguration")
    if "OpenFilter" in node:
        handle = _text(_child(node["OpenFilter"], "return"))
        if not handle or not handle.strip():
            raise ConfigReplyError("OpenFilter without a handle", "IConfiguration")
        master = _MASTER.search(document)
        return OpenFilterReply(handle.strip(), int(master.group(1)) if master else None)
    if "GetFilterResults" in node:
        objects = _child(_child(node["GetFilterResults"], "return"), "Object")
        return GetFilterResultsReply([obj for obj in _as_list(objects) if isinstance(obj, dict)])
    raise ConfigReplyError(f"unknown call {sorted(node)}", "IConfiguration")


def decode_reply(document: str) -> ConfigReply:
    """Decode one complete reply envelope.

    Raises:
        ConfigReplyError: the envelope is not well-formed or has an unknown shape

    """
    try:
        tree = xmltodict.parse(document.strip())
    except ExpatError as e:
        raise ConfigReplyError(f"malformed XML: {e}") from e

    if "smarterHome" in tree:
        tree = tree["smarterHome"]
        if not isinstance(tree, dict):
            raise ConfigReplyError("empty envelope", "smarterHome")
    if "IIntrospection" in tree:
        return _decode_introspection(tree["IIntrospection"])
    if "ILogin" in tree:
        result = _text(_child(_child(tree["ILogin"], "Login"), "return"))
        return LoginReply(success=result == "true")
    if "IConfiguration" in tree:
        return _decode_configuration(tree["IConfiguration"], document)
    raise ConfigReplyError(f"unknown envelope {sorted(tree)}")


class ReplyBuffer:
    """Accumulates configuration channel reads until a whole envelope is present."""

    def __init__(self, max_size: int = MAX_REPLY_SIZE) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.max_size = max_size

    def feed(self, data: bytes) -> None:
        self._buffer += self._decoder.decode(data).replace(_BOM, "")
        if len(self._buffer) > self.max_size and self._bounds() is None:
            logger.warning(
                "reply_buffer: discarding %d characters without a complete reply",
                len(self._buffer),
                extra={"max_size": self.max_size},
            )
            record_decode_error("reply_too_long")
            self._buffer = ""

    def _bounds(self) -> tuple[int, int] | None:
        start = _ENVELOPE_START.search(self._buffer)
        if start is None:
            return None
        close = f"</{start.group(1)}>"
        end = self._buffer.find(close, start.end())
        if end < 0:
            return None
        # anything before the envelope other than its Master prefix is noise
        master = _MASTER_PREFIX.search(self._buffer, 0, start.start())
        return (master.start() if master else start.start()), end + len(close)

    def next_document(self) -> str | None:
        """Pop the first complete envelope, including any ``<?Master N?>`` prefix."""
        bounds = self._bounds()
        if bounds is None:
            return None
        begin, end = bounds
        document, self._buffer = self._buffer[begin:end], self._buffer[end:]
        return document

    def clear(self) -> None:
        self._buffer = ""

    def __len__(self) -> int:
        return len(self._buffer)


# Synthetic configuration document


def build_configuration_document(objects: list[dict[str, Any]]) -> str:
    """Wrap accumulated objects in a ``<Project><Objects>`` document."""
    return xmltodict.unparse({"Project": {"Objects": {"Object": objects}}}, pretty=True)


def _flatten(element_name: str, element: Any) -> dict[str, Any]:
    flat: dict[str, Any] = {}
    if isinstance(element, dict):
        for key, value in cast("dict[str, Any]", element).items():
            if key == "#text":
                continue
            flat[key.lstrip("@")] = value
    flat.setdefault("ObjectType", element_name)
    return flat


def parse_configuration_document(document: str) -> list[dict[str, Any]]:
    """Flatten a configuration document into one dict per object.

    Attributes and child elements are merged under their plain names, and
    ``ObjectType`` falls back to the element name when it was not tagged.

    Raises:
        ConfigReplyError: the document is not well-formed

    """
    try:
        tree = xmltodict.parse(document.replace(_BOM, "").strip())
    except ExpatError as e:
        raise ConfigReplyError(f"malformed XML: {e}", "Project") from e
    project = tree.get("Project") or {}
    objects_node = project.get("Objects") if isinstance(project, dict) else None
    entries = objects_node.get("Object") if isinstance(objects_node, dict) else None
    flattened: list[dict[str, Any]] = []
    for entry in _as_list(entries):
        if not isinstance(entry, dict):
            continue
        for element_name, element in cast("dict[str, Any]", entry).items():
            flattened.append(_flatten(element_name, element))
    return flattened
