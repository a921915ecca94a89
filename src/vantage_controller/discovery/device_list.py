"""Turns a configuration document into the ordered device list."""

from __future__ import annotations

from collections.abc import Collection
from typing import Any

from vantage_controller.const import (
    BLIND_TYPES,
    DEFAULT_VID_RANGE,
    LOAD_TYPES,
    MAX_DEVICES,
    NON_DIMMABLE_LOAD_TYPES,
    OBJECT_TYPES,
    THERMOSTAT_TYPES,
)
from vantage_controller.devices.models import DeviceKind, VantageDevice
from vantage_controller.logging_abstraction import get_logger
from vantage_controller.protocol.config_messages import parse_configuration_document

__all__ = [
    "build_devices",
    "classify",
    "parse_vid_range",
]

logger = get_logger(__name__)

_RELAY_OBJECT_TYPES = (
    "Jandy.Aqualink_RS_Pump_CHILD",
    "Jandy.Aqualink_RS_Auxiliary_CHILD",
    "Legrand.MH_Relay_CHILD",
)


def _vid(raw: Any) -> int | None:
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        return None


def _string(raw: Any) -> str:
    if isinstance(raw, dict):
        raw = raw.get("#text")
    return raw if isinstance(raw, str) else ""


def parse_vid_range(raw: str | None) -> tuple[int, int]:
    """Parse ``"lo,hi"``; anything else yields the default full range."""
    if not raw:
        return DEFAULT_VID_RANGE
    parts = raw.replace(" ", "").split(",")
    if len(parts) != 2:
        logger.warning("range: expected 'lo,hi', got %r, using the full range", raw)
        return DEFAULT_VID_RANGE
    try:
        return int(parts[0]), int(parts[1])
    except ValueError:
        logger.warning("range: non-numeric bounds in %r, using the full range", raw)
        return DEFAULT_VID_RANGE


def classify(obj: dict[str, Any]) -> DeviceKind | None:
    """Device kind of a flattened configuration object, or None when unsupported."""
    object_type = obj.get("ObjectType")
    load_type = _string(obj.get("LoadType"))
    if obj.get("DeviceCategory") == "HVAC" or object_type in THERMOSTAT_TYPES:
        return DeviceKind.THERMOSTAT
    if object_type in LOAD_TYPES:
        if object_type in _RELAY_OBJECT_TYPES or "Relay" in load_type or load_type in NON_DIMMABLE_LOAD_TYPES:
            return DeviceKind.RELAY
        if object_type == "Vantage.DDGColorLoad":
            return DeviceKind.RGB
        return DeviceKind.DIMMER
    if object_type in BLIND_TYPES:
        return DeviceKind.BLIND
    return None


def build_devices(
    document: str,
    omit: Collection[int] = (),
    vid_range: tuple[int, int] = DEFAULT_VID_RANGE,
    max_devices: int = MAX_DEVICES,
) -> list[VantageDevice]:
    """Build the device list from a ``<Project><Objects>`` document.

    Objects are kept in document order. Display names are ``"<area> <name>"``
    with the first ``-`` removed, and get a ``" VID<vid>"`` suffix when they
    collide (case-insensitively) with an earlier name. Loads driven by a
    ``RelayBlind`` are dropped, and the list is capped at *max_devices*.
    """
    lp = "device_list:"
    objects = parse_configuration_document(document)

    areas: dict[int, str] = {}
    for obj in objects:
        if obj.get("ObjectType") == "Area":
            vid = _vid(obj.get("VID"))
            name = _string(obj.get("Name"))
            if vid is not None and name:
                areas[vid] = name

    lo, hi = vid_range
    omitted = set(omit)
    names: set[str] = set()
    seen: set[int] = set()
    blind_loads: set[int] = set()
    devices: list[VantageDevice] = []

    for obj in objects:
        object_type = obj.get("ObjectType")
        if object_type not in OBJECT_TYPES or object_type == "Area":
            continue
        vid = _vid(obj.get("VID"))
        if vid is None:
            logger.warning("%s skipping %s with non-numeric VID %r", lp, object_type, obj.get("VID"))
            continue
        if vid in omitted or not lo <= vid <= hi:
            continue
        kind = classify(obj)
        if kind is None:
            continue
        if vid in seen:
            logger.debug("%s duplicate VID %d (%s) ignored", lp, vid, object_type)
            continue
        seen.add(vid)

        name = _string(obj.get("DName")) or _string(obj.get("Name"))
        area_vid = _vid(obj.get("Area"))
        area = areas.get(area_vid) if area_vid is not None else None
        if area:
            name = f"{area} {name}"
        name = name.replace("-", "", 1)
        if not name or name.lower() in names:
            name = f"{name} VID{vid}"
        names.add(name.lower())

        if object_type == "RelayBlind":
            for key in ("OpenLoad", "CloseLoad"):
                load_vid = _vid(obj.get(key))
                if load_vid is not None:
                    blind_loads.add(load_vid)

        logger.info("%s New %s added (VID=%d, Name=%s)", lp, kind.value, vid, name)
        devices.append(
            VantageDevice(
                vid=vid,
                name=name,
                kind=kind,
                object_type=str(object_type),
                load_type=_string(obj.get("LoadType")) or None,
                area=area,
            )
        )

    if blind_loads:
        devices = [d for d in devices if d.kind is DeviceKind.BLIND or d.vid not in blind_loads]

    if len(devices) > max_devices:
        logger.warning(
            "%s %d devices exceeds the limit of %d, only the first %d are loaded; omit some loads",
            lp,
            len(devices),
            max_devices,
            max_devices,
        )
        devices = devices[:max_devices]
    logger.info("%s found %d devices", lp, len(devices))
    return devices
