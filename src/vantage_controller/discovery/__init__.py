"""Configuration discovery: cache, configuration channel state machine and device list building."""

from .cache import ConfigurationCache
from .device_list import build_devices, classify, parse_vid_range
from .fetcher import ConfigurationFetcher, DiscoveryResult

__all__ = [
    "ConfigurationCache",
    "ConfigurationFetcher",
    "DiscoveryResult",
    "build_devices",
    "classify",
    "parse_vid_range",
]
