"""Home Assistant MQTT bridge."""

from .client import MQTTClient
from .command_routing import CommandRouter
from .discovery import DiscoveryHelper, build_entity_config, slugify
from .state_updates import StateUpdateHelper, build_device_state

__all__ = [
    "CommandRouter",
    "DiscoveryHelper",
    "MQTTClient",
    "StateUpdateHelper",
    "build_device_state",
    "build_entity_config",
    "slugify",
]
