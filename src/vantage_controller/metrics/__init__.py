"""Metrics module."""

from .registry import (
    record_command_sent,
    record_connection_state,
    record_decode_error,
    record_devices_discovered,
    record_discovery_page,
    record_discovery_run,
    record_interface_query,
    record_line_decoded,
    record_probe,
    record_reconnect,
    start_metrics_server,
)

__all__ = [
    "record_command_sent",
    "record_connection_state",
    "record_decode_error",
    "record_devices_discovered",
    "record_discovery_page",
    "record_discovery_run",
    "record_interface_query",
    "record_line_decoded",
    "record_probe",
    "record_reconnect",
    "start_metrics_server",
]
