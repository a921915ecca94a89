"""Prometheus metrics for the controller channels and discovery."""

import threading
from typing import Final

from prometheus_client import (  # type: ignore[import-untyped]
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

# Command channel
vantage_lines_decoded_total: Final = Counter(  # type: ignore[assignment]
    "vantage_lines_decoded_total",
    "Status events decoded from the command channel",
    ["event"],
)

vantage_decode_errors_total: Final = Counter(  # type: ignore[assignment]
    "vantage_decode_errors_total",
    "Command channel lines that failed to decode",
    ["reason"],
)

vantage_commands_sent_total: Final = Counter(  # type: ignore[assignment]
    "vantage_commands_sent_total",
    "Lines written to the command channel",
    ["command", "outcome"],
)

vantage_connection_state: Final = Gauge(  # type: ignore[assignment]
    "vantage_connection_state",
    "Current connection state per channel (1 = active state)",
    ["channel", "state"],
)

vantage_reconnects_total: Final = Counter(  # type: ignore[assignment]
    "vantage_reconnects_total",
    "Command channel reconnect attempts",
    ["reason"],
)

vantage_interface_queries_total: Final = Counter(  # type: ignore[assignment]
    "vantage_interface_queries_total",
    "Interface support queries",
    ["outcome"],
)

# Transport selection
vantage_probe_total: Final = Counter(  # type: ignore[assignment]
    "vantage_probe_total",
    "Transport probes per port",
    ["port", "outcome"],
)

# Discovery
vantage_discovery_pages_total: Final = Counter(  # type: ignore[assignment]
    "vantage_discovery_pages_total",
    "GetFilterResults pages received",
    ["object_type"],
)

vantage_discovery_runs_total: Final = Counter(  # type: ignore[assignment]
    "vantage_discovery_runs_total",
    "Discovery runs by outcome",
    ["outcome"],
)

vantage_discovery_duration_seconds: Final = Histogram(  # type: ignore[assignment]
    "vantage_discovery_duration_seconds",
    "Discovery duration in seconds",
    buckets=(0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0),
)

vantage_devices_discovered: Final = Gauge(  # type: ignore[assignment]
    "vantage_devices_discovered",
    "Devices in the current device list",
)

CONNECTION_STATES: Final = ("disconnected", "connecting", "streaming", "reconnecting")

_server_state = {"started": False}
_server_lock = threading.Lock()


def start_metrics_server(port: int = 9400) -> None:
    """Start Prometheus HTTP metrics server (idempotent)."""
    with _server_lock:
        if not _server_state["started"]:
            start_http_server(port)  # type: ignore[no-untyped-call]
            _server_state["started"] = True


def record_line_decoded(event: str) -> None:
    vantage_lines_decoded_total.labels(event=event).inc()  # type: ignore[no-untyped-call]


def record_decode_error(reason: str) -> None:
    vantage_decode_errors_total.labels(reason=reason).inc()  # type: ignore[no-untyped-call]


def record_command_sent(command: str, outcome: str) -> None:
    vantage_commands_sent_total.labels(command=command, outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_connection_state(channel: str, state: str) -> None:
    """Set the gauge to 1 for *state* and 0 for every other state of *channel*."""
    for s in CONNECTION_STATES:
        vantage_connection_state.labels(channel=channel, state=s).set(1 if s == state else 0)  # type: ignore[no-untyped-call]


def record_reconnect(reason: str) -> None:
    vantage_reconnects_total.labels(reason=reason).inc()  # type: ignore[no-untyped-call]


def record_interface_query(outcome: str) -> None:
    vantage_interface_queries_total.labels(outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_probe(port: int, outcome: str) -> None:
    vantage_probe_total.labels(port=str(port), outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_discovery_page(object_type: str) -> None:
    vantage_discovery_pages_total.labels(object_type=object_type).inc()  # type: ignore[no-untyped-call]


def record_discovery_run(outcome: str, duration_seconds: float | None = None) -> None:
    vantage_discovery_runs_total.labels(outcome=outcome).inc()  # type: ignore[no-untyped-call]
    if duration_seconds is not None:
        vantage_discovery_duration_seconds.observe(duration_seconds)  # type: ignore[no-untyped-call]


def record_devices_discovered(count: int) -> None:
    vantage_devices_discovered.set(count)  # type: ignore[no-untyped-call]
