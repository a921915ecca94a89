import os

from vantage_controller import __version__

__all__ = [
    "BLIND_TYPES",
    "CACHE_FILE_NAME",
    "COMMAND_PORT",
    "COMMAND_PORT_TLS",
    "CONFIG_PORT",
    "CONFIG_PORT_TLS",
    "CONFIG_PROBE_TEXT",
    "COMMAND_PROBE_TEXT",
    "DEFAULT_VID_RANGE",
    "DISCOVERY_DEADLINE",
    "DISCOVERY_QUIET_PERIOD",
    "FILTER_PAGE_SIZE",
    "INTERFACE_QUERY_TIMEOUT",
    "LOAD_TYPES",
    "LOGGING_CATEGORIES",
    "MAX_COOLING_SETPOINT",
    "MAX_DEVICES",
    "MAX_HEATING_SETPOINT",
    "MAX_INDOOR_TEMPERATURE",
    "MAX_TARGET_TEMPERATURE",
    "NON_DIMMABLE_LOAD_TYPES",
    "OBJECT_TYPES",
    "ORIGIN_STRUCT",
    "PERSISTENT_BASE_DIR",
    "PROBE_TIMEOUT",
    "RECONNECT_DELAY",
    "SRC_REPO_URL",
    "THERMOSTAT_TYPES",
    "VANTAGE_CACHE_PATH",
    "VANTAGE_DEBUG",
    "VANTAGE_FETCH_INTERFACES",
    "VANTAGE_FORCE_TLS",
    "VANTAGE_HASS_BIRTH_MSG",
    "VANTAGE_HASS_TOPIC",
    "VANTAGE_HASS_WILL_MSG",
    "VANTAGE_HOST",
    "VANTAGE_LOG_FORMAT",
    "VANTAGE_LOG_HUMAN_OUTPUT",
    "VANTAGE_LOG_JSON_FILE",
    "VANTAGE_MANUFACTURER",
    "VANTAGE_MQTT_CONN_DELAY",
    "VANTAGE_MQTT_HOST",
    "VANTAGE_MQTT_PASS",
    "VANTAGE_MQTT_PORT",
    "VANTAGE_MQTT_USER",
    "VANTAGE_OMIT",
    "VANTAGE_PASSWORD",
    "VANTAGE_PERF_THRESHOLD_MS",
    "VANTAGE_PERF_TRACKING",
    "VANTAGE_RANGE",
    "VANTAGE_TOPIC",
    "VANTAGE_USE_CACHE",
    "VANTAGE_USERNAME",
    "VANTAGE_VERSION",
    "YES_ANSWER",
]

YES_ANSWER = ("true", "1", "yes", "y", "t", 1, "on", "o")
VANTAGE_VERSION: str = __version__
SRC_REPO_URL: str = "https://github.com/jslamartina/hass-addons"
VANTAGE_MANUFACTURER = "Vantage"

# Controller ports: plaintext / TLS for each logical channel
COMMAND_PORT = 3001
COMMAND_PORT_TLS = 3010
CONFIG_PORT = 2001
CONFIG_PORT_TLS = 2010

COMMAND_PROBE_TEXT = "STATUS ALL\n"
CONFIG_PROBE_TEXT = "<IIntrospection><GetInterfaces><call></call></GetInterfaces></IIntrospection>\n"

LOGGING_CATEGORIES: tuple[str, ...] = ("AUTOMATION", "EVENT", "STATUS", "STATUSEX", "SYSTEM")

THERMOSTAT_TYPES: tuple[str, ...] = (
    "Thermostat",
    "Vantage.HVAC-Interface_Point_Zone_CHILD",
    "Vantage.VirtualThermostat_PORT",
    "Tekmar.tN4_Gateway_482_Zone_-_Slab_Only_CHILD",
    "Tekmar.tN4_Gateway_482_Zone_CHILD",
    "Legrand.MH_HVAC_Control_CHILD",
)
BLIND_TYPES: tuple[str, ...] = (
    "Blind",
    "RelayBlind",
    "QISBlind",
    "Lutron.Shade_x2F_Blind_Child_CHILD",
    "QubeBlind",
    "ESI.RQShadeChannel_CHILD",
    "QMotion.QIS_Channel_CHILD",
    "Somfy.UAI-RS485-Motor_CHILD",
)
LOAD_TYPES: tuple[str, ...] = (
    "Load",
    "Vantage.DDGColorLoad",
    "Jandy.Aqualink_RS_Pump_CHILD",
    "Jandy.Aqualink_RS_Auxiliary_CHILD",
    "Legrand.MH_Relay_CHILD",
    "Legrand.MH_Dimmer_CHILD",
)
# enumeration order used by discovery; areas first so names can be resolved
OBJECT_TYPES: tuple[str, ...] = (
    "Area",
    "Load",
    "Vantage.DDGColorLoad",
    "Legrand.MH_Relay_CHILD",
    "Legrand.MH_Dimmer_CHILD",
    "Jandy.Aqualink_RS_Pump_CHILD",
    "Jandy.Aqualink_RS_Auxiliary_CHILD",
    *THERMOSTAT_TYPES,
    *BLIND_TYPES,
)
NON_DIMMABLE_LOAD_TYPES: tuple[str, ...] = (
    "Fluor. Mag non-Dim",
    "LED non-Dim",
    "Fluor. Electronic non-Dim",
    "Motor",
)

FILTER_PAGE_SIZE = 1000
# device ceiling imposed by the host ecosystem
MAX_DEVICES = 149
DEFAULT_VID_RANGE: tuple[int, int] = (0, 999999999)

MAX_TARGET_TEMPERATURE = 38.0
MAX_HEATING_SETPOINT = 30.0
MAX_COOLING_SETPOINT = 35.0
MAX_INDOOR_TEMPERATURE = 100.0


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


PROBE_TIMEOUT: float = _float_env("VANTAGE_PROBE_TIMEOUT", 5.0)
RECONNECT_DELAY: float = _float_env("VANTAGE_RECONNECT_DELAY", 5.0)
DISCOVERY_QUIET_PERIOD: float = _float_env("VANTAGE_DISCOVERY_QUIET_PERIOD", 5.0)
DISCOVERY_DEADLINE: float = _float_env("VANTAGE_DISCOVERY_DEADLINE", 120.0)
INTERFACE_QUERY_TIMEOUT: float = _float_env("VANTAGE_INTERFACE_QUERY_TIMEOUT", 5.0)

VANTAGE_DEBUG = os.environ.get("VANTAGE_DEBUG", "0").casefold() in YES_ANSWER

_host = os.environ.get("VANTAGE_HOST")
VANTAGE_HOST: str | None = _host if _host else None
_username = os.environ.get("VANTAGE_USERNAME")
VANTAGE_USERNAME: str | None = _username if _username else None
_password = os.environ.get("VANTAGE_PASSWORD")
VANTAGE_PASSWORD: str | None = _password if _password else None

VANTAGE_FORCE_TLS: bool = os.environ.get("VANTAGE_FORCE_TLS", "false").casefold() in YES_ANSWER
VANTAGE_USE_CACHE: bool = os.environ.get("VANTAGE_USE_CACHE", "true").casefold() in YES_ANSWER
VANTAGE_FETCH_INTERFACES: bool = os.environ.get("VANTAGE_FETCH_INTERFACES", "true").casefold() in YES_ANSWER
_omit_env = os.environ.get("VANTAGE_OMIT")
if _omit_env:
    _omit_value: list[str] = [x.strip() for x in _omit_env.split(",") if x.strip()]
else:
    _omit_value = []
VANTAGE_OMIT: list[str] = _omit_value
# "lo,hi" inclusive
VANTAGE_RANGE: str | None = os.environ.get("VANTAGE_RANGE") or None

PERSISTENT_BASE_DIR: str = os.environ.get(
    "VANTAGE_PERSISTENT_BASE_DIR", "/homeassistant/.storage/vantage-controller"
)
CACHE_FILE_NAME = "vantage.dc"
VANTAGE_CACHE_PATH: str = os.environ.get("VANTAGE_CACHE_PATH", f"{PERSISTENT_BASE_DIR}/{CACHE_FILE_NAME}")

VANTAGE_MQTT_HOST = os.environ.get("VANTAGE_MQTT_HOST", "homeassistant.local")
VANTAGE_MQTT_PORT = os.environ.get("VANTAGE_MQTT_PORT", "1883")
VANTAGE_MQTT_USER = os.environ.get("VANTAGE_MQTT_USER")
VANTAGE_MQTT_PASS = os.environ.get("VANTAGE_MQTT_PASS")
VANTAGE_TOPIC = os.environ.get("VANTAGE_TOPIC", "vantage")
VANTAGE_HASS_TOPIC = os.environ.get("VANTAGE_HASS_TOPIC", "homeassistant")
VANTAGE_HASS_BIRTH_MSG = os.environ.get("VANTAGE_HASS_BIRTH_MSG", "online")
VANTAGE_HASS_WILL_MSG = os.environ.get("VANTAGE_HASS_WILL_MSG", "offline")
VANTAGE_MQTT_CONN_DELAY: int = int(os.environ.get("VANTAGE_MQTT_CONN_DELAY", "10"))

ORIGIN_STRUCT = {
    "name": "vantage-controller",
    "sw_version": VANTAGE_VERSION,
    "support_url": SRC_REPO_URL,
}

# Logging Configuration
VANTAGE_LOG_FORMAT: str = os.environ.get("VANTAGE_LOG_FORMAT", "human")  # "json", "human", or "both"
VANTAGE_LOG_JSON_FILE: str = os.environ.get("VANTAGE_LOG_JSON_FILE", "/var/log/vantage_controller.json")
VANTAGE_LOG_HUMAN_OUTPUT: str = os.environ.get("VANTAGE_LOG_HUMAN_OUTPUT", "stdout")  # "stdout", "stderr", or file path

# Performance Instrumentation
VANTAGE_PERF_TRACKING: bool = os.environ.get("VANTAGE_PERF_TRACKING", "true").casefold() in YES_ANSWER
_perf_threshold = os.environ.get("VANTAGE_PERF_THRESHOLD_MS", "2000")
VANTAGE_PERF_THRESHOLD_MS: int = int(_perf_threshold) if _perf_threshold and _perf_threshold.isdigit() else 2000
