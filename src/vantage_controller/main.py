from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

import dotenv
import uvloop

from vantage_controller.bridge import VantageBridge
from vantage_controller.config import VantageConfig
from vantage_controller.const import VANTAGE_DEBUG, VANTAGE_VERSION, YES_ANSWER
from vantage_controller.correlation import correlation_context, ensure_correlation_id
from vantage_controller.exceptions import ConfigError
from vantage_controller.logging_abstraction import get_logger, set_global_level
from vantage_controller.metrics import start_metrics_server
from vantage_controller.mqtt import MQTTClient

logger = get_logger(__name__)

# Suppress verbose MQTT library warnings
mqtt_logger = logging.getLogger("mqtt")
mqtt_logger.setLevel(logging.ERROR)
mqtt_logger.propagate = False

BRIDGE_START_TASK_NAME = "vantage_bridge_start"
MQTT_CLIENT_START_TASK_NAME = "mqtt_client_start"


class VantageController:
    """Owns the event loop, the bridge and the MQTT client for one run."""

    lp: str = "VantageController:"

    def __init__(self, config: VantageConfig, enable_mqtt: bool = True) -> None:
        asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
        self.loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self.loop)
        self.config = config
        self.bridge = VantageBridge(config)
        self.mqtt_client = MQTTClient(self.bridge) if enable_mqtt else None
        self._stop_event = asyncio.Event()

        logger.info(" Initializing Vantage Controller", extra={"version": VANTAGE_VERSION})
        self.loop.add_signal_handler(signal.SIGINT, self._signal_handler, signal.SIGINT)
        self.loop.add_signal_handler(signal.SIGTERM, self._signal_handler, signal.SIGTERM)
        logger.debug("Signal handlers configured for SIGINT & SIGTERM")

    def _signal_handler(self, signum: int) -> None:
        logger.info("%s received %s, shutting down...", self.lp, signal.Signals(signum).name)
        self._stop_event.set()

    def _on_bridge_started(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        if (exc := task.exception()) is not None:
            logger.error("%s bridge start failed: %r", self.lp, exc)
            self._stop_event.set()

    async def start(self) -> None:
        """Run the bridge and the MQTT client until a stop signal arrives."""
        _ = ensure_correlation_id()
        tasks: list[asyncio.Task[None]] = []
        if self.mqtt_client is not None:
            # attach before discovery so the first device list is announced
            self.mqtt_client.attach()
            self.mqtt_client.start_task = asyncio.Task(self.mqtt_client.start(), name=MQTT_CLIENT_START_TASK_NAME)
            tasks.append(self.mqtt_client.start_task)
        bridge_task = asyncio.Task(self.bridge.start(), name=BRIDGE_START_TASK_NAME)
        bridge_task.add_done_callback(self._on_bridge_started)
        tasks.append(bridge_task)
        logger.info(" Starting controller bridge%s...", " and MQTT client" if self.mqtt_client else "")
        try:
            await self._stop_event.wait()
        finally:
            await self.stop(tasks)

    async def stop(self, tasks: list[asyncio.Task[None]]) -> None:
        logger.info(" Shutting down Vantage Controller...")
        if self.mqtt_client is not None:
            await self.mqtt_client.stop()
        await self.bridge.stop()
        for task in tasks:
            if not task.done():
                task.cancel()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error("%s task ended with %r", self.lp, result)


def parse_cli(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Vantage InFusion Controller Bridge")
    parser.add_argument("-D", "--debug", action="store_true", help="Enable debug mode")
    _ = parser.add_argument("--env", help="Path to the environment file", default=None, type=Path)
    _ = parser.add_argument("--config", help="Path to a YAML config file", default=None, type=Path)
    parser.add_argument(
        "--no-cache",
        action="store_true",
        dest="no_cache",
        help="Ignore the cached configuration and enumerate the controller",
    )
    parser.add_argument(
        "--no-mqtt",
        action="store_true",
        dest="no_mqtt",
        help="Run the controller client without the Home Assistant MQTT bridge",
    )
    args = parser.parse_args(argv)

    if args.debug:
        set_global_level(logging.DEBUG)
        logger.info("Debug mode enabled via CLI argument")

    if args.env:
        load_env_file(args.env)
    return args


def load_env_file(path: Path) -> bool:
    env_path = path.expanduser().resolve()
    if not env_path.exists():
        logger.error("Environment file not found", extra={"path": str(env_path)})
        return False
    loaded_any = dotenv.load_dotenv(env_path, override=True)
    if loaded_any:
        logger.info(" Environment variables loaded", extra={"source": str(env_path)})
    else:
        logger.warning("No environment variables loaded from file", extra={"path": str(env_path)})
    return loaded_any


def load_config(args: argparse.Namespace) -> VantageConfig:
    config = VantageConfig.from_yaml(args.config) if args.config else VantageConfig.from_env()
    if args.no_cache:
        config = config.model_copy(update={"use_cache": False})
    return config


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the Vantage controller bridge."""
    with correlation_context():
        logger.info("Starting Vantage Controller", extra={"version": VANTAGE_VERSION})
        args = parse_cli(argv)

        if VANTAGE_DEBUG or os.environ.get("VANTAGE_DEBUG", "0").casefold() in YES_ANSWER:
            logger.info("Debug logging enabled via configuration")
            set_global_level(logging.DEBUG)

        try:
            config = load_config(args)
        except ConfigError as e:
            logger.error("Configuration error: %s", e)
            return 1

        if os.environ.get("VANTAGE_METRICS_ENABLED", "false").casefold() in YES_ANSWER:
            port = int(os.environ.get("VANTAGE_METRICS_PORT", "9400"))
            start_metrics_server(port)
            logger.info("Prometheus metrics served", extra={"port": port})

        controller = VantageController(config, enable_mqtt=not args.no_mqtt)
        try:
            controller.loop.run_until_complete(controller.start())
        except asyncio.CancelledError:
            logger.info("Vantage Controller cancelled, shutting down...")
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received, shutting down...")
        except Exception as e:
            logger.exception(" Fatal error in main loop", extra={"error": str(e)})
            return 1
        else:
            logger.info(" Vantage Controller stopped gracefully")
        finally:
            if not controller.loop.is_closed():
                controller.loop.close()
            logger.info("Vantage Controller shutdown complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
