import argparse
import asyncio
import json
import logging
import signal
import sys

from dotenv import load_dotenv

from modbus2mqtt.definition.definition_registry import DefinitionRegistry
from modbus2mqtt.device.bus_manager import AsyncBusManager
from modbus2mqtt.device_poller import AsyncDevicePoller
from modbus2mqtt.exception import ConfigurationError
from modbus2mqtt.schema.modbus_device_schema import ModbusDeviceFileConfig
from modbus2mqtt.schema.system_config_schema import SystemConfig
from modbus2mqtt.sender.mqtt_publisher import MqttPublisher
from modbus2mqtt.util.config_manager import ConfigManager
from modbus2mqtt.util.logger_config import setup_logging
from modbus2mqtt.util.logging_noise import install_asyncio_noise_suppressor, quiet_pymodbus_logs, rate_limit_logger
from modbus2mqtt.util.pubsub.in_memory_pubsub import InMemoryPubSub
from modbus2mqtt.util.pubsub.pubsub_topic import PubSubTopic
from modbus2mqtt.util.pubsub.pubsub_util import build_pubsub_policies, pubsub_drop_metrics_loop
from modbus2mqtt.util.pubsub.subscriber.mqtt_emitter_subscriber import MqttEmitterSubscriber
from modbus2mqtt.util.task_registry import TaskRegistry

logger = logging.getLogger("Modbus2MqttMain")

SHUTDOWN_GRACE_SEC = 1.0


def build_pollers(
    registry: DefinitionRegistry,
    bus_manager: AsyncBusManager,
    pubsub: InMemoryPubSub,
    system_config: SystemConfig,
) -> list[AsyncDevicePoller]:
    poller_list: list[AsyncDevicePoller] = []

    for device_name in registry.devices():
        bus = bus_manager.get_bus(device_name)
        if bus is None:
            raise ConfigurationError(
                f"device '{device_name}' is used by definitions but missing from the device file",
                field="device",
                rule="known_device",
            )

        poller_list.append(
            AsyncDevicePoller(
                device_name,
                bus,
                registry.for_device(device_name),
                pubsub,
                transaction_timeout=system_config.POLLER.TRANSACTION_TIMEOUT_SEC,
                backoff_skip_intervals=system_config.POLLER.BACKOFF_SKIP_INTERVALS,
                bit_field_emit_policy=system_config.POLLER.BIT_FIELD_EMIT_POLICY,
            )
        )

    return poller_list


async def main(system_config: SystemConfig, definitions_path: str, modbus_device_path: str):
    install_asyncio_noise_suppressor()

    # ----------------------------------------------------------------------
    # Definitions and devices (any schema error aborts here)
    # ----------------------------------------------------------------------
    registry: DefinitionRegistry = ConfigManager.load_definitions(definitions_path, system_config.DUPLICATE_POLICY)
    device_file_config: ModbusDeviceFileConfig = ConfigManager.load_device_config(modbus_device_path)

    bus_manager = AsyncBusManager(device_file_config)
    bus_manager.init()
    logger.info(f"AsyncBusManager initialized ({len(bus_manager.bus_by_device)} devices)")

    pubsub = InMemoryPubSub()
    pubsub_policies = build_pubsub_policies(system_config.PUBSUB_QUEUE_MAXSIZE)
    for topic, topic_policy in pubsub_policies.items():
        pubsub.set_topic_policy(topic, topic_policy)
    logger.info("[PubSub] Topic policies applied")

    poller_list: list[AsyncDevicePoller] = build_pollers(registry, bus_manager, pubsub, system_config)

    publisher = MqttPublisher(system_config.MQTT)
    emitter_subscriber = MqttEmitterSubscriber(pubsub, publisher)

    # ----------------------------------------------------------------------
    # Register tasks; the emitter goes first so it subscribes before any poll result
    # ----------------------------------------------------------------------
    task_registry = TaskRegistry()
    task_registry.register("EMITTER", emitter_subscriber.run)
    task_registry.register(
        "PUBSUB_METRICS", lambda: pubsub_drop_metrics_loop(pubsub, list(pubsub_policies.keys()))
    )
    for poller in poller_list:
        task_registry.register(f"POLLER:{poller.device_name}", poller.run)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            logger.warning(f"Signal handler for {sig.name} not supported on this platform")

    await publisher.connect()

    try:
        task_registry.start_all()
        await asyncio.sleep(0)
        logger.info(f"Bridge running ({len(registry)} definitions, {len(poller_list)} devices)")

        stop_waiter = asyncio.create_task(stop_event.wait(), name="stop-signal")
        ended_task = await task_registry.wait_any_or(stop_waiter)
        if ended_task is not stop_waiter:
            stop_waiter.cancel()
            logger.error(f"Task {ended_task.get_name()} ended unexpectedly: {task_registry.status()}")

    finally:
        await shutdown(poller_list, task_registry, pubsub, system_config)
        await publisher.close()
        await bus_manager.close_all()
        await pubsub.close()


async def shutdown(
    poller_list: list[AsyncDevicePoller],
    task_registry: TaskRegistry,
    pubsub: InMemoryPubSub,
    system_config: SystemConfig,
) -> None:
    """
    Stop in dependency order:
        1) pollers: the in-flight read finishes, no new one starts
        2) emitter: publish whatever the pollers already queued
        3) everything else is cancelled
    """
    logger.info("Shutting down...")

    for poller in poller_list:
        poller.stop()
    poller_tasks = [t for name, t in task_registry.tasks.items() if name.startswith("POLLER:")]
    if poller_tasks:
        await asyncio.wait(poller_tasks, timeout=system_config.POLLER.TRANSACTION_TIMEOUT_SEC + SHUTDOWN_GRACE_SEC)

    await pubsub.wait_drained(PubSubTopic.VALUE_CHANGED, timeout=SHUTDOWN_GRACE_SEC)
    await task_registry.stop_all()


def check_definitions(definitions_path: str, system_config: SystemConfig) -> int:
    """Validate the definition file and print the normalized records."""
    registry: DefinitionRegistry = ConfigManager.load_definitions(definitions_path, system_config.DUPLICATE_POLICY)
    print(json.dumps([definition.to_record() for definition in registry], indent=2, ensure_ascii=False))
    logger.info(f"{len(registry)} definitions OK")
    return 0


def run(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="modbus2mqtt", description="Poll Modbus registers, publish changes to MQTT")
    parser.add_argument("--system_config", default="res/system_config.yml", help="Path to system config YAML")
    parser.add_argument("--definitions", default=None, help="Path to definitions JSON (overrides PATHS.DEFINITIONS)")
    parser.add_argument(
        "--modbus_device", default=None, help="Path to modbus device YAML (overrides PATHS.MODBUS_DEVICE)"
    )
    parser.add_argument("--check", action="store_true", help="Validate definitions, print them and exit")
    args = parser.parse_args(argv)

    load_dotenv()
    system_config: SystemConfig = ConfigManager.load_system_config(args.system_config)

    setup_logging(
        log_level=system_config.LOGGING.LEVEL,
        log_to_file=system_config.LOGGING.TO_FILE,
        log_dir=system_config.PATHS.LOG_DIR,
        backup_count=system_config.LOGGING.BACKUP_COUNT,
    )
    quiet_pymodbus_logs()
    rate_limit_logger("AsyncDevicePoller")

    definitions_path: str = args.definitions or system_config.PATHS.DEFINITIONS
    modbus_device_path: str = args.modbus_device or system_config.PATHS.MODBUS_DEVICE

    try:
        if args.check:
            return check_definitions(definitions_path, system_config)
        asyncio.run(main(system_config, definitions_path, modbus_device_path))
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(run())
