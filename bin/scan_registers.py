from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from modbus2mqtt.device.bus_manager import AsyncBusManager
from modbus2mqtt.exception import ConfigurationError
from modbus2mqtt.model.enum.register_type_enum import RegisterType
from modbus2mqtt.tool.register_scanner import DEFAULT_STRIPE_SIZE, RegisterScanner
from modbus2mqtt.util.config_manager import ConfigManager
from modbus2mqtt.util.logger_config import setup_logging
from modbus2mqtt.util.logging_noise import quiet_pymodbus_logs

logger = logging.getLogger("ScanRegisters")


def _parse_address(text: str) -> int:
    return int(text, 0)


async def _scan(args: argparse.Namespace) -> int:
    device_file_config = ConfigManager.load_device_config(args.modbus_device)
    bus_manager = AsyncBusManager(device_file_config)
    bus_manager.init()

    bus = bus_manager.get_bus(args.device)
    if bus is None:
        logger.error(f"Unknown device {args.device!r}; known: {', '.join(device_file_config.device_names())}")
        return 1

    scanner = RegisterScanner(bus, RegisterType.from_string(args.kind), stripe_size=args.stripe)
    try:
        await scanner.scan(args.start, args.end)
        if args.rounds:
            await scanner.rescan(args.rounds)
    finally:
        await bus_manager.close_all()
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Dump a device's register space and show what changes")
    parser.add_argument("--modbus_device", default="res/modbus_device.yml", help="Path to modbus device YAML")
    parser.add_argument("--device", required=True, help="Device name from the device file")
    parser.add_argument("--kind", default="holding", help="holding / input / coil / discrete_input")
    parser.add_argument("--start", type=_parse_address, default=0, help="First address (0x.. accepted)")
    parser.add_argument("--end", type=_parse_address, default=0x10000, help="End address, exclusive")
    parser.add_argument("--stripe", type=int, default=DEFAULT_STRIPE_SIZE, help="Registers per read")
    parser.add_argument("--rounds", type=int, default=20, help="Rescans of the non-zero stripes")
    args = parser.parse_args(argv)

    setup_logging()
    quiet_pymodbus_logs()

    try:
        return asyncio.run(_scan(args))
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
