import asyncio
import logging

from pymodbus.client import AsyncModbusSerialClient, AsyncModbusTcpClient
from pymodbus.client.base import ModbusBaseClient

from modbus2mqtt.device.modbus_bus import ModbusBus
from modbus2mqtt.schema.modbus_device_schema import BusType, ModbusBusConfig, ModbusDeviceFileConfig

logger = logging.getLogger("BusManager")


def build_client(bus_config: ModbusBusConfig) -> ModbusBaseClient:
    """Create (but do not connect) the pymodbus async client for one bus."""
    if bus_config.type == BusType.TCP:
        return AsyncModbusTcpClient(
            host=bus_config.host,
            port=bus_config.port,
            timeout=bus_config.timeout,
            retries=bus_config.retries,
        )
    return AsyncModbusSerialClient(
        port=bus_config.serial_port,
        baudrate=bus_config.baudrate,
        parity=bus_config.parity,
        bytesize=bus_config.bytesize,
        stopbits=bus_config.stopbits,
        timeout=bus_config.timeout,
        retries=bus_config.retries,
    )


class AsyncBusManager:
    """
    Owns one pymodbus client and one lock per bus.

    Devices on the same bus share the client; the lock keeps their transactions
    from interleaving on the wire. Connection happens lazily on first read.
    """

    def __init__(self, device_file_config: ModbusDeviceFileConfig):
        self.device_file_config = device_file_config
        self.client_dict: dict[str, ModbusBaseClient] = {}
        self._bus_locks: dict[str, asyncio.Lock] = {}
        self.bus_by_device: dict[str, ModbusBus] = {}

    def init(self) -> None:
        for device_config in self.device_file_config.device_list:
            bus_name: str = device_config.bus
            bus_config: ModbusBusConfig = self.device_file_config.bus_for(device_config)

            if bus_name not in self.client_dict:
                self.client_dict[bus_name] = build_client(bus_config)
                self._bus_locks[bus_name] = asyncio.Lock()
                logger.info(f"[Bus] {bus_name}: {bus_config.type} {bus_config.endpoint}")

            self.bus_by_device[device_config.name] = ModbusBus(
                client=self.client_dict[bus_name],
                unit_id=device_config.unit_id,
                device_id=device_config.name,
                lock=self._bus_locks[bus_name],
            )

    def get_bus(self, device_name: str) -> ModbusBus | None:
        return self.bus_by_device.get(device_name)

    async def close_all(self) -> None:
        for bus_name, client in self.client_dict.items():
            try:
                client.close()
            except Exception as e:
                logger.warning(f"[Bus] Error closing {bus_name}: {e}")
        self.client_dict.clear()
        self.bus_by_device.clear()
