import pytest
from pymodbus.client import AsyncModbusSerialClient, AsyncModbusTcpClient

from modbus2mqtt.device.bus_manager import AsyncBusManager, build_client
from modbus2mqtt.schema.modbus_device_schema import ModbusBusConfig, ModbusDeviceFileConfig


@pytest.fixture
def device_file_config():
    return ModbusDeviceFileConfig.model_validate(
        {
            "buses": {
                "rs485": {"type": "rtu", "serial_port": "/dev/ttyUSB0", "baudrate": "19200"},
                "lan": {"type": "TCP", "host": "127.0.0.1", "port": 5020},
            },
            "devices": [
                {"name": "meter_1", "bus": "rs485", "unit_id": 1},
                {"name": "meter_2", "bus": "rs485", "slave_id": "2"},
                {"name": "inverter", "bus": "lan", "unit_id": 3},
            ],
        }
    )


class TestBuildClient:
    @pytest.mark.asyncio
    async def test_tcp_bus(self):
        client = build_client(ModbusBusConfig(type="tcp", host="127.0.0.1", port=5020))
        assert isinstance(client, AsyncModbusTcpClient)

    @pytest.mark.asyncio
    async def test_rtu_bus(self):
        client = build_client(ModbusBusConfig(type="rtu", serial_port="/dev/ttyUSB0"))
        assert isinstance(client, AsyncModbusSerialClient)


class TestAsyncBusManager:
    @pytest.mark.asyncio
    async def test_devices_on_one_bus_share_client_and_lock(self, device_file_config):
        manager = AsyncBusManager(device_file_config)
        manager.init()

        meter_1 = manager.get_bus("meter_1")
        meter_2 = manager.get_bus("meter_2")
        inverter = manager.get_bus("inverter")

        assert meter_1.client is meter_2.client
        assert meter_1.lock is meter_2.lock
        assert inverter.client is not meter_1.client
        assert meter_2.unit_id == 2
        assert len(manager.client_dict) == 2

    @pytest.mark.asyncio
    async def test_unknown_device_returns_none(self, device_file_config):
        manager = AsyncBusManager(device_file_config)
        manager.init()

        assert manager.get_bus("missing") is None

    @pytest.mark.asyncio
    async def test_close_all_clears_clients(self, device_file_config):
        manager = AsyncBusManager(device_file_config)
        manager.init()

        await manager.close_all()

        assert manager.client_dict == {}
        assert manager.get_bus("meter_1") is None


class TestDeviceFileConfig:
    def test_when_device_references_unknown_bus_then_rejected(self):
        with pytest.raises(ValueError):
            ModbusDeviceFileConfig.model_validate(
                {"buses": {}, "devices": [{"name": "x", "bus": "nowhere", "unit_id": 1}]}
            )

    def test_when_tcp_bus_without_host_then_rejected(self):
        with pytest.raises(ValueError):
            ModbusBusConfig(type="tcp")

    def test_when_baudrate_invalid_then_fallback(self):
        assert ModbusBusConfig(type="rtu", serial_port="/dev/ttyS0", baudrate="fast").baudrate == 9600
