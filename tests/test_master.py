"""Tests for the hardware (mocked serial) and simulated masters."""

import struct
import threading
import time
from collections.abc import Iterator
from unittest.mock import MagicMock, patch

import pytest
import serial

from pyactuator_modbus.capabilities import Product
from pyactuator_modbus.errors import NotConnectedError, NotFoundError, TransportError, ValidationError
from pyactuator_modbus.frame import build_frame
from pyactuator_modbus.master import HardwareMaster, SimulatedMaster
from pyactuator_modbus.simulator import CMD_CLOSE, CMD_OPEN, STATUS_CLOSING, STATUS_OPENING
from pyactuator_modbus.types import Parity, SerialSettings


# ============================================================================
# SimulatedMaster
# ============================================================================


@pytest.fixture
def sim_master() -> Iterator[SimulatedMaster]:
    master = SimulatedMaster(tick_interval=0.005)
    master.add_slave(1)
    master.add_slave(2, initial_position=4095, product_id=Product.NOVA)
    yield master
    master.disconnect()


class TestSimulatedMaster:
    def test_not_connected(self, sim_master: SimulatedMaster) -> None:
        with pytest.raises(NotConnectedError):
            sim_master.read_holding_registers(1, 0, 1)
        with pytest.raises(NotConnectedError):
            sim_master.write_single_coil(1, 0, True)

    def test_read_product_ids(self, sim_master: SimulatedMaster) -> None:
        sim_master.connect()
        assert sim_master.read_holding_registers(1, 100, 1) == [Product.S7X]
        assert sim_master.read_holding_registers(2, 100, 1) == [Product.NOVA]
        assert sim_master.read_holding_registers(2, 23, 1) == [4095]

    def test_unknown_slave(self, sim_master: SimulatedMaster) -> None:
        sim_master.connect()
        with pytest.raises(NotFoundError) as exc_info:
            sim_master.read_holding_registers(9, 0, 1)
        assert exc_info.value.slave_id == 9

    @pytest.mark.parametrize(
        "slave_id,start,count",
        [(0, 0, 1), (248, 0, 1), (1, 0, 0), (1, 0, 126), (1, 500, 13), (1, -1, 1)],
    )
    def test_read_validation(self, sim_master: SimulatedMaster, slave_id: int, start: int, count: int) -> None:
        sim_master.connect()
        with pytest.raises(ValidationError):
            sim_master.read_holding_registers(slave_id, start, count)

    def test_last_register_readable(self, sim_master: SimulatedMaster) -> None:
        sim_master.connect()
        assert sim_master.read_holding_registers(1, 507, 5) == [4095, 0, 0, 0, 0]

    def test_write_validation(self, sim_master: SimulatedMaster) -> None:
        sim_master.connect()
        with pytest.raises(ValidationError):
            sim_master.write_single_register(1, 20, 65536)
        with pytest.raises(ValidationError):
            sim_master.write_single_register(1, 512, 0)
        with pytest.raises(ValidationError):
            sim_master.write_single_coil(1, 16, True)
        with pytest.raises(ValidationError):
            sim_master.read_coils(1, 10, 7)
        with pytest.raises(ValidationError):
            sim_master.write_multiple_registers(1, 0, [])

    def test_write_multiple_and_coils(self, sim_master: SimulatedMaster) -> None:
        sim_master.connect()
        sim_master.write_multiple_registers(1, 113, [(10 << 8) | 90, (60 << 8) | 40])
        assert sim_master.read_holding_registers(1, 113, 2) == [(10 << 8) | 90, (60 << 8) | 40]
        sim_master.write_single_coil(1, 0, False)
        assert sim_master.read_coils(1, 0, 2) == [False, False]

    def test_connect_starts_tick_loops(self, sim_master: SimulatedMaster) -> None:
        sim_master.connect()
        assert sim_master.get_simulator(1).is_running
        sim_master.disconnect()
        assert not sim_master.get_simulator(1).is_running
        assert not sim_master.is_connected

    def test_slave_added_while_connected_starts(self, sim_master: SimulatedMaster) -> None:
        sim_master.connect()
        sim = sim_master.add_slave(7)
        assert sim.is_running

    def test_add_existing_slave_is_noop(self, sim_master: SimulatedMaster) -> None:
        first = sim_master.get_simulator(1)
        assert sim_master.add_slave(1, initial_position=999) is first
        assert first.current_position == 0

    def test_remove_and_clear(self, sim_master: SimulatedMaster) -> None:
        assert sim_master.slave_ids == [1, 2]
        sim_master.remove_slave(2)
        assert sim_master.slave_ids == [1]
        with pytest.raises(NotFoundError):
            sim_master.remove_slave(2)
        sim_master.clear_slaves()
        assert sim_master.slave_ids == []

    def test_context_manager(self) -> None:
        master = SimulatedMaster(tick_interval=0.005)
        master.add_slave(3)
        with master:
            assert master.is_connected
        assert not master.is_connected

    def test_reads_never_see_half_updated_status(self, sim_master: SimulatedMaster) -> None:
        sim_master.connect()
        done = threading.Event()
        errors: list[str] = []

        def command_writer() -> None:
            command = CMD_OPEN
            while not done.is_set():
                sim_master.write_single_register(1, 10, command)
                command = CMD_CLOSE if command == CMD_OPEN else CMD_OPEN
                time.sleep(0.03)

        def status_reader() -> None:
            while not done.is_set():
                regs = sim_master.read_holding_registers(1, 3, 22)
                status, position, torque = regs[0], regs[20], regs[21]
                opening = bool(status & STATUS_OPENING)
                closing = bool(status & STATUS_CLOSING)
                if opening and closing:
                    errors.append(f"opening and closing at {position}")
                if (opening or closing) != (torque != 0):
                    errors.append(f"status 0x{status:04X} with torque {torque}")
                if opening and position >= 4095:
                    errors.append(f"opening at position {position}")
                if closing and position <= 0:
                    errors.append(f"closing at position {position}")

        threads = [threading.Thread(target=command_writer)]
        threads += [threading.Thread(target=status_reader) for _ in range(3)]
        for t in threads:
            t.start()
        time.sleep(1.0)
        done.set()
        for t in threads:
            t.join(5.0)
        assert errors == []


# ============================================================================
# HardwareMaster
# ============================================================================


@pytest.fixture
def settings() -> SerialSettings:
    return SerialSettings(port="/dev/ttyUSB0", baudrate=19200, parity=Parity.EVEN, settle_delay=0)


@pytest.fixture
def mock_serial() -> MagicMock:
    port = MagicMock()
    port.is_open = True
    port.write.side_effect = lambda data: len(data)
    return port


class TestHardwareMaster:
    def test_connect_opens_port(self, settings: SerialSettings, mock_serial: MagicMock) -> None:
        with patch("pyactuator_modbus.master.serial.Serial", return_value=mock_serial) as serial_class:
            master = HardwareMaster(settings)
            master.connect()
        serial_class.assert_called_once_with(
            port="/dev/ttyUSB0", baudrate=19200, parity="E", stopbits=1, bytesize=8, timeout=1.0
        )
        assert master.is_connected

    def test_connect_failure(self, settings: SerialSettings) -> None:
        with patch("pyactuator_modbus.master.serial.Serial", side_effect=serial.SerialException("no such port")):
            master = HardwareMaster(settings)
            with pytest.raises(TransportError, match="/dev/ttyUSB0"):
                master.connect()
        assert not master.is_connected

    def test_not_connected(self, settings: SerialSettings) -> None:
        with pytest.raises(NotConnectedError):
            HardwareMaster(settings).read_holding_registers(1, 0, 1)

    def test_read_goes_through_protocol(self, settings: SerialSettings, mock_serial: MagicMock) -> None:
        mock_serial.read.return_value = build_frame(4, 0x03, b"\x02" + struct.pack(">H", 0x8001))
        with patch("pyactuator_modbus.master.serial.Serial", return_value=mock_serial):
            with HardwareMaster(settings) as master:
                assert master.read_holding_registers(4, 100, 1) == [0x8001]
        mock_serial.write.assert_called_once_with(build_frame(4, 0x03, struct.pack(">HH", 100, 1)))
        mock_serial.close.assert_called_once()

    def test_validation_before_io(self, settings: SerialSettings, mock_serial: MagicMock) -> None:
        with patch("pyactuator_modbus.master.serial.Serial", return_value=mock_serial):
            master = HardwareMaster(settings)
            master.connect()
            with pytest.raises(ValidationError):
                master.write_single_register(1, 20, 70000)
            with pytest.raises(ValidationError):
                master.read_holding_registers(0, 0, 1)
        mock_serial.write.assert_not_called()

    def test_disconnect(self, settings: SerialSettings, mock_serial: MagicMock) -> None:
        with patch("pyactuator_modbus.master.serial.Serial", return_value=mock_serial):
            master = HardwareMaster(settings)
            master.connect()
            master.disconnect()
        assert not master.is_connected
        with pytest.raises(NotConnectedError):
            master.write_single_coil(1, 0, True)

    def test_one_request_in_flight(self, settings: SerialSettings, mock_serial: MagicMock) -> None:
        lock = threading.Lock()
        active = 0
        max_active = 0

        def slow_read(size: int = 1) -> bytes:
            nonlocal active, max_active
            with lock:
                active += 1
                max_active = max(max_active, active)
            time.sleep(0.01)
            with lock:
                active -= 1
            return build_frame(4, 0x03, b"\x02" + struct.pack(">H", 0x8001))

        mock_serial.read.side_effect = slow_read
        results: list[list[int]] = []

        def reader() -> None:
            for _ in range(5):
                results.append(master.read_holding_registers(4, 100, 1))

        with patch("pyactuator_modbus.master.serial.Serial", return_value=mock_serial):
            with HardwareMaster(settings) as master:
                threads = [threading.Thread(target=reader) for _ in range(4)]
                for t in threads:
                    t.start()
                for t in threads:
                    t.join(10.0)
        assert max_active == 1
        assert results == [[0x8001]] * 20


class TestSerialSettings:
    def test_defaults(self) -> None:
        s = SerialSettings(port="COM3")
        assert (s.baudrate, s.parity, s.stop_bits, s.data_bits, s.timeout) == (9600, Parity.NONE, 1, 8, 1.0)

    @pytest.mark.parametrize(
        "kwargs",
        [{"port": ""}, {"port": "COM1", "stop_bits": 3}, {"port": "COM1", "data_bits": 7}, {"port": "COM1", "baudrate": 0}],
    )
    def test_invalid(self, kwargs: dict) -> None:
        with pytest.raises(ValidationError):
            SerialSettings(**kwargs)
