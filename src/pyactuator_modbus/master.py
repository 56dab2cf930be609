"""ActuatorMaster interface with serial (hardware) and in-process (simulated) backends."""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any

import serial

from .capabilities import Product
from .errors import NotConnectedError, NotFoundError, TransportError, ValidationError
from .protocol import RtuProtocolClient
from .simulator import ActuatorSimulator
from .types import (
    COIL_COUNT,
    MAX_READ_REGISTERS,
    MAX_SLAVE_ID,
    MAX_WRITE_REGISTERS,
    MIN_SLAVE_ID,
    REGISTER_SPACE,
    SerialSettings,
)

logger = logging.getLogger(__name__)


def _check_slave_id(slave_id: int) -> None:
    if not MIN_SLAVE_ID <= slave_id <= MAX_SLAVE_ID:
        raise ValidationError(f"Slave id out of range ({MIN_SLAVE_ID}-{MAX_SLAVE_ID}): {slave_id}")


def _check_register_range(start: int, count: int, max_count: int) -> None:
    if not 1 <= count <= max_count:
        raise ValidationError(f"Register count out of range (1-{max_count}): {count}")
    if start < 0 or start + count > REGISTER_SPACE:
        raise ValidationError(f"Register range {start}..{start + count - 1} outside 0-{REGISTER_SPACE - 1}")


def _check_coil_range(start: int, count: int) -> None:
    if count < 1 or start < 0 or start + count > COIL_COUNT:
        raise ValidationError(f"Coil range {start}..{start + count - 1} outside 0-{COIL_COUNT - 1}")


def _check_value(value: int) -> None:
    if not 0 <= value <= 0xFFFF:
        raise ValidationError(f"Register value out of range (0-65535): {value}")


class ActuatorMaster(ABC):
    """
    Modbus master used by sessions; callers never depend on the concrete backend.

    The public methods check the connection, then validate slave id, address
    range and values (ValidationError, before any I/O), then delegate to the
    backend's underscore hook.
    """

    @abstractmethod
    def connect(self) -> None: ...

    @abstractmethod
    def disconnect(self) -> None: ...

    @property
    @abstractmethod
    def is_connected(self) -> bool: ...

    def _require_connected(self) -> None:
        if not self.is_connected:
            raise NotConnectedError()

    def read_holding_registers(self, slave_id: int, start: int, count: int) -> list[int]:
        self._require_connected()
        _check_slave_id(slave_id)
        _check_register_range(start, count, MAX_READ_REGISTERS)
        return self._read_holding_registers(slave_id, start, count)

    def read_coils(self, slave_id: int, start: int, count: int) -> list[bool]:
        self._require_connected()
        _check_slave_id(slave_id)
        _check_coil_range(start, count)
        return self._read_coils(slave_id, start, count)

    def write_single_register(self, slave_id: int, address: int, value: int) -> None:
        self._require_connected()
        _check_slave_id(slave_id)
        _check_register_range(address, 1, 1)
        _check_value(value)
        self._write_single_register(slave_id, address, value)

    def write_multiple_registers(self, slave_id: int, start: int, values: list[int]) -> None:
        self._require_connected()
        _check_slave_id(slave_id)
        _check_register_range(start, len(values), MAX_WRITE_REGISTERS)
        for v in values:
            _check_value(v)
        self._write_multiple_registers(slave_id, start, list(values))

    def write_single_coil(self, slave_id: int, address: int, value: bool) -> None:
        self._require_connected()
        _check_slave_id(slave_id)
        _check_coil_range(address, 1)
        self._write_single_coil(slave_id, address, bool(value))

    @abstractmethod
    def _read_holding_registers(self, slave_id: int, start: int, count: int) -> list[int]: ...

    @abstractmethod
    def _read_coils(self, slave_id: int, start: int, count: int) -> list[bool]: ...

    @abstractmethod
    def _write_single_register(self, slave_id: int, address: int, value: int) -> None: ...

    @abstractmethod
    def _write_multiple_registers(self, slave_id: int, start: int, values: list[int]) -> None: ...

    @abstractmethod
    def _write_single_coil(self, slave_id: int, address: int, value: bool) -> None: ...

    def __enter__(self) -> "ActuatorMaster":
        self.connect()
        return self

    def __exit__(self, *args: Any) -> None:
        self.disconnect()


class HardwareMaster(ActuatorMaster):
    """
    Modbus RTU master on a serial port (pyserial).

    One request is in flight at a time: every operation holds a lock for the
    whole request/response exchange, so polling threads and foreground calls can
    share one instance.
    """

    def __init__(self, settings: SerialSettings) -> None:
        self.settings = settings
        self._serial: serial.Serial | None = None
        self._client: RtuProtocolClient | None = None
        self._lock = threading.Lock()

    def connect(self) -> None:
        """Open the serial port; no-op if already open."""
        with self._lock:
            if self._serial is not None and self._serial.is_open:
                return
            s = self.settings
            try:
                self._serial = serial.Serial(
                    port=s.port,
                    baudrate=s.baudrate,
                    parity=s.parity.value,
                    stopbits=s.stop_bits,
                    bytesize=s.data_bits,
                    timeout=s.timeout,
                )
            except (serial.SerialException, OSError) as e:
                self._serial = None
                raise TransportError(f"Failed to open {s.port}: {e}", cause=e) from e
            self._client = RtuProtocolClient(self._serial, settle_delay=s.settle_delay)
            logger.info("Connected to %s (%d %s%d)", s.port, s.baudrate, s.parity.value, s.stop_bits)

    def disconnect(self) -> None:
        """Close the serial port."""
        with self._lock:
            if self._serial is not None:
                try:
                    self._serial.close()
                except (serial.SerialException, OSError) as e:
                    logger.warning("Error closing serial port: %s", e)
                self._serial = None
                logger.info("Disconnected from %s", self.settings.port)
            self._client = None

    @property
    def is_connected(self) -> bool:
        return self._serial is not None and bool(self._serial.is_open)

    def _protocol(self) -> RtuProtocolClient:
        if self._client is None:
            raise NotConnectedError()
        return self._client

    def _read_holding_registers(self, slave_id: int, start: int, count: int) -> list[int]:
        with self._lock:
            return self._protocol().read_holding_registers(slave_id, start, count)

    def _read_coils(self, slave_id: int, start: int, count: int) -> list[bool]:
        with self._lock:
            return self._protocol().read_coils(slave_id, start, count)

    def _write_single_register(self, slave_id: int, address: int, value: int) -> None:
        with self._lock:
            self._protocol().write_single_register(slave_id, address, value)

    def _write_multiple_registers(self, slave_id: int, start: int, values: list[int]) -> None:
        with self._lock:
            self._protocol().write_multiple_registers(slave_id, start, values)

    def _write_single_coil(self, slave_id: int, address: int, value: bool) -> None:
        with self._lock:
            self._protocol().write_single_coil(slave_id, address, value)


class SimulatedMaster(ActuatorMaster):
    """
    In-process master backed by ActuatorSimulator instances, one per slave id.

    connect() starts every simulator's tick loop, disconnect() stops them.
    Each simulator serializes its own register bank; there is no lock shared
    across slaves.
    """

    def __init__(self, tick_interval: float = 0.1, calibration_delay: float = 3.0) -> None:
        self.tick_interval = tick_interval
        self.calibration_delay = calibration_delay
        self._slaves: dict[int, ActuatorSimulator] = {}
        self._slaves_lock = threading.Lock()
        self._connected = False

    def add_slave(
        self,
        slave_id: int,
        initial_position: int = 0,
        product_id: int = Product.S7X,
    ) -> ActuatorSimulator:
        """Create a simulated slave; an existing id is left untouched and returned."""
        _check_slave_id(slave_id)
        with self._slaves_lock:
            existing = self._slaves.get(slave_id)
            if existing is not None:
                logger.info("Slave %d already exists", slave_id)
                return existing
            sim = ActuatorSimulator(
                slave_id,
                initial_position=initial_position,
                product_id=product_id,
                tick_interval=self.tick_interval,
                calibration_delay=self.calibration_delay,
            )
            self._slaves[slave_id] = sim
        logger.info("Added simulated slave %d (product 0x%04X, position %d)", slave_id, product_id, initial_position)
        if self._connected:
            sim.start_simulation()
        return sim

    def remove_slave(self, slave_id: int) -> None:
        with self._slaves_lock:
            sim = self._slaves.pop(slave_id, None)
        if sim is None:
            raise NotFoundError(slave_id)
        sim.stop_simulation()
        logger.info("Removed simulated slave %d", slave_id)

    def clear_slaves(self) -> None:
        with self._slaves_lock:
            slaves = list(self._slaves.values())
            self._slaves.clear()
        for sim in slaves:
            sim.stop_simulation()

    @property
    def slave_ids(self) -> list[int]:
        with self._slaves_lock:
            return sorted(self._slaves)

    def get_simulator(self, slave_id: int) -> ActuatorSimulator:
        with self._slaves_lock:
            sim = self._slaves.get(slave_id)
        if sim is None:
            raise NotFoundError(slave_id)
        return sim

    def connect(self) -> None:
        if self._connected:
            return
        self._connected = True
        for slave_id in self.slave_ids:
            self.get_simulator(slave_id).start_simulation()
        logger.info("Simulated master connected (%d slaves)", len(self._slaves))

    def disconnect(self) -> None:
        if not self._connected:
            return
        self._connected = False
        with self._slaves_lock:
            slaves = list(self._slaves.values())
        for sim in slaves:
            sim.stop_simulation()
        logger.info("Simulated master disconnected")

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _read_holding_registers(self, slave_id: int, start: int, count: int) -> list[int]:
        return self.get_simulator(slave_id).read_holding_registers(start, count)

    def _read_coils(self, slave_id: int, start: int, count: int) -> list[bool]:
        return self.get_simulator(slave_id).read_coils(start, count)

    def _write_single_register(self, slave_id: int, address: int, value: int) -> None:
        self.get_simulator(slave_id).write_single_register(address, value)

    def _write_multiple_registers(self, slave_id: int, start: int, values: list[int]) -> None:
        self.get_simulator(slave_id).write_multiple_registers(start, values)

    def _write_single_coil(self, slave_id: int, address: int, value: bool) -> None:
        self.get_simulator(slave_id).write_single_coil(address, value)
