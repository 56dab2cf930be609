"""ActuatorSession: per-slave status cache, background polling and guarded command operations."""

import logging
import threading
from collections.abc import Callable, Iterable
from datetime import datetime

from .capabilities import available_runs, is_register_available
from .codec import (
    CONFIG_BLOCKS,
    STATUS_BLOCKS,
    decode_device_config,
    decode_status,
    decode_torque,
    encode_calibration,
    encode_device_config,
    encode_torque,
    validate_position,
)
from .errors import ModbusIOError, NotFoundError, PreconditionError
from .master import ActuatorMaster
from .model import ActuatorConfig, ActuatorSnapshot, DeviceConfig, PstResult
from .types import (
    COIL_ENABLE,
    MAX_READ_REGISTERS,
    MAX_WRITE_REGISTERS,
    REG_CALIBRATE,
    REG_HOST_COMMANDS,
    REG_POSITION_SETPOINT,
    REG_PRODUCT_ID,
    REG_PST_RESULT,
    REG_RESET_ERRORS,
    REG_TORQUE_LIMITS,
)

logger = logging.getLogger(__name__)

StatusListener = Callable[[ActuatorSnapshot], None]

# Register 10 bits
_CMD_OPEN = 1 << 0
_CMD_CLOSE = 1 << 1
_CMD_STOP = 1 << 2
_CMD_ESD = 1 << 3
_CMD_SOFT_SETUP = 1 << 15

_DEFAULT_TORQUE = 50


def _coalesce_runs(values: dict[int, int], max_count: int = MAX_WRITE_REGISTERS) -> list[tuple[int, list[int]]]:
    """Group {address: value} into contiguous (start, [values]) runs of at most max_count registers."""
    runs: list[tuple[int, list[int]]] = []
    for address in sorted(values):
        if runs:
            start, run = runs[-1]
            if address == start + len(run) and len(run) < max_count:
                run.append(values[address])
                continue
        runs.append((address, [values[address]]))
    return runs


class ActuatorSession:
    """
    Client-side handle for one actuator on a shared ActuatorMaster.

    update_status() reads status, configuration and product id and replaces the
    cached snapshot in one step; readers of `current` always see a complete
    snapshot. start_polling() repeats it on a background thread; failures there
    are logged and kept in last_poll_error instead of being raised.
    """

    def __init__(self, master: ActuatorMaster, slave_id: int) -> None:
        self.master = master
        self.slave_id = slave_id
        self._snapshot = ActuatorSnapshot()
        self._snapshot_lock = threading.Lock()
        self._listeners: list[StatusListener] = []
        self._poll_thread: threading.Thread | None = None
        self._poll_stop = threading.Event()
        self.last_poll_error: Exception | None = None

    def __repr__(self) -> str:
        return f"ActuatorSession(slave_id={self.slave_id})"

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def current(self) -> ActuatorSnapshot:
        """Last published snapshot (defaults until the first successful update)."""
        with self._snapshot_lock:
            return self._snapshot

    def add_listener(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: StatusListener) -> None:
        self._listeners.remove(listener)

    def read_product_id(self) -> int:
        return self.master.read_holding_registers(self.slave_id, REG_PRODUCT_ID, 1)[0]

    def _read_blocks(self, product_id: int | None, blocks: Iterable[tuple[int, int]]) -> dict[int, int]:
        """Read each block in runs of registers the product implements."""
        registers: dict[int, int] = {}
        for block_start, block_count in blocks:
            for start, count in available_runs(product_id, block_start, block_count):
                for offset in range(0, count, MAX_READ_REGISTERS):
                    n = min(MAX_READ_REGISTERS, count - offset)
                    values = self.master.read_holding_registers(self.slave_id, start + offset, n)
                    registers.update(zip(range(start + offset, start + offset + n), values))
        return registers

    def update_status(self) -> ActuatorSnapshot:
        """Read status, configuration and torque, publish the new snapshot and notify listeners."""
        product_id = self.read_product_id()
        registers = self._read_blocks(product_id, STATUS_BLOCKS + CONFIG_BLOCKS)
        close_torque = open_torque = _DEFAULT_TORQUE
        if REG_TORQUE_LIMITS in registers:
            close_torque, open_torque = decode_torque(registers[REG_TORQUE_LIMITS])

        snapshot = ActuatorSnapshot(
            product_id=product_id,
            status=decode_status(registers, product_id),
            config=decode_device_config(registers, product_id),
            close_torque=close_torque,
            open_torque=open_torque,
            timestamp=datetime.now(),
        )
        with self._snapshot_lock:
            self._snapshot = snapshot
        for listener in list(self._listeners):
            listener(snapshot)
        return snapshot

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    @property
    def is_polling(self) -> bool:
        thread = self._poll_thread
        return thread is not None and thread.is_alive() and not self._poll_stop.is_set()

    def start_polling(self, interval_ms: int = 1000) -> None:
        """
        Start the background poll loop; no-op if it is already running.

        A previous loop that was told to stop but has not exited yet is joined
        first, so two loops never read for the same session.
        """
        if self.is_polling:
            logger.info("Polling already active for slave %d", self.slave_id)
            return
        previous = self._poll_thread
        if previous is not None and previous.is_alive():
            logger.info("Waiting for previous poll loop of slave %d to exit", self.slave_id)
            previous.join()
        stop = threading.Event()
        self._poll_stop = stop
        self._poll_thread = threading.Thread(
            target=self._poll_loop,
            args=(stop, interval_ms / 1000.0),
            name=f"actuator-poll-{self.slave_id}",
            daemon=True,
        )
        self._poll_thread.start()
        logger.info("Started polling slave %d every %d ms", self.slave_id, interval_ms)

    def stop_polling(self, timeout: float = 2.0) -> None:
        """Signal the poll loop and wait up to timeout seconds for it to exit."""
        thread = self._poll_thread
        if thread is None:
            return
        self._poll_stop.set()
        thread.join(timeout)
        if thread.is_alive():
            # keep the handle so the next start_polling waits for this loop
            logger.warning("Poll loop for slave %d did not stop within %.1fs", self.slave_id, timeout)
            return
        self._poll_thread = None
        logger.info("Stopped polling slave %d", self.slave_id)

    def _poll_loop(self, stop: threading.Event, interval_s: float) -> None:
        while not stop.is_set():
            try:
                self.update_status()
                self.last_poll_error = None
            except Exception as e:
                self.last_poll_error = e
                logger.warning("Error polling slave %d: %s", self.slave_id, e)
            stop.wait(interval_s)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def _read_host_commands(self) -> int:
        return self.master.read_holding_registers(self.slave_id, REG_HOST_COMMANDS, 1)[0]

    def _update_host_commands(self, set_bits: int = 0, clear_bits: int = 0) -> None:
        """Read-modify-write register 10, leaving the other command bits as they are."""
        value = self._read_host_commands()
        value = (value | set_bits) & ~clear_bits & 0xFFFF
        self.master.write_single_register(self.slave_id, REG_HOST_COMMANDS, value)

    def move_to_position(self, position: int) -> None:
        validate_position(position)
        self.master.write_single_register(self.slave_id, REG_POSITION_SETPOINT, position)
        logger.debug("Slave %d: moving to position %d", self.slave_id, position)

    def set_torque(self, close_torque: int, open_torque: int) -> None:
        value = encode_torque(close_torque, open_torque)
        self.master.write_single_register(self.slave_id, REG_TORQUE_LIMITS, value)
        logger.debug("Slave %d: torque close=%d open=%d", self.slave_id, close_torque, open_torque)

    def stop(self, enable: bool = True) -> None:
        """Set (enable=True) or clear the Stop command bit from fresh device status."""
        status = self.update_status().status
        if not enable and status.setup_mode:
            raise PreconditionError(f"Slave {self.slave_id}: cannot leave Stop Mode while Setup Mode is active")
        if enable:
            self._update_host_commands(set_bits=_CMD_STOP)
        else:
            self._update_host_commands(clear_bits=_CMD_STOP)

    def open(self) -> None:
        self._update_host_commands(set_bits=_CMD_OPEN, clear_bits=_CMD_CLOSE)

    def close(self) -> None:
        self._update_host_commands(set_bits=_CMD_CLOSE, clear_bits=_CMD_OPEN)

    def emergency_shutdown(self) -> None:
        self._update_host_commands(set_bits=_CMD_ESD)

    def set_setup_mode(self, enabled: bool) -> None:
        """Enter or leave Setup Mode; entering requires the device to be in Stop Mode."""
        status = self.update_status().status
        if enabled and not status.stop_mode:
            raise PreconditionError(f"Slave {self.slave_id}: Setup Mode requires Stop Mode")
        if enabled:
            self._update_host_commands(set_bits=_CMD_SOFT_SETUP)
        else:
            self._update_host_commands(clear_bits=_CMD_SOFT_SETUP)

    def reset_errors(self) -> None:
        self.master.write_single_register(self.slave_id, REG_RESET_ERRORS, 1)

    def set_enabled(self, enabled: bool) -> None:
        self.master.write_single_coil(self.slave_id, COIL_ENABLE, enabled)

    def start_calibration(self) -> None:
        self.master.write_single_register(self.slave_id, REG_CALIBRATE, 1)
        logger.info("Slave %d: calibration started", self.slave_id)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def _require_setup_mode(self) -> ActuatorSnapshot:
        snapshot = self.current
        if not snapshot.status.setup_mode:
            raise PreconditionError(f"Slave {self.slave_id}: configuration writes require Setup Mode")
        return snapshot

    def _write_registers(self, values: dict[int, int]) -> None:
        for start, run in _coalesce_runs(values):
            if len(run) == 1:
                self.master.write_single_register(self.slave_id, start, run[0])
            else:
                self.master.write_multiple_registers(self.slave_id, start, run)

    def apply_configuration(self, config: ActuatorConfig) -> None:
        """
        Write torque limits and the full DeviceConfig, then leave Setup Mode.

        Requires the cached status to show Setup Mode. Everything is encoded
        and validated before the first write.
        """
        snapshot = self._require_setup_mode()
        product_id = snapshot.product_id if snapshot.product_id is not None else config.product_id
        torque = encode_torque(config.close_torque, config.open_torque)
        registers = encode_device_config(config.config, product_id)

        logger.info("Applying configuration to slave %d", self.slave_id)
        if is_register_available(product_id, REG_TORQUE_LIMITS):
            self.master.write_single_register(self.slave_id, REG_TORQUE_LIMITS, torque)
        self._write_registers(registers)
        self._update_host_commands(clear_bits=_CMD_SOFT_SETUP)
        logger.info("Configuration applied to slave %d", self.slave_id)

    def write_calibration(self, config: DeviceConfig) -> None:
        """Write analog zero/span calibration (500-507), then leave Setup Mode."""
        snapshot = self._require_setup_mode()
        self._write_registers(encode_calibration(config, snapshot.product_id))
        self._update_host_commands(clear_bits=_CMD_SOFT_SETUP)

    def read_configuration(self) -> ActuatorConfig:
        """Read product id, torque and PST result where implemented, and the DeviceConfig."""
        product_id = self.read_product_id()
        close_torque = open_torque = _DEFAULT_TORQUE
        if is_register_available(product_id, REG_TORQUE_LIMITS):
            value = self.master.read_holding_registers(self.slave_id, REG_TORQUE_LIMITS, 1)[0]
            close_torque, open_torque = decode_torque(value)
            close_torque = close_torque or _DEFAULT_TORQUE
            open_torque = open_torque or _DEFAULT_TORQUE
        pst_result = PstResult.NEVER_RUN
        if is_register_available(product_id, REG_PST_RESULT):
            raw = self.master.read_holding_registers(self.slave_id, REG_PST_RESULT, 1)[0]
            pst_result = decode_status({REG_PST_RESULT: raw}, product_id).pst_result
        registers = self._read_blocks(product_id, ((11, 2),) + CONFIG_BLOCKS)
        return ActuatorConfig(
            slave_id=self.slave_id,
            product_id=product_id,
            close_torque=close_torque,
            open_torque=open_torque,
            pst_result=pst_result,
            config=decode_device_config(registers, product_id),
        )


def scan(master: ActuatorMaster, slave_ids: Iterable[int]) -> list[int]:
    """Return the slave ids that answer a product id read."""
    found: list[int] = []
    for slave_id in slave_ids:
        try:
            master.read_holding_registers(slave_id, REG_PRODUCT_ID, 1)
        except (ModbusIOError, NotFoundError) as e:
            logger.debug("Slave %d: no answer (%s)", slave_id, e)
            continue
        found.append(slave_id)
    return found
