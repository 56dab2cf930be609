"""ActuatorSimulator: one virtual slave with a register bank and a periodic motion tick."""

import logging
import threading

from .capabilities import Product
from .errors import ValidationError
from .types import (
    COIL_COUNT,
    COIL_ENABLE,
    POSITION_MAX,
    POSITION_MIN,
    REG_ACTUAL_POSITION,
    REG_CALIBRATE,
    REG_CALIBRATION_START,
    REG_CLOSE_SPEED,
    REG_DEADBAND_ADAPTER,
    REG_ESD,
    REG_HOST_COMMANDS,
    REG_LIMIT_SWITCHES,
    REG_NETWORK,
    REG_OPEN_SPEED,
    REG_OPERATING_STATUS,
    REG_POSITION_SETPOINT,
    REG_PRODUCT_ID,
    REG_RESET_ERRORS,
    REG_BAUD,
    REG_CONTROL_MODE,
    REG_TORQUE_LIMITS,
    REG_VALVE_TORQUE,
    REGISTER_SPACE,
    TORQUE_MAX,
    TORQUE_MIN,
)

logger = logging.getLogger(__name__)

# Register 10 host command bits
CMD_OPEN = 1 << 0
CMD_CLOSE = 1 << 1
CMD_STOP = 1 << 2
CMD_ESD = 1 << 3
CMD_SOFT_SETUP = 1 << 15

# Register 3 operating status bits
STATUS_OPENING = 1 << 4
STATUS_CLOSING = 1 << 5
STATUS_STOP_MODE = 1 << 8
STATUS_SETUP_MODE = 1 << 9

# ESD function (register 108 LH)
ESD_STAY_PUT = 0
ESD_GO_OPEN = 1
ESD_GO_CLOSE = 2
ESD_GO_TO_POSITION = 3

DEFAULT_TORQUE = 50


def _clamp_torque(value: int) -> int:
    return max(TORQUE_MIN, min(TORQUE_MAX, value))


class ActuatorSimulator:
    """
    Simulated electric valve actuator answering on one slave id.

    Holds a 512-register bank and 16 coils. Every tick processes the register 10
    host commands (Stop > ESD > Open > Close), steps the position toward the
    target by the driving torque percentage, auto-clears Open/Close/ESD once the
    target is reached, and refreshes the mirrored status registers.

    All register access and the tick share one lock per instance, so reads and
    writes from masters never interleave with a half-applied tick.
    """

    def __init__(
        self,
        slave_id: int,
        initial_position: int = 0,
        product_id: int = Product.S7X,
        tick_interval: float = 0.1,
        calibration_delay: float = 3.0,
    ) -> None:
        if not POSITION_MIN <= initial_position <= POSITION_MAX:
            raise ValidationError(f"Initial position out of range: {initial_position}")
        self.slave_id = slave_id
        self.product_id = int(product_id)
        self.tick_interval = tick_interval
        self.calibration_delay = calibration_delay

        self._lock = threading.RLock()
        self._registers = [0] * REGISTER_SPACE
        self._coils = [False] * COIL_COUNT

        self._current_position = initial_position
        self._target_position = initial_position
        self._close_torque = DEFAULT_TORQUE
        self._open_torque = DEFAULT_TORQUE
        self._is_moving = False
        self._is_enabled = True

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._calibration_timer: threading.Timer | None = None

        self._initialize_registers()

    def _initialize_registers(self) -> None:
        regs = self._registers
        regs[REG_PRODUCT_ID] = self.product_id
        regs[REG_TORQUE_LIMITS] = (self._close_torque << 8) | self._open_torque
        regs[REG_CONTROL_MODE] = (0 << 8) | 1  # 2-wire discrete, modulation delay 1
        regs[REG_DEADBAND_ADAPTER] = (20 << 8) | 0
        regs[REG_ESD] = (50 << 8) | ESD_STAY_PUT
        regs[REG_BAUD] = (0 << 8) | 3  # 9600
        regs[REG_NETWORK] = (8 << 8) | 0
        regs[REG_LIMIT_SWITCHES] = (25 << 8) | 75
        regs[REG_OPEN_SPEED] = (70 << 8) | 50
        regs[REG_CLOSE_SPEED] = (30 << 8) | 50
        # Span calibration at odd offsets (AI1, AI2, AO1, AO2)
        for offset in (1, 3, 5, 7):
            regs[REG_CALIBRATION_START + offset] = POSITION_MAX
        self._update_status_registers()

    # ------------------------------------------------------------------
    # Tick loop
    # ------------------------------------------------------------------

    def start_simulation(self) -> None:
        """Start the background tick thread; no-op if already running."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name=f"actuator-sim-{self.slave_id}", daemon=True
        )
        self._thread.start()
        logger.info("Slave %d: simulation started", self.slave_id)

    def stop_simulation(self, timeout: float = 1.0) -> None:
        """Signal the tick thread to exit and wait up to timeout seconds."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
            if thread.is_alive():
                logger.warning("Slave %d: tick thread did not stop within %.1fs", self.slave_id, timeout)
        self._thread = None
        if self._calibration_timer is not None:
            self._calibration_timer.cancel()
            self._calibration_timer = None
        logger.info("Slave %d: simulation stopped", self.slave_id)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        while not self._stop_event.is_set():
            self.tick()
            self._stop_event.wait(self.tick_interval)

    def tick(self) -> None:
        """Advance the simulation by one step."""
        with self._lock:
            self._process_host_commands()

            if self._is_enabled and self._current_position != self._target_position:
                self._is_moving = True
                if self._current_position < self._target_position:
                    self._current_position = min(
                        self._current_position + self._open_torque, self._target_position
                    )
                else:
                    self._current_position = max(
                        self._current_position - self._close_torque, self._target_position
                    )
            else:
                self._is_moving = False

            if self._current_position == self._target_position:
                self._registers[REG_HOST_COMMANDS] &= ~(CMD_OPEN | CMD_CLOSE | CMD_ESD) & 0xFFFF

            self._update_status_registers()

    def _process_host_commands(self) -> None:
        reg10 = self._registers[REG_HOST_COMMANDS]
        if reg10 & CMD_STOP:
            self._target_position = self._current_position
            self._is_moving = False
        elif reg10 & CMD_ESD:
            self._process_esd()
        elif reg10 & CMD_OPEN:
            self._target_position = POSITION_MAX
        elif reg10 & CMD_CLOSE:
            self._target_position = POSITION_MIN

    def _process_esd(self) -> None:
        reg108 = self._registers[REG_ESD]
        function = reg108 & 0xFF
        if function == ESD_STAY_PUT:
            self._target_position = self._current_position
        elif function == ESD_GO_OPEN:
            self._target_position = POSITION_MAX
        elif function == ESD_GO_CLOSE:
            self._target_position = POSITION_MIN
        elif function == ESD_GO_TO_POSITION:
            percent = min((reg108 >> 8) & 0xFF, 100)
            self._target_position = (percent * POSITION_MAX) // 100
        else:
            logger.debug("Slave %d: unknown ESD function %d, ignoring", self.slave_id, function)
            return
        logger.debug("Slave %d: ESD function %d, target %d", self.slave_id, function, self._target_position)

    def _update_status_registers(self) -> None:
        regs = self._registers
        regs[REG_ACTUAL_POSITION] = self._current_position

        reg10 = regs[REG_HOST_COMMANDS]
        opening = self._is_moving and self._current_position < self._target_position
        closing = self._is_moving and self._current_position > self._target_position
        reg3 = 0
        if opening:
            reg3 |= STATUS_OPENING
        if closing:
            reg3 |= STATUS_CLOSING
        if reg10 & CMD_STOP:
            reg3 |= STATUS_STOP_MODE
        if reg10 & CMD_SOFT_SETUP:
            reg3 |= STATUS_SETUP_MODE
        regs[REG_OPERATING_STATUS] = reg3

        # 0-4095 scale, 0.024% per unit
        if opening:
            regs[REG_VALVE_TORQUE] = (self._open_torque * POSITION_MAX) // 100
        elif closing:
            regs[REG_VALVE_TORQUE] = (self._close_torque * POSITION_MAX) // 100
        else:
            regs[REG_VALVE_TORQUE] = 0

        self._coils[COIL_ENABLE] = self._is_enabled

    # ------------------------------------------------------------------
    # Register and coil access (bounds are checked by the master)
    # ------------------------------------------------------------------

    def read_holding_registers(self, start: int, count: int) -> list[int]:
        with self._lock:
            return self._registers[start : start + count]

    def read_coils(self, start: int, count: int) -> list[bool]:
        with self._lock:
            return self._coils[start : start + count]

    def write_single_register(self, address: int, value: int) -> None:
        with self._lock:
            self._write_register(address, value)
            self._update_status_registers()

    def write_multiple_registers(self, start: int, values: list[int]) -> None:
        with self._lock:
            for offset, value in enumerate(values):
                self._write_register(start + offset, value)
            self._update_status_registers()

    def _write_register(self, address: int, value: int) -> None:
        logger.debug("Slave %d: write register %d = 0x%04X", self.slave_id, address, value)
        if address == REG_POSITION_SETPOINT:
            if value > POSITION_MAX:
                logger.warning(
                    "Slave %d: position %d out of range [%d-%d], ignored",
                    self.slave_id,
                    value,
                    POSITION_MIN,
                    POSITION_MAX,
                )
                return
            self._registers[address] = value
            self._target_position = value
            logger.debug("Slave %d: moving to position %d", self.slave_id, value)
            return

        if address == REG_TORQUE_LIMITS:
            self._close_torque = _clamp_torque((value >> 8) & 0xFF)
            self._open_torque = _clamp_torque(value & 0xFF)
            self._registers[address] = (self._close_torque << 8) | self._open_torque
            return

        self._registers[address] = value
        if address == REG_HOST_COMMANDS:
            if value & CMD_STOP:
                self._target_position = self._current_position
                self._is_moving = False
        elif address == REG_CALIBRATE and value == 1:
            self._start_calibration()
        elif address == REG_RESET_ERRORS and value == 1:
            logger.info("Slave %d: errors reset", self.slave_id)

    def _start_calibration(self) -> None:
        if self._calibration_timer is not None:
            self._calibration_timer.cancel()
        logger.info("Slave %d: calibration started", self.slave_id)
        self._calibration_timer = threading.Timer(self.calibration_delay, self._finish_calibration)
        self._calibration_timer.daemon = True
        self._calibration_timer.start()

    def _finish_calibration(self) -> None:
        with self._lock:
            self._current_position = 0
            self._target_position = 0
            self._is_moving = False
            self._calibration_timer = None
            self._update_status_registers()
        logger.info("Slave %d: calibration complete", self.slave_id)

    def write_single_coil(self, address: int, value: bool) -> None:
        with self._lock:
            self._coils[address] = value
            if address == COIL_ENABLE:
                self._is_enabled = value
                if not value:
                    self._target_position = self._current_position
                    self._is_moving = False
                logger.info("Slave %d: %s", self.slave_id, "enabled" if value else "disabled")
            self._update_status_registers()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def current_position(self) -> int:
        with self._lock:
            return self._current_position

    @property
    def target_position(self) -> int:
        with self._lock:
            return self._target_position

    @property
    def close_torque(self) -> int:
        with self._lock:
            return self._close_torque

    @property
    def open_torque(self) -> int:
        with self._lock:
            return self._open_torque

    @property
    def is_moving(self) -> bool:
        with self._lock:
            return self._is_moving

    @property
    def is_enabled(self) -> bool:
        with self._lock:
            return self._is_enabled

    def __repr__(self) -> str:
        return (
            f"ActuatorSimulator(slave_id={self.slave_id}, product_id=0x{self.product_id:04X}, "
            f"position={self._current_position}, target={self._target_position})"
        )
