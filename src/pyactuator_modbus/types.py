"""Core protocol types: function codes, serial settings, register map addresses and limits."""

from dataclasses import dataclass
from enum import Enum, IntEnum

from .errors import ValidationError


class FunctionCode(IntEnum):
    """Modbus RTU function codes supported by the protocol client."""

    READ_COILS = 0x01
    READ_HOLDING_REGISTERS = 0x03
    WRITE_SINGLE_COIL = 0x05
    WRITE_SINGLE_REGISTER = 0x06
    WRITE_MULTIPLE_REGISTERS = 0x10


class Parity(str, Enum):
    """Serial parity; values are the pyserial parity constants."""

    NONE = "N"
    EVEN = "E"
    ODD = "O"


# Address space shared by the hardware and simulated masters
REGISTER_SPACE = 512
COIL_COUNT = 16
MAX_READ_REGISTERS = 125
MAX_WRITE_REGISTERS = 123
MIN_SLAVE_ID = 1
MAX_SLAVE_ID = 247

# Holding register map
REG_ALARMS = 0
REG_OPERATING_STATUS = 3
REG_RELAY_DI_STATUS = 4
REG_HOST_COMMANDS = 10
REG_FLAGS_11 = 11
REG_FLAGS_12 = 12
REG_POSITION_SETPOINT = 20
REG_ACTUAL_POSITION = 23
REG_VALVE_TORQUE = 24
REG_ANALOG_INPUT_1 = 25
REG_PST_RESULT = 29
REG_PRODUCT_ID = 100
REG_CONTROL_MODE = 101
REG_DEADBAND_ADAPTER = 102
REG_RELAYS_START = 103
REG_FAILSAFE = 107
REG_ESD = 108
REG_LOSS_COMM = 109
REG_BAUD = 110
REG_NETWORK = 111
REG_TORQUE_LIMITS = 112
REG_LIMIT_SWITCHES = 113
REG_OPEN_SPEED = 114
REG_CLOSE_SPEED = 115
REG_CALIBRATE = 200
REG_RESET_ERRORS = 201
REG_CALIBRATION_START = 500

COIL_ENABLE = 0

POSITION_MIN = 0
POSITION_MAX = 4095
TORQUE_MIN = 15
TORQUE_MAX = 100


@dataclass(frozen=True)
class SerialSettings:
    """Serial link parameters for the hardware master (8 data bits, RTU framing)."""

    port: str
    baudrate: int = 9600
    parity: Parity = Parity.NONE
    stop_bits: int = 1
    data_bits: int = 8
    timeout: float = 1.0
    settle_delay: float = 0.05

    def __post_init__(self) -> None:
        if not self.port:
            raise ValidationError("Serial port name cannot be empty")
        if self.baudrate <= 0:
            raise ValidationError(f"baudrate must be positive, got {self.baudrate}")
        if self.stop_bits not in (1, 2):
            raise ValidationError(f"stop_bits must be 1 or 2, got {self.stop_bits}")
        if self.data_bits != 8:
            raise ValidationError(f"data_bits must be 8 for Modbus RTU, got {self.data_bits}")
        if self.timeout <= 0:
            raise ValidationError(f"timeout must be positive, got {self.timeout}")
        if self.settle_delay < 0:
            raise ValidationError(f"settle_delay must be >= 0, got {self.settle_delay}")
        if not isinstance(self.parity, Parity):
            object.__setattr__(self, "parity", parse_parity(str(self.parity)))


def parse_parity(value: str) -> Parity:
    """Parse a parity name or letter (none/even/odd, N/E/O)."""
    v = value.strip().upper()
    for p in Parity:
        if v in (p.value, p.name):
            return p
    raise ValidationError(f"Invalid parity: {value!r}")
