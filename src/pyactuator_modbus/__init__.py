"""pyactuator-modbus: Modbus RTU control of electric valve actuators, on hardware or simulated."""

__version__ = "0.1.0"

from .capabilities import (
    Product,
    available_bits,
    is_bit_available,
    is_register_107_lower_half_available,
    is_register_available,
    product_name,
)
from .errors import (
    ActuatorModbusError,
    ModbusExceptionResponse,
    ModbusIOError,
    NotConnectedError,
    NotFoundError,
    PreconditionError,
    ProtocolError,
    TransportError,
    ValidationError,
)
from .master import ActuatorMaster, HardwareMaster, SimulatedMaster
from .model import (
    ActuatorConfig,
    ActuatorSnapshot,
    DeviceConfig,
    DeviceStatus,
    HostCommands,
    Register11Flags,
    Register12Flags,
    RelayConfig,
)
from .session import ActuatorSession, scan
from .simulator import ActuatorSimulator
from .types import Parity, SerialSettings

__all__ = [
    "__version__",
    "ActuatorConfig",
    "ActuatorMaster",
    "ActuatorModbusError",
    "ActuatorSession",
    "ActuatorSimulator",
    "ActuatorSnapshot",
    "DeviceConfig",
    "DeviceStatus",
    "HardwareMaster",
    "HostCommands",
    "ModbusExceptionResponse",
    "ModbusIOError",
    "NotConnectedError",
    "NotFoundError",
    "Parity",
    "PreconditionError",
    "Product",
    "ProtocolError",
    "Register11Flags",
    "Register12Flags",
    "RelayConfig",
    "SerialSettings",
    "SimulatedMaster",
    "TransportError",
    "ValidationError",
    "available_bits",
    "is_bit_available",
    "is_register_107_lower_half_available",
    "is_register_available",
    "product_name",
    "scan",
]
