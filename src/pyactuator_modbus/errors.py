"""Exception hierarchy for pyactuator-modbus: protocol, transport, validation and precondition errors."""


class ActuatorModbusError(Exception):
    """Base exception for pyactuator-modbus."""

    pass


class ModbusIOError(ActuatorModbusError):
    """Raised when a Modbus read/write fails on the link (base for protocol and transport errors)."""

    def __init__(
        self,
        message: str,
        *,
        slave_id: int | None = None,
        address: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.slave_id = slave_id
        self.address = address
        self.cause = cause
        super().__init__(message)


class ProtocolError(ModbusIOError):
    """Raised on CRC mismatch, short or garbled response, or an echo that does not match the request."""

    pass


class ModbusExceptionResponse(ProtocolError):
    """Raised when the slave answers with a Modbus exception frame (function code | 0x80)."""

    def __init__(
        self,
        function_code: int,
        exception_code: int,
        *,
        slave_id: int | None = None,
        address: int | None = None,
    ) -> None:
        self.function_code = function_code
        self.exception_code = exception_code
        super().__init__(
            f"Slave {slave_id} returned exception 0x{exception_code:02X} for function 0x{function_code:02X}",
            slave_id=slave_id,
            address=address,
        )


class TransportError(ModbusIOError):
    """Raised when the serial link times out or the port is unavailable."""

    pass


class NotConnectedError(ActuatorModbusError):
    """Raised when a register/coil operation is attempted before connect()."""

    def __init__(self, message: str = "Not connected to device") -> None:
        super().__init__(message)


class NotFoundError(ActuatorModbusError):
    """Raised when a simulated operation targets an unknown slave id."""

    def __init__(self, slave_id: int, message: str | None = None) -> None:
        self.slave_id = slave_id
        super().__init__(message or f"Slave {slave_id} not found")


class ValidationError(ActuatorModbusError, ValueError):
    """Raised when an input is out of range; always raised before any I/O is attempted."""

    pass


class PreconditionError(ActuatorModbusError):
    """Raised when the device is not in the operating mode an operation requires."""

    pass
