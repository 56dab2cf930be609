"""RtuProtocolClient: function codes 01/03/05/06/16 over a byte transport, one request at a time."""

import logging
import struct
import time
from typing import Protocol

import serial

from .errors import ModbusExceptionResponse, ProtocolError, TransportError
from .frame import Frame, build_frame, parse_frame
from .types import FunctionCode

logger = logging.getLogger(__name__)

# addr + func + exception code + CRC
_EXCEPTION_FRAME_LENGTH = 5


class ByteTransport(Protocol):
    """The subset of serial.Serial the protocol client needs."""

    def reset_input_buffer(self) -> None: ...

    def reset_output_buffer(self) -> None: ...

    def write(self, data: bytes) -> int | None: ...

    def read(self, size: int = 1) -> bytes: ...


class RtuProtocolClient:
    """
    Modbus RTU master protocol over a byte transport.

    Each call clears the transport buffers, writes the request, waits settle_delay,
    reads exactly the expected response length and validates it. Failures raise
    ProtocolError/TransportError; there is no retry at this layer.
    """

    def __init__(self, transport: ByteTransport, settle_delay: float = 0.05) -> None:
        self._transport = transport
        self._settle_delay = settle_delay

    def _transact(self, request: bytes, expected_length: int, *, address: int) -> Frame:
        slave_id = request[0]
        function_code = request[1]
        try:
            self._transport.reset_input_buffer()
            self._transport.reset_output_buffer()
            logger.debug("TX slave %d: %s", slave_id, request.hex(" ").upper())
            self._transport.write(request)
            if self._settle_delay > 0:
                time.sleep(self._settle_delay)
            raw = bytes(self._transport.read(expected_length))
        except (serial.SerialException, OSError) as e:
            raise TransportError(str(e), slave_id=slave_id, address=address, cause=e) from e
        logger.debug("RX slave %d: %s", slave_id, raw.hex(" ").upper() or "(none)")

        if not raw:
            raise TransportError(
                f"No response from slave {slave_id} (timeout)",
                slave_id=slave_id,
                address=address,
            )
        if len(raw) >= _EXCEPTION_FRAME_LENGTH and raw[1] == (function_code | 0x80):
            frame = parse_frame(raw[:_EXCEPTION_FRAME_LENGTH])
            raise ModbusExceptionResponse(function_code, frame.payload[0], slave_id=slave_id, address=address)
        if len(raw) < expected_length:
            raise ProtocolError(
                f"Short response: expected {expected_length} bytes, got {len(raw)}",
                slave_id=slave_id,
                address=address,
            )

        try:
            frame = parse_frame(raw)
        except ProtocolError as e:
            raise ProtocolError(str(e), slave_id=slave_id, address=address) from e
        if frame.slave_id != slave_id:
            raise ProtocolError(
                f"Response from slave {frame.slave_id}, expected {slave_id}",
                slave_id=slave_id,
                address=address,
            )
        if frame.function_code != function_code:
            raise ProtocolError(
                f"Function code 0x{frame.function_code:02X} in response, expected 0x{function_code:02X}",
                slave_id=slave_id,
                address=address,
            )
        return frame

    def read_holding_registers(self, slave_id: int, start: int, count: int) -> list[int]:
        """Function 03: return count big-endian register values starting at start."""
        request = build_frame(slave_id, FunctionCode.READ_HOLDING_REGISTERS, struct.pack(">HH", start, count))
        frame = self._transact(request, 5 + count * 2, address=start)
        byte_count = frame.payload[0]
        if byte_count != count * 2:
            raise ProtocolError(
                f"Byte count {byte_count} does not match {count} requested registers",
                slave_id=slave_id,
                address=start,
            )
        return list(struct.unpack(f">{count}H", frame.payload[1 : 1 + byte_count]))

    def read_coils(self, slave_id: int, start: int, count: int) -> list[bool]:
        """Function 01: return count coil states starting at start (LSB of first byte = start)."""
        request = build_frame(slave_id, FunctionCode.READ_COILS, struct.pack(">HH", start, count))
        n_bytes = (count + 7) // 8
        frame = self._transact(request, 5 + n_bytes, address=start)
        if frame.payload[0] != n_bytes:
            raise ProtocolError(
                f"Byte count {frame.payload[0]} does not match {count} requested coils",
                slave_id=slave_id,
                address=start,
            )
        data = frame.payload[1:]
        return [bool((data[i // 8] >> (i % 8)) & 0x01) for i in range(count)]

    def write_single_coil(self, slave_id: int, address: int, value: bool) -> None:
        """Function 05: 0xFF00 for on, 0x0000 for off; the reply must echo the request."""
        request = build_frame(
            slave_id,
            FunctionCode.WRITE_SINGLE_COIL,
            struct.pack(">HH", address, 0xFF00 if value else 0x0000),
        )
        self._expect_echo(request, address)

    def write_single_register(self, slave_id: int, address: int, value: int) -> None:
        """Function 06: the reply must echo address and value."""
        request = build_frame(slave_id, FunctionCode.WRITE_SINGLE_REGISTER, struct.pack(">HH", address, value))
        self._expect_echo(request, address)

    def write_multiple_registers(self, slave_id: int, start: int, values: list[int]) -> None:
        """Function 16: the reply carries start address and register count."""
        count = len(values)
        payload = struct.pack(f">HHB{count}H", start, count, count * 2, *values)
        request = build_frame(slave_id, FunctionCode.WRITE_MULTIPLE_REGISTERS, payload)
        frame = self._transact(request, 8, address=start)
        echoed_start, echoed_count = struct.unpack(">HH", frame.payload[:4])
        if (echoed_start, echoed_count) != (start, count):
            raise ProtocolError(
                f"Write multiple reply ({echoed_start}, {echoed_count}) does not match ({start}, {count})",
                slave_id=slave_id,
                address=start,
            )

    def _expect_echo(self, request: bytes, address: int) -> None:
        frame = self._transact(request, len(request), address=address)
        if frame.payload != request[2:-2]:
            raise ProtocolError(
                f"Echo mismatch: sent {request[2:-2].hex(' ').upper()}, got {frame.payload.hex(' ').upper()}",
                slave_id=request[0],
                address=address,
            )
