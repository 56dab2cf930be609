"""RTU frame codec: CRC16 (poly 0xA001, init 0xFFFF) and frame build/parse."""

import struct
from dataclasses import dataclass

from .errors import ProtocolError

# Smallest valid frame: address, function, one payload byte, CRC low, CRC high
MIN_FRAME_LENGTH = 4


def _build_crc_table() -> tuple[int, ...]:
    table = []
    for byte in range(256):
        crc = byte
        for _ in range(8):
            if crc & 0x0001:
                crc = (crc >> 1) ^ 0xA001
            else:
                crc >>= 1
        table.append(crc)
    return tuple(table)


_CRC_TABLE = _build_crc_table()


def crc16(data: bytes) -> int:
    """Return the Modbus CRC16 of data (reflected polynomial 0xA001, initial value 0xFFFF)."""
    crc = 0xFFFF
    for b in data:
        crc = (crc >> 8) ^ _CRC_TABLE[(crc ^ b) & 0xFF]
    return crc


def append_crc(data: bytes) -> bytes:
    """Append the CRC to data, low byte first."""
    return bytes(data) + struct.pack("<H", crc16(data))


def check_crc(frame: bytes) -> bool:
    """True iff the last two bytes of frame are the little-endian CRC of the bytes before them."""
    if len(frame) < 3:
        return False
    (received,) = struct.unpack("<H", frame[-2:])
    return received == crc16(frame[:-2])


def build_frame(slave_id: int, function_code: int, payload: bytes = b"") -> bytes:
    """Build [addr, func, payload..., crcLow, crcHigh]."""
    if not 0 <= slave_id <= 0xFF:
        raise ValueError(f"slave_id must fit in one byte, got {slave_id}")
    if not 0 <= function_code <= 0xFF:
        raise ValueError(f"function_code must fit in one byte, got {function_code}")
    return append_crc(bytes((slave_id, function_code)) + bytes(payload))


@dataclass(frozen=True)
class Frame:
    """A parsed RTU frame with the CRC already verified and stripped."""

    slave_id: int
    function_code: int
    payload: bytes

    @property
    def is_exception(self) -> bool:
        return bool(self.function_code & 0x80)


def parse_frame(raw: bytes) -> Frame:
    """
    Validate length and CRC, then split raw into address, function code and payload.

    Raises ProtocolError on a short frame or CRC mismatch.
    """
    if len(raw) < MIN_FRAME_LENGTH:
        raise ProtocolError(f"Short frame: {len(raw)} bytes ({bytes(raw).hex(' ').upper() or 'empty'})")
    if not check_crc(raw):
        (received,) = struct.unpack("<H", raw[-2:])
        raise ProtocolError(
            f"CRC mismatch: received 0x{received:04X}, calculated 0x{crc16(raw[:-2]):04X}"
        )
    return Frame(slave_id=raw[0], function_code=raw[1], payload=bytes(raw[2:-2]))
