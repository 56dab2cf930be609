"""Register/bit-field codec: pure conversions between register images and the typed model."""

import logging
from collections.abc import Mapping
from enum import IntEnum
from typing import TypeVar

from .capabilities import (
    is_bit_available,
    is_register_107_lower_half_available,
    is_register_available,
)
from .errors import ValidationError
from .model import (
    RELAY_COUNT,
    CloseDirection,
    ControlMode,
    DeviceConfig,
    DeviceStatus,
    EhoType,
    EnabledState,
    FunctionAction,
    HostCommands,
    InputFunction,
    NetworkAdapter,
    NetworkBaudRate,
    NetworkCommParity,
    Polarity,
    PstResult,
    Register11Flags,
    Register12Flags,
    RelayConfig,
    RelayContactType,
    RelayMode,
    RelayTrigger,
    SeatMode,
    TriggerType,
)
from .types import (
    POSITION_MAX,
    POSITION_MIN,
    REG_CALIBRATION_START,
    REG_FAILSAFE,
    REG_FLAGS_11,
    REG_FLAGS_12,
    REG_HOST_COMMANDS,
    REG_RELAYS_START,
    TORQUE_MAX,
    TORQUE_MIN,
)

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=IntEnum)

# Register blocks read by a full status/config pass: (start, count)
STATUS_BLOCKS: tuple[tuple[int, int], ...] = ((0, 5), (10, 3), (23, 7))
CONFIG_BLOCKS: tuple[tuple[int, int], ...] = ((100, 16), (500, 8))

# (field, bit, enum); bit set means enum value 1
REGISTER_11_FIELDS: tuple[tuple[str, int, type[IntEnum]], ...] = (
    ("eho_type", 0, EhoType),
    ("local_input_function", 1, InputFunction),
    ("remote_input_function", 2, InputFunction),
    ("remote_esd_enabled", 3, EnabledState),
    ("loss_comm_enabled", 4, EnabledState),
    ("ai1_polarity", 5, Polarity),
    ("ai2_polarity", 6, Polarity),
    ("ao1_polarity", 7, Polarity),
    ("ao2_polarity", 8, Polarity),
    ("di1_open_trigger", 9, TriggerType),
    ("di2_close_trigger", 10, TriggerType),
    ("di3_stop_trigger", 11, TriggerType),
    ("di4_esd_trigger", 12, TriggerType),
    ("di5_pst_trigger", 13, TriggerType),
    ("close_direction", 14, CloseDirection),
    ("seat", 15, SeatMode),
)

REGISTER_12_FIELDS: tuple[tuple[str, int], ...] = (
    ("torque_backseat", 0),
    ("torque_retry", 1),
    ("remote_display", 2),
    ("leds", 3),
    ("open_inhibit", 4),
    ("close_inhibit", 5),
    ("local_esd", 6),
    ("esd_or_thermal", 7),
    ("esd_or_local", 8),
    ("esd_or_stop", 9),
    ("esd_or_inhibit", 10),
    ("esd_or_torque", 11),
    ("close_speed_control", 12),
    ("open_speed_control", 13),
)

HOST_COMMAND_BITS: tuple[tuple[str, int], ...] = (
    ("open", 0),
    ("close", 1),
    ("stop", 2),
    ("esd", 3),
    ("pst", 4),
    ("soft_setup", 15),
)

# (register, bit, DeviceStatus field)
STATUS_BITS: tuple[tuple[int, int, str], ...] = (
    (0, 0, "stall_alarm"),
    (0, 1, "valve_drift_alarm"),
    (0, 2, "esd_active_alarm"),
    (0, 3, "motor_thermal_alarm"),
    (0, 4, "loss_of_power_alarm"),
    (0, 13, "loss_of_signal_alarm"),
    (0, 14, "low_oil_alarm"),
    (0, 15, "unit_alarm_1"),
    (1, 15, "unit_alarm_2"),
    (2, 0, "sph_exceeded"),
    (2, 15, "unit_alert"),
    (3, 0, "limit_switch_open"),
    (3, 1, "limit_switch_close"),
    (3, 2, "torque_switch_open"),
    (3, 3, "torque_switch_close"),
    (3, 4, "valve_opening"),
    (3, 5, "valve_closing"),
    (3, 6, "local_mode"),
    (3, 7, "remote_mode"),
    (3, 8, "stop_mode"),
    (3, 9, "setup_mode"),
    (3, 10, "handwheel_pulled_out"),
    (4, 0, "relay_1_status"),
    (4, 1, "relay_2_status"),
    (4, 2, "relay_3_status"),
    (4, 3, "relay_4_status"),
    (4, 4, "relay_5_monitor_status"),
    (4, 5, "relay_6_status"),
    (4, 6, "relay_7_status"),
    (4, 7, "relay_8_status"),
    (4, 8, "relay_9_status"),
    (4, 9, "di1_open_status"),
    (4, 10, "di2_close_status"),
    (4, 11, "di3_stop_status"),
    (4, 12, "di4_esd_status"),
    (4, 13, "di5_pst_status"),
)

# (register, DeviceStatus field) for whole-word values
STATUS_WORDS: tuple[tuple[int, str], ...] = (
    (23, "position"),
    (24, "valve_torque"),
    (25, "analog_input_1"),
    (26, "analog_input_2"),
    (27, "analog_output_1"),
    (28, "analog_output_2"),
)
REG_PST = 29

CALIBRATION_FIELDS: tuple[str, ...] = (
    "ai1_zero_calibration",
    "ai1_span_calibration",
    "ai2_zero_calibration",
    "ai2_span_calibration",
    "ao1_zero_calibration",
    "ao1_span_calibration",
    "ao2_zero_calibration",
    "ao2_span_calibration",
)


# ---------------------------------------------------------------------------
# Byte packing and value clamps
# ---------------------------------------------------------------------------


def upper_byte(value: int) -> int:
    return (value >> 8) & 0xFF


def lower_byte(value: int) -> int:
    return value & 0xFF


def pack_bytes(upper: int, lower: int) -> int:
    """Pack two 8-bit values into one register (upper << 8 | lower)."""
    upper, lower = int(upper), int(lower)
    for name, v in (("upper", upper), ("lower", lower)):
        if not 0 <= v <= 0xFF:
            raise ValidationError(f"{name} byte out of range (0-255): {v}")
    return (upper << 8) | lower


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, int(value)))


def round_speed_control(value: int) -> int:
    """Clamp a speed-control percentage to 5-95 and snap it to a multiple of 5."""
    value = clamp(value, 5, 95)
    remainder = value % 5
    if remainder == 0:
        return value
    if remainder < 3:
        return value - remainder
    return min(95, value + (5 - remainder))


def _enum_or_default(enum_cls: type[E], raw: int, default: E) -> E:
    try:
        return enum_cls(raw)
    except ValueError:
        logger.debug("Invalid %s value %d, using %s", enum_cls.__name__, raw, default.name)
        return default


# ---------------------------------------------------------------------------
# Bit-flag registers
# ---------------------------------------------------------------------------


def encode_register_11(flags: Register11Flags, product_id: int | None = None) -> int:
    """Encode register 11; bits the product lacks are written as 0."""
    value = 0
    for name, bit, _enum in REGISTER_11_FIELDS:
        if is_bit_available(product_id, REG_FLAGS_11, bit) and int(getattr(flags, name)) == 1:
            value |= 1 << bit
    return value


def decode_register_11(value: int, product_id: int | None = None) -> Register11Flags:
    kwargs = {
        name: enum_cls((value >> bit) & 1)
        for name, bit, enum_cls in REGISTER_11_FIELDS
        if is_bit_available(product_id, REG_FLAGS_11, bit)
    }
    return Register11Flags(**kwargs)


def encode_register_12(flags: Register12Flags, product_id: int | None = None) -> int:
    value = 0
    for name, bit in REGISTER_12_FIELDS:
        if is_bit_available(product_id, REG_FLAGS_12, bit) and getattr(flags, name) == EnabledState.ENABLED:
            value |= 1 << bit
    return value


def decode_register_12(value: int, product_id: int | None = None) -> Register12Flags:
    kwargs = {
        name: EnabledState((value >> bit) & 1)
        for name, bit in REGISTER_12_FIELDS
        if is_bit_available(product_id, REG_FLAGS_12, bit)
    }
    return Register12Flags(**kwargs)


def encode_host_commands(commands: HostCommands, product_id: int | None = None) -> int:
    value = 0
    for name, bit in HOST_COMMAND_BITS:
        if getattr(commands, name) and is_bit_available(product_id, REG_HOST_COMMANDS, bit):
            value |= 1 << bit
    return value


def decode_host_commands(value: int, product_id: int | None = None) -> HostCommands:
    return HostCommands(
        **{
            name: bool(value & (1 << bit))
            for name, bit in HOST_COMMAND_BITS
            if is_bit_available(product_id, REG_HOST_COMMANDS, bit)
        }
    )


# ---------------------------------------------------------------------------
# Relays and torque
# ---------------------------------------------------------------------------


def encode_relay(relay: RelayConfig) -> int:
    """Pack one relay into a byte: trigger bits 0-5, mode bit 6, contact bit 7."""
    try:
        trigger = RelayTrigger(relay.trigger)
        mode = RelayMode(relay.mode)
        contact = RelayContactType(relay.contact)
    except ValueError as e:
        raise ValidationError(f"Invalid relay configuration: {e}") from e
    return trigger | (mode << 6) | (contact << 7)


def decode_relay(value: int) -> RelayConfig:
    default = RelayConfig()
    return RelayConfig(
        trigger=_enum_or_default(RelayTrigger, value & 0x3F, default.trigger),
        mode=RelayMode((value >> 6) & 1),
        contact=RelayContactType((value >> 7) & 1),
    )


def validate_torque(close_torque: int, open_torque: int) -> None:
    for name, v in (("close", close_torque), ("open", open_torque)):
        if not TORQUE_MIN <= v <= TORQUE_MAX:
            raise ValidationError(f"{name} torque out of range ({TORQUE_MIN}-{TORQUE_MAX}): {v}")


def encode_torque(close_torque: int, open_torque: int) -> int:
    """Register 112: close torque in the upper byte, open torque in the lower byte."""
    validate_torque(close_torque, open_torque)
    return pack_bytes(close_torque, open_torque)


def decode_torque(value: int) -> tuple[int, int]:
    """Return (close, open) from register 112; no range check on the way in."""
    return upper_byte(value), lower_byte(value)


def validate_position(position: int) -> None:
    if not POSITION_MIN <= position <= POSITION_MAX:
        raise ValidationError(f"Position out of range ({POSITION_MIN}-{POSITION_MAX}): {position}")


# ---------------------------------------------------------------------------
# DeviceStatus
# ---------------------------------------------------------------------------


def decode_status(registers: Mapping[int, int], product_id: int | None = None) -> DeviceStatus:
    """
    Decode registers 0-4, 10 and 23-29 into a DeviceStatus.

    Registers missing from the image, or that the product does not implement,
    leave their fields at the default.
    """
    status = DeviceStatus()
    for register, bit, name in STATUS_BITS:
        if register in registers and is_bit_available(product_id, register, bit):
            setattr(status, name, bool(registers[register] & (1 << bit)))
    if REG_HOST_COMMANDS in registers and is_register_available(product_id, REG_HOST_COMMANDS):
        status.host_commands = decode_host_commands(registers[REG_HOST_COMMANDS], product_id)
    for register, name in STATUS_WORDS:
        if register in registers and is_register_available(product_id, register):
            setattr(status, name, registers[register])
    if REG_PST in registers and is_register_available(product_id, REG_PST):
        status.pst_result = _enum_or_default(PstResult, registers[REG_PST], PstResult.NEVER_RUN)
    return status


def encode_status(status: DeviceStatus, product_id: int | None = None) -> dict[int, int]:
    """Build the register image a device reporting status would hold (used by the simulator and tests)."""
    registers: dict[int, int] = {}
    for register, bit, name in STATUS_BITS:
        if not is_register_available(product_id, register):
            continue
        value = registers.setdefault(register, 0)
        if getattr(status, name) and is_bit_available(product_id, register, bit):
            registers[register] = value | (1 << bit)
    if is_register_available(product_id, REG_HOST_COMMANDS):
        registers[REG_HOST_COMMANDS] = encode_host_commands(status.host_commands, product_id)
    for register, name in STATUS_WORDS:
        if is_register_available(product_id, register):
            registers[register] = int(getattr(status, name)) & 0xFFFF
    if is_register_available(product_id, REG_PST):
        registers[REG_PST] = int(status.pst_result)
    return registers


# ---------------------------------------------------------------------------
# DeviceConfig
# ---------------------------------------------------------------------------


def _check_relays(relays: list[RelayConfig]) -> None:
    if len(relays) != RELAY_COUNT:
        raise ValidationError(f"Expected {RELAY_COUNT} relays, got {len(relays)}")


def encode_device_config(config: DeviceConfig, product_id: int | None = None) -> dict[int, int]:
    """
    Encode a DeviceConfig into {register: value} for every register the product implements.

    Register 112 (torque) is not part of DeviceConfig; see encode_torque(). Percent
    fields are clamped, byte fields outside 0-255 raise ValidationError.
    """
    _check_relays(config.relays)
    relay_bytes = [encode_relay(r) for r in config.relays]

    values: dict[int, int] = {
        REG_FLAGS_11: encode_register_11(config.register_11, product_id),
        REG_FLAGS_12: encode_register_12(config.register_12, product_id),
        101: pack_bytes(config.control_mode, config.modulation_delay),
        102: pack_bytes(config.deadband, config.network_adapter),
    }
    for i in range(4):
        values[REG_RELAYS_START + i] = pack_bytes(relay_bytes[2 * i], relay_bytes[2 * i + 1])
    relay_9 = relay_bytes[8] if is_register_107_lower_half_available(product_id) else 0
    values[REG_FAILSAFE] = pack_bytes(config.failsafe_function, relay_9)
    values[108] = pack_bytes(clamp(config.failsafe_go_to_position, 0, 100), config.esd_function)
    values[109] = pack_bytes(config.esd_delay, config.loss_comm_function)
    values[110] = pack_bytes(config.loss_comm_delay, config.network_baud_rate)
    values[111] = pack_bytes(config.network_response_delay, config.network_comm_parity)
    values[113] = pack_bytes(clamp(config.lsa, 1, 99), clamp(config.lsb, 1, 99))
    values[114] = pack_bytes(
        round_speed_control(config.open_speed_control_start),
        round_speed_control(config.open_speed_control_ratio),
    )
    values[115] = pack_bytes(
        round_speed_control(config.close_speed_control_start),
        round_speed_control(config.close_speed_control_ratio),
    )
    for offset, name in enumerate(CALIBRATION_FIELDS):
        values[REG_CALIBRATION_START + offset] = clamp(getattr(config, name), POSITION_MIN, POSITION_MAX)

    return {reg: v for reg, v in values.items() if is_register_available(product_id, reg)}


def encode_calibration(config: DeviceConfig, product_id: int | None = None) -> dict[int, int]:
    """Registers 500-507 only."""
    return {
        reg: v for reg, v in encode_device_config(config, product_id).items() if reg >= REG_CALIBRATION_START
    }


def decode_device_config(registers: Mapping[int, int], product_id: int | None = None) -> DeviceConfig:
    """
    Decode a register image into a DeviceConfig.

    Only registers present in the image and implemented by the product are
    consulted; everything else keeps its default. Out-of-range enum bytes decode
    to the field default.
    """
    config = DeviceConfig()
    default = DeviceConfig()

    def get(register: int) -> int | None:
        if register in registers and is_register_available(product_id, register):
            return registers[register]
        return None

    if (v := get(REG_FLAGS_11)) is not None:
        config.register_11 = decode_register_11(v, product_id)
    if (v := get(REG_FLAGS_12)) is not None:
        config.register_12 = decode_register_12(v, product_id)
    if (v := get(101)) is not None:
        config.control_mode = _enum_or_default(ControlMode, upper_byte(v), default.control_mode)
        config.modulation_delay = lower_byte(v)
    if (v := get(102)) is not None:
        config.deadband = upper_byte(v)
        config.network_adapter = _enum_or_default(NetworkAdapter, lower_byte(v), default.network_adapter)

    relays = list(config.relays)
    for i in range(4):
        if (v := get(REG_RELAYS_START + i)) is not None:
            relays[2 * i] = decode_relay(upper_byte(v))
            relays[2 * i + 1] = decode_relay(lower_byte(v))
    if (v := get(REG_FAILSAFE)) is not None:
        config.failsafe_function = _enum_or_default(FunctionAction, upper_byte(v), default.failsafe_function)
        if is_register_107_lower_half_available(product_id):
            relays[8] = decode_relay(lower_byte(v))
    config.relays = relays

    if (v := get(108)) is not None:
        config.failsafe_go_to_position = upper_byte(v)
        config.esd_function = _enum_or_default(FunctionAction, lower_byte(v), default.esd_function)
    if (v := get(109)) is not None:
        config.esd_delay = upper_byte(v)
        config.loss_comm_function = _enum_or_default(FunctionAction, lower_byte(v), default.loss_comm_function)
    if (v := get(110)) is not None:
        config.loss_comm_delay = upper_byte(v)
        config.network_baud_rate = _enum_or_default(NetworkBaudRate, lower_byte(v), default.network_baud_rate)
    if (v := get(111)) is not None:
        config.network_response_delay = upper_byte(v)
        config.network_comm_parity = _enum_or_default(
            NetworkCommParity, lower_byte(v), default.network_comm_parity
        )
    if (v := get(113)) is not None:
        config.lsa, config.lsb = upper_byte(v), lower_byte(v)
    if (v := get(114)) is not None:
        config.open_speed_control_start, config.open_speed_control_ratio = upper_byte(v), lower_byte(v)
    if (v := get(115)) is not None:
        config.close_speed_control_start, config.close_speed_control_ratio = upper_byte(v), lower_byte(v)
    for offset, name in enumerate(CALIBRATION_FIELDS):
        if (v := get(REG_CALIBRATION_START + offset)) is not None:
            setattr(config, name, v)
    return config
