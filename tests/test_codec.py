"""Tests for the register/bit-field codec."""

import itertools

import pytest

from pyactuator_modbus.capabilities import Product
from pyactuator_modbus.codec import (
    REGISTER_11_FIELDS,
    REGISTER_12_FIELDS,
    decode_device_config,
    decode_host_commands,
    decode_register_11,
    decode_register_12,
    decode_relay,
    decode_status,
    decode_torque,
    encode_calibration,
    encode_device_config,
    encode_host_commands,
    encode_register_11,
    encode_register_12,
    encode_relay,
    encode_status,
    encode_torque,
    pack_bytes,
    round_speed_control,
)
from pyactuator_modbus.errors import ValidationError
from pyactuator_modbus.model import (
    ControlMode,
    DeviceConfig,
    DeviceStatus,
    EnabledState,
    FunctionAction,
    HostCommands,
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
)


# ============================================================================
# Bit-flag registers
# ============================================================================


class TestRegister11:
    def test_default_is_zero(self) -> None:
        assert encode_register_11(Register11Flags()) == 0

    @pytest.mark.parametrize("name,bit,enum_cls", REGISTER_11_FIELDS)
    def test_each_field_owns_one_bit(self, name: str, bit: int, enum_cls: type) -> None:
        flags = Register11Flags(**{name: enum_cls(1)})
        assert encode_register_11(flags) == 1 << bit
        assert decode_register_11(1 << bit) == flags

    def test_all_bit_patterns_round_trip(self) -> None:
        for value in range(0, 0x10000, 0x0101):
            assert encode_register_11(decode_register_11(value)) == value

    def test_product_filter(self) -> None:
        flags = Register11Flags(ai2_polarity=Polarity.REVERSED, seat=SeatMode.TORQUE)
        # EHO has neither bit 6 nor bit 15
        assert encode_register_11(flags, Product.EHO) == 0
        assert decode_register_11(0xFFFF, Product.EHO).ai2_polarity == Polarity.NORMAL
        assert encode_register_11(flags, Product.NOVA) == (1 << 6) | (1 << 15)


class TestRegister12:
    def test_bits_0_to_13(self) -> None:
        assert [bit for _name, bit in REGISTER_12_FIELDS] == list(range(14))

    def test_all_enabled(self) -> None:
        flags = Register12Flags(**{name: EnabledState.ENABLED for name, _bit in REGISTER_12_FIELDS})
        assert encode_register_12(flags) == 0x3FFF
        assert decode_register_12(0x3FFF) == flags

    def test_upper_bits_ignored(self) -> None:
        assert decode_register_12(0xC000) == Register12Flags()

    def test_combinations_round_trip(self) -> None:
        names = [name for name, _bit in REGISTER_12_FIELDS[:5]]
        for combo in itertools.product(EnabledState, repeat=len(names)):
            flags = Register12Flags(**dict(zip(names, combo)))
            assert decode_register_12(encode_register_12(flags)) == flags

    def test_s7x_skips_unavailable_bits(self) -> None:
        flags = Register12Flags(leds=EnabledState.ENABLED, open_inhibit=EnabledState.ENABLED)
        # S7X has bit 3 (LEDs) but not bit 4 (open inhibit)
        assert encode_register_12(flags, Product.S7X) == 1 << 3


class TestHostCommands:
    def test_bits(self) -> None:
        commands = HostCommands(open=True, stop=True, soft_setup=True)
        assert encode_host_commands(commands) == (1 << 0) | (1 << 2) | (1 << 15)
        assert decode_host_commands(0x8005) == commands

    def test_s7x_has_no_esd_or_pst_bit(self) -> None:
        commands = decode_host_commands(0x001F, Product.S7X)
        assert commands.open and commands.close and commands.stop
        assert not commands.esd
        assert not commands.pst


# ============================================================================
# Relays and torque
# ============================================================================


class TestRelay:
    def test_layout(self) -> None:
        relay = RelayConfig(RelayTrigger.PST_IN_PROCESS, RelayMode.FLASHING, RelayContactType.NORMALLY_OPEN)
        assert encode_relay(relay) == 29 | 0x40 | 0x80

    def test_default_relay_is_zero(self) -> None:
        assert encode_relay(RelayConfig()) == 0

    def test_round_trip_all_triggers(self) -> None:
        for i, trigger in enumerate(RelayTrigger):
            relay = RelayConfig(trigger, RelayMode(i % 2), RelayContactType((i // 2) % 2))
            assert decode_relay(encode_relay(relay)) == relay

    def test_invalid_trigger_decodes_to_default(self) -> None:
        # 12 is not a defined trigger
        relay = decode_relay(0x80 | 12)
        assert relay.trigger == RelayTrigger.LSO
        assert relay.contact == RelayContactType.NORMALLY_OPEN

    def test_invalid_trigger_rejected_on_encode(self) -> None:
        with pytest.raises(ValidationError):
            encode_relay(RelayConfig(trigger=12))  # type: ignore[arg-type]


class TestTorque:
    def test_pack(self) -> None:
        assert encode_torque(60, 40) == (60 << 8) | 40

    @pytest.mark.parametrize("close,open_", [(15, 15), (15, 100), (100, 15), (50, 50), (100, 100)])
    def test_round_trip(self, close: int, open_: int) -> None:
        assert decode_torque(encode_torque(close, open_)) == (close, open_)

    @pytest.mark.parametrize("close,open_", [(10, 50), (50, 14), (101, 50), (50, 255)])
    def test_out_of_range(self, close: int, open_: int) -> None:
        with pytest.raises(ValidationError):
            encode_torque(close, open_)

    def test_decode_does_not_validate(self) -> None:
        assert decode_torque(0x0000) == (0, 0)


def test_pack_bytes_rejects_wide_values() -> None:
    with pytest.raises(ValidationError):
        pack_bytes(256, 0)
    with pytest.raises(ValidationError):
        pack_bytes(0, -1)


@pytest.mark.parametrize(
    "value,expected",
    [(0, 5), (5, 5), (52, 50), (53, 55), (72, 70), (94, 95), (95, 95), (100, 95), (17, 15), (18, 20)],
)
def test_round_speed_control(value: int, expected: int) -> None:
    assert round_speed_control(value) == expected


# ============================================================================
# DeviceStatus
# ============================================================================


class TestStatus:
    def test_decode_bits_and_words(self) -> None:
        registers = {
            0: (1 << 0) | (1 << 15),
            1: 1 << 15,
            2: 1 << 0,
            3: (1 << 4) | (1 << 8) | (1 << 9),
            4: (1 << 0) | (1 << 9) | (1 << 13),
            10: (1 << 2),
            23: 2048,
            24: 1228,
            25: 100,
            26: 200,
            27: 300,
            28: 400,
            29: 2,
        }
        status = decode_status(registers)
        assert status.stall_alarm and status.unit_alarm_1 and status.unit_alarm_2
        assert status.sph_exceeded
        assert status.valve_opening and not status.valve_closing
        assert status.is_moving
        assert status.stop_mode and status.setup_mode
        assert status.relay_1_status and status.di1_open_status and status.di5_pst_status
        assert status.host_commands.stop and not status.host_commands.open
        assert status.position == 2048
        assert status.valve_torque == 1228
        assert (status.analog_input_1, status.analog_input_2) == (100, 200)
        assert (status.analog_output_1, status.analog_output_2) == (300, 400)
        assert status.pst_result == PstResult.PASSED
        assert status.has_any_alarm()

    def test_missing_registers_leave_defaults(self) -> None:
        assert decode_status({}) == DeviceStatus()

    def test_product_filter(self) -> None:
        registers = {0: 0xFFFF, 23: 100, 28: 999, 29: 3}
        status = decode_status(registers, Product.S7X)
        assert status.low_oil_alarm is False  # (0, 14) missing on S7X
        assert status.stall_alarm is True
        assert status.analog_output_2 == 0
        assert status.pst_result == PstResult.NEVER_RUN

    def test_invalid_pst_result(self) -> None:
        assert decode_status({29: 9}).pst_result == PstResult.NEVER_RUN

    def test_round_trip(self) -> None:
        status = DeviceStatus(
            valve_drift_alarm=True,
            loss_of_signal_alarm=True,
            unit_alert=True,
            limit_switch_close=True,
            valve_closing=True,
            remote_mode=True,
            handwheel_pulled_out=True,
            relay_5_monitor_status=True,
            relay_9_status=True,
            di4_esd_status=True,
            host_commands=HostCommands(close=True, esd=True, pst=True),
            position=1234,
            valve_torque=2047,
            analog_input_1=1,
            analog_output_2=4095,
            pst_result=PstResult.FAILED,
        )
        assert decode_status(encode_status(status)) == status


# ============================================================================
# DeviceConfig
# ============================================================================


def _full_config() -> DeviceConfig:
    relays = [
        RelayConfig(trigger, mode, contact)
        for trigger, mode, contact in zip(
            [RelayTrigger.LSC, RelayTrigger.OPENING, RelayTrigger.LOCAL, RelayTrigger.VALVE_DRIFT,
             RelayTrigger.ANY_ESD, RelayTrigger.MOVING, RelayTrigger.GENERIC, RelayTrigger.STOP,
             RelayTrigger.MONITOR_RELAY],
            itertools.cycle(RelayMode),
            itertools.cycle([RelayContactType.NORMALLY_OPEN, RelayContactType.NORMALLY_OPEN,
                             RelayContactType.NORMALLY_CLOSED]),
        )
    ]
    return DeviceConfig(
        register_11=Register11Flags(ai1_polarity=Polarity.REVERSED, seat=SeatMode.TORQUE),
        register_12=Register12Flags(torque_retry=EnabledState.ENABLED, open_speed_control=EnabledState.ENABLED),
        control_mode=ControlMode.NETWORK,
        modulation_delay=4,
        deadband=12,
        network_adapter=NetworkAdapter.PROFIBUS,
        relays=relays,
        failsafe_function=FunctionAction.GO_CLOSE,
        failsafe_go_to_position=30,
        esd_function=FunctionAction.GO_TO_POSITION,
        esd_delay=5,
        loss_comm_function=FunctionAction.GO_OPEN,
        loss_comm_delay=10,
        network_baud_rate=NetworkBaudRate.BAUD_19200,
        network_response_delay=20,
        network_comm_parity=NetworkCommParity.EVEN,
        lsa=10,
        lsb=90,
        open_speed_control_start=60,
        open_speed_control_ratio=40,
        close_speed_control_start=35,
        close_speed_control_ratio=45,
        ai1_zero_calibration=12,
        ai1_span_calibration=4000,
        ai2_zero_calibration=34,
        ai2_span_calibration=3900,
        ao1_zero_calibration=56,
        ao1_span_calibration=3800,
        ao2_zero_calibration=78,
        ao2_span_calibration=3700,
    )


class TestDeviceConfig:
    def test_round_trip_unknown_product(self) -> None:
        config = _full_config()
        assert decode_device_config(encode_device_config(config)) == config

    def test_round_trip_nova(self) -> None:
        config = _full_config()
        assert decode_device_config(encode_device_config(config, Product.NOVA), Product.NOVA) == config

    def test_default_encoding(self) -> None:
        registers = encode_device_config(DeviceConfig())
        assert registers[101] == (0 << 8) | 1
        assert registers[102] == 20 << 8
        assert registers[108] == 50 << 8
        assert registers[110] == 3
        assert registers[111] == 8 << 8
        assert registers[113] == (25 << 8) | 75
        assert registers[114] == (70 << 8) | 50
        assert registers[115] == (30 << 8) | 50
        assert [registers[a] for a in range(500, 508)] == [0, 4095] * 4
        assert 112 not in registers

    def test_relay_packing(self) -> None:
        config = DeviceConfig()
        config.relays[0] = RelayConfig(RelayTrigger.LSC)
        config.relays[1] = RelayConfig(RelayTrigger.LSA)
        config.relays[8] = RelayConfig(RelayTrigger.STOP)
        config.failsafe_function = FunctionAction.GO_OPEN
        registers = encode_device_config(config)
        assert registers[103] == (1 << 8) | 2
        assert registers[107] == (1 << 8) | 9

    def test_register_107_lower_half_gated(self) -> None:
        config = DeviceConfig()
        config.relays[8] = RelayConfig(RelayTrigger.STOP)
        config.failsafe_function = FunctionAction.GO_CLOSE
        registers = encode_device_config(config, Product.S7X)
        assert registers[107] == 2 << 8
        decoded = decode_device_config({107: (2 << 8) | 9}, Product.S7X)
        assert decoded.failsafe_function == FunctionAction.GO_CLOSE
        assert decoded.relays[8] == RelayConfig()

    def test_unavailable_registers_not_emitted(self) -> None:
        registers = encode_device_config(DeviceConfig(), Product.EHO)
        for address in (103, 104, 105, 106, 112, 113, 114, 115, 500, 507):
            assert address not in registers
        assert 107 in registers
        s7x = encode_device_config(DeviceConfig(), Product.S7X)
        assert 105 not in s7x and 106 not in s7x
        assert 502 not in s7x and 504 in s7x

    def test_clamping(self) -> None:
        config = DeviceConfig(
            lsa=0,
            lsb=150,
            open_speed_control_start=2,
            open_speed_control_ratio=99,
            close_speed_control_start=53,
            close_speed_control_ratio=57,
            failsafe_go_to_position=120,
            ai1_span_calibration=5000,
        )
        registers = encode_device_config(config)
        assert registers[113] == (1 << 8) | 99
        assert registers[114] == (5 << 8) | 95
        assert registers[115] == (55 << 8) | 55
        assert registers[108] >> 8 == 100
        assert registers[501] == 4095

    def test_byte_field_out_of_range(self) -> None:
        with pytest.raises(ValidationError):
            encode_device_config(DeviceConfig(deadband=300))

    def test_wrong_relay_count(self) -> None:
        with pytest.raises(ValidationError):
            encode_device_config(DeviceConfig(relays=[RelayConfig()] * 8))

    def test_decode_invalid_enum_bytes(self) -> None:
        config = decode_device_config({101: (42 << 8) | 7, 102: (20 << 8) | 99, 110: 9})
        assert config.control_mode == ControlMode.TWO_WIRE_DISCRETE
        assert config.modulation_delay == 7
        assert config.network_adapter == NetworkAdapter.NONE
        assert config.network_baud_rate == NetworkBaudRate.BAUD_9600

    def test_decode_empty_image_is_default(self) -> None:
        assert decode_device_config({}) == DeviceConfig()

    def test_encode_calibration_only(self) -> None:
        assert set(encode_calibration(DeviceConfig(), Product.NOVA)) == set(range(500, 508))
        assert set(encode_calibration(DeviceConfig(), Product.S7X)) == {500, 501, 504, 505}
