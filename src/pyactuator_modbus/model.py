"""Typed device model: configuration enums, DeviceStatus, DeviceConfig and snapshots."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum

from .capabilities import Product, product_name


# Register 11 enumerants (bit value 1 = second member)
class EhoType(IntEnum):
    DOUBLE_ACTION = 0
    SPRING_RETURN = 1


class InputFunction(IntEnum):
    MAINTAINED = 0
    MOMENTARY = 1


class EnabledState(IntEnum):
    DISABLED = 0
    ENABLED = 1


class Polarity(IntEnum):
    NORMAL = 0
    REVERSED = 1


class TriggerType(IntEnum):
    NORMALLY_OPEN = 0
    NORMALLY_CLOSE = 1


class CloseDirection(IntEnum):
    CLOCKWISE = 0
    COUNTER_CLOCKWISE = 1


class SeatMode(IntEnum):
    POSITION = 0
    TORQUE = 1


# Byte-valued configuration
class ControlMode(IntEnum):
    TWO_WIRE_DISCRETE = 0
    THREE_WIRE_DISCRETE = 1
    FOUR_WIRE_DISCRETE = 2
    ANALOG_4_20MA = 3
    ANALOG_0_10V = 4
    ANALOG_2_10V = 5
    ANALOG_0_5V = 6
    ANALOG_1_5V = 7
    NETWORK = 8


class NetworkAdapter(IntEnum):
    NONE = 0
    MODBUS_BUS = 1
    MODBUS_REPEATER = 2
    MODBUS_TCP = 3
    DEVICENET = 4
    ETHERNET_IP = 5
    PROFIBUS = 6
    PROFINET = 7
    HART = 8
    HART_IP = 9
    FOUNDATION_FIELDBUS = 10


class RelayTrigger(IntEnum):
    LSO = 0
    LSC = 1
    LSA = 2
    LSB = 3
    OPENING = 4
    CLOSING = 5
    OPEN_TORQUE = 6
    CLOSE_TORQUE = 7
    LOCAL = 8
    STOP = 9
    REMOTE = 10
    VALVE_DRIFT = 16
    LOST_POWER = 17
    LOST_PHASE = 18
    MOTOR_OVERLOAD = 19
    OPEN_INHIBIT = 20
    CLOSE_INHIBIT = 21
    LOCAL_ESD = 22
    ANY_ESD = 23
    LOST_ANALOG = 24
    GENERIC = 25
    MOVING = 26
    VALVE_STALL = 27
    MONITOR_RELAY = 28
    PST_IN_PROCESS = 29


class RelayMode(IntEnum):
    CONTINUOUS = 0
    FLASHING = 1


class RelayContactType(IntEnum):
    NORMALLY_CLOSED = 0
    NORMALLY_OPEN = 1


class FunctionAction(IntEnum):
    STAY_PUT = 0
    GO_OPEN = 1
    GO_CLOSE = 2
    GO_TO_POSITION = 3


class NetworkBaudRate(IntEnum):
    BAUD_1200 = 0
    BAUD_2400 = 1
    BAUD_4800 = 2
    BAUD_9600 = 3
    BAUD_19200 = 4
    BAUD_38400 = 5


class NetworkCommParity(IntEnum):
    NONE = 0
    ODD = 1
    EVEN = 2


class PstResult(IntEnum):
    NEVER_RUN = 0
    IN_PROGRESS = 1
    PASSED = 2
    FAILED = 3


RELAY_COUNT = 9


@dataclass(frozen=True)
class RelayConfig:
    """One relay: trigger (6 bits), mode (bit 6), contact type (bit 7)."""

    trigger: RelayTrigger = RelayTrigger.LSO
    mode: RelayMode = RelayMode.CONTINUOUS
    contact: RelayContactType = RelayContactType.NORMALLY_CLOSED


def _default_relays() -> list[RelayConfig]:
    return [RelayConfig() for _ in range(RELAY_COUNT)]


@dataclass
class Register11Flags:
    """Register 11: device personality and input bits (bits 0-15)."""

    eho_type: EhoType = EhoType.DOUBLE_ACTION
    local_input_function: InputFunction = InputFunction.MAINTAINED
    remote_input_function: InputFunction = InputFunction.MAINTAINED
    remote_esd_enabled: EnabledState = EnabledState.DISABLED
    loss_comm_enabled: EnabledState = EnabledState.DISABLED
    ai1_polarity: Polarity = Polarity.NORMAL
    ai2_polarity: Polarity = Polarity.NORMAL
    ao1_polarity: Polarity = Polarity.NORMAL
    ao2_polarity: Polarity = Polarity.NORMAL
    di1_open_trigger: TriggerType = TriggerType.NORMALLY_OPEN
    di2_close_trigger: TriggerType = TriggerType.NORMALLY_OPEN
    di3_stop_trigger: TriggerType = TriggerType.NORMALLY_OPEN
    di4_esd_trigger: TriggerType = TriggerType.NORMALLY_OPEN
    di5_pst_trigger: TriggerType = TriggerType.NORMALLY_OPEN
    close_direction: CloseDirection = CloseDirection.CLOCKWISE
    seat: SeatMode = SeatMode.POSITION


@dataclass
class Register12Flags:
    """Register 12: torque, inhibit and ESD override options (bits 0-13)."""

    torque_backseat: EnabledState = EnabledState.DISABLED
    torque_retry: EnabledState = EnabledState.DISABLED
    remote_display: EnabledState = EnabledState.DISABLED
    leds: EnabledState = EnabledState.DISABLED
    open_inhibit: EnabledState = EnabledState.DISABLED
    close_inhibit: EnabledState = EnabledState.DISABLED
    local_esd: EnabledState = EnabledState.DISABLED
    esd_or_thermal: EnabledState = EnabledState.DISABLED
    esd_or_local: EnabledState = EnabledState.DISABLED
    esd_or_stop: EnabledState = EnabledState.DISABLED
    esd_or_inhibit: EnabledState = EnabledState.DISABLED
    esd_or_torque: EnabledState = EnabledState.DISABLED
    close_speed_control: EnabledState = EnabledState.DISABLED
    open_speed_control: EnabledState = EnabledState.DISABLED


@dataclass
class DeviceConfig:
    """Decoded view of registers 11-12, 101-115 (except 112) and 500-507."""

    register_11: Register11Flags = field(default_factory=Register11Flags)
    register_12: Register12Flags = field(default_factory=Register12Flags)

    # 101-102
    control_mode: ControlMode = ControlMode.TWO_WIRE_DISCRETE
    modulation_delay: int = 1
    deadband: int = 20
    network_adapter: NetworkAdapter = NetworkAdapter.NONE

    # 103-107 LH
    relays: list[RelayConfig] = field(default_factory=_default_relays)

    # 107 UH - 110 UH
    failsafe_function: FunctionAction = FunctionAction.STAY_PUT
    failsafe_go_to_position: int = 50
    esd_function: FunctionAction = FunctionAction.STAY_PUT
    esd_delay: int = 0
    loss_comm_function: FunctionAction = FunctionAction.STAY_PUT
    loss_comm_delay: int = 0

    # 110 LH - 111
    network_baud_rate: NetworkBaudRate = NetworkBaudRate.BAUD_9600
    network_response_delay: int = 8
    network_comm_parity: NetworkCommParity = NetworkCommParity.NONE

    # 113-115, percent
    lsa: int = 25
    lsb: int = 75
    open_speed_control_start: int = 70
    open_speed_control_ratio: int = 50
    close_speed_control_start: int = 30
    close_speed_control_ratio: int = 50

    # 500-507, 0.024% units
    ai1_zero_calibration: int = 0
    ai1_span_calibration: int = 4095
    ai2_zero_calibration: int = 0
    ai2_span_calibration: int = 4095
    ao1_zero_calibration: int = 0
    ao1_span_calibration: int = 4095
    ao2_zero_calibration: int = 0
    ao2_span_calibration: int = 4095


@dataclass
class HostCommands:
    """Register 10 command bits written by the host."""

    open: bool = False
    close: bool = False
    stop: bool = False
    esd: bool = False
    pst: bool = False
    soft_setup: bool = False


@dataclass
class DeviceStatus:
    """Decoded view of registers 0-4, 10 and 23-29."""

    # Register 0
    stall_alarm: bool = False
    valve_drift_alarm: bool = False
    esd_active_alarm: bool = False
    motor_thermal_alarm: bool = False
    loss_of_power_alarm: bool = False
    loss_of_signal_alarm: bool = False
    low_oil_alarm: bool = False
    unit_alarm_1: bool = False
    # Register 1
    unit_alarm_2: bool = False
    # Register 2
    sph_exceeded: bool = False
    unit_alert: bool = False
    # Register 3
    limit_switch_open: bool = False
    limit_switch_close: bool = False
    torque_switch_open: bool = False
    torque_switch_close: bool = False
    valve_opening: bool = False
    valve_closing: bool = False
    local_mode: bool = False
    remote_mode: bool = False
    stop_mode: bool = False
    setup_mode: bool = False
    handwheel_pulled_out: bool = False
    # Register 4
    relay_1_status: bool = False
    relay_2_status: bool = False
    relay_3_status: bool = False
    relay_4_status: bool = False
    relay_5_monitor_status: bool = False
    relay_6_status: bool = False
    relay_7_status: bool = False
    relay_8_status: bool = False
    relay_9_status: bool = False
    di1_open_status: bool = False
    di2_close_status: bool = False
    di3_stop_status: bool = False
    di4_esd_status: bool = False
    di5_pst_status: bool = False

    host_commands: HostCommands = field(default_factory=HostCommands)

    # Registers 23-29
    position: int = 0
    valve_torque: int = 0
    analog_input_1: int = 0
    analog_input_2: int = 0
    analog_output_1: int = 0
    analog_output_2: int = 0
    pst_result: PstResult = PstResult.NEVER_RUN

    @property
    def is_moving(self) -> bool:
        return self.valve_opening or self.valve_closing

    def has_any_alarm(self) -> bool:
        return (
            self.stall_alarm
            or self.valve_drift_alarm
            or self.esd_active_alarm
            or self.motor_thermal_alarm
            or self.loss_of_power_alarm
            or self.loss_of_signal_alarm
            or self.low_oil_alarm
            or self.unit_alarm_1
            or self.unit_alarm_2
            or self.unit_alert
        )


@dataclass(frozen=True)
class ActuatorSnapshot:
    """One consistent read pass: product id, status, configuration and torque limits."""

    product_id: int | None = None
    status: DeviceStatus = field(default_factory=DeviceStatus)
    config: DeviceConfig = field(default_factory=DeviceConfig)
    close_torque: int = 50
    open_torque: int = 50
    timestamp: datetime | None = None

    @property
    def product_name(self) -> str:
        return product_name(self.product_id)

    @property
    def is_moving(self) -> bool:
        return self.status.is_moving

    def __str__(self) -> str:
        return (
            f"Position: {self.status.position}, Torque: {self.status.valve_torque}, "
            f"Moving: {self.is_moving}, Alarm: {self.status.has_any_alarm()}, "
            f"Stop: {self.status.stop_mode}, Setup: {self.status.setup_mode}"
        )


@dataclass
class ActuatorConfig:
    """Per-actuator configuration as read from (or applied to) one slave."""

    slave_id: int
    product_id: int = Product.S7X
    close_torque: int = 50
    open_torque: int = 50
    pst_result: PstResult = PstResult.NEVER_RUN
    device_name: str = ""
    config: DeviceConfig = field(default_factory=DeviceConfig)
