#!/usr/bin/env python3
"""Example: connect to an actuator on a serial port, read its status, move it and set torque limits."""

import sys

from pyactuator_modbus import ActuatorSession, HardwareMaster, SerialSettings
from pyactuator_modbus.errors import ModbusIOError, NotConnectedError, ValidationError


def main() -> None:
    settings = SerialSettings(port="/dev/ttyUSB0", baudrate=9600)  # change to your adapter
    slave_id = 1

    try:
        with HardwareMaster(settings) as master:
            actuator = ActuatorSession(master, slave_id)

            snapshot = actuator.update_status()
            print(f"{snapshot.product_name}: {snapshot}")

            # Half open, then tighten the torque limits
            actuator.move_to_position(2048)
            actuator.set_torque(60, 60)

            config = actuator.read_configuration()
            print(f"Control mode: {config.config.control_mode.name}, torque {config.close_torque}/{config.open_torque}")
    except ValidationError as e:
        print(f"Invalid value: {e}", file=sys.stderr)
        sys.exit(1)
    except (ModbusIOError, NotConnectedError) as e:
        print(f"Modbus/connection error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
