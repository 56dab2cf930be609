#!/usr/bin/env python3
"""Example: poll two simulated actuators in the background while they move; Ctrl+C to stop."""

import time

from pyactuator_modbus import ActuatorSession, ActuatorSnapshot, Product, SimulatedMaster


def print_snapshot(snapshot: ActuatorSnapshot) -> None:
    print(f"[{snapshot.product_name}] {snapshot}")


def main() -> None:
    master = SimulatedMaster()
    master.add_slave(1, initial_position=0, product_id=Product.S7X)
    master.add_slave(2, initial_position=4095, product_id=Product.NOVA)

    with master:
        opener = ActuatorSession(master, 1)
        closer = ActuatorSession(master, 2)
        for session in (opener, closer):
            session.add_listener(print_snapshot)
            session.start_polling(interval_ms=500)

        opener.move_to_position(4095)
        closer.close()

        try:
            deadline = time.monotonic() + 30.0
            while time.monotonic() < deadline:
                if opener.current.status.position == 4095 and closer.current.status.position == 0:
                    break
                time.sleep(0.5)
        except KeyboardInterrupt:
            print("\nStopped.")
        finally:
            opener.stop_polling()
            closer.stop_polling()


if __name__ == "__main__":
    main()
