#!/usr/bin/env python3
"""Command-line interface for pyactuator-modbus using Typer."""

import json
import logging
import time
import traceback
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

import typer
from typing_extensions import Annotated

from . import __version__
from .capabilities import Product, available_bits, available_runs, product_name
from .codec import CONFIG_BLOCKS, STATUS_BLOCKS
from .errors import ActuatorModbusError, NotFoundError, PreconditionError, ValidationError
from .master import ActuatorMaster, HardwareMaster, SimulatedMaster
from .model import ActuatorSnapshot
from .session import ActuatorSession, scan as scan_bus
from .types import REG_TORQUE_LIMITS, SerialSettings, parse_parity

app = typer.Typer(
    name="pyactuator",
    help="Read, command and configure Modbus RTU valve actuators (serial or simulated).",
    no_args_is_help=True,
)

logger = logging.getLogger(__name__)

# ============================================================================
# Shared options and helpers
# ============================================================================

PortOption = Annotated[
    Optional[str],
    typer.Option("--port", "-p", help="Serial port (e.g. /dev/ttyUSB0, COM3)", envvar="PYACTUATOR_PORT"),
]
BaudOption = Annotated[
    int,
    typer.Option("--baud", "-b", help="Baud rate", envvar="PYACTUATOR_BAUD"),
]
ParityOption = Annotated[
    str,
    typer.Option("--parity", help="Parity: none, even, odd (or N/E/O)", envvar="PYACTUATOR_PARITY"),
]
StopBitsOption = Annotated[
    int,
    typer.Option("--stop-bits", help="Stop bits (1 or 2)", envvar="PYACTUATOR_STOP_BITS"),
]
SlaveIdOption = Annotated[
    int,
    typer.Option("--slave", "-s", help="Modbus slave id (1-247)", envvar="PYACTUATOR_SLAVE_ID"),
]
TimeoutOption = Annotated[
    float,
    typer.Option("--timeout", "-t", help="Response timeout in seconds"),
]
SimulateOption = Annotated[
    bool,
    typer.Option("--simulate", help="Use an in-process simulated actuator instead of a serial port"),
]
ProductOption = Annotated[
    str,
    typer.Option("--product", help="Product of the simulated actuator (S7X, EHO, Nova or id)", envvar="PYACTUATOR_PRODUCT"),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Enable debug logging"),
]
JsonOption = Annotated[
    bool,
    typer.Option("--json", help="Output as JSON"),
]


def setup_logging(verbose: bool) -> None:
    """Configure logging based on verbose flag."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s" if not verbose else "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def parse_bool(value: str) -> bool:
    """Parse boolean value from string."""
    v = value.lower().strip()
    if v in ("true", "1", "on", "yes"):
        return True
    if v in ("false", "0", "off", "no"):
        return False
    raise ValueError(f"Invalid boolean value: {value!r}")


def parse_int(value: str, low: int = 0, high: int = 65535) -> int:
    """Parse integer value from string (decimal or 0x hex) and check it is within [low, high]."""
    v = value.strip()
    num = int(v, 16) if v.lower().startswith("0x") else int(v)
    if not low <= num <= high:
        raise ValueError(f"Value out of range ({low}-{high}): {num}")
    return num


def parse_product(value: str) -> int:
    """Parse a product name (S7X, EHO, Nova) or numeric product id."""
    v = value.strip().upper()
    for p in Product:
        if v == p.name:
            return int(p)
    return parse_int(value)


def create_master(
    port: Optional[str],
    baud: int,
    parity: str,
    stop_bits: int,
    timeout: float,
    simulate: bool,
    slave_ids: list[int],
    product: str,
) -> ActuatorMaster:
    """Create a HardwareMaster on port, or a SimulatedMaster holding one slave per id."""
    if simulate:
        master = SimulatedMaster()
        product_id = parse_product(product)
        for slave_id in slave_ids:
            master.add_slave(slave_id, product_id=product_id)
        return master
    if not port:
        typer.echo("Error: --port is required (or use --simulate)", err=True)
        raise typer.Exit(2)
    settings = SerialSettings(
        port=port,
        baudrate=baud,
        parity=parse_parity(parity),
        stop_bits=stop_bits,
        timeout=timeout,
    )
    return HardwareMaster(settings)


@contextmanager
def command_errors(verbose: bool) -> Iterator[None]:
    """Map library errors to exit codes: 2 bad input, 3 Modbus/connection error, 4 unexpected."""
    try:
        yield
    except typer.Exit:
        raise
    except (ValidationError, ValueError) as e:
        typer.echo(f"Error: Invalid input: {e}", err=True)
        raise typer.Exit(2)
    except PreconditionError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(2)
    except NotFoundError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(2)
    except ActuatorModbusError as e:
        typer.echo(f"Error: Connection/Modbus error: {e}", err=True)
        raise typer.Exit(3)
    except KeyboardInterrupt:
        typer.echo("\nStopped by user", err=True)
        raise typer.Exit(0)
    except Exception as e:
        typer.echo(f"Error: Unexpected error: {e}", err=True)
        if verbose:
            traceback.print_exc()
        raise typer.Exit(4)


def to_jsonable(value: Any) -> Any:
    """Convert dataclass dicts for JSON output; enums render by name."""
    if isinstance(value, Enum):
        return value.name
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def snapshot_to_dict(snapshot: ActuatorSnapshot) -> dict[str, Any]:
    return {
        "product_id": snapshot.product_id,
        "product": snapshot.product_name,
        "close_torque": snapshot.close_torque,
        "open_torque": snapshot.open_torque,
        "timestamp": to_jsonable(snapshot.timestamp),
        "is_moving": snapshot.is_moving,
        "status": to_jsonable(asdict(snapshot.status)),
    }


def format_snapshot(snapshot: ActuatorSnapshot) -> str:
    status = snapshot.status
    alarms = [name for name, value in asdict(status).items() if name.endswith("_alarm") and value]
    lines = [
        f"Product:   {snapshot.product_name}",
        f"Position:  {status.position} / 4095",
        f"Torque:    {status.valve_torque} (limits close={snapshot.close_torque}% open={snapshot.open_torque}%)",
        f"Moving:    {'opening' if status.valve_opening else 'closing' if status.valve_closing else 'no'}",
        f"Stop mode: {str(status.stop_mode).lower()}",
        f"Setup:     {str(status.setup_mode).lower()}",
        f"PST:       {status.pst_result.name}",
        f"Alarms:    {', '.join(alarms) if alarms else 'none'}",
    ]
    return "\n".join(lines)


# ============================================================================
# Commands
# ============================================================================


@app.command()
def info(
    port: PortOption = None,
    baud: BaudOption = 9600,
    parity: ParityOption = "none",
    stop_bits: StopBitsOption = 1,
    slave_id: SlaveIdOption = 1,
    timeout: TimeoutOption = 1.0,
    simulate: SimulateOption = False,
    product: ProductOption = "S7X",
    verbose: VerboseOption = False,
    json_output: JsonOption = False,
) -> None:
    """
    Show package version and, with --port or --simulate, the product id of one slave.
    """
    setup_logging(verbose)

    info_data: dict[str, Any] = {"version": __version__}
    if port or simulate:
        try:
            master = create_master(port, baud, parity, stop_bits, timeout, simulate, [slave_id], product)
            with master:
                product_id = ActuatorSession(master, slave_id).read_product_id()
            info_data["device"] = {
                "status": "connected",
                "slave_id": slave_id,
                "product_id": product_id,
                "product": product_name(product_id),
            }
        except ActuatorModbusError as e:
            info_data["device"] = {"status": "failed", "slave_id": slave_id, "error": str(e)}

    if json_output:
        typer.echo(json.dumps(info_data, indent=2))
    else:
        typer.echo(f"pyactuator-modbus version: {info_data['version']}")
        if "device" in info_data:
            device = info_data["device"]
            if device["status"] == "connected":
                typer.echo(f"Slave {slave_id}: {device['product']} (0x{device['product_id']:04X})")
            else:
                typer.echo(f"Slave {slave_id}: FAILED - {device['error']}")


@app.command()
def capabilities(
    product: Annotated[str, typer.Argument(help="Product name (S7X, EHO, Nova) or id")],
    json_output: JsonOption = False,
) -> None:
    """
    Show which registers and status/config bits a product implements.
    """
    try:
        product_id = parse_product(product)
    except ValueError as e:
        typer.echo(f"Error: Invalid product: {e}", err=True)
        raise typer.Exit(2)

    blocks = STATUS_BLOCKS + CONFIG_BLOCKS + ((REG_TORQUE_LIMITS, 1),)
    runs = sorted({run for start, count in blocks for run in available_runs(product_id, start, count)})
    bits = {reg: available_bits(product_id, reg) for reg in (0, 1, 2, 3, 4, 10, 11, 12)}

    if json_output:
        typer.echo(
            json.dumps(
                {
                    "product_id": product_id,
                    "product": product_name(product_id),
                    "register_runs": [{"start": s, "count": c} for s, c in runs],
                    "bits": {str(reg): b for reg, b in bits.items()},
                },
                indent=2,
            )
        )
        return
    typer.echo(f"Product: {product_name(product_id)} (0x{product_id:04X})")
    typer.echo("Registers:")
    for start, count in runs:
        typer.echo(f"  {start}" if count == 1 else f"  {start}-{start + count - 1}")
    typer.echo("Bits:")
    for reg, available in bits.items():
        typer.echo(f"  {reg:>3}: {' '.join(str(b) for b in available) or '-'}")


@app.command()
def scan(
    port: PortOption = None,
    baud: BaudOption = 9600,
    parity: ParityOption = "none",
    stop_bits: StopBitsOption = 1,
    timeout: TimeoutOption = 0.2,
    first: Annotated[int, typer.Option("--first", help="First slave id to probe")] = 1,
    last: Annotated[int, typer.Option("--last", help="Last slave id to probe")] = 247,
    simulate: SimulateOption = False,
    product: ProductOption = "S7X",
    verbose: VerboseOption = False,
    json_output: JsonOption = False,
) -> None:
    """
    Probe slave ids first..last and list those that answer a product id read.

    With --simulate, slave ids first..min(last, first + 3) are created.
    """
    setup_logging(verbose)

    with command_errors(verbose):
        if not 1 <= first <= last <= 247:
            raise ValueError(f"Invalid slave id range: {first}-{last}")
        simulated_ids = list(range(first, min(last, first + 3) + 1))
        master = create_master(port, baud, parity, stop_bits, timeout, simulate, simulated_ids, product)
        with master:
            found = scan_bus(master, range(first, last + 1))

    if json_output:
        typer.echo(json.dumps({"slaves": found}))
    elif found:
        for slave_id in found:
            typer.echo(f"Slave {slave_id}: OK")
    else:
        typer.echo("No slaves found")


@app.command()
def status(
    port: PortOption = None,
    baud: BaudOption = 9600,
    parity: ParityOption = "none",
    stop_bits: StopBitsOption = 1,
    slave_id: SlaveIdOption = 1,
    timeout: TimeoutOption = 1.0,
    simulate: SimulateOption = False,
    product: ProductOption = "S7X",
    verbose: VerboseOption = False,
    json_output: JsonOption = False,
) -> None:
    """
    Read and decode the status of one actuator.
    """
    setup_logging(verbose)

    with command_errors(verbose):
        master = create_master(port, baud, parity, stop_bits, timeout, simulate, [slave_id], product)
        with master:
            snapshot = ActuatorSession(master, slave_id).update_status()

    if json_output:
        typer.echo(json.dumps(snapshot_to_dict(snapshot), indent=2))
    else:
        typer.echo(format_snapshot(snapshot))


@app.command()
def read(
    address: Annotated[str, typer.Argument(help="First holding register (decimal or 0x hex)")],
    count: Annotated[int, typer.Option("--count", "-n", help="Number of registers (1-125)")] = 1,
    port: PortOption = None,
    baud: BaudOption = 9600,
    parity: ParityOption = "none",
    stop_bits: StopBitsOption = 1,
    slave_id: SlaveIdOption = 1,
    timeout: TimeoutOption = 1.0,
    simulate: SimulateOption = False,
    product: ProductOption = "S7X",
    verbose: VerboseOption = False,
    json_output: JsonOption = False,
) -> None:
    """
    Read raw holding registers.
    """
    setup_logging(verbose)

    with command_errors(verbose):
        start = parse_int(address)
        master = create_master(port, baud, parity, stop_bits, timeout, simulate, [slave_id], product)
        with master:
            values = master.read_holding_registers(slave_id, start, count)

    if json_output:
        typer.echo(json.dumps({str(start + i): v for i, v in enumerate(values)}))
    else:
        for i, v in enumerate(values):
            typer.echo(f"{start + i}: {v} (0x{v:04X})")


@app.command()
def write(
    address: Annotated[str, typer.Argument(help="Holding register (decimal or 0x hex)")],
    value: Annotated[str, typer.Argument(help="Value (0-65535, decimal or 0x hex)")],
    port: PortOption = None,
    baud: BaudOption = 9600,
    parity: ParityOption = "none",
    stop_bits: StopBitsOption = 1,
    slave_id: SlaveIdOption = 1,
    timeout: TimeoutOption = 1.0,
    simulate: SimulateOption = False,
    product: ProductOption = "S7X",
    verbose: VerboseOption = False,
) -> None:
    """
    Write one raw holding register (function 06).
    """
    setup_logging(verbose)

    with command_errors(verbose):
        reg = parse_int(address)
        num = parse_int(value)
        master = create_master(port, baud, parity, stop_bits, timeout, simulate, [slave_id], product)
        with master:
            master.write_single_register(slave_id, reg, num)
    typer.echo(f"OK: Wrote {num} to register {reg}")


@app.command()
def coil(
    address: Annotated[int, typer.Argument(help="Coil address (0-15)")],
    value: Annotated[Optional[str], typer.Argument(help="Value to write (true/false, 1/0, on/off); omit to read")] = None,
    port: PortOption = None,
    baud: BaudOption = 9600,
    parity: ParityOption = "none",
    stop_bits: StopBitsOption = 1,
    slave_id: SlaveIdOption = 1,
    timeout: TimeoutOption = 1.0,
    simulate: SimulateOption = False,
    product: ProductOption = "S7X",
    verbose: VerboseOption = False,
) -> None:
    """
    Read or write one coil (coil 0 enables the actuator).
    """
    setup_logging(verbose)

    with command_errors(verbose):
        state = parse_bool(value) if value is not None else None
        master = create_master(port, baud, parity, stop_bits, timeout, simulate, [slave_id], product)
        with master:
            if state is None:
                result = master.read_coils(slave_id, address, 1)[0]
            else:
                master.write_single_coil(slave_id, address, state)
    if state is None:
        typer.echo(str(result).lower())
    else:
        typer.echo(f"OK: Wrote {str(state).lower()} to coil {address}")


@app.command()
def move(
    position: Annotated[int, typer.Argument(help="Target position (0-4095)")],
    wait: Annotated[bool, typer.Option("--wait", help="Wait until the actuator stops moving")] = False,
    wait_timeout: Annotated[float, typer.Option("--wait-timeout", help="Seconds to wait with --wait")] = 60.0,
    port: PortOption = None,
    baud: BaudOption = 9600,
    parity: ParityOption = "none",
    stop_bits: StopBitsOption = 1,
    slave_id: SlaveIdOption = 1,
    timeout: TimeoutOption = 1.0,
    simulate: SimulateOption = False,
    product: ProductOption = "S7X",
    verbose: VerboseOption = False,
) -> None:
    """
    Command the actuator to a position.
    """
    setup_logging(verbose)

    with command_errors(verbose):
        master = create_master(port, baud, parity, stop_bits, timeout, simulate, [slave_id], product)
        with master:
            session = ActuatorSession(master, slave_id)
            session.move_to_position(position)
            if wait:
                deadline = time.monotonic() + wait_timeout
                while True:
                    snapshot = session.update_status()
                    if snapshot.status.position == position and not snapshot.is_moving:
                        break
                    if time.monotonic() > deadline:
                        typer.echo(
                            f"Error: Timed out at position {snapshot.status.position}", err=True
                        )
                        raise typer.Exit(3)
                    time.sleep(0.1)
    typer.echo(f"OK: Moving to {position}" if not wait else f"OK: At position {position}")


@app.command()
def torque(
    close: Annotated[int, typer.Argument(help="Close torque limit (15-100 %)")],
    open_: Annotated[int, typer.Argument(metavar="OPEN", help="Open torque limit (15-100 %)")],
    port: PortOption = None,
    baud: BaudOption = 9600,
    parity: ParityOption = "none",
    stop_bits: StopBitsOption = 1,
    slave_id: SlaveIdOption = 1,
    timeout: TimeoutOption = 1.0,
    simulate: SimulateOption = False,
    product: ProductOption = "S7X",
    verbose: VerboseOption = False,
) -> None:
    """
    Set close/open torque limits (register 112).
    """
    setup_logging(verbose)

    with command_errors(verbose):
        master = create_master(port, baud, parity, stop_bits, timeout, simulate, [slave_id], product)
        with master:
            ActuatorSession(master, slave_id).set_torque(close, open_)
    typer.echo(f"OK: Torque close={close}% open={open_}%")


@app.command()
def stop(
    release: Annotated[bool, typer.Option("--release", help="Clear the stop command instead of setting it")] = False,
    port: PortOption = None,
    baud: BaudOption = 9600,
    parity: ParityOption = "none",
    stop_bits: StopBitsOption = 1,
    slave_id: SlaveIdOption = 1,
    timeout: TimeoutOption = 1.0,
    simulate: SimulateOption = False,
    product: ProductOption = "S7X",
    verbose: VerboseOption = False,
) -> None:
    """
    Set (or with --release clear) the host Stop command.
    """
    setup_logging(verbose)

    with command_errors(verbose):
        master = create_master(port, baud, parity, stop_bits, timeout, simulate, [slave_id], product)
        with master:
            ActuatorSession(master, slave_id).stop(enable=not release)
    typer.echo("OK: Stop released" if release else "OK: Stopped")


@app.command()
def config(
    port: PortOption = None,
    baud: BaudOption = 9600,
    parity: ParityOption = "none",
    stop_bits: StopBitsOption = 1,
    slave_id: SlaveIdOption = 1,
    timeout: TimeoutOption = 1.0,
    simulate: SimulateOption = False,
    product: ProductOption = "S7X",
    verbose: VerboseOption = False,
) -> None:
    """
    Read the actuator configuration and print it as JSON.
    """
    setup_logging(verbose)

    with command_errors(verbose):
        master = create_master(port, baud, parity, stop_bits, timeout, simulate, [slave_id], product)
        with master:
            actuator_config = ActuatorSession(master, slave_id).read_configuration()
    data = to_jsonable(asdict(actuator_config))
    data["product"] = product_name(actuator_config.product_id)
    typer.echo(json.dumps(data, indent=2))


@app.command()
def poll(
    interval: Annotated[float, typer.Option("--interval", "-i", help="Poll interval in seconds")] = 1.0,
    count: Annotated[int, typer.Option("--count", "-c", help="Stop after this many polls (0 = until Ctrl+C)")] = 0,
    port: PortOption = None,
    baud: BaudOption = 9600,
    parity: ParityOption = "none",
    stop_bits: StopBitsOption = 1,
    slave_id: SlaveIdOption = 1,
    timeout: TimeoutOption = 1.0,
    simulate: SimulateOption = False,
    product: ProductOption = "S7X",
    verbose: VerboseOption = False,
    json_output: JsonOption = False,
) -> None:
    """
    Continuously poll actuator status at the given interval.

    One line per poll: timestamp, position, torque and motion (or JSON with --json).
    """
    setup_logging(verbose)

    if interval <= 0:
        typer.echo("Error: --interval must be positive", err=True)
        raise typer.Exit(2)

    with command_errors(verbose):
        master = create_master(port, baud, parity, stop_bits, timeout, simulate, [slave_id], product)
        with master:
            session = ActuatorSession(master, slave_id)
            polls = 0
            while True:
                snapshot = session.update_status()
                timestamp = datetime.now(timezone.utc).isoformat()
                if json_output:
                    typer.echo(json.dumps({"timestamp": timestamp, **snapshot_to_dict(snapshot)}))
                else:
                    typer.echo(f"{timestamp} {snapshot}")
                polls += 1
                if count and polls >= count:
                    break
                time.sleep(interval)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        typer.echo(f"pyactuator-modbus {__version__}")
        raise typer.Exit(0)


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option("--version", callback=version_callback, is_eager=True, help="Show version and exit"),
    ] = None,
) -> None:
    """pyactuator - Modbus RTU valve actuator control."""
    pass


if __name__ == "__main__":
    app()
