"""Product capability matrix: which registers and bits each actuator product line implements."""

from enum import IntEnum


class Product(IntEnum):
    """Known product identifiers reported in register 100."""

    S7X = 0x8000
    EHO = 0x8001
    NOVA = 0x8002


_PRODUCT_NAMES: dict[int, str] = {
    Product.S7X: "S7X",
    Product.EHO: "EHO",
    Product.NOVA: "Nova",
}

_UNAVAILABLE_REGISTERS: dict[int, frozenset[int]] = {
    Product.EHO: frozenset(
        {24, 26, 28, 103, 104, 105, 106, 112, 113, 114, 115, 500, 501, 502, 503, 504, 505, 506, 507}
    ),
    Product.S7X: frozenset({16, 28, 29, 105, 106, 502, 503, 506, 507}),
    Product.NOVA: frozenset(),
}

_UNAVAILABLE_BITS: dict[int, frozenset[tuple[int, int]]] = {
    Product.EHO: frozenset(
        {
            (0, 1), (0, 3),
            (1, 15),
            (2, 0), (2, 15),
            (3, 2), (3, 3), (3, 10),
            (4, 0), (4, 1), (4, 2), (4, 3), (4, 5), (4, 6), (4, 7), (4, 8), (4, 11),
            (11, 6), (11, 8), (11, 14), (11, 15),
            (12, 0), (12, 1), (12, 2), (12, 4), (12, 5), (12, 7), (12, 8),
            (12, 9), (12, 10), (12, 11), (12, 12), (12, 13),
        }
    ),
    Product.S7X: frozenset(
        {
            (0, 14),
            (4, 4), (4, 5), (4, 6), (4, 7), (4, 8), (4, 11), (4, 12), (4, 13),
            (10, 3), (10, 4),
            (11, 0), (11, 3), (11, 6), (11, 8), (11, 11), (11, 12), (11, 13),
            (12, 2), (12, 4), (12, 5), (12, 6), (12, 7), (12, 8), (12, 9), (12, 10), (12, 11),
        }
    ),
    Product.NOVA: frozenset({(0, 14), (3, 10), (11, 0)}),
}

# Products whose register 107 lower byte (relay 9) is not implemented.
# Kept apart from the generic tables: it describes half a register, not a bit.
_NO_REGISTER_107_LOWER_HALF = frozenset({Product.S7X, Product.EHO})


def is_known_product(product_id: int | None) -> bool:
    return product_id in _PRODUCT_NAMES


def product_name(product_id: int | None) -> str:
    """Human-readable product name; unknown ids render as 'Unknown (0xXXXX)'."""
    if product_id is None:
        return "Unknown"
    if not is_known_product(product_id):
        return f"Unknown (0x{product_id:04X})"
    return _PRODUCT_NAMES[product_id]


def is_register_available(product_id: int | None, register: int) -> bool:
    """True if the product implements register. Unknown products get full access."""
    unavailable = _UNAVAILABLE_REGISTERS.get(product_id)  # type: ignore[arg-type]
    if unavailable is None:
        return True
    return register not in unavailable


def is_bit_available(product_id: int | None, register: int, bit: int) -> bool:
    """True if the product implements bit of register (and the register itself)."""
    if not is_register_available(product_id, register):
        return False
    unavailable = _UNAVAILABLE_BITS.get(product_id)  # type: ignore[arg-type]
    if unavailable is None:
        return True
    return (register, bit) not in unavailable


def available_bits(product_id: int | None, register: int, total_bits: int = 16) -> list[int]:
    """List the bit positions of register the product implements (for building menus)."""
    return [bit for bit in range(total_bits) if is_bit_available(product_id, register, bit)]


def is_register_107_lower_half_available(product_id: int | None) -> bool:
    """Register 107 LH (relay 9) exists only on Nova and unknown products."""
    return product_id not in _NO_REGISTER_107_LOWER_HALF


def available_runs(product_id: int | None, start: int, count: int) -> list[tuple[int, int]]:
    """
    Split [start, start + count) into contiguous (start, count) runs of registers
    the product implements, so a read never touches a missing register.
    """
    runs: list[tuple[int, int]] = []
    run_start: int | None = None
    for address in range(start, start + count):
        if is_register_available(product_id, address):
            if run_start is None:
                run_start = address
        elif run_start is not None:
            runs.append((run_start, address - run_start))
            run_start = None
    if run_start is not None:
        runs.append((run_start, start + count - run_start))
    return runs
