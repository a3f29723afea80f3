"""Line format of allocation-hook traces: ops followed by hexadecimal numbers."""

from __future__ import annotations

_UINT64_LIMIT = 1 << 64


def format_hex(value: int) -> str:
    """Upper-case hexadecimal of an unsigned 64-bit value, no prefix, no leading zeros."""
    if not 0 <= value < _UINT64_LIMIT:
        raise ValueError(f"value out of unsigned 64-bit range: {value}")
    return f"{value:X}"


def format_malloc(address: int, size: int) -> str:
    """The trace line for an allocation."""
    return f"a {format_hex(address)} {format_hex(size)}\n"


def format_free(address: int) -> str:
    """The trace line for a release."""
    return f"f {format_hex(address)}\n"


def format_realloc(new_address: int, size: int, old_address: int) -> str:
    """The trace line for a reallocation."""
    return f"r {format_hex(new_address)} {format_hex(size)} {format_hex(old_address)}\n"


def trace_file_name(token: int) -> str:
    """Name of the trace file made unique by ``token``."""
    return f"trace_{format_hex(token)}.txt"