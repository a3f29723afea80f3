"""Simulated system memory: page mappings, byte storage, statistics and tracing."""

from __future__ import annotations

import bisect
from dataclasses import dataclass
from typing import TextIO

PAGE_SIZE = 4096
METADATA_SIZE = 16

_BASE_ADDRESS = 0x7F0000000000


@dataclass
class Stats:
    """Counters gathered while one challenge runs."""

    begin_time: float = 0.0
    end_time: float = 0.0
    mmap_size: int = 0
    munmap_size: int = 0
    allocated_size: int = 0
    freed_size: int = 0

    def elapsed_ms(self) -> int:
        """Wall time between begin and end, truncated to whole milliseconds."""
        return int((self.end_time - self.begin_time) * 1000)

    def utilization_percentage(self) -> int:
        """Live object bytes as a truncated percentage of mapped bytes.

        Returns 0 when nothing is mapped.
        """
        mapped = self.mmap_size - self.munmap_size
        if mapped <= 0:
            return 0
        return int(100.0 * (self.allocated_size - self.freed_size) / mapped)


class SystemMemory:
    """An address space handing out zero-filled, page-aligned regions."""

    def __init__(self, trace: TextIO | None = None) -> None:
        self.trace = trace
        self.stats = Stats()
        self._bases: list[int] = []
        self._regions: dict[int, bytearray] = {}
        self._next_address = _BASE_ADDRESS

    def mmap(self, size: int) -> int:
        """Map ``size`` bytes (a positive multiple of the page size) and return the address."""
        if size <= 0 or size % PAGE_SIZE:
            raise ValueError(f"mmap size must be a positive multiple of {PAGE_SIZE}: {size}")
        address = self._next_address
        self._next_address += size
        self._insert(address, bytearray(size))
        self.stats.mmap_size += size
        self.record("m", address, size)
        return address

    def munmap(self, address: int, size: int) -> None:
        """Release ``[address, address + size)``, which must lie inside one mapped region."""
        if size <= 0 or size % PAGE_SIZE:
            raise ValueError(f"munmap size must be a positive multiple of {PAGE_SIZE}: {size}")
        if address % PAGE_SIZE:
            raise ValueError(f"munmap address must be page aligned: {address:#x}")
        base, region = self._locate(address)
        offset = address - base
        if offset + size > len(region):
            raise ValueError(f"range {address:#x}+{size} exceeds the mapped region")
        self._remove(base)
        if offset:
            self._insert(base, region[:offset])
        tail = region[offset + size:]
        if tail:
            self._insert(address + size, tail)
        self.stats.munmap_size += size
        self.record("u", address, size)

    def fill(self, address: int, size: int, value: int) -> None:
        """Set ``size`` bytes starting at ``address`` to ``value`` (0..255)."""
        if size < 0:
            raise ValueError(f"negative fill size: {size}")
        base, region = self._locate(address)
        offset = address - base
        if offset + size > len(region):
            raise ValueError(f"range {address:#x}+{size} exceeds the mapped region")
        region[offset:offset + size] = bytes([value]) * size

    def read_byte(self, address: int) -> int:
        """Return the byte stored at ``address``."""
        base, region = self._locate(address)
        return region[address - base]

    def record(self, op: str, address: int, size: int) -> None:
        """Write one trace line, if a trace stream is attached."""
        if self.trace is not None:
            self.trace.write(f"{op} {address} {size}\n")

    def _locate(self, address: int) -> tuple[int, bytearray]:
        position = bisect.bisect_right(self._bases, address) - 1
        if position >= 0:
            base = self._bases[position]
            region = self._regions[base]
            if address < base + len(region):
                return base, region
        raise ValueError(f"address {address:#x} is not mapped")

    def _insert(self, base: int, region: bytearray) -> None:
        bisect.insort(self._bases, base)
        self._regions[base] = region

    def _remove(self, base: int) -> None:
        self._bases.remove(base)
        del self._regions[base]