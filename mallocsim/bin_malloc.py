"""Best-fit allocator with free slots sorted into size bins."""

from __future__ import annotations

from collections import deque

from mallocsim.memory import METADATA_SIZE, PAGE_SIZE, SystemMemory

BIN_COUNT = 4
BIN_WIDTH = 1000


def bin_index(size: int) -> int:
    """The bin a slot of ``size`` bytes belongs to; oversize slots go to the last bin."""
    if size < 0:
        raise ValueError(f"negative size: {size}")
    return min(size // BIN_WIDTH, BIN_COUNT - 1)


class BinAllocator:
    """Keeps one free list per size bin and allocates best-fit.

    A request searches its own bin first and then each larger bin in turn,
    taking the smallest fitting slot of the first bin that has one.
    """

    def __init__(self, memory: SystemMemory) -> None:
        self.memory = memory
        self._bins: list[deque[tuple[int, int]]] = [deque() for _ in range(BIN_COUNT)]
        self._allocated: dict[int, int] = {}

    def initialize(self) -> None:
        """Forget every slot; called at the start of a challenge."""
        for free_list in self._bins:
            free_list.clear()
        self._allocated.clear()

    def malloc(self, size: int) -> int:
        """Allocate ``size`` bytes and return the object's address."""
        if not 0 < size <= PAGE_SIZE - METADATA_SIZE:
            raise ValueError(f"size out of range: {size}")
        index, position, address, slot_size = self._best_fit(size)
        del self._bins[index][position]
        remaining = slot_size - size
        if remaining > METADATA_SIZE:
            self._allocated[address] = size
            self._push(address + size + METADATA_SIZE, remaining - METADATA_SIZE)
        else:
            self._allocated[address] = slot_size
        return address

    def free(self, address: int) -> None:
        """Return the object at ``address`` to the head of its bin."""
        try:
            size = self._allocated.pop(address)
        except KeyError:
            raise ValueError(f"address {address:#x} is not allocated") from None
        self._push(address, size)

    def finalize(self) -> None:
        """Drop all bookkeeping at the end of a challenge; pages stay mapped."""
        for free_list in self._bins:
            free_list.clear()
        self._allocated.clear()

    def free_slots(self, index: int) -> list[tuple[int, int]]:
        """The free list of bin ``index`` from head to tail as ``(address, size)`` pairs."""
        if not 0 <= index < BIN_COUNT:
            raise IndexError(f"bin index out of range: {index}")
        return list(self._bins[index])

    def _push(self, address: int, size: int) -> None:
        self._bins[bin_index(size)].appendleft((address, size))

    def _best_fit(self, size: int) -> tuple[int, int, int, int]:
        while True:
            for index in range(bin_index(size), BIN_COUNT):
                candidates = [
                    (slot_size, position, address)
                    for position, (address, slot_size) in enumerate(self._bins[index])
                    if slot_size >= size
                ]
                if candidates:
                    slot_size, position, address = min(candidates)
                    return index, position, address, slot_size
            base = self.memory.mmap(PAGE_SIZE)
            self._push(base + METADATA_SIZE, PAGE_SIZE - METADATA_SIZE)