"""Best-fit allocator over a singly linked free list."""

from __future__ import annotations

from collections import deque

from mallocsim.memory import METADATA_SIZE, PAGE_SIZE, SystemMemory


class BestFitAllocator:
    """Allocates from the smallest free slot that fits.

    Ties go to the slot nearest the head of the free list. Freed slots and
    split-off remainders are pushed to the head. Every object and free slot
    is preceded by ``METADATA_SIZE`` bytes of metadata.
    """

    def __init__(self, memory: SystemMemory) -> None:
        self.memory = memory
        self._free: deque[tuple[int, int]] = deque()
        self._allocated: dict[int, int] = {}

    def initialize(self) -> None:
        """Forget every slot; called at the start of a challenge."""
        self._free.clear()
        self._allocated.clear()

    def malloc(self, size: int) -> int:
        """Allocate ``size`` bytes and return the object's address."""
        if not 0 < size <= PAGE_SIZE - METADATA_SIZE:
            raise ValueError(f"size out of range: {size}")
        index, address, slot_size = self._best_fit(size)
        del self._free[index]
        remaining = slot_size - size
        if remaining > METADATA_SIZE:
            self._allocated[address] = size
            self._free.appendleft((address + size + METADATA_SIZE, remaining - METADATA_SIZE))
        else:
            self._allocated[address] = slot_size
        return address

    def free(self, address: int) -> None:
        """Return the object at ``address`` to the head of the free list."""
        try:
            size = self._allocated.pop(address)
        except KeyError:
            raise ValueError(f"address {address:#x} is not allocated") from None
        self._free.appendleft((address, size))

    def finalize(self) -> None:
        """Drop all bookkeeping at the end of a challenge; pages stay mapped."""
        self._free.clear()
        self._allocated.clear()

    def free_slots(self) -> list[tuple[int, int]]:
        """The free list from head to tail as ``(address, size)`` pairs."""
        return list(self._free)

    def _best_fit(self, size: int) -> tuple[int, int, int]:
        while True:
            candidates = [
                (slot_size, index, address)
                for index, (address, slot_size) in enumerate(self._free)
                if slot_size >= size
            ]
            if candidates:
                slot_size, index, address = min(candidates)
                return index, address, slot_size
            base = self.memory.mmap(PAGE_SIZE)
            self._free.appendleft((base + METADATA_SIZE, PAGE_SIZE - METADATA_SIZE))