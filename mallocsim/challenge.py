"""Malloc challenge runner: a randomized allocate/free workload and its report."""

from __future__ import annotations

import argparse
import contextlib
import math
import random
import sys
import time
from dataclasses import dataclass
from typing import Callable, Protocol, Sequence, TextIO

from mallocsim.best_fit import BestFitAllocator
from mallocsim.bin_malloc import BinAllocator
from mallocsim.memory import Stats, SystemMemory
from mallocsim.simple_malloc import SimpleAllocator

ALIGNMENT = 8
CYCLES = 10
RANDOM_SEED = 12
NEVER_FREED_RATIO = 0.04
FIRST_CHALLENGE_INDEX = 1
LAST_CHALLENGE_INDEX = 5

_LAMBDA = 1.0
_THRESHOLD = 6.0

# (epochs per cycle, objects per ordinary epoch, objects per peak epoch)
_NORMAL_WORKLOAD = (100, 100, 2000)
_TRACED_WORKLOAD = (10, 25, 50)

_CHALLENGES = (
    (1, 128, 128),
    (2, 16, 16),
    (3, 16, 128),
    (4, 256, 4000),
    (5, 8, 4000),
)

_TRACE_WARNING = (
    "!!! WARNING - MALLOC_TRACE is enabled.\n"
    "The result will be different compare to normal builds.\n"
)


class Allocator(Protocol):
    """What the challenge needs from an allocator."""

    def initialize(self) -> None: ...

    def malloc(self, size: int) -> int: ...

    def free(self, address: int) -> None: ...

    def finalize(self) -> None: ...


AllocatorFactory = Callable[[SystemMemory], Allocator]


@dataclass(frozen=True)
class _Object:
    address: int
    size: int
    tag: int


def _exponential_tau(rng: random.Random) -> float:
    u = rng.random()
    if u <= 0.0:
        return _THRESHOLD
    return min(-_LAMBDA * math.log(u), _THRESHOLD)


def get_object_size(rng: random.Random, min_size: int, max_size: int) -> int:
    """A size in ``[min_size, max_size]``, exponentially distributed and 8-byte aligned."""
    if min_size > max_size:
        raise ValueError(f"min_size {min_size} exceeds max_size {max_size}")
    if min_size % ALIGNMENT:
        raise ValueError(f"min_size must be a multiple of {ALIGNMENT}: {min_size}")
    tau = _exponential_tau(rng)
    result = int((max_size - min_size) * tau / _THRESHOLD) + min_size
    return result // ALIGNMENT * ALIGNMENT


def get_object_lifetime(rng: random.Random, min_epoch: int, max_epoch: int) -> int:
    """A lifetime in ``[min_epoch, max_epoch]``, exponentially distributed."""
    if min_epoch > max_epoch:
        raise ValueError(f"min_epoch {min_epoch} exceeds max_epoch {max_epoch}")
    tau = _exponential_tau(rng)
    return int((max_epoch - min_epoch) * tau / _THRESHOLD + min_epoch)


def run_challenge(
    allocator_factory: AllocatorFactory,
    min_size: int,
    max_size: int,
    rng: random.Random,
    trace_path: str | None = None,
    traced: bool = False,
) -> Stats:
    """Run one challenge and return its statistics.

    With ``traced`` the workload is smaller and, if ``trace_path`` is given,
    every mmap, munmap, malloc and free is written to that file.
    Raises RuntimeError if an allocated object was overwritten.
    """
    epochs, small, large = _TRACED_WORKLOAD if traced else _NORMAL_WORKLOAD
    with contextlib.ExitStack() as stack:
        trace: TextIO | None = None
        if traced and trace_path is not None:
            try:
                trace = stack.enter_context(
                    open(trace_path, "w", encoding="ascii", newline="\n")
                )
            except OSError as exc:
                raise OSError(f"Failed to open a trace file: {trace_path}") from exc
        memory = SystemMemory(trace)
        allocator = allocator_factory(memory)
        # The last bucket holds objects that are never freed.
        buckets: list[list[_Object]] = [[] for _ in range(epochs + 1)]
        allocator.initialize()
        memory.stats = Stats()
        stats = memory.stats
        stats.begin_time = time.time()
        tag = 0
        for _cycle in range(CYCLES):
            for epoch in range(epochs):
                count = large if epoch == 0 else small
                for _ in range(count):
                    size = get_object_size(rng, min_size, max_size)
                    lifetime = get_object_lifetime(rng, 1, epochs)
                    stats.allocated_size += size
                    address = allocator.malloc(size)
                    memory.record("a", address, size)
                    memory.fill(address, size, tag)
                    obj = _Object(address, size, tag)
                    # Tag 0 is skipped: it looks like fresh memory.
                    tag = (tag + 1) % 256 or 1
                    if rng.random() < NEVER_FREED_RATIO:
                        buckets[epochs].append(obj)
                    else:
                        buckets[(epoch + lifetime) % epochs].append(obj)
                for obj in buckets[epoch]:
                    stats.freed_size += obj.size
                    if (
                        memory.read_byte(obj.address) != obj.tag
                        or memory.read_byte(obj.address + obj.size - 1) != obj.tag
                    ):
                        raise RuntimeError("An allocated object is broken!")
                    memory.record("f", obj.address, obj.size)
                    allocator.free(obj.address)
                buckets[epoch].clear()
        stats.end_time = time.time()
        allocator.finalize()
    return stats


def format_stats(index: int, simple_stats: Stats, my_stats: Stats) -> str:
    """The comparison table of one challenge."""
    if not FIRST_CHALLENGE_INDEX <= index <= LAST_CHALLENGE_INDEX:
        raise ValueError(f"challenge index out of range: {index}")
    dashes = "-" * 15
    return "".join(
        [
            "=" * 52 + "\n",
            f"Challenge #{index}    | {'simple_malloc':>15} => {'my_malloc':>15}\n",
            f"{dashes:<16}+ {dashes:>15} => {dashes:>15}\n",
            f"{'Time [ms]':>16}| {simple_stats.elapsed_ms():>15} => "
            f"{my_stats.elapsed_ms():>15}\n",
            f"{'Utilization [%] ':>16}| {simple_stats.utilization_percentage():>15} => "
            f"{my_stats.utilization_percentage():>15}\n",
        ]
    )


def format_score_data(results: Sequence[tuple[int, int]]) -> str:
    """The score-sheet line built from ``(time_ms, utilization)`` pairs."""
    data = "".join(f"{time_ms},{utilization}," for time_ms, utilization in results)
    return (
        "\nChallenge done!\n"
        "Please copy & paste the following data in the score sheet!\n"
        f"{data}\n"
    )


def run_challenges(
    allocator_factory: AllocatorFactory,
    traced: bool = False,
    out: TextIO | None = None,
) -> list[tuple[int, int]]:
    """Run every challenge against the simple allocator and the given one.

    Returns ``(time_ms, utilization)`` of the given allocator per challenge.
    """
    out = sys.stdout if out is None else out
    rng = random.Random(RANDOM_SEED)
    if traced:
        out.write(_TRACE_WARNING)
    # Warm-up run.
    run_challenge(SimpleAllocator, 128, 128, rng, None, traced)
    results: list[tuple[int, int]] = []
    for index, min_size, max_size in _CHALLENGES:
        simple_stats = run_challenge(
            SimpleAllocator, min_size, max_size, rng, f"trace{index}_simple.txt", traced
        )
        my_stats = run_challenge(
            allocator_factory, min_size, max_size, rng, f"trace{index}_my.txt", traced
        )
        out.write(format_stats(index, simple_stats, my_stats))
        results.append((my_stats.elapsed_ms(), my_stats.utilization_percentage()))
    if traced:
        out.write(_TRACE_WARNING)
    else:
        out.write(format_score_data(results))
    return results


_ALLOCATORS: dict[str, AllocatorFactory] = {
    "simple": SimpleAllocator,
    "best-fit": BestFitAllocator,
    "bin": BinAllocator,
}


def main(argv: Sequence[str] | None = None) -> int:
    """Command-line entry point."""
    parser = argparse.ArgumentParser(
        prog="mallocsim", description="Run the malloc challenge."
    )
    parser.add_argument(
        "--allocator",
        choices=sorted(_ALLOCATORS),
        default="bin",
        help="allocator to compare with the simple one (default: bin)",
    )
    parser.add_argument(
        "--trace",
        action="store_true",
        help="run the smaller workload and write trace<N>_*.txt files",
    )
    args = parser.parse_args(argv)
    print("Welcome to the malloc challenge!")
    try:
        run_challenges(_ALLOCATORS[args.allocator], traced=args.trace)
    except (OSError, RuntimeError) as exc:
        print(exc, file=sys.stderr)
        return 1
    return 0