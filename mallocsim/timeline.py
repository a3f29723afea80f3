"""Turn an allocation-hook trace into a memory-usage timeline."""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from typing import Iterator, Sequence, TextIO

INT64_MAX = (1 << 63) - 1
INT64_MIN = -(1 << 63)
_UINT64_MASK = (1 << 64) - 1


class TraceFormatError(ValueError):
    """The trace cannot be read."""


@dataclass(frozen=True)
class TraceEvent:
    """One traced call: ``a``, ``f`` or ``r``."""

    op: str
    address: int
    size: int = 0
    old_address: int = 0


def _to_int64(value: int) -> int:
    value &= _UINT64_MASK
    return value - (1 << 64) if value > INT64_MAX else value


def _parse_hex(token: str | None) -> int | None:
    if token is None:
        return None
    try:
        return _to_int64(int(token, 16))
    except ValueError:
        return None


def _read_numbers(tokens: Iterator[str], count: int, message: str) -> list[int]:
    values = [_parse_hex(next(tokens, None)) for _ in range(count)]
    if any(value is None for value in values):
        raise TraceFormatError(message)
    return values  # type: ignore[return-value]


def parse_trace(text: str) -> Iterator[TraceEvent]:
    """Yield the events of a trace; stops quietly where an op lacks a valid address."""
    tokens = iter(text.split())
    count = 0
    for op in tokens:
        address = _parse_hex(next(tokens, None))
        if address is None:
            return
        if op == "a":
            (size,) = _read_numbers(tokens, 1, "Failed to read size for alloc")
            yield TraceEvent("a", address, size)
        elif op == "r":
            size, old_address = _read_numbers(
                tokens, 2, "Failed to read size and old_addr for realloc"
            )
            yield TraceEvent("r", address, size, old_address)
        elif op == "f":
            yield TraceEvent("f", address)
        else:
            raise TraceFormatError(f"Unknown op: {op} at count {count}")
        count += 1


class TimelineRecorder:
    """Tracks live allocations, totals, the peak and the touched address range."""

    def __init__(self, trace_out: TextIO | None = None) -> None:
        self.trace_out = trace_out
        self.alloc_sizes: dict[int, int] = {}
        self.peak_size = 0
        self.resident_size = 0
        self.allocated_total = 0
        self.freed_total = 0
        self.range_begin = INT64_MAX
        self.range_end = INT64_MIN
        self.count = 0

    def _trace_op(self, op: str, addr: int, size: int) -> None:
        if self.trace_out is not None:
            self.trace_out.write(f"{op} {addr} {size}\n")
        self.range_begin = min(self.range_begin, addr)
        self.range_end = max(self.range_end, addr + size)

    def record_alloc(self, addr: int, size: int) -> None:
        """Record an allocation; an address already live keeps its first size."""
        self.alloc_sizes.setdefault(addr, size)
        self.resident_size += size
        self.allocated_total += size
        self.peak_size = max(self.peak_size, self.resident_size)
        self._trace_op("a", addr, size)

    def record_free(self, addr: int) -> int | None:
        """Record a release and return its size, or None if ``addr`` is not live."""
        size = self.alloc_sizes.pop(addr, None)
        if size is None:
            return None
        self.resident_size -= size
        self.freed_total += size
        self._trace_op("f", addr, size)
        return size

    def summary(self) -> str:
        """Closing report of the run."""
        return "\n".join(
            [
                f"count: {self.count}",
                f"peak_size: {self.peak_size}",
                f"resident_size at last: {self.resident_size}",
                f"allocation_size_accumlated: {self.allocated_total}",
                f"range_begin: {self.range_begin}",
                f"range_end: {self.range_end}",
                f"range_size: {self.range_end - self.range_begin}",
            ]
        )


def _free(recorder: TimelineRecorder, addr: int) -> Iterator[str]:
    if recorder.record_free(addr) is None:
        yield f"Addr 0x{addr & _UINT64_MASK:X} is being freed but not allocated"


def build_timeline(text: str, recorder: TimelineRecorder) -> Iterator[str]:
    """Feed a trace to ``recorder`` and yield one tab-separated line per event.

    Each line holds the event number, resident size, total allocated, change
    in resident size and total freed. Releases of unknown addresses yield a
    warning line before the event's line.
    """
    last_resident = recorder.resident_size
    for event in parse_trace(text):
        if event.op == "a":
            recorder.record_alloc(event.address, event.size)
        elif event.op == "r":
            if event.old_address:
                yield from _free(recorder, event.old_address)
            recorder.record_alloc(event.address, event.size)
        else:
            yield from _free(recorder, event.address)
        yield (
            f"{recorder.count}\t{recorder.resident_size}\t{recorder.allocated_total}\t"
            f"{recorder.resident_size - last_resident}\t{recorder.freed_total}"
        )
        last_resident = recorder.resident_size
        recorder.count += 1


def main(argv: Sequence[str] | None = None) -> int:
    """Read a trace from stdin, print the timeline and write the decoded trace."""
    parser = argparse.ArgumentParser(
        prog="mallocsim-timeline",
        description="Convert an allocation trace on stdin into a timeline.",
    )
    parser.add_argument(
        "-o", "--output", default="trace.txt", help="decoded trace file (default: trace.txt)"
    )
    args = parser.parse_args(argv)
    text = sys.stdin.read()
    try:
        trace_out = open(args.output, "w", encoding="ascii", newline="\n")
    except OSError:
        print("Failed to open trace file")
        return 1
    recorder = TimelineRecorder(trace_out)
    with trace_out:
        try:
            for line in build_timeline(text, recorder):
                print(line)
        except TraceFormatError as exc:
            print(exc)
            return 1
    print(recorder.summary(), file=sys.stderr)
    return 0