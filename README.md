# mallocsim

A small laboratory for heap allocators. It simulates the system memory an
allocator takes pages from, has three allocators that manage that memory
with free lists, runs a benchmark that compares them, and turns allocation
traces into a timeline of memory use.

## Simulated memory

`mallocsim.memory.SystemMemory` hands out zero-filled, page-aligned regions
of 4096-byte pages:

- `mmap(size)` maps a positive multiple of the page size and returns its address.
- `munmap(address, size)` releases a page-aligned range inside one mapped region.
- `fill(address, size, value)` and `read_byte(address)` write and read the bytes.
- `record(op, address, size)` writes a line `op address size` to the trace
  stream given to the constructor, if there is one.

Bad sizes, unaligned addresses and unmapped addresses raise `ValueError`.
The `stats` attribute is a `Stats` dataclass with `mmap_size`,
`munmap_size`, `allocated_size`, `freed_size`, `begin_time` and `end_time`;
`elapsed_ms()` gives the run time in whole milliseconds and
`utilization_percentage()` the live object bytes as a percentage of the
mapped bytes (0 when nothing is mapped).

## Allocators

Every object and free slot is preceded by 16 bytes of metadata; `malloc`
returns the address just past it. A request must be between 1 and 4080
bytes. When no free slot fits, the allocator maps a new page. Pages are
never returned to the system.

- `SimpleAllocator` (`mallocsim.simple_malloc`): one free list, searched first-fit.
- `BestFitAllocator` (`mallocsim.best_fit`): one free list, searched for the
  smallest slot that fits (ties go to the slot nearest the head).
- `BinAllocator` (`mallocsim.bin_malloc`): free slots are sorted into four
  bins 1000 bytes wide (`bin_index(size)`, with larger sizes in the last
  bin). A request searches its own bin, then each larger bin, and takes the
  smallest fitting slot of the first bin that has one.

Each allocator has `initialize()`, `malloc(size)`, `free(address)` and
`finalize()`. Freed slots and split-off remainders go to the head of their
list; `free_slots()` (for `BinAllocator`, `free_slots(index)`) lists a free
list from head to tail as `(address, size)` pairs. Freeing an address that
is not allocated raises `ValueError`.

```python
from mallocsim.memory import SystemMemory
from mallocsim.best_fit import BestFitAllocator

memory = SystemMemory(trace=None)
allocator = BestFitAllocator(memory)
allocator.initialize()
address = allocator.malloc(128)
allocator.free(address)
allocator.finalize()
```

## The challenge

```
mallocsim-challenge [--allocator {best-fit,bin,simple}] [--trace]
```

After a warm-up run, five challenges with different object sizes (128,
16, 16–128, 256–4000 and 8–4000 bytes) are run. In each one the simple
allocator and the chosen allocator (`bin` by default) go through a
randomized workload of allocations and frees from a fixed seed. Every
object is filled with a tag byte that is checked when it is freed; a
damaged object stops the run with "An allocated object is broken!". The
time and utilization of both allocators are printed per challenge, and a
line of score data follows at the end.

With `--trace` a smaller workload is used, a warning is printed before and
after, no score line is printed, and each run writes
`trace<N>_simple.txt` and `trace<N>_my.txt` in the current directory with
one line per map (`m`), unmap (`u`), allocation (`a`) and free (`f`).

From Python, `mallocsim.challenge` offers `run_challenge`,
`run_challenges`, `format_stats`, `format_score_data`, `get_object_size`
and `get_object_lifetime`.

## Allocation traces and timelines

`mallocsim.trace_format` writes allocation events in a compact line format
with upper-case hexadecimal numbers: `format_malloc` gives `a <addr> <size>`,
`format_free` gives `f <addr>` and `format_realloc` gives
`r <new addr> <size> <old addr>`. `trace_file_name(token)` gives
`trace_<hex>.txt`.

```
mallocsim-timeline [-o OUTPUT] < trace.txt > timeline.dat
```

This reads such a trace on standard input. For each event it prints a
tab-separated line: the event count, the resident size, the total size
allocated so far, the change in resident size, and the total size freed so
far. The decoded events are written to `OUTPUT` (`trace.txt` by default)
as `op address size` lines, and a summary goes to standard error: event
count, peak size, final resident size, total allocated and the address
range touched. Frees of addresses that were never allocated are reported
and skipped. Reading stops quietly at the first entry without a valid
address; an unknown operation or a missing size prints an error and exits
with status 1.

In Python, `parse_trace(text)` yields the events, `build_timeline(text,
recorder)` yields the timeline lines, and `TimelineRecorder` keeps the
totals. Bad input raises `TraceFormatError`.

## What it does not do

The package does not capture allocations of a running program: there is
no hook that records a real process's `malloc` and `free` calls, only the
functions that format such trace lines. It also does not plot timelines;
`mallocsim-timeline` prints the data for a plotting tool of your choice.

## Tests

```
pip install -e .[test]
pytest
```