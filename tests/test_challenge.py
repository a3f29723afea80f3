import random

import pytest

from mallocsim.challenge import (
    format_score_data,
    format_stats,
    get_object_lifetime,
    get_object_size,
    main,
    run_challenge,
    run_challenges,
)
from mallocsim.memory import Stats
from mallocsim.simple_malloc import SimpleAllocator
from mallocsim.best_fit import BestFitAllocator


class _Fixed:
    def __init__(self, value):
        self.value = value

    def random(self):
        return self.value


class _Overlapping:
    """Hands out the same address for every request."""

    def __init__(self, memory):
        self.memory = memory
        self.base = None

    def initialize(self):
        self.base = self.memory.mmap(4096)

    def malloc(self, size):
        return self.base

    def free(self, address):
        pass

    def finalize(self):
        pass


def test_object_size_in_range_and_aligned():
    rng = random.Random(3)
    for _ in range(300):
        size = get_object_size(rng, 16, 4000)
        assert 16 <= size <= 4000
        assert size % 8 == 0


def test_object_size_extremes():
    assert get_object_size(_Fixed(0.0), 8, 4000) == 4000 // 8 * 8
    assert get_object_size(_Fixed(0.9999999), 8, 4000) == 8
    assert get_object_size(random.Random(1), 128, 128) == 128


def test_object_size_errors():
    with pytest.raises(ValueError):
        get_object_size(random.Random(1), 256, 128)
    with pytest.raises(ValueError):
        get_object_size(random.Random(1), 12, 128)


def test_object_lifetime_range():
    rng = random.Random(4)
    values = [get_object_lifetime(rng, 1, 10) for _ in range(300)]
    assert all(1 <= v <= 10 for v in values)
    assert get_object_lifetime(_Fixed(0.0), 1, 10) == 10
    assert get_object_lifetime(_Fixed(0.9999999), 1, 10) == 1


def test_run_challenge_trace_matches_stats(tmp_path):
    path = tmp_path / "trace.txt"
    stats = run_challenge(SimpleAllocator, 16, 128, random.Random(1), str(path), True)
    sums = {"a": 0, "f": 0, "m": 0, "u": 0}
    for line in path.read_text().splitlines():
        op, _address, size = line.split()
        sums[op] += int(size)
    assert sums["a"] == stats.allocated_size
    assert sums["f"] == stats.freed_size
    assert sums["m"] == stats.mmap_size
    assert sums["u"] == stats.munmap_size
    assert stats.mmap_size % 4096 == 0
    assert stats.freed_size <= stats.allocated_size
    assert 0 <= stats.utilization_percentage() <= 100


def test_run_challenge_is_deterministic():
    first = run_challenge(BestFitAllocator, 8, 4000, random.Random(5), None, True)
    second = run_challenge(BestFitAllocator, 8, 4000, random.Random(5), None, True)
    assert (first.allocated_size, first.freed_size, first.mmap_size) == (
        second.allocated_size,
        second.freed_size,
        second.mmap_size,
    )


def test_run_challenge_detects_broken_object():
    with pytest.raises(RuntimeError, match="broken"):
        run_challenge(_Overlapping, 16, 16, random.Random(2), None, True)


def test_format_stats_table():
    simple = Stats(begin_time=0.0, end_time=1.5, mmap_size=4096, allocated_size=2048)
    mine = Stats(begin_time=0.0, end_time=0.25, mmap_size=8192, allocated_size=2048)
    text = format_stats(3, simple, mine)
    lines = text.splitlines()
    assert len(lines) == 5
    assert lines[1].startswith("Challenge #3")
    assert "simple_malloc" in lines[1] and "my_malloc" in lines[1]
    assert lines[3].split() [-3:] == [str(simple.elapsed_ms()), "=>", str(mine.elapsed_ms())]
    assert lines[4].split()[-3:] == [
        str(simple.utilization_percentage()),
        "=>",
        str(mine.utilization_percentage()),
    ]


def test_format_stats_rejects_bad_index():
    with pytest.raises(ValueError):
        format_stats(0, Stats(), Stats())
    with pytest.raises(ValueError):
        format_stats(6, Stats(), Stats())


def test_format_score_data():
    assert format_score_data([(1, 2), (3, 4)]) == (
        "\nChallenge done!\n"
        "Please copy & paste the following data in the score sheet!\n"
        "1,2,3,4,\n"
    )


def test_run_challenges_traced(tmp_path, monkeypatch):
    import io

    monkeypatch.chdir(tmp_path)
    out = io.StringIO()
    results = run_challenges(BestFitAllocator, traced=True, out=out)
    assert len(results) == 5
    assert all(0 <= utilization <= 100 for _time, utilization in results)
    text = out.getvalue()
    assert text.count("MALLOC_TRACE is enabled") == 2
    assert "Challenge #5" in text
    assert "Challenge done!" not in text
    for index in range(1, 6):
        assert (tmp_path / f"trace{index}_simple.txt").exists()
        assert (tmp_path / f"trace{index}_my.txt").exists()


def test_main_traced(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    assert main(["--trace", "--allocator", "simple"]) == 0
    out = capsys.readouterr().out
    assert out.startswith("Welcome to the malloc challenge!")
    assert "Challenge #1" in out