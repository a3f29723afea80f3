import io

import pytest

from mallocsim.timeline import (
    TimelineRecorder,
    TraceEvent,
    TraceFormatError,
    build_timeline,
    main,
    parse_trace,
)


def test_record_alloc_updates_state_and_trace():
    out = io.StringIO()
    recorder = TimelineRecorder(out)
    recorder.record_alloc(100, 50)
    assert out.getvalue() == "a 100 50\n"
    assert recorder.resident_size == 50
    assert recorder.peak_size == 50
    assert recorder.allocated_total == 50
    assert recorder.range_begin == 100
    assert recorder.range_end == 100 + 50


def test_record_free_returns_first_size():
    out = io.StringIO()
    recorder = TimelineRecorder(out)
    recorder.record_alloc(100, 50)
    recorder.record_alloc(100, 70)
    assert recorder.record_free(100) == 50
    assert out.getvalue().splitlines()[-1] == "f 100 50"
    assert recorder.freed_total == 50
    assert recorder.peak_size == 50 + 70


def test_record_free_unknown_address_changes_nothing():
    recorder = TimelineRecorder()
    assert recorder.record_free(42) is None
    assert recorder.resident_size == 0
    assert recorder.freed_total == 0


def test_parse_trace_events():
    events = list(parse_trace("a 10 20\nf 10\nr 30 8 10\n"))
    assert events == [
        TraceEvent("a", 0x10, 0x20),
        TraceEvent("f", 0x10),
        TraceEvent("r", 0x30, 0x8, 0x10),
    ]


def test_parse_trace_reinterprets_as_signed():
    assert list(parse_trace("f FFFFFFFFFFFFFFFF")) == [TraceEvent("f", -1)]


def test_parse_trace_stops_on_missing_address():
    assert list(parse_trace("a 10 20\nf")) == [TraceEvent("a", 0x10, 0x20)]


def test_parse_trace_unknown_op():
    with pytest.raises(TraceFormatError, match="Unknown op: x at count 1"):
        list(parse_trace("f 10\nx 20\n"))


def test_parse_trace_missing_sizes():
    with pytest.raises(TraceFormatError, match="alloc"):
        list(parse_trace("a 10"))
    with pytest.raises(TraceFormatError, match="realloc"):
        list(parse_trace("r 10 20"))


def test_build_timeline_invariants():
    text = "a 10 20\na 40 8\nr 50 30 10\nf 40\nf 50\n"
    recorder = TimelineRecorder()
    lines = list(build_timeline(text, recorder))
    assert len(lines) == 5
    previous = 0
    for number, line in enumerate(lines):
        count, resident, allocated, delta, freed = map(int, line.split("\t"))
        assert count == number
        assert resident == allocated - freed
        assert delta == resident - previous
        previous = resident
    assert recorder.resident_size == 0
    assert recorder.alloc_sizes == {}
    assert recorder.count == 5


def test_build_timeline_realloc_from_null():
    recorder = TimelineRecorder()
    lines = list(build_timeline("r 10 8 0\n", recorder))
    assert len(lines) == 1
    assert recorder.freed_total == 0
    assert recorder.alloc_sizes == {0x10: 0x8}


def test_build_timeline_warns_on_unknown_free():
    recorder = TimelineRecorder()
    lines = list(build_timeline("f 99\n", recorder))
    assert lines[0] == "Addr 0x99 is being freed but not allocated"
    assert len(lines) == 2


def test_summary_reports_state():
    recorder = TimelineRecorder()
    list(build_timeline("a 10 20\nf 10\n", recorder))
    lines = recorder.summary().splitlines()
    assert lines[0] == "count: 2"
    assert lines[1] == f"peak_size: {recorder.peak_size}"
    assert lines[2] == "resident_size at last: 0"
    assert lines[6] == f"range_size: {recorder.range_end - recorder.range_begin}"


def test_main_writes_timeline(tmp_path, monkeypatch, capsys):
    output = tmp_path / "out.txt"
    monkeypatch.setattr("sys.stdin", io.StringIO("a 10 20\nf 10\n"))
    assert main(["-o", str(output)]) == 0
    captured = capsys.readouterr()
    assert len(captured.out.splitlines()) == 2
    assert "count: 2" in captured.err
    ops = [line.split()[0] for line in output.read_text().splitlines()]
    assert ops == ["a", "f"]


def test_main_unknown_op(tmp_path, monkeypatch, capsys):
    monkeypatch.setattr("sys.stdin", io.StringIO("q 10\n"))
    assert main(["-o", str(tmp_path / "out.txt")]) == 1
    assert "Unknown op: q" in capsys.readouterr().out