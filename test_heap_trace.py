import pytest

from heap_trace import HeapTrace, TraceError, TraceEvent, TraceEventType


def test_histogram_keeps_peak_counts():
    trace = HeapTrace(1024)
    trace.record_all([
        {"type": "alloc", "size": 12},
        {"type": "alloc", "size": 12},
        {"type": "alloc", "size": 4},
        {"type": "dealloc", "size": 12},
        {"type": "alloc", "size": 12},
        {"type": "dealloc", "size": 12},
        {"type": "dealloc", "size": 12},
    ])
    assert trace.histogram() == {4: 1, 12: 2}
    assert list(trace.histogram()) == [4, 12]
    assert trace.entries[12].total == 3
    assert trace.entries[12].current == 0
    assert trace.max_load() == 28


def test_resize_moves_allocation():
    trace = HeapTrace(1024)
    trace.record(TraceEvent(TraceEventType.ALLOC, 8))
    trace.record(TraceEvent(TraceEventType.GROW_IN_PLACE, 8, 16))
    trace.record(TraceEvent.from_dict({"type": "shrink_in_place", "size": 16, "new_size": 4}))
    assert trace.histogram() == {4: 1, 8: 1, 16: 1}
    assert trace.entries[4].current == 1
    assert trace.entries[8].current == 0


def test_dealloc_without_alloc_is_rejected():
    trace = HeapTrace(1024)
    with pytest.raises(TraceError):
        trace.dealloc(8)
    trace.alloc(8)
    trace.dealloc(8)
    with pytest.raises(TraceError):
        trace.dealloc(8)


def test_alloc_bigger_than_heap_is_rejected():
    trace = HeapTrace(64)
    with pytest.raises(TraceError):
        trace.alloc(128)


def test_unknown_event_type():
    with pytest.raises(ValueError):
        TraceEvent.from_dict({"type": "free", "size": 4})


def test_usage_stats(capsys):
    trace = HeapTrace(100)
    assert trace.is_empty()
    trace.record_all([{"type": "alloc", "size": 10}, {"type": "alloc", "size": 40}])
    assert not trace.is_empty()

    stats = trace.get_usage_stats()
    assert stats["rows"] == [(10, 1, 1), (40, 1, 1)]
    assert stats["max_load"] == 50
    assert stats["max_load_percent"] == pytest.approx(50.0)

    trace.print_usage_summary()
    out = capsys.readouterr().out
    assert "HEAP USAGE" in out
    assert "Maximum heap load: 50 / 50.00%" in out
