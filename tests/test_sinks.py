import json

from conftest import RecordingSink
from logweave.sinks import JsonlSink, MultiSink, QueueSink


def test_jsonl_sink_appends_records(tmp_path):
    path = tmp_path / "events.jsonl"
    sink = JsonlSink(str(path))
    sink.emit("s1", {"type": "source:removed", "source": "a.log"})
    sink.emit("s2", {"type": "log:append", "source": "a.log", "content": "  at x"})
    sink.close()
    rows = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert rows[0] == {"subscriber": "s1", "type": "source:removed", "source": "a.log"}
    assert rows[1]["content"] == "  at x"


def test_multi_sink_isolates_failures():
    class Broken:
        def emit(self, subscriber_id, event):
            raise RuntimeError("nope")

        def close(self):
            pass

    ok = RecordingSink()
    multi = MultiSink([Broken(), ok])
    multi.emit("s1", {"type": "log:batch", "source": "a", "entries": []})
    assert ok.events == [("s1", {"type": "log:batch", "source": "a", "entries": []})]


def test_queue_sink_routes_per_subscriber():
    sink = QueueSink()
    q1 = sink.attach("s1")
    assert sink.attach("s1") is q1
    sink.emit("s1", {"type": "x"})
    sink.emit("ghost", {"type": "dropped"})
    assert q1.get_nowait() == {"type": "x"}
    sink.detach("s1")
    assert q1.get_nowait() is None
    sink.emit("s1", {"type": "late"})
    assert q1.empty()


def test_queue_sink_cuts_off_subscriber_that_falls_behind():
    sink = QueueSink(maxsize=2)
    q = sink.attach("slow")
    fast = sink.attach("fast")
    for i in range(3):
        sink.emit("slow", {"type": "log:append", "content": str(i)})
    sink.emit("fast", {"type": "x"})

    assert "slow" in sink.overflowed
    drained = []
    while not q.empty():
        drained.append(q.get_nowait())
    assert drained[-1] is None
    assert len(drained) <= 2

    sink.emit("slow", {"type": "late"})
    assert q.empty()
    assert fast.get_nowait() == {"type": "x"}
    assert "fast" not in sink.overflowed


def test_queue_sink_detach_on_full_queue_still_ends_stream():
    sink = QueueSink(maxsize=1)
    q = sink.attach("s1")
    sink.emit("s1", {"type": "x"})
    sink.detach("s1")
    assert q.get_nowait() is None
