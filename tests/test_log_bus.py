"""
Tests for the log bus — ordering, replay, backpressure, heartbeat.
"""

from __future__ import annotations

import threading

from ttshub.core.services.log_bus import LogBus


class TestPublish:
    def test_sequence_numbers(self, bus: LogBus):
        a = bus.emit("x", "one")
        b = bus.emit("y", "two", stream="stderr")
        assert (a.seq, b.seq) == (1, 2)
        assert bus.seq == 2
        assert b.stream == "stderr"

    def test_concurrent_publishers_get_unique_seq(self):
        bus = LogBus(history_size=5000)

        def produce(tag: str) -> None:
            for i in range(200):
                bus.emit(tag, str(i))

        threads = [threading.Thread(target=produce, args=(f"t{n}",)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        seqs = [line.seq for line in bus.history()]
        assert seqs == list(range(1, 801))
        # Per-producer order is preserved.
        t0 = [int(line.text) for line in bus.history(source_tag="t0")]
        assert t0 == list(range(200))


class TestHistory:
    def test_ring_buffer(self):
        bus = LogBus(history_size=3)
        for i in range(5):
            bus.emit("x", str(i))
        assert [line.text for line in bus.history()] == ["2", "3", "4"]

    def test_filter_and_limit(self, bus: LogBus):
        for i in range(4):
            bus.emit("a" if i % 2 else "b", str(i))
        assert [line.text for line in bus.history(source_tag="a")] == ["1", "3"]
        assert [line.text for line in bus.history(limit=1)] == ["3"]
        assert bus.history(limit=0) == []

    def test_clear_keeps_sequence_and_last_line(self, bus: LogBus):
        bus.emit("x", "one")
        assert bus.clear() == 1
        assert bus.history() == []
        assert bus.last_line("x").text == "one"
        assert bus.emit("x", "two").seq == 2


class TestSubscribe:
    def test_replay_since(self, bus: LogBus):
        for i in range(3):
            bus.emit("x", str(i))
        stream = bus.subscribe(since=1)
        assert [next(stream).text, next(stream).text] == ["1", "2"]
        stream.close()
        assert bus.subscriber_count == 0

    def test_live_lines(self, bus: LogBus):
        bus.emit("x", "before")
        stream = bus.subscribe(since=None, heartbeat=0.05)
        # The generator registers on the first next().
        assert next(stream) is None
        bus.emit("x", "live")
        line = next(stream)
        while line is None or line.text != "live":
            line = next(stream)
        stream.close()

    def test_heartbeat_yields_none(self, bus: LogBus):
        stream = bus.subscribe(since=None, heartbeat=0.01)
        assert next(stream) is None
        stream.close()

    def test_drop_oldest_when_full(self):
        bus = LogBus(subscriber_queue_size=2)
        sub = bus.attach()
        for i in range(5):
            bus.emit("x", str(i))
        assert sub.dropped == 3
        assert [sub.pop(0).text, sub.pop(0).text] == ["3", "4"]
        assert sub.pop(0) is None
        bus.detach(sub)
        assert bus.subscriber_count == 0
