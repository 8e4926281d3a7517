"""Tests for the telemetry bus."""

import threading

from hubcrawl.telemetry import HUB_CONFIRMED, HUB_REJECTED, TelemetryBus


class TestTelemetryBus:
    def test_history_is_filterable(self, bus):
        bus.emit(HUB_CONFIRMED, "a.com", url="https://a.com/world/fr")
        bus.emit(HUB_REJECTED, "a.com", url="https://a.com/world/de")
        assert [e.type for e in bus.events()] == [HUB_CONFIRMED, HUB_REJECTED]
        [ev] = bus.events(HUB_CONFIRMED)
        assert ev.domain == "a.com"
        assert ev.data == {"url": "https://a.com/world/fr"}
        assert ev.timestamp > 0

    def test_subscribers_receive_events_in_order(self, bus):
        got = []
        done = threading.Event()

        def sub(ev):
            got.append(ev.data["n"])
            if len(got) == 3:
                done.set()

        bus.subscribe(sub)
        for n in range(3):
            bus.emit(HUB_CONFIRMED, n=n)
        assert done.wait(2.0)
        assert got == [0, 1, 2]

    def test_failing_subscriber_does_not_stop_delivery(self, bus):
        got = threading.Event()

        def bad(ev):
            raise RuntimeError("subscriber bug")

        bus.subscribe(bad)
        bus.subscribe(lambda ev: got.set())
        bus.emit(HUB_CONFIRMED)
        assert got.wait(2.0)

    def test_full_queue_drops_without_blocking(self):
        bus = TelemetryBus(queue_size=1)
        entered = threading.Event()
        release = threading.Event()

        def slow(ev):
            entered.set()
            release.wait(2.0)

        bus.subscribe(slow)
        bus.emit(HUB_CONFIRMED)
        assert entered.wait(2.0)
        bus.emit(HUB_CONFIRMED)     # fills the one slot
        bus.emit(HUB_CONFIRMED)
        bus.emit(HUB_CONFIRMED)
        assert bus.dropped == 2
        assert len(bus.events()) == 4
        release.set()
        bus.close()

    def test_history_is_bounded(self):
        bus = TelemetryBus(history_size=3)
        for n in range(5):
            bus.emit(HUB_CONFIRMED, n=n)
        assert [e.data["n"] for e in bus.events()] == [2, 3, 4]

    def test_close_without_subscribers_is_a_noop(self):
        TelemetryBus().close()
