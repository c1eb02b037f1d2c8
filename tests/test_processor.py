"""Tests for OrderProcessor and EventChannel."""

import threading
import time
from concurrent import futures
from decimal import Decimal

import pytest

from storefront.config import ProcessorSettings
from storefront.errors import InvalidOrderError, ProcessingTimeoutError, ProcessorShutdownError
from storefront.models import Clothing, Electronics, Order
from storefront.processor import (
    FAILURE_MESSAGE,
    INTERRUPTED_MESSAGE,
    SUCCESS_MESSAGE,
    EventChannel,
    EventKind,
    OrderProcessor,
    ProcessingEvent,
)

from .conftest import RecordingObserver, pump_until


def make_order(sequence, *prices):
    items = [Clothing(i + 1, f"Item {i + 1}", price, "M", "Cotton") for i, price in enumerate(prices)]
    return Order.create("Customer", [(item, 1) for item in items], sequence=sequence)


class TestStagedProcessing:
    def test_happy_path(self, processor, observer, sequence):
        order = make_order(sequence, "100.00", "250.00", "40.00")
        processor.submit(order)

        pump_until(processor.channel, lambda: observer.completions())

        events = observer.for_order(order.order_id)
        assert events[0] == ("started", order.order_id)
        progress = [e[2] for e in events if e[0] == "progress"]
        assert progress == [0, 20, 40, 60, 80, 100]
        assert events[-1] == ("completed", order.order_id, True, SUCCESS_MESSAGE)
        assert len(events) == 8
        assert order.paid is True
        assert order.calculate_total() == Decimal("390.00")

    def test_empty_order_fails(self, processor, observer, sequence):
        order = make_order(sequence)
        processor.submit(order)

        pump_until(processor.channel, lambda: observer.completions())

        assert observer.completions() == [("completed", order.order_id, False, FAILURE_MESSAGE)]
        assert order.paid is False

    def test_submit_returns_immediately(self, observer, sequence):
        slow = ProcessorSettings(pool_size=1, step_delay=0.2, shutdown_grace=0.1)
        with OrderProcessor(slow) as proc:
            proc.set_observer(observer)
            start = time.monotonic()
            proc.submit(make_order(sequence, "1.00"))
            assert time.monotonic() - start < 0.2

    def test_events_delivered_on_consumer_thread(self, processor, observer, sequence):
        processor.submit(make_order(sequence, "5.00"))
        pump_until(processor.channel, lambda: observer.completions())
        assert set(observer.threads) == {threading.current_thread().name}

    def test_nothing_delivered_without_dispatch(self, processor, observer, sequence):
        handle = processor.submit(make_order(sequence, "5.00"))
        handle.future.result(timeout=5)
        assert observer.events == []
        assert processor.channel.pending() == 8
        assert processor.channel.dispatch_pending() == 8
        assert len(observer.events) == 8

    def test_three_orders_on_pool_of_two(self, processor, observer, sequence):
        orders = [make_order(sequence, "10.00") for _ in range(3)]
        for order in orders:
            processor.submit(order)

        running: set[int] = set()
        peak = 0

        def track():
            nonlocal peak
            for event in observer.events[track.seen:]:
                if event[0] == "started":
                    running.add(event[1])
                elif event[0] == "completed":
                    running.discard(event[1])
                peak = max(peak, len(running))
            track.seen = len(observer.events)
            return len(observer.completions()) == 3

        track.seen = 0
        pump_until(processor.channel, track)

        assert peak <= 2
        assert processor.peak_active_count <= 2
        assert all(order.paid for order in orders)
        for order in orders:
            events = observer.for_order(order.order_id)
            assert events[0][0] == "started"
            assert [e[2] for e in events if e[0] == "progress"] == [0, 20, 40, 60, 80, 100]
            assert [e[0] for e in events].count("completed") == 1
            assert events[-1][0] == "completed"

    def test_active_count_drops_to_zero(self, processor, observer, sequence):
        handle = processor.submit(make_order(sequence, "1.00"))
        handle.future.result(timeout=5)
        assert processor.active_count == 0
        assert processor.peak_active_count == 1

    def test_observer_swapped_mid_task(self, processor, observer, sequence):
        order = make_order(sequence, "1.00")
        handle = processor.submit(order)
        handle.future.result(timeout=5)

        processor.channel.dispatch()  # started -> first observer
        second = RecordingObserver()
        processor.set_observer(second)
        processor.channel.dispatch_pending()

        assert observer.events == [("started", order.order_id)]
        assert len(second.events) == 7
        assert second.events[-1][0] == "completed"

    def test_cancel_running_order(self, observer, sequence):
        slow = ProcessorSettings(pool_size=1, step_delay=0.5, shutdown_grace=0.1)
        with OrderProcessor(slow) as proc:
            proc.set_observer(observer)
            order = make_order(sequence, "1.00")
            handle = proc.submit(order)
            pump_until(proc.channel, lambda: observer.events)
            assert handle.cancel() is True
            pump_until(proc.channel, lambda: observer.completions())

        assert observer.completions() == [("completed", order.order_id, False, INTERRUPTED_MESSAGE)]
        assert order.paid is False

    def test_cancel_queued_order_reports_once(self, observer, sequence):
        slow = ProcessorSettings(pool_size=1, step_delay=0.05, shutdown_grace=2.0)
        with OrderProcessor(slow) as proc:
            proc.set_observer(observer)
            first = make_order(sequence, "1.00")
            queued = make_order(sequence, "2.00")
            proc.submit(first)
            handle = proc.submit(queued)
            handle.cancel()
            pump_until(proc.channel, lambda: len(observer.completions()) == 2)

        assert observer.for_order(queued.order_id)[-1] == (
            "completed",
            queued.order_id,
            False,
            INTERRUPTED_MESSAGE,
        )
        assert [e[0] for e in observer.for_order(queued.order_id)].count("completed") == 1
        assert queued.paid is False
        assert first.paid is True

    def test_cancel_after_completion(self, processor, sequence):
        handle = processor.submit(make_order(sequence, "1.00"))
        handle.future.result(timeout=5)
        assert handle.cancel() is False

    def test_failing_order_still_completes(self, processor, observer, sequence):
        class Broken(Order):
            def process_payment(self):
                raise RuntimeError("card reader on fire")

        order = Broken(order_id=sequence.next(), items=[Electronics(1, "X", "1", "Y", 0)])
        processor.submit(order)
        pump_until(processor.channel, lambda: observer.completions())

        (event,) = observer.completions()
        assert event[2] is False
        assert "card reader on fire" in event[3]


class TestSubmitValidation:
    def test_none_rejected(self, processor):
        with pytest.raises(InvalidOrderError):
            processor.submit(None)

    def test_non_order_rejected(self, processor):
        with pytest.raises(InvalidOrderError):
            processor.submit("order 1001")

    def test_none_rejected_for_result(self, processor):
        with pytest.raises(InvalidOrderError):
            processor.submit_for_result(None)

    def test_submit_after_shutdown(self, processor, sequence):
        processor.shutdown()
        with pytest.raises(ProcessorShutdownError):
            processor.submit(make_order(sequence, "1.00"))
        with pytest.raises(ProcessorShutdownError):
            processor.submit_for_result(make_order(sequence, "1.00"))


class TestSubmitForResult:
    def test_confirmation(self, processor, observer, sequence):
        order = make_order(sequence, "100.00", "250.00", "40.00")
        handle = processor.submit_for_result(order)
        result = processor.wait_for_result(handle)

        assert result == f"Order #{order.order_id} confirmed! Total: 390.00 DH"
        assert order.paid is True
        assert processor.channel.pending() == 0
        assert observer.events == []

    def test_failure(self, processor, sequence):
        order = make_order(sequence)
        result = processor.wait_for_result(processor.submit_for_result(order))
        assert result == f"Order #{order.order_id} failed!"
        assert order.paid is False

    def test_timeout_cancels(self, sequence):
        slow = ProcessorSettings(pool_size=1, result_delay=5.0, shutdown_grace=1.0)
        with OrderProcessor(slow) as proc:
            order = make_order(sequence, "1.00")
            handle = proc.submit_for_result(order)
            with pytest.raises(ProcessingTimeoutError) as e:
                proc.wait_for_result(handle, timeout=0.05)
            assert e.value.order_id == order.order_id
            assert handle.cancel_requested
            futures.wait([handle.future], timeout=2)

        assert order.paid is False


class TestShutdown:
    def test_shutdown_twice(self, fast_settings):
        proc = OrderProcessor(fast_settings)
        proc.shutdown()
        proc.shutdown()
        assert proc.is_shutdown

    def test_shutdown_waits_for_in_flight(self, processor, observer, sequence):
        order = make_order(sequence, "1.00")
        processor.submit(order)
        processor.shutdown()
        assert order.paid is True
        processor.channel.dispatch_pending()
        assert observer.completions()[-1][2] is True

    def test_shutdown_interrupts_after_grace(self, observer, sequence):
        slow = ProcessorSettings(pool_size=1, step_delay=1.0, shutdown_grace=0.05)
        proc = OrderProcessor(slow)
        proc.set_observer(observer)
        running = make_order(sequence, "1.00")
        queued = make_order(sequence, "2.00")
        proc.submit(running)
        proc.submit(queued)

        start = time.monotonic()
        proc.shutdown()
        assert time.monotonic() - start < 1.0

        proc.channel.dispatch_pending()
        completions = {e[1]: e for e in observer.completions()}
        assert completions[running.order_id][2:] == (False, INTERRUPTED_MESSAGE)
        assert completions[queued.order_id][2:] == (False, INTERRUPTED_MESSAGE)
        assert not running.paid and not queued.paid


class TestEventChannel:
    def test_no_observer_drops_events(self):
        channel = EventChannel()
        channel.post(ProcessingEvent(EventKind.STARTED, 1))
        assert channel.dispatch_pending() == 1

    def test_dispatch_timeout(self):
        assert EventChannel().dispatch(timeout=0.01) is False

    def test_observer_error_does_not_stop_delivery(self, observer):
        class Exploding(RecordingObserver):
            def on_started(self, order_id):
                raise ValueError("boom")

        channel = EventChannel()
        exploding = Exploding()
        channel.set_observer(exploding)
        channel.post(ProcessingEvent(EventKind.STARTED, 1))
        channel.post(ProcessingEvent(EventKind.PROGRESS, 1, percent=0))
        assert channel.dispatch_pending() == 2
        assert exploding.events == [("progress", 1, 0)]

    def test_dispatcher_thread(self, observer):
        channel = EventChannel()
        channel.set_observer(observer)
        channel.start_dispatcher(name="test-dispatcher")
        try:
            channel.post(ProcessingEvent(EventKind.STARTED, 7))
            channel.post(ProcessingEvent(EventKind.COMPLETED, 7, success=True, message="ok"))
        finally:
            channel.stop_dispatcher()

        assert observer.events == [("started", 7), ("completed", 7, True, "ok")]
        assert set(observer.threads) == {"test-dispatcher"}
        assert not channel.dispatcher_running
