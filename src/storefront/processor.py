"""Background order processing.

Orders run on a small fixed thread pool. Workers never call the observer
directly: each stage transition is posted as a ``ProcessingEvent`` onto an
``EventChannel`` and delivered later by whichever thread owns the
interactive context (the CLI main loop, or the API's dispatcher thread).

Per order the events are always, in this order::

    STARTED, PROGRESS(0), PROGRESS(20), ..., PROGRESS(100), COMPLETED

with exactly one COMPLETED. An order interrupted during the staged waits
gets COMPLETED(success=False) without its payment being processed. Events
of two orders running at the same time may interleave arbitrarily.
"""

import logging
import queue
import threading
from concurrent import futures
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from .config import ProcessorSettings
from .errors import InvalidOrderError, ProcessingTimeoutError, ProcessorShutdownError
from .models import Payable
from .utils import format_money

logger = logging.getLogger(__name__)

PROGRESS_STEPS = tuple(range(0, 101, 20))

SUCCESS_MESSAGE = "Order processed successfully!"
FAILURE_MESSAGE = "Payment failed!"
INTERRUPTED_MESSAGE = "Processing interrupted!"


class EventKind(str, Enum):
    STARTED = "STARTED"
    PROGRESS = "PROGRESS"
    COMPLETED = "COMPLETED"


@dataclass(frozen=True)
class ProcessingEvent:
    """One stage transition of one order, as posted by a worker."""

    kind: EventKind
    order_id: int
    percent: int | None = None
    success: bool | None = None
    message: str = ""


class ProcessingObserver(Protocol):
    """Receives staged processing notifications on the interactive context."""

    def on_started(self, order_id: int) -> None: ...

    def on_progress(self, order_id: int, percent: int) -> None: ...

    def on_completed(self, order_id: int, success: bool, message: str) -> None: ...


_STOP = object()


class EventChannel:
    """
    Hand-off queue between worker threads and the interactive context.

    Workers call post(). The consumer side calls dispatch_pending() or
    dispatch() from its own thread, or runs a single dispatcher thread with
    start_dispatcher(). An event goes to the observer registered at the
    moment it is delivered, not the one registered when it was posted.
    """

    def __init__(self):
        self._queue: queue.Queue = queue.Queue()
        self._observer: ProcessingObserver | None = None
        self._observer_lock = threading.Lock()
        self._dispatcher: threading.Thread | None = None

    def set_observer(self, observer: ProcessingObserver | None) -> None:
        with self._observer_lock:
            self._observer = observer

    @property
    def observer(self) -> ProcessingObserver | None:
        with self._observer_lock:
            return self._observer

    def post(self, event: ProcessingEvent) -> None:
        self._queue.put(event)

    def deliver(self, event: ProcessingEvent) -> None:
        """Invoke the matching hook of the current observer."""
        observer = self.observer
        if observer is None:
            logger.debug("No observer registered, dropping %s for order #%d", event.kind.value, event.order_id)
            return
        try:
            match event.kind:
                case EventKind.STARTED:
                    observer.on_started(event.order_id)
                case EventKind.PROGRESS:
                    observer.on_progress(event.order_id, event.percent)
                case EventKind.COMPLETED:
                    observer.on_completed(event.order_id, bool(event.success), event.message)
        except Exception:
            # One faulty observer call must not stall delivery of the rest
            logger.exception("Observer failed handling %s for order #%d", event.kind.value, event.order_id)

    def dispatch(self, timeout: float | None = None) -> bool:
        """
        Wait up to timeout for one event and deliver it.

        Returns:
            True if an event was delivered, False on timeout.
        """
        try:
            event = self._queue.get(timeout=timeout)
        except queue.Empty:
            return False
        if event is _STOP:
            return False
        self.deliver(event)
        return True

    def dispatch_pending(self) -> int:
        """Deliver every event already queued without blocking. Returns the count."""
        count = 0
        while True:
            try:
                event = self._queue.get_nowait()
            except queue.Empty:
                return count
            if event is _STOP:
                continue
            self.deliver(event)
            count += 1

    def pending(self) -> int:
        return self._queue.qsize()

    # --- Dedicated dispatcher thread ---

    def start_dispatcher(self, name: str = "event-dispatcher") -> None:
        """Deliver events continuously on one background thread."""
        if self._dispatcher is not None and self._dispatcher.is_alive():
            return
        self._dispatcher = threading.Thread(target=self._run_dispatcher, name=name, daemon=True)
        self._dispatcher.start()

    def stop_dispatcher(self, timeout: float | None = 5.0) -> None:
        """Stop the dispatcher thread after it has delivered what was queued before."""
        dispatcher = self._dispatcher
        if dispatcher is None:
            return
        self._queue.put(_STOP)
        dispatcher.join(timeout)
        self._dispatcher = None

    @property
    def dispatcher_running(self) -> bool:
        return self._dispatcher is not None and self._dispatcher.is_alive()

    def _run_dispatcher(self) -> None:
        while True:
            event = self._queue.get()
            if event is _STOP:
                return
            self.deliver(event)


class ProcessingHandle:
    """A submitted order's task: its future plus a cooperative cancel switch."""

    def __init__(self, order_id: int, future: futures.Future, cancel_event: threading.Event):
        self.order_id = order_id
        self.future = future
        self._cancel_event = cancel_event

    def cancel(self) -> bool:
        """
        Ask the task to stop.

        A queued task is dropped. A running task stops at its next wait and
        reports itself as interrupted. Returns False if the task had already
        finished.
        """
        if self.future.done():
            return False
        self._cancel_event.set()
        self.future.cancel()
        return True

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    def done(self) -> bool:
        return self.future.done()

    def result(self, timeout: float | None = None):
        """
        Wait for the task result.

        Raises:
            ProcessingTimeoutError: If the task didn't finish in time. The
                task is cancelled before raising.
        """
        try:
            return self.future.result(timeout=timeout)
        except futures.TimeoutError:
            self.cancel()
            logger.warning("Timed out waiting for order #%d; task cancelled", self.order_id)
            raise ProcessingTimeoutError(self.order_id, timeout) from None

    def __repr__(self) -> str:
        return f"ProcessingHandle(order_id={self.order_id}, done={self.done()})"


class OrderProcessor:
    """
    Runs orders through simulated multi-stage processing off the caller's thread.

    Use submit() for the staged path with progress events, or
    submit_for_result() when the caller wants to wait on a single result.
    Call shutdown() (or use the processor as a context manager) before exit.
    """

    def __init__(
        self,
        settings: ProcessorSettings | None = None,
        channel: EventChannel | None = None,
    ):
        self.settings = settings or ProcessorSettings()
        self.channel = channel or EventChannel()
        self._executor = futures.ThreadPoolExecutor(
            max_workers=self.settings.pool_size,
            thread_name_prefix="order-processor",
        )
        self._lock = threading.RLock()
        self._live: dict[futures.Future, threading.Event] = {}
        self._is_shutdown = False
        self._active = 0
        self._peak_active = 0

    # --- Observer ---

    def set_observer(self, observer: ProcessingObserver | None) -> None:
        self.channel.set_observer(observer)

    # --- Staged path ---

    def submit(self, order: Payable) -> ProcessingHandle:
        """
        Queue an order for staged processing and return immediately.

        Raises:
            InvalidOrderError: If order is None or not payable.
            ProcessorShutdownError: If shutdown() has been called.
        """
        order_id = self._validate(order)
        cancel_event = threading.Event()
        future = self._schedule(order_id, self._run_staged, order, cancel_event)
        future.add_done_callback(lambda f: self._on_staged_done(f, order_id))
        logger.info("Order #%d submitted for processing", order_id)
        return ProcessingHandle(order_id, future, cancel_event)

    def _run_staged(self, order: Payable, cancel_event: threading.Event) -> bool:
        order_id = order.order_id
        self._enter()
        try:
            logger.info("Starting to process order #%d", order_id)
            self._post(EventKind.STARTED, order_id)

            for percent in PROGRESS_STEPS:
                if cancel_event.wait(self.settings.step_delay):
                    logger.warning("Processing of order #%d was interrupted", order_id)
                    self._complete(order_id, False, INTERRUPTED_MESSAGE)
                    return False
                logger.debug("Order #%d - progress %d%%", order_id, percent)
                self._post(EventKind.PROGRESS, order_id, percent=percent)

            success = order.process_payment()
            logger.info("Order #%d processing complete (success=%s)", order_id, success)
            self._complete(order_id, success, SUCCESS_MESSAGE if success else FAILURE_MESSAGE)
            return success
        except Exception as e:
            logger.exception("Processing of order #%d failed", order_id)
            self._complete(order_id, False, f"Processing failed: {e}")
            return False
        finally:
            self._leave()

    def _on_staged_done(self, future: futures.Future, order_id: int) -> None:
        self._forget(future)
        # A task cancelled while still queued never ran, so report it here
        if future.cancelled():
            logger.warning("Order #%d was cancelled before it started", order_id)
            self._complete(order_id, False, INTERRUPTED_MESSAGE)

    # --- Single-result path ---

    def submit_for_result(self, order: Payable) -> ProcessingHandle:
        """
        Process an order with one longer wait, without progress events.

        The handle's result is a confirmation or failure string.

        Raises:
            InvalidOrderError: If order is None or not payable.
            ProcessorShutdownError: If shutdown() has been called.
        """
        order_id = self._validate(order)
        cancel_event = threading.Event()
        future = self._schedule(order_id, self._run_single, order, cancel_event)
        future.add_done_callback(self._forget)
        return ProcessingHandle(order_id, future, cancel_event)

    def wait_for_result(self, handle: ProcessingHandle, timeout: float | None = None) -> str:
        """
        Block until the handle's result is ready.

        Args:
            handle: Handle returned by submit_for_result().
            timeout: Seconds to wait; defaults to settings.result_timeout.

        Raises:
            ProcessingTimeoutError: On timeout; the task is cancelled.
        """
        if timeout is None:
            timeout = self.settings.result_timeout
        return handle.result(timeout=timeout)

    def _run_single(self, order: Payable, cancel_event: threading.Event) -> str:
        order_id = order.order_id
        self._enter()
        try:
            logger.info("Processing order #%d", order_id)
            if cancel_event.wait(self.settings.result_delay):
                logger.warning("Processing of order #%d was cancelled", order_id)
                return f"Order #{order_id} cancelled!"
            if order.process_payment():
                return f"Order #{order_id} confirmed! Total: {format_money(order.calculate_total())}"
            return f"Order #{order_id} failed!"
        finally:
            self._leave()

    # --- Lifecycle ---

    def shutdown(self) -> None:
        """
        Stop accepting orders and wind down the pool.

        In-flight orders get settings.shutdown_grace seconds to finish; after
        that running ones are interrupted and queued ones dropped. Calling
        this more than once is harmless.
        """
        with self._lock:
            if self._is_shutdown:
                return
            self._is_shutdown = True
            live = dict(self._live)

        logger.info("Shutting down order processor...")
        if live:
            _, not_done = futures.wait(list(live), timeout=self.settings.shutdown_grace)
            if not_done:
                logger.warning(
                    "%d order task(s) still running after %.1fs; interrupting",
                    len(not_done),
                    self.settings.shutdown_grace,
                )
                for future in not_done:
                    live[future].set()
        self._executor.shutdown(wait=True, cancel_futures=True)
        logger.info("Order processor shutdown complete")

    @property
    def is_shutdown(self) -> bool:
        with self._lock:
            return self._is_shutdown

    def __enter__(self) -> "OrderProcessor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    # --- Instrumentation ---

    @property
    def active_count(self) -> int:
        """Orders currently being worked on by a pool thread."""
        with self._lock:
            return self._active

    @property
    def peak_active_count(self) -> int:
        with self._lock:
            return self._peak_active

    # --- Internals ---

    def _validate(self, order: Payable | None) -> int:
        if order is None:
            raise InvalidOrderError("no order given")
        order_id = getattr(order, "order_id", None)
        if not isinstance(order_id, int) or not isinstance(order, Payable):
            raise InvalidOrderError(f"{order!r} is not a payable order")
        return order_id

    def _schedule(self, order_id: int, fn, order: Payable, cancel_event: threading.Event) -> futures.Future:
        with self._lock:
            if self._is_shutdown:
                raise ProcessorShutdownError(order_id)
            future = self._executor.submit(fn, order, cancel_event)
            self._live[future] = cancel_event
        return future

    def _forget(self, future: futures.Future) -> None:
        with self._lock:
            self._live.pop(future, None)

    def _enter(self) -> None:
        with self._lock:
            self._active += 1
            self._peak_active = max(self._peak_active, self._active)

    def _leave(self) -> None:
        with self._lock:
            self._active -= 1

    def _post(self, kind: EventKind, order_id: int, **fields) -> None:
        self.channel.post(ProcessingEvent(kind=kind, order_id=order_id, **fields))

    def _complete(self, order_id: int, success: bool, message: str) -> None:
        self._post(EventKind.COMPLETED, order_id, success=success, message=message)
