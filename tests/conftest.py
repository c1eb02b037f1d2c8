"""Pytest fixtures for storefront tests."""

import tempfile
import threading
import time
from pathlib import Path

import pytest

from storefront.config import ProcessorSettings
from storefront.context import StorefrontContext
from storefront.file_store import FileStore
from storefront.models import Clothing, Electronics, OrderIdSequence
from storefront.processor import EventChannel, OrderProcessor


@pytest.fixture
def temp_dir():
    """Create a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def fast_settings():
    """Processor settings with millisecond waits."""
    return ProcessorSettings(
        pool_size=2,
        step_delay=0.01,
        result_delay=0.05,
        result_timeout=5.0,
        shutdown_grace=2.0,
    )


@pytest.fixture
def laptop():
    return Electronics(1, "Laptop", "9999.00", "Dell", 24)


@pytest.fixture
def headphones():
    return Electronics(3, "Headphones", "1499.00", "Sony", 12)


@pytest.fixture
def caftan():
    return Clothing(7, "Caftan", "1200.00", "M", "Silk")


@pytest.fixture
def tshirt():
    return Clothing(9, "T-Shirt", "149.00", "M", "Cotton")


@pytest.fixture
def sequence():
    return OrderIdSequence()


class RecordingObserver:
    """Observer that records every notification with the thread it arrived on."""

    def __init__(self):
        self.events: list[tuple] = []
        self.threads: list[str] = []
        self._lock = threading.Lock()

    def _record(self, event: tuple) -> None:
        with self._lock:
            self.events.append(event)
            self.threads.append(threading.current_thread().name)

    def on_started(self, order_id):
        self._record(("started", order_id))

    def on_progress(self, order_id, percent):
        self._record(("progress", order_id, percent))

    def on_completed(self, order_id, success, message):
        self._record(("completed", order_id, success, message))

    def for_order(self, order_id) -> list[tuple]:
        with self._lock:
            return [e for e in self.events if e[1] == order_id]

    def completions(self) -> list[tuple]:
        with self._lock:
            return [e for e in self.events if e[0] == "completed"]


@pytest.fixture
def observer():
    return RecordingObserver()


def pump_until(channel: EventChannel, predicate, timeout: float = 5.0) -> None:
    """Deliver channel events on the calling thread until predicate() holds."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("timed out waiting for processing events")
        channel.dispatch(timeout=0.05)


@pytest.fixture
def processor(fast_settings, observer):
    """An OrderProcessor with a recording observer; shut down after the test."""
    proc = OrderProcessor(fast_settings)
    proc.set_observer(observer)
    yield proc
    proc.shutdown()


@pytest.fixture
def context(temp_dir, fast_settings):
    """A StorefrontContext over the sample catalog in a temp data dir."""
    store = FileStore(temp_dir)
    ctx = StorefrontContext(
        store=store,
        processor=OrderProcessor(fast_settings),
        catalog=store.load_or_create_catalog(),
    )
    yield ctx
    ctx.shutdown()
