import sys
import heapq
import itertools
from concurrent.futures import Future
from pathlib import Path
from typing import Any, Callable, Dict, List, Tuple

# Makes `pipemap` (src/backend/pipemap) importable when pytest runs from the repo root.
_ROOT = Path(__file__).resolve().parents[1]
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

import pytest
from pipemap.core.bus import InMemoryEventBus
from pipemap.core.config import AutoSaveConfig
from pipemap.services.connectivity import ConnectivityMonitor


class ManualTimer:
    def __init__(self, due: float, callback: Callable[[], None]):
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Fake clock: timers fire only inside advance(); submitted work runs inline."""

    def __init__(self):
        self.now = 0.0
        self._heap: List[Tuple[float, int, ManualTimer]] = []
        self._seq = itertools.count()

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self.now + delay, callback)
        heapq.heappush(self._heap, (timer.due, next(self._seq), timer))
        return timer

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        future: Future = Future()
        try:
            future.set_result(fn(*args))
        except Exception as e:
            future.set_exception(e)
        return future

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while self._heap and self._heap[0][0] <= target:
            due, _, timer = heapq.heappop(self._heap)
            self.now = due
            if not timer.cancelled:
                timer.callback()
        self.now = target

    def pending(self) -> int:
        return sum(1 for _, _, t in self._heap if not t.cancelled)

    def shutdown(self) -> None:
        self._heap.clear()


class RecordingStore:
    """Feature store double: records every write with the fake time and fails on demand."""

    def __init__(self, scheduler: ManualScheduler):
        self.scheduler = scheduler
        self.calls: List[Dict[str, Any]] = []
        self.failures_left = 0
        self.always_fail = False

    def _record(self, kind: str, feature_id: str, updates: Dict[str, Any]) -> None:
        self.calls.append({"kind": kind, "id": feature_id, "updates": updates, "at": self.scheduler.now})
        if self.always_fail:
            raise ConnectionError("store unavailable")
        if self.failures_left > 0:
            self.failures_left -= 1
            raise ConnectionError("transient store error")

    def update_pipeline(self, feature_id, updates):
        self._record("pipeline", feature_id, updates)

    def update_zone(self, feature_id, updates):
        self._record("zone", feature_id, updates)

    def update_marker(self, feature_id, updates):
        self._record("marker", feature_id, updates)


@pytest.fixture()
def scheduler():
    return ManualScheduler()


@pytest.fixture()
def store(scheduler):
    return RecordingStore(scheduler)


@pytest.fixture()
def bus():
    return InMemoryEventBus()


@pytest.fixture()
def connectivity(bus):
    return ConnectivityMonitor(bus=bus, online=True)


@pytest.fixture()
def config():
    return AutoSaveConfig(debounce_delay=2.0, max_retries=3, retry_delay=1.0)


@pytest.fixture()
def events(bus):
    """Collects (event_type, payload) for every save event."""
    from pipemap.core.bus import SAVE_FAILED, SAVE_RETRYING, SAVE_SUCCEEDED

    received: List[Tuple[str, Dict[str, Any]]] = []
    for event_type in (SAVE_SUCCEEDED, SAVE_FAILED, SAVE_RETRYING):
        bus.subscribe(event_type, lambda payload, et=event_type: received.append((et, payload)))
    return received
