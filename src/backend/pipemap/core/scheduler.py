import threading
import concurrent.futures
from typing import Any, Callable, Set
from pipemap.core.logger import get_logger

logger = get_logger(__name__)

class ThreadScheduler:
    """
    Runs debounce/backoff timers on daemon `threading.Timer`s and store calls
    on a small thread pool so callers never wait on the network.
    """
    def __init__(self, max_workers: int = 4):
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="pipemap-save"
        )
        self._timers: Set[threading.Timer] = set()
        self._lock = threading.Lock()
        self._closed = False

    def call_later(self, delay: float, callback: Callable[[], None]) -> threading.Timer:
        timer: threading.Timer

        def _fire():
            with self._lock:
                self._timers.discard(timer)
            callback()

        timer = threading.Timer(max(0.0, delay), _fire)
        timer.daemon = True
        with self._lock:
            if self._closed:
                raise RuntimeError("Scheduler is shut down")
            self._timers.add(timer)
        timer.start()
        return timer

    def submit(self, fn: Callable[..., Any], *args: Any) -> concurrent.futures.Future:
        return self._executor.submit(fn, *args)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
            timers = list(self._timers)
            self._timers.clear()

        for t in timers:
            t.cancel()
        if timers:
            logger.info("scheduler_timers_cancelled", count=len(timers))
        self._executor.shutdown(wait=wait)
