import threading
from collections import defaultdict
from typing import Any, Callable, DefaultDict, Dict, List

from pipemap.core.logger import get_logger

logger = get_logger(__name__)

Handler = Callable[[Dict[str, Any]], None]

# Auto-save outcomes
SAVE_SUCCEEDED = "geometry_save_succeeded"
SAVE_FAILED = "geometry_save_failed"
SAVE_RETRYING = "geometry_save_retrying"
# Connectivity edges
CONNECTIVITY_ONLINE = "connectivity_online"
CONNECTIVITY_OFFLINE = "connectivity_offline"

class InMemoryEventBus:
    """Synchronous fan-out on the publishing thread. A failing handler never stops the others."""

    def __init__(self):
        self._handlers: DefaultDict[str, List[Handler]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, event_type: str, handler: Handler) -> None:
        with self._lock:
            self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: str, handler: Handler) -> None:
        with self._lock:
            registered = self._handlers.get(event_type)
            if registered and handler in registered:
                registered.remove(handler)

    def publish(self, event_type: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            # Snapshot: handlers may (un)subscribe while running
            targets = tuple(self._handlers.get(event_type, ()))

        for target in targets:
            try:
                target(payload)
            except Exception as e:
                logger.error("bus_handler_failed", event_type=event_type, error=str(e), exc_info=True)
