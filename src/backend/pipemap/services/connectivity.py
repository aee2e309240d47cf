import threading
from typing import Callable, Optional
import requests
from pipemap.core.bus import CONNECTIVITY_OFFLINE, CONNECTIVITY_ONLINE, InMemoryEventBus
from pipemap.core.interfaces import IEventBus
from pipemap.core.logger import get_logger

logger = get_logger(__name__)

class ConnectivityMonitor:
    """
    Online/offline state with edge-triggered notifications.
    State is pushed by the host (`set_online`) or pulled from a health URL (`probe`).
    """
    def __init__(self, bus: Optional[IEventBus] = None, online: bool = True,
                 health_url: Optional[str] = None, timeout: float = 3.0):
        self.bus = bus or InMemoryEventBus()
        self.health_url = health_url
        self.timeout = timeout
        self._online = online
        self._lock = threading.Lock()

    def is_online(self) -> bool:
        with self._lock:
            return self._online

    def set_online(self, online: bool) -> bool:
        """Updates the state; returns True when it actually changed."""
        with self._lock:
            if self._online == online:
                return False
            self._online = online

        logger.info("connectivity_changed", online=online)
        self.bus.publish(CONNECTIVITY_ONLINE if online else CONNECTIVITY_OFFLINE, {"online": online})
        return True

    def on_change(self, on_online: Optional[Callable[[], None]] = None,
                  on_offline: Optional[Callable[[], None]] = None) -> Callable[[], None]:
        handlers = []
        if on_online:
            handlers.append((CONNECTIVITY_ONLINE, lambda _payload: on_online()))
        if on_offline:
            handlers.append((CONNECTIVITY_OFFLINE, lambda _payload: on_offline()))

        for event_type, handler in handlers:
            self.bus.subscribe(event_type, handler)

        def _unsubscribe():
            for event_type, handler in handlers:
                self.bus.unsubscribe(event_type, handler)
        return _unsubscribe

    def probe(self) -> bool:
        """Checks `health_url` and records the outcome. Without a URL the current state is kept."""
        if not self.health_url:
            return self.is_online()
        try:
            response = requests.head(self.health_url, timeout=self.timeout, allow_redirects=True)
            online = response.status_code < 500
        except requests.RequestException as e:
            logger.warning("connectivity_probe_failed", url=self.health_url, error=str(e))
            online = False
        self.set_online(online)
        return online
