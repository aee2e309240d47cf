from typing import Protocol, Any, Callable, Dict, Optional
from concurrent.futures import Future

class IFeatureStore(Protocol):
    """Persistence contract: one partial-update operation per feature kind. Failures are raised."""
    def update_pipeline(self, feature_id: str, updates: Dict[str, Any]) -> None:
        ...

    def update_zone(self, feature_id: str, updates: Dict[str, Any]) -> None:
        ...

    def update_marker(self, feature_id: str, updates: Dict[str, Any]) -> None:
        ...

class IEventBus(Protocol):
    """Protocol defining the contract for an event bus."""
    def publish(self, event_type: str, payload: Dict[str, Any]) -> None:
        ...

    def subscribe(self, event_type: str, handler: Callable[[Dict[str, Any]], None]) -> None:
        ...

    def unsubscribe(self, event_type: str, handler: Callable[[Dict[str, Any]], None]) -> None:
        ...

class ITimer(Protocol):
    def cancel(self) -> None:
        ...

class IScheduler(Protocol):
    """Timers for debounce/backoff waits plus a worker for store calls."""
    def call_later(self, delay: float, callback: Callable[[], None]) -> ITimer:
        ...

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        ...

    def shutdown(self) -> None:
        ...

class IConnectivity(Protocol):
    def is_online(self) -> bool:
        ...

    def on_change(self, on_online: Optional[Callable[[], None]] = None,
                  on_offline: Optional[Callable[[], None]] = None) -> Callable[[], None]:
        """Registers edge-triggered callbacks; returns a function that removes them."""
        ...
