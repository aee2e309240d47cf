"""
Debounced, retrying, offline-aware persistence of edited geometries.

One pending save per feature id. A new mutation replaces the pending geometry
and restarts the debounce wait; once the wait ends the latest geometry is
written through the feature store. Failed writes back off exponentially and
stay queued after the retry budget is spent, until connectivity returns or a
forced save retries them.
"""
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional, Set
from pipemap.core.bus import SAVE_FAILED, SAVE_RETRYING, SAVE_SUCCEEDED, InMemoryEventBus
from pipemap.core.config import AutoSaveConfig
from pipemap.core.errors import PersistenceError
from pipemap.core.interfaces import IConnectivity, IEventBus, IFeatureStore, IScheduler, ITimer
from pipemap.core.logger import get_logger
from pipemap.core.retry import RetryPolicy
from pipemap.core.scheduler import ThreadScheduler
from pipemap.gis_core.coordinates import serialize_geometry
from pipemap.models import FeatureKind, Geometry, PendingSave

logger = get_logger(__name__)

class GeometryAutoSaver:
    def __init__(
        self,
        store: IFeatureStore,
        connectivity: IConnectivity,
        bus: Optional[IEventBus] = None,
        config: Optional[AutoSaveConfig] = None,
        scheduler: Optional[IScheduler] = None,
    ):
        self.store = store
        self.connectivity = connectivity
        self.bus = bus or InMemoryEventBus()
        self.config = config or AutoSaveConfig()
        self.retry_policy = RetryPolicy(
            max_retries=self.config.max_retries,
            initial_delay=self.config.retry_delay,
        )
        self._owns_scheduler = scheduler is None
        self.scheduler = scheduler or ThreadScheduler()

        self._lock = threading.RLock()
        self._queue: Dict[str, PendingSave] = {}
        self._timers: Dict[str, ITimer] = {}
        self._timer_tokens: Dict[str, int] = {}
        self._timer_seq = 0
        # Bumped by every queue_save/cancel_save so completions can detect supersession
        self._generation: Dict[str, int] = {}
        self._in_flight: Set[str] = set()
        self._rerun: Set[str] = set()

        self._unsubscribe = connectivity.on_change(
            on_online=self._handle_online,
            on_offline=self._handle_offline,
        )

    # --- public API ---

    def queue_save(self, feature_id: str, feature_kind: FeatureKind, geometry: Geometry) -> None:
        with self._lock:
            self._generation[feature_id] = self._generation.get(feature_id, 0) + 1
            self._queue[feature_id] = PendingSave(
                feature_id=feature_id,
                feature_kind=FeatureKind(feature_kind),
                geometry=geometry,
                created_at=datetime.now(),
                retry_count=0,
            )
            self._arm_timer(feature_id, self.config.debounce_delay)

        logger.debug("autosave_queued", feature_id=feature_id, kind=FeatureKind(feature_kind).value,
                     debounce=self.config.debounce_delay)

    def force_save(self, feature_id: str) -> None:
        """Skips the debounce wait. Still deferred while offline; unknown ids are ignored."""
        with self._lock:
            self._cancel_timer(feature_id)
        self._process_save(feature_id)

    def cancel_save(self, feature_id: str) -> None:
        with self._lock:
            self._cancel_timer(feature_id)
            self._rerun.discard(feature_id)
            if self._queue.pop(feature_id, None) is not None:
                self._generation[feature_id] = self._generation.get(feature_id, 0) + 1
                logger.debug("autosave_cancelled", feature_id=feature_id)

    def has_pending_changes(self, feature_id: str) -> bool:
        with self._lock:
            return feature_id in self._queue

    def is_in_flight(self, feature_id: str) -> bool:
        """True while a store call for `feature_id` has been submitted and not yet resolved."""
        with self._lock:
            return feature_id in self._in_flight

    def get_pending_saves(self) -> List[PendingSave]:
        with self._lock:
            return [p.model_copy(deep=True) for p in self._queue.values()]

    def is_online(self) -> bool:
        return self.connectivity.is_online()

    def process_save_queue(self) -> int:
        """
        Attempts every queued entry at once, whatever its remaining retry budget.
        Returns how many entries were attempted (0 while offline).
        """
        if not self.is_online():
            return 0

        with self._lock:
            feature_ids = list(self._queue.keys())
            for feature_id in feature_ids:
                self._cancel_timer(feature_id)

        if feature_ids:
            logger.info("autosave_flush", count=len(feature_ids))
        for feature_id in feature_ids:
            self._process_save(feature_id)
        return len(feature_ids)

    def close(self) -> None:
        self._unsubscribe()
        with self._lock:
            for feature_id in list(self._timers.keys()):
                self._cancel_timer(feature_id)
            dropped = len(self._queue)
            self._queue.clear()
            self._rerun.clear()
        if dropped:
            logger.warning("autosave_closed_with_pending", count=dropped)
        if self._owns_scheduler:
            self.scheduler.shutdown()

    # --- connectivity ---

    def _handle_online(self) -> None:
        logger.info("autosave_connection_restored", pending=len(self._queue))
        self.process_save_queue()

    def _handle_offline(self) -> None:
        logger.info("autosave_connection_lost", pending=len(self._queue))

    # --- timers ---

    def _arm_timer(self, feature_id: str, delay: float) -> None:
        self._cancel_timer(feature_id)
        self._timer_seq += 1
        token = self._timer_seq
        self._timer_tokens[feature_id] = token
        self._timers[feature_id] = self.scheduler.call_later(
            delay, lambda: self._on_timer(feature_id, token)
        )

    def _cancel_timer(self, feature_id: str) -> None:
        self._timer_tokens.pop(feature_id, None)
        timer = self._timers.pop(feature_id, None)
        if timer is not None:
            timer.cancel()

    def _on_timer(self, feature_id: str, token: int) -> None:
        with self._lock:
            # A timer cancelled after it started firing must not act
            if self._timer_tokens.get(feature_id) != token:
                return
            self._timer_tokens.pop(feature_id, None)
            self._timers.pop(feature_id, None)
        self._process_save(feature_id)

    # --- attempts ---

    def _process_save(self, feature_id: str) -> None:
        with self._lock:
            pending = self._queue.get(feature_id)
            if pending is None:
                return

            if not self.is_online():
                if not self.config.enable_offline_queue:
                    logger.warning("autosave_skipped_offline", feature_id=feature_id)
                else:
                    logger.info("autosave_deferred_offline", feature_id=feature_id)
                return

            if feature_id in self._in_flight:
                # Serialise writes per feature; run again once the current call resolves
                self._rerun.add(feature_id)
                return

            self._in_flight.add(feature_id)
            kind = pending.feature_kind
            geometry = pending.geometry
            generation = self._generation.get(feature_id, 0)
            attempt = pending.retry_count + 1

        logger.debug("autosave_attempt", feature_id=feature_id, kind=kind.value, attempt=attempt)
        self.scheduler.submit(self._execute, feature_id, kind, geometry, generation)

    def _execute(self, feature_id: str, kind: FeatureKind, geometry: Geometry, generation: int) -> None:
        try:
            self._write(feature_id, kind, geometry)
        except Exception as e:
            self._on_failure(feature_id, kind, generation, e)
        else:
            self._on_success(feature_id, kind, generation)

    def _write(self, feature_id: str, kind: FeatureKind, geometry: Geometry) -> None:
        updates: Dict[str, Any] = {"geometry": serialize_geometry(geometry)}
        if kind == FeatureKind.PIPELINE:
            self.store.update_pipeline(feature_id, updates)
        elif kind == FeatureKind.ZONE:
            self.store.update_zone(feature_id, updates)
        elif kind == FeatureKind.MARKER:
            self.store.update_marker(feature_id, updates)
        else:
            raise PersistenceError(f"Unknown feature kind: {kind}")

    def _on_success(self, feature_id: str, kind: FeatureKind, generation: int) -> None:
        with self._lock:
            self._in_flight.discard(feature_id)
            rerun = feature_id in self._rerun
            self._rerun.discard(feature_id)

            pending = self._queue.get(feature_id)
            current = self._generation.get(feature_id, 0) == generation
            if pending is not None and current:
                self._queue.pop(feature_id, None)
                self._cancel_timer(feature_id)

        if pending is None:
            # Cancelled while the call was in flight
            logger.debug("autosave_completed_after_cancel", feature_id=feature_id)
            return

        logger.info("autosave_succeeded", feature_id=feature_id, kind=kind.value, superseded=not current)
        self.bus.publish(SAVE_SUCCEEDED, {"feature_id": feature_id, "feature_kind": kind.value})

        if rerun:
            self._process_save(feature_id)

    def _on_failure(self, feature_id: str, kind: FeatureKind, generation: int, error: Exception) -> None:
        reason = str(error) or type(error).__name__
        delay: Optional[float] = None
        retry_count = 0

        with self._lock:
            self._in_flight.discard(feature_id)
            rerun = feature_id in self._rerun
            self._rerun.discard(feature_id)

            pending = self._queue.get(feature_id)
            if pending is None:
                logger.debug("autosave_failed_after_cancel", feature_id=feature_id, error=reason)
                return

            if self._generation.get(feature_id, 0) != generation:
                # A newer geometry is waiting on its own debounce timer
                logger.info("autosave_superseded_failure", feature_id=feature_id, error=reason)
                superseded = True
            else:
                superseded = False
                pending.retry_count += 1
                retry_count = pending.retry_count
                delay = self.retry_policy.next_delay(retry_count)
                # A save requested while this call ran waits for the backoff like any retry
                rerun = False
                if delay is not None:
                    self._arm_timer(feature_id, delay)

        if superseded:
            if rerun:
                self._process_save(feature_id)
            return

        if delay is None:
            logger.error("autosave_gave_up", feature_id=feature_id, kind=kind.value,
                         attempts=retry_count, error=reason)
            self.bus.publish(SAVE_FAILED, {
                "feature_id": feature_id,
                "feature_kind": kind.value,
                "reason": reason,
                "retry_count": retry_count,
            })
        else:
            logger.warning("autosave_retry_scheduled", feature_id=feature_id, kind=kind.value,
                           attempt=retry_count, delay=delay, error=reason)
            self.bus.publish(SAVE_RETRYING, {
                "feature_id": feature_id,
                "feature_kind": kind.value,
                "attempt": retry_count,
                "delay": delay,
                "reason": reason,
            })
