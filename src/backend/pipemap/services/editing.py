import threading
from typing import Dict, List, Optional, Sequence, Set
from pydantic import BaseModel, Field
from pipemap.core.bus import SAVE_SUCCEEDED, InMemoryEventBus
from pipemap.core.config import AutoSaveConfig
from pipemap.core.errors import EditStateError
from pipemap.core.interfaces import IConnectivity, IEventBus, IFeatureStore, IScheduler
from pipemap.core.logger import get_logger
from pipemap.gis_core.validation import error_message, validate_for_kind
from pipemap.gis_core.vertex_editor import VertexEditor
from pipemap.models import (
    EditSessionResponse, EditState, FeatureKind, Geometry, ValidationResult, VertexHandle,
)
from pipemap.services.autosave import GeometryAutoSaver
from pipemap.services.connectivity import ConnectivityMonitor

logger = get_logger(__name__)

class EditOutcome(BaseModel):
    accepted: bool
    geometry: Geometry = Field(..., description="Committed geometry after the edit (unchanged when rejected)")
    validation: ValidationResult
    messages: List[str] = Field(default_factory=list)
    handles: List[VertexHandle] = Field(default_factory=list)

class MapEditingSession:
    """
    Composition root for one map: owns the auto-saver and the editors of the
    features currently in edit mode, keyed by feature id.
    """
    def __init__(
        self,
        store: IFeatureStore,
        connectivity: Optional[IConnectivity] = None,
        bus: Optional[IEventBus] = None,
        config: Optional[AutoSaveConfig] = None,
        scheduler: Optional[IScheduler] = None,
    ):
        self.bus = bus or InMemoryEventBus()
        self.connectivity = connectivity or ConnectivityMonitor(bus=self.bus)
        self.auto_saver = GeometryAutoSaver(
            store, self.connectivity, bus=self.bus, config=config, scheduler=scheduler,
        )
        self._editors: Dict[str, VertexEditor] = {}
        self._persisted_during_edit: Set[str] = set()
        self._lock = threading.Lock()
        self.bus.subscribe(SAVE_SUCCEEDED, self._on_saved)

    # --- edit mode ---

    def enter_edit(self, feature_id: str, kind: FeatureKind, geometry: Geometry) -> List[VertexHandle]:
        kind = FeatureKind(kind)
        with self._lock:
            editor = self._editors.get(feature_id)
            if editor is None or editor.state == EditState.IDLE:
                editor = VertexEditor(feature_id, kind, geometry)
                self._editors[feature_id] = editor
                self._persisted_during_edit.discard(feature_id)
        return editor.enter_edit()

    def commit(self, feature_id: str) -> Geometry:
        editor = self._editor(feature_id)
        geometry = editor.commit()
        # Write the final shape now instead of waiting out the debounce
        self.auto_saver.force_save(feature_id)
        self._drop(feature_id)
        return geometry

    def cancel(self, feature_id: str) -> Geometry:
        """Reverts to the geometry held at enter_edit and drops any unsaved change."""
        editor = self._editor(feature_id)
        geometry = editor.cancel()
        # A write still in flight may land an edited shape after this call
        in_flight = self.auto_saver.is_in_flight(feature_id)
        self.auto_saver.cancel_save(feature_id)
        with self._lock:
            restore = in_flight or feature_id in self._persisted_during_edit
        if restore:
            # Intermediate shapes already reached the store; put the original back
            self.auto_saver.queue_save(feature_id, editor.kind, geometry)
        self._drop(feature_id)
        return geometry

    # --- vertex operations ---

    def move_vertex(self, feature_id: str, index: int, display_position: Sequence[float]) -> EditOutcome:
        editor = self._editor(feature_id)
        editor.set_dragging(index, True)
        try:
            return self._accept(editor, editor.move_vertex(index, display_position))
        finally:
            editor.set_dragging(index, False)

    def add_vertex(self, feature_id: str, click_display_position: Sequence[float]) -> EditOutcome:
        editor = self._editor(feature_id)
        return self._accept(editor, editor.add_vertex(click_display_position))

    def remove_vertex(self, feature_id: str, index: int) -> EditOutcome:
        """Raises VertexOperationError when the geometry is already at its minimum size."""
        editor = self._editor(feature_id)
        return self._accept(editor, editor.remove_vertex(index))

    # --- introspection ---

    def describe(self, feature_id: str) -> EditSessionResponse:
        editor = self._editor(feature_id)
        return EditSessionResponse(
            feature_id=feature_id,
            feature_kind=editor.kind,
            state=editor.state,
            geometry=editor.geometry,
            handles=editor.handles,
            has_pending_changes=self.auto_saver.has_pending_changes(feature_id),
        )

    def is_editing(self, feature_id: str) -> bool:
        with self._lock:
            editor = self._editors.get(feature_id)
        return editor is not None and editor.state == EditState.EDITING

    def close(self) -> None:
        self.bus.unsubscribe(SAVE_SUCCEEDED, self._on_saved)
        self.auto_saver.close()

    # --- helpers ---

    def _accept(self, editor: VertexEditor, candidate: Geometry) -> EditOutcome:
        result = validate_for_kind(editor.kind, candidate)
        if not result.is_valid:
            messages = [error_message(e) for e in result.errors]
            logger.info("edit_rejected", feature_id=editor.feature_id, errors=[e.value for e in result.errors])
            return EditOutcome(
                accepted=False, geometry=editor.geometry, validation=result,
                messages=messages, handles=editor.handles,
            )

        handles = editor.apply(candidate)
        self.auto_saver.queue_save(editor.feature_id, editor.kind, candidate)
        return EditOutcome(accepted=True, geometry=candidate, validation=result, handles=handles)

    def _editor(self, feature_id: str) -> VertexEditor:
        with self._lock:
            editor = self._editors.get(feature_id)
        if editor is None:
            raise EditStateError(f"Feature {feature_id} is not in edit mode")
        return editor

    def _drop(self, feature_id: str) -> None:
        with self._lock:
            self._editors.pop(feature_id, None)
            self._persisted_during_edit.discard(feature_id)

    def _on_saved(self, payload: Dict[str, str]) -> None:
        feature_id = payload.get("feature_id")
        with self._lock:
            if feature_id in self._editors:
                self._persisted_during_edit.add(feature_id)
