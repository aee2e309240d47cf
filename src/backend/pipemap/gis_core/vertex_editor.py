"""
Vertex-level editing of one feature's geometry.

Operations return a candidate geometry and leave the editor untouched; the
caller validates the candidate and hands it back through `apply()`. A rejected
drag therefore never reaches committed state.
"""
import threading
from copy import deepcopy
from typing import List, Optional, Sequence, Tuple
from shapely.geometry import LineString as ShapelyLine, Point as ShapelyPoint
from pipemap.core.errors import EditStateError, VertexOperationError
from pipemap.core.logger import get_logger
from pipemap.gis_core.coordinates import (
    coordinates_of, ensure_closed_ring, is_closed, to_display, to_storage, with_coordinates,
)
from pipemap.models import Coordinate, EditState, FeatureKind, Geometry, Point, Polygon, VertexHandle

logger = get_logger(__name__)

MIN_RING_ENTRIES = 4
MIN_LINE_ENTRIES = 2

def project_onto_segment(point: Sequence[float], start: Sequence[float], end: Sequence[float]) -> Coordinate:
    """Orthogonal projection of `point` onto start-end, clamped to the segment."""
    if start[0] == end[0] and start[1] == end[1]:
        return list(start)
    segment = ShapelyLine([tuple(start), tuple(end)])
    projected = segment.interpolate(segment.project(ShapelyPoint(point[0], point[1])))
    return [projected.x, projected.y]

def find_insertion_point(coords: Sequence[Sequence[float]], click: Sequence[float]) -> Tuple[int, Coordinate]:
    """
    Nearest edge to `click` by planar distance on raw storage values.
    Returns (insert_index, projected_position); the first edge wins on ties.
    """
    best_index: Optional[int] = None
    best_position: Coordinate = list(click)
    min_distance = float("inf")

    for i in range(len(coords) - 1):
        projected = project_onto_segment(click, coords[i], coords[i + 1])
        distance = ShapelyPoint(click[0], click[1]).distance(ShapelyPoint(projected[0], projected[1]))
        if distance < min_distance:
            min_distance = distance
            best_index = i + 1
            best_position = projected

    if best_index is None:
        raise VertexOperationError("Cannot add vertex: geometry has no edges")
    return best_index, best_position

class VertexEditor:
    """Edit session state for a single feature. Instances are independent per feature id."""

    def __init__(self, feature_id: str, kind: FeatureKind, geometry: Geometry):
        self.feature_id = feature_id
        self.kind = FeatureKind(kind)
        self.geometry = geometry
        self.state = EditState.IDLE
        self._original: Optional[Geometry] = None
        self._handles: List[VertexHandle] = []
        # One gesture at a time per feature
        self._lock = threading.RLock()

    @property
    def is_polygon(self) -> bool:
        return isinstance(self.geometry, Polygon)

    @property
    def handles(self) -> List[VertexHandle]:
        with self._lock:
            return [h.model_copy() for h in self._handles]

    @property
    def coordinates(self) -> List[Coordinate]:
        return coordinates_of(self.geometry)

    # --- state machine ---

    def enter_edit(self) -> List[VertexHandle]:
        with self._lock:
            if self.state == EditState.EDITING:
                return self.handles
            self._original = deepcopy(self.geometry)
            self.state = EditState.EDITING
            self._rebuild_handles()
            logger.info("edit_started", feature_id=self.feature_id, kind=self.kind.value, vertices=len(self._handles))
            return self.handles

    def commit(self) -> Geometry:
        with self._lock:
            self._require_editing()
            self._leave_edit()
            logger.info("edit_committed", feature_id=self.feature_id)
            return self.geometry

    def cancel(self) -> Geometry:
        """Leaves edit mode and restores the geometry captured by enter_edit()."""
        with self._lock:
            self._require_editing()
            self.geometry = self._original
            self._leave_edit()
            logger.info("edit_cancelled", feature_id=self.feature_id)
            return self.geometry

    def apply(self, candidate: Geometry) -> List[VertexHandle]:
        """Accepts a validated candidate as the current geometry."""
        with self._lock:
            self._require_editing()
            if candidate.type != self.geometry.type:
                raise VertexOperationError(
                    f"Cannot apply {candidate.type} to {self.geometry.type} feature {self.feature_id}"
                )
            self.geometry = candidate
            self._rebuild_handles()
            return self.handles

    def set_dragging(self, index: int, dragging: bool) -> None:
        with self._lock:
            for handle in self._handles:
                if handle.index == index:
                    handle.is_dragging = dragging

    # --- vertex operations ---

    def move_vertex(self, index: int, display_position: Sequence[float]) -> Geometry:
        with self._lock:
            self._require_editing()
            coords = self.coordinates
            self._check_index(index, coords)

            position = to_storage(display_position)
            coords[index] = position
            if self.is_polygon and len(coords) > 1:
                # Keep the ring closed when either end moves
                if index == 0:
                    coords[-1] = list(position)
                elif index == len(coords) - 1:
                    coords[0] = list(position)
            return with_coordinates(self.geometry, coords)

    def add_vertex(self, click_display_position: Sequence[float]) -> Geometry:
        with self._lock:
            self._require_editing()
            if isinstance(self.geometry, Point):
                raise VertexOperationError("Cannot add vertex: markers have a single position")

            coords = self.coordinates
            insert_index, position = find_insertion_point(coords, to_storage(click_display_position))
            coords.insert(insert_index, position)
            if self.is_polygon:
                coords = ensure_closed_ring(coords)
            logger.debug("vertex_add_candidate", feature_id=self.feature_id, index=insert_index)
            return with_coordinates(self.geometry, coords)

    def remove_vertex(self, index: int) -> Geometry:
        with self._lock:
            self._require_editing()
            if isinstance(self.geometry, Point):
                raise VertexOperationError("Cannot remove vertex: markers have a single position")

            coords = self.coordinates
            self._check_index(index, coords)

            if self.is_polygon:
                if len(coords) <= MIN_RING_ENTRIES:
                    raise VertexOperationError("Cannot remove vertex: polygon must have at least 3 vertices")
                # Work on the open ring so removing the shared first/last vertex drops both copies
                ring = coords[:-1] if is_closed(coords) else coords
                ring_index = 0 if index == len(coords) - 1 and is_closed(coords) else index
                del ring[ring_index]
                return with_coordinates(self.geometry, ensure_closed_ring(ring))

            if len(coords) <= MIN_LINE_ENTRIES:
                raise VertexOperationError("Cannot remove vertex: line must have at least 2 vertices")
            del coords[index]
            return with_coordinates(self.geometry, coords)

    # --- helpers ---

    def _require_editing(self) -> None:
        if self.state != EditState.EDITING:
            raise EditStateError(f"Feature {self.feature_id} is not in edit mode")

    def _check_index(self, index: int, coords: List[Coordinate]) -> None:
        if not 0 <= index < len(coords):
            raise VertexOperationError(f"Vertex index {index} out of range for feature {self.feature_id}")

    def _leave_edit(self) -> None:
        self.state = EditState.IDLE
        self._original = None
        self._handles = []

    def _rebuild_handles(self) -> None:
        # A drag in progress survives the rebuild that applies its own candidate
        dragging = {h.index for h in self._handles if h.is_dragging}
        coords = self.coordinates
        # The closing repeat of a ring shares its handle with vertex 0
        if self.is_polygon and len(coords) > 1 and is_closed(coords):
            coords = coords[:-1]
        self._handles = [
            VertexHandle(id=f"vertex-{i}", position=to_display(c), index=i, is_dragging=i in dragging)
            for i, c in enumerate(coords)
        ]
