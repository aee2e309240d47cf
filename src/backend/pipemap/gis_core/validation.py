from typing import List, Sequence
from pipemap.gis_core.coordinates import is_closed
from pipemap.models import (
    FeatureKind, Geometry, GeometryValidationError, KIND_GEOMETRY,
    LineString, Point, Polygon, ValidationResult,
)

ERROR_MESSAGES = {
    GeometryValidationError.INSUFFICIENT_VERTICES: "needs at least 3 vertices",
    GeometryValidationError.SELF_INTERSECTION: "edges cannot cross",
    GeometryValidationError.INVALID_COORDINATES: "invalid coordinate data",
    GeometryValidationError.TOPOLOGY_ERROR: "geometry topology error",
}

NOT_CLOSED_WARNING = "Polygon is not closed - will be auto-closed"

def error_message(error: GeometryValidationError) -> str:
    return ERROR_MESSAGES.get(error, "unknown geometry error")

def _result(errors: List[GeometryValidationError], warnings: List[str] = None) -> ValidationResult:
    return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings or [])

def _is_pair(coord) -> bool:
    return (
        isinstance(coord, (list, tuple))
        and len(coord) == 2
        and all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in coord)
    )

def validate_point(geometry: Point) -> ValidationResult:
    if geometry is None or not _is_pair(geometry.coordinates):
        return _result([GeometryValidationError.INVALID_COORDINATES])
    return _result([])

def validate_polyline(geometry: LineString) -> ValidationResult:
    """Lines only need two pairs; pipelines may legitimately cross themselves."""
    if geometry is None or geometry.coordinates is None:
        return _result([GeometryValidationError.INVALID_COORDINATES])

    errors = []
    if len(geometry.coordinates) < 2:
        errors.append(GeometryValidationError.INSUFFICIENT_VERTICES)
    return _result(errors)

def validate_polygon(geometry: Polygon) -> ValidationResult:
    if geometry is None or not geometry.coordinates or not geometry.coordinates[0]:
        return _result([GeometryValidationError.INVALID_COORDINATES])

    ring = geometry.coordinates[0]
    errors: List[GeometryValidationError] = []
    warnings: List[str] = []

    # 3 distinct vertices + the closing repeat
    if len(ring) < 4:
        errors.append(GeometryValidationError.INSUFFICIENT_VERTICES)

    if not is_closed(ring):
        warnings.append(NOT_CLOSED_WARNING)

    if has_self_intersection(ring):
        errors.append(GeometryValidationError.SELF_INTERSECTION)

    return _result(errors, warnings)

def validate_geometry(geometry: Geometry) -> ValidationResult:
    if isinstance(geometry, Point):
        return validate_point(geometry)
    if isinstance(geometry, LineString):
        return validate_polyline(geometry)
    if isinstance(geometry, Polygon):
        return validate_polygon(geometry)
    return _result([GeometryValidationError.INVALID_COORDINATES])

def validate_for_kind(kind: FeatureKind, geometry: Geometry) -> ValidationResult:
    """Validates `geometry` and checks it is the variant stored for `kind`."""
    if geometry is None or geometry.type != KIND_GEOMETRY[FeatureKind(kind)]:
        return _result([GeometryValidationError.TOPOLOGY_ERROR])
    return validate_geometry(geometry)

def has_self_intersection(ring: Sequence[Sequence[float]]) -> bool:
    """
    Pairwise test of non-adjacent ring edges. Edge k runs ring[k] -> ring[k+1].
    The closing edge is adjacent to the first one, so (0, n-2) is skipped.
    Collinear overlapping edges are not reported (determinant is zero).
    """
    n = len(ring)
    for i in range(n - 1):
        for j in range(i + 2, n - 1):
            if i == 0 and j == n - 2:
                continue
            if segments_intersect(ring[i], ring[i + 1], ring[j], ring[j + 1]):
                return True
    return False

def segments_intersect(p1, p2, p3, p4) -> bool:
    """Proper crossing of p1-p2 and p3-p4, both parameters strictly inside (0, 1)."""
    det = (p2[0] - p1[0]) * (p4[1] - p3[1]) - (p4[0] - p3[0]) * (p2[1] - p1[1])
    if det == 0:
        return False

    lam = ((p4[1] - p3[1]) * (p4[0] - p1[0]) + (p3[0] - p4[0]) * (p4[1] - p1[1])) / det
    gamma = ((p1[1] - p2[1]) * (p4[0] - p1[0]) + (p2[0] - p1[0]) * (p4[1] - p1[1])) / det
    return 0 < lam < 1 and 0 < gamma < 1
