"""
Coordinate order conversion between storage ([lng, lat], GeoJSON) and
display ([lat, lng], map widgets), plus the JSON wire form of geometries.
"""
import json
from typing import Any, List, Sequence
from pydantic import TypeAdapter, ValidationError
from pipemap.core.errors import GeometryParseError
from pipemap.models import Coordinate, Geometry, LineString, Point, Polygon

_geometry_adapter = TypeAdapter(Geometry)

def to_display(coord: Sequence[float]) -> List[float]:
    """[lng, lat] -> [lat, lng]"""
    return [coord[1], coord[0]]

def to_storage(coord: Sequence[float]) -> List[float]:
    """[lat, lng] -> [lng, lat]"""
    return [coord[1], coord[0]]

def to_display_array(coords: Sequence[Sequence[float]]) -> List[List[float]]:
    return [to_display(c) for c in coords]

def to_storage_array(coords: Sequence[Sequence[float]]) -> List[List[float]]:
    return [to_storage(c) for c in coords]

def ensure_closed_ring(ring: Sequence[Sequence[float]]) -> List[List[float]]:
    """
    Returns a copy of `ring` whose last pair repeats the first one.
    Works in either coordinate order. Rings shorter than 3 pairs are returned as-is.
    """
    closed = [list(c) for c in ring]
    if len(closed) < 3:
        return closed

    first, last = closed[0], closed[-1]
    if first[0] != last[0] or first[1] != last[1]:
        closed.append(list(first))
    return closed

def is_closed(ring: Sequence[Sequence[float]]) -> bool:
    if len(ring) < 2:
        return False
    return ring[0][0] == ring[-1][0] and ring[0][1] == ring[-1][1]

def coordinates_of(geometry: Geometry) -> List[Coordinate]:
    """Editable coordinate sequence: the pair of a point, the line itself, or the exterior ring."""
    if isinstance(geometry, Point):
        return [list(geometry.coordinates)]
    if isinstance(geometry, LineString):
        return [list(c) for c in geometry.coordinates]
    if isinstance(geometry, Polygon):
        if not geometry.coordinates:
            return []
        return [list(c) for c in geometry.coordinates[0]]
    raise TypeError(f"Unsupported geometry: {type(geometry).__name__}")

def with_coordinates(geometry: Geometry, coords: List[Coordinate]) -> Geometry:
    """Builds a new geometry of the same variant carrying `coords`. Interior rings are kept untouched."""
    if isinstance(geometry, Point):
        return Point(coordinates=list(coords[0]))
    if isinstance(geometry, LineString):
        return LineString(coordinates=coords)
    if isinstance(geometry, Polygon):
        holes = [list(map(list, r)) for r in geometry.coordinates[1:]]
        return Polygon(coordinates=[coords] + holes)
    raise TypeError(f"Unsupported geometry: {type(geometry).__name__}")

def serialize_geometry(geometry: Geometry) -> str:
    """JSON text as written to the document store (nested arrays are not stored natively)."""
    return geometry.model_dump_json()

def parse_geometry(value: Any) -> Geometry:
    """Accepts a geometry model, a GeoJSON-like dict or its JSON string."""
    if isinstance(value, (Point, LineString, Polygon)):
        return value
    if isinstance(value, (str, bytes)):
        try:
            value = json.loads(value)
        except ValueError as e:
            raise GeometryParseError(f"Invalid geometry JSON: {e}") from e
    try:
        return _geometry_adapter.validate_python(value)
    except ValidationError as e:
        raise GeometryParseError(f"Unsupported geometry payload: {e.errors()[0]['msg']}") from e
