from pipemap.gis_core.validation import (
    NOT_CLOSED_WARNING, error_message, has_self_intersection, segments_intersect,
    validate_for_kind, validate_geometry, validate_point, validate_polygon, validate_polyline,
)
from pipemap.models import FeatureKind, GeometryValidationError, LineString, Point, Polygon

SQUARE = [[0, 0], [4, 0], [4, 4], [0, 4], [0, 0]]
BOWTIE = [[0, 0], [4, 4], [4, 0], [0, 4], [0, 0]]

def test_triangle_with_closing_repeat_is_valid():
    result = validate_polygon(Polygon(coordinates=[[[0, 0], [4, 0], [2, 3], [0, 0]]]))
    assert result.is_valid
    assert result.errors == []
    assert result.warnings == []

def test_two_entry_ring_has_insufficient_vertices():
    result = validate_polygon(Polygon(coordinates=[[[0, 0], [1, 1]]]))
    assert not result.is_valid
    assert GeometryValidationError.INSUFFICIENT_VERTICES in result.errors

def test_bowtie_is_flagged_as_self_intersecting():
    result = validate_polygon(Polygon(coordinates=[BOWTIE]))
    assert not result.is_valid
    assert result.errors == [GeometryValidationError.SELF_INTERSECTION]

def test_convex_quadrilateral_does_not_self_intersect():
    assert validate_polygon(Polygon(coordinates=[SQUARE])).is_valid
    assert not has_self_intersection(SQUARE)

def test_open_ring_only_warns():
    result = validate_polygon(Polygon(coordinates=[SQUARE[:-1]]))
    assert result.is_valid
    assert result.warnings == [NOT_CLOSED_WARNING]

def test_missing_exterior_ring_is_invalid_coordinates():
    result = validate_polygon(Polygon(coordinates=[]))
    assert result.errors == [GeometryValidationError.INVALID_COORDINATES]

def test_collinear_overlap_is_not_reported():
    # Known limitation: parallel segments never count as crossing
    assert not segments_intersect([0, 0], [4, 0], [2, 0], [6, 0])

def test_touching_at_endpoint_is_not_a_crossing():
    assert not segments_intersect([0, 0], [4, 0], [4, 0], [4, 4])
    assert segments_intersect([0, 0], [4, 4], [4, 0], [0, 4])

def test_polyline_needs_two_pairs_and_may_cross_itself():
    assert not validate_polyline(LineString(coordinates=[[0, 0]])).is_valid
    crossing = LineString(coordinates=[[0, 0], [4, 4], [4, 0], [0, 4]])
    assert validate_polyline(crossing).is_valid

def test_point_must_be_a_pair():
    assert validate_point(Point(coordinates=[1.0, 2.0])).is_valid
    result = validate_point(Point(coordinates=[1.0, 2.0, 3.0]))
    assert result.errors == [GeometryValidationError.INVALID_COORDINATES]

def test_validate_geometry_dispatches_on_variant():
    assert not validate_geometry(Polygon(coordinates=[BOWTIE])).is_valid
    assert validate_geometry(LineString(coordinates=BOWTIE)).is_valid

def test_validate_for_kind_rejects_mismatched_variant():
    result = validate_for_kind(FeatureKind.ZONE, LineString(coordinates=[[0, 0], [1, 1]]))
    assert result.errors == [GeometryValidationError.TOPOLOGY_ERROR]
    assert validate_for_kind(FeatureKind.MARKER, Point(coordinates=[0, 0])).is_valid

def test_error_messages():
    assert error_message(GeometryValidationError.INSUFFICIENT_VERTICES) == "needs at least 3 vertices"
    assert error_message(GeometryValidationError.SELF_INTERSECTION) == "edges cannot cross"
    assert error_message(GeometryValidationError.INVALID_COORDINATES) == "invalid coordinate data"
    assert error_message(GeometryValidationError.TOPOLOGY_ERROR) == "geometry topology error"
