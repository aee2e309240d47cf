import pytest
from pipemap.core.errors import GeometryParseError
from pipemap.gis_core.coordinates import (
    coordinates_of, ensure_closed_ring, parse_geometry, serialize_geometry,
    to_display, to_display_array, to_storage, to_storage_array, with_coordinates,
)
from pipemap.models import LineString, Point, Polygon

SQUARE = [[0.0, 0.0], [4.0, 0.0], [4.0, 4.0], [0.0, 4.0], [0.0, 0.0]]

@pytest.mark.parametrize("coord", [[-41.3235, -21.7634], [0.0, 0.0], [179.9, 89.9], [-180.0, -90.0]])
def test_display_storage_round_trip(coord):
    assert to_storage(to_display(coord)) == coord
    assert to_display(to_storage(coord)) == coord

def test_to_display_swaps_lng_lat():
    # Campos dos Goytacazes: lng, lat -> lat, lng
    assert to_display([-41.3235, -21.7634]) == [-21.7634, -41.3235]

def test_array_forms_preserve_order_and_length():
    display = to_display_array(SQUARE)
    assert len(display) == len(SQUARE)
    assert display[1] == [0.0, 4.0]
    assert to_storage_array(display) == SQUARE

def test_ensure_closed_ring_appends_first_pair():
    open_ring = SQUARE[:-1]
    closed = ensure_closed_ring(open_ring)
    assert closed == SQUARE
    # input untouched
    assert len(open_ring) == 4

def test_ensure_closed_ring_is_idempotent():
    once = ensure_closed_ring(SQUARE[:-1])
    assert ensure_closed_ring(once) == once
    assert ensure_closed_ring(SQUARE) == SQUARE

def test_ensure_closed_ring_leaves_short_rings_alone():
    assert ensure_closed_ring([[1.0, 2.0], [3.0, 4.0]]) == [[1.0, 2.0], [3.0, 4.0]]

def test_coordinates_of_each_variant():
    assert coordinates_of(Point(coordinates=[1.0, 2.0])) == [[1.0, 2.0]]
    assert coordinates_of(LineString(coordinates=[[0, 0], [1, 1]])) == [[0.0, 0.0], [1.0, 1.0]]
    assert coordinates_of(Polygon(coordinates=[SQUARE])) == SQUARE

def test_with_coordinates_keeps_interior_rings():
    hole = [[1.0, 1.0], [2.0, 1.0], [2.0, 2.0], [1.0, 1.0]]
    poly = Polygon(coordinates=[SQUARE, hole])
    moved = with_coordinates(poly, [[0.0, 0.0], [5.0, 0.0], [5.0, 5.0], [0.0, 5.0], [0.0, 0.0]])
    assert moved.coordinates[1] == hole
    assert moved.coordinates[0][1] == [5.0, 0.0]

def test_serialized_geometry_parses_back():
    line = LineString(coordinates=[[-41.3235, -21.7634], [-41.3234, -21.7633]])
    text = serialize_geometry(line)
    assert isinstance(text, str)
    assert '"LineString"' in text
    assert parse_geometry(text) == line

def test_parse_geometry_accepts_dicts():
    geom = parse_geometry({"type": "Polygon", "coordinates": [SQUARE]})
    assert isinstance(geom, Polygon)

@pytest.mark.parametrize("bad", ["{not json", '{"type": "Circle", "coordinates": [0, 0]}', {"coordinates": [1, 2]}])
def test_parse_geometry_rejects_malformed_payloads(bad):
    with pytest.raises(GeometryParseError):
        parse_geometry(bad)
