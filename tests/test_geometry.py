import sys
from pathlib import Path

from shapely.geometry import LineString, MultiLineString, MultiPoint, MultiPolygon, Point, Polygon

sys.path.append(str(Path(__file__).resolve().parents[1]))
from mapbuddy.geometry import (  # noqa: E402
    bounds_of,
    centroid_of,
    esri_to_shape,
    geojson_to_shape,
    google_maps_url,
)

RING_A = [[0, 0], [0, 1], [1, 1], [1, 0], [0, 0]]
RING_B = [[2, 2], [2, 3], [3, 3], [3, 2], [2, 2]]


def test_single_ring_is_polygon():
    geom = esri_to_shape({"rings": [RING_A]})
    assert isinstance(geom, Polygon)
    assert list(geom.exterior.coords) == [tuple(c) for c in RING_A]
    assert not list(geom.interiors)


def test_two_rings_are_multipolygon_of_single_rings():
    geom = esri_to_shape({"rings": [RING_A, RING_B]})
    assert isinstance(geom, MultiPolygon)
    assert len(geom.geoms) == 2
    assert all(not list(p.interiors) for p in geom.geoms)


def test_point_and_multipoint():
    assert esri_to_shape({"x": -77.1, "y": 38.9}).equals(Point(-77.1, 38.9))
    assert isinstance(esri_to_shape({"points": [[0, 0], [1, 1]]}), MultiPoint)


def test_paths():
    assert isinstance(esri_to_shape({"paths": [[[0, 0], [1, 1]]]}), LineString)
    assert isinstance(esri_to_shape({"paths": [[[0, 0], [1, 1]], [[2, 2], [3, 3]]]}), MultiLineString)


def test_z_values_dropped():
    geom = esri_to_shape({"paths": [[[0, 0, 5], [1, 1, 6]]]})
    assert not geom.has_z


def test_unusable_geometry_is_none():
    assert esri_to_shape(None) is None
    assert esri_to_shape({}) is None
    assert esri_to_shape({"curveRings": []}) is None
    assert esri_to_shape({"rings": []}) is None
    assert esri_to_shape({"x": "NaN-ish", "y": None}) is None


def test_geojson_to_shape_closed_set():
    assert isinstance(geojson_to_shape({"type": "Point", "coordinates": [1, 2]}), Point)
    collection = {"type": "GeometryCollection", "geometries": [{"type": "Point", "coordinates": [1, 2]}]}
    assert geojson_to_shape(collection) is None
    assert geojson_to_shape({"type": "Polygon", "coordinates": []}) is None
    assert geojson_to_shape(None) is None


def test_centroid_and_maps_url():
    c = centroid_of(Polygon(RING_A))
    assert c == {"lat": 0.5, "lng": 0.5}
    assert google_maps_url(c) == "https://www.google.com/maps/search/?api=1&query=0.5,0.5"


def test_bounds_of():
    assert bounds_of([Point(0, 0), Point(2, 3)]) == (0, 0, 2, 3)
    assert bounds_of([]) is None


def test_empty_esri_point_is_none():
    assert esri_to_shape({"x": "NaN", "y": "NaN"}) is None
    assert esri_to_shape({"x": float("nan"), "y": 39.3}) is None
    assert esri_to_shape({"x": "Infinity", "y": 0}) is None
    assert esri_to_shape({"points": [["NaN", "NaN"], [1, 2]]}) == MultiPoint([(1, 2)])


def test_ring_needs_three_distinct_vertices():
    assert esri_to_shape({"rings": [[[0, 0], [1, 1], [0, 0]]]}) is None
    assert esri_to_shape({"rings": [[[0, 0], [1, 1], [0, 0], [0, 0]]]}) is None
    geom = esri_to_shape({"rings": [[[0, 0], [1, 1], [0, 0]], [[0, 0], [0, 1], [1, 1], [0, 0]]]})
    assert isinstance(geom, Polygon)
    assert geom.area > 0
