import sys
from pathlib import Path

import pytest
import requests
from shapely.geometry import Point, Polygon

sys.path.append(str(Path(__file__).resolve().parents[1]))
import mapbuddy.arcgis as arcgis  # noqa: E402
from mapbuddy.registry import LayerDescriptor  # noqa: E402

LAYER = LayerDescriptor(endpoint="https://example.test/MapServer/7", id_fields=("FACILITY_ID",))
READ_LAYER_INFO = arcgis._arcgis_layer_info


def _point_fc(facility_id="1373DP"):
    return {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "geometry": {"type": "Point", "coordinates": [-77.3, 38.85]},
                "properties": {"FACILITY_ID": facility_id},
            }
        ],
    }


def test_geojson_preferred(monkeypatch):
    calls = []

    def fake_query(endpoint, params):
        calls.append(params)
        return _point_fc()

    monkeypatch.setattr(arcgis, "_arcgis_query", fake_query)
    result = arcgis.probe_layer(LAYER, "1=1")
    assert isinstance(result, arcgis.Found)
    geom, attrs = result.features[0]
    assert isinstance(geom, Point)
    assert attrs == {"FACILITY_ID": "1373DP"}
    assert len(calls) == 1
    assert calls[0]["f"] == "geojson"
    assert calls[0]["outSR"] == 4326
    assert calls[0]["outFields"] == "*"
    assert calls[0]["returnGeometry"] == "true"


@pytest.mark.parametrize(
    "first",
    [
        {"error": {"code": 400, "message": "Invalid format"}},
        "not json",
        {"type": "FeatureCollection"},
        requests.HTTPError("500 Server Error"),
        ValueError("Expecting value"),
    ],
)
def test_falls_back_to_esri_json(monkeypatch, first):
    formats = []

    def fake_query(endpoint, params):
        formats.append(params["f"])
        if params["f"] == "geojson":
            if isinstance(first, Exception):
                raise first
            return first
        return {
            "geometryType": "esriGeometryPolygon",
            "features": [
                {"attributes": {"SWM_FAC_NO": "12TP"}, "geometry": {"rings": [[[0, 0], [0, 1], [1, 1], [0, 0]]]}}
            ],
        }

    monkeypatch.setattr(arcgis, "_arcgis_query", fake_query)
    result = arcgis.probe_layer(LAYER, "1=1")
    assert formats == ["geojson", "json"]
    assert isinstance(result, arcgis.Found)
    assert isinstance(result.features[0][0], Polygon)
    assert result.features[0][1] == {"SWM_FAC_NO": "12TP"}


def test_timeout_is_upstream_error_without_retry(monkeypatch):
    calls = []

    def fake_query(endpoint, params):
        calls.append(params["f"])
        raise requests.Timeout("read timed out")

    monkeypatch.setattr(arcgis, "_arcgis_query", fake_query)
    result = arcgis.probe_layer(LAYER, "1=1")
    assert isinstance(result, arcgis.UpstreamError)
    assert "timeout" in result.cause
    assert calls == ["geojson"]


def test_both_formats_failing_is_upstream_error(monkeypatch):
    def fake_query(endpoint, params):
        raise requests.ConnectionError("connection refused")

    monkeypatch.setattr(arcgis, "_arcgis_query", fake_query)
    assert isinstance(arcgis.probe_layer(LAYER, "1=1"), arcgis.UpstreamError)


def test_esri_error_body_is_upstream_error(monkeypatch):
    monkeypatch.setattr(arcgis, "_arcgis_query", lambda endpoint, params: {"error": {"message": "bad where"}})
    result = arcgis.probe_layer(LAYER, "1=1")
    assert isinstance(result, arcgis.UpstreamError)
    assert "bad where" in result.cause


def test_zero_features_is_empty(monkeypatch):
    monkeypatch.setattr(
        arcgis, "_arcgis_query", lambda endpoint, params: {"type": "FeatureCollection", "features": []}
    )
    assert isinstance(arcgis.probe_layer(LAYER, "1=1"), arcgis.Empty)


def test_features_without_geometry_are_dropped(monkeypatch):
    fc = {
        "type": "FeatureCollection",
        "features": [{"type": "Feature", "geometry": None, "properties": {"FACILITY_ID": "X"}}],
    }
    monkeypatch.setattr(arcgis, "_arcgis_query", lambda endpoint, params: fc)
    assert isinstance(arcgis.probe_layer(LAYER, "1=1"), arcgis.Empty)


def test_query_hits_layer_query_url(monkeypatch):
    seen = {}

    class FakeResponse:
        def raise_for_status(self):
            return None

        def json(self):
            return {"features": []}

    def fake_get(url, params=None, timeout=None):
        seen.update(url=url, params=params, timeout=timeout)
        return FakeResponse()

    monkeypatch.setattr(arcgis._SESSION, "get", fake_get)
    arcgis._arcgis_query("https://example.test/MapServer/7/", {"where": "1=1"})
    assert seen["url"] == "https://example.test/MapServer/7/query"
    assert seen["params"] == {"where": "1=1"}
    assert seen["timeout"] > 0


def test_layer_fields_cached_per_endpoint(monkeypatch):
    calls = []

    def fake_info(endpoint):
        calls.append(endpoint)
        return {"fields": [{"name": "facility_id"}, {"name": "OBJECTID"}]}

    monkeypatch.setattr(arcgis, "_arcgis_layer_info", fake_info)
    assert arcgis.layer_fields(LAYER) == frozenset({"FACILITY_ID", "OBJECTID"})
    assert arcgis.layer_fields(LAYER) == frozenset({"FACILITY_ID", "OBJECTID"})
    assert calls == [LAYER.endpoint]


def test_layer_fields_failure_not_cached(monkeypatch):
    calls = []

    def fake_info(endpoint):
        calls.append(endpoint)
        raise requests.Timeout("slow")

    monkeypatch.setattr(arcgis, "_arcgis_layer_info", fake_info)
    assert arcgis.layer_fields(LAYER) is None
    assert arcgis.layer_fields(LAYER) is None
    assert len(calls) == 2
    assert arcgis.usable_id_fields(LAYER) == LAYER.id_fields


def test_usable_id_fields_drops_missing(monkeypatch):
    layer = LayerDescriptor(endpoint="https://example.test/MapServer/3", id_fields=("SITE_ID", "NAME"))
    monkeypatch.setattr(arcgis, "_arcgis_layer_info", lambda endpoint: {"fields": [{"name": "SITE_ID"}]})
    assert arcgis.usable_id_fields(layer) == ("SITE_ID",)


def test_layer_info_hits_layer_url(monkeypatch):
    seen = {}

    class FakeResponse:
        def raise_for_status(self):
            return None

        def json(self):
            return {"fields": []}

    def fake_get(url, params=None, timeout=None):
        seen.update(url=url, params=params)
        return FakeResponse()

    monkeypatch.setattr(arcgis._SESSION, "get", fake_get)
    READ_LAYER_INFO("https://example.test/MapServer/7/")
    assert seen == {"url": "https://example.test/MapServer/7", "params": {"f": "json"}}
