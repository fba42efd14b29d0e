import sys
from pathlib import Path

from fastapi.testclient import TestClient
from PIL import Image
from shapely.geometry import LineString, Point, Polygon

sys.path.append(str(Path(__file__).resolve().parents[1]))
import mapbuddy.arcgis as arcgis  # noqa: E402
import mapbuddy.mappdf as mappdf  # noqa: E402
from mapbuddy.config import MAP_BLANK_RGB, MAP_MAX_ZOOM, MAP_MIN_ZOOM, MAP_TARGET_SIZE, TILE_SIZE  # noqa: E402
from mapbuddy.main import app  # noqa: E402
from mapbuddy.resolver import AssetFeature  # noqa: E402

client = TestClient(app)


def _grey_tile(z, x, y):
    return Image.new("RGBA", (TILE_SIZE, TILE_SIZE), (200, 200, 200, 255))


def test_map_pdf_endpoint(monkeypatch):
    monkeypatch.setattr(mappdf, "_fetch_tile", _grey_tile)
    monkeypatch.setattr(
        arcgis,
        "_arcgis_query",
        lambda endpoint, params: {
            "type": "FeatureCollection",
            "features": [
                {
                    "type": "Feature",
                    "geometry": {"type": "Point", "coordinates": [-77.3, 38.85]},
                    "properties": {"FACILITY_ID": "1373DP"},
                }
            ],
        },
    )
    r = client.post("/map-pdf", json={"assetId": "1373DP", "dataset": "fairfax_bmps"})
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("application/pdf")
    assert 'filename="1373DP_map.pdf"' in r.headers["content-disposition"]
    assert r.content.startswith(b"%PDF")


def test_map_pdf_non_ascii_asset_id(monkeypatch):
    monkeypatch.setattr(mappdf, "_fetch_tile", _grey_tile)
    monkeypatch.setattr(
        arcgis,
        "_arcgis_query",
        lambda endpoint, params: {
            "type": "FeatureCollection",
            "features": [
                {
                    "type": "Feature",
                    "geometry": {"type": "Point", "coordinates": [-76.6, 39.3]},
                    "properties": {"LOD_ID": "Łódź-地12"},
                }
            ],
        },
    )
    r = client.post("/map-pdf", json={"assetId": "Łódź-地12", "dataset": "mdsha_landscape"})
    assert r.status_code == 200
    assert 'filename="d_-_12_map.pdf"' in r.headers["content-disposition"]


def test_failed_tiles_are_blank(monkeypatch):
    monkeypatch.setattr(mappdf, "_fetch_tile", lambda z, x, y: None)
    feature = AssetFeature(geometry=Point(-77.3, 38.85), attributes={})
    image, zoom = mappdf.render_map_image(feature)
    assert image.size == MAP_TARGET_SIZE
    assert image.getpixel((MAP_TARGET_SIZE[0] - 5, 5)) == MAP_BLANK_RGB


def test_overlay_drawn_over_tiles(monkeypatch):
    monkeypatch.setattr(mappdf, "_fetch_tile", _grey_tile)
    square = Polygon([(-77.31, 38.84), (-77.31, 38.86), (-77.29, 38.86), (-77.29, 38.84)])
    image, _ = mappdf.render_map_image(AssetFeature(geometry=square, attributes={}))
    center = image.getpixel((MAP_TARGET_SIZE[0] // 2, MAP_TARGET_SIZE[1] // 2))
    assert center != (200, 200, 200)
    assert center[2] > center[0]


def test_fit_zoom_bounds():
    tiny = mappdf.padded_bounds(Point(-77.3, 38.85).bounds)
    huge = (-80.0, 36.0, -74.0, 41.0)
    assert MAP_MIN_ZOOM <= mappdf.fit_zoom(tiny) <= MAP_MAX_ZOOM
    assert mappdf.fit_zoom(huge) == MAP_MIN_ZOOM
    line = LineString([(-77.30, 38.85), (-77.28, 38.85)]).bounds
    assert mappdf.fit_zoom(line) > mappdf.fit_zoom((-77.5, 38.7, -77.1, 39.0))


def test_pdf_is_deterministic(monkeypatch):
    monkeypatch.setattr(mappdf, "_fetch_tile", _grey_tile)
    feature = AssetFeature(geometry=Point(-77.3, 38.85), attributes={})
    assert mappdf.render_map_pdf(feature, "1373DP", "Fairfax") == mappdf.render_map_pdf(feature, "1373DP", "Fairfax")
