import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

sys.path.append(str(Path(__file__).resolve().parents[1]))
from mapbuddy.main import app  # noqa: E402


@pytest.mark.integration
def test_convert_live_smoke():
    c = TestClient(app)
    r = c.post("/convert", json={"assetId": "1373DP", "dataset": "fairfax_bmps", "format": "kml"})
    assert r.status_code in (200, 404, 500)
    if r.status_code == 200:
        assert r.headers["content-type"].startswith("application/vnd.google-earth.kml")


@pytest.mark.integration
def test_locate_live_smoke():
    c = TestClient(app)
    r = c.post("/locate", json={"assetId": "LOD-1", "dataset": "mdsha_landscape"})
    assert r.status_code in (200, 404, 500)
    assert "application/json" in r.headers["content-type"]
