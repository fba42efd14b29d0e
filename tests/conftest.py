import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))
import mapbuddy.arcgis as arcgis  # noqa: E402


@pytest.fixture(autouse=True)
def offline_layer_metadata(request, monkeypatch):
    """Keep tests off the network: layer metadata is unreadable, so every configured ID field is used."""
    arcgis._FIELDS_CACHE.clear()
    if request.node.get_closest_marker("integration") is None:

        def unreadable(endpoint):
            raise arcgis.requests.ConnectionError("offline")

        monkeypatch.setattr(arcgis, "_arcgis_layer_info", unreadable)
    yield
    arcgis._FIELDS_CACHE.clear()
