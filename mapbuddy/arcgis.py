# mapbuddy/arcgis.py
"""
ArcGIS REST layer prober.

``probe_layer`` runs one where clause against one layer and returns a tagged
result, so callers can tell "no rows" apart from "the server failed":

    Found(features)       at least one feature with usable geometry
    Empty()               the query ran and matched nothing usable
    UpstreamError(cause)  timeout, HTTP error or an unreadable payload

GeoJSON output (f=geojson) is requested first; servers that refuse it or send
something malformed get a second try with Esri JSON (f=json), translated locally.

``usable_id_fields`` narrows a layer's configured ID fields to the ones its
metadata ({layer}?f=json) actually lists, since ArcGIS rejects a where clause
that names an unknown field.
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Tuple, Union

import requests

from .config import ARCGIS_TIMEOUT, USER_AGENT
from .geometry import AssetGeometry, esri_to_shape, geojson_to_shape
from .registry import LayerDescriptor

logger = logging.getLogger(__name__)

_SESSION = requests.Session()
_SESSION.headers.update({"User-Agent": USER_AGENT})

RawFeature = Tuple[AssetGeometry, Dict[str, Any]]

_FIELDS_CACHE: Dict[str, FrozenSet[str]] = {}
_FIELDS_LOCK = threading.Lock()


class ArcGISError(Exception):
    """The layer answered, but not with a usable feature payload."""


@dataclass(frozen=True)
class Found:
    features: List[RawFeature] = field(default_factory=list)


@dataclass(frozen=True)
class Empty:
    pass


@dataclass(frozen=True)
class UpstreamError:
    cause: str


ProbeResult = Union[Found, Empty, UpstreamError]


def _arcgis_query(endpoint: str, params: Dict[str, Any]) -> Dict[str, Any]:
    resp = _SESSION.get(f"{endpoint.rstrip('/')}/query", params=params, timeout=ARCGIS_TIMEOUT)
    resp.raise_for_status()
    return resp.json()


def _arcgis_layer_info(endpoint: str) -> Dict[str, Any]:
    resp = _SESSION.get(endpoint.rstrip("/"), params={"f": "json"}, timeout=ARCGIS_TIMEOUT)
    resp.raise_for_status()
    return resp.json()


def layer_fields(layer: LayerDescriptor) -> Optional[FrozenSet[str]]:
    """
    Upper-cased field names the layer publishes, or None when its metadata can't be read.

    Layer metadata is read-only, so a successful lookup is cached per endpoint
    for the life of the process; failures are retried on the next call.
    """
    with _FIELDS_LOCK:
        if layer.endpoint in _FIELDS_CACHE:
            return _FIELDS_CACHE[layer.endpoint]
    try:
        info = _arcgis_layer_info(layer.endpoint)
    except (requests.RequestException, ValueError) as exc:
        logger.warning("Could not read layer metadata for %s: %s", layer.endpoint, exc)
        return None
    fields = info.get("fields") if isinstance(info, dict) else None
    if not isinstance(fields, list):
        logger.warning("Layer metadata for %s has no fields list", layer.endpoint)
        return None
    names = frozenset(
        str(f["name"]).upper() for f in fields if isinstance(f, dict) and f.get("name")
    )
    with _FIELDS_LOCK:
        _FIELDS_CACHE[layer.endpoint] = names
    return names


def usable_id_fields(layer: LayerDescriptor) -> Tuple[str, ...]:
    """The layer's ID fields that it actually has; all of them if that is unknown."""
    names = layer_fields(layer)
    if names is None:
        return layer.id_fields
    return tuple(f for f in layer.id_fields if f.upper() in names)


def _base_params(where: str, fmt: str) -> Dict[str, Any]:
    return {
        "where": where,
        "outFields": "*",
        "returnGeometry": "true",
        "outSR": 4326,
        "f": fmt,
    }


def _check_payload(payload: Any) -> List[Dict[str, Any]]:
    if not isinstance(payload, dict):
        raise ArcGISError("Response is not a JSON object.")
    if payload.get("error"):
        err = payload["error"]
        msg = err.get("message") if isinstance(err, dict) else str(err)
        raise ArcGISError(f"ArcGIS error: {msg}")
    feats = payload.get("features")
    if not isinstance(feats, list):
        raise ArcGISError("Response has no features array.")
    return feats


def _from_geojson(payload: Any) -> List[RawFeature]:
    out: List[RawFeature] = []
    for feat in _check_payload(payload):
        if not isinstance(feat, dict):
            continue
        geom = geojson_to_shape(feat.get("geometry"))
        if geom is None:
            continue
        out.append((geom, dict(feat.get("properties") or {})))
    return out


def _from_esri(payload: Any) -> List[RawFeature]:
    out: List[RawFeature] = []
    for feat in _check_payload(payload):
        if not isinstance(feat, dict):
            continue
        geom = esri_to_shape(feat.get("geometry"))
        if geom is None:
            continue
        out.append((geom, dict(feat.get("attributes") or {})))
    return out


def _as_result(features: List[RawFeature]) -> ProbeResult:
    return Found(features) if features else Empty()


def probe_layer(layer: LayerDescriptor, where: str) -> ProbeResult:
    try:
        payload = _arcgis_query(layer.endpoint, _base_params(where, "geojson"))
        return _as_result(_from_geojson(payload))
    except requests.Timeout as exc:
        logger.warning("Timed out querying %s: %s", layer.endpoint, exc)
        return UpstreamError(f"timeout: {exc}")
    except (requests.RequestException, ArcGISError, ValueError) as exc:
        logger.info("GeoJSON query failed for %s (%s); retrying as Esri JSON", layer.endpoint, exc)

    try:
        payload = _arcgis_query(layer.endpoint, _base_params(where, "json"))
        return _as_result(_from_esri(payload))
    except requests.Timeout as exc:
        logger.warning("Timed out querying %s: %s", layer.endpoint, exc)
        return UpstreamError(f"timeout: {exc}")
    except (requests.RequestException, ArcGISError, ValueError) as exc:
        logger.warning("Esri JSON query failed for %s: %s", layer.endpoint, exc)
        return UpstreamError(str(exc))
