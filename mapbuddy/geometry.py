# mapbuddy/geometry.py
import logging
import math
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from shapely.errors import ShapelyError
from shapely.geometry import (
    LineString,
    MultiLineString,
    MultiPoint,
    MultiPolygon,
    Point,
    Polygon,
    shape as shp_shape,
)

from .config import GOOGLE_MAPS_URL

logger = logging.getLogger(__name__)

AssetGeometry = Union[Point, MultiPoint, LineString, MultiLineString, Polygon, MultiPolygon]
ASSET_GEOMETRY_TYPES = (Point, MultiPoint, LineString, MultiLineString, Polygon, MultiPolygon)


def _xy(coord: Sequence[Any]) -> Optional[Tuple[float, float]]:
    try:
        x, y = float(coord[0]), float(coord[1])
    except (TypeError, ValueError, IndexError):
        return None
    # ArcGIS sends {"x": "NaN", "y": "NaN"} for an empty point
    if not (math.isfinite(x) and math.isfinite(y)):
        return None
    return x, y


def _coords(seq: Any) -> List[Tuple[float, float]]:
    out: List[Tuple[float, float]] = []
    for c in seq or []:
        xy = _xy(c)
        if xy is not None:
            out.append(xy)
    return out


def esri_to_shape(geom: Optional[Dict[str, Any]]) -> Optional[AssetGeometry]:
    """
    Translate an Esri JSON geometry (x/y, points, rings, paths) to shapely.

    Ring nesting is not inspected: one ring is a Polygon, several rings become
    a MultiPolygon of single-ring polygons. Z/M values are dropped.
    """
    if not isinstance(geom, dict):
        return None

    if "x" in geom and "y" in geom:
        xy = _xy((geom.get("x"), geom.get("y")))
        return Point(xy) if xy is not None else None

    if "points" in geom:
        pts = _coords(geom.get("points"))
        return MultiPoint(pts) if pts else None

    if "rings" in geom:
        rings = [r for r in (_coords(ring) for ring in geom.get("rings") or []) if len(set(r)) >= 3]
        if not rings:
            return None
        if len(rings) == 1:
            return Polygon(rings[0])
        return MultiPolygon([Polygon(r) for r in rings])

    if "paths" in geom:
        paths = [p for p in (_coords(path) for path in geom.get("paths") or []) if len(p) >= 2]
        if not paths:
            return None
        if len(paths) == 1:
            return LineString(paths[0])
        return MultiLineString(paths)

    return None


def geojson_to_shape(geom: Optional[Dict[str, Any]]) -> Optional[AssetGeometry]:
    if not isinstance(geom, dict) or not geom.get("type"):
        return None
    try:
        shp = shp_shape(geom)
    except (AttributeError, IndexError, KeyError, ShapelyError, TypeError, ValueError) as exc:
        logger.debug("Unreadable GeoJSON geometry: %s", exc)
        return None
    if shp.is_empty or not isinstance(shp, ASSET_GEOMETRY_TYPES):
        return None
    return shp


def centroid_of(geom: AssetGeometry) -> Dict[str, float]:
    c = geom.centroid
    if c.is_empty:
        c = geom.representative_point()
    return {"lat": round(c.y, 7), "lng": round(c.x, 7)}


def google_maps_url(centroid: Dict[str, float]) -> str:
    return GOOGLE_MAPS_URL.format(lat=centroid["lat"], lng=centroid["lng"])


def bounds_of(geoms: Iterable[AssetGeometry]) -> Optional[Tuple[float, float, float, float]]:
    bounds = None
    for g in geoms:
        if g is None or g.is_empty:
            continue
        minx, miny, maxx, maxy = g.bounds
        if bounds is None:
            bounds = [minx, miny, maxx, maxy]
            continue
        bounds[0] = min(bounds[0], minx)
        bounds[1] = min(bounds[1], miny)
        bounds[2] = max(bounds[2], maxx)
        bounds[3] = max(bounds[3], maxy)
    return tuple(bounds) if bounds else None
