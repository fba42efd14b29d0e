# mapbuddy/exports.py
"""
Output encoders for resolved assets: KML, GeoJSON and zipped ESRI shapefiles,
plus the ZIP/manifest helpers used by bulk downloads.

Every encoder is deterministic: the same features always give the same bytes
(ZIP entries carry a fixed timestamp, no generated ids).
"""
import csv
import io
import json
import logging
import os
import re
import tempfile
import zipfile
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import shapefile
from shapely.geometry import (
    LineString,
    MultiLineString,
    MultiPoint,
    MultiPolygon,
    Point,
    Polygon,
)
from shapely.geometry.polygon import orient

from .config import SAFE_NAME_MAX
from .errors import EncodingFailure, InvalidRequest
from .geometry import geojson_to_shape
from .kml import build_kml, placemark
from .resolver import AssetFeature

logger = logging.getLogger(__name__)

ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)

WGS84_PRJ = (
    'GEOGCS["WGS 84",DATUM["WGS_1984",'
    'SPHEROID["WGS 84",6378137,298.257223563],'
    'AUTHORITY["EPSG","6326"]],PRIMEM["Greenwich",0],'
    'UNIT["degree",0.0174532925199433],AUTHORITY["EPSG","4326"]]'
)

SHAPEFILE_PARTS = (".shp", ".shx", ".dbf", ".prj", ".cpg")

Entry = Tuple[str, bytes]

_RE_UNSAFE = re.compile(r"[^\w.-]+", re.ASCII)


@dataclass(frozen=True)
class ExportFormat:
    name: str
    extension: str
    media_type: str


FORMATS: Dict[str, ExportFormat] = {
    "kml": ExportFormat("kml", ".kml", "application/vnd.google-earth.kml+xml"),
    "geojson": ExportFormat("geojson", ".geojson", "application/geo+json"),
    "shapefile": ExportFormat("shapefile", ".zip", "application/zip"),
}
FORMAT_ALIASES = {"shp": "shapefile"}


def get_format(name: Optional[str]) -> ExportFormat:
    key = (name or "kml").strip().lower()
    key = FORMAT_ALIASES.get(key, key)
    fmt = FORMATS.get(key)
    if fmt is None:
        raise InvalidRequest(
            f"Unsupported format: {name!r}.",
            details={"supported": sorted(FORMATS) + sorted(FORMAT_ALIASES)},
        )
    return fmt


def safe_name(value: Optional[str], default: str = "asset") -> str:
    base = _RE_UNSAFE.sub("_", (value or "").strip()).strip("._")
    return (base or default)[:SAFE_NAME_MAX]


def _label(feature: AssetFeature) -> str:
    attrs = feature.attributes
    if feature.match_field and attrs.get(feature.match_field) not in (None, ""):
        return str(attrs[feature.match_field])
    return str(attrs.get("_assetId") or "Asset")


# ── GeoJSON

def to_feature_collection(features: Sequence[AssetFeature]) -> Dict[str, Any]:
    return {"type": "FeatureCollection", "features": [f.to_geojson() for f in features]}


def to_geojson_bytes(features: Sequence[AssetFeature]) -> bytes:
    fc = to_feature_collection(features)
    return json.dumps(fc, ensure_ascii=False, default=str).encode("utf-8")


# ── KML

def to_kml_bytes(features: Sequence[AssetFeature], doc_name: str = "MapBuddy") -> bytes:
    marks = [placemark(_label(f), f.geometry, f.attributes) for f in features]
    return build_kml(marks, doc_name=doc_name).encode("utf-8")


# ── Shapefile

def _shape_type(geom) -> int:
    if isinstance(geom, Point):
        return shapefile.POINT
    if isinstance(geom, MultiPoint):
        return shapefile.MULTIPOINT
    if isinstance(geom, (LineString, MultiLineString)):
        return shapefile.POLYLINE
    if isinstance(geom, (Polygon, MultiPolygon)):
        return shapefile.POLYGON
    raise EncodingFailure(f"Unsupported geometry type: {geom.geom_type}")


def dbf_field_names(keys: Sequence[str]) -> List[str]:
    """DBF names: ASCII, at most 10 chars, unique after truncation."""
    out: List[str] = []
    used = set()
    for key in keys:
        base = re.sub(r"[^A-Za-z0-9_]", "_", str(key)).lstrip("_")
        if not base or base[0].isdigit():
            base = "F" + base
        name = base[:10]
        n = 1
        while name.upper() in used:
            n += 1
            suffix = f"_{n}"
            name = base[: 10 - len(suffix)] + suffix
        used.add(name.upper())
        out.append(name)
    return out


def _field_spec(values: Sequence[Any]) -> Tuple[str, int, int]:
    present = [v for v in values if v is not None]
    if present and all(isinstance(v, bool) for v in present):
        return "L", 1, 0
    if present and all(isinstance(v, int) and not isinstance(v, bool) for v in present):
        return "N", 18, 0
    if present and all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in present):
        return "F", 19, 8
    width = max([len(str(v)) for v in present] + [1])
    return "C", min(width, 254), 0


def _dbf_value(value: Any, ftype: str) -> Any:
    if value is None:
        return None
    if ftype == "C":
        return str(value)[:254]
    return value


def _write_shape(w: shapefile.Writer, geom) -> None:
    if isinstance(geom, Point):
        w.point(geom.x, geom.y)
    elif isinstance(geom, MultiPoint):
        w.multipoint([(p.x, p.y) for p in geom.geoms])
    elif isinstance(geom, LineString):
        w.line([list(geom.coords)])
    elif isinstance(geom, MultiLineString):
        w.line([list(g.coords) for g in geom.geoms])
    else:
        polys = [geom] if isinstance(geom, Polygon) else list(geom.geoms)
        rings: List[List[Tuple[float, float]]] = []
        for poly in polys:
            # shapefile rings: exterior clockwise, holes counter-clockwise
            oriented = orient(poly, sign=-1.0)
            rings.append([c[:2] for c in oriented.exterior.coords])
            rings.extend([c[:2] for c in r.coords] for r in oriented.interiors)
        w.poly(rings)


def to_shapefile_files(features: Sequence[AssetFeature], base_name: str) -> Dict[str, bytes]:
    """Return {".shp": ..., ".shx": ..., ".dbf": ..., ".prj": ..., ".cpg": ...}."""
    if not features:
        raise EncodingFailure("No features to write.")
    shape_type = _shape_type(features[0].geometry)
    if any(_shape_type(f.geometry) != shape_type for f in features):
        raise EncodingFailure("A shapefile holds one geometry family; got mixed geometries.")

    keys: List[str] = []
    for f in features:
        for k in f.attributes:
            if k not in keys:
                keys.append(k)
    names = dbf_field_names(keys)

    with tempfile.TemporaryDirectory() as temp_dir:
        base_path = os.path.join(temp_dir, safe_name(base_name))
        w = shapefile.Writer(base_path, shapeType=shape_type, encoding="utf-8")
        specs = []
        for key, name in zip(keys, names):
            ftype, size, decimal = _field_spec([f.attributes.get(key) for f in features])
            specs.append(ftype)
            w.field(name, ftype, size=size, decimal=decimal)
        if not keys:
            w.field("ID", "N", size=10, decimal=0)
        for idx, f in enumerate(features):
            _write_shape(w, f.geometry)
            if keys:
                w.record(*[_dbf_value(f.attributes.get(k), t) for k, t in zip(keys, specs)])
            else:
                w.record(idx + 1)
        w.close()

        with open(base_path + ".prj", "w", encoding="ascii") as prj:
            prj.write(WGS84_PRJ)
        with open(base_path + ".cpg", "w", encoding="ascii") as cpg:
            cpg.write("UTF-8")

        out: Dict[str, bytes] = {}
        for ext in SHAPEFILE_PARTS:
            with open(base_path + ext, "rb") as fh:
                out[ext] = fh.read()
        return out


# ── ZIP / manifest

def zip_bytes(entries: Sequence[Entry]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, data in entries:
            info = zipfile.ZipInfo(name, date_time=ZIP_EPOCH)
            info.compress_type = zipfile.ZIP_DEFLATED
            zf.writestr(info, data)
    return buf.getvalue()


def encode(features: Sequence[AssetFeature], fmt: ExportFormat, base_name: str, *, nested: bool = False) -> List[Entry]:
    """
    Encode features to archive entries named after ``base_name``.

    Shapefiles come back as their component files; with ``nested`` they sit in
    a ``<base>/`` folder so several assets can share one bulk ZIP.
    """
    base = safe_name(base_name)
    try:
        if fmt.name == "kml":
            return [(f"{base}.kml", to_kml_bytes(features, doc_name=base))]
        if fmt.name == "geojson":
            return [(f"{base}.geojson", to_geojson_bytes(features))]
        files = to_shapefile_files(features, base)
    except (shapefile.ShapefileException, OSError, TypeError, ValueError) as exc:
        logger.exception("Encoding %s as %s failed", base, fmt.name)
        raise EncodingFailure(f"Could not encode {base} as {fmt.name}: {exc}") from exc
    prefix = f"{base}/" if nested else ""
    return [(f"{prefix}{base}{ext}", files[ext]) for ext in SHAPEFILE_PARTS]


MANIFEST_COLUMNS = ("row", "assetId", "dataset", "status", "matchMode", "layer", "files", "reason")


def manifest_csv(rows: Sequence[Mapping[str, Any]]) -> bytes:
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=MANIFEST_COLUMNS, extrasaction="ignore", lineterminator="\n")
    writer.writeheader()
    for row in rows:
        writer.writerow({k: ("" if row.get(k) is None else row.get(k)) for k in MANIFEST_COLUMNS})
    return buf.getvalue().encode("utf-8")


def unique_name(name: str, taken: set) -> str:
    """Reserve ``name`` in ``taken``, adding _2, _3... on clashes; the result stays within SAFE_NAME_MAX."""
    if name not in taken:
        taken.add(name)
        return name
    n = 2
    while True:
        suffix = f"_{n}"
        out = name[: SAFE_NAME_MAX - len(suffix)] + suffix
        if out not in taken:
            taken.add(out)
            return out
        n += 1


def feature_collection_to_features(fc: Any, asset_id: str) -> List[AssetFeature]:
    """Inline GeoJSON (the client already fetched the data) to AssetFeatures."""
    if not isinstance(fc, dict):
        raise InvalidRequest("geojson must be a GeoJSON object.")
    if fc.get("type") == "FeatureCollection":
        raw = fc.get("features")
    elif fc.get("type") == "Feature":
        raw = [fc]
    else:
        raw = [{"type": "Feature", "geometry": fc, "properties": {}}]
    if not isinstance(raw, list):
        raise InvalidRequest("geojson FeatureCollection has no features array.")

    out: List[AssetFeature] = []
    for feat in raw:
        if not isinstance(feat, dict):
            continue
        geom = geojson_to_shape(feat.get("geometry"))
        if geom is None:
            continue
        props = dict(feat.get("properties") or {})
        props.setdefault("_assetId", asset_id)
        out.append(AssetFeature(geometry=geom, attributes=props))
    if not out:
        raise InvalidRequest("geojson contains no usable geometry.")
    return out
