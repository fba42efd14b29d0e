# mapbuddy/kml.py
import html
from typing import Any, Iterable, List, Optional, Sequence

from shapely.geometry import (
    LineString,
    MultiLineString,
    MultiPoint,
    MultiPolygon,
    Point,
    Polygon,
)

from .config import KML_PRECISION

KML_HEADER = '<?xml version="1.0" encoding="UTF-8"?>\n<kml xmlns="http://www.opengis.net/kml/2.2">'

STYLE_ID = "asset"
_STYLE = (
    f'<Style id="{STYLE_ID}">'
    "<IconStyle><scale>1.1</scale></IconStyle>"
    "<LineStyle><color>ffff9900</color><width>3</width></LineStyle>"
    "<PolyStyle><color>40ff9900</color></PolyStyle>"
    "</Style>"
)


def _esc(value: Any) -> str:
    return html.escape("" if value is None else str(value), quote=True)


def _fmt(v: float) -> str:
    text = f"{v:.{KML_PRECISION}f}".rstrip("0").rstrip(".")
    return "0" if text in ("-0", "") else text


def _coords(seq: Iterable[Sequence[float]]) -> str:
    return " ".join(f"{_fmt(c[0])},{_fmt(c[1])}" for c in seq)


def _ring(tag: str, ring) -> str:
    return f"<{tag}><LinearRing><coordinates>{_coords(ring.coords)}</coordinates></LinearRing></{tag}>"


def geometry_kml(geom) -> str:
    if isinstance(geom, Point):
        return f"<Point><coordinates>{_coords([geom.coords[0]])}</coordinates></Point>"
    if isinstance(geom, LineString):
        return f"<LineString><tessellate>1</tessellate><coordinates>{_coords(geom.coords)}</coordinates></LineString>"
    if isinstance(geom, Polygon):
        parts = [_ring("outerBoundaryIs", geom.exterior)]
        parts.extend(_ring("innerBoundaryIs", r) for r in geom.interiors)
        return "<Polygon>" + "".join(parts) + "</Polygon>"
    if isinstance(geom, (MultiPoint, MultiLineString, MultiPolygon)):
        return "<MultiGeometry>" + "".join(geometry_kml(g) for g in geom.geoms) + "</MultiGeometry>"
    raise ValueError(f"Unsupported geometry type: {geom.geom_type}")


def _extended_data(props: dict) -> str:
    if not props:
        return ""
    rows = "".join(
        f'<Data name="{_esc(k)}"><value>{_esc(v)}</value></Data>' for k, v in props.items()
    )
    return f"<ExtendedData>{rows}</ExtendedData>"


def _description(props: dict) -> str:
    rows = "".join(
        f"<tr><th>{html.escape(str(k))}</th><td>{html.escape('' if v is None else str(v))}</td></tr>"
        for k, v in props.items()
        if not str(k).startswith("_")
    )
    if not rows:
        return ""
    return f"<description><![CDATA[<table>{rows}</table>]]></description>"


def placemark(name: str, geom, props: Optional[dict] = None) -> str:
    props = props or {}
    return (
        "<Placemark>"
        f"<name>{_esc(name)}</name>"
        f"<styleUrl>#{STYLE_ID}</styleUrl>"
        f"{_description(props)}"
        f"{_extended_data(props)}"
        f"{geometry_kml(geom)}"
        "</Placemark>"
    )


def build_kml(placemarks: List[str], doc_name: str = "MapBuddy") -> str:
    """Wrap placemarks in a KML Document; output depends only on the input."""
    body = "".join(placemarks)
    return f"{KML_HEADER}<Document><name>{_esc(doc_name)}</name>{_STYLE}{body}</Document></kml>\n"
