# mapbuddy/mappdf.py
"""
Printable one-page map of a resolved asset.

Basemap tiles (web mercator) are stitched with Pillow, the asset geometry is
drawn on top as a translucent overlay, and reportlab lays the image out on a
landscape Letter page with a title, a Google Maps link and attribution.
"""
import logging
import math
from io import BytesIO
from typing import Iterable, List, Optional, Sequence, Tuple

import requests
from PIL import Image, ImageDraw
from reportlab.lib import colors
from reportlab.lib.pagesizes import landscape, letter
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas
from shapely.geometry import (
    LineString,
    MultiLineString,
    MultiPoint,
    MultiPolygon,
    Point,
    Polygon,
)

from .config import (
    MAP_ATTRIBUTION,
    MAP_BLANK_RGB,
    MAP_MAX_TILES,
    MAP_MAX_ZOOM,
    MAP_MIN_ZOOM,
    MAP_OVERLAY_RGB,
    MAP_POINT_PAD_DEG,
    MAP_SCALE_STEPS_M,
    MAP_START_ZOOM,
    MAP_TARGET_SIZE,
    TILE_SIZE,
    TILE_TIMEOUT,
    TILE_URL,
    USER_AGENT,
)
from .errors import EncodingFailure
from .geometry import centroid_of, google_maps_url
from .resolver import AssetFeature

logger = logging.getLogger(__name__)

PAGE_MARGIN = 40
EARTH_CIRCUMFERENCE_M = 40075016.686
MAX_LAT = 85.05112878

_SESSION = requests.Session()
_SESSION.headers.update({"User-Agent": USER_AGENT})


# ── Web mercator

def lonlat_to_pixel(lon: float, lat: float, zoom: int) -> Tuple[float, float]:
    lat = max(-MAX_LAT, min(MAX_LAT, lat))
    scale = TILE_SIZE * (2 ** zoom)
    x = (lon + 180.0) / 360.0 * scale
    siny = math.sin(math.radians(lat))
    y = (0.5 - math.log((1 + siny) / (1 - siny)) / (4 * math.pi)) * scale
    return x, y


def meters_per_pixel(lat: float, zoom: int) -> float:
    return EARTH_CIRCUMFERENCE_M * math.cos(math.radians(lat)) / (TILE_SIZE * (2 ** zoom))


def padded_bounds(bounds: Tuple[float, float, float, float]) -> Tuple[float, float, float, float]:
    minx, miny, maxx, maxy = bounds
    if maxx - minx < MAP_POINT_PAD_DEG:
        minx, maxx = minx - MAP_POINT_PAD_DEG, maxx + MAP_POINT_PAD_DEG
    if maxy - miny < MAP_POINT_PAD_DEG:
        miny, maxy = miny - MAP_POINT_PAD_DEG, maxy + MAP_POINT_PAD_DEG
    return minx, miny, maxx, maxy


def fit_zoom(bounds: Tuple[float, float, float, float], size: Tuple[int, int] = MAP_TARGET_SIZE) -> int:
    """Deepest zoom where the bounds take at most ~70% of the image in both directions."""
    minx, miny, maxx, maxy = bounds
    width, height = size
    zoom = MAP_START_ZOOM
    for _ in range(MAP_MAX_ZOOM - MAP_MIN_ZOOM + 1):
        x0, y0 = lonlat_to_pixel(minx, maxy, zoom)
        x1, y1 = lonlat_to_pixel(maxx, miny, zoom)
        w, h = x1 - x0, y1 - y0
        if w > width * 0.7 or h > height * 0.7:
            if zoom <= MAP_MIN_ZOOM:
                break
            zoom -= 1
        elif w * 2 <= width * 0.7 and h * 2 <= height * 0.7 and zoom < MAP_MAX_ZOOM:
            zoom += 1
        else:
            break
    return max(MAP_MIN_ZOOM, min(MAP_MAX_ZOOM, zoom))


# ── Tiles

def _fetch_tile(z: int, x: int, y: int) -> Optional[Image.Image]:
    url = TILE_URL.format(z=z, x=x, y=y)
    try:
        resp = _SESSION.get(url, timeout=TILE_TIMEOUT)
        resp.raise_for_status()
        return Image.open(BytesIO(resp.content)).convert("RGBA")
    except (requests.RequestException, OSError) as exc:
        logger.warning("Tile %s/%s/%s unavailable: %s", z, x, y, exc)
        return None


def render_basemap(center: Tuple[float, float], zoom: int, size: Tuple[int, int] = MAP_TARGET_SIZE):
    """Return (image, origin_px) where origin_px is the world pixel of the image's top-left corner."""
    width, height = size
    cx, cy = lonlat_to_pixel(center[0], center[1], zoom)
    left, top = cx - width / 2.0, cy - height / 2.0
    tx0, ty0 = int(math.floor(left / TILE_SIZE)), int(math.floor(top / TILE_SIZE))
    tx1 = int(math.floor((left + width - 1) / TILE_SIZE))
    ty1 = int(math.floor((top + height - 1) / TILE_SIZE))
    n = 2 ** zoom
    if (tx1 - tx0 + 1) * (ty1 - ty0 + 1) > MAP_MAX_TILES:
        raise EncodingFailure("Map extent needs too many basemap tiles.")

    image = Image.new("RGBA", size, MAP_BLANK_RGB + (255,))
    blank = Image.new("RGBA", (TILE_SIZE, TILE_SIZE), MAP_BLANK_RGB + (255,))
    for ty in range(ty0, ty1 + 1):
        for tx in range(tx0, tx1 + 1):
            tile = None
            if 0 <= ty < n:
                tile = _fetch_tile(zoom, tx % n, ty)
            if tile is None:
                tile = blank
            elif tile.size != (TILE_SIZE, TILE_SIZE):
                tile = tile.resize((TILE_SIZE, TILE_SIZE))
            px = int(round(tx * TILE_SIZE - left))
            py = int(round(ty * TILE_SIZE - top))
            image.paste(tile, (px, py))
    return image, (left, top)


# ── Overlay

def _to_px(coords: Iterable[Sequence[float]], zoom: int, origin: Tuple[float, float]) -> List[Tuple[float, float]]:
    out = []
    for c in coords:
        x, y = lonlat_to_pixel(c[0], c[1], zoom)
        out.append((x - origin[0], y - origin[1]))
    return out


def draw_overlay(image: Image.Image, geom, zoom: int, origin: Tuple[float, float]) -> Image.Image:
    overlay = Image.new("RGBA", image.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(overlay)
    stroke = MAP_OVERLAY_RGB + (255,)
    fill = MAP_OVERLAY_RGB + (64,)

    def _draw(g):
        if isinstance(g, Point):
            (x, y), r = _to_px([g.coords[0]], zoom, origin)[0], 8
            draw.ellipse([x - r, y - r, x + r, y + r], fill=fill, outline=stroke, width=3)
        elif isinstance(g, LineString):
            draw.line(_to_px(g.coords, zoom, origin), fill=stroke, width=3, joint="curve")
        elif isinstance(g, Polygon):
            draw.polygon(_to_px(g.exterior.coords, zoom, origin), fill=fill)
            for ring in g.interiors:
                draw.polygon(_to_px(ring.coords, zoom, origin), fill=(0, 0, 0, 0))
            draw.line(_to_px(g.exterior.coords, zoom, origin), fill=stroke, width=3, joint="curve")
            for ring in g.interiors:
                draw.line(_to_px(ring.coords, zoom, origin), fill=stroke, width=3, joint="curve")
        elif isinstance(g, (MultiPoint, MultiLineString, MultiPolygon)):
            for part in g.geoms:
                _draw(part)

    _draw(geom)
    return Image.alpha_composite(image, overlay)


def draw_scale_bar(image: Image.Image, lat: float, zoom: int) -> None:
    mpp = meters_per_pixel(lat, zoom)
    step = MAP_SCALE_STEPS_M[0]
    for candidate in MAP_SCALE_STEPS_M:
        if candidate / mpp <= image.width / 5.0:
            step = candidate
    length = int(round(step / mpp))
    draw = ImageDraw.Draw(image)
    x0, y0 = 24, image.height - 32
    draw.rectangle([x0 - 8, y0 - 22, x0 + length + 8, y0 + 12], fill=(255, 255, 255, 220))
    draw.line([(x0, y0), (x0 + length, y0)], fill=(30, 30, 30, 255), width=4)
    draw.line([(x0, y0 - 6), (x0, y0 + 6)], fill=(30, 30, 30, 255), width=2)
    draw.line([(x0 + length, y0 - 6), (x0 + length, y0 + 6)], fill=(30, 30, 30, 255), width=2)
    label = f"{step // 1000} km" if step >= 1000 else f"{step} m"
    draw.text((x0, y0 - 20), label, fill=(30, 30, 30, 255))


def render_map_image(feature: AssetFeature) -> Tuple[Image.Image, int]:
    geom = feature.geometry
    bounds = padded_bounds(geom.bounds)
    zoom = fit_zoom(bounds)
    center = ((bounds[0] + bounds[2]) / 2.0, (bounds[1] + bounds[3]) / 2.0)
    image, origin = render_basemap(center, zoom)
    image = draw_overlay(image, geom, zoom, origin)
    draw_scale_bar(image, center[1], zoom)
    return image.convert("RGB"), zoom


# ── PDF

def render_map_pdf(feature: AssetFeature, asset_id: str, dataset_label: str = "") -> bytes:
    image, zoom = render_map_image(feature)
    maps_url = google_maps_url(centroid_of(feature.geometry))

    buf = BytesIO()
    page_w, page_h = landscape(letter)
    c = canvas.Canvas(buf, pagesize=(page_w, page_h), invariant=1)
    c.setTitle(f"MapBuddy {asset_id}")

    top = page_h - PAGE_MARGIN
    c.setFont("Helvetica-Bold", 16)
    c.drawString(PAGE_MARGIN, top - 16, f"MapBuddy • {asset_id}")
    c.setFont("Helvetica", 10)
    if dataset_label:
        c.drawString(PAGE_MARGIN, top - 32, dataset_label)

    link_text = "Open in Google Maps"
    c.setFillColor(colors.HexColor("#0a66c2"))
    link_w = c.stringWidth(link_text, "Helvetica", 10)
    link_x = page_w - PAGE_MARGIN - link_w
    c.drawString(link_x, top - 16, link_text)
    c.linkURL(maps_url, (link_x, top - 19, link_x + link_w, top - 5), relative=0)
    c.setFillColor(colors.black)

    avail_w = page_w - 2 * PAGE_MARGIN
    avail_h = page_h - 2 * PAGE_MARGIN - 64
    ratio = min(avail_w / image.width, avail_h / image.height)
    draw_w, draw_h = image.width * ratio, image.height * ratio
    img_x = PAGE_MARGIN + (avail_w - draw_w) / 2.0
    img_y = PAGE_MARGIN + 20
    c.drawImage(ImageReader(image), img_x, img_y, width=draw_w, height=draw_h)
    c.rect(img_x, img_y, draw_w, draw_h, stroke=1, fill=0)

    c.setFont("Helvetica", 8)
    c.setFillColor(colors.grey)
    c.drawString(PAGE_MARGIN, PAGE_MARGIN, MAP_ATTRIBUTION)
    c.drawRightString(page_w - PAGE_MARGIN, PAGE_MARGIN, f"zoom {zoom}")
    c.showPage()
    c.save()
    return buf.getvalue()
