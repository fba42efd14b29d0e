# mapbuddy/main.py
import logging
from concurrent.futures import ThreadPoolExecutor
from io import BytesIO
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

from fastapi import Body, FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import BULK_MAX_ITEMS, BULK_WORKERS, LOG_LEVEL
from .errors import InvalidRequest, MapBuddyError, NoFeatureFound
from .exports import (
    ExportFormat,
    encode,
    feature_collection_to_features,
    get_format,
    manifest_csv,
    safe_name,
    unique_name,
    zip_bytes,
)
from .geometry import centroid_of, google_maps_url
from .identifiers import clean_asset_id
from .mappdf import render_map_pdf
from .registry import REGISTRY
from .resolver import resolve_asset

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="MapBuddy",
    description="Look up stormwater / landscape / TMDL assets by ID and download them as KML, GeoJSON or Shapefile.",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "X-Google-Maps-URL", "X-Dataset", "X-Match-Mode"],
)


def _sanitize_filename(s: Optional[str]) -> str:
    keep = ("_", "-", ".", " ")
    base = "".join(c for c in (s or "").strip() if (c.isascii() and c.isalnum()) or c in keep)
    return (base or "download").strip()


def _content_disposition(filename: str) -> str:
    ascii_name = _sanitize_filename(filename)
    encoded = quote(filename or "download", safe="")
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{encoded}"


def _download_base(filename: Optional[str], asset_id: str, extension: str) -> str:
    name = (filename or "").strip()
    if name.lower().endswith(extension):
        name = name[: -len(extension)]
    return safe_name(name, default=safe_name(asset_id))


# ── Errors

@app.exception_handler(MapBuddyError)
async def mapbuddy_error_handler(request: Request, exc: MapBuddyError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(exc.to_payload(), status_code=exc.status_code)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = [
        {"loc": [str(p) for p in err.get("loc", ())], "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    return JSONResponse({"error": "Invalid request body.", "details": details}, status_code=400)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception on %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
    return JSONResponse({"error": "Internal server error."}, status_code=500)


# ── Models

class ConvertRequest(BaseModel):
    assetId: Optional[str] = Field(None)
    dataset: Optional[str] = Field(None)
    format: Optional[str] = Field("kml")
    filename: Optional[str] = Field(None)
    geojson: Optional[Dict[str, Any]] = Field(None)


class BulkItem(BaseModel):
    assetId: str
    dataset: Optional[str] = None


class BulkRequest(BaseModel):
    items: List[BulkItem] = Field(default_factory=list)
    defaultDataset: Optional[str] = None
    format: Optional[str] = Field("kml")


class LocateRequest(BaseModel):
    assetId: str
    dataset: Optional[str] = None


# ── Endpoints

@app.get("/hello")
def hello():
    return {"ok": True, "service": "mapbuddy", "message": "Hello from MapBuddy"}


@app.get("/datasets")
def list_datasets():
    return {"datasets": [ds.to_json() for ds in REGISTRY.datasets()]}


@app.post("/convert")
def convert(payload: ConvertRequest = Body(...)):
    fmt = get_format(payload.format)
    headers: Dict[str, str] = {}

    if payload.geojson is not None:
        asset_id = (payload.assetId or "").strip() or "features"
        features = feature_collection_to_features(payload.geojson, asset_id)
        headers["X-Dataset"] = "inline"
    else:
        asset_id = clean_asset_id(payload.assetId)
        resolution = resolve_asset(asset_id, payload.dataset)
        features = [resolution.feature]
        headers["X-Dataset"] = resolution.dataset.key
        headers["X-Match-Mode"] = resolution.mode

    headers["X-Google-Maps-URL"] = google_maps_url(centroid_of(features[0].geometry))
    base = _download_base(payload.filename, asset_id, fmt.extension)
    entries = encode(features, fmt, base)

    if fmt.name == "shapefile":
        data = zip_bytes(entries)
        download_name = f"{base}.zip"
    else:
        download_name, data = entries[0]

    headers["Content-Disposition"] = _content_disposition(download_name)
    return StreamingResponse(BytesIO(data), media_type=fmt.media_type, headers=headers)


def _bulk_item(
    row: int, item: BulkItem, default_dataset: Optional[str], fmt: ExportFormat, out_name: str
) -> Tuple[Dict[str, Any], List[Tuple[str, bytes]]]:
    asset_id = (item.assetId or "").strip()
    record: Dict[str, Any] = {
        "row": row,
        "assetId": asset_id,
        "dataset": item.dataset or default_dataset or "",
    }
    try:
        resolution = resolve_asset(asset_id, item.dataset or default_dataset)
        record["dataset"] = resolution.dataset.key
        record["matchMode"] = resolution.mode
        record["layer"] = resolution.layer.endpoint
        entries = encode([resolution.feature], fmt, out_name, nested=True)
    except NoFeatureFound as exc:
        record.update(status="not_found", reason=exc.message)
        return record, []
    except MapBuddyError as exc:
        record.update(status="error", reason=exc.message)
        return record, []
    except Exception as exc:
        logger.exception("Bulk item %s (%s) failed", row, asset_id)
        record.update(status="error", reason=f"internal error: {exc}")
        return record, []
    record["status"] = "ok"
    return record, entries


@app.post("/bulk")
def bulk(payload: BulkRequest = Body(...)):
    fmt = get_format(payload.format)
    items = list(payload.items or [])
    if not items:
        raise InvalidRequest("items must contain at least one { assetId } entry.")
    if len(items) > BULK_MAX_ITEMS:
        raise InvalidRequest(f"Too many items ({len(items)}); the limit is {BULK_MAX_ITEMS}.")

    # duplicate IDs become <ID>_2, <ID>_3 in input order
    taken: set = set()
    names = [unique_name(safe_name(item.assetId), taken) for item in items]

    workers = max(1, min(BULK_WORKERS, len(items)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [
            pool.submit(_bulk_item, idx, item, payload.defaultDataset, fmt, names[idx - 1])
            for idx, item in enumerate(items, start=1)
        ]
        results = [f.result() for f in futures]

    archive: List[Tuple[str, bytes]] = []
    rows: List[Dict[str, Any]] = []
    for record, entries in results:
        if entries:
            archive.extend(entries)
            record["files"] = ";".join(name for name, _ in entries)
        rows.append(record)

    ok = sum(1 for r in rows if r["status"] == "ok")
    logger.info("Bulk %s: %d/%d items resolved", fmt.name, ok, len(rows))
    if ok == 0:
        raise NoFeatureFound("No items could be resolved.", details=rows)

    archive.append(("manifest.csv", manifest_csv(rows)))
    zip_name = f"mapbuddy_{fmt.name}.zip"
    return StreamingResponse(
        BytesIO(zip_bytes(archive)),
        media_type="application/zip",
        headers={"Content-Disposition": _content_disposition(zip_name)},
    )


@app.post("/locate")
def locate(payload: LocateRequest = Body(...)):
    resolution = resolve_asset(clean_asset_id(payload.assetId), payload.dataset)
    feature = resolution.feature
    centroid = centroid_of(feature.geometry)
    return {
        "assetId": resolution.asset_id,
        "dataset": resolution.dataset.key,
        "centroid": centroid,
        "lat": centroid["lat"],
        "lng": centroid["lng"],
        "googleMapsUrl": google_maps_url(centroid),
        "properties": feature.attributes,
        "matchMode": resolution.mode,
        "matchField": feature.match_field,
        "usedLayer": resolution.layer.endpoint,
    }


@app.post("/map-pdf")
def map_pdf(payload: LocateRequest = Body(...)):
    resolution = resolve_asset(clean_asset_id(payload.assetId), payload.dataset)
    pdf = render_map_pdf(resolution.feature, resolution.asset_id, resolution.dataset.label)
    download_name = f"{safe_name(resolution.asset_id)}_map.pdf"
    return StreamingResponse(
        BytesIO(pdf),
        media_type="application/pdf",
        headers={"Content-Disposition": _content_disposition(download_name)},
    )
