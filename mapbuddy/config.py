# mapbuddy/config.py
# Hard-coded service/layer/field settings for the asset lookup datasets
import os

# ── Fairfax County DPWES stormwater facilities (BMPs)
# Source: DPWES / StwFieldMap → layer 7 "Stormwater facilities"
# IDs look like 1373DP (number + facility-type suffix)
FAIRFAX_BMP_URL = "https://www.fairfaxcounty.gov/mercator/rest/services/DPWES/StwFieldMap/MapServer/7"
FAIRFAX_BMP_ID_FIELDS = ("FACILITY_ID",)

# ── MDOT SHA Managed Landscape
# Source: OED_Env_Assets_Mgr / OED_Environmental_Assets_WGS84 → layer 0
# IDs look like LOD-1234
MDSHA_LANDSCAPE_URL = (
    "https://maps.roads.maryland.gov/arcgis/rest/services/OED_Env_Assets_Mgr/"
    "OED_Environmental_Assets_WGS84_Maryland_MDOTSHA/MapServer/0"
)
MDSHA_LANDSCAPE_ID_FIELDS = ("LOD_ID", "SITE_ID", "SITE_CODE", "NAME", "PROJECT_ID")

# ── MDOT SHA TMDL Bay Restoration viewer
# Source: BayRestoration / TMDLBayRestorationViewer → layers 0-5
MDSHA_TMDL_URL = (
    "https://maps.roads.maryland.gov/arcgis/rest/services/BayRestoration/"
    "TMDLBayRestorationViewer_Maryland_MDOTSHA/MapServer"
)
MDSHA_TMDL_STRUCTURE_FIELDS = ("SWM_FAC_NO", "NAME", "PROJECT_ID")
MDSHA_TMDL_SITE_FIELDS = ("STRU_ID", "ASSET_ID", "NAME", "PROJECT_ID")
# (key, label, layer id, id fields, geometry hint, aliases)
MDSHA_TMDL_LAYERS = (
    ("mdsha_tmdl_structures", "MDOT SHA TMDL Structures", 0, MDSHA_TMDL_STRUCTURE_FIELDS, "point", ("tmdl_structures",)),
    ("mdsha_tmdl_retrofits", "MDOT SHA TMDL Retrofits", 1, MDSHA_TMDL_STRUCTURE_FIELDS, "point", ("tmdl_retrofits",)),
    ("mdsha_tmdl_tree_plantings", "MDOT SHA TMDL Tree Plantings", 2, MDSHA_TMDL_SITE_FIELDS, "polygon", ("tmdl_tree_plantings",)),
    ("mdsha_tmdl_pavement_removals", "MDOT SHA TMDL Pavement Removals", 3, MDSHA_TMDL_SITE_FIELDS, "polygon", ("tmdl_pavement_removals",)),
    ("mdsha_tmdl_stream_restorations", "MDOT SHA TMDL Stream Restorations", 4, MDSHA_TMDL_SITE_FIELDS, "polyline", ("tmdl_stream_restorations",)),
    ("mdsha_tmdl_outfall_stabilizations", "MDOT SHA TMDL Outfall Stabilizations", 5, MDSHA_TMDL_SITE_FIELDS, "point", ("tmdl_outfall_stabilizations",)),
)

# ── Dataset auto-detection, first match wins
# (pattern on the trimmed upper-cased ID, dataset key)
AUTODETECT_RULES = (
    (r"^LOD[\s_-]*\d+$", "mdsha_landscape"),
    (r"^\d+\s*-?\s*(TP|PR|SR|OS|RF|CS)$", "mdsha_tmdl_any"),
    (r"^\d+\s*-?\s*[A-Z]{2,}$", "fairfax_bmps"),
)

# ── HTTP
ARCGIS_TIMEOUT = float(os.getenv("MAPBUDDY_ARCGIS_TIMEOUT", "20"))   # seconds, per upstream call
TILE_TIMEOUT = float(os.getenv("MAPBUDDY_TILE_TIMEOUT", "10"))
USER_AGENT = "MapBuddy/1.0"

# ── Bulk
BULK_WORKERS = int(os.getenv("MAPBUDDY_BULK_WORKERS", "4"))
BULK_MAX_ITEMS = 500
SAFE_NAME_MAX = 80

# ── Logging
LOG_LEVEL = os.getenv("MAPBUDDY_LOG_LEVEL", "INFO").upper()

# ── Exports
KML_PRECISION = 6
GOOGLE_MAPS_URL = "https://www.google.com/maps/search/?api=1&query={lat},{lng}"

# ── Map PDF
# Carto light basemap, @2x tiles are 512 px
TILE_URL = "https://a.basemaps.cartocdn.com/light_all/{z}/{x}/{y}@2x.png"
TILE_SIZE = 512
MAP_TARGET_SIZE = (1400, 900)
MAP_START_ZOOM = 16
MAP_MIN_ZOOM = 10
MAP_MAX_ZOOM = 19
MAP_MAX_TILES = 64
MAP_POINT_PAD_DEG = 0.0015
MAP_BLANK_RGB = (238, 242, 247)        # #eef2f7
MAP_OVERLAY_RGB = (0, 153, 255)
MAP_SCALE_STEPS_M = (50, 100, 200, 500, 1000, 2000, 5000)
MAP_ATTRIBUTION = "Basemap © Carto • Data © respective agencies"
