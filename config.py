# config.py — Auckland rail map configuration
# Edit this file to change data sources, route colours, layer names, hover
# animation, excluded route families, etc.

# ── Map camera ───────────────────────────────────────────────────────
# Auckland CBD, (lon, lat)
MAP_CENTER = (174.7633, -36.8485)
MAP_ZOOM = 12

# ── Basemap ──────────────────────────────────────────────────────────
BASEMAP_SOURCE = "osm"
BASEMAP_TILES = [
    "https://a.tile.openstreetmap.org/{z}/{x}/{y}.png",
    "https://b.tile.openstreetmap.org/{z}/{x}/{y}.png",
    "https://c.tile.openstreetmap.org/{z}/{x}/{y}.png",
]
BASEMAP_ATTRIBUTION = "© OpenStreetMap contributors"

# ── Data sources ─────────────────────────────────────────────────────
# Raw line fragments, one feature per track segment, keyed by ROUTE_KEY_FIELD.
RAIL_LINES_FILE = "OpenData_RailService.geojson"
RAIL_STATIONS_FILE = "OpenData_RailStation.geojson"

# Alternate dataset: already-dissolved route geometry served online
# (a GeoJSON URL). None disables it unless --alternate-url is given.
ALTERNATE_LINES_URL = None

HTTP_TIMEOUT = 60
HTTP_MAX_RETRIES = 3
HTTP_RETRY_DELAY = 5

# ── Feature attributes ───────────────────────────────────────────────
ROUTE_KEY_FIELD = "ROUTENUMBER"
OBJECT_ID_FIELD = "OBJECTID"
STATION_LABEL_FIELD = "STOPNAME"

# ── Route styles ─────────────────────────────────────────────────────
# route key -> (colour, display name, lateral offset in px)
# STH is an older spelling of SOUTH that still shows up in some exports.
ROUTE_STYLES = {
    "EAST":  ("#FFD100", "Eastern Line",   0),
    "WEST":  ("#009A44", "Western Line",   0),
    "SOUTH": ("#E4002B", "Southern Line",  2),
    "STH":   ("#E4002B", "Southern Line",  2),
    "ONE":   ("#4FC3F7", "Onehunga Line", -2),
    "PUKE":  ("#A7A9AC", "Pukekohe Line",  0),
    "HUIA":  ("#6C3483", "Te Huia",        4),
}

# Colour and tooltip fallback for route keys missing from ROUTE_STYLES
DEFAULT_ROUTE_COLOR = "#e63946"

# ── Route families ───────────────────────────────────────────────────
# Named groups of route keys that a toggle switch shows / hides together.
ROUTE_FAMILIES = {
    "huia": {"HUIA"},
}

# Families hidden when the map first loads
DEFAULT_HIDDEN_FAMILIES = set()

# Which dataset is shown on load: "primary" (locally dissolved) or "alternate"
DEFAULT_DATASET = "primary"

# ── Layers ───────────────────────────────────────────────────────────
PRIMARY_SOURCE = "auckland-railways"
ALTERNATE_SOURCE = "auckland-railways-online"
STATIONS_SOURCE = "auckland-stations"

# Each dataset owns <source>, <source>-hitbox and <source>-hover layers.
HITBOX_SUFFIX = "-hitbox"
HIGHLIGHT_SUFFIX = "-hover"

LINE_WIDTH = 3
HITBOX_WIDTH = 18
HIGHLIGHT_OPACITY = 0.8

# ── Hover animation ──────────────────────────────────────────────────
# Highlight width breathes between BREATH_BASE_WIDTH and
# BREATH_BASE_WIDTH + BREATH_AMPLITUDE, peaking twice per period.
BREATH_BASE_WIDTH = 6.0
BREATH_AMPLITUDE = 6.0
BREATH_PERIOD = 2.0

# Tooltip offset from the pointer (px) so it doesn't cover the cursor
TOOLTIP_OFFSET = (12, -24)

# ── Strict dissolve ──────────────────────────────────────────────────
# Buffer distance (metres) used to bridge near-but-not-touching fragments.
STRICT_BUFFER_M = 10

# ── Cache / output files ─────────────────────────────────────────────
CACHE_FILE = "rail_lines_cache.geojson"
DISSOLVED_FILE = "dissolved.geojson"
STATIONS_OUT_FILE = "stations.geojson"
STYLE_FILE = "style.json"

# ── Logging ──────────────────────────────────────────────────────────
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
LOG_FILE = "build_map.log"
