from enum import Enum

# Application identity sent to tile servers (OSM tile usage policy requires it)
APP_NAME = 'Trip-Tactician-Pro'
APP_VERSION = '2.1.0'
USER_AGENT = f'{APP_NAME}/{APP_VERSION} (Tile Cache)'
CLI_USER_AGENT = f'{APP_NAME}/{APP_VERSION} (Tile Downloader)'

# Web Mercator tile edge (px)
TILE_SIZE = 256

# Zoom range accepted for regions and lookups
MIN_ZOOM = 0
MAX_ZOOM = 19

# Latitude limit of the Web Mercator projection (degrees)
MERCATOR_MAX_LAT_DEG = 85.0511287798066

# World extent in longitude (degrees)
WORLD_LNG_SPAN_DEG = 360.0
WORLD_LNG_HALF_SPAN_DEG = 180.0

# --- Tile cache store
# Maximum total size of cached tile payloads (bytes)
TILE_CACHE_MAX_SIZE_BYTES = 500 * 1024 * 1024
# Maximum number of cached tiles
TILE_CACHE_MAX_TILES = 10_000
# Tile lifetime counted from creation (seconds)
TILE_CACHE_TTL_SECONDS = 7 * 24 * 60 * 60
# Share of records removed by one LRU eviction pass
TILE_CACHE_EVICT_RATIO = 0.25
# Namespaces of the persistent key-value store
TILE_STORE_NAMESPACE = 'tiles'
METADATA_STORE_NAMESPACE = 'metadata'
# Key of the metadata record inside the metadata namespace
METADATA_KEY = 'cache_info'
# Current CacheMetadata schema version
METADATA_SCHEMA_VERSION = 1
# Default cache location (relative => resolved against the user's local data dir)
TILE_CACHE_DIR = '.cache/tiles'
# Environment variable overriding the cache location
TILE_CACHE_DIR_ENV = 'TILECACHE_DIR'

# --- Tile servers
# {s} is replaced by a subdomain, {z}/{x}/{y} by the tile address
TILE_SERVERS: tuple[str, ...] = (
    'https://{s}.tile.openstreetmap.org/{z}/{x}/{y}.png',
    'https://tile.openstreetmap.de/{z}/{x}/{y}.png',
    'https://tiles.wmflabs.org/osm/{z}/{x}/{y}.png',
)
TILE_SUBDOMAINS: tuple[str, ...] = ('a', 'b', 'c')
# Direct remote template handed to the renderer when the cache is bypassed
REMOTE_TILE_TEMPLATE = 'https://{s}.tile.openstreetmap.org/{z}/{x}/{y}.png'
# Mirrors used by the standalone downloader
CLI_TILE_SERVERS: tuple[str, ...] = (
    'https://a.tile.openstreetmap.org/{z}/{x}/{y}.png',
    'https://b.tile.openstreetmap.org/{z}/{x}/{y}.png',
    'https://c.tile.openstreetmap.org/{z}/{x}/{y}.png',
)

# --- HTTP
HTTP_OK = 200
HTTP_TIMEOUT_DEFAULT = 30.0
HTTP_CONNECT_TIMEOUT = 10.0
# Attempts per tile, each against the next mirror
HTTP_RETRIES_DEFAULT = 3
# Pause before retry N is RETRY_DELAY * N (seconds)
HTTP_RETRY_DELAY = 0.2
HTTP_ACCEPT = 'image/png,image/*,*/*;q=0.8'
# Per-host connection limit of the shared session
HTTP_CONNECTION_LIMIT = 10

# --- Region pre-download pipeline
DOWNLOAD_BATCH_SIZE = 5
# Pause between batches (seconds)
DOWNLOAD_BATCH_DELAY = 0.1
# Progress is logged every N finished tiles
DOWNLOAD_LOG_EVERY = 50

# --- Standalone downloader
CLI_MAX_CONCURRENT = 5
# Spacing of request launches is CLI_REQUEST_DELAY / CLI_MAX_CONCURRENT (seconds)
CLI_REQUEST_DELAY = 0.2
CLI_OUTPUT_DIR = 'public/tiles'
# Estimated tile count above which a warning is printed
CLI_LARGE_DOWNLOAD_TILES = 100_000
# Number of failed tiles listed in the final report
CLI_ERRORS_SHOWN = 10
CLI_PROGRESS_EVERY = 100
CLI_METADATA_VERSION = '1.0'

# --- Connectivity polling
CONNECTIVITY_POLL_INTERVAL = 30.0
CONNECTIVITY_PROBE_TIMEOUT = 5.0

# --- Placeholder tile
PLACEHOLDER_BG_COLOR = '#f0f0f0'
PLACEHOLDER_BORDER_COLOR = '#dddddd'
PLACEHOLDER_TEXT_COLOR = '#999999'
PLACEHOLDER_TEXT = 'Offline'
PLACEHOLDER_FONT_SIZE = 14


class TileMime(str, Enum):
    PNG = 'image/png'
    JPEG = 'image/jpeg'
    WEBP = 'image/webp'
    GIF = 'image/gif'


# Pillow format name -> MIME type
PIL_FORMAT_TO_MIME: dict[str, TileMime] = {
    'PNG': TileMime.PNG,
    'JPEG': TileMime.JPEG,
    'WEBP': TileMime.WEBP,
    'GIF': TileMime.GIF,
}
