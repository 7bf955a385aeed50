"""
Shared constants used across the gateway, storage and client packages.
"""

# Gateway routes
OBJECT_ROUTE = "/api/storage/object"
PLAYLIST_ROUTE = "/api/storage/hls/playlist"
UPLOAD_ROUTE = "/api/storage/upload"
HEALTH_ROUTE = "/api/health"

# Query parameter spellings, checked in order
BUCKET_PARAMS = ("bucket", "b")
KEY_PARAMS = ("key", "k")

# HLS
HLS_CONTENT_TYPE = "application/vnd.apple.mpegurl"
PLAYLIST_CACHE_CONTROL = "private, max-age=30"
URI_DIRECTIVES = ("EXT-X-MAP", "EXT-X-KEY")

# Streaming
STREAM_CHUNK_SIZE = 64 * 1024  # bytes
DOWNLOAD_CHUNK_SIZE = 64 * 1024  # bytes
DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Upload settings
DEFAULT_MULTIPART_THRESHOLD = 1_000_000_000  # bytes
MULTIPART_CHUNK_SIZE = 100 * 1024 * 1024  # 100MB
MULTIPART_CONCURRENCY = 3
THUMBS_DIR = ".thumbs"

# Store defaults
DEFAULT_ENDPOINT = "http://localhost:9000"
DEFAULT_REGION = "us-east-1"
DEFAULT_BUCKET = "mlops-datasets"
DEFAULT_ACCESS_KEY = "minioadmin"

# Client cache
CACHE_INDEX_FILENAME = "cache_index.db"
RESPONSE_STORE_FILENAME = "responses.db"
FILE_TREE_DIRNAME = "objects"
SPOOL_DIRNAME = "spool"
INDEX_KEY_SEPARATOR = ":::"
PARTIAL_SUFFIX = ".part"

# Configuration paths
DEFAULT_CACHE_DIR = "~/.cache/objectcast"
DEFAULT_DATA_DIR = "~/.local/share/objectcast"
DEFAULT_LOCAL_STORE_PATH = DEFAULT_DATA_DIR + "/store"

# Network Settings
DEFAULT_GATEWAY_HOST = "0.0.0.0"
DEFAULT_GATEWAY_PORT = 5005
DEFAULT_GATEWAY_URL = "http://localhost:5005"
