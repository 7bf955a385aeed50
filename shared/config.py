import os
from pathlib import Path

from dotenv import load_dotenv

from shared.constants import (
    DEFAULT_ACCESS_KEY,
    DEFAULT_BUCKET,
    DEFAULT_CACHE_DIR,
    DEFAULT_ENDPOINT,
    DEFAULT_GATEWAY_HOST,
    DEFAULT_GATEWAY_PORT,
    DEFAULT_GATEWAY_URL,
    DEFAULT_LOCAL_STORE_PATH,
    DEFAULT_MULTIPART_THRESHOLD,
    DEFAULT_REGION,
)

load_dotenv()

# App Configuration
APP_NAME = "objectcast"
VERSION = "0.1.0"

# Backing store
STORAGE_PROVIDER = os.getenv("STORAGE_PROVIDER", "s3").lower()
STORE_ENDPOINT = os.getenv("MINIO_ENDPOINT_INTERNAL") or os.getenv("MINIO_ENDPOINT") or DEFAULT_ENDPOINT
STORE_ACCESS_KEY_ID = os.getenv("MINIO_ACCESS_KEY_ID", DEFAULT_ACCESS_KEY)
STORE_SECRET_ACCESS_KEY = os.getenv("MINIO_SECRET_ACCESS_KEY", DEFAULT_ACCESS_KEY)
STORE_REGION = os.getenv("MINIO_REGION", DEFAULT_REGION)
# Path-style addressing unless explicitly disabled (MinIO needs it)
STORE_FORCE_PATH_STYLE = os.getenv("MINIO_FORCE_PATH_STYLE", "true").lower() != "false"
DEFAULT_UPLOAD_BUCKET = os.getenv("MINIO_BUCKET", DEFAULT_BUCKET)
MULTIPART_THRESHOLD_BYTES = int(os.getenv("S3_MULTIPART_THRESHOLD_BYTES", DEFAULT_MULTIPART_THRESHOLD))
LOCAL_STORAGE_PATH = Path(os.getenv("LOCAL_STORAGE_PATH", DEFAULT_LOCAL_STORE_PATH)).expanduser()

# Gateway server
GATEWAY_HOST = os.getenv("GATEWAY_HOST", DEFAULT_GATEWAY_HOST)
GATEWAY_PORT = int(os.getenv("GATEWAY_PORT", DEFAULT_GATEWAY_PORT))

# Client cache
GATEWAY_URL = os.getenv("GATEWAY_URL", DEFAULT_GATEWAY_URL).rstrip("/")
OBJECT_CACHE_DIR = Path(os.getenv("OBJECT_CACHE_DIR", DEFAULT_CACHE_DIR)).expanduser()
# auto | tree | responses
OBJECT_CACHE_BACKEND = os.getenv("OBJECT_CACHE_BACKEND", "auto").lower()


def store_credentials(provider: str = None) -> dict:
    """Credentials dict handed to the configured storage provider."""
    if (provider or STORAGE_PROVIDER) == "local":
        return {"base_path": str(LOCAL_STORAGE_PATH)}
    return {
        "endpoint": STORE_ENDPOINT,
        "access_key_id": STORE_ACCESS_KEY_ID,
        "secret_access_key": STORE_SECRET_ACCESS_KEY,
        "region": STORE_REGION,
        "force_path_style": STORE_FORCE_PATH_STYLE,
    }
