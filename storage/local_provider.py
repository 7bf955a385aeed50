"""
Local filesystem object store.
Implements the ObjectStore interface on top of a directory tree.
"""

import logging
import mimetypes
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Dict, Iterator, Optional

from shared.constants import DEFAULT_CONTENT_TYPE, STREAM_CHUNK_SIZE
from shared.models import StoreObject
from .storage_provider import (
    ObjectNotFoundError,
    ObjectStore,
    StoreError,
    format_content_range,
    parse_range,
)

logger = logging.getLogger(__name__)

# Types the platform table may not know about
EXTRA_CONTENT_TYPES = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".ts": "video/mp2t",
    ".m4s": "video/iso.segment",
    ".parquet": "application/vnd.apache.parquet",
}


class LocalStorageProvider(ObjectStore):
    """
    Store that keeps each bucket as a subdirectory of a base path.
    Useful for self-hosting on a NAS or local drive, and for tests.
    """

    def __init__(self, base_path: Optional[str] = None):
        self.base_path: Optional[Path] = None
        if base_path:
            self.authenticate({'base_path': base_path})

    def authenticate(self, credentials: Dict[str, str]) -> bool:
        """
        'Authenticate' by setting the base path.
        """
        path = credentials.get('base_path') or credentials.get('endpoint')
        if not path:
            return False

        self.base_path = Path(path).expanduser().absolute()
        self.base_path.mkdir(parents=True, exist_ok=True)
        return True

    def _get_path(self, bucket: str, key: str) -> Path:
        """Get absolute local path for an object, refusing keys that escape the bucket."""
        if self.base_path is None:
            raise StoreError("Local store not configured")
        bucket_root = (self.base_path / bucket).resolve()
        path = (bucket_root / key.lstrip("/")).resolve()
        if bucket_root != path and bucket_root not in path.parents:
            raise StoreError(f"Invalid key: {key}")
        return path

    def _existing_path(self, bucket: str, key: str) -> Path:
        path = self._get_path(bucket, key)
        if not path.is_file():
            raise ObjectNotFoundError(f"No such key: {bucket}/{key}")
        return path

    def get_object(self, bucket: str, key: str,
                   range_header: Optional[str] = None) -> StoreObject:
        path = self._existing_path(bucket, key)
        obj = self._describe(path)
        size = obj.content_length

        span = parse_range(range_header, size)
        if span is None:
            start, end = 0, size - 1
        else:
            start, end = span
            obj.content_range = format_content_range(start, end, size)
            obj.content_length = end - start + 1

        obj.body = self._iter_file(path, start, end - start + 1)
        return obj

    def head_object(self, bucket: str, key: str) -> StoreObject:
        return self._describe(self._existing_path(bucket, key))

    def delete_object(self, bucket: str, key: str) -> None:
        try:
            path = self._get_path(bucket, key)
            if path.exists():
                os.remove(path)
        except OSError as e:
            raise StoreError(f"Local delete error: {e}") from e

    def put_object(self, bucket: str, key: str, data: bytes,
                   content_type: Optional[str] = None) -> None:
        try:
            path = self._get_path(bucket, key)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            raise StoreError(f"Local upload error: {e}") from e

    def upload_fileobj(self, bucket: str, key: str, fileobj: BinaryIO,
                       content_type: Optional[str] = None) -> None:
        try:
            path = self._get_path(bucket, key)
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "wb") as dest:
                shutil.copyfileobj(fileobj, dest, STREAM_CHUNK_SIZE)
        except OSError as e:
            raise StoreError(f"Local upload error: {e}") from e

    def ensure_bucket(self, bucket: str, region: Optional[str] = None) -> str:
        bucket_path = self.base_path / bucket
        if bucket_path.is_dir():
            return "exists"
        try:
            bucket_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreError(f"Could not create bucket {bucket}: {e}") from e
        return "created"

    @staticmethod
    def _describe(path: Path) -> StoreObject:
        stat = path.stat()
        content_type = EXTRA_CONTENT_TYPES.get(path.suffix.lower())
        if not content_type:
            content_type = mimetypes.guess_type(path.name)[0] or DEFAULT_CONTENT_TYPE
        return StoreObject(
            content_type=content_type,
            content_length=stat.st_size,
            etag=f'"{stat.st_mtime_ns:x}-{stat.st_size:x}"',
            last_modified=datetime.fromtimestamp(int(stat.st_mtime), tz=timezone.utc),
        )

    @staticmethod
    def _iter_file(path: Path, start: int, length: int) -> Iterator[bytes]:
        with open(path, "rb") as f:
            f.seek(start)
            remaining = length
            while remaining > 0:
                chunk = f.read(min(STREAM_CHUNK_SIZE, remaining))
                if not chunk:
                    break
                remaining -= len(chunk)
                yield chunk
