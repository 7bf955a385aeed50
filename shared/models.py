"""
Data models for remote objects and store responses.

This module defines the small value types passed between the storage
providers, the HTTP gateway and the client cache.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import format_datetime
from enum import Enum
from typing import Dict, Iterator, Optional

from shared.constants import INDEX_KEY_SEPARATOR


class StorageProvider(Enum):
    """Supported backing object stores."""
    S3 = "s3"
    LOCAL = "local"


@dataclass(frozen=True)
class ObjectRef:
    """
    Immutable address of a remote object.

    Attributes:
        bucket: Bucket name
        key: Object key, may contain '/'-separated path segments
    """
    bucket: str
    key: str

    @property
    def index_key(self) -> str:
        """Key used by the size index (bucket and key together)."""
        return f"{self.bucket}{INDEX_KEY_SEPARATOR}{self.key}"

    @property
    def segments(self):
        """Non-empty '/'-separated segments of the key."""
        return [part for part in self.key.split("/") if part]

    def __str__(self) -> str:
        return f"{self.bucket}/{self.key}"


@dataclass
class StoreObject:
    """
    An object fetched (or headed) from the backing store.

    `body` is an iterator of byte chunks for GETs and None for HEADs. It is
    consumed lazily so the response can stream without buffering.
    """
    content_type: Optional[str] = None
    content_length: Optional[int] = None
    content_range: Optional[str] = None
    etag: Optional[str] = None
    last_modified: Optional[datetime] = None
    body: Optional[Iterator[bytes]] = field(default=None, repr=False)

    @property
    def is_partial(self) -> bool:
        return bool(self.content_range)

    def iter_chunks(self) -> Iterator[bytes]:
        if self.body is None:
            return iter(())
        return self.body

    def read(self) -> bytes:
        """Drain the body into memory."""
        return b"".join(self.iter_chunks())

    def metadata_headers(self) -> Dict[str, str]:
        """Headers mirrored from the store onto a gateway response."""
        headers = {}
        if self.content_type:
            headers["Content-Type"] = self.content_type
        if self.content_length is not None:
            headers["Content-Length"] = str(self.content_length)
        if self.etag:
            headers["ETag"] = self.etag
        if self.last_modified:
            headers["Last-Modified"] = http_date(self.last_modified)
        return headers


def http_date(value: datetime) -> str:
    """Format a datetime as an RFC 7231 HTTP date."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return format_datetime(value.astimezone(timezone.utc), usegmt=True)
