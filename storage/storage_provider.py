"""
Abstract base class for backing object stores.

This module defines the interface the gateway needs from a store, allowing
the application to work with MinIO, AWS S3, any other S3-compatible service,
or a plain directory on disk.
"""

import re
from abc import ABC, abstractmethod
from typing import BinaryIO, Dict, Optional, Tuple

from shared.models import StoreObject

_RANGE_RE = re.compile(r"^\s*bytes\s*=\s*(\d*)\s*-\s*(\d*)\s*$", re.IGNORECASE)


class StoreError(Exception):
    """Backing store failure."""
    pass


class ObjectNotFoundError(StoreError):
    """The requested object (or bucket) does not exist."""
    pass


def parse_range(header: Optional[str], size: int) -> Optional[Tuple[int, int]]:
    """
    Resolve a single `bytes=` Range header against an object size.

    Args:
        header: Raw Range header value, e.g. "bytes=0-99", "bytes=500-" or "bytes=-100"
        size: Total object size in bytes

    Returns:
        Inclusive (start, end) tuple, or None when no range was requested

    Raises:
        StoreError: If the header is malformed or unsatisfiable
    """
    if not header:
        return None
    match = _RANGE_RE.match(header)
    if not match:
        raise StoreError(f"Invalid range: {header}")
    first, last = match.groups()
    if not first and not last:
        raise StoreError(f"Invalid range: {header}")

    if not first:
        # Suffix range: the last N bytes
        length = int(last)
        if length == 0:
            raise StoreError(f"Range not satisfiable: {header}")
        start = max(0, size - length)
        end = size - 1
    else:
        start = int(first)
        end = int(last) if last else size - 1
        end = min(end, size - 1)

    if start >= size or start > end:
        raise StoreError(f"Range not satisfiable: {header}")
    return start, end


def format_content_range(start: int, end: int, size: int) -> str:
    return f"bytes {start}-{end}/{size}"


class ObjectStore(ABC):
    """
    Abstract base class for stores addressed by (bucket, key).

    All providers must implement this interface to sit behind the gateway.
    """

    @abstractmethod
    def authenticate(self, credentials: Dict[str, str]) -> bool:
        """
        Connect to the store.

        Args:
            credentials: Provider specific settings (endpoint, keys, base_path, ...)

        Returns:
            True if the store is usable, False otherwise
        """
        pass

    @abstractmethod
    def get_object(self, bucket: str, key: str,
                   range_header: Optional[str] = None) -> StoreObject:
        """
        Fetch an object, optionally a byte range of it.

        Args:
            bucket: Bucket name
            key: Object key
            range_header: Optional HTTP Range header value forwarded verbatim

        Returns:
            StoreObject whose body streams the requested bytes

        Raises:
            ObjectNotFoundError: If the object does not exist
            StoreError: On any other store failure
        """
        pass

    @abstractmethod
    def head_object(self, bucket: str, key: str) -> StoreObject:
        """
        Fetch object metadata only.

        Returns:
            StoreObject without a body

        Raises:
            ObjectNotFoundError: If the object does not exist
            StoreError: On any other store failure
        """
        pass

    @abstractmethod
    def delete_object(self, bucket: str, key: str) -> None:
        """
        Delete an object.

        Raises:
            StoreError: If the deletion fails
        """
        pass

    @abstractmethod
    def put_object(self, bucket: str, key: str, data: bytes,
                   content_type: Optional[str] = None) -> None:
        """
        Store a small object in a single request.

        Raises:
            StoreError: If the upload fails
        """
        pass

    @abstractmethod
    def upload_fileobj(self, bucket: str, key: str, fileobj: BinaryIO,
                       content_type: Optional[str] = None) -> None:
        """
        Store a large object from a file-like body using a managed
        (multipart where supported) transfer.

        Raises:
            StoreError: If the upload fails
        """
        pass

    @abstractmethod
    def ensure_bucket(self, bucket: str, region: Optional[str] = None) -> str:
        """
        Make sure a bucket exists, creating it if needed.

        Returns:
            "exists" or "created"

        Raises:
            StoreError: If the bucket can neither be found nor created
        """
        pass

    def read_text(self, bucket: str, key: str, encoding: str = "utf-8") -> str:
        """
        Download a whole object and decode it as text.

        Raises:
            ObjectNotFoundError: If the object does not exist
            StoreError: On any other store failure
        """
        obj = self.get_object(bucket, key)
        return obj.read().decode(encoding)
