"""
Persistent local cache for objects served by the gateway.

Objects are fetched through the gateway's object route and kept in one of two
local backends (see client.backends), with sizes tracked in a side index.
Read operations never raise: any failure reads as "not cached" so callers can
always fall back to the network. Write operations may raise.
"""

import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import requests

from shared.constants import (
    CACHE_INDEX_FILENAME,
    DOWNLOAD_CHUNK_SIZE,
    FILE_TREE_DIRNAME,
    OBJECT_ROUTE,
    RESPONSE_STORE_FILENAME,
    SPOOL_DIRNAME,
)
from shared.models import ObjectRef
from .backends import (
    CacheBackend,
    CacheBackendError,
    FileTreeBackend,
    ResponseStoreBackend,
    select_backend,
)
from .size_index import CacheSizeIndex

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]


class PersistentObjectCache:
    """
    Local cache keyed by (bucket, key).

    Args:
        gateway_url: Base URL of the object gateway, e.g. "http://localhost:5005"
        cache_dir: Directory holding the file tree, response store and index
        size_index: Size index to record into (defaults to one under cache_dir)
        backends: Candidate backends in preference order (defaults to file tree, then response store)
        session: requests-compatible session used for downloads
        backend_mode: "auto", "tree" or "responses"
    """

    def __init__(self, gateway_url: str, cache_dir,
                 size_index: Optional[CacheSizeIndex] = None,
                 backends: Optional[List[CacheBackend]] = None,
                 session=None,
                 backend_mode: str = "auto"):
        self.gateway_url = gateway_url.rstrip("/")
        self.cache_dir = Path(cache_dir).expanduser()
        self.size_index = size_index or CacheSizeIndex(self.cache_dir / CACHE_INDEX_FILENAME)
        self.backends = backends or [
            FileTreeBackend(self.cache_dir / FILE_TREE_DIRNAME),
            ResponseStoreBackend(
                self.cache_dir / RESPONSE_STORE_FILENAME,
                self.cache_dir / SPOOL_DIRNAME,
                self._ref_url,
            ),
        ]
        self.session = session or requests.Session()
        self.backend_mode = backend_mode
        self._backend: Optional[CacheBackend] = None

    @property
    def backend(self) -> CacheBackend:
        """Backend chosen by probing, once per cache instance."""
        if self._backend is None:
            self._backend = select_backend(self.backends, self.backend_mode)
        return self._backend

    def object_url(self, bucket: str, key: str) -> str:
        """Gateway URL of an object; also the response store's entry key."""
        return f"{self.gateway_url}{OBJECT_ROUTE}?{urlencode({'b': bucket, 'k': key})}"

    def _ref_url(self, ref: ObjectRef) -> str:
        return self.object_url(ref.bucket, ref.key)

    # --- Reads ---

    def exists(self, bucket: str, key: str) -> bool:
        try:
            return self.backend.exists(ObjectRef(bucket, key))
        except Exception as e:
            logger.debug("exists(%s/%s) failed: %s", bucket, key, e)
            return False

    def get_cached_url(self, bucket: str, key: str) -> Optional[str]:
        """Local URL usable as a media source, or None if not cached."""
        ref = ObjectRef(bucket, key)
        try:
            if not self.backend.exists(ref):
                return None
            return self.backend.local_url(ref)
        except Exception as e:
            logger.debug("get_cached_url(%s) failed: %s", ref, e)
            return None

    def read_bytes(self, bucket: str, key: str) -> Optional[bytes]:
        try:
            return self.backend.read(ObjectRef(bucket, key))
        except Exception as e:
            logger.debug("read_bytes(%s/%s) failed: %s", bucket, key, e)
            return None

    def revoke_url(self, url: str) -> None:
        for backend in self.backends:
            backend.revoke_url(url)

    # --- Writes ---

    def download_with_progress(self, bucket: str, key: str,
                               expected_size: Optional[int] = None,
                               on_progress: Optional[ProgressCallback] = None) -> str:
        """
        Download an object through the gateway into the cache.

        The file tree backend receives the body chunk by chunk; the response
        store needs the whole body before it can commit.

        Args:
            bucket: Bucket name
            key: Object key
            expected_size: Size hint; when absent the Content-Length header is used
            on_progress: Called with an integer percentage (0-100) after each
                chunk, only when the total size is known

        Returns:
            Local URL of the cached object

        Raises:
            requests.RequestException: If the gateway request fails
            CacheBackendError: If the local entry cannot be committed
            OSError: If writing a chunk to the local entry fails
        """
        ref = ObjectRef(bucket, key)
        backend = self.backend

        with self.session.get(self.object_url(bucket, key), stream=True) as response:
            response.raise_for_status()
            total = expected_size if expected_size and expected_size > 0 else _content_length(response)
            downloaded = 0

            def report(count: int):
                if on_progress and total > 0:
                    on_progress(min(100, round(count / total * 100)))

            chunks = response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE)
            if backend.supports_streaming:
                with backend.open_writer(ref) as handle:
                    for chunk in chunks:
                        if not chunk:
                            continue
                        handle.write(chunk)
                        downloaded += len(chunk)
                        report(downloaded)
            else:
                buffer = bytearray()
                for chunk in chunks:
                    if not chunk:
                        continue
                    buffer.extend(chunk)
                    downloaded += len(chunk)
                    report(downloaded)
                backend.write(ref, bytes(buffer), _response_headers(response))

        self.size_index.set(bucket, key, downloaded)
        logger.info("Cached %s (%d bytes, %s)", ref, downloaded, backend.name)
        return backend.local_url(ref)

    def download_bytes(self, bucket: str, key: str) -> bytes:
        """
        Fetch a whole object and cache it, returning the bytes.

        A failed cache write is logged and the bytes are still returned.

        Raises:
            requests.RequestException: If the gateway request fails
        """
        ref = ObjectRef(bucket, key)
        response = self.session.get(self.object_url(bucket, key))
        response.raise_for_status()
        data = response.content

        try:
            size = self.backend.write(ref, data, _response_headers(response))
            self.size_index.set(bucket, key, size)
        except (CacheBackendError, OSError) as e:
            logger.warning("Could not cache %s: %s", ref, e)
        return data

    def delete(self, bucket: str, key: str) -> None:
        """Remove an entry from every backend that may hold it, then its size record."""
        ref = ObjectRef(bucket, key)
        for backend in self.backends:
            try:
                if backend.available():
                    backend.remove(ref)
            except (CacheBackendError, OSError) as e:
                logger.debug("Could not remove %s from %s: %s", ref, backend.name, e)
        self.size_index.remove(bucket, key)

    def clear_all(self) -> int:
        """Empty both backends and the size index. Returns the number of entries removed."""
        removed = 0
        for backend in self.backends:
            if backend.available():
                removed += backend.clear()
        self.size_index.clear()
        logger.info("Cleared %d cached entries", removed)
        return removed

    # --- Accounting ---

    def entries(self) -> List[Tuple[str, str, int]]:
        """(backend name, entry name, size) for everything cached locally."""
        listed = []
        for backend in self.backends:
            try:
                if not backend.available():
                    continue
                listed.extend((backend.name, name, size) for name, size in backend.entries())
            except (CacheBackendError, OSError) as e:
                logger.debug("Could not list %s backend: %s", backend.name, e)
        return listed

    def total_bytes(self) -> int:
        """
        Bytes used by the cache.

        Answered from the size index; an empty index (first run, or lost)
        falls back to walking both backends.
        """
        if not self.size_index.is_empty():
            return self.size_index.total_bytes()
        return sum(size for _, _, size in self.entries())


def _content_length(response) -> int:
    try:
        return int(response.headers.get("Content-Length") or 0)
    except ValueError:
        return 0


def _response_headers(response) -> Dict[str, str]:
    headers = {}
    for name in ("Content-Type", "ETag", "Last-Modified"):
        value = response.headers.get(name)
        if value:
            headers[name] = value
    return headers
