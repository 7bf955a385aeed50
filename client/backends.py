"""
Storage backends for the local object cache.

Two interchangeable implementations of one small capability interface:

- FileTreeBackend: a private directory tree where each '/'-separated segment
  of the object key becomes a directory and the last one the file. The bucket
  is not part of the path, so equal keys in different buckets share an entry.
- ResponseStoreBackend: an SQLite table of response-shaped rows (body plus
  headers) keyed by the object's gateway URL. Writes are all-at-once.

select_backend() probes for the file tree first and falls back to the
response store.
"""

import hashlib
import json
import logging
import os
import sqlite3
import threading
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Callable, Dict, Iterator, List, Optional, Tuple

from shared.constants import PARTIAL_SUFFIX
from shared.models import ObjectRef

logger = logging.getLogger(__name__)


class CacheBackendError(Exception):
    """Local cache storage failure."""
    pass


class CacheBackend(ABC):
    """Capability interface shared by the cache backends."""

    name = "backend"
    # Whether open_writer() can take a download chunk by chunk
    supports_streaming = False

    @abstractmethod
    def available(self) -> bool:
        """Probe whether this backend can be used in the current environment."""
        pass

    @abstractmethod
    def exists(self, ref: ObjectRef) -> bool:
        pass

    @abstractmethod
    def read(self, ref: ObjectRef) -> Optional[bytes]:
        """Full entry bytes, or None if absent."""
        pass

    @abstractmethod
    def write(self, ref: ObjectRef, data: bytes,
              headers: Optional[Dict[str, str]] = None) -> int:
        """
        Store a complete entry, replacing any previous one.

        Returns:
            Number of bytes stored

        Raises:
            CacheBackendError: If the write fails
        """
        pass

    @abstractmethod
    def remove(self, ref: ObjectRef) -> None:
        """Remove an entry; a missing entry is not an error."""
        pass

    @abstractmethod
    def entries(self) -> List[Tuple[str, int]]:
        """(entry name, size) for every stored entry, fully collected."""
        pass

    @abstractmethod
    def remove_entry(self, name: str) -> None:
        """Remove an entry by the name reported from entries()."""
        pass

    @abstractmethod
    def local_url(self, ref: ObjectRef) -> str:
        """
        URL a player can open directly.

        Raises:
            CacheBackendError: If the entry is absent
        """
        pass

    def revoke_url(self, url: str) -> None:
        """Release a URL handed out by local_url()."""
        pass

    @contextmanager
    def open_writer(self, ref: ObjectRef) -> Iterator[BinaryIO]:
        raise CacheBackendError(f"{self.name} backend cannot stream writes")
        yield  # pragma: no cover

    def clear(self) -> int:
        """Remove every entry. Names are collected before anything is deleted."""
        names = [name for name, _ in self.entries()]
        for name in names:
            self.remove_entry(name)
        return len(names)


class FileTreeBackend(CacheBackend):
    """Private directory tree, one file per cached object."""

    name = "tree"
    supports_streaming = True

    def __init__(self, root):
        self.root = Path(root).expanduser()

    def available(self) -> bool:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError:
            return False
        return os.access(self.root, os.W_OK)

    def path_for(self, ref: ObjectRef) -> Path:
        segments = ref.segments
        if not segments:
            raise CacheBackendError(f"Empty key for {ref}")
        if any(part in (".", "..") for part in segments):
            raise CacheBackendError(f"Invalid path segment in {ref.key}")
        return self.root.joinpath(*segments)

    def exists(self, ref: ObjectRef) -> bool:
        return self.path_for(ref).is_file()

    def read(self, ref: ObjectRef) -> Optional[bytes]:
        path = self.path_for(ref)
        if not path.is_file():
            return None
        return path.read_bytes()

    @contextmanager
    def open_writer(self, ref: ObjectRef) -> Iterator[BinaryIO]:
        """
        Open the entry for chunked writing.

        Bytes go to a sibling partial file of this writer's own that replaces
        the entry only when the block exits cleanly; on error the partial file
        is discarded. Overlapping writers of one key each commit whole, the
        last one to finish wins.
        """
        path = self.path_for(ref)
        partial = path.with_name(f"{path.name}.{uuid.uuid4().hex}{PARTIAL_SUFFIX}")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            handle = open(partial, "wb")
        except OSError as e:
            raise CacheBackendError(f"Cannot open {path}: {e}") from e

        try:
            with handle:
                yield handle
        except BaseException:
            partial.unlink(missing_ok=True)
            raise

        try:
            os.replace(partial, path)
        except OSError as e:
            partial.unlink(missing_ok=True)
            raise CacheBackendError(f"Write to {path} failed: {e}") from e

    def write(self, ref: ObjectRef, data: bytes,
              headers: Optional[Dict[str, str]] = None) -> int:
        with self.open_writer(ref) as handle:
            handle.write(data)
        return len(data)

    def remove(self, ref: ObjectRef) -> None:
        path = self.path_for(ref)
        path.unlink(missing_ok=True)
        self._prune_empty_dirs(path.parent)

    def entries(self) -> List[Tuple[str, int]]:
        if not self.root.is_dir():
            return []
        found = []
        for path in self.root.rglob("*"):
            if not path.is_file() or path.name.endswith(PARTIAL_SUFFIX):
                continue
            found.append((path.relative_to(self.root).as_posix(), path.stat().st_size))
        return found

    def remove_entry(self, name: str) -> None:
        path = self.root.joinpath(*PurePosixPath(name).parts)
        path.unlink(missing_ok=True)
        self._prune_empty_dirs(path.parent)

    def local_url(self, ref: ObjectRef) -> str:
        path = self.path_for(ref)
        if not path.is_file():
            raise CacheBackendError(f"Not cached: {ref}")
        return path.resolve().as_uri()

    def _prune_empty_dirs(self, directory: Path):
        root = self.root.resolve()
        directory = directory.resolve()
        while directory != root and root in directory.parents:
            try:
                directory.rmdir()
            except OSError:
                break
            directory = directory.parent


class ResponseStoreBackend(CacheBackend):
    """
    Response-shaped key-value store.

    Rows are keyed by the gateway URL of the object and hold the body with
    its response headers. Local URLs are materialised as spool files named
    after the entry they copy; revoke_url() deletes one, removing the entry
    deletes all of its copies, and spool files left by an earlier process
    are swept when the store is first opened.
    """

    name = "responses"
    supports_streaming = False

    def __init__(self, db_path, spool_dir, url_for: Callable[[ObjectRef], str]):
        self.db_path = Path(db_path).expanduser()
        self.spool_dir = Path(spool_dir).expanduser()
        self.url_for = url_for
        self.lock = threading.Lock()
        self.conn = None
        self._spooled: Dict[str, Path] = {}

    def _connection(self) -> sqlite3.Connection:
        if self.conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=20)
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS responses (
                    url TEXT PRIMARY KEY,
                    body BLOB NOT NULL,
                    headers TEXT NOT NULL,
                    size_bytes INTEGER NOT NULL,
                    stored_at TIMESTAMP NOT NULL
                )
            """)
            self.conn.commit()
            self._sweep_spool()
        return self.conn

    def available(self) -> bool:
        try:
            with self.lock:
                self._connection()
            return True
        except (sqlite3.Error, OSError) as e:
            logger.debug("Response store unavailable: %s", e)
            return False

    def close(self):
        with self.lock:
            if self.conn is not None:
                self.conn.close()
                self.conn = None

    def exists(self, ref: ObjectRef) -> bool:
        with self.lock:
            row = self._connection().execute(
                "SELECT 1 FROM responses WHERE url = ?", (self.url_for(ref),)
            ).fetchone()
        return row is not None

    def read(self, ref: ObjectRef) -> Optional[bytes]:
        with self.lock:
            row = self._connection().execute(
                "SELECT body FROM responses WHERE url = ?", (self.url_for(ref),)
            ).fetchone()
        return bytes(row[0]) if row else None

    def headers(self, ref: ObjectRef) -> Optional[Dict[str, str]]:
        with self.lock:
            row = self._connection().execute(
                "SELECT headers FROM responses WHERE url = ?", (self.url_for(ref),)
            ).fetchone()
        return json.loads(row[0]) if row else None

    def write(self, ref: ObjectRef, data: bytes,
              headers: Optional[Dict[str, str]] = None) -> int:
        stored_headers = dict(headers or {})
        stored_headers["Content-Length"] = str(len(data))
        try:
            with self.lock:
                conn = self._connection()
                conn.execute("""
                    INSERT OR REPLACE INTO responses (url, body, headers, size_bytes, stored_at)
                    VALUES (?, ?, ?, ?, ?)
                """, (self.url_for(ref), sqlite3.Binary(data), json.dumps(stored_headers),
                      len(data), datetime.now(timezone.utc).isoformat()))
                conn.commit()
        except sqlite3.Error as e:
            raise CacheBackendError(f"Could not store {ref}: {e}") from e
        return len(data)

    def remove(self, ref: ObjectRef) -> None:
        self.remove_entry(self.url_for(ref))

    def clear(self) -> int:
        removed = super().clear()
        self._sweep_spool()
        return removed

    def entries(self) -> List[Tuple[str, int]]:
        with self.lock:
            rows = self._connection().execute("SELECT url, size_bytes FROM responses").fetchall()
        return [(url, size) for url, size in rows]

    def remove_entry(self, name: str) -> None:
        with self.lock:
            conn = self._connection()
            conn.execute("DELETE FROM responses WHERE url = ?", (name,))
            conn.commit()
        for path in self.spool_dir.glob(f"{_spool_prefix(name)}-*"):
            self._unspool(path)

    def local_url(self, ref: ObjectRef) -> str:
        body = self.read(ref)
        if body is None:
            raise CacheBackendError(f"Not cached: {ref}")
        suffix = PurePosixPath(ref.key).suffix
        try:
            self.spool_dir.mkdir(parents=True, exist_ok=True)
            path = self.spool_dir / f"{_spool_prefix(self.url_for(ref))}-{uuid.uuid4().hex}{suffix}"
            path.write_bytes(body)
        except OSError as e:
            raise CacheBackendError(f"Could not spool {ref}: {e}") from e
        url = path.resolve().as_uri()
        self._spooled[url] = path
        return url

    def revoke_url(self, url: str) -> None:
        path = self._spooled.pop(url, None)
        if path is not None:
            path.unlink(missing_ok=True)

    def _unspool(self, path: Path):
        self._spooled.pop(path.resolve().as_uri(), None)
        path.unlink(missing_ok=True)

    def _sweep_spool(self):
        if not self.spool_dir.is_dir():
            return
        for path in self.spool_dir.iterdir():
            if path.is_file():
                self._unspool(path)


def _spool_prefix(url: str) -> str:
    return hashlib.sha1(url.encode("utf-8")).hexdigest()[:16]


def select_backend(backends: List[CacheBackend], mode: str = "auto") -> CacheBackend:
    """
    Pick the backend a cache instance writes to.

    Args:
        backends: Candidates in preference order
        mode: "auto" for the first available candidate, or a backend name

    Raises:
        CacheBackendError: If no candidate is usable
    """
    if mode != "auto":
        for backend in backends:
            if backend.name == mode:
                if not backend.available():
                    raise CacheBackendError(f"Cache backend '{mode}' is not available")
                return backend
        raise CacheBackendError(f"Unknown cache backend: {mode}")

    for backend in backends:
        if backend.available():
            logger.debug("Using %s cache backend", backend.name)
            return backend
    raise CacheBackendError("No usable cache backend")
