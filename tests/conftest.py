from unittest.mock import patch
from urllib.parse import urlsplit

import pytest
import requests

from client.cache import PersistentObjectCache
from client.size_index import CacheSizeIndex
from shared.api import app
from storage.local_provider import LocalStorageProvider

BUCKET = "media"
GATEWAY_URL = "http://gateway.test"


class GatewayResponse:
    """Just enough of requests.Response for the cache."""

    def __init__(self, response):
        self.status_code = response.status_code
        self.headers = response.headers
        self._data = response.get_data()

    @property
    def content(self):
        return self._data

    def iter_content(self, chunk_size=1):
        for start in range(0, len(self._data), chunk_size):
            yield self._data[start:start + chunk_size]

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class GatewaySession:
    """requests-style session answering from the Flask test client."""

    def __init__(self, test_client):
        self.test_client = test_client
        self.requested = []

    def get(self, url, stream=False, **kwargs):
        parts = urlsplit(url)
        self.requested.append(url)
        return GatewayResponse(self.test_client.get(parts.path, query_string=parts.query))


@pytest.fixture
def store(tmp_path):
    provider = LocalStorageProvider(str(tmp_path / "store"))
    provider.ensure_bucket(BUCKET)
    return provider


@pytest.fixture
def client(store):
    with patch("shared.api.get_store", return_value=store):
        yield app.test_client()


@pytest.fixture
def session(client):
    return GatewaySession(client)


@pytest.fixture
def size_index(tmp_path):
    index = CacheSizeIndex(tmp_path / "cache" / "index.db")
    yield index
    index.close()


@pytest.fixture
def cache(tmp_path, session, size_index):
    return PersistentObjectCache(GATEWAY_URL, tmp_path / "cache", size_index=size_index, session=session)


@pytest.fixture
def response_cache(tmp_path, session, size_index):
    return PersistentObjectCache(
        GATEWAY_URL, tmp_path / "cache",
        size_index=size_index, session=session, backend_mode="responses",
    )
