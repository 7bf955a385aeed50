import io
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import EndpointConnectionError

from shared import config
from shared.api import app, build_upload_key
from shared.models import StoreObject
from storage.s3_provider import S3StorageProvider
from storage.storage_provider import ObjectNotFoundError, StoreError
from conftest import BUCKET

PAYLOAD = bytes(range(250)) * 4


@pytest.fixture
def video(store):
    store.put_object(BUCKET, "ds/video/clip.mp4", PAYLOAD)
    return "ds/video/clip.mp4"


@pytest.fixture
def mock_store():
    store = MagicMock()
    with patch("shared.api.get_store", return_value=store):
        yield store


def test_health(client):
    assert client.get("/api/health").get_json() == {"status": "ok"}


def test_get_streams_whole_object(client, video):
    resp = client.get(f"/api/storage/object?b={BUCKET}&k={video}")
    assert resp.status_code == 200
    assert resp.data == PAYLOAD
    assert resp.headers["Accept-Ranges"] == "bytes"
    assert resp.headers["Content-Length"] == "1000"
    assert resp.headers["Content-Type"] == "video/mp4"
    assert resp.headers["ETag"]
    assert resp.headers["Last-Modified"].endswith("GMT")
    assert "Content-Range" not in resp.headers


def test_get_accepts_long_parameter_names(client, video):
    resp = client.get(f"/api/storage/object?bucket={BUCKET}&key={video}")
    assert resp.status_code == 200
    assert resp.data == PAYLOAD


def test_get_range_returns_partial_content(client, video):
    resp = client.get(
        f"/api/storage/object?b={BUCKET}&k={video}",
        headers={"Range": "bytes=0-99"},
    )
    assert resp.status_code == 206
    assert resp.headers["Content-Range"] == "bytes 0-99/1000"
    assert resp.headers["Content-Length"] == "100"
    assert resp.headers["Accept-Ranges"] == "bytes"
    assert resp.data == PAYLOAD[:100]


def test_get_open_ended_range(client, video):
    resp = client.get(
        f"/api/storage/object?b={BUCKET}&k={video}",
        headers={"Range": "bytes=900-"},
    )
    assert resp.status_code == 206
    assert resp.headers["Content-Range"] == "bytes 900-999/1000"
    assert resp.data == PAYLOAD[900:]


def test_get_forwards_range_header_to_store(mock_store):
    mock_store.get_object.return_value = StoreObject(
        content_type="video/mp2t", content_length=10,
        content_range="bytes 10-19/100", body=iter([b"0123456789"]),
    )
    resp = app.test_client().get("/api/storage/object?b=media&k=a/seg.ts", headers={"Range": "bytes=10-19"})
    mock_store.get_object.assert_called_once_with("media", "a/seg.ts", "bytes=10-19")
    assert resp.status_code == 206
    assert resp.headers["Content-Type"] == "video/mp2t"
    assert resp.data == b"0123456789"


def test_get_streams_chunks_lazily(mock_store):
    consumed = []

    def body():
        for chunk in (b"aa", b"bb", b"cc"):
            consumed.append(chunk)
            yield chunk

    mock_store.get_object.return_value = StoreObject(content_type="video/mp4", content_length=6, body=body())
    resp = app.test_client().get("/api/storage/object?b=media&k=clip.mp4", buffered=False)
    assert len(consumed) < 3
    assert resp.get_data() == b"aabbcc"
    assert consumed == [b"aa", b"bb", b"cc"]


@pytest.mark.parametrize("query", ["", "?b=media", "?k=clip.mp4", "?bucket=media&k=", "?b=&key=clip.mp4"])
def test_get_missing_params_is_400_without_store_call(mock_store, query):
    resp = app.test_client().get(f"/api/storage/object{query}")
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "Missing bucket or key"}
    mock_store.get_object.assert_not_called()


def test_get_store_error_is_500_with_message(client):
    resp = client.get(f"/api/storage/object?b={BUCKET}&k=missing.mp4")
    assert resp.status_code == 500
    assert "missing.mp4" in resp.get_json()["error"]


def test_get_unsatisfiable_range_is_500(client, video):
    resp = client.get(
        f"/api/storage/object?b={BUCKET}&k={video}",
        headers={"Range": "bytes=5000-"},
    )
    assert resp.status_code == 500
    assert "Range not satisfiable" in resp.get_json()["error"]


def test_head_returns_metadata_without_body(client, video):
    resp = client.head(f"/api/storage/object?b={BUCKET}&k={video}")
    assert resp.status_code == 200
    assert resp.data == b""
    assert resp.headers["Content-Length"] == "1000"
    assert resp.headers["Content-Type"] == "video/mp4"
    assert resp.headers["ETag"]
    assert "Last-Modified" in resp.headers


def test_head_missing_object_is_bare_404(client):
    resp = client.head(f"/api/storage/object?b={BUCKET}&k=nope.mp4")
    assert resp.status_code == 404
    assert resp.data == b""


def test_head_missing_params_is_404(mock_store):
    resp = app.test_client().head("/api/storage/object?b=media")
    assert resp.status_code == 404
    mock_store.head_object.assert_not_called()


def test_head_store_failure_is_404(mock_store):
    mock_store.head_object.side_effect = StoreError("connection refused")
    resp = app.test_client().head("/api/storage/object?b=media&k=a.mp4")
    assert resp.status_code == 404
    assert resp.data == b""


def test_delete_removes_object(client, store, video):
    resp = client.delete(f"/api/storage/object?b={BUCKET}&k={video}")
    assert resp.status_code == 200
    assert resp.get_json() == {"ok": True}
    with pytest.raises(ObjectNotFoundError):
        store.head_object(BUCKET, video)


def test_delete_missing_params_is_400(mock_store):
    resp = app.test_client().delete("/api/storage/object?k=a.mp4")
    assert resp.status_code == 400
    mock_store.delete_object.assert_not_called()


def test_delete_store_error_is_500(mock_store):
    mock_store.delete_object.side_effect = StoreError("AccessDenied")
    resp = app.test_client().delete("/api/storage/object?b=media&k=a.mp4")
    assert resp.status_code == 500
    assert resp.get_json() == {"error": "AccessDenied"}


def test_playlist_is_rewritten(client, store):
    manifest = (
        "#EXTM3U\n"
        "#EXT-X-MAP:URI=\"init.mp4\"\n"
        "#EXTINF:4.0,\n"
        "seg0.m4s\n"
        "https://cdn.example.com/seg1.m4s\n"
    )
    store.put_object(BUCKET, "ds/video/index.m3u8", manifest.encode())

    resp = client.get(f"/api/storage/hls/playlist?b={BUCKET}&k=ds/video/index.m3u8")
    assert resp.status_code == 200
    assert resp.mimetype == "application/vnd.apple.mpegurl"
    assert resp.headers["Cache-Control"] == "private, max-age=30"
    assert resp.get_data(as_text=True).split("\n") == [
        "#EXTM3U",
        '#EXT-X-MAP:URI="/api/storage/object?b=media&k=ds%2Fvideo%2Finit.mp4"',
        "#EXTINF:4.0,",
        "/api/storage/object?b=media&k=ds%2Fvideo%2Fseg0.m4s",
        "https://cdn.example.com/seg1.m4s",
        "",
    ]


def test_playlist_segments_resolve_through_gateway(client, store):
    store.put_object(BUCKET, "hls/index.m3u8", b"#EXTM3U\nseg0.ts\n")
    store.put_object(BUCKET, "hls/seg0.ts", b"TSDATA")

    playlist = client.get(f"/api/storage/hls/playlist?b={BUCKET}&k=hls/index.m3u8").get_data(as_text=True)
    segment_url = playlist.split("\n")[1]
    resp = client.get(segment_url)
    assert resp.status_code == 200
    assert resp.data == b"TSDATA"


def test_playlist_missing_params_is_500(mock_store):
    resp = app.test_client().get("/api/storage/hls/playlist?b=media")
    assert resp.status_code == 500
    assert resp.get_json() == {"error": "Missing bucket or key"}
    mock_store.read_text.assert_not_called()


def test_playlist_store_error_is_500(client):
    resp = client.get(f"/api/storage/hls/playlist?b={BUCKET}&k=none.m3u8")
    assert resp.status_code == 500
    assert "error" in resp.get_json()


def test_cors_exposes_range_headers(client, video):
    resp = client.get(
        f"/api/storage/object?b={BUCKET}&k={video}",
        headers={"Origin": "http://player.example.com", "Range": "bytes=0-9"},
    )
    assert resp.headers["Access-Control-Allow-Origin"] == "*"
    exposed = resp.headers["Access-Control-Expose-Headers"]
    assert "Content-Range" in exposed
    assert "Accept-Ranges" in exposed


def test_build_upload_key_sanitises():
    assert build_upload_key("/ds", "clip.mp4") == "ds/clip.mp4"
    assert build_upload_key("ds", "..\\..\\etc/passwd") == "ds/././etc/passwd"
    assert build_upload_key("ds", "thumb.jpg", is_thumb=True) == "ds/.thumbs/thumb.jpg"


def test_upload_stores_object(client, store, monkeypatch):
    monkeypatch.setattr(config, "DEFAULT_UPLOAD_BUCKET", "uploads")
    resp = client.post("/api/storage/upload", data={
        "file": (io.BytesIO(b"hello"), "clip.mp4"),
        "dataset": "ds1",
        "filename": "clip.mp4",
        "contentType": "video/mp4",
    })
    assert resp.status_code == 200
    assert resp.get_json() == {"bucket": "uploads", "key": "ds1/clip.mp4"}
    assert store.get_object("uploads", "ds1/clip.mp4").read() == b"hello"


def test_upload_large_file_uses_managed_transfer(mock_store, monkeypatch):
    monkeypatch.setattr(config, "MULTIPART_THRESHOLD_BYTES", 3)
    resp = app.test_client().post("/api/storage/upload", data={
        "file": (io.BytesIO(b"hello"), "clip.mp4"),
        "dataset": "ds1",
        "filename": "clip.mp4",
        "isThumb": "true",
    })
    assert resp.status_code == 200
    assert resp.get_json()["key"] == "ds1/.thumbs/clip.mp4"
    mock_store.upload_fileobj.assert_called_once()
    mock_store.put_object.assert_not_called()


def test_upload_ignores_bucket_creation_errors(mock_store):
    mock_store.ensure_bucket.side_effect = StoreError("denied")
    resp = app.test_client().post("/api/storage/upload", data={
        "file": (io.BytesIO(b"x"), "a.csv"),
        "dataset": "ds",
        "filename": "a.csv",
    })
    assert resp.status_code == 200
    mock_store.put_object.assert_called_once()


def test_upload_requires_file(client):
    resp = client.post("/api/storage/upload", data={"dataset": "ds", "filename": "a.csv"})
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "Missing file"}


def test_upload_requires_dataset_and_filename(client):
    resp = client.post("/api/storage/upload", data={
        "file": (io.BytesIO(b"x"), "a.csv"),
        "dataset": "  ",
        "filename": "a.csv",
    })
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "Missing dataset or filename"}


def test_upload_store_error_is_500(mock_store):
    mock_store.put_object.side_effect = StoreError("disk full")
    resp = app.test_client().post("/api/storage/upload", data={
        "file": (io.BytesIO(b"x"), "a.csv"),
        "dataset": "ds",
        "filename": "a.csv",
    })
    assert resp.status_code == 500
    assert resp.get_json() == {"error": "disk full", "code": "StoreError"}


def test_upload_survives_unreachable_store_on_bucket_check():
    s3 = MagicMock()
    s3.head_bucket.side_effect = EndpointConnectionError(endpoint_url="http://minio:9000")
    with patch("shared.api.get_store", return_value=S3StorageProvider(client=s3)):
        resp = app.test_client().post("/api/storage/upload", data={
            "file": (io.BytesIO(b"x"), "a.csv"),
            "dataset": "ds",
            "filename": "a.csv",
        })
    assert resp.status_code == 200
    s3.put_object.assert_called_once()
