"""
Object gateway API server.
Gives browsers and other clients credential-free, range-aware access to the
backing object store, plus HLS manifests rewritten to point back at it.
"""

import logging
import re
import threading
from typing import Optional, Tuple

from flask import Flask, Response, jsonify, request, stream_with_context
from flask_cors import CORS

from shared import config
from shared.constants import (
    BUCKET_PARAMS,
    DEFAULT_CONTENT_TYPE,
    HEALTH_ROUTE,
    HLS_CONTENT_TYPE,
    KEY_PARAMS,
    OBJECT_ROUTE,
    PLAYLIST_CACHE_CONTROL,
    PLAYLIST_ROUTE,
    THUMBS_DIR,
    UPLOAD_ROUTE,
)
from shared.playlist import PlaylistRewriter, fetch_and_rewrite
from storage.provider_factory import StorageProviderFactory
from storage.storage_provider import ObjectStore, StoreError

logger = logging.getLogger(__name__)

app = Flask(__name__)
# Players read ranges cross-origin, so the range headers must be visible to them
CORS(
    app,
    allow_headers=["Range", "Content-Type"],
    expose_headers=["Content-Range", "Content-Length", "Accept-Ranges", "ETag", "Last-Modified"],
)

playlist_rewriter = PlaylistRewriter(OBJECT_ROUTE)

_store: Optional[ObjectStore] = None
_store_lock = threading.Lock()


class ParameterError(ValueError):
    """Request is missing its bucket or key."""
    pass


def get_store() -> ObjectStore:
    """Lazily build the configured backing store."""
    global _store
    with _store_lock:
        if _store is None:
            _store = StorageProviderFactory.from_config()
            logger.info("Backing store ready (%s)", config.STORAGE_PROVIDER)
    return _store


def _first_arg(names) -> Optional[str]:
    for name in names:
        value = request.args.get(name)
        if value:
            return value
    return None


def get_object_params() -> Tuple[str, str]:
    """Read bucket and key from the query string (either spelling)."""
    bucket = _first_arg(BUCKET_PARAMS)
    key = _first_arg(KEY_PARAMS)
    if not bucket or not key:
        raise ParameterError("Missing bucket or key")
    return bucket, key


def sanitize_upload_path(value: str, is_filename: bool = False) -> str:
    """Strip leading slashes and collapse dot runs so keys stay inside the dataset."""
    value = re.sub(r"^/+", "", value)
    if is_filename:
        value = value.replace("\\", "/")
    return re.sub(r"\.\.+", ".", value)


def build_upload_key(dataset: str, filename: str, is_thumb: bool = False) -> str:
    safe_dataset = sanitize_upload_path(dataset)
    safe_filename = sanitize_upload_path(filename, is_filename=True)
    if is_thumb:
        return f"{safe_dataset}/{THUMBS_DIR}/{safe_filename}"
    return f"{safe_dataset}/{safe_filename}"


@app.route(HEALTH_ROUTE)
def health_check():
    return jsonify({"status": "ok"})


# --- Object Endpoints ---

@app.route(OBJECT_ROUTE, methods=['GET', 'HEAD', 'DELETE'])
def object_endpoint():
    if request.method == 'HEAD':
        return head_object()
    if request.method == 'DELETE':
        return delete_object()
    return stream_object()


def stream_object():
    """Stream an object (or the requested byte range of it) from the store."""
    try:
        bucket, key = get_object_params()
    except ParameterError as e:
        return jsonify({"error": str(e)}), 400

    range_header = request.headers.get('Range')
    try:
        obj = get_store().get_object(bucket, key, range_header)
    except Exception as e:
        logger.warning("GET %s/%s failed: %s", bucket, key, e)
        return jsonify({"error": str(e)}), 500

    headers = {"Accept-Ranges": "bytes"}
    headers.update(obj.metadata_headers())
    if obj.content_range:
        headers["Content-Range"] = obj.content_range
    status = 206 if obj.is_partial else 200

    return Response(
        stream_with_context(obj.iter_chunks()),
        status=status,
        headers=headers,
        mimetype=None if obj.content_type else DEFAULT_CONTENT_TYPE,
        direct_passthrough=True,
    )


def head_object():
    """Object metadata only. Every failure, missing parameters included, is a bare 404."""
    try:
        bucket, key = get_object_params()
        obj = get_store().head_object(bucket, key)
    except Exception as e:
        logger.debug("HEAD failed: %s", e)
        return Response(status=404)

    response = Response(status=200, mimetype=None if obj.content_type else DEFAULT_CONTENT_TYPE)
    for name, value in obj.metadata_headers().items():
        response.headers[name] = value
    return response


def delete_object():
    try:
        bucket, key = get_object_params()
    except ParameterError as e:
        return jsonify({"error": str(e)}), 400

    try:
        get_store().delete_object(bucket, key)
    except Exception as e:
        logger.warning("DELETE %s/%s failed: %s", bucket, key, e)
        return jsonify({"error": str(e)}), 500

    logger.info("Deleted %s/%s", bucket, key)
    return jsonify({"ok": True})


# --- HLS ---

@app.route(PLAYLIST_ROUTE, methods=['GET'])
def hls_playlist():
    """Serve a manifest whose segment, key and map references go through the object route."""
    try:
        bucket, key = get_object_params()
        body = fetch_and_rewrite(get_store(), bucket, key, playlist_rewriter)
    except Exception as e:
        logger.warning("Playlist rewrite failed: %s", e)
        return jsonify({"error": str(e)}), 500

    response = Response(body, mimetype=HLS_CONTENT_TYPE)
    response.headers['Cache-Control'] = PLAYLIST_CACHE_CONTROL
    return response


# --- Uploads ---

@app.route(UPLOAD_ROUTE, methods=['POST'])
def upload_object():
    """Multipart upload of one file into the default bucket under <dataset>/<filename>."""
    upload = request.files.get('file')
    dataset = (request.form.get('dataset') or '').strip()
    filename = (request.form.get('filename') or '').strip()
    content_type = request.form.get('contentType') or None
    is_thumb = request.form.get('isThumb') == 'true'

    if upload is None:
        return jsonify({"error": "Missing file"}), 400
    if not dataset or not filename:
        return jsonify({"error": "Missing dataset or filename"}), 400

    bucket = config.DEFAULT_UPLOAD_BUCKET
    key = build_upload_key(dataset, filename, is_thumb)

    try:
        store = get_store()
        try:
            store.ensure_bucket(bucket, config.STORE_REGION)
        except StoreError as e:
            logger.warning("Could not ensure bucket %s: %s", bucket, e)

        stream = upload.stream
        stream.seek(0, 2)
        size = stream.tell()
        stream.seek(0)

        if size > config.MULTIPART_THRESHOLD_BYTES:
            store.upload_fileobj(bucket, key, stream, content_type)
        else:
            store.put_object(bucket, key, stream.read(), content_type)
    except Exception as e:
        logger.warning("Upload of %s/%s failed: %s", bucket, key, e)
        return jsonify({"error": str(e), "code": type(e).__name__}), 500

    logger.info("Uploaded %s/%s (%d bytes)", bucket, key, size)
    return jsonify({"bucket": bucket, "key": key})


# --- Server Management ---

def start_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    host = host or config.GATEWAY_HOST
    port = port or config.GATEWAY_PORT
    logger.info("Object gateway listening on %s:%s", host, port)
    app.run(host=host, port=port, debug=debug, threaded=True, use_reloader=False)


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    start_server()
