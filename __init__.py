"""
objectcast

An HTTP gateway in front of an S3-compatible object store (MinIO, AWS S3) or
a local directory. It streams objects with byte-range support and rewrites
HLS playlists so every segment is fetched back through the gateway. A client
side cache keeps downloaded objects on local disk for offline playback.

Repository Structure:
- shared/: Gateway app, playlist rewriting, models, constants and config
- storage/: Backing object store providers
- client/: Persistent local object cache and its CLI
- tests/: Unit and integration tests

License: MIT
"""
