"""
HLS playlist rewriting.

Turns the relative references of a manifest stored next to its segments into
gateway URLs, so a player can fetch every segment, init section and key
through the object route without touching the store directly.

Only two directives carry URIs that get rewritten (EXT-X-MAP and EXT-X-KEY).
Bare segment lines are replaced wholesale; everything else passes through
verbatim. Relative paths are joined by plain concatenation, so `..` and `.`
segments reach the store unchanged.
"""

import logging
import re
from typing import Iterable, Optional
from urllib.parse import quote

from shared.constants import OBJECT_ROUTE, URI_DIRECTIVES

logger = logging.getLogger(__name__)

ABSOLUTE_URL_RE = re.compile(r"^([a-z][a-z0-9+.\-]*:)?//", re.IGNORECASE)
NEWLINE_RE = re.compile(r"\r\n|\r|\n")

# Characters encodeURIComponent leaves alone besides alphanumerics and "_.-~"
COMPONENT_SAFE = "!*'()"


def is_absolute_url(value: str) -> bool:
    """True for `scheme://...` and protocol-relative `//...` references."""
    return bool(ABSOLUTE_URL_RE.match(value))


def base_dir(key: str) -> str:
    """Directory prefix of a key including the trailing slash, or ''."""
    idx = key.rfind("/")
    if idx <= 0:
        return ""
    return key[:idx + 1]


def encode_component(value: str) -> str:
    """Percent-encode a value as a single URL component (slashes included)."""
    return quote(value, safe=COMPONENT_SAFE)


def _directive_pattern(tag: str) -> re.Pattern:
    return re.compile(rf"^(#{re.escape(tag)}:[^\r\n]*?URI=)(\"([^\"]+)\"|'([^']+)')")


class PlaylistRewriter:
    """
    Rewrites manifest references to point at the object route.

    Args:
        object_route: Path (or absolute URL) of the gateway object endpoint
        directives: Tags whose URI attribute should be rewritten
    """

    def __init__(self, object_route: str = OBJECT_ROUTE,
                 directives: Iterable[str] = URI_DIRECTIVES):
        self.object_route = object_route
        self._patterns = {f"#{tag}:": _directive_pattern(tag) for tag in directives}

    def proxy_base(self, bucket: str) -> str:
        return f"{self.object_route}?b={encode_component(bucket)}&k="

    def rewrite(self, text: str, bucket: str, key: str) -> str:
        """
        Rewrite a whole manifest.

        Args:
            text: Manifest body
            bucket: Bucket holding the manifest and its segments
            key: Manifest key, used to resolve relative references

        Returns:
            Rewritten manifest, lines joined with '\\n'
        """
        prefix = self.proxy_base(bucket)
        directory = base_dir(key)
        lines = NEWLINE_RE.split(text)
        return "\n".join(self.rewrite_line(line, directory, prefix) for line in lines)

    def rewrite_line(self, line: str, directory: str, prefix: str) -> str:
        trimmed = line.strip()
        if not trimmed:
            return line

        for tag, pattern in self._patterns.items():
            if trimmed.startswith(tag):
                return self._rewrite_directive(line, pattern, directory, prefix)

        if trimmed.startswith("#"):
            return line
        if is_absolute_url(trimmed):
            return line
        return prefix + encode_component(directory + trimmed)

    @staticmethod
    def _rewrite_directive(line: str, pattern: re.Pattern,
                           directory: str, prefix: str) -> str:
        match = pattern.match(line)
        if not match:
            return line
        value = match.group(3) or match.group(4) or ""
        if not value or is_absolute_url(value):
            return line
        uri = prefix + encode_component(directory + value)
        return f'{line[:match.start(2)]}"{uri}"{line[match.end(2):]}'


def fetch_and_rewrite(store, bucket: str, key: str,
                      rewriter: Optional[PlaylistRewriter] = None) -> str:
    """
    Read a manifest straight from the store and rewrite it.

    Raises:
        StoreError: If the manifest cannot be read
    """
    rewriter = rewriter or PlaylistRewriter()
    text = store.read_text(bucket, key)
    rewritten = rewriter.rewrite(text, bucket, key)
    logger.info("Rewrote playlist %s/%s (%d lines)", bucket, key, rewritten.count("\n") + 1)
    return rewritten
