"""Handler ordering and fallback policy for download URLs."""

from __future__ import annotations

from urllib.parse import urlparse

from config.settings import TRUSTED_PLATFORM_MARKERS


def _host(url):
    try:
        return (urlparse(url or "").hostname or "").lower()
    except ValueError:
        return ""


class HandlerResolver:
    """Orders handlers for a URL.

    The extractor handler always goes first. The direct handler is appended
    as a fallback unless the host is a trusted video platform, where a raw
    HTTP fetch would only return an HTML page.
    """

    def __init__(self, extractor, direct, *, trusted_markers=TRUSTED_PLATFORM_MARKERS):
        self.extractor = extractor
        self.direct = direct
        self.trusted_markers = tuple(m.lower() for m in trusted_markers)

    def is_trusted_platform(self, url) -> bool:
        host = _host(url)
        return bool(host) and any(marker in host for marker in self.trusted_markers)

    def allows_fallback(self, url) -> bool:
        return not self.is_trusted_platform(url)

    def resolve(self, url) -> list:
        if self.allows_fallback(url):
            return [self.extractor, self.direct]
        return [self.extractor]

    def primary_method(self, url) -> str:
        return self.extractor.name

    def max_timeout(self, url) -> float:
        return max(handler.max_timeout for handler in self.resolve(url))
