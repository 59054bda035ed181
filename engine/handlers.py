"""Download handler contract and the direct HTTP fetch handler.

Handlers return :class:`HandlerSuccess` or :class:`HandlerFailure` rather than
raising, so the worker can decide on fallback without exception plumbing.
"""

from __future__ import annotations

import enum
import hashlib
import logging
import os
import re
import time
from dataclasses import dataclass
from urllib.parse import unquote, urlparse

import requests

from config.settings import DIRECT_FETCH_TIMEOUT_SECONDS
from media.mime import extension_from_mime, guess_mime
from media.validation import DEFAULT_ACCEPTED_PREFIXES, validate_media_file

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = ("http", "https")
_CONTENT_DISPOSITION_RE = re.compile(r'filename="(.+?)"', re.IGNORECASE)


class FailureKind(str, enum.Enum):
    VALIDATION = "validation"
    TRANSIENT = "transient"
    PROVIDER = "provider"
    RESOURCE = "resource"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class HandlerSuccess:
    file_path: str
    display_name: str
    mime_type: str

    ok = True


@dataclass(frozen=True)
class HandlerFailure:
    message: str
    kind: FailureKind = FailureKind.TRANSIENT

    ok = False


def url_error(url) -> str | None:
    """Return a validation message for ``url`` or ``None`` when it is acceptable."""
    if not isinstance(url, str) or not url.strip():
        return "URL is required"
    try:
        parsed = urlparse(url.strip())
        hostname = parsed.hostname
    except ValueError as exc:
        return f"Malformed URL: {exc}"
    if parsed.scheme.lower() not in ALLOWED_SCHEMES:
        return f"Unsupported URL scheme: {parsed.scheme or 'none'}"
    if not parsed.netloc or not hostname:
        return "URL is missing a host"
    return None


def is_valid_url(url) -> bool:
    return url_error(url) is None


class DownloadHandler:
    """Base class. Subclasses set ``name`` and implement :meth:`download`."""

    name = "handler"

    @property
    def max_timeout(self) -> float:
        raise NotImplementedError

    def download(self, url, item_id, on_progress=None, *, workdir, timeout=None, cancel_check=None):
        raise NotImplementedError

    def __repr__(self):
        return f"<{type(self).__name__} name={self.name}>"


def _filename_from_url(url):
    path = urlparse(url).path or ""
    return os.path.basename(unquote(path)).strip()


def _filename_from_disposition(header):
    if not header:
        return None
    match = _CONTENT_DISPOSITION_RE.search(header)
    if not match:
        return None
    return os.path.basename(match.group(1).strip()) or None


def resolve_direct_filename(url, headers) -> str:
    headers = headers or {}
    name = _filename_from_url(url)
    if name:
        return name
    name = _filename_from_disposition(headers.get("Content-Disposition"))
    if name:
        return name
    ext = extension_from_mime(headers.get("Content-Type")) or "bin"
    return f"{hashlib.md5(url.encode('utf-8')).hexdigest()}.{ext}"


class DirectDownloadHandler(DownloadHandler):
    name = "direct"

    def __init__(
        self,
        *,
        session=None,
        timeout=DIRECT_FETCH_TIMEOUT_SECONDS,
        accepted_prefixes=DEFAULT_ACCEPTED_PREFIXES,
        chunk_size=256 * 1024,
        clock=time.monotonic,
    ):
        # Without an injected session every fetch goes through requests.get.
        self.session = session
        self.timeout = float(timeout)
        self.accepted_prefixes = tuple(accepted_prefixes)
        self.chunk_size = chunk_size
        self._clock = clock

    @property
    def max_timeout(self) -> float:
        return self.timeout

    def download(self, url, item_id, on_progress=None, *, workdir, timeout=None, cancel_check=None):
        error = url_error(url)
        if error:
            return HandlerFailure(error, FailureKind.VALIDATION)

        budget = self.timeout if timeout is None else min(self.timeout, float(timeout))
        if budget <= 0:
            return HandlerFailure("Download timed out before it started", FailureKind.RESOURCE)
        deadline = self._clock() + budget

        try:
            getter = self.session.get if self.session is not None else requests.get
            response = getter(url, stream=True, timeout=budget)
        except requests.RequestException as exc:
            logger.warning("Direct download request failed item=%s url=%s error=%s", item_id, url, exc)
            return HandlerFailure(f"Error downloading file: {exc}", FailureKind.TRANSIENT)

        try:
            status = response.status_code
            if not 200 <= status < 300:
                return HandlerFailure(f"Error downloading file. Status: {status}", FailureKind.TRANSIENT)

            headers = response.headers or {}
            filename = resolve_direct_filename(url, headers)
            target = os.path.join(workdir, filename)
            try:
                total = int(headers.get("Content-Length") or 0)
            except (TypeError, ValueError):
                total = 0

            received = 0
            with open(target, "wb") as handle:
                for chunk in response.iter_content(chunk_size=self.chunk_size):
                    if callable(cancel_check) and cancel_check():
                        return HandlerFailure("Cancelled", FailureKind.CANCELLED)
                    if self._clock() >= deadline:
                        return HandlerFailure(
                            f"Download timed out after {int(budget)}s", FailureKind.RESOURCE
                        )
                    if not chunk:
                        continue
                    handle.write(chunk)
                    received += len(chunk)
                    if total > 0 and callable(on_progress):
                        on_progress(min(100.0, received * 100.0 / total))
        except requests.RequestException as exc:
            logger.warning("Direct download stream failed item=%s url=%s error=%s", item_id, url, exc)
            return HandlerFailure(f"Error downloading file: {exc}", FailureKind.TRANSIENT)
        except OSError as exc:
            logger.error("Direct download write failed item=%s error=%s", item_id, exc)
            return HandlerFailure(f"Error writing downloaded file: {exc}", FailureKind.RESOURCE)
        finally:
            response.close()

        mime_type = guess_mime(filename, headers.get("Content-Type"))
        problem = validate_media_file(target, mime_type, self.accepted_prefixes)
        if problem:
            return HandlerFailure(problem, FailureKind.VALIDATION)
        if callable(on_progress):
            on_progress(100.0)
        display_name = os.path.splitext(filename)[0] or filename
        return HandlerSuccess(file_path=target, display_name=display_name, mime_type=mime_type)
