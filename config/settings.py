"""Application settings constants and config loading."""

from __future__ import annotations

import copy
import json
import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

# Per-attempt budget for a queued download item.
JOB_TIMEOUT_SECONDS = 300

# Direct fetches share the job budget. Raising one without the other lets the
# worker deadline cut a healthy transfer short.
DIRECT_FETCH_TIMEOUT_SECONDS = JOB_TIMEOUT_SECONDS

YTDLP_METADATA_TIMEOUT_SECONDS = 120
YTDLP_DOWNLOAD_TIMEOUT_SECONDS = 600

# Budget for unpacking one uploaded archive.
UPLOAD_TIMEOUT_SECONDS = 3600

DEFAULT_MAX_RETRIES = 5
DEFAULT_UPLOAD_MAX_RETRIES = 3
RETRY_BATCH_SIZE = 10
RETRY_BASE_DELAY_MINUTES = 5

STALE_SCOPE_GRACE_SECONDS = 300
LEDGER_TTL_SECONDS = 86400

DEFAULT_FORMAT_SELECTOR = (
    "bestvideo[height<=1080]+bestaudio/best[height<=1080]/"
    "bestvideo[height<=720]+bestaudio/best[height<=720]/best"
)

# Hosts served only by the extractor; direct fetch of their pages is useless.
TRUSTED_PLATFORM_MARKERS = ("youtube.com", "youtu.be")

DEFAULT_CONFIG = {
    "ytdlp": {
        "format_selector": DEFAULT_FORMAT_SELECTOR,
        "merge_output_format": "mp4",
        "embed_subs": False,
        "auto_subs": False,
        "sub_lang": "en",
        "cookies_file": None,
        "cookies_from_browser": None,
    },
    "timeouts": {
        "download": YTDLP_DOWNLOAD_TIMEOUT_SECONDS,
        "metadata": YTDLP_METADATA_TIMEOUT_SECONDS,
        "job": JOB_TIMEOUT_SECONDS,
        "upload": UPLOAD_TIMEOUT_SECONDS,
    },
    "max_retries": DEFAULT_MAX_RETRIES,
    "upload_max_retries": DEFAULT_UPLOAD_MAX_RETRIES,
    "retry_batch_size": RETRY_BATCH_SIZE,
    "stale_scope_grace_seconds": STALE_SCOPE_GRACE_SECONDS,
    "workers": 2,
    "ledger_ttl_seconds": LEDGER_TTL_SECONDS,
    "accepted_mime_prefixes": ["video/"],
    "public_url_prefix": "/storage",
}


@dataclass(frozen=True)
class YtDlpSettings:
    format_selector: str = DEFAULT_FORMAT_SELECTOR
    merge_output_format: str = "mp4"
    embed_subs: bool = False
    auto_subs: bool = False
    sub_lang: str = "en"
    cookies_file: str | None = None
    cookies_from_browser: str | None = None


@dataclass(frozen=True)
class IngestSettings:
    ytdlp: YtDlpSettings = field(default_factory=YtDlpSettings)
    download_timeout: float = YTDLP_DOWNLOAD_TIMEOUT_SECONDS
    metadata_timeout: float = YTDLP_METADATA_TIMEOUT_SECONDS
    job_timeout: float = JOB_TIMEOUT_SECONDS
    upload_timeout: float = UPLOAD_TIMEOUT_SECONDS
    max_retries: int = DEFAULT_MAX_RETRIES
    upload_max_retries: int = DEFAULT_UPLOAD_MAX_RETRIES
    retry_batch_size: int = RETRY_BATCH_SIZE
    stale_scope_grace_seconds: float = STALE_SCOPE_GRACE_SECONDS
    workers: int = 2
    ledger_ttl_seconds: float = LEDGER_TTL_SECONDS
    accepted_mime_prefixes: tuple[str, ...] = ("video/",)
    public_url_prefix: str = "/storage"

    @property
    def direct_fetch_timeout(self) -> float:
        return self.job_timeout


def _deep_merge(base, override):
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def settings_from_config(config: dict | None) -> IngestSettings:
    """Build :class:`IngestSettings` from a (possibly partial) config dict."""
    merged = _deep_merge(DEFAULT_CONFIG, config or {})
    ytdlp = merged.get("ytdlp") or {}
    timeouts = merged.get("timeouts") or {}
    workers = merged.get("workers")
    workers = 2 if workers is None else int(workers)
    if workers < 1:
        raise ValueError("workers must be >= 1")
    return IngestSettings(
        ytdlp=YtDlpSettings(
            format_selector=ytdlp.get("format_selector") or DEFAULT_FORMAT_SELECTOR,
            merge_output_format=ytdlp.get("merge_output_format") or "mp4",
            embed_subs=bool(ytdlp.get("embed_subs")),
            auto_subs=bool(ytdlp.get("auto_subs")),
            sub_lang=ytdlp.get("sub_lang") or "en",
            cookies_file=ytdlp.get("cookies_file") or None,
            cookies_from_browser=ytdlp.get("cookies_from_browser") or None,
        ),
        download_timeout=float(timeouts["download"]),
        metadata_timeout=float(timeouts["metadata"]),
        job_timeout=float(timeouts["job"]),
        upload_timeout=float(timeouts["upload"]),
        max_retries=int(merged["max_retries"]),
        upload_max_retries=int(merged["upload_max_retries"]),
        retry_batch_size=int(merged["retry_batch_size"]),
        stale_scope_grace_seconds=float(merged["stale_scope_grace_seconds"]),
        workers=workers,
        ledger_ttl_seconds=float(merged["ledger_ttl_seconds"]),
        accepted_mime_prefixes=tuple(merged.get("accepted_mime_prefixes") or ("video/",)),
        public_url_prefix=merged.get("public_url_prefix") or "/storage",
    )


def load_settings(path: str | None = None) -> IngestSettings:
    """Load settings from ``config.json`` under the config dir.

    A missing file yields defaults. A file that is not valid JSON raises
    ``ValueError`` rather than silently running with defaults.
    """
    from engine.paths import resolve_config_path

    config_path = resolve_config_path(path)
    if not os.path.exists(config_path):
        logger.info("No config file at %s; using defaults", config_path)
        return settings_from_config(None)
    with open(config_path, "r", encoding="utf-8") as handle:
        try:
            data = json.load(handle)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid config file {config_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"Config file {config_path} must contain a JSON object")
    return settings_from_config(data)
