"""Extractor-backed handler driving the yt-dlp CLI."""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import sys
import time

from config.settings import (
    DEFAULT_FORMAT_SELECTOR,
    YTDLP_DOWNLOAD_TIMEOUT_SECONDS,
    YTDLP_METADATA_TIMEOUT_SECONDS,
)
from engine.handlers import DownloadHandler, FailureKind, HandlerFailure, HandlerSuccess, url_error
from engine.process import ProcessRunner
from media.mime import mime_from_extension
from media.validation import DEFAULT_ACCEPTED_PREFIXES, is_media_mime

logger = logging.getLogger(__name__)

_PROGRESS_RE = re.compile(r"\[download\]\s+(\d+(?:\.\d+)?)%")
_PARTIAL_SUFFIXES = (".part", ".ytdl", ".temp")

COOKIES_EXPIRED_MESSAGE = (
    "YouTube cookies have expired. Please upload fresh cookies in "
    "Settings → YouTube Authentication."
)
AGE_RESTRICTED_MESSAGE = (
    "This video is age-restricted. Please upload valid YouTube cookies in "
    "Settings → YouTube Authentication."
)
_COOKIE_MARKERS = ("cookies are no longer valid", "rotated")
_AGE_MARKERS = ("sign in to confirm your age", "age-restricted", "age restricted")


def ytdlp_executable():
    path = shutil.which("yt-dlp")
    if path:
        return [path]
    return [sys.executable, "-m", "yt_dlp"]


def parse_progress_line(line):
    match = _PROGRESS_RE.search(line or "")
    if not match:
        return None
    try:
        return max(0.0, min(100.0, float(match.group(1))))
    except ValueError:
        return None


def classify_ytdlp_error(stderr):
    """Map yt-dlp stderr to a (message, kind) pair with operator guidance."""
    text = (stderr or "").strip()
    lowered = text.lower()
    if any(marker in lowered for marker in _COOKIE_MARKERS):
        return COOKIES_EXPIRED_MESSAGE, FailureKind.PROVIDER
    if any(marker in lowered for marker in _AGE_MARKERS):
        return AGE_RESTRICTED_MESSAGE, FailureKind.PROVIDER
    return f"yt-dlp error: {text or 'URL not supported'}", FailureKind.TRANSIENT


class YtDlpHandler(DownloadHandler):
    name = "ytdlp"

    def __init__(
        self,
        *,
        runner=None,
        executable=None,
        format_selector=DEFAULT_FORMAT_SELECTOR,
        merge_output_format="mp4",
        embed_subs=False,
        auto_subs=False,
        sub_lang="en",
        cookies_file=None,
        cookies_from_browser=None,
        metadata_timeout=YTDLP_METADATA_TIMEOUT_SECONDS,
        download_timeout=YTDLP_DOWNLOAD_TIMEOUT_SECONDS,
        accepted_prefixes=DEFAULT_ACCEPTED_PREFIXES,
    ):
        self.runner = runner or ProcessRunner()
        self.executable = list(executable) if executable else ytdlp_executable()
        self.format_selector = format_selector
        self.merge_output_format = merge_output_format
        self.embed_subs = embed_subs
        self.auto_subs = auto_subs
        self.sub_lang = sub_lang
        self.cookies_file = cookies_file
        self.cookies_from_browser = cookies_from_browser
        self.metadata_timeout = float(metadata_timeout)
        self.download_timeout = float(download_timeout)
        self.accepted_prefixes = tuple(accepted_prefixes)

    @classmethod
    def from_settings(cls, settings, **kwargs):
        opts = settings.ytdlp
        return cls(
            format_selector=opts.format_selector,
            merge_output_format=opts.merge_output_format,
            embed_subs=opts.embed_subs,
            auto_subs=opts.auto_subs,
            sub_lang=opts.sub_lang,
            cookies_file=opts.cookies_file,
            cookies_from_browser=opts.cookies_from_browser,
            metadata_timeout=settings.metadata_timeout,
            download_timeout=settings.download_timeout,
            accepted_prefixes=settings.accepted_mime_prefixes,
            **kwargs,
        )

    @property
    def max_timeout(self) -> float:
        return self.metadata_timeout + self.download_timeout

    def cookie_args(self):
        if self.cookies_from_browser:
            return ["--cookies-from-browser", self.cookies_from_browser]
        if self.cookies_file:
            if os.path.isfile(self.cookies_file):
                return ["--cookies", self.cookies_file]
            logger.warning("Configured cookies file not found: %s", self.cookies_file)
        return []

    def metadata_command(self, url):
        return [*self.executable, "--no-playlist", "--no-warnings", "--dump-json", *self.cookie_args(), url]

    def download_command(self, url, workdir):
        cmd = [
            *self.executable,
            "--no-playlist",
            "--no-warnings",
            "--newline",
            "--merge-output-format",
            self.merge_output_format,
            "-f",
            self.format_selector,
            "-o",
            os.path.join(workdir, "%(title)s.%(ext)s"),
            *self.cookie_args(),
        ]
        if self.embed_subs:
            cmd.append("--embed-subs")
        if self.auto_subs:
            cmd.extend(["--write-auto-sub", "--sub-lang", self.sub_lang])
        cmd.append(url)
        return cmd

    def _stopped(self, result, what):
        if result.cancelled:
            return HandlerFailure("Cancelled", FailureKind.CANCELLED)
        return HandlerFailure(f"yt-dlp {what} timed out", FailureKind.RESOURCE)

    def fetch_title(self, url, *, timeout, cancel_check=None):
        result = self.runner.run(
            self.metadata_command(url),
            timeout=min(self.metadata_timeout, timeout),
            cancel_check=cancel_check,
        )
        if result.timed_out or result.cancelled:
            return self._stopped(result, "metadata")
        if result.returncode != 0:
            message, kind = classify_ytdlp_error(result.stderr)
            return HandlerFailure(message, kind)
        try:
            info = json.loads(result.stdout.strip().splitlines()[0])
        except (IndexError, ValueError):
            return HandlerFailure("Error parsing video metadata", FailureKind.TRANSIENT)
        title = (info.get("fulltitle") or info.get("title")) if isinstance(info, dict) else None
        if not title:
            return HandlerFailure("Error parsing video metadata", FailureKind.TRANSIENT)
        return title

    def download(self, url, item_id, on_progress=None, *, workdir, timeout=None, cancel_check=None):
        error = url_error(url)
        if error:
            return HandlerFailure(error, FailureKind.VALIDATION)
        budget = self.max_timeout if timeout is None else min(self.max_timeout, float(timeout))
        started = time.monotonic()

        try:
            title = self.fetch_title(url, timeout=budget, cancel_check=cancel_check)
            if isinstance(title, HandlerFailure):
                return title

            def _on_line(line):
                percent = parse_progress_line(line)
                if percent is not None and callable(on_progress):
                    on_progress(percent)

            # Whatever metadata did not use remains for the transfer.
            remaining = budget - (time.monotonic() - started)
            if remaining <= 0:
                return HandlerFailure("yt-dlp download timed out", FailureKind.RESOURCE)
            result = self.runner.run(
                self.download_command(url, workdir),
                timeout=min(self.download_timeout, remaining),
                on_output_line=_on_line,
                cancel_check=cancel_check,
            )
        except OSError as exc:
            logger.error("Unable to run yt-dlp item=%s error=%s", item_id, exc)
            return HandlerFailure(f"yt-dlp is not available: {exc}", FailureKind.RESOURCE)

        if result.timed_out or result.cancelled:
            return self._stopped(result, "download")
        if result.returncode != 0:
            message, kind = classify_ytdlp_error(result.stderr)
            logger.warning("yt-dlp failed item=%s rc=%s message=%s", item_id, result.returncode, message)
            return HandlerFailure(message, kind)

        return self._pick_output(workdir, title)

    def _pick_output(self, workdir, title):
        names = sorted(
            name
            for name in os.listdir(workdir)
            if os.path.isfile(os.path.join(workdir, name)) and not name.endswith(_PARTIAL_SUFFIXES)
        )
        if not names:
            return HandlerFailure("No files were downloaded", FailureKind.TRANSIENT)
        for name in names:
            mime_type = mime_from_extension(name)
            if is_media_mime(mime_type, self.accepted_prefixes):
                return HandlerSuccess(
                    file_path=os.path.join(workdir, name),
                    display_name=title,
                    mime_type=mime_type,
                )
        return HandlerFailure(
            f"yt-dlp did not download a video file. Found: {', '.join(names)}",
            FailureKind.VALIDATION,
        )
