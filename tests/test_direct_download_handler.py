from __future__ import annotations

import hashlib
import os

import requests

from engine.handlers import (
    DirectDownloadHandler,
    FailureKind,
    HandlerSuccess,
    is_valid_url,
    resolve_direct_filename,
)


class _FakeResponse:
    def __init__(self, status_code=200, headers=None, chunks=(b"0123456789",)):
        self.status_code = status_code
        self.headers = headers or {}
        self.chunks = chunks
        self.closed = False

    def iter_content(self, chunk_size=None):
        for chunk in self.chunks:
            yield chunk

    def close(self):
        self.closed = True


class _FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def get(self, url, stream=False, timeout=None):
        self.calls.append({"url": url, "stream": stream, "timeout": timeout})
        if self.error:
            raise self.error
        return self.response


def test_streams_video_and_reports_progress(tmp_path) -> None:
    response = _FakeResponse(
        headers={"Content-Type": "video/mp4", "Content-Length": "20"},
        chunks=(b"a" * 10, b"b" * 10),
    )
    session = _FakeSession(response)
    progress = []

    result = DirectDownloadHandler(session=session, timeout=300).download(
        "https://cdn.example.com/media/My%20Clip.mp4", "item1", progress.append, workdir=str(tmp_path)
    )

    assert isinstance(result, HandlerSuccess)
    assert os.path.basename(result.file_path) == "My Clip.mp4"
    assert result.display_name == "My Clip"
    assert result.mime_type == "video/mp4"
    assert progress == [50.0, 100.0, 100.0]
    assert session.calls[0]["stream"] is True
    assert session.calls[0]["timeout"] == 300
    assert response.closed


def test_timeout_is_capped_by_caller_budget(tmp_path) -> None:
    session = _FakeSession(_FakeResponse(headers={"Content-Type": "video/mp4"}))

    DirectDownloadHandler(session=session, timeout=300).download(
        "https://cdn.example.com/a.mp4", "item1", workdir=str(tmp_path), timeout=42
    )

    assert session.calls[0]["timeout"] == 42


def test_non_2xx_status_fails(tmp_path) -> None:
    session = _FakeSession(_FakeResponse(status_code=404))

    result = DirectDownloadHandler(session=session).download(
        "https://cdn.example.com/a.mp4", "item1", workdir=str(tmp_path)
    )

    assert result.message == "Error downloading file. Status: 404"
    assert result.kind == FailureKind.TRANSIENT


def test_network_error_is_transient(tmp_path) -> None:
    session = _FakeSession(error=requests.ConnectionError("refused"))

    result = DirectDownloadHandler(session=session).download(
        "https://cdn.example.com/a.mp4", "item1", workdir=str(tmp_path)
    )

    assert result.kind == FailureKind.TRANSIENT
    assert "refused" in result.message


def test_html_page_is_rejected_as_non_media(tmp_path) -> None:
    session = _FakeSession(_FakeResponse(headers={"Content-Type": "text/html; charset=utf-8"}, chunks=(b"<html>",)))

    result = DirectDownloadHandler(session=session).download(
        "https://example.com/page", "item1", workdir=str(tmp_path)
    )

    assert result.kind == FailureKind.VALIDATION
    assert result.message == "Downloaded file is not a video file (MIME: text/html)"


def test_content_type_used_when_extension_unknown(tmp_path) -> None:
    session = _FakeSession(_FakeResponse(headers={"Content-Type": "video/webm"}))

    result = DirectDownloadHandler(session=session).download(
        "https://example.com/stream", "item1", workdir=str(tmp_path)
    )

    assert isinstance(result, HandlerSuccess)
    assert result.mime_type == "video/webm"
    assert result.display_name == "stream"


def test_invalid_scheme_is_validation_failure(tmp_path) -> None:
    session = _FakeSession(_FakeResponse())

    result = DirectDownloadHandler(session=session).download("file:///etc/passwd", "item1", workdir=str(tmp_path))

    assert result.kind == FailureKind.VALIDATION
    assert session.calls == []


def test_cancel_check_stops_streaming(tmp_path) -> None:
    session = _FakeSession(_FakeResponse(headers={"Content-Type": "video/mp4"}))

    result = DirectDownloadHandler(session=session).download(
        "https://cdn.example.com/a.mp4", "item1", workdir=str(tmp_path), cancel_check=lambda: True
    )

    assert result.kind == FailureKind.CANCELLED


def test_deadline_exceeded_mid_stream(tmp_path) -> None:
    ticks = iter([0.0, 0.0, 500.0, 500.0])
    session = _FakeSession(_FakeResponse(headers={"Content-Type": "video/mp4"}, chunks=(b"a", b"b")))
    handler = DirectDownloadHandler(session=session, timeout=300, clock=lambda: next(ticks))

    result = handler.download("https://cdn.example.com/a.mp4", "item1", workdir=str(tmp_path))

    assert result.kind == FailureKind.RESOURCE


def test_resolve_direct_filename_fallbacks() -> None:
    assert resolve_direct_filename("https://x.test/v/clip.mp4", {}) == "clip.mp4"
    assert (
        resolve_direct_filename("https://x.test/", {"Content-Disposition": 'attachment; filename="movie.mkv"'})
        == "movie.mkv"
    )
    url = "https://x.test/"
    expected = hashlib.md5(url.encode("utf-8")).hexdigest() + ".webm"
    assert resolve_direct_filename(url, {"Content-Type": "video/webm"}) == expected


def test_is_valid_url() -> None:
    assert is_valid_url("https://example.com/a.mp4")
    assert is_valid_url("http://example.com")
    assert not is_valid_url("ftp://example.com/a.mp4")
    assert not is_valid_url("not a url")
    assert not is_valid_url("")
    assert not is_valid_url(None)


def test_without_session_each_fetch_uses_requests_get(tmp_path, monkeypatch) -> None:
    calls = []

    def _get(url, stream=False, timeout=None):
        calls.append({"url": url, "stream": stream, "timeout": timeout})
        return _FakeResponse(headers={"Content-Type": "video/mp4"})

    monkeypatch.setattr(requests, "get", _get)
    handler = DirectDownloadHandler(timeout=30)

    first = handler.download("https://cdn.example.com/a.mp4", "item1", workdir=str(tmp_path))
    second = handler.download("https://cdn.example.com/b.mp4", "item2", workdir=str(tmp_path))

    assert isinstance(first, HandlerSuccess) and isinstance(second, HandlerSuccess)
    assert [call["url"] for call in calls] == ["https://cdn.example.com/a.mp4", "https://cdn.example.com/b.mp4"]
    assert all(call["stream"] and call["timeout"] == 30 for call in calls)
    assert handler.session is None


def test_malformed_url_is_a_validation_failure(tmp_path) -> None:
    session = _FakeSession(_FakeResponse())

    result = DirectDownloadHandler(session=session).download("http://[oops/clip.mp4", "item1", workdir=str(tmp_path))

    assert result.kind == FailureKind.VALIDATION
    assert session.calls == []
    assert not is_valid_url("http://[oops/clip.mp4")
