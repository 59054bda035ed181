from __future__ import annotations

import pytest

from media.mime import GENERIC_MIME, extension_from_mime, guess_mime, is_video_file
from media.validation import is_media_mime, validate_media_file


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("clip.mp4", "video/mp4"),
        ("CLIP.MOV", "video/quicktime"),
        ("clip.ogv", "video/ogg"),
        ("clip.webm", "video/webm"),
        ("photo.jpg", "image/jpeg"),
    ],
)
def test_guess_mime_prefers_extension(name, expected) -> None:
    assert guess_mime(name, "application/octet-stream") == expected


def test_guess_mime_falls_back_to_content_type() -> None:
    assert guess_mime("stream", "video/mp4; codecs=avc1") == "video/mp4"
    assert guess_mime("stream") == GENERIC_MIME


def test_extension_from_mime() -> None:
    assert extension_from_mime("video/mp4") == "mp4"
    assert extension_from_mime("Video/QuickTime") == "mov"
    assert extension_from_mime("application/x-unknown") is None
    assert extension_from_mime(None) is None


def test_video_extensions() -> None:
    assert is_video_file("a.3gp")
    assert is_video_file("b.MPEG")
    assert not is_video_file("c.mp3")
    assert not is_video_file("noext")


def test_is_media_mime() -> None:
    assert is_media_mime("video/mp4")
    assert is_media_mime("VIDEO/WEBM; codecs=vp9")
    assert not is_media_mime("text/html")
    assert not is_media_mime("")
    assert is_media_mime("audio/mpeg", ("video/", "audio/"))


def test_validate_media_file(tmp_path) -> None:
    empty = tmp_path / "empty.mp4"
    empty.write_bytes(b"")
    real = tmp_path / "real.mp4"
    real.write_bytes(b"x")

    assert validate_media_file(str(tmp_path / "missing.mp4"), "video/mp4") == "Downloaded file is missing"
    assert validate_media_file(str(empty), "video/mp4") == "Downloaded file is empty"
    assert validate_media_file(str(real), "video/mp4") is None
    assert validate_media_file(str(real), "text/plain") == "Downloaded file is not a video file (MIME: text/plain)"
