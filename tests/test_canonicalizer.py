from __future__ import annotations

import os

import pytest

from db.media_catalog import SqliteMediaCatalog
from engine.errors import CanonicalizationError
from engine.process import ExitResult
from media.canonicalize import Canonicalizer
from media.storage import LocalMediaStorage
from media.thumbnails import FfmpegThumbnailGenerator


class _Thumbs:
    def __init__(self, result="thumbnails/x_thumb.jpg"):
        self.result = result
        self.calls = []

    def generate(self, canonical_path, mime_type):
        self.calls.append((canonical_path, mime_type))
        return self.result


def _write(path, data=b"video-bytes"):
    path.write_bytes(data)
    return str(path)


def _canonicalizer(tmp_path, thumbs=None):
    storage = LocalMediaStorage(str(tmp_path / "storage"))
    catalog = SqliteMediaCatalog(str(tmp_path / "db.sqlite"))
    return Canonicalizer(storage, catalog, thumbs), storage, catalog


def test_canonicalize_moves_file_and_records_artifact(tmp_path) -> None:
    thumbs = _Thumbs()
    canonicalizer, storage, catalog = _canonicalizer(tmp_path, thumbs)
    source = _write(tmp_path / "Clip.mp4")

    artifact = canonicalizer.canonicalize(
        source, "My Clip", mime_type="video/mp4", source_url="https://example.com/Clip.mp4"
    )

    assert not os.path.exists(source)
    assert artifact.path.startswith("media/") and artifact.path.endswith(".mp4")
    assert storage.exists(artifact.path)
    assert artifact.name == "My Clip"
    assert artifact.file_name == "Clip.mp4"
    assert artifact.size == len(b"video-bytes")
    assert artifact.url == f"/storage/{artifact.path}"
    assert artifact.source == "https://example.com/Clip.mp4"
    assert artifact.thumbnail_path == "thumbnails/x_thumb.jpg"
    assert thumbs.calls == [(artifact.path, "video/mp4")]
    assert catalog.count() == 1


def test_local_files_are_marked_local_and_thumbnail_is_optional(tmp_path) -> None:
    canonicalizer, _, _ = _canonicalizer(tmp_path, _Thumbs(result=None))

    artifact = canonicalizer.canonicalize(_write(tmp_path / "a.webm"), "a")

    assert artifact.source == "local"
    assert artifact.mime_type == "video/webm"
    assert artifact.thumbnail_path is None


def test_non_media_file_is_refused(tmp_path) -> None:
    canonicalizer, _, catalog = _canonicalizer(tmp_path)
    source = _write(tmp_path / "notes.txt")

    with pytest.raises(CanonicalizationError):
        canonicalizer.canonicalize(source, "notes")

    assert os.path.exists(source)
    assert catalog.count() == 0


def test_catalog_failure_removes_stored_file(tmp_path) -> None:
    storage = LocalMediaStorage(str(tmp_path / "storage"))

    class _BrokenCatalog:
        def create(self, **kwargs):
            raise RuntimeError("db down")

    canonicalizer = Canonicalizer(storage, _BrokenCatalog())

    with pytest.raises(CanonicalizationError):
        canonicalizer.canonicalize(_write(tmp_path / "a.mp4"), "a")

    assert os.listdir(tmp_path / "storage" / "media") == []


def test_ffmpeg_thumbnail_retries_without_seek(tmp_path) -> None:
    storage = LocalMediaStorage(str(tmp_path / "storage"))
    stored = storage.put(_write(tmp_path / "a.mp4"))
    calls = []

    class _Runner:
        def run(self, args, timeout=None, **kwargs):
            calls.append(list(args))
            if "-ss" in args:
                return ExitResult(1, "", "no frame")
            with open(args[-1], "wb") as handle:
                handle.write(b"jpg")
            return ExitResult(0, "", "")

    thumb = FfmpegThumbnailGenerator(storage, runner=_Runner()).generate(stored, "video/mp4")

    stem = os.path.splitext(os.path.basename(stored))[0]
    assert thumb == f"thumbnails/{stem}_thumb.jpg"
    assert len(calls) == 2
    assert calls[0][1:3] == ["-ss", "00:00:01"]
    assert "-ss" not in calls[1]


def test_ffmpeg_thumbnail_failure_returns_none(tmp_path) -> None:
    storage = LocalMediaStorage(str(tmp_path / "storage"))
    stored = storage.put(_write(tmp_path / "a.mp4"))

    class _Missing:
        def run(self, args, **kwargs):
            raise FileNotFoundError("ffmpeg")

    assert FfmpegThumbnailGenerator(storage, runner=_Missing()).generate(stored, "video/mp4") is None
    assert FfmpegThumbnailGenerator(storage, runner=_Missing()).generate(stored, "image/png") is None


def test_symlinked_file_is_refused(tmp_path) -> None:
    canonicalizer, storage, catalog = _canonicalizer(tmp_path)
    secret = _write(tmp_path / "secret.txt", b"top secret")
    link = tmp_path / "evil.mp4"
    os.symlink(secret, link)

    with pytest.raises(CanonicalizationError):
        canonicalizer.canonicalize(str(link), "evil", mime_type="video/mp4")

    assert catalog.count() == 0
    assert os.listdir(os.path.join(storage.root, "media")) == []


def test_extension_is_derived_from_mime_when_name_has_none(tmp_path) -> None:
    canonicalizer, storage, _ = _canonicalizer(tmp_path)

    artifact = canonicalizer.canonicalize(_write(tmp_path / "clip123"), "clip123", mime_type="video/mp4")

    assert artifact.file_name == "clip123.mp4"
    assert artifact.path.endswith(".mp4")
    assert artifact.url.endswith(".mp4")
    assert storage.exists(artifact.path)
