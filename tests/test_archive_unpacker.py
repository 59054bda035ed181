from __future__ import annotations

import io
import os
import tarfile
import zipfile

import pytest

from engine.errors import ArchiveError
from engine.process import ExitResult
from upload.archive import ArchiveUnpacker, archive_format, is_archive


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("bundle.zip", "zip"),
        ("bundle.tar", "tar"),
        ("bundle.tar.gz", "tar.gz"),
        ("BUNDLE.TAR.BZ2", "tar.bz2"),
        ("bundle.tgz", "tar.gz"),
        ("bundle.tbz2", "tar.bz2"),
        ("bundle.7z", "7z"),
        ("bundle.rar", "rar"),
        ("clip.mp4", None),
        ("archive.gz", None),
    ],
)
def test_archive_format(name, expected) -> None:
    assert archive_format(name) == expected
    assert is_archive(name) is (expected is not None)


def test_extract_zip(tmp_path) -> None:
    archive = tmp_path / "bundle.zip"
    with zipfile.ZipFile(archive, "w") as zf:
        zf.writestr("a.mp4", b"a")
        zf.writestr("nested/b.mkv", b"b")
    dest = tmp_path / "out"

    ArchiveUnpacker().extract(str(archive), str(dest))

    assert (dest / "a.mp4").read_bytes() == b"a"
    assert (dest / "nested" / "b.mkv").read_bytes() == b"b"


def test_extract_tar_gz(tmp_path) -> None:
    archive = tmp_path / "bundle.tar.gz"
    with tarfile.open(archive, "w:gz") as tf:
        data = b"clip"
        info = tarfile.TarInfo("dir/clip.webm")
        info.size = len(data)
        tf.addfile(info, io.BytesIO(data))
    dest = tmp_path / "out"

    ArchiveUnpacker().extract(str(archive), str(dest), "tar.gz")

    assert (dest / "dir" / "clip.webm").read_bytes() == b"clip"


def test_zip_with_traversal_is_refused(tmp_path) -> None:
    archive = tmp_path / "evil.zip"
    with zipfile.ZipFile(archive, "w") as zf:
        zf.writestr("../escape.mp4", b"x")
    dest = tmp_path / "out"

    with pytest.raises(ArchiveError):
        ArchiveUnpacker().extract(str(archive), str(dest))

    assert not (tmp_path / "escape.mp4").exists()


def test_tar_with_traversal_is_refused(tmp_path) -> None:
    archive = tmp_path / "evil.tar"
    with tarfile.open(archive, "w") as tf:
        info = tarfile.TarInfo("../../escape.mp4")
        info.size = 1
        tf.addfile(info, io.BytesIO(b"x"))

    with pytest.raises(ArchiveError):
        ArchiveUnpacker().extract(str(archive), str(tmp_path / "out"))


def test_corrupt_archive_raises(tmp_path) -> None:
    archive = tmp_path / "broken.zip"
    archive.write_bytes(b"this is not a zip")

    with pytest.raises(ArchiveError):
        ArchiveUnpacker().extract(str(archive), str(tmp_path / "out"))


class _RecordingRunner:
    def __init__(self, result=None):
        self.result = result or ExitResult(0, "", "")
        self.calls = []

    def run(self, args, timeout=None, **kwargs):
        self.calls.append(list(args))
        return self.result


def test_7z_and_rar_use_external_tools(tmp_path) -> None:
    runner = _RecordingRunner()
    unpacker = ArchiveUnpacker(runner=runner)
    dest = str(tmp_path / "out")

    unpacker.extract("/uploads/a.7z", dest)
    unpacker.extract("/uploads/b.rar", dest)

    assert runner.calls[0] == ["7z", "x", "/uploads/a.7z", f"-o{dest}", "-y"]
    assert runner.calls[1] == ["unrar", "x", "-o+", "/uploads/b.rar", dest + os.sep]


def test_external_tool_failure_raises(tmp_path) -> None:
    unpacker = ArchiveUnpacker(runner=_RecordingRunner(ExitResult(2, "", "Can not open the file as archive")))

    with pytest.raises(ArchiveError, match="Can not open"):
        unpacker.extract("/uploads/a.7z", str(tmp_path / "out"))


def test_unknown_format_raises(tmp_path) -> None:
    with pytest.raises(ArchiveError):
        ArchiveUnpacker().extract(str(tmp_path / "clip.mp4"), str(tmp_path / "out"))
