"""Archive detection and extraction for uploaded bundles."""

from __future__ import annotations

import logging
import os
import re
import tarfile
import zipfile

from config.settings import UPLOAD_TIMEOUT_SECONDS
from engine.errors import ArchiveError
from engine.paths import is_within_base
from engine.process import ProcessRunner

logger = logging.getLogger(__name__)

_COMPOUND_EXT_RE = re.compile(r"\.(tar\.(gz|bz2))$", re.IGNORECASE)

_EXTENSION_FORMATS = {
    "zip": "zip",
    "tar": "tar",
    "tgz": "tar.gz",
    "tbz2": "tar.bz2",
    "7z": "7z",
    "rar": "rar",
}

_TAR_MODES = {
    "tar": "r:",
    "tar.gz": "r:gz",
    "tar.bz2": "r:bz2",
}


def archive_format(name) -> str | None:
    """Return the archive format for ``name`` (e.g. ``tar.gz``) or ``None``."""
    name = (name or "").strip()
    match = _COMPOUND_EXT_RE.search(name)
    if match:
        return match.group(1).lower()
    ext = os.path.splitext(name)[1].lstrip(".").lower()
    return _EXTENSION_FORMATS.get(ext)


def is_archive(name) -> bool:
    return archive_format(name) is not None


class ArchiveUnpacker:
    def __init__(self, *, runner=None, timeout=UPLOAD_TIMEOUT_SECONDS, sevenzip="7z", unrar="unrar"):
        self.runner = runner or ProcessRunner()
        self.timeout = timeout
        self.sevenzip = sevenzip
        self.unrar = unrar

    def extract(self, archive_path, dest_dir, fmt=None) -> str:
        fmt = fmt or archive_format(archive_path)
        if fmt is None:
            raise ArchiveError(f"Unsupported archive format: {os.path.basename(archive_path)}")
        os.makedirs(dest_dir, exist_ok=True)
        logger.info("Extracting %s archive %s", fmt, archive_path)
        if fmt == "zip":
            self._extract_zip(archive_path, dest_dir)
        elif fmt in _TAR_MODES:
            self._extract_tar(archive_path, dest_dir, _TAR_MODES[fmt])
        elif fmt == "7z":
            self._run_tool([self.sevenzip, "x", archive_path, f"-o{dest_dir}", "-y"], "7z")
        elif fmt == "rar":
            self._run_tool([self.unrar, "x", "-o+", archive_path, dest_dir.rstrip(os.sep) + os.sep], "unrar")
        else:
            raise ArchiveError(f"Unsupported archive format: {fmt}")
        return dest_dir

    def _extract_zip(self, archive_path, dest_dir):
        try:
            with zipfile.ZipFile(archive_path, "r") as zip_ref:
                for name in zip_ref.namelist():
                    if not is_within_base(os.path.join(dest_dir, name), dest_dir):
                        raise ArchiveError(f"Unsafe path in archive: {name}")
                zip_ref.extractall(dest_dir)
        except (zipfile.BadZipFile, OSError, EOFError) as exc:
            raise ArchiveError(f"Failed to extract zip archive: {exc}") from exc

    def _extract_tar(self, archive_path, dest_dir, mode):
        try:
            with tarfile.open(archive_path, mode) as tar_ref:
                members = []
                for member in tar_ref.getmembers():
                    if not is_within_base(os.path.join(dest_dir, member.name), dest_dir):
                        raise ArchiveError(f"Unsafe path in archive: {member.name}")
                    # Links and device nodes are never media; skip them.
                    if member.isfile() or member.isdir():
                        members.append(member)
                extra = {"filter": "data"} if hasattr(tarfile, "data_filter") else {}
                tar_ref.extractall(dest_dir, members=members, **extra)
        except (tarfile.TarError, OSError, EOFError) as exc:
            raise ArchiveError(f"Failed to extract tar archive: {exc}") from exc

    def _run_tool(self, args, label):
        try:
            result = self.runner.run(args, timeout=self.timeout)
        except OSError as exc:
            raise ArchiveError(f"{label} is not available: {exc}") from exc
        if result.timed_out:
            raise ArchiveError(f"{label} extraction timed out")
        if result.returncode != 0:
            raise ArchiveError(f"{label} extraction failed: {result.stderr or result.stdout}".strip())
