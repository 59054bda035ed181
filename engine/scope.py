"""Per-attempt scratch directories and the janitor that reaps abandoned ones."""

from __future__ import annotations

import logging
import os
import re
import shutil
import time
import uuid

from engine.paths import ensure_dir

logger = logging.getLogger(__name__)

# <prefix>_<item id>_<32 hex>; the item id may itself contain underscores.
_SCOPE_NAME_RE = re.compile(r"^(?P<prefix>[a-z]+)_(?P<item_id>.+)_(?P<token>[0-9a-f]{32})$")


def scope_dir_name(prefix, item_id):
    safe_id = re.sub(r"[^A-Za-z0-9_-]", "-", str(item_id))
    return f"{prefix}_{safe_id}_{uuid.uuid4().hex}"


def parse_scope_dir_name(name):
    """Return ``(prefix, item_id)`` for a scope directory name, else ``None``."""
    match = _SCOPE_NAME_RE.match(name or "")
    if not match:
        return None
    return match.group("prefix"), match.group("item_id")


def remove_tree(path) -> bool:
    if not path or not os.path.exists(path):
        return False
    try:
        shutil.rmtree(path)
        return True
    except OSError:
        logger.exception("Failed to remove scratch directory %s", path)
        return False


class ResourceScope:
    """Context manager owning a unique working directory.

    The directory is created on enter and removed on exit, whatever the exit
    path. ``item_id`` is encoded in the name so the janitor can tell whether
    the owner is still active.
    """

    def __init__(self, temp_root, item_id, *, prefix="ingest"):
        self.temp_root = temp_root
        self.item_id = item_id
        self.prefix = prefix
        self.path = None

    def __enter__(self):
        ensure_dir(self.temp_root)
        self.path = os.path.join(self.temp_root, scope_dir_name(self.prefix, self.item_id))
        os.makedirs(self.path)
        return self.path

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def close(self):
        if self.path and remove_tree(self.path):
            logger.debug("Removed scope %s", self.path)


def reap_stale_scopes(temp_root, is_active, *, grace_seconds=300, now=None) -> list:
    """Remove scope directories older than ``grace_seconds`` whose owner is inactive.

    ``is_active(item_id)`` decides ownership. Directories not following the
    scope naming scheme are left alone. Returns the removed paths.
    """
    if not temp_root or not os.path.isdir(temp_root):
        return []
    now = time.time() if now is None else now
    removed = []
    for name in sorted(os.listdir(temp_root)):
        path = os.path.join(temp_root, name)
        if not os.path.isdir(path):
            continue
        parsed = parse_scope_dir_name(name)
        if parsed is None:
            continue
        _, item_id = parsed
        try:
            age = now - os.path.getmtime(path)
        except OSError:
            continue
        if age < grace_seconds:
            continue
        if is_active(item_id):
            continue
        if remove_tree(path):
            logger.info("Reaped stale scope %s age=%ss", path, int(age))
            removed.append(path)
    return removed


def upload_temp_name(upload_id, ext=None):
    """File name for an upload waiting in the upload temp dir; the stem is the upload id."""
    return f"{upload_id}.{ext}" if ext else str(upload_id)


def reap_stale_uploads(upload_dir, is_active, *, grace_seconds=300, now=None) -> list:
    """Remove uploaded temp files older than ``grace_seconds`` that no ledger entry owns.

    The upload id is the file stem (see :func:`upload_temp_name`). A queued
    upload still needs its file, so ``is_active`` must be true for queued
    entries too. Returns the removed paths.
    """
    if not upload_dir or not os.path.isdir(upload_dir):
        return []
    now = time.time() if now is None else now
    removed = []
    for name in sorted(os.listdir(upload_dir)):
        path = os.path.join(upload_dir, name)
        if not os.path.isfile(path) and not os.path.islink(path):
            continue
        try:
            age = now - os.lstat(path).st_mtime
        except OSError:
            continue
        if age < grace_seconds:
            continue
        if is_active(name.split(".", 1)[0]):
            continue
        try:
            os.remove(path)
        except OSError:
            logger.warning("Failed to remove stale upload %s", path, exc_info=True)
            continue
        logger.info("Reaped stale upload %s age=%ss", path, int(age))
        removed.append(path)
    return removed
