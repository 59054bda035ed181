"""Database helpers for ingestr."""

from db.failed_downloads import FailedDownload, FailedDownloadStore
from db.failed_uploads import FailedUpload, FailedUploadStore
from db.media_catalog import CanonicalArtifact, SqliteMediaCatalog

__all__ = [
    "CanonicalArtifact",
    "FailedDownload",
    "FailedDownloadStore",
    "FailedUpload",
    "FailedUploadStore",
    "SqliteMediaCatalog",
]
