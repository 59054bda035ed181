"""Exception types raised across the ingest pipeline."""

from __future__ import annotations


class IngestError(Exception):
    """Base class for pipeline errors."""


class InvalidUrlError(IngestError, ValueError):
    """Raised when a URL fails syntax or scheme validation at enqueue time."""


class ArchiveError(IngestError):
    """Raised when an archive cannot be expanded."""


class CanonicalizationError(IngestError):
    """Raised when a file cannot be turned into a catalog artifact."""


class UploadRejectedError(IngestError):
    """Raised for uploads whose type the pipeline does not accept."""
