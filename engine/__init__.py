from .errors import ArchiveError, CanonicalizationError, IngestError, InvalidUrlError, UploadRejectedError
from .handlers import FailureKind, HandlerFailure, HandlerSuccess
from .paths import EnginePaths

__all__ = [
    "ArchiveError",
    "CanonicalizationError",
    "EnginePaths",
    "FailureKind",
    "HandlerFailure",
    "HandlerSuccess",
    "IngestError",
    "InvalidUrlError",
    "UploadRejectedError",
]
