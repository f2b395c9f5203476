from enum import Enum
from typing import Any, List, Optional
from uploader.core.config import settings

# Codes produced on the client side
NETWORK_ERROR = "NETWORK_ERROR"
INVALID_RESPONSE = "INVALID_RESPONSE"
FILE_READ_ERROR = "FILE_READ_ERROR"
UNACCOUNTED = "UNACCOUNTED"
SKIPPED_QUOTA = "SKIPPED_QUOTA"
FILE_EXISTS = "FILE_EXISTS"
UPLOAD_FAILED = "UPLOAD_FAILED"

QUOTA_STATUS_CODE = 507
FILE_TYPE_STATUS_CODE = 415


class ErrorKind(str, Enum):
    QUOTA_EXCEEDED = "quota_exceeded"
    FILE_TYPE_REJECTED = "file_type_rejected"
    GENERIC = "generic"


def classify_error(code: Optional[str], status_code: Optional[int] = None) -> ErrorKind:
    """
    Map a receiver error code (or, lacking one, the HTTP status) to an ErrorKind.
    """
    if code in settings.QUOTA_ERROR_CODES:
        return ErrorKind.QUOTA_EXCEEDED
    if code in settings.FILE_TYPE_ERROR_CODES:
        return ErrorKind.FILE_TYPE_REJECTED
    if status_code == QUOTA_STATUS_CODE:
        return ErrorKind.QUOTA_EXCEEDED
    if status_code == FILE_TYPE_STATUS_CODE:
        return ErrorKind.FILE_TYPE_REJECTED
    return ErrorKind.GENERIC


class UploadError(Exception):
    """Raised when the receiver rejects a request or cannot be reached."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        kind: Optional[ErrorKind] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.kind = kind or classify_error(code, status_code)

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class ChunkModeConfirmationRequired(Exception):
    """Raised when a batch holds files too large for a simple transfer."""

    def __init__(self, oversized: List[Any]):
        names = ", ".join(task.name for task in oversized)
        super().__init__(f"Chunk mode must be enabled to upload: {names}")
        self.oversized = oversized
