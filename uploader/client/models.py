import math
import uuid
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Iterator, List, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field, field_validator
from uploader.client.errors import ErrorKind, UploadError


class Strategy(str, Enum):
    SIMPLE = "simple"
    CHUNKED = "chunked"


class TaskStatus(str, Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    ERROR = "error"
    SKIPPED = "skipped"


class ErrorInfo(BaseModel):
    code: str
    message: str
    kind: ErrorKind = ErrorKind.GENERIC

    @classmethod
    def from_exception(cls, exc: UploadError) -> "ErrorInfo":
        return cls(code=exc.code, message=exc.message, kind=exc.kind)


class UploadTask(BaseModel):
    """
    One file queued for transfer.
    """
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    name: str
    size: int = Field(ge=0)
    last_modified: Optional[datetime] = None
    path: Path
    transport_name: Optional[str] = None
    strategy: Optional[Strategy] = None
    status: TaskStatus = TaskStatus.PENDING
    error: Optional[ErrorInfo] = None

    @classmethod
    def from_path(cls, path, name: Optional[str] = None) -> "UploadTask":
        """
        Build a task from a file on disk, taking size and mtime from stat().
        """
        path = Path(path)
        stat = path.stat()
        return cls(
            name=name or path.name,
            size=stat.st_size,
            last_modified=datetime.fromtimestamp(stat.st_mtime),
            path=path,
        )

    def mark_error(self, error: ErrorInfo) -> None:
        self.status = TaskStatus.ERROR
        self.error = error

    def mark_skipped(self, marker: ErrorInfo) -> None:
        self.status = TaskStatus.SKIPPED
        self.error = marker


class ChunkPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    chunk_size: int
    file_size: int = Field(ge=0)

    @field_validator("chunk_size")
    @classmethod
    def chunk_size_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("chunk_size must be positive")
        return value

    @property
    def total_chunks(self) -> int:
        return math.ceil(self.file_size / self.chunk_size)

    def chunk_range(self, index: int) -> Tuple[int, int]:
        """
        Half-open byte range [start, end) covered by chunk `index`.
        """
        if index < 0 or index >= self.total_chunks:
            raise IndexError(f"Chunk index {index} out of range for {self.total_chunks} chunks")
        start = index * self.chunk_size
        return start, min(start + self.chunk_size, self.file_size)

    def ranges(self) -> Iterator[Tuple[int, int]]:
        for index in range(self.total_chunks):
            yield self.chunk_range(index)


class ChunkSessionStatus(str, Enum):
    IDLE = "idle"
    INITIATED = "initiated"
    TRANSFERRING = "transferring"
    COMPLETING = "completing"
    COMPLETED = "completed"
    ERRORED = "errored"


class ChunkSessionState(BaseModel):
    upload_id: Optional[str] = None
    next_index: int = 0
    sent: int = 0
    status: ChunkSessionStatus = ChunkSessionStatus.IDLE


class BatchResult(BaseModel):
    succeeded: List[UploadTask] = Field(default_factory=list)
    skipped: List[UploadTask] = Field(default_factory=list)
    failed: List[UploadTask] = Field(default_factory=list)
    error: Optional[ErrorInfo] = None  # batch-level failure of a simple transfer

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.skipped) + len(self.failed)

    @property
    def is_empty(self) -> bool:
        return self.total == 0
