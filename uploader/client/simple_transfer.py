import logging
import aiofiles
from collections import defaultdict, deque
from enum import Enum
from typing import Deque, Dict, List, Optional, Sequence, Tuple
from pydantic import BaseModel, Field
from uploader.api.schemas import ErrorFile, ExistingFile, StoredFile, UploadBatchResponse
from uploader.client.errors import FILE_READ_ERROR, UPLOAD_FAILED, UploadError, classify_error
from uploader.client.models import ErrorInfo, TaskStatus, UploadTask
from uploader.client.name_codec import decode_filename, encode_filename
from uploader.client.transport import (
    ReceiverClient,
    error_from_response,
    is_error_envelope,
    parse_model,
    response_payload,
)

logger = logging.getLogger("simple_transfer")

CONFLICT_STATUS_CODE = 409


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILURE = "failure"


class SimpleTransferOutcome(BaseModel):
    """
    Result of one multipart upload. A 409 is a partial success carrying the
    same three buckets as a 2xx; anything else that is not 2xx is a failure.
    """
    kind: OutcomeKind
    uploaded: List[StoredFile] = Field(default_factory=list)
    existing: List[ExistingFile] = Field(default_factory=list)
    errors: List[ErrorFile] = Field(default_factory=list)
    error: Optional[ErrorInfo] = None

    @classmethod
    def from_batch_response(cls, kind: OutcomeKind, body: UploadBatchResponse) -> "SimpleTransferOutcome":
        return cls(
            kind=kind,
            uploaded=body.uploaded_files,
            existing=body.existing_files,
            errors=body.error_files,
        )

    @classmethod
    def failure(cls, error: UploadError) -> "SimpleTransferOutcome":
        return cls(kind=OutcomeKind.FAILURE, error=ErrorInfo.from_exception(error))


class TaskMatcher:
    """
    Resolves names reported by the receiver back to queued tasks.

    A task is reachable by its display name and its transport name; each
    task is handed out once, in queue order, so duplicate names resolve to
    distinct tasks.
    """

    def __init__(self, tasks: Sequence[UploadTask]):
        self._by_name: Dict[str, Deque[UploadTask]] = defaultdict(deque)
        self._claimed = set()
        for task in tasks:
            self._by_name[task.name].append(task)
            if task.transport_name and task.transport_name != task.name:
                self._by_name[task.transport_name].append(task)

    def claim(self, reported_name: str) -> Optional[UploadTask]:
        for name in (reported_name, decode_filename(reported_name)):
            queue = self._by_name.get(name)
            while queue:
                task = queue.popleft()
                if task.id not in self._claimed:
                    self._claimed.add(task.id)
                    return task
        return None

    def unclaimed(self, tasks: Sequence[UploadTask]) -> List[UploadTask]:
        return [task for task in tasks if task.id not in self._claimed]


class SimpleTransfer:
    """
    Sends a whole batch of small files in a single multipart request.
    """

    def __init__(self, client: ReceiverClient):
        self.client = client

    async def run(self, tasks: Sequence[UploadTask], force: bool = False) -> SimpleTransferOutcome:
        parts: List[Tuple[str, bytes]] = []
        try:
            for task in tasks:
                task.transport_name = encode_filename(task.name)
                task.status = TaskStatus.UPLOADING
                async with aiofiles.open(task.path, "rb") as f:
                    parts.append((task.transport_name, await f.read()))
        except OSError as e:
            return SimpleTransferOutcome.failure(UploadError(FILE_READ_ERROR, f"Could not read file: {e}"))

        logger.info(f"Uploading {len(parts)} file(s) in one request (force={force})")
        try:
            response = await self.client.upload_files(parts, force=force)
        except UploadError as e:
            return SimpleTransferOutcome.failure(e)

        payload = response_payload(response)
        if response.status_code == CONFLICT_STATUS_CODE:
            kind = OutcomeKind.PARTIAL_SUCCESS
        elif response.is_success and not is_error_envelope(payload):
            kind = OutcomeKind.SUCCESS
        else:
            error = error_from_response(response, payload)
            logger.error(f"Multipart upload rejected: {error}")
            return SimpleTransferOutcome.failure(error)

        try:
            body = parse_model(UploadBatchResponse, payload)
        except UploadError as e:
            return SimpleTransferOutcome.failure(e)

        outcome = SimpleTransferOutcome.from_batch_response(kind, body)
        logger.info(
            f"Multipart upload {kind.value}: {len(outcome.uploaded)} uploaded, "
            f"{len(outcome.existing)} existing, {len(outcome.errors)} failed"
        )
        return outcome


def error_info_for(entry: ErrorFile) -> ErrorInfo:
    code = entry.code or UPLOAD_FAILED
    return ErrorInfo(code=code, message=entry.error, kind=classify_error(entry.code))
