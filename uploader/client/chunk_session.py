import logging
import aiofiles
from typing import Callable, Optional
from uploader.client.errors import FILE_READ_ERROR, UploadError
from uploader.client.models import (
    ChunkPlan,
    ChunkSessionState,
    ChunkSessionStatus,
    ErrorInfo,
    TaskStatus,
    UploadTask,
)
from uploader.client.name_codec import encode_filename
from uploader.client.transport import ReceiverClient

logger = logging.getLogger("chunk_session")

ProgressCallback = Callable[[str, int, int], None]


class ChunkSession:
    """
    Runs the init -> chunk... -> complete handshake for one file.

    Chunks are read and sent one at a time in ascending index order; each
    request is awaited before the next chunk is read. When the receiver
    answers init with its own chunk size, the file is split by that size.
    """

    def __init__(
        self,
        client: ReceiverClient,
        task: UploadTask,
        plan: ChunkPlan,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.client = client
        self.task = task
        self.plan = plan
        self.on_progress = on_progress
        self.state = ChunkSessionState()

    async def run(self) -> UploadTask:
        """
        Upload the task's file. Raises UploadError after marking the task failed.
        """
        task = self.task
        task.transport_name = encode_filename(task.name)
        task.status = TaskStatus.UPLOADING

        try:
            await self._initiate()
            await self._transfer()
            await self._complete()
        except UploadError as e:
            await self._fail(e)
            raise

        task.status = TaskStatus.COMPLETED
        task.error = None
        logger.info(f"Uploaded {task.name} in {self.plan.total_chunks} chunk(s)")
        return task

    async def _initiate(self) -> None:
        response = await self.client.init_chunk_upload(self.task.transport_name, self.task.size)
        self.state.upload_id = response.upload_id
        self.state.status = ChunkSessionStatus.INITIATED
        logger.debug(f"Initiated upload {response.upload_id} for {self.task.name}")

        if response.chunk_size and response.chunk_size > 0 and response.chunk_size != self.plan.chunk_size:
            logger.info(
                f"Receiver uses {response.chunk_size} byte chunks for {self.task.name} "
                f"instead of {self.plan.chunk_size}"
            )
            self.plan = ChunkPlan(chunk_size=response.chunk_size, file_size=self.task.size)

    async def _transfer(self) -> None:
        total = self.plan.total_chunks
        self.state.status = ChunkSessionStatus.TRANSFERRING

        try:
            async with aiofiles.open(self.task.path, "rb") as f:
                for index, (start, end) in enumerate(self.plan.ranges()):
                    await f.seek(start)
                    chunk = await f.read(end - start)
                    if len(chunk) != end - start:
                        raise UploadError(
                            FILE_READ_ERROR,
                            f"Short read on chunk {index} of {self.task.name}: "
                            f"expected {end - start} bytes, got {len(chunk)}",
                        )

                    await self.client.upload_chunk(self.state.upload_id, index, chunk)
                    self.state.sent += 1
                    self.state.next_index = index + 1
                    self._report(self.state.sent, total)
        except OSError as e:
            raise UploadError(FILE_READ_ERROR, f"Could not read {self.task.path}: {e}") from e

    async def _complete(self) -> None:
        if self.state.sent != self.plan.total_chunks:
            raise UploadError(
                FILE_READ_ERROR,
                f"Only {self.state.sent} of {self.plan.total_chunks} chunks were sent",
            )
        self.state.status = ChunkSessionStatus.COMPLETING
        await self.client.complete_chunk_upload(self.state.upload_id)
        self.state.status = ChunkSessionStatus.COMPLETED
        self.state.upload_id = None

    def _report(self, completed: int, total: int) -> None:
        if self.on_progress:
            self.on_progress(self.task.id, completed, total)

    async def _fail(self, error: UploadError) -> None:
        logger.error(
            f"Chunked upload of {self.task.name} failed at {self.state.status.value} "
            f"(chunk {self.state.next_index}/{self.plan.total_chunks}): {error}"
        )
        upload_id = self.state.upload_id
        self.state.status = ChunkSessionStatus.ERRORED
        self.state.upload_id = None
        self.task.mark_error(ErrorInfo.from_exception(error))

        if upload_id:
            await self._cancel(upload_id)

    async def _cancel(self, upload_id: str) -> None:
        # Best effort: the receiver's stale-session cleanup removes anything left behind
        try:
            await self.client.cancel_chunk_upload(upload_id)
        except UploadError as e:
            logger.warning(f"Could not cancel upload {upload_id}: {e}")
        else:
            logger.info(f"Cancelled upload {upload_id} for {self.task.name}")
