import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union
from pydantic import BaseModel
from uploader.client.batch import DEFAULT_HALT_ON, BatchCoordinator
from uploader.client.chunk_session import ProgressCallback
from uploader.client.errors import ChunkModeConfirmationRequired, ErrorKind, UploadError
from uploader.client.models import BatchResult, UploadTask
from uploader.client.planner import TransferPlanner
from uploader.client.transport import ReceiverClient
from uploader.core.config import settings

logger = logging.getLogger("upload_client")

FileInput = Union[UploadTask, Path, str]


class UploadOptions(BaseModel):
    chunk_mode: bool = False
    force: bool = False  # overwrite name collisions on simple transfers


class UploadClient:
    """
    Entry point for uploading a batch of files to the receiver.

    The chunk size is fetched from the receiver once, on the first batch
    that needs it, and falls back to DEFAULT_CHUNK_SIZE if that fails.
    """

    def __init__(
        self,
        receiver: Optional[ReceiverClient] = None,
        *,
        planner: Optional[TransferPlanner] = None,
        halt_on: Iterable[ErrorKind] = DEFAULT_HALT_ON,
    ):
        self.receiver = receiver or ReceiverClient()
        self.planner = planner or TransferPlanner()
        self.halt_on = frozenset(halt_on)
        self._chunk_size: Optional[int] = None

    async def __aenter__(self) -> "UploadClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.receiver.aclose()

    async def chunk_size(self) -> int:
        if self._chunk_size is None:
            self._chunk_size = await self._fetch_chunk_size()
        return self._chunk_size

    async def _fetch_chunk_size(self) -> int:
        try:
            config = await self.receiver.fetch_upload_config()
        except UploadError as e:
            logger.warning(
                f"Could not fetch upload config ({e}), using default chunk size {settings.DEFAULT_CHUNK_SIZE}"
            )
            return settings.DEFAULT_CHUNK_SIZE

        if config.chunk_size <= 0:
            logger.warning(f"Receiver sent invalid chunk size {config.chunk_size}, using default")
            return settings.DEFAULT_CHUNK_SIZE
        return config.chunk_size

    async def run_batch(
        self,
        files: Sequence[FileInput],
        options: Optional[UploadOptions] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> BatchResult:
        """
        Upload `files` and return where each one ended up.

        Raises ChunkModeConfirmationRequired when a file is too large for a
        simple transfer and chunk mode is off; call again with chunk_mode=True.
        """
        options = options or UploadOptions()
        if not files:
            return BatchResult()

        tasks = self._to_tasks(files)
        decision = self.planner.decide(tasks, options.chunk_mode)
        if decision.requires_confirmation:
            raise ChunkModeConfirmationRequired(decision.oversized)

        coordinator = BatchCoordinator(
            self.receiver,
            await self.chunk_size(),
            halt_on=self.halt_on,
            on_progress=on_progress,
        )
        return await coordinator.run(tasks, decision.strategy, force=options.force)

    @staticmethod
    def _to_tasks(files: Sequence[FileInput]) -> List[UploadTask]:
        return [item if isinstance(item, UploadTask) else UploadTask.from_path(item) for item in files]
