import logging
from typing import FrozenSet, Iterable, Optional, Sequence
from uploader.client.chunk_session import ChunkSession, ProgressCallback
from uploader.client.errors import (
    FILE_EXISTS,
    SKIPPED_QUOTA,
    UNACCOUNTED,
    ErrorKind,
    UploadError,
)
from uploader.client.models import BatchResult, ErrorInfo, Strategy, TaskStatus, UploadTask
from uploader.client.planner import TransferPlanner
from uploader.client.simple_transfer import (
    OutcomeKind,
    SimpleTransfer,
    TaskMatcher,
    error_info_for,
)
from uploader.client.transport import ReceiverClient

logger = logging.getLogger("batch_coordinator")

DEFAULT_HALT_ON: FrozenSet[ErrorKind] = frozenset({ErrorKind.QUOTA_EXCEEDED})


class BatchCoordinator:
    """
    Runs one batch with a single strategy and collects per-file outcomes.

    Chunked batches are processed one file at a time in queue order. A
    failure whose kind is in `halt_on` stops the batch and every file not yet
    attempted is reported as skipped; other failures only affect their file.
    """

    def __init__(
        self,
        client: ReceiverClient,
        chunk_size: int,
        *,
        halt_on: Iterable[ErrorKind] = DEFAULT_HALT_ON,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.client = client
        self.chunk_size = chunk_size
        self.halt_on = frozenset(halt_on)
        self.on_progress = on_progress

    async def run(self, tasks: Sequence[UploadTask], strategy: Strategy, force: bool = False) -> BatchResult:
        if not tasks:
            return BatchResult()
        if strategy == Strategy.SIMPLE:
            return await self._run_simple(tasks, force)
        return await self._run_chunked(tasks)

    async def _run_chunked(self, tasks: Sequence[UploadTask]) -> BatchResult:
        result = BatchResult()

        for position, task in enumerate(tasks):
            plan = TransferPlanner.plan_chunks(task, self.chunk_size)
            session = ChunkSession(self.client, task, plan, on_progress=self.on_progress)
            try:
                await session.run()
            except UploadError as e:
                result.failed.append(task)
                if e.kind in self.halt_on:
                    remaining = tasks[position + 1:]
                    logger.warning(
                        f"Stopping batch after {task.name} failed with {e.kind.value}; "
                        f"skipping {len(remaining)} remaining file(s)"
                    )
                    self._skip_remaining(result, remaining, e)
                    break
                continue
            result.succeeded.append(task)

        logger.info(
            f"Chunked batch finished: {len(result.succeeded)} succeeded, "
            f"{len(result.failed)} failed, {len(result.skipped)} skipped"
        )
        return result

    @staticmethod
    def _skip_remaining(result: BatchResult, remaining: Sequence[UploadTask], cause: UploadError) -> None:
        if cause.kind == ErrorKind.QUOTA_EXCEEDED:
            code, message = SKIPPED_QUOTA, "Skipped due to quota"
        else:
            code, message = cause.code, f"Skipped after batch stopped: {cause.message}"

        for task in remaining:
            task.mark_skipped(ErrorInfo(code=code, message=message, kind=cause.kind))
            result.skipped.append(task)

    async def _run_simple(self, tasks: Sequence[UploadTask], force: bool) -> BatchResult:
        outcome = await SimpleTransfer(self.client).run(tasks, force=force)
        result = BatchResult()

        if outcome.kind == OutcomeKind.FAILURE:
            result.error = outcome.error
            for task in tasks:
                task.mark_error(outcome.error)
                result.failed.append(task)
            return result

        matcher = TaskMatcher(tasks)
        succeeded, skipped, failed = set(), {}, {}

        for stored in outcome.uploaded:
            task = matcher.claim(stored.original_name)
            if task:
                succeeded.add(task.id)
        for existing in outcome.existing:
            task = matcher.claim(existing.filename)
            if task:
                skipped[task.id] = ErrorInfo(
                    code=FILE_EXISTS,
                    message=f"{existing.filename} already exists",
                )
        for entry in outcome.errors:
            task = matcher.claim(entry.filename)
            if task:
                failed[task.id] = error_info_for(entry)
        for task in matcher.unclaimed(tasks):
            failed[task.id] = ErrorInfo(
                code=UNACCOUNTED,
                message=f"Receiver did not report an outcome for {task.name}",
            )

        # Walk the original queue so every bucket keeps batch order
        for task in tasks:
            if task.id in succeeded:
                task.status = TaskStatus.COMPLETED
                task.error = None
                result.succeeded.append(task)
            elif task.id in skipped:
                task.mark_skipped(skipped[task.id])
                result.skipped.append(task)
            else:
                task.mark_error(failed[task.id])
                result.failed.append(task)
        return result
