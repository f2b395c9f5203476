import logging
from typing import List, Optional, Sequence
from pydantic import BaseModel, Field
from uploader.client.models import ChunkPlan, Strategy, UploadTask
from uploader.core.config import settings

logger = logging.getLogger("transfer_planner")


class TransferDecision(BaseModel):
    strategy: Optional[Strategy] = None
    requires_confirmation: bool = False
    oversized: List[UploadTask] = Field(default_factory=list)


class TransferPlanner:
    """
    Chooses one transfer strategy for a whole batch.

    Files above the confirmation threshold cannot go through a simple
    transfer; while chunk mode is off the planner asks for confirmation
    instead of deciding. With chunk mode on, every file is chunked.
    """

    def __init__(self, confirm_threshold: Optional[int] = None):
        self.confirm_threshold = (
            settings.CHUNK_CONFIRM_THRESHOLD if confirm_threshold is None else confirm_threshold
        )

    def decide(self, tasks: Sequence[UploadTask], chunk_mode_enabled: bool) -> TransferDecision:
        if chunk_mode_enabled:
            strategy = Strategy.CHUNKED
        else:
            oversized = [task for task in tasks if task.size > self.confirm_threshold]
            if oversized:
                logger.info(
                    f"{len(oversized)} file(s) exceed {self.confirm_threshold} bytes, chunk mode required"
                )
                return TransferDecision(requires_confirmation=True, oversized=oversized)
            strategy = Strategy.SIMPLE

        for task in tasks:
            task.strategy = strategy
        return TransferDecision(strategy=strategy)

    @staticmethod
    def plan_chunks(task: UploadTask, chunk_size: int) -> ChunkPlan:
        return ChunkPlan(chunk_size=chunk_size, file_size=task.size)
