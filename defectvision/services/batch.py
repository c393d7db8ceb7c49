"""
Sequential batch analysis.

Queued images move through pending -> analyzing -> complete | error. A run
takes the items that are pending when it starts and analyzes them one by one,
sleeping a fixed delay between items to stay under the gateway's rate limit.
"""
import asyncio
import uuid
from typing import Awaitable, Callable, List, Literal, Optional

from pydantic import BaseModel

from defectvision.config import settings
from defectvision.logger import logger
from defectvision.models.inspection import AnalysisResult, CamelModel, Status

BatchStatus = Literal["pending", "analyzing", "complete", "error"]

Analyze = Callable[[str], Awaitable[AnalysisResult]]
OnResult = Callable[[AnalysisResult], object]
Sleep = Callable[[float], Awaitable[object]]


class BatchItemResult(CamelModel):
    status: Status
    defects_found: int


class BatchItem(BaseModel):
    id: str
    filename: str
    image: str  # data URL
    status: BatchStatus = "pending"
    result: Optional[BatchItemResult] = None
    error: Optional[str] = None

    def public(self) -> dict:
        """Item without the image payload."""
        return self.model_dump(by_alias=True, exclude={"image"})


class BatchRunSummary(BaseModel):
    completed: int
    succeeded: int
    failed: int


class BatchLockedError(RuntimeError):
    """Raised when the queue is changed while a run is in flight."""


class BatchQueue:
    """Queue of images waiting for analysis.

    Args:
        delay: seconds to wait between two items of a run
        sleep: awaitable sleep used for the delay (tests pass a no-op)
    """

    def __init__(self, delay: Optional[float] = None, sleep: Sleep = asyncio.sleep):
        self._items: List[BatchItem] = []
        self._delay = settings.batch_delay_seconds if delay is None else delay
        self._sleep = sleep
        self.processing = False
        self.progress = 0.0

    @property
    def items(self) -> List[BatchItem]:
        return list(self._items)

    def _count(self, status: str) -> int:
        return sum(1 for item in self._items if item.status == status)

    @property
    def pending_count(self) -> int:
        return self._count("pending")

    @property
    def complete_count(self) -> int:
        return self._count("complete")

    @property
    def error_count(self) -> int:
        return self._count("error")

    def _check_unlocked(self) -> None:
        if self.processing:
            raise BatchLockedError("A batch run is in progress")

    def add(self, filename: str, image: str) -> BatchItem:
        self._check_unlocked()
        item = BatchItem(id=f"batch-{uuid.uuid4().hex}", filename=filename, image=image)
        self._items.append(item)
        return item

    def remove(self, item_id: str) -> None:
        self._check_unlocked()
        for item in self._items:
            if item.id == item_id:
                self._items.remove(item)
                return
        raise KeyError(item_id)

    def clear(self) -> None:
        self._check_unlocked()
        self._items = []
        self.progress = 0.0

    def snapshot(self) -> dict:
        return {
            "items": [item.public() for item in self._items],
            "processing": self.processing,
            "progress": self.progress,
            "pendingCount": self.pending_count,
            "completeCount": self.complete_count,
            "errorCount": self.error_count,
        }

    async def run(self, analyze: Analyze, on_result: OnResult) -> BatchRunSummary:
        """
        Analyze every item that is pending right now.

        Args:
            analyze: coroutine returning the analysis of one data URL
            on_result: receives each successful result exactly once

        Returns:
            counts of the processed items
        """
        pending = [item for item in self._items if item.status == "pending"]
        if not pending:
            return BatchRunSummary(completed=0, succeeded=0, failed=0)

        self.processing = True
        self.progress = 0.0
        completed = succeeded = 0
        try:
            for item in pending:
                item.status = "analyzing"
                try:
                    result = await analyze(item.image)
                except Exception as e:
                    item.status = "error"
                    item.error = str(e) or "Analysis failed"
                    logger.warning(f"Batch item {item.filename} failed: {item.error}")
                else:
                    item.status = "complete"
                    item.result = BatchItemResult(
                        status=result.overall_status,
                        defects_found=len(result.defects),
                    )
                    on_result(result)
                    succeeded += 1

                completed += 1
                self.progress = completed / len(pending) * 100

                if completed < len(pending):
                    await self._sleep(self._delay)
        finally:
            self.processing = False

        logger.info(f"Batch run finished: {succeeded}/{completed} analyzed successfully")
        return BatchRunSummary(completed=completed, succeeded=succeeded, failed=completed - succeeded)
