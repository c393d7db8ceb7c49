"""
Push feed of newly stored inspections.

Polls the store for rows above a watermark and hands each new record to the
subscribed handlers. Rows written by this process come back through the feed
too; handlers are expected to de-duplicate by inspection id.
"""
import asyncio
from typing import Callable, List, Optional

from defectvision.config import settings
from defectvision.logger import logger
from defectvision.models.inspection import Inspection
from defectvision.services.store import InspectionStore, StoreError

Handler = Callable[[Inspection], object]


class InspectionFeed:
    def __init__(self, store: InspectionStore, poll_interval: Optional[float] = None, watermark: int = 0):
        self._store = store
        self._poll_interval = poll_interval or settings.feed_poll_interval
        self._handlers: List[Handler] = []
        self._task: Optional[asyncio.Task] = None
        self.watermark = watermark

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def subscribe(self, handler: Handler) -> Callable[[], None]:
        """Register a handler for inserted rows.

        Returns:
            a callable that removes the handler again
        """
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def poll_once(self) -> int:
        """Deliver rows inserted since the last poll; returns how many were delivered."""
        records, self.watermark = self._store.fetch_after(self.watermark)
        for inspection in records:
            for handler in list(self._handlers):
                try:
                    handler(inspection)
                except Exception:
                    logger.exception(f"Feed handler failed for inspection {inspection.id}")
        return len(records)

    async def _run(self):
        while True:
            try:
                delivered = self.poll_once()
                if delivered:
                    logger.debug(f"Feed delivered {delivered} inspection(s), watermark={self.watermark}")
            except StoreError as e:
                logger.error(f"Feed poll failed: {e}")
            except Exception:
                logger.exception("Feed poll failed unexpectedly")
            await asyncio.sleep(self._poll_interval)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info(f"Inspection feed started (watermark={self.watermark})")

    async def stop(self) -> None:
        """Stop polling and release every subscription."""
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("Inspection feed task had failed")
        self._handlers.clear()
        logger.info("Inspection feed stopped")
