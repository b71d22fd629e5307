"""Background queue for branch fact re-extraction."""

import asyncio
import logging
import time
from typing import Protocol

from ..logging import JSONLLogger, get_logger
from .extractor import ExtractionResult

logger = logging.getLogger(__name__)


class BranchExtractor(Protocol):
    """Anything that can re-extract one branch's facts."""

    async def extract(self, branch_id: str) -> ExtractionResult: ...


class FactExtractionQueue:
    """Runs branch re-extraction jobs one at a time in a worker task.

    ``enqueue`` never blocks and never raises into the routing caller. A
    branch that is already waiting in the queue is not queued twice.
    """

    def __init__(
        self,
        extractor: BranchExtractor,
        event_logger: JSONLLogger | None = None,
    ) -> None:
        self.extractor = extractor
        self._event_logger = event_logger
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._pending: set[str] = set()
        self._worker_task: asyncio.Task | None = None

    @property
    def event_logger(self) -> JSONLLogger:
        return self._event_logger or get_logger()

    @property
    def pending(self) -> int:
        """Number of jobs waiting to run."""
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._worker_task is not None and not self._worker_task.done()

    def enqueue(self, branch_id: str) -> bool:
        """Schedule re-extraction for a branch.

        Returns:
            False if the branch was already waiting, True otherwise.
        """
        if branch_id in self._pending:
            logger.debug("Branch %s already queued for extraction", branch_id)
            return False
        self._pending.add(branch_id)
        self._queue.put_nowait(branch_id)
        return True

    def start(self) -> None:
        """Start the worker task."""
        if not self.running:
            self._worker_task = asyncio.create_task(self._worker_loop())

    async def stop(self) -> None:
        """Cancel the worker task and wait for it to exit."""
        if self._worker_task and not self._worker_task.done():
            self._worker_task.cancel()
            try:
                await self._worker_task
            except asyncio.CancelledError:
                pass
        self._worker_task = None

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        await self._queue.join()

    async def run_job(self, branch_id: str) -> ExtractionResult | None:
        """Run one extraction, logging instead of raising on failure."""
        start = time.monotonic()
        try:
            result = await self.extractor.extract(branch_id)
        except Exception as e:
            duration_ms = (time.monotonic() - start) * 1000
            logger.warning(f"Fact extraction for branch {branch_id} failed: {e}")
            self.event_logger.log_fact_extraction(
                branch_id, False, duration_ms=duration_ms, error=str(e)
            )
            return None

        self.event_logger.log_fact_extraction(
            branch_id,
            True,
            fact_count=result.fact_count,
            duration_ms=(time.monotonic() - start) * 1000,
        )
        return result

    async def _worker_loop(self) -> None:
        while True:
            branch_id = await self._queue.get()
            self._pending.discard(branch_id)
            try:
                await self.run_job(branch_id)
            finally:
                self._queue.task_done()
