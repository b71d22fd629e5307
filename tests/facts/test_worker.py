"""Tests for the background fact extraction queue."""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from driftline.facts import ExtractionResult, FactExtractionQueue, MergeStats
from driftline.facts.extractor import RawFact
from driftline.logging import JSONLLogger


def make_result(branch_id: str, count: int = 1) -> ExtractionResult:
    facts = [RawFact(f"k{i}", "v", 0.9) for i in range(count)]
    return ExtractionResult(branch_id=branch_id, facts=facts, stats=MergeStats())


def read_events(event_logger: JSONLLogger) -> list[dict]:
    with open(event_logger.log_path) as f:
        return [json.loads(line) for line in f]


@pytest.fixture
def extractor() -> AsyncMock:
    mock = AsyncMock()
    mock.extract = AsyncMock(side_effect=lambda branch_id: make_result(branch_id))
    return mock


class TestEnqueue:
    """Tests for enqueue."""

    @pytest.mark.asyncio
    async def test_duplicate_pending_branch_skipped(self, extractor: AsyncMock, event_logger):
        queue = FactExtractionQueue(extractor, event_logger)

        assert queue.enqueue("b1") is True
        assert queue.enqueue("b1") is False
        assert queue.enqueue("b2") is True
        assert queue.pending == 2

    @pytest.mark.asyncio
    async def test_requeue_after_processing(self, extractor: AsyncMock, event_logger):
        queue = FactExtractionQueue(extractor, event_logger)
        queue.start()
        queue.enqueue("b1")
        await queue.join()

        assert queue.enqueue("b1") is True
        await queue.join()
        await queue.stop()

        assert extractor.extract.await_count == 2


class TestWorker:
    """Tests for the worker task."""

    @pytest.mark.asyncio
    async def test_processes_in_order(self, extractor: AsyncMock, event_logger):
        queue = FactExtractionQueue(extractor, event_logger)
        queue.enqueue("b1")
        queue.enqueue("b2")

        queue.start()
        await queue.join()
        await queue.stop()

        assert [c.args[0] for c in extractor.extract.await_args_list] == ["b1", "b2"]
        assert queue.pending == 0

    @pytest.mark.asyncio
    async def test_success_logged(self, extractor: AsyncMock, event_logger: JSONLLogger):
        queue = FactExtractionQueue(extractor, event_logger)

        result = await queue.run_job("b1")

        assert result.branch_id == "b1"
        event = read_events(event_logger)[-1]
        assert event["event"] == "fact_extraction"
        assert event["branch_id"] == "b1"
        assert event["extra"] == {"success": True, "fact_count": 1}

    @pytest.mark.asyncio
    async def test_failure_logged_not_raised(self, event_logger: JSONLLogger):
        """A failing job does not stop the worker."""
        extractor = AsyncMock()
        extractor.extract = AsyncMock(
            side_effect=[RuntimeError("model down"), make_result("b2")]
        )
        queue = FactExtractionQueue(extractor, event_logger)
        queue.enqueue("b1")
        queue.enqueue("b2")

        queue.start()
        await queue.join()
        await queue.stop()

        events = read_events(event_logger)
        assert events[0]["error"] == "model down"
        assert events[0]["extra"]["success"] is False
        assert events[1]["extra"]["success"] is True

    @pytest.mark.asyncio
    async def test_stop(self, extractor: AsyncMock, event_logger):
        queue = FactExtractionQueue(extractor, event_logger)
        queue.start()
        await asyncio.sleep(0)
        assert queue.running

        await queue.stop()

        assert not queue.running

    @pytest.mark.asyncio
    async def test_start_twice_keeps_one_worker(self, extractor: AsyncMock, event_logger):
        queue = FactExtractionQueue(extractor, event_logger)
        queue.start()
        task = queue._worker_task

        queue.start()

        assert queue._worker_task is task
        await queue.stop()
