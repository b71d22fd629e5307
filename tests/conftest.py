"""Shared fixtures for driftline tests."""

import json
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest

from driftline.logging import JSONLLogger
from driftline.routing import ClassifierResponse, TokenUsage
from driftline.store import SQLiteDriftStore


@pytest.fixture
def store(tmp_path: Path) -> SQLiteDriftStore:
    """Create a SQLiteDriftStore with a temporary database."""
    store = SQLiteDriftStore(tmp_path / "drift.db")
    store.init_db()
    yield store
    store.close()


@pytest.fixture
def event_logger(tmp_path: Path) -> JSONLLogger:
    return JSONLLogger(log_dir=tmp_path / "logs")


@pytest.fixture
def classifier() -> AsyncMock:
    """Create a mock route classifier."""
    mock = AsyncMock()
    mock.classify = AsyncMock()
    return mock


@pytest.fixture
def make_response():
    """Factory for classifier responses in the nested decision format."""

    def _make(
        action: str = "STAY",
        target_index: Any = None,
        topic: str | None = None,
        reason: str = "test reason",
        confidence: float = 0.9,
        **extra: Any,
    ) -> ClassifierResponse:
        payload: dict[str, Any] = {
            "decision": {
                "action": action,
                "targetIndex": target_index,
                "newBranchTopic": topic,
                "reason": reason,
                "confidence": confidence,
            }
        }
        payload.update(extra)
        return ClassifierResponse(
            content=json.dumps(payload),
            usage=TokenUsage(input_tokens=100, output_tokens=20, total_tokens=120),
            model="test-model",
        )

    return _make
