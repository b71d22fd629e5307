"""Persisted routing pipeline: validate → load → classify → execute."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from ..config import DriftConfig
from ..embeddings import Embedder
from ..errors import DriftError, PipelineTimeoutError, StageError
from ..logging import JSONLLogger, get_logger
from ..store.base import DriftStore
from .classifier import classify_route
from .llm import RouteClassifier
from .stages import PipelineDeps, execute_route, load_branches, validate_input
from .types import BranchDecision, DriftContext, DriftInput, DriftResult

if TYPE_CHECKING:
    from ..facts.worker import FactExtractionQueue

logger = logging.getLogger(__name__)

Stage = Callable[[DriftContext], Awaitable[DriftContext]]


def build_result(ctx: DriftContext) -> DriftResult:
    """Turn a completed pipeline context into the caller-facing result."""
    classification = ctx.classification
    if classification is None or ctx.message is None or ctx.branch is None:
        raise ValueError("Pipeline finished without a routed message")

    previous = ctx.current_branch
    return DriftResult(
        action=classification.action,
        branch_id=ctx.branch.id,
        message_id=ctx.message.id,
        is_new_branch=isinstance(classification.decision, BranchDecision),
        reason=classification.reason,
        branch_topic=ctx.branch.topic,
        confidence=classification.confidence,
        reason_codes=ctx.reason_codes,
        previous_branch_id=(
            previous.id if previous is not None and previous.id != ctx.branch.id else None
        ),
        token_usage=classification.token_usage,
        model=classification.model,
        facts=classification.facts,
        branch_context=classification.branch_context,
    )


class DriftOrchestrator:
    """Runs the routing pipeline for one message at a time per conversation.

    Requests for the same (tenant, conversation) are serialized with an
    asyncio lock so two messages never read the same branch state and both
    write. Requests for different conversations run concurrently.
    """

    def __init__(
        self,
        store: DriftStore,
        classifier: RouteClassifier,
        config: DriftConfig | None = None,
        embedder: Embedder | None = None,
        extraction_queue: FactExtractionQueue | None = None,
        event_logger: JSONLLogger | None = None,
    ) -> None:
        self.config = config or DriftConfig()
        self.deps = PipelineDeps(
            store=store,
            classifier=classifier,
            embedder=embedder,
            extraction_queue=extraction_queue,
        )
        self._event_logger = event_logger
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._lock_users: dict[tuple[str, str], int] = {}

    @property
    def event_logger(self) -> JSONLLogger:
        return self._event_logger or get_logger()

    @property
    def stages(self) -> list[tuple[str, Stage]]:
        """The pipeline in execution order. Every stage is critical."""
        deps = self.deps
        return [
            ("validate_input", validate_input),
            ("load_branches", lambda ctx: load_branches(ctx, deps.store)),
            ("classify_route", lambda ctx: classify_route(ctx, deps.classifier)),
            ("execute_route", lambda ctx: execute_route(ctx, deps)),
        ]

    def get_lock(self, tenant_id: str, conversation_id: str) -> asyncio.Lock:
        """Get the lock for a conversation."""
        key = (tenant_id, conversation_id)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    @contextlib.asynccontextmanager
    async def _conversation_lock(self, tenant_id: str, conversation_id: str):
        """Hold the conversation lock, dropping it once no request uses it."""
        key = (tenant_id, conversation_id)
        lock = self.get_lock(tenant_id, conversation_id)
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                self._locks.pop(key, None)

    def _initial_context(self, request: DriftInput) -> DriftContext:
        extract = request.extract_facts
        return DriftContext(
            conversation_id=request.conversation_id,
            content=request.content,
            role=request.role,
            tenant_id=request.tenant_id,
            current_branch_id=request.current_branch_id,
            extract_facts=self.config.extract_facts if extract is None else extract,
            policy=request.policy or self.config.policy(),
            routing_model=request.routing_model,
            request_id=uuid.uuid4().hex,
        )

    async def route(self, request: DriftInput) -> DriftResult:
        """Route one message and persist it.

        Raises:
            StageError: A stage failed; ``cause`` holds the original error.
            PipelineTimeoutError: The whole run exceeded ``pipeline_timeout``.
        """
        ctx = self._initial_context(request)
        start = time.monotonic()

        async with self._conversation_lock(ctx.tenant_id, ctx.conversation_id):
            try:
                ctx = await asyncio.wait_for(
                    self._run(ctx), timeout=self.config.pipeline_timeout
                )
            except asyncio.TimeoutError as e:
                duration_ms = (time.monotonic() - start) * 1000
                logger.error(
                    "Routing %s timed out after %.0fms", ctx.conversation_id, duration_ms
                )
                self.event_logger.log_stage_error(
                    ctx.conversation_id,
                    "pipeline",
                    "timeout",
                    list(ctx.reason_codes),
                    duration_ms=duration_ms,
                )
                raise PipelineTimeoutError(
                    f"Routing exceeded {self.config.pipeline_timeout}s"
                ) from e

        result = build_result(ctx)
        duration_ms = (time.monotonic() - start) * 1000
        logger.info(
            "Routed %s: %s -> %s (%s)",
            ctx.conversation_id,
            result.action.value,
            result.branch_id,
            ", ".join(result.reason_codes),
        )
        self.event_logger.log_route(
            ctx.conversation_id,
            result.action.value,
            result.branch_id,
            list(result.reason_codes),
            duration_ms=duration_ms,
            previous_branch_id=result.previous_branch_id,
            total_tokens=result.token_usage.total_tokens if result.token_usage else None,
        )
        return result

    async def _run(self, ctx: DriftContext) -> DriftContext:
        for name, stage in self.stages:
            stage_start = time.monotonic()
            try:
                ctx = await stage(ctx)
            except Exception as e:
                error = StageError(name, e, ctx.reason_codes)
                if isinstance(e, DriftError):
                    logger.warning(f"Stage {name} failed: {e}")
                else:
                    logger.exception(f"Stage {name} failed unexpectedly")
                self.event_logger.log_stage_error(
                    ctx.conversation_id,
                    name,
                    str(e),
                    list(ctx.reason_codes),
                    duration_ms=(time.monotonic() - stage_start) * 1000,
                )
                raise error from e
        return ctx
