"""Pipeline stages for persisted routing.

Each stage takes the current ``DriftContext`` plus its collaborators and
returns a new context. Only ``execute_route`` writes to the store.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..embeddings import Embedder
from ..errors import InputValidationError, NotFoundError
from ..facts.merge import merge_facts
from ..store.base import DriftStore
from ..store.models import Branch
from .centroid import calculate_centroid
from .llm import RouteClassifier
from .types import (
    BranchDecision,
    BranchSummary,
    DriftContext,
    RecentMessage,
    RouteDecision,
    StayDecision,
)

if TYPE_CHECKING:
    from ..facts.worker import FactExtractionQueue

logger = logging.getLogger(__name__)

VALID_ROLES = ("user", "assistant")


@dataclass
class PipelineDeps:
    """Collaborators shared by the persisted pipeline stages."""

    store: DriftStore
    classifier: RouteClassifier
    embedder: Embedder | None = None
    extraction_queue: FactExtractionQueue | None = None


def bound_summaries(
    summaries: Sequence[BranchSummary], limit: int
) -> tuple[BranchSummary, ...]:
    """Keep the ``limit`` most recent summaries, never dropping the current one.

    ``summaries`` must already be ordered most recently updated first.
    """
    bounded = list(summaries[:limit])
    if not any(s.is_current for s in bounded):
        current = next((s for s in summaries if s.is_current), None)
        if current is not None:
            bounded = bounded[: limit - 1] + [current]
    return tuple(bounded)


async def validate_input(ctx: DriftContext) -> DriftContext:
    """Check required fields. Performs no I/O."""
    if not ctx.conversation_id or not ctx.conversation_id.strip():
        raise InputValidationError("conversationId is required")

    if not isinstance(ctx.content, str) or not ctx.content.strip():
        raise InputValidationError("content is required")

    if not isinstance(ctx.role, str) or ctx.role not in VALID_ROLES:
        raise InputValidationError('role must be "user" or "assistant"')

    if not ctx.tenant_id or not ctx.tenant_id.strip():
        raise InputValidationError("tenantId is required")

    return ctx.advance("input_valid")


async def load_branches(ctx: DriftContext, store: DriftStore) -> DriftContext:
    """Resolve the current branch and build the candidate summaries.

    The current branch is, in priority order: the explicit branch id from
    the caller, the conversation's last-active pointer, or the most recently
    updated branch.
    """
    branches = store.list_branches(ctx.tenant_id, ctx.conversation_id)

    if not branches:
        if ctx.current_branch_id:
            raise NotFoundError(f"Branch not found: {ctx.current_branch_id}")
        return ctx.advance("new_conversation")

    codes: list[str] = []
    by_id = {b.id: b for b in branches}
    current: Branch | None

    if ctx.current_branch_id:
        current = by_id.get(ctx.current_branch_id)
        if current is None:
            raise NotFoundError(f"Branch not found: {ctx.current_branch_id}")
    else:
        conversation = store.get_conversation(ctx.tenant_id, ctx.conversation_id)
        pointer = conversation.last_active_branch_id if conversation else None
        current = by_id.get(pointer) if pointer else None
        if pointer and current is None:
            logger.warning(
                "Last active branch %s of %s no longer exists, using most recent",
                pointer,
                ctx.conversation_id,
            )
            codes.append("stale_branch_pointer")
        if current is None:
            current = branches[0]

    summaries = [
        BranchSummary(
            id=b.id,
            topic=b.topic,
            message_count=b.message_count,
            is_current=b.id == current.id,
            context=b.context,
            fact_keys=tuple(store.fact_keys(b.id)),
        )
        for b in branches
    ]
    codes.append("branches_loaded")

    recent: tuple[RecentMessage, ...] = ()
    if ctx.policy.recent_messages > 0:
        recent = tuple(
            RecentMessage(role=m.role, content=m.content)
            for m in store.get_messages(
                current.id, limit=ctx.policy.recent_messages, role=ctx.role
            )
        )
        codes.append("recent_messages_loaded")

    return ctx.advance(
        *codes,
        current_branch=current,
        current_branch_id=current.id,
        branches=bound_summaries(summaries, ctx.policy.max_branches_for_context),
        recent_messages=recent,
    )


async def execute_route(ctx: DriftContext, deps: PipelineDeps) -> DriftContext:
    """Apply the classification: pick or create the branch, store the message.

    Leaving a branch (BRANCH, or ROUTE elsewhere) hands the old branch to the
    fact extraction queue without waiting for it.
    """
    classification = ctx.classification
    if classification is None:
        raise ValueError("No classification result")

    store = deps.store
    decision = classification.decision
    previous = ctx.current_branch
    codes: list[str] = []

    if isinstance(decision, StayDecision) and previous is None:
        raise InputValidationError("An assistant message cannot open a conversation")

    if isinstance(decision, RouteDecision):
        target = store.get_branch(decision.target_branch_id)
        if target is None or target.conversation_id != ctx.conversation_id:
            raise NotFoundError(f"Branch not found: {decision.target_branch_id}")

    embedding: list[float] | None = None
    if deps.embedder is not None:
        embedding = await deps.embedder.embed(ctx.content)
        codes.append("message_embedded")

    store.ensure_conversation(ctx.tenant_id, ctx.conversation_id)

    if isinstance(decision, BranchDecision):
        new_branch = store.create_branch(
            ctx.tenant_id,
            ctx.conversation_id,
            topic=decision.topic,
            parent_id=previous.id if previous else None,
            centroid=embedding,
            context=classification.branch_context,
        )
        branch_id = new_branch.id
        logger.info("Created branch %s (%r) in %s", branch_id, decision.topic, ctx.conversation_id)
        codes.append("branch_created")
    elif isinstance(decision, RouteDecision):
        branch_id = decision.target_branch_id
    else:
        assert previous is not None
        branch_id = previous.id

    if previous is not None and branch_id != previous.id:
        if deps.extraction_queue is not None:
            logger.info(
                "Triggering fact extraction for branch %s after %s",
                previous.id,
                classification.action.value,
            )
            deps.extraction_queue.enqueue(previous.id)
            codes.append("facts_extraction_triggered")

    message = store.create_message(
        ctx.tenant_id,
        ctx.conversation_id,
        branch_id,
        role=ctx.role,
        content=ctx.content,
        action=classification.action.value,
        reason=classification.reason,
        embedding=embedding,
    )
    store.set_last_active_branch(ctx.tenant_id, ctx.conversation_id, branch_id)

    if embedding is not None and not isinstance(decision, BranchDecision):
        branch = store.get_branch(branch_id)
        assert branch is not None
        store.update_centroid(
            branch_id, calculate_centroid(branch.centroid, embedding, branch.message_count)
        )
        codes.append("centroid_updated")

    if classification.facts is not None:
        if classification.branch_context and not isinstance(decision, BranchDecision):
            store.update_branch_context(branch_id, classification.branch_context)
        facts = store.get_facts(branch_id)
        stats = merge_facts(facts, classification.facts, message.id)
        if stats.changed:
            store.replace_facts(branch_id, facts)
            codes.append("facts_merged")

    branch = store.get_branch(branch_id)
    if branch is None:
        raise NotFoundError(f"Branch not found: {branch_id}")

    codes.append("message_created")
    return ctx.advance(
        *codes,
        embedding=tuple(embedding) if embedding is not None else None,
        message=message,
        branch=branch,
    )
