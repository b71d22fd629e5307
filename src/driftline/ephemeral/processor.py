"""Replay the routing pipeline over a client-supplied message list.

Nothing is persisted. The caller sends the full message list plus the state
returned by the previous call; only messages from ``last_processed_index``
onward are classified. Message and branch ids are derived from the
conversation id and a running index, so ids returned by an earlier call stay
valid when the list grows.
"""

import copy
import logging
from collections.abc import Mapping, Sequence
from typing import Any

from ..config import DriftPolicy
from ..errors import InputValidationError
from ..facts.merge import merge_facts
from ..routing.classifier import classify_route
from ..routing.llm import RouteClassifier
from ..routing.stages import bound_summaries, validate_input
from ..routing.types import (
    BranchDecision,
    DriftContext,
    RecentMessage,
    RouteDecision,
)
from .state import EphemeralBranch, EphemeralMessage, EphemeralState, StateStore

logger = logging.getLogger(__name__)

DEFAULT_BRANCH_TOPIC = "New Conversation"


def message_id_for(conversation_id: str, index: int) -> str:
    return f"{conversation_id}-msg-{index}"


def branch_id_for(conversation_id: str, index: int) -> str:
    return f"{conversation_id}-branch-{index}"


def _topic_branch(state: EphemeralState) -> EphemeralBranch | None:
    """The current branch, or None while only a placeholder is current."""
    current = state.current_branch
    if current is None or current.placeholder:
        return None
    return current


def _open_branch(
    state: EphemeralState,
    topic: str,
    context: str | None = None,
    placeholder: bool = False,
) -> EphemeralBranch:
    parent = _topic_branch(state)
    branch = EphemeralBranch(
        id=branch_id_for(state.conversation_id, len(state.branches)),
        topic=topic,
        parent_id=parent.id if parent else None,
        depth=parent.depth + 1 if parent else 0,
        context=context,
        placeholder=placeholder,
    )
    state.branches.append(branch)
    return branch


def _build_context(
    state: EphemeralState,
    message: Any,
    index: int,
    message_id: str,
    extract_facts: bool,
    policy: DriftPolicy,
    routing_model: str | None,
) -> DriftContext:
    if not isinstance(message, Mapping):
        raise InputValidationError(f"messages[{index}] must be an object")
    role = message.get("role", "user")
    content = message.get("content", "")
    if not isinstance(role, str) or not isinstance(content, str):
        raise InputValidationError(f"messages[{index}] role and content must be strings")

    current = _topic_branch(state)
    placeholders = {b.id for b in state.branches if b.placeholder}
    summaries = [s for s in state.summaries() if s.id not in placeholders]
    recent: tuple[RecentMessage, ...] = ()
    if current is not None and policy.recent_messages > 0:
        same_role = state.branch_messages(current.id, role=role)
        recent = tuple(
            RecentMessage(role=m.role, content=m.content)
            for m in same_role[-policy.recent_messages:]
        )

    return DriftContext(
        conversation_id=state.conversation_id,
        content=content,
        role=role,
        current_branch_id=current.id if current else None,
        extract_facts=extract_facts,
        policy=policy,
        routing_model=routing_model,
        request_id=message_id,
        branches=bound_summaries(summaries, policy.max_branches_for_context),
        recent_messages=recent,
    )


async def process_ephemeral_conversation(
    messages: Sequence[Mapping[str, Any]],
    conversation_id: str,
    classifier: RouteClassifier,
    previous_state: EphemeralState | None = None,
    extract_facts: bool = False,
    policy: DriftPolicy | None = None,
    routing_model: str | None = None,
) -> EphemeralState:
    """Route every not-yet-processed message and return the new state.

    Args:
        messages: The full conversation so far, as ``{"role", "content"}`` dicts.
        conversation_id: Stable id used to derive message and branch ids.
        classifier: Route classifier collaborator.
        previous_state: State returned by the previous call, if any. It is
            not modified.
        extract_facts: Ask the classifier for branch context and facts.
        policy: Candidate bound and continuity window.
        routing_model: Classifier model override.

    Raises:
        InputValidationError: If the state belongs to another conversation,
            the message list shrank, or a message is invalid.
    """
    policy = policy or DriftPolicy()

    if previous_state is None:
        state = EphemeralState(conversation_id=conversation_id)
    else:
        if previous_state.conversation_id != conversation_id:
            raise InputValidationError("State belongs to a different conversation")
        if previous_state.last_processed_index > len(messages):
            raise InputValidationError(
                "Message list is shorter than the previously processed state"
            )
        state = copy.deepcopy(previous_state)

    start = state.last_processed_index
    logger.info(
        "Processing %d new messages for %s (start index %d)",
        len(messages) - start,
        conversation_id,
        start,
    )

    for index in range(start, len(messages)):
        message_id = message_id_for(conversation_id, index)
        ctx = _build_context(
            state,
            messages[index],
            index,
            message_id,
            extract_facts,
            policy,
            routing_model or state.routing_model,
        )
        ctx = await validate_input(ctx)

        if ctx.role == "assistant" and state.current_branch is None:
            # Assistant spoke first: give it a default branch to stay in
            branch = _open_branch(state, DEFAULT_BRANCH_TOPIC, placeholder=True)
            state.current_branch_id = branch.id
            ctx = ctx.advance("default_branch_created", current_branch_id=branch.id)

        ctx = await classify_route(ctx, classifier)
        classification = ctx.classification
        assert classification is not None
        decision = classification.decision

        if isinstance(decision, BranchDecision):
            branch = _open_branch(state, decision.topic, classification.branch_context)
        elif isinstance(decision, RouteDecision):
            target = state.get_branch(decision.target_branch_id)
            if target is None:
                raise InputValidationError(f"Branch not found: {decision.target_branch_id}")
            branch = target
        else:
            current = state.current_branch
            assert current is not None
            branch = current

        if classification.facts is not None:
            if classification.branch_context and not isinstance(decision, BranchDecision):
                branch.context = classification.branch_context
            merge_facts(branch.facts, classification.facts, message_id)

        branch.message_count += 1
        branch.last_active_index = index
        state.current_branch_id = branch.id
        state.messages.append(
            EphemeralMessage(
                id=message_id,
                role=ctx.role,
                content=ctx.content,
                branch_id=branch.id,
                branch_topic=branch.topic,
                action=classification.action.value,
                reason=classification.reason,
                confidence=classification.confidence,
                reason_codes=list(ctx.reason_codes),
            )
        )

        if classification.token_usage is not None:
            state.token_usage = state.token_usage + classification.token_usage
        if classification.model and not state.routing_model:
            state.routing_model = classification.model

    if not state.branches:
        branch = _open_branch(state, DEFAULT_BRANCH_TOPIC, placeholder=True)
        state.current_branch_id = branch.id
    elif state.current_branch is None:
        state.current_branch_id = state.branches[0].id

    state.last_processed_index = len(messages)
    return state


async def process_with_store(
    state_store: StateStore,
    messages: Sequence[Mapping[str, Any]],
    conversation_id: str,
    classifier: RouteClassifier,
    extract_facts: bool = False,
    policy: DriftPolicy | None = None,
    routing_model: str | None = None,
) -> EphemeralState:
    """Process a conversation whose state lives in ``state_store``.

    Holds the store's per-conversation lock across get, process and put.
    """
    async with state_store.lock(conversation_id):
        state = await process_ephemeral_conversation(
            messages,
            conversation_id,
            classifier,
            previous_state=state_store.get(conversation_id),
            extract_facts=extract_facts,
            policy=policy,
            routing_model=routing_model,
        )
        state_store.put(conversation_id, state)
    return state
