"""Parse and validate classifier output.

Structural problems (not JSON, not an object, unknown action, non-numeric
confidence) raise ``MalformedResponseError``: defaulting them would silently
misroute the conversation. Semantic slips are recovered locally:

1. BRANCH without a topic gets ``FALLBACK_TOPIC``.
2. ROUTE with a missing, non-numeric or out-of-range index becomes BRANCH.
3. ROUTE that resolves to the current branch becomes STAY.
"""

import logging
from collections.abc import Sequence
from typing import Any

from ..errors import MalformedResponseError
from ..facts.parsing import parse_facts
from ..llm_output import load_json_object
from .types import (
    FALLBACK_TOPIC,
    BranchDecision,
    BranchSummary,
    Classification,
    Decision,
    RouteAction,
    RouteDecision,
    StayDecision,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.5
DEFAULT_REASON = "Unknown"


def parse_target_index(raw: Any) -> int | None:
    """Return a route index as int, or None if it is not numeric."""
    if isinstance(raw, bool) or raw is None:
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float) and raw.is_integer():
        return int(raw)
    if isinstance(raw, str) and raw.strip().isdigit():
        return int(raw.strip())
    return None


def _parse_confidence(raw: Any, content: str) -> float:
    if raw is None:
        return DEFAULT_CONFIDENCE
    if isinstance(raw, bool):
        raise MalformedResponseError("confidence must be a number", content)
    try:
        value = float(raw)
    except (TypeError, ValueError) as e:
        raise MalformedResponseError("confidence must be a number", content) from e
    return min(max(value, 0.0), 1.0)


def _text_or_none(raw: Any) -> str | None:
    if raw is None:
        return None
    text = str(raw).strip()
    return text or None


def resolve_decision(
    action: RouteAction,
    target_index: int | None,
    topic: str | None,
    other_branches: Sequence[BranchSummary],
    current_branch_id: str | None,
) -> tuple[Decision, tuple[str, ...]]:
    """Apply the fallback rules and map a route index to a branch id.

    Returns:
        The decision variant and the guard reason codes that were applied.
    """
    guards: list[str] = []

    if action is RouteAction.ROUTE:
        if target_index is not None and 1 <= target_index <= len(other_branches):
            target_id = other_branches[target_index - 1].id
            if target_id == current_branch_id:
                guards.append("route_self_target")
                return StayDecision(), tuple(guards)
            return RouteDecision(target_branch_id=target_id), tuple(guards)

        logger.warning(
            "Route index %r is invalid for %d candidate branches, branching instead",
            target_index,
            len(other_branches),
        )
        guards.append("route_index_invalid")
        action = RouteAction.BRANCH

    if action is RouteAction.BRANCH:
        if not topic:
            guards.append("branch_topic_fallback")
            topic = FALLBACK_TOPIC
        return BranchDecision(topic=topic), tuple(guards)

    return StayDecision(), tuple(guards)


def parse_response(
    content: str,
    other_branches: Sequence[BranchSummary] = (),
    current_branch_id: str | None = None,
    extract_facts: bool = False,
) -> Classification:
    """Parse classifier output into a validated Classification.

    Accepts either ``{"decision": {...}, ...}`` or a flat decision object.

    Args:
        content: Raw classifier output.
        other_branches: The numbered candidate list shown in the prompt.
        current_branch_id: Id of the current branch, if any.
        extract_facts: Whether branch context and facts were requested.

    Raises:
        MalformedResponseError: If the output violates the response contract.
    """
    data = load_json_object(content)
    decision_data = data.get("decision", data)
    if not isinstance(decision_data, dict):
        raise MalformedResponseError("decision must be an object", content)

    raw_action = decision_data.get("action")
    try:
        action = RouteAction(str(raw_action).strip().upper())
    except ValueError as e:
        raise MalformedResponseError(f"Unknown action: {raw_action!r}", content) from e

    decision, guards = resolve_decision(
        action,
        parse_target_index(decision_data.get("targetIndex")),
        _text_or_none(decision_data.get("newBranchTopic")),
        other_branches,
        current_branch_id,
    )

    branch_context = None
    facts = None
    if extract_facts:
        branch_context = _text_or_none(data.get("branchContext"))
        facts = parse_facts(data.get("facts"), content)

    return Classification(
        decision=decision,
        reason=_text_or_none(decision_data.get("reason")) or DEFAULT_REASON,
        confidence=_parse_confidence(decision_data.get("confidence"), content),
        branch_context=branch_context,
        facts=facts,
        guards=guards,
        raw_decision=dict(decision_data),
    )
