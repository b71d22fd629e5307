"""The classify-route stage."""

import logging
from dataclasses import replace

from .llm import RouteClassifier
from .parser import parse_response
from .prompt import build_prompt
from .types import BranchDecision, Classification, DriftContext, StayDecision

logger = logging.getLogger(__name__)

FIRST_MESSAGE_TOPIC_LENGTH = 100


async def classify_route(ctx: DriftContext, classifier: RouteClassifier) -> DriftContext:
    """Decide STAY, ROUTE or BRANCH for the message in ``ctx``.

    Assistant messages always stay in the current branch without calling
    the classifier. The first message of a conversation always branches.
    """
    if ctx.role == "assistant":
        classification = Classification(
            decision=StayDecision(),
            reason="Assistant messages stay in current branch",
            confidence=1.0,
        )
        return ctx.advance("assistant_auto_stay", classification=classification)

    current = ctx.current_summary
    others = ctx.other_summaries

    prompt = build_prompt(
        ctx.content,
        current,
        others,
        recent_messages=ctx.recent_messages,
        extract_facts=ctx.extract_facts,
    )
    response = await classifier.classify(
        prompt,
        extract_facts=ctx.extract_facts,
        model=ctx.routing_model,
    )
    classification = parse_response(
        response.content,
        others,
        current.id if current else None,
        extract_facts=ctx.extract_facts,
    )
    classification = replace(classification, token_usage=response.usage, model=response.model)
    codes = classification.guards

    if not others and (current is None or current.message_count == 0):
        suggested = (classification.raw_decision or {}).get("newBranchTopic")
        topic = str(suggested).strip() if suggested else ""
        topic = topic or ctx.content[:FIRST_MESSAGE_TOPIC_LENGTH]
        if not isinstance(classification.decision, BranchDecision):
            logger.info("Forcing BRANCH for first message of %s", ctx.conversation_id)
            codes += ("first_message_forced_branch",)
            classification = replace(
                classification,
                reason=classification.reason or "First message in conversation",
            )
        else:
            codes += ("classified_branch",)
        classification = replace(classification, decision=BranchDecision(topic=topic))
        return ctx.advance(*codes, classification=classification)

    codes += (f"classified_{classification.action.value.lower()}",)
    return ctx.advance(*codes, classification=classification)
