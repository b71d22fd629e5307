"""Prompt builder for the route classifier."""

from collections.abc import Sequence

from .types import BranchSummary, RecentMessage

ROUTER_PROMPT = """You are a conversation router. Decide where this message belongs.

Current topic: {current_topic}
{recent_block}
Other topics:
{other_topics}

New message: "{message}"

Decide:
- STAY: Message DIRECTLY continues discussing "{stay_topic}". Must be clearly on-topic.
- ROUTE: Message belongs to one of the numbered other topics (return ROUTE + targetIndex)
- BRANCH: Message introduces a NEW topic not covered by any topic (return BRANCH + newBranchTopic, 3-6 words)

GUIDELINES:
- STAY if the message continues, elaborates, or responds to "{stay_topic}"
- BRANCH only if the message is clearly unrelated to the current topic
- When the topic is ambiguous but plausibly connected, prefer STAY

Quick checks:
- Filler (Yes, Ok, Sure, Thanks) → STAY
- Direct responses, elaborations, follow-up questions → STAY
- Comparisons "[X] or [Y]?" about current topic → STAY
- Completely different subject matter, unrelated personal updates → BRANCH
- "Now X", "What about X" → likely BRANCH or ROUTE
- Focus on primary intent, ignore incidental mentions"""

ROUTING_FORMAT = """

Respond with ONLY this JSON:
{"decision": {"action": "STAY" | "ROUTE" | "BRANCH", "targetIndex": <topic number or null>, "newBranchTopic": <string or null>, "reason": "<short reason>", "confidence": <0.0-1.0>}}"""

FACTS_FORMAT = """

Respond with ONLY this JSON:
{"decision": {"action": "STAY" | "ROUTE" | "BRANCH", "targetIndex": <topic number or null>, "newBranchTopic": <string or null>, "reason": "<short reason>", "confidence": <0.0-1.0>},
 "branchContext": "<one sentence>",
 "facts": [{"key": "<snake_case>", "isUpdate": <bool>, "values": [{"value": "<text>", "confidence": <0.0-1.0>, "supersedes": ["<old value>"]}]}]}

FACTS:
- branchContext: One sentence summary of what's being discussed in the chosen topic
- Extract ONLY important facts: decisions, preferences, places/dates/amounts, constraints
- Use snake_case keys
- isUpdate: true if the fact key is listed in [Facts: ...] of the chosen topic, false for new
- Confidence: 1.0=definitive, 0.9=clear, 0.7=implied
- supersedes: Only for REPLACEMENTS not additions; use [] otherwise"""


def describe_branch(branch: BranchSummary) -> str:
    """One-line description of a branch: topic, context and fact keys."""
    text = branch.topic
    if branch.context:
        text += f" [Context: {branch.context}]"
    if branch.fact_keys:
        text += f" [Facts: {', '.join(branch.fact_keys)}]"
    return text


def build_prompt(
    message: str,
    current_branch: BranchSummary | None,
    other_branches: Sequence[BranchSummary],
    recent_messages: Sequence[RecentMessage] = (),
    extract_facts: bool = False,
) -> str:
    """Build the classification prompt.

    Args:
        message: The new message text.
        current_branch: Summary of the current branch, None for a new conversation.
        other_branches: Candidate branches, numbered from 1 in the prompt.
        recent_messages: Continuity window from the current branch, oldest first.
        extract_facts: Ask for branch context and facts as well.

    Returns:
        Complete prompt string.
    """
    if other_branches:
        other_topics = "\n".join(
            f"{i}. {describe_branch(b)}" for i, b in enumerate(other_branches, start=1)
        )
    else:
        other_topics = "None"

    recent_block = ""
    if recent_messages:
        lines = "\n".join(f"- {m.content}" for m in recent_messages)
        recent_block = f"Recent messages in current topic:\n{lines}\n"

    prompt = ROUTER_PROMPT.format(
        current_topic=(
            describe_branch(current_branch) if current_branch else "None (new conversation)"
        ),
        recent_block=recent_block,
        other_topics=other_topics,
        message=message,
        stay_topic=current_branch.topic if current_branch else "the current topic",
    )

    return prompt + (FACTS_FORMAT if extract_facts else ROUTING_FORMAT)
