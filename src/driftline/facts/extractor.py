"""Re-extract facts from a whole branch using an LLM."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from groq import APIError, AsyncGroq

from ..config import DEFAULT_EXTRACTION_MODEL
from ..errors import ExternalCallError, NotFoundError
from ..llm_output import load_json_object
from .merge import MergeStats, merge_facts
from .models import ExtractedFact, ExtractedValue

if TYPE_CHECKING:
    from ..store.base import DriftStore
    from ..store.models import Message

logger = logging.getLogger(__name__)

DEFAULT_MIN_CONFIDENCE = 0.5
FLAT_FACT_CONFIDENCE = 0.9

EXTRACTION_PROMPT = """Analyze this conversation branch and extract a short summary and key facts.

RULES:
1. branchContext: One sentence summarizing what has been established in this branch
2. ONE fact per concept - consolidate multiple mentions into a single fact
3. Use snake_case keys (e.g., "destination", "budget_range", "hotel_preference")
4. Confidence scoring:
   - 1.0 = explicitly stated in multiple messages
   - 0.9 = explicitly stated once
   - 0.7 = clearly implied
   - 0.5 = inferred
5. messageId: Include the message ID that mentions this fact, or null

EXTRACT:
- Decisions made
- Preferences stated
- Key entities (places, dates, people, amounts)
- Constraints or requirements

DO NOT extract:
- Questions without answers
- Trivial conversational elements

OUTPUT FORMAT (respond with ONLY this JSON, no other text):
{
  "branchContext": "one sentence summary",
  "facts": [
    {"key": "example_key", "value": "example value", "confidence": 0.9, "messageId": "msg_id_or_null"}
  ]
}

Conversation:
"""


@dataclass(frozen=True)
class RawFact:
    """One fact as returned by the extraction model."""

    key: str
    value: str
    confidence: float
    message_id: str | None = None


@dataclass
class ExtractionResult:
    """Outcome of re-extracting one branch."""

    branch_id: str
    facts: list[RawFact]
    stats: MergeStats
    branch_context: str | None = None

    @property
    def fact_count(self) -> int:
        return len(self.facts)


def parse_raw_fact(item: Any) -> RawFact | None:
    """Parse ``{"key", "value", ...}`` or the flat ``{"<key>": "<value>", ...}`` shape."""
    if not isinstance(item, dict):
        return None

    confidence = item.get("confidence", FLAT_FACT_CONFIDENCE)
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        confidence = FLAT_FACT_CONFIDENCE
    message_id = item.get("messageId")
    message_id = str(message_id) if message_id else None

    if item.get("key") and item.get("value") is not None:
        return RawFact(str(item["key"]), str(item["value"]), float(confidence), message_id)

    entries = [(k, v) for k, v in item.items() if k not in ("confidence", "messageId")]
    if entries:
        key, value = entries[0]
        return RawFact(str(key), str(value), float(confidence), message_id)
    return None


class BranchFactExtractor:
    """Re-extracts a branch's facts from its full message history.

    Runs when a conversation leaves a branch. The branch topic is never
    changed here; a non-empty ``branchContext`` replaces the stored context.
    """

    def __init__(
        self,
        llm_client: AsyncGroq,
        store: DriftStore,
        model: str = DEFAULT_EXTRACTION_MODEL,
        min_confidence: float = DEFAULT_MIN_CONFIDENCE,
        max_messages: int = 50,
    ) -> None:
        """Initialize the extractor.

        Args:
            llm_client: The Groq client for LLM calls.
            store: Store holding the branch, its messages and facts.
            model: The model to use for extraction.
            min_confidence: Facts below this confidence are dropped.
            max_messages: Most recent messages sent to the model.
        """
        self.client = llm_client
        self.store = store
        self.model = model
        self.min_confidence = min_confidence
        self.max_messages = max_messages

    def _format_conversation(self, messages: list[Message]) -> str:
        return "\n\n".join(f"[{m.id}] [{m.role.upper()}]: {m.content}" for m in messages)

    async def _call_model(self, prompt: str) -> str:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=1000,
                temperature=0.2,
                response_format={"type": "json_object"},
            )
        except APIError as e:
            raise ExternalCallError(f"Fact extraction failed: {e}", e) from e
        return response.choices[0].message.content or ""

    async def extract(self, branch_id: str) -> ExtractionResult:
        """Extract facts for a branch and merge them into its fact map.

        Raises:
            NotFoundError: If the branch does not exist.
            ExternalCallError: If the Groq API call fails.
            MalformedResponseError: If the model output is not a JSON object.
        """
        branch = self.store.get_branch(branch_id)
        if branch is None:
            raise NotFoundError(f"Branch not found: {branch_id}")

        messages = self.store.get_messages(branch_id, limit=self.max_messages)
        if not messages:
            return ExtractionResult(branch_id=branch_id, facts=[], stats=MergeStats())

        content = await self._call_model(EXTRACTION_PROMPT + self._format_conversation(messages))
        data = load_json_object(content)

        raw_facts = data.get("facts") or []
        if not isinstance(raw_facts, list):
            logger.warning("Extraction response has non-list facts for %s", branch_id)
            raw_facts = []

        facts: list[RawFact] = []
        for item in raw_facts:
            fact = parse_raw_fact(item)
            if fact is None:
                logger.warning(f"Could not parse fact, skipping: {item}")
                continue
            if fact.confidence >= self.min_confidence:
                facts.append(fact)

        message_ids = {m.id for m in messages}
        fallback_id = messages[-1].id
        fact_map = self.store.get_facts(branch_id)
        stats = MergeStats()
        for fact in facts:
            message_id = fact.message_id if fact.message_id in message_ids else fallback_id
            extracted = ExtractedFact(
                key=fact.key,
                values=(ExtractedValue(value=fact.value, confidence=fact.confidence),),
                is_update=fact.key in fact_map,
            )
            stats += merge_facts(fact_map, [extracted], message_id)

        if stats.changed:
            self.store.replace_facts(branch_id, fact_map)

        branch_context = data.get("branchContext")
        branch_context = str(branch_context).strip() if branch_context else None
        if branch_context:
            self.store.update_branch_context(branch_id, branch_context)

        logger.info(
            "Extracted %d facts for branch %s (%d added)",
            len(facts),
            branch_id,
            stats.values_added,
        )
        return ExtractionResult(
            branch_id=branch_id,
            facts=facts,
            stats=stats,
            branch_context=branch_context,
        )
