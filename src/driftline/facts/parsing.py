"""Parse fact arrays returned by the model."""

import logging
from typing import Any

from ..errors import MalformedResponseError
from .models import ExtractedFact, ExtractedValue

logger = logging.getLogger(__name__)


def _text_or_none(raw: Any) -> str | None:
    if raw is None:
        return None
    text = str(raw).strip()
    return text or None


def parse_facts(raw: Any, content: str = "") -> tuple[ExtractedFact, ...]:
    """Parse the ``facts`` array. Invalid items are skipped.

    Raises:
        MalformedResponseError: If ``facts`` is present but not a list.
    """
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise MalformedResponseError("facts must be a list", content)

    facts: list[ExtractedFact] = []
    for item in raw:
        fact = parse_fact(item)
        if fact is None:
            logger.warning(f"Skipping invalid fact item: {item}")
            continue
        facts.append(fact)
    return tuple(facts)


def parse_fact(item: Any) -> ExtractedFact | None:
    """Parse one ``{"key", "values", "isUpdate"}`` item, or None if unusable."""
    if not isinstance(item, dict):
        return None

    key = _text_or_none(item.get("key"))
    raw_values = item.get("values")
    if key is None or not isinstance(raw_values, list):
        return None

    is_update = item.get("isUpdate")
    values: list[ExtractedValue] = []
    for raw_value in raw_values:
        if not isinstance(raw_value, dict) or raw_value.get("value") is None:
            continue
        # Some models nest isUpdate inside the value object
        if is_update is None and "isUpdate" in raw_value:
            is_update = raw_value["isUpdate"]

        supersedes = raw_value.get("supersedes") or []
        if not isinstance(supersedes, list):
            supersedes = []

        confidence = raw_value.get("confidence", 1.0)
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            confidence = 1.0

        values.append(
            ExtractedValue(
                value=str(raw_value["value"]),
                confidence=float(confidence),
                supersedes=tuple(str(s) for s in supersedes),
            )
        )

    if not values:
        return None

    return ExtractedFact(key=key, values=tuple(values), is_update=bool(is_update))
