"""Helpers for decoding JSON-mode model output."""

import json
from typing import Any

from .errors import MalformedResponseError


def strip_code_fence(content: str) -> str:
    """Remove a surrounding markdown code block, if any."""
    text = content.strip()
    if not text.startswith("```"):
        return text
    lines = [line for line in text.split("\n") if not line.strip().startswith("```")]
    return "\n".join(lines).strip()


def load_json_object(content: str) -> dict[str, Any]:
    """Decode model output into a JSON object.

    Raises:
        MalformedResponseError: If the content is not a JSON object.
    """
    try:
        data = json.loads(strip_code_fence(content))
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"Model output is not valid JSON: {e}", content) from e

    if not isinstance(data, dict):
        raise MalformedResponseError("Model output is not a JSON object", content)
    return data
