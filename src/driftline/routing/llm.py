"""Route classifier clients.

``RouteClassifier`` is the protocol the pipeline depends on. The bundled
implementation wraps AsyncGroq, so the routing stages never depend on a
specific provider.
"""

from dataclasses import dataclass
from typing import Any, Protocol

from groq import APIError, AsyncGroq

from ..config import DEFAULT_ROUTING_MODEL
from ..errors import ExternalCallError
from .types import TokenUsage


@dataclass(frozen=True)
class ClassifierResponse:
    """Raw classifier output plus usage metadata."""

    content: str
    usage: TokenUsage
    model: str


class RouteClassifier(Protocol):
    """Protocol for the external text-classification call."""

    async def classify(
        self,
        prompt: str,
        extract_facts: bool = False,
        model: str | None = None,
    ) -> ClassifierResponse:
        """Send the decision request and return the raw structured output."""
        ...


class GroqRouteClassifier:
    """RouteClassifier implementation that wraps AsyncGroq.

    Example:
        from groq import AsyncGroq
        from driftline.routing import GroqRouteClassifier

        groq = AsyncGroq(api_key="...")
        classifier = GroqRouteClassifier(groq, model="llama-3.1-8b-instant")
        response = await classifier.classify(prompt)
    """

    def __init__(
        self,
        client: AsyncGroq,
        model: str = DEFAULT_ROUTING_MODEL,
        temperature: float = 0.1,
    ) -> None:
        """Initialize the Groq classifier wrapper.

        Args:
            client: The AsyncGroq client instance to wrap.
            model: Default model for routing decisions.
            temperature: Sampling temperature; low for stable routing.
        """
        self._client = client
        self._model = model
        self._temperature = temperature

    @property
    def model(self) -> str:
        """Return the default model."""
        return self._model

    async def classify(
        self,
        prompt: str,
        extract_facts: bool = False,
        model: str | None = None,
    ) -> ClassifierResponse:
        """Call the model in JSON mode.

        Routing-only requests get a smaller token budget than requests that
        also extract facts.

        Raises:
            ExternalCallError: If the Groq API call fails.
        """
        model_id = model or self._model
        request: dict[str, Any] = {
            "model": model_id,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": 1000 if extract_facts else 500,
            "temperature": self._temperature,
            "response_format": {"type": "json_object"},
        }

        try:
            response = await self._client.chat.completions.create(**request)
        except APIError as e:
            raise ExternalCallError(f"Route classification failed: {e}", e) from e

        usage = response.usage
        return ClassifierResponse(
            content=response.choices[0].message.content or "",
            usage=TokenUsage(
                input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                output_tokens=getattr(usage, "completion_tokens", 0) or 0,
                total_tokens=getattr(usage, "total_tokens", 0) or 0,
            ),
            model=model_id,
        )
