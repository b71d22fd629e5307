"""Embedding collaborators.

The router treats embeddings as opaque fixed-length vectors. ``Embedder`` is
the protocol the pipeline depends on; ``HttpEmbedder`` calls any
OpenAI-compatible ``/embeddings`` endpoint.
"""

from typing import Any, Protocol

import httpx

from .errors import ExternalCallError


class Embedder(Protocol):
    """Protocol for turning text into an embedding vector."""

    async def embed(self, text: str) -> list[float]:
        """Return the embedding vector for ``text``."""
        ...


class HttpEmbedder:
    """Embedder backed by an OpenAI-compatible embeddings endpoint.

    Example:
        embedder = HttpEmbedder(
            "https://api.openai.com/v1/embeddings",
            model="text-embedding-3-small",
            api_key="...",
        )
        vector = await embedder.embed("I want to plan a trip to Paris")
    """

    def __init__(
        self,
        url: str,
        model: str,
        api_key: str | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._url = url
        self._model = model
        self._api_key = api_key
        self._timeout = timeout

    @property
    def model(self) -> str:
        """Return the model being used."""
        return self._model

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def embed(self, text: str) -> list[float]:
        """Embed a single text.

        Raises:
            ExternalCallError: On transport errors, non-2xx responses, or
                a response without an embedding vector.
        """
        payload: dict[str, Any] = {"model": self._model, "input": text}

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._url, json=payload, headers=self._headers())
        except httpx.TimeoutException as e:
            raise ExternalCallError(f"Embedding request timed out after {self._timeout}s", e) from e
        except httpx.RequestError as e:
            raise ExternalCallError(f"Embedding request failed: {e}", e) from e

        if not response.is_success:
            raise ExternalCallError(f"Embedding request failed: HTTP {response.status_code}")

        try:
            vector = response.json()["data"][0]["embedding"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ExternalCallError("Embedding response has no vector", e) from e

        return [float(v) for v in vector]
