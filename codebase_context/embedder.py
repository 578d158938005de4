"""
Embedding client for an Ollama-compatible ``/api/embeddings`` endpoint.

Requests are deterministic (``temperature: 0``) and carry an explicit
timeout.  No retries are attempted here; failures surface as
:class:`EmbeddingUnavailable` and the caller decides what to abort.
"""

from __future__ import annotations

import logging
import math

import requests

from .config import Config
from .errors import EmbeddingUnavailable

logger = logging.getLogger(__name__)


class OllamaEmbedder:
    """
    Thin client around the provider's embeddings endpoint.

    Parameters
    ----------
    base_url:
        Provider root, e.g. ``http://localhost:11434``.  A full
        ``.../api/...`` URL is accepted and reduced to its root.
    model:
        Embedding model name.
    timeout:
        ``(connect, read)`` timeout in seconds applied to every request.
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        timeout: tuple[float, float] = (10.0, 120.0),
    ) -> None:
        if "/api/" in base_url:
            base_url = base_url.rsplit("/api/", 1)[0]
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: Config) -> "OllamaEmbedder":
        return cls(
            base_url=config.OLLAMA_BASE_URL,
            model=config.EMBEDDING_MODEL,
            timeout=config.timeout,
        )

    @property
    def url(self) -> str:
        return f"{self.base_url}/api/embeddings"

    def embed(self, text: str) -> list[float]:
        """
        Return the embedding vector for *text*.

        Raises
        ------
        EmbeddingUnavailable
            If the provider is unreachable, times out, answers with a
            non-success status, or returns an empty or all-zero vector.
        """
        payload = {
            "model": self.model,
            "prompt": text,
            "options": {"temperature": 0},
        }
        logger.debug("[embed] POST %s (%d chars, model=%s)", self.url, len(text), self.model)
        try:
            response = requests.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.Timeout as exc:
            raise EmbeddingUnavailable(f"Embedding request timed out: {exc}") from exc
        except requests.exceptions.RequestException as exc:
            raise EmbeddingUnavailable(f"Embedding request failed: {exc}") from exc
        except ValueError as exc:
            raise EmbeddingUnavailable(f"Embedding response is not JSON: {exc}") from exc

        vector = data.get("embedding") if isinstance(data, dict) else None
        if not vector or not isinstance(vector, list):
            raise EmbeddingUnavailable("Embedding response contained no vector")
        try:
            vector = [float(v) for v in vector]
        except (TypeError, ValueError) as exc:
            raise EmbeddingUnavailable(f"Embedding vector is not numeric: {exc}") from exc
        if not all(math.isfinite(v) for v in vector) or not any(vector):
            raise EmbeddingUnavailable("Embedding vector is degenerate (zero or non-finite)")
        return vector
