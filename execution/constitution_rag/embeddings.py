"""
Embedding Client for the Constitution RAG System

Turns a user question into a query vector through an OpenAI-compatible
embeddings endpoint (OpenRouter by default, serving
openai/text-embedding-3-small at 1536 dimensions).

Provider responses are validated against an explicit schema. Any non-success
status or shape mismatch raises UpstreamEmbeddingError; nothing is retried.
"""

import os
import logging
from typing import Optional
from dataclasses import dataclass

from openai import OpenAI, APIError, APIStatusError
from pydantic import BaseModel, Field, ValidationError as SchemaError

from .errors import UpstreamEmbeddingError, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingConfig:
    """Configuration for the embedding client."""
    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536
    base_url: str = "https://openrouter.ai/api/v1"
    api_key_env: str = "OPENROUTER_API_KEY"
    timeout: float = 30.0

    @classmethod
    def from_env(cls) -> "EmbeddingConfig":
        return cls(
            model=os.getenv("EMBEDDING_MODEL", cls.model),
            dimensions=int(os.getenv("EMBEDDING_DIMENSIONS", str(cls.dimensions))),
            base_url=os.getenv("EMBEDDING_BASE_URL", cls.base_url),
        )


class EmbeddingDatum(BaseModel):
    embedding: list[float] = Field(..., min_length=1)


class EmbeddingResponse(BaseModel):
    """Subset of the provider response the pipeline relies on."""
    data: list[EmbeddingDatum] = Field(..., min_length=1)


def _to_payload(response) -> dict:
    if hasattr(response, "model_dump"):
        return response.model_dump()
    return response


class EmbeddingClient:
    """
    Generates query embeddings for vector search.

    Usage:
        client = EmbeddingClient()
        vector = client.embed("What are the fundamental human rights?")
    """

    def __init__(self, config: Optional[EmbeddingConfig] = None, client=None):
        """
        Initialize the embedding client.

        Args:
            config: Optional configuration. Read from env if not provided.
            client: Optional pre-built OpenAI client (tests inject a mock).
        """
        self.config = config or EmbeddingConfig.from_env()
        self._client = client or self._init_client()

    def _init_client(self):
        api_key = os.getenv(self.config.api_key_env)
        if not api_key:
            logger.warning(
                f"{self.config.api_key_env} not found. Embeddings will fail. "
                "Set the environment variable in .env."
            )
        return OpenAI(
            base_url=self.config.base_url,
            api_key=api_key or "missing",
            timeout=self.config.timeout,
            max_retries=0,
        )

    def embed(self, text: str) -> list[float]:
        """
        Embed one piece of text.

        Args:
            text: Non-empty text to embed

        Returns:
            Embedding vector of ``config.dimensions`` floats

        Raises:
            ValidationError: if text is empty after trimming
            UpstreamEmbeddingError: on provider failure or malformed response
        """
        if not text or not text.strip():
            raise ValidationError("Text to embed must not be empty")

        try:
            response = self._client.embeddings.create(
                model=self.config.model,
                input=text,
            )
        except APIStatusError as e:
            logger.error(f"Embedding provider returned {e.status_code}: {e.message}")
            raise UpstreamEmbeddingError(
                f"Failed to generate embedding: {e.message}", status_code=e.status_code
            ) from e
        except APIError as e:
            logger.error(f"Embedding request failed: {e}")
            raise UpstreamEmbeddingError(f"Failed to generate embedding: {e}") from e

        try:
            parsed = EmbeddingResponse.model_validate(_to_payload(response))
        except SchemaError as e:
            logger.error(f"Unexpected embedding response shape: {e}")
            raise UpstreamEmbeddingError("Embedding provider returned an unexpected response") from e

        embedding = parsed.data[0].embedding
        if self.config.dimensions and len(embedding) != self.config.dimensions:
            raise UpstreamEmbeddingError(
                f"Embedding has {len(embedding)} dimensions, expected {self.config.dimensions}"
            )
        return embedding

    @property
    def dimensions(self) -> int:
        """Return embedding dimensions."""
        return self.config.dimensions
