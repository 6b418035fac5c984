"""
Completion Client for answer generation.

Sends the assembled messages to an OpenAI-compatible chat completions endpoint
(Groq by default, llama-3.3-70b-versatile). The provider's error payload is
surfaced verbatim in UpstreamCompletionError; nothing is retried.
"""

import os
import logging
from typing import Optional
from dataclasses import dataclass

from openai import OpenAI, APIError, APIStatusError
from pydantic import BaseModel, Field, ValidationError as SchemaError

from .errors import UpstreamCompletionError

logger = logging.getLogger(__name__)


@dataclass
class CompletionConfig:
    """Configuration for the completion client."""
    model: str = "llama-3.3-70b-versatile"
    base_url: str = "https://api.groq.com/openai/v1"
    api_key_env: str = "GROQ_API_KEY"
    max_tokens: int = 2048
    temperature: float = 0.7
    timeout: float = 120.0

    @classmethod
    def from_env(cls) -> "CompletionConfig":
        return cls(
            model=os.getenv("COMPLETION_MODEL", cls.model),
            base_url=os.getenv("COMPLETION_BASE_URL", cls.base_url),
            max_tokens=int(os.getenv("COMPLETION_MAX_TOKENS", str(cls.max_tokens))),
            temperature=float(os.getenv("COMPLETION_TEMPERATURE", str(cls.temperature))),
        )


class CompletionMessage(BaseModel):
    content: str


class CompletionChoice(BaseModel):
    message: CompletionMessage


class CompletionResponse(BaseModel):
    """Subset of the provider response the pipeline relies on."""
    choices: list[CompletionChoice] = Field(..., min_length=1)


def _error_payload(e: APIStatusError) -> str:
    """Best-effort raw error body from the provider."""
    try:
        return e.response.text
    except Exception:
        return e.message


class CompletionClient:
    """Generates answers from an ordered message list."""

    def __init__(self, config: Optional[CompletionConfig] = None, client=None):
        """
        Args:
            config: Optional configuration. Read from env if not provided.
            client: Optional pre-built OpenAI client (tests inject a mock).
        """
        self.config = config or CompletionConfig.from_env()
        self._client = client or self._init_client()

    def _init_client(self):
        api_key = os.getenv(self.config.api_key_env)
        if not api_key:
            logger.warning(f"{self.config.api_key_env} not found. Completions will fail.")
        return OpenAI(
            base_url=self.config.base_url,
            api_key=api_key or "missing",
            timeout=self.config.timeout,
            max_retries=0,
        )

    def complete(
        self,
        messages: list[dict],
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> str:
        """
        Generate an answer.

        Args:
            messages: Ordered ``{"role", "content"}`` dicts
            max_tokens: Override for config.max_tokens
            temperature: Override for config.temperature

        Returns:
            The generated text

        Raises:
            UpstreamCompletionError: on provider failure or malformed response
        """
        try:
            response = self._client.chat.completions.create(
                model=self.config.model,
                messages=messages,
                max_tokens=max_tokens if max_tokens is not None else self.config.max_tokens,
                temperature=temperature if temperature is not None else self.config.temperature,
            )
        except APIStatusError as e:
            payload = _error_payload(e)
            logger.error(f"Completion provider returned {e.status_code}: {payload}")
            raise UpstreamCompletionError(
                f"Completion API error: {payload}", status_code=e.status_code
            ) from e
        except APIError as e:
            logger.error(f"Completion request failed: {type(e).__name__}: {e}")
            raise UpstreamCompletionError(f"Completion API error: {e}") from e

        payload = response.model_dump() if hasattr(response, "model_dump") else response
        try:
            parsed = CompletionResponse.model_validate(payload)
        except SchemaError as e:
            logger.error(f"Unexpected completion response shape: {e}")
            raise UpstreamCompletionError("Completion provider returned an unexpected response") from e

        return parsed.choices[0].message.content
