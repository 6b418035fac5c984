"""
Context assembly for answer generation.

Produces the ordered message list sent to the completion provider:

    1. system instructions + retrieved passages
    2. the last HISTORY_WINDOW prior messages, oldest first
    3. the new user message
"""

import logging
from typing import Optional

from .jurisdiction_config import JurisdictionConfig
from .prompts import render_system_prompt
from .vector_store import Source

logger = logging.getLogger(__name__)

# Older history is dropped from the generation context.
HISTORY_WINDOW = 10


def format_sources(sources: list[Source]) -> str:
    """Render retrieved passages as a grounding block ('' when none)."""
    if not sources:
        return ""

    context = "\n\nRelevant Constitutional Provisions:\n"
    for source in sources:
        context += (
            f"\n---\nArticle {source.article_number} "
            f"(Chapter {source.chapter_number}: {source.chapter_title}):\n"
            f"{source.article_text}\n"
        )
    return context


class ContextAssembler:
    """Builds the instruction sequence for the CompletionClient."""

    def __init__(
        self,
        jurisdiction: Optional[JurisdictionConfig] = None,
        history_window: int = HISTORY_WINDOW,
    ):
        self.jurisdiction = jurisdiction or JurisdictionConfig.from_env()
        self.history_window = history_window
        self._system_prompt = render_system_prompt(self.jurisdiction)

    def assemble(
        self,
        sources: list[Source],
        history: list,
        user_text: str,
    ) -> list[dict]:
        """
        Assemble the ordered messages for one turn.

        Args:
            sources: Retrieved passages (may be empty)
            history: Prior messages in ascending chronological order; anything
                with ``role`` and ``content`` attributes
            user_text: The new user message

        Returns:
            List of ``{"role", "content"}`` dicts
        """
        messages = [
            {"role": "system", "content": self._system_prompt + format_sources(sources)},
        ]

        window = history[-self.history_window:] if self.history_window > 0 else []
        if len(history) > len(window):
            logger.debug(f"Dropped {len(history) - len(window)} messages outside history window")
        for msg in window:
            messages.append({"role": msg.role, "content": msg.content})

        messages.append({"role": "user", "content": user_text})
        return messages
