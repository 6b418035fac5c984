"""
Chat Orchestrator

Turns one user message into a grounded, persisted answer:

    validate -> authenticate -> authorize -> embed -> search (best effort)
    -> history -> assemble -> complete -> persist turn

Each call is independent; all durable state lives in the ConversationStore.
Upstream failures abort the turn before anything is written. A failed search
only degrades the turn to an answer without sources.

Known limitations kept on purpose:
- Without a client nonce, a retried request records a second pair.
- No row lock is taken, so concurrent turns on one conversation may read
  overlapping history.
"""

import logging
from typing import Callable, Optional
from datetime import datetime, timezone
from dataclasses import dataclass, field

from .auth import SessionAuthenticator
from .completion import CompletionClient
from .context import ContextAssembler, HISTORY_WINDOW
from .conversation_store import ConversationStore, TurnRecord
from .embeddings import EmbeddingClient
from .errors import SearchError, TurnCancelledError, ValidationError
from .jurisdiction_config import JurisdictionConfig
from .metrics import MetricsCollector
from .vector_store import (
    DEFAULT_MATCH_COUNT,
    Source,
    VectorSearchService,
    displayable_sources,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TurnResult:
    """Composite result of a successful turn."""
    answer_text: str
    user_message_id: str
    assistant_message_id: str
    created_at: datetime
    sources: list[Source] = field(default_factory=list)
    replayed: bool = False

    @classmethod
    def from_record(cls, record: TurnRecord) -> "TurnResult":
        return cls(
            answer_text=record.assistant_message.content,
            sources=record.sources,
            user_message_id=record.user_message.id,
            assistant_message_id=record.assistant_message.id,
            created_at=record.created_at,
            replayed=record.replayed,
        )

    def to_dict(self) -> dict:
        return {
            "response": self.answer_text,
            "sources": [s.to_dict() for s in self.sources],
            "user_message_id": self.user_message_id,
            "assistant_message_id": self.assistant_message_id,
            "created_at": self.created_at.isoformat(),
        }


class ChatOrchestrator:
    """
    Request-scoped controller for one chat turn.

    Collaborators are constructed once per process and passed in; the
    orchestrator itself holds no per-turn state between calls.
    """

    def __init__(
        self,
        authenticator: SessionAuthenticator,
        embeddings: EmbeddingClient,
        search: VectorSearchService,
        assembler: ContextAssembler,
        completion: CompletionClient,
        store: ConversationStore,
        jurisdiction: Optional[JurisdictionConfig] = None,
        metrics: Optional[MetricsCollector] = None,
        match_count: int = DEFAULT_MATCH_COUNT,
        history_window: int = HISTORY_WINDOW,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.authenticator = authenticator
        self.embeddings = embeddings
        self.search = search
        self.assembler = assembler
        self.completion = completion
        self.store = store
        self.jurisdiction = jurisdiction or JurisdictionConfig.from_env()
        self.metrics = metrics or MetricsCollector()
        self.match_count = match_count
        self.history_window = history_window
        self._clock = clock

    def handle_turn(
        self,
        conversation_id: str,
        user_text: str,
        auth_token: Optional[str],
        nonce: Optional[str] = None,
        is_cancelled: Optional[Callable[[], bool]] = None,
    ) -> TurnResult:
        """
        Run one complete turn.

        Args:
            conversation_id: Target conversation (must belong to the caller)
            user_text: The user's question
            auth_token: Authorization header value ("Bearer <token>")
            nonce: Optional client idempotency key for this turn
            is_cancelled: Optional callback; True aborts before the next
                upstream call

        Returns:
            TurnResult with the answer, sources and both message ids

        Raises:
            ValidationError, AuthError, NotFoundError,
            UpstreamEmbeddingError, UpstreamCompletionError, TurnCancelledError
        """
        if not conversation_id or not str(conversation_id).strip():
            raise ValidationError("conversation_id and message are required")
        if not user_text or not user_text.strip():
            raise ValidationError("conversation_id and message are required")

        user = self.authenticator.resolve(auth_token)
        conversation = self.store.get_conversation(conversation_id, user.user_id)

        with self.metrics.track_turn(conversation.id) as tracker:
            if nonce:
                existing = self.store.find_turn_by_nonce(conversation.id, nonce)
                if existing is not None:
                    logger.info(f"Replaying turn for nonce {nonce} in {conversation.id}")
                    tracker.set_replayed()
                    return TurnResult.from_record(existing)

            self._check_cancelled(is_cancelled, "embedding")
            query_vector = self.embeddings.embed(user_text)

            self._check_cancelled(is_cancelled, "search")
            sources, degraded = self._search(query_vector, conversation.id)
            tracker.set_sources(len(sources), degraded=degraded)

            history = self.store.fetch_history(conversation.id, self.history_window)
            messages = self.assembler.assemble(sources, history, user_text)

            self._check_cancelled(is_cancelled, "completion")
            answer = self.completion.complete(messages)

            record = self.store.record_turn(
                conversation.id,
                user_text,
                answer,
                sources,
                created_at=self._clock(),
                nonce=nonce,
            )

        shown = len(displayable_sources(record.sources))
        logger.info(
            f"Turn completed in {conversation.id}: {len(record.sources)} sources "
            f"({shown} displayable), {len(history)} history messages, "
            f"{tracker.turn.latency_ms:.0f}ms"
        )
        return TurnResult.from_record(record)

    def _search(self, query_vector: list[float], conversation_id: str) -> tuple[list[Source], bool]:
        """Best-effort retrieval; failures degrade to no sources."""
        try:
            return self.search.search(
                query_vector, self.jurisdiction.country, self.match_count
            ), False
        except SearchError as e:
            self.metrics.record_search_failure(conversation_id, e)
            return [], True

    def _check_cancelled(self, is_cancelled: Optional[Callable[[], bool]], stage: str) -> None:
        if is_cancelled is not None and is_cancelled():
            logger.info(f"Turn cancelled before {stage}")
            raise TurnCancelledError("Request cancelled")
