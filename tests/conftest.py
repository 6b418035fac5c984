"""
Shared fixtures and test utilities for Constitution RAG tests.

Provides mock providers, an in-memory conversation store, and sample data so
that all tests can run without API keys, databases, or network access.
"""

import os
import sys
import uuid
import hashlib
import itertools
from pathlib import Path
from datetime import datetime, timezone, timedelta

import pytest
from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Path setup - ensure the execution package is importable
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

load_dotenv(PROJECT_ROOT / ".env")
os.environ.setdefault("JWT_SECRET", "test-secret-for-pytest")

from execution.constitution_rag.auth import SessionAuthenticator, UserIdentity
from execution.constitution_rag.conversation_store import (
    Conversation, Message, TurnRecord, DEFAULT_TITLE, ROLE_USER, ROLE_ASSISTANT,
)
from execution.constitution_rag.errors import NotFoundError, SearchError, ValidationError
from execution.constitution_rag.vector_store import Source


ALICE = UserIdentity(user_id="11111111-1111-1111-1111-111111111111", email="alice@example.com", name="Alice")
BOB = UserIdentity(user_id="22222222-2222-2222-2222-222222222222", email="bob@example.com", name="Bob")

ALICE_TOKEN = "token-alice"
BOB_TOKEN = "token-bob"
TOKENS = {ALICE_TOKEN: ALICE, BOB_TOKEN: BOB}

TURN_TIME = datetime(2024, 3, 6, 12, 0, 0, tzinfo=timezone.utc)


def bearer(token: str) -> str:
    return f"Bearer {token}"


# ---------------------------------------------------------------------------
# Sample constitutional passages
# ---------------------------------------------------------------------------

SAMPLE_SOURCES = [
    Source(
        article_number="12",
        article_text="The fundamental human rights and freedoms enshrined in this Chapter "
                     "shall be respected and upheld by the Executive, Legislature and Judiciary.",
        chapter_number=5,
        chapter_title="Fundamental Human Rights and Freedoms",
        similarity=0.82,
    ),
    Source(
        article_number="21",
        article_text="All persons shall have the right to freedom of speech and expression, "
                     "which shall include freedom of the press and other media.",
        chapter_number=5,
        chapter_title="Fundamental Human Rights and Freedoms",
        similarity=0.61,
    ),
    Source(
        article_number="63",
        article_text="There shall be a President of the Republic of Ghana who shall be elected "
                     "in accordance with the provisions of this Constitution.",
        chapter_number=8,
        chapter_title="The Executive",
        similarity=0.24,
    ),
]


@pytest.fixture
def sample_sources():
    return list(SAMPLE_SOURCES)


# ---------------------------------------------------------------------------
# Mock providers
# ---------------------------------------------------------------------------

class MockEmbeddingClient:
    """Deterministic mock embedding client -- never calls external APIs."""

    def __init__(self, dimensions=1536, error=None):
        self._dimensions = dimensions
        self.error = error
        self.calls = []

    def embed(self, text):
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        h = hashlib.sha256(text.encode()).hexdigest()
        seed = int(h[:8], 16)
        return [((seed + i) % 1000) / 1000.0 for i in range(self._dimensions)]

    @property
    def dimensions(self):
        return self._dimensions


class MockSearchService:
    """Returns preset sources, or raises a preset error."""

    def __init__(self, sources=None, error=None):
        self.sources = list(sources or [])
        self.error = error
        self.calls = []

    def search(self, query_vector, jurisdiction_filter, match_count=5):
        self.calls.append((query_vector, jurisdiction_filter, match_count))
        if self.error is not None:
            raise self.error
        return self.sources[:match_count]


class MockCompletionClient:
    """Records prompts and returns a canned answer."""

    def __init__(self, answer="Article 12 guarantees fundamental rights.", error=None):
        self.answer = answer
        self.error = error
        self.calls = []

    def complete(self, messages, max_tokens=None, temperature=None):
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        return self.answer


# ---------------------------------------------------------------------------
# In-memory conversation store (no database needed)
# ---------------------------------------------------------------------------

class InMemoryConversationStore:
    """In-memory stand-in for ConversationStore with the same contract."""

    def __init__(self):
        self.conversations = {}
        self.messages = []
        self.nonces = {}
        self.operations = []
        self.fail_record_turn = None
        self._seq = itertools.count(1)
        self._clock = itertools.count()

    def _now(self):
        return TURN_TIME - timedelta(days=1) + timedelta(seconds=next(self._clock))

    def _owned(self, conversation_id, user_id):
        conv = self.conversations.get(str(conversation_id))
        if conv is None or conv.user_id != user_id:
            raise NotFoundError("Conversation not found")
        return conv

    def _sorted(self, conversation_id):
        rows = [m for m in self.messages if m[1].conversation_id == conversation_id]
        rows.sort(key=lambda m: (m[1].created_at, m[0]))
        return [m[1] for m in rows]

    def create_conversation(self, user_id, title=None, expires_at=None):
        now = self._now()
        conv = Conversation(
            id=str(uuid.uuid4()), user_id=user_id, title=title or DEFAULT_TITLE,
            expires_at=expires_at, created_at=now, updated_at=now,
        )
        self.conversations[conv.id] = conv
        return conv

    def get_conversation(self, conversation_id, user_id):
        return self._owned(conversation_id, user_id)

    def list_conversations(self, user_id):
        convs = [c for c in self.conversations.values() if c.user_id == user_id]
        return sorted(convs, key=lambda c: c.updated_at, reverse=True)

    def rename_conversation(self, conversation_id, user_id, title):
        if not title or not title.strip():
            raise ValidationError("title is required")
        conv = self._owned(conversation_id, user_id)
        conv.title = title.strip()
        conv.updated_at = max(conv.updated_at, self._now())
        return conv

    def delete_conversation(self, conversation_id, user_id):
        conv = self._owned(conversation_id, user_id)
        self.operations.append(("delete_messages", conv.id))
        self.messages = [m for m in self.messages if m[1].conversation_id != conv.id]
        self.operations.append(("delete_conversation", conv.id))
        del self.conversations[conv.id]

    def list_messages(self, conversation_id, user_id):
        conv = self._owned(conversation_id, user_id)
        return self._sorted(conv.id)

    def fetch_history(self, conversation_id, limit):
        if limit <= 0:
            return []
        return self._sorted(conversation_id)[-limit:]

    def add_message(self, conversation_id, role, content, created_at, sources=None):
        msg = Message(
            id=str(uuid.uuid4()), conversation_id=conversation_id, role=role,
            content=content, sources=sources, created_at=created_at,
        )
        self.messages.append((next(self._seq), msg))
        return msg

    def find_turn_by_nonce(self, conversation_id, nonce):
        pair = self.nonces.get((conversation_id, nonce))
        if pair is None:
            return None
        return TurnRecord(user_message=pair[0], assistant_message=pair[1], replayed=True)

    def record_turn(self, conversation_id, user_text, answer_text, sources, created_at, nonce=None):
        if self.fail_record_turn is not None:
            raise self.fail_record_turn
        user_msg = self.add_message(conversation_id, ROLE_USER, user_text, created_at)
        assistant_msg = self.add_message(
            conversation_id, ROLE_ASSISTANT, answer_text, created_at, sources=list(sources),
        )
        conv = self.conversations[conversation_id]
        conv.updated_at = max(conv.updated_at, created_at)
        if nonce:
            self.nonces[(conversation_id, nonce)] = (user_msg, assistant_msg)
        return TurnRecord(user_message=user_msg, assistant_message=assistant_msg)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def authenticator():
    return SessionAuthenticator(verifier=TOKENS.get)


@pytest.fixture
def memory_store():
    return InMemoryConversationStore()


@pytest.fixture
def alice_conversation(memory_store):
    return memory_store.create_conversation(ALICE.user_id, title="Rights")


@pytest.fixture
def mock_embeddings():
    return MockEmbeddingClient()


@pytest.fixture
def mock_search(sample_sources):
    return MockSearchService(sources=sample_sources)


@pytest.fixture
def mock_completion():
    return MockCompletionClient()


@pytest.fixture
def orchestrator(authenticator, mock_embeddings, mock_search, mock_completion, memory_store):
    from execution.constitution_rag.context import ContextAssembler
    from execution.constitution_rag.jurisdiction_config import JurisdictionConfig
    from execution.constitution_rag.metrics import MetricsCollector
    from execution.constitution_rag.orchestrator import ChatOrchestrator

    jurisdiction = JurisdictionConfig.for_country("ghana")
    return ChatOrchestrator(
        authenticator=authenticator,
        embeddings=mock_embeddings,
        search=mock_search,
        assembler=ContextAssembler(jurisdiction),
        completion=mock_completion,
        store=memory_store,
        jurisdiction=jurisdiction,
        metrics=MetricsCollector(),
        clock=lambda: TURN_TIME,
    )


@pytest.fixture
def search_error():
    return SearchError("Search failed: relation does not exist")
