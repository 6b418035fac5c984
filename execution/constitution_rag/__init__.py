"""
Constitution RAG - grounded question answering over constitutional text

This package provides:
- Query embedding and pgvector search over a pre-built constitutional corpus
- Prompt assembly with retrieved articles and bounded conversation history
- Answer generation through an OpenAI-compatible completion provider
- Durable, user-owned conversation and message storage
- A FastAPI backend exposing the chat turn and conversation management

Run with: uvicorn execution.constitution_rag.api:app --host 0.0.0.0 --port 8000
"""

__version__ = "0.1.0"

from .embeddings import EmbeddingClient
from .vector_store import VectorSearchService, Source
from .context import ContextAssembler
from .completion import CompletionClient
from .conversation_store import ConversationStore
from .orchestrator import ChatOrchestrator, TurnResult
from .session_guard import IdleSessionGuard, SessionState

__all__ = [
    "EmbeddingClient",
    "VectorSearchService",
    "Source",
    "ContextAssembler",
    "CompletionClient",
    "ConversationStore",
    "ChatOrchestrator",
    "TurnResult",
    "IdleSessionGuard",
    "SessionState",
]
