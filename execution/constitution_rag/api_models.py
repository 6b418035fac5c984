"""
Pydantic models for the Constitution RAG FastAPI backend.
"""

from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field


class SourceInfo(BaseModel):
    """A cited constitutional passage."""
    article_number: str
    article_text: str
    chapter_number: Optional[int] = None
    chapter_title: str = ""
    similarity: float = Field(..., ge=0.0, le=1.0)


# =========================================================================
# Chat turn
# =========================================================================

class ChatRequest(BaseModel):
    """Request body for one chat turn.

    Fields default to empty so that missing values surface as the pipeline's
    own validation error rather than a schema error.
    """
    conversation_id: str = ""
    message: str = ""
    client_nonce: Optional[str] = Field(None, max_length=128)


class ChatResponse(BaseModel):
    """Response body for a successful chat turn."""
    response: str
    sources: list[SourceInfo]
    user_message_id: str
    assistant_message_id: str
    created_at: str


class ErrorResponse(BaseModel):
    error: str


# =========================================================================
# Conversation models
# =========================================================================

class ConversationCreate(BaseModel):
    """Request body for creating a conversation.

    Without a title, one is derived from ``first_message`` if given.
    """
    title: Optional[str] = Field(None, max_length=500)
    first_message: Optional[str] = None
    expires_at: Optional[datetime] = None


class ConversationRename(BaseModel):
    """Request body for renaming a conversation."""
    title: str = Field(..., min_length=1, max_length=500)


class ConversationInfo(BaseModel):
    id: str
    user_id: str
    title: str
    expires_at: Optional[str] = None
    created_at: str
    updated_at: str


class ConversationEnvelope(BaseModel):
    conversation: ConversationInfo


class ConversationListResponse(BaseModel):
    conversations: list[ConversationInfo]


class DeleteResponse(BaseModel):
    success: bool


class MessageInfo(BaseModel):
    """A single message in a conversation."""
    id: str
    conversation_id: str
    role: str
    content: str
    sources: Optional[list[SourceInfo]] = None
    created_at: str


class MessageListResponse(BaseModel):
    messages: list[MessageInfo]


# =========================================================================
# Search / health
# =========================================================================

class SearchRequest(BaseModel):
    """Request body for standalone semantic search."""
    query: str = Field(..., min_length=1, max_length=2000)
    country: str = "ghana"
    match_count: int = Field(default=5, ge=1, le=50)
    min_similarity: float = Field(default=0.0, ge=0.0, le=1.0)


class SearchResponse(BaseModel):
    results: list[SourceInfo]


class HealthResponse(BaseModel):
    """Response body for health check."""
    status: str
    version: str
    database: str
