"""
FastAPI Backend for the Constitution RAG System

Provides the chat turn endpoint plus conversation, message, search and health
endpoints. Every pipeline error is returned as HTTP 400 ``{"error": message}``.

Run with: uvicorn execution.constitution_rag.api:app --host 0.0.0.0 --port 8000
"""

import os
import asyncio
import logging
import threading
from typing import Optional

from fastapi import FastAPI, Depends, Header, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.concurrency import run_in_threadpool
from dotenv import load_dotenv

# Load environment variables before any module reads them
load_dotenv()

from . import __version__
from .api_models import (
    ChatRequest, ChatResponse, ErrorResponse,
    ConversationCreate, ConversationRename, ConversationEnvelope,
    ConversationListResponse, DeleteResponse,
    MessageListResponse,
    SearchRequest, SearchResponse,
    HealthResponse,
)
from .auth import SessionAuthenticator, UserIdentity
from .conversation_store import ConversationStore, generate_title
from .errors import ConstitutionRAGError, ValidationError
from .jurisdiction_config import JurisdictionConfig
from .metrics import MetricsCollector
from .vector_store import displayable_sources

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "GET, POST, PATCH, DELETE, OPTIONS",
}

DISCONNECT_POLL_SECONDS = 0.25


def cors_headers(response: Response) -> None:
    """Attach CORS headers to every response, with or without an Origin header."""
    response.headers.update(CORS_HEADERS)


app = FastAPI(
    title="Constitution RAG API",
    description="Question answering over constitutional text with cited sources",
    version=__version__,
    dependencies=[Depends(cors_headers)],
    responses={400: {"model": ErrorResponse}},
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)


# =============================================================================
# Error normalization
# =============================================================================

@app.exception_handler(ConstitutionRAGError)
async def pipeline_error_handler(request: Request, exc: ConstitutionRAGError):
    logger.info(f"{request.method} {request.url.path} failed: {type(exc).__name__}: {exc.message}")
    return JSONResponse(status_code=400, content={"error": exc.message}, headers=CORS_HEADERS)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(status_code=400, content={"error": message}, headers=CORS_HEADERS)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=400, content={"error": str(exc)}, headers=CORS_HEADERS)


# =============================================================================
# Service Container - one set of collaborators per process
# =============================================================================

class ServiceContainer:
    """Builds and caches the process-wide collaborators.

    Any component may be passed in explicitly; the rest are created lazily
    from environment configuration on first use.
    """

    def __init__(
        self,
        db=None,
        authenticator=None,
        embeddings=None,
        search=None,
        store=None,
        completion=None,
        metrics=None,
        jurisdiction=None,
    ):
        self._db = db
        self._authenticator = authenticator
        self._embeddings = embeddings
        self._search = search
        self._store = store
        self._completion = completion
        self._orchestrator = None
        self._lock = threading.Lock()
        self.metrics = metrics or MetricsCollector()
        self.jurisdiction = jurisdiction or JurisdictionConfig.from_env()

    def get_db(self):
        if self._db is None:
            from .db import Database
            self._db = Database()
            self._db.connect()
        return self._db

    def get_authenticator(self) -> SessionAuthenticator:
        if self._authenticator is None:
            self._authenticator = SessionAuthenticator()
        return self._authenticator

    def get_embeddings(self):
        if self._embeddings is None:
            from .embeddings import EmbeddingClient
            self._embeddings = EmbeddingClient()
        return self._embeddings

    def get_search(self):
        if self._search is None:
            from .vector_store import VectorSearchService
            self._search = VectorSearchService(self.get_db())
        return self._search

    def get_store(self) -> ConversationStore:
        if self._store is None:
            self._store = ConversationStore(self.get_db())
        return self._store

    def get_completion(self):
        if self._completion is None:
            from .completion import CompletionClient
            self._completion = CompletionClient()
        return self._completion

    def get_orchestrator(self):
        with self._lock:
            if self._orchestrator is None:
                from .context import ContextAssembler
                from .orchestrator import ChatOrchestrator
                self._orchestrator = ChatOrchestrator(
                    authenticator=self.get_authenticator(),
                    embeddings=self.get_embeddings(),
                    search=self.get_search(),
                    assembler=ContextAssembler(self.jurisdiction),
                    completion=self.get_completion(),
                    store=self.get_store(),
                    jurisdiction=self.jurisdiction,
                    metrics=self.metrics,
                )
        return self._orchestrator

    def check_database(self) -> bool:
        return self.get_db().ping()


_container = ServiceContainer()


def get_container() -> ServiceContainer:
    """FastAPI dependency returning the process container."""
    return _container


async def get_current_user(
    authorization: Optional[str] = Header(None),
    container: ServiceContainer = Depends(get_container),
) -> UserIdentity:
    """Resolve the bearer token; AuthError becomes a 400 response."""
    return container.get_authenticator().resolve(authorization)


# =============================================================================
# Endpoints
# =============================================================================

@app.options("/api/v1/{path:path}")
async def preflight(path: str):
    """CORS preflight for clients that send OPTIONS without CORS headers."""
    return PlainTextResponse("ok", headers=CORS_HEADERS)


@app.get("/api/v1/health", response_model=HealthResponse)
async def health_check(container: ServiceContainer = Depends(get_container)):
    """Health check endpoint."""
    try:
        db_status = "connected" if container.check_database() else "disconnected"
    except Exception as e:
        logger.warning(f"Health check: database disconnected: {e}")
        db_status = "disconnected"

    return HealthResponse(status="ok", version=__version__, database=db_status)


@app.get("/api/v1/metrics")
async def get_metrics(container: ServiceContainer = Depends(get_container)):
    """In-process turn metrics."""
    return container.metrics.get_metrics_dict()


async def _watch_disconnect(request: Request, cancelled: threading.Event) -> None:
    while not cancelled.is_set():
        if await request.is_disconnected():
            logger.info("Client disconnected, cancelling turn")
            cancelled.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


@app.post("/api/v1/chat", response_model=ChatResponse)
async def chat(
    body: ChatRequest,
    request: Request,
    authorization: Optional[str] = Header(None),
    container: ServiceContainer = Depends(get_container),
):
    """Run one RAG turn and persist the user/assistant pair."""
    orchestrator = container.get_orchestrator()
    cancelled = threading.Event()
    watcher = asyncio.create_task(_watch_disconnect(request, cancelled))
    try:
        result = await run_in_threadpool(
            orchestrator.handle_turn,
            body.conversation_id,
            body.message,
            authorization,
            body.client_nonce,
            cancelled.is_set,
        )
    finally:
        watcher.cancel()
    return result.to_dict()


@app.get("/api/v1/conversations", response_model=ConversationListResponse)
def list_conversations(
    user: UserIdentity = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
):
    """List the caller's conversations, most recently updated first."""
    conversations = container.get_store().list_conversations(user.user_id)
    return {"conversations": [c.to_dict() for c in conversations]}


@app.post("/api/v1/conversations", response_model=ConversationEnvelope, status_code=201)
def create_conversation(
    body: ConversationCreate,
    user: UserIdentity = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
):
    """Create a conversation; title falls back to the first message."""
    title = body.title
    if not title and body.first_message:
        title = generate_title(body.first_message)
    conversation = container.get_store().create_conversation(
        user.user_id, title=title, expires_at=body.expires_at,
    )
    return {"conversation": conversation.to_dict()}


@app.get("/api/v1/conversations/{conversation_id}", response_model=ConversationEnvelope)
def get_conversation(
    conversation_id: str,
    user: UserIdentity = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
):
    conversation = container.get_store().get_conversation(conversation_id, user.user_id)
    return {"conversation": conversation.to_dict()}


@app.patch("/api/v1/conversations/{conversation_id}", response_model=ConversationEnvelope)
def rename_conversation(
    conversation_id: str,
    body: ConversationRename,
    user: UserIdentity = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
):
    conversation = container.get_store().rename_conversation(
        conversation_id, user.user_id, body.title,
    )
    return {"conversation": conversation.to_dict()}


@app.delete("/api/v1/conversations/{conversation_id}", response_model=DeleteResponse)
def delete_conversation(
    conversation_id: str,
    user: UserIdentity = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
):
    """Delete a conversation and all of its messages."""
    container.get_store().delete_conversation(conversation_id, user.user_id)
    return {"success": True}


@app.get("/api/v1/conversations/{conversation_id}/messages", response_model=MessageListResponse)
def list_messages(
    conversation_id: str,
    user: UserIdentity = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
):
    """All messages of a conversation, oldest first."""
    messages = container.get_store().list_messages(conversation_id, user.user_id)
    return {"messages": [m.to_dict() for m in messages]}


@app.post("/api/v1/search", response_model=SearchResponse)
def search(
    body: SearchRequest,
    user: UserIdentity = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
):
    """Standalone semantic search. Unlike a chat turn, failures are reported."""
    if not body.query.strip():
        raise ValidationError("Query is required")
    country = body.country.strip().lower()
    if not country:
        raise ValidationError("country is required")
    vector = container.get_embeddings().embed(body.query)
    # Unknown countries match no corpus rows rather than falling back
    results = container.get_search().search(vector, country, body.match_count)
    if body.min_similarity > 0:
        results = displayable_sources(results, body.min_similarity)
    return {"results": [r.to_dict() for r in results]}


# CLI for local development
if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
