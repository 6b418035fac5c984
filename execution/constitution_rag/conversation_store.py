"""
Conversation Store

Persists conversations and their messages in PostgreSQL. Every read and write
that names a conversation is scoped to the owning user; a conversation owned
by someone else is reported exactly like one that does not exist.

Messages are ordered by (created_at, seq). Both messages of a turn share the
turn timestamp, so seq breaks the tie and keeps the user message first.
"""

import uuid
import logging
from typing import Optional
from datetime import datetime, timezone
from dataclasses import dataclass

import psycopg2

from .db import Database
from .errors import NotFoundError, ValidationError
from .vector_store import Source, sources_to_json, sources_from_json

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New Chat"
TITLE_MAX_LENGTH = 50

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"


def generate_title(message: str, length: int = TITLE_MAX_LENGTH) -> str:
    """Derive a conversation title from the first user message."""
    cleaned = message.replace("\n", " ").strip()
    if len(cleaned) <= length:
        return cleaned
    return cleaned[:length].strip() + "..."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass
class Conversation:
    id: str
    user_id: str
    title: str
    created_at: datetime
    updated_at: datetime
    expires_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "expires_at": _iso(self.expires_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass
class Message:
    id: str
    conversation_id: str
    role: str
    content: str
    created_at: datetime
    sources: Optional[list[Source]] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "role": self.role,
            "content": self.content,
            "sources": [s.to_dict() for s in self.sources] if self.sources is not None else None,
            "created_at": _iso(self.created_at),
        }


@dataclass
class TurnRecord:
    """The persisted user/assistant pair of one turn."""
    user_message: Message
    assistant_message: Message
    replayed: bool = False

    @property
    def created_at(self) -> datetime:
        return self.user_message.created_at

    @property
    def sources(self) -> list[Source]:
        return self.assistant_message.sources or []


def _parse_id(value: str) -> str:
    """Normalize a UUID string; malformed ids are simply not found."""
    try:
        return str(uuid.UUID(str(value)))
    except (ValueError, TypeError, AttributeError):
        raise NotFoundError("Conversation not found")


def _row_to_conversation(row) -> Conversation:
    return Conversation(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        title=row["title"],
        expires_at=row.get("expires_at"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_message(row) -> Message:
    return Message(
        id=str(row["id"]),
        conversation_id=str(row["conversation_id"]),
        role=row["role"],
        content=row["content"],
        sources=sources_from_json(row.get("sources")),
        created_at=row["created_at"],
    )


CONVERSATION_COLUMNS = "id, user_id, title, expires_at, created_at, updated_at"
MESSAGE_COLUMNS = "id, conversation_id, role, content, sources, created_at"


class ConversationStore:
    """
    Conversation and message persistence.

    Usage:
        store = ConversationStore(db)
        conv = store.create_conversation(user_id, title="New Chat")
        store.record_turn(conv.id, "question", "answer", sources, now)
        store.list_messages(conv.id, user_id)
    """

    def __init__(self, db: Database, clock=_utcnow):
        """
        Args:
            db: Shared connection pool
            clock: Application clock for conversation timestamps; turns are
                stamped by the orchestrator from the same kind of clock
        """
        self.db = db
        self._clock = clock

    def initialize_schema(self) -> None:
        """Create conversations and messages tables if they don't exist."""
        schema_sql = """
        CREATE TABLE IF NOT EXISTS conversations (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL,
            title VARCHAR(500) DEFAULT 'New Chat',
            expires_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW()
        );
        CREATE INDEX IF NOT EXISTS idx_conversations_user
            ON conversations(user_id, updated_at DESC);

        -- Messages are removed explicitly before their conversation
        CREATE TABLE IF NOT EXISTS messages (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            seq BIGSERIAL,
            conversation_id UUID NOT NULL REFERENCES conversations(id),
            role VARCHAR(20) NOT NULL CHECK (role IN ('user', 'assistant')),
            content TEXT NOT NULL,
            sources JSONB,
            reply_to UUID REFERENCES messages(id),
            client_nonce VARCHAR(128),
            created_at TIMESTAMPTZ DEFAULT NOW()
        );
        CREATE INDEX IF NOT EXISTS idx_messages_conversation
            ON messages(conversation_id, created_at, seq);
        CREATE UNIQUE INDEX IF NOT EXISTS idx_messages_nonce
            ON messages(conversation_id, client_nonce)
            WHERE client_nonce IS NOT NULL;
        """
        self.db.execute_script(schema_sql, "conversation schema")

    # =========================================================================
    # Conversation CRUD
    # =========================================================================

    def create_conversation(
        self,
        user_id: str,
        title: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> Conversation:
        """Create a new conversation for a user."""
        now = self._clock()
        sql = f"""
        INSERT INTO conversations (user_id, title, expires_at, created_at, updated_at)
        VALUES (%s::uuid, %s, %s, %s, %s)
        RETURNING {CONVERSATION_COLUMNS}
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (user_id, title or DEFAULT_TITLE, expires_at, now, now))
                row = cur.fetchone()
            conn.commit()
            return _row_to_conversation(row)

        conversation = self.db.run(_op, "create_conversation")
        logger.info(f"Conversation {conversation.id} created for user {user_id}")
        return conversation

    def get_conversation(self, conversation_id: str, user_id: str) -> Conversation:
        """Fetch a conversation owned by user_id, else NotFoundError."""
        conversation_id = _parse_id(conversation_id)
        sql = f"""
        SELECT {CONVERSATION_COLUMNS}
        FROM conversations
        WHERE id = %s::uuid AND user_id = %s::uuid
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (conversation_id, user_id))
                return cur.fetchone()

        row = self.db.run(_op, "get_conversation")
        if not row:
            raise NotFoundError("Conversation not found")
        return _row_to_conversation(row)

    def list_conversations(self, user_id: str) -> list[Conversation]:
        """List all conversations for a user, most recently updated first."""
        sql = f"""
        SELECT {CONVERSATION_COLUMNS}
        FROM conversations
        WHERE user_id = %s::uuid
        ORDER BY updated_at DESC
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (user_id,))
                return cur.fetchall()

        return [_row_to_conversation(r) for r in self.db.run(_op, "list_conversations")]

    def rename_conversation(self, conversation_id: str, user_id: str, title: str) -> Conversation:
        """Rename a conversation (user-isolated). Also advances updated_at."""
        if not title or not title.strip():
            raise ValidationError("title is required")
        conversation_id = _parse_id(conversation_id)
        now = self._clock()
        sql = f"""
        UPDATE conversations SET title = %s, updated_at = GREATEST(updated_at, %s)
        WHERE id = %s::uuid AND user_id = %s::uuid
        RETURNING {CONVERSATION_COLUMNS}
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (title.strip(), now, conversation_id, user_id))
                row = cur.fetchone()
            conn.commit()
            return row

        row = self.db.run(_op, "rename_conversation")
        if not row:
            raise NotFoundError("Conversation not found")
        return _row_to_conversation(row)

    def delete_conversation(self, conversation_id: str, user_id: str) -> None:
        """
        Delete a conversation and its messages (user-isolated).

        Ownership is checked first; messages are deleted before the
        conversation row, all in one transaction.
        """
        conversation_id = _parse_id(conversation_id)

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT id FROM conversations WHERE id = %s::uuid AND user_id = %s::uuid",
                    (conversation_id, user_id),
                )
                if cur.fetchone() is None:
                    conn.rollback()
                    return None
                cur.execute(
                    "DELETE FROM messages WHERE conversation_id = %s::uuid",
                    (conversation_id,),
                )
                removed = cur.rowcount
                cur.execute(
                    "DELETE FROM conversations WHERE id = %s::uuid AND user_id = %s::uuid",
                    (conversation_id, user_id),
                )
            conn.commit()
            return removed

        removed = self.db.run(_op, "delete_conversation")
        if removed is None:
            raise NotFoundError("Conversation not found")
        logger.info(f"Conversation {conversation_id} deleted with {removed} messages")

    # =========================================================================
    # Messages
    # =========================================================================

    def list_messages(self, conversation_id: str, user_id: str) -> list[Message]:
        """All messages of an owned conversation, oldest first."""
        conversation = self.get_conversation(conversation_id, user_id)
        sql = f"""
        SELECT {MESSAGE_COLUMNS}
        FROM messages
        WHERE conversation_id = %s::uuid
        ORDER BY created_at ASC, seq ASC
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (conversation.id,))
                return cur.fetchall()

        return [_row_to_message(r) for r in self.db.run(_op, "list_messages")]

    def fetch_history(self, conversation_id: str, limit: int) -> list[Message]:
        """
        The most recent ``limit`` messages of a conversation, oldest first.

        Ownership must already have been checked by the caller.
        """
        if limit <= 0:
            return []
        conversation_id = _parse_id(conversation_id)
        sql = f"""
        SELECT {MESSAGE_COLUMNS}
        FROM messages
        WHERE conversation_id = %s::uuid
        ORDER BY created_at DESC, seq DESC
        LIMIT %s
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (conversation_id, limit))
                return cur.fetchall()

        rows = self.db.run(_op, "fetch_history")
        return [_row_to_message(r) for r in reversed(rows)]

    def find_turn_by_nonce(self, conversation_id: str, nonce: str) -> Optional[TurnRecord]:
        """Return the turn previously recorded under a client nonce, if any."""
        conversation_id = _parse_id(conversation_id)
        sql = f"""
        SELECT u.id AS user_id_, a.id AS assistant_id_
        FROM messages u
        JOIN messages a ON a.reply_to = u.id
        WHERE u.conversation_id = %s::uuid AND u.client_nonce = %s
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (conversation_id, nonce))
                ids = cur.fetchone()
                if ids is None:
                    return None
                cur.execute(
                    f"SELECT {MESSAGE_COLUMNS} FROM messages WHERE id IN (%s::uuid, %s::uuid) ORDER BY seq",
                    (str(ids["user_id_"]), str(ids["assistant_id_"])),
                )
                return cur.fetchall()

        rows = self.db.run(_op, "find_turn_by_nonce")
        if not rows or len(rows) != 2:
            return None
        user_msg, assistant_msg = (_row_to_message(r) for r in rows)
        return TurnRecord(user_message=user_msg, assistant_message=assistant_msg, replayed=True)

    def record_turn(
        self,
        conversation_id: str,
        user_text: str,
        answer_text: str,
        sources: list[Source],
        created_at: datetime,
        nonce: Optional[str] = None,
    ) -> TurnRecord:
        """
        Persist one turn atomically.

        Inserts the user message, the assistant message (with sources) and
        advances conversations.updated_at to ``created_at``, in one transaction.
        If another request already recorded the same nonce, that turn is
        returned instead.
        """
        conversation_id = _parse_id(conversation_id)
        insert_sql = f"""
        INSERT INTO messages (conversation_id, role, content, sources, reply_to, client_nonce, created_at)
        VALUES (%s::uuid, %s, %s, %s, %s, %s, %s)
        RETURNING {MESSAGE_COLUMNS}
        """
        touch_sql = """
        UPDATE conversations SET updated_at = GREATEST(updated_at, %s)
        WHERE id = %s::uuid
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(insert_sql, (
                    conversation_id, ROLE_USER, user_text, None, None, nonce, created_at,
                ))
                user_row = cur.fetchone()
                cur.execute(insert_sql, (
                    conversation_id, ROLE_ASSISTANT, answer_text,
                    sources_to_json(sources), str(user_row["id"]), None, created_at,
                ))
                assistant_row = cur.fetchone()
                cur.execute(touch_sql, (created_at, conversation_id))
            conn.commit()
            return TurnRecord(
                user_message=_row_to_message(user_row),
                assistant_message=_row_to_message(assistant_row),
            )

        try:
            return self.db.run(_op, "record_turn")
        except psycopg2.IntegrityError:
            if nonce is None:
                raise
            existing = self.find_turn_by_nonce(conversation_id, nonce)
            if existing is None:
                raise
            logger.info(f"Turn with nonce {nonce} already recorded in {conversation_id}")
            return existing
