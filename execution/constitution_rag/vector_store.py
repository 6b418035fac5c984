"""
Vector Search over the constitutional corpus (PostgreSQL + pgvector)

The corpus is pre-built: articles and their embeddings live in
``constitution_articles`` and are queried through the ``search_constitution``
SQL function, scoped to one jurisdiction.
"""

import os
import json
import logging
from typing import Optional
from dataclasses import dataclass, asdict

from .db import Database
from .errors import SearchError

logger = logging.getLogger(__name__)

# Presentation cutoff for "sources found"; the service itself never filters.
DEFAULT_DISPLAY_THRESHOLD = 0.3

DEFAULT_MATCH_COUNT = 5


@dataclass(frozen=True)
class Source:
    """A cited constitutional passage returned by vector search."""
    article_number: str
    article_text: str
    chapter_number: Optional[int]
    chapter_title: str
    similarity: float

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Source":
        chapter = data.get("chapter_number")
        return cls(
            article_number=str(data["article_number"]),
            article_text=data.get("article_text") or "",
            chapter_number=int(chapter) if chapter is not None else None,
            chapter_title=data.get("chapter_title") or "",
            similarity=_clamp_similarity(data.get("similarity", 0.0)),
        )


def _clamp_similarity(value) -> float:
    return max(0.0, min(1.0, float(value or 0.0)))


def sources_to_json(sources: list[Source]) -> Optional[str]:
    """Serialize sources for the messages.sources column."""
    if sources is None:
        return None
    return json.dumps([s.to_dict() for s in sources])


def sources_from_json(raw) -> Optional[list[Source]]:
    """Inverse of sources_to_json. Accepts a JSON string or decoded JSONB."""
    if raw is None:
        return None
    if isinstance(raw, (str, bytes)):
        raw = json.loads(raw)
    return [Source.from_dict(item) for item in raw]


def display_threshold() -> float:
    """Current SOURCE_DISPLAY_THRESHOLD, read at call time so .env values apply."""
    return float(os.getenv("SOURCE_DISPLAY_THRESHOLD", str(DEFAULT_DISPLAY_THRESHOLD)))


def displayable_sources(
    sources: list[Source],
    threshold: Optional[float] = None,
) -> list[Source]:
    """Sources strictly above the display threshold, in ranked order."""
    if threshold is None:
        threshold = display_threshold()
    return [s for s in sources if s.similarity > threshold]


@dataclass
class VectorSearchConfig:
    """Configuration for the corpus table and search function."""
    table_name: str = "constitution_articles"
    function_name: str = "search_constitution"
    embedding_dimensions: int = 1536


class VectorSearchService:
    """
    Semantic search over constitution articles.

    Features:
    - Cosine similarity via pgvector
    - Jurisdiction filter (one corpus per country)
    - Results ranked by similarity, highest first
    """

    def __init__(self, db: Database, config: Optional[VectorSearchConfig] = None):
        self.db = db
        self.config = config or VectorSearchConfig()

    def initialize_schema(self) -> None:
        """Create the corpus table, indexes and search function if missing."""
        table = self.config.table_name
        schema_sql = f"""
        CREATE EXTENSION IF NOT EXISTS vector;

        CREATE TABLE IF NOT EXISTS {table} (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            country TEXT NOT NULL,
            article_number TEXT NOT NULL,
            article_text TEXT NOT NULL,
            chapter_number INT,
            chapter_title TEXT,
            embedding VECTOR({self.config.embedding_dimensions}),
            created_at TIMESTAMPTZ DEFAULT NOW()
        );
        CREATE INDEX IF NOT EXISTS idx_{table}_country
            ON {table}(lower(country));
        CREATE INDEX IF NOT EXISTS idx_{table}_embedding
            ON {table} USING hnsw (embedding vector_cosine_ops);

        CREATE OR REPLACE FUNCTION {self.config.function_name}(
            query_embedding_str TEXT,
            match_count INT,
            filter_country TEXT
        )
        RETURNS TABLE (
            article_number TEXT,
            article_text TEXT,
            chapter_number INT,
            chapter_title TEXT,
            similarity FLOAT
        )
        LANGUAGE sql STABLE
        AS $$
            SELECT
                a.article_number,
                a.article_text,
                a.chapter_number,
                a.chapter_title,
                1 - (a.embedding <=> query_embedding_str::vector) AS similarity
            FROM {table} a
            WHERE lower(a.country) = lower(filter_country)
            ORDER BY a.embedding <=> query_embedding_str::vector
            LIMIT match_count;
        $$;
        """
        self.db.execute_script(schema_sql, "corpus schema")

    def search(
        self,
        query_vector: list[float],
        jurisdiction_filter: str,
        match_count: int = DEFAULT_MATCH_COUNT,
    ) -> list[Source]:
        """
        Return the top ``match_count`` passages for a query vector.

        Args:
            query_vector: Query embedding
            jurisdiction_filter: Country code of the corpus to search
            match_count: Maximum number of results

        Returns:
            Sources sorted by similarity, descending

        Raises:
            SearchError: if the search function cannot be executed
        """
        if match_count <= 0:
            return []

        sql = f"SELECT * FROM {self.config.function_name}(%s, %s, %s)"
        params = (json.dumps(query_vector), match_count, jurisdiction_filter)

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return cur.fetchall()

        try:
            rows = self.db.run(_op, "search_constitution")
        except Exception as e:
            raise SearchError(f"Search failed: {e}") from e

        try:
            sources = [Source.from_dict(dict(row)) for row in rows]
        except (KeyError, TypeError, ValueError) as e:
            raise SearchError(f"Search returned malformed rows: {e}") from e

        sources.sort(key=lambda s: s.similarity, reverse=True)
        return sources[:match_count]
