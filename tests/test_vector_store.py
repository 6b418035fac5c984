"""
Tests for execution/constitution_rag/vector_store.py

Covers: Source serialization, sources JSON helpers, displayable_sources
threshold, and VectorSearchService.search against a mocked Database.
"""

import json
from unittest.mock import MagicMock

import pytest


def _db_with_rows(rows):
    """Mock Database whose run() executes the operation on a mock connection."""
    conn = MagicMock()
    cur = conn.cursor.return_value.__enter__.return_value
    cur.fetchall.return_value = rows
    db = MagicMock()
    db.run.side_effect = lambda op, label="": op(conn)
    return db, cur


def _row(article, similarity, chapter=5):
    return {
        "article_number": article,
        "article_text": f"Text of article {article}",
        "chapter_number": chapter,
        "chapter_title": "Fundamental Human Rights and Freedoms",
        "similarity": similarity,
    }


# ---------------------------------------------------------------------------
# Source
# ---------------------------------------------------------------------------

class TestSource:

    def test_to_dict_and_back(self, sample_sources):
        from execution.constitution_rag.vector_store import Source
        src = sample_sources[0]
        assert Source.from_dict(src.to_dict()) == src

    def test_from_dict_coerces_types(self):
        from execution.constitution_rag.vector_store import Source
        src = Source.from_dict({
            "article_number": 12,
            "article_text": None,
            "chapter_number": "5",
            "chapter_title": None,
            "similarity": "0.5",
        })
        assert src.article_number == "12"
        assert src.article_text == ""
        assert src.chapter_number == 5
        assert src.chapter_title == ""
        assert src.similarity == 0.5

    def test_from_dict_missing_chapter(self):
        from execution.constitution_rag.vector_store import Source
        src = Source.from_dict({"article_number": "1", "article_text": "x", "similarity": 0.4})
        assert src.chapter_number is None

    @pytest.mark.parametrize("raw,expected", [(-0.2, 0.0), (1.3, 1.0), (0.42, 0.42)])
    def test_similarity_clamped(self, raw, expected):
        from execution.constitution_rag.vector_store import Source
        src = Source.from_dict({"article_number": "1", "article_text": "x", "similarity": raw})
        assert src.similarity == expected


# ---------------------------------------------------------------------------
# JSON helpers
# ---------------------------------------------------------------------------

class TestSourcesJson:

    def test_none_stays_none(self):
        from execution.constitution_rag.vector_store import sources_to_json, sources_from_json
        assert sources_to_json(None) is None
        assert sources_from_json(None) is None

    def test_empty_list_is_preserved(self):
        from execution.constitution_rag.vector_store import sources_to_json, sources_from_json
        encoded = sources_to_json([])
        assert encoded == "[]"
        assert sources_from_json(encoded) == []

    def test_round_trip_keeps_order_and_fields(self, sample_sources):
        from execution.constitution_rag.vector_store import sources_to_json, sources_from_json
        assert sources_from_json(sources_to_json(sample_sources)) == sample_sources

    def test_accepts_decoded_jsonb(self, sample_sources):
        from execution.constitution_rag.vector_store import sources_from_json
        decoded = [s.to_dict() for s in sample_sources]
        assert sources_from_json(decoded) == sample_sources


# ---------------------------------------------------------------------------
# displayable_sources
# ---------------------------------------------------------------------------

class TestDisplayableSources:

    def test_default_threshold_filters_low_scores(self, sample_sources):
        from execution.constitution_rag.vector_store import displayable_sources
        shown = displayable_sources(sample_sources)
        assert [s.article_number for s in shown] == ["12", "21"]

    def test_threshold_is_strict(self):
        from execution.constitution_rag.vector_store import Source, displayable_sources
        at_threshold = Source("1", "x", 1, "t", 0.3)
        assert displayable_sources([at_threshold], 0.3) == []

    def test_default_threshold_value(self, monkeypatch):
        from execution.constitution_rag.vector_store import DEFAULT_DISPLAY_THRESHOLD, display_threshold
        monkeypatch.delenv("SOURCE_DISPLAY_THRESHOLD", raising=False)
        assert DEFAULT_DISPLAY_THRESHOLD == 0.3
        assert display_threshold() == 0.3

    def test_threshold_read_from_environment_at_call_time(self, monkeypatch, sample_sources):
        from execution.constitution_rag.vector_store import displayable_sources
        monkeypatch.setenv("SOURCE_DISPLAY_THRESHOLD", "0.7")
        shown = displayable_sources(sample_sources)
        assert [s.article_number for s in shown] == ["12"]


# ---------------------------------------------------------------------------
# VectorSearchService.search
# ---------------------------------------------------------------------------

class TestVectorSearchService:

    def test_search_calls_sql_function(self):
        from execution.constitution_rag.vector_store import VectorSearchService

        db, cur = _db_with_rows([_row("12", 0.8)])
        service = VectorSearchService(db)
        vector = [0.1, 0.2, 0.3]
        results = service.search(vector, "ghana", 5)

        sql, params = cur.execute.call_args.args
        assert "search_constitution" in sql
        assert json.loads(params[0]) == vector
        assert params[1] == 5
        assert params[2] == "ghana"
        assert results[0].article_number == "12"

    def test_results_sorted_descending(self):
        from execution.constitution_rag.vector_store import VectorSearchService

        db, _ = _db_with_rows([_row("1", 0.4), _row("2", 0.9), _row("3", 0.6)])
        results = VectorSearchService(db).search([0.1], "ghana", 5)
        assert [r.article_number for r in results] == ["2", "3", "1"]
        sims = [r.similarity for r in results]
        assert sims == sorted(sims, reverse=True)

    def test_results_truncated_to_match_count(self):
        from execution.constitution_rag.vector_store import VectorSearchService

        db, _ = _db_with_rows([_row(str(i), i / 10) for i in range(1, 8)])
        results = VectorSearchService(db).search([0.1], "ghana", 3)
        assert len(results) == 3

    def test_empty_corpus_returns_empty_list(self):
        from execution.constitution_rag.vector_store import VectorSearchService

        db, _ = _db_with_rows([])
        assert VectorSearchService(db).search([0.1], "ghana", 5) == []

    @pytest.mark.parametrize("count", [0, -1])
    def test_non_positive_match_count_skips_query(self, count):
        from execution.constitution_rag.vector_store import VectorSearchService

        db, _ = _db_with_rows([_row("1", 0.9)])
        assert VectorSearchService(db).search([0.1], "ghana", count) == []
        db.run.assert_not_called()

    def test_database_failure_raises_search_error(self):
        from execution.constitution_rag.vector_store import VectorSearchService
        from execution.constitution_rag.errors import SearchError

        db = MagicMock()
        db.run.side_effect = RuntimeError("function search_constitution does not exist")
        with pytest.raises(SearchError, match="does not exist"):
            VectorSearchService(db).search([0.1], "ghana", 5)

    def test_malformed_rows_raise_search_error(self):
        from execution.constitution_rag.vector_store import VectorSearchService
        from execution.constitution_rag.errors import SearchError

        db, _ = _db_with_rows([{"similarity": 0.5}])
        with pytest.raises(SearchError, match="malformed"):
            VectorSearchService(db).search([0.1], "ghana", 5)

    def test_initialize_schema_creates_function(self):
        from execution.constitution_rag.vector_store import VectorSearchService

        db = MagicMock()
        VectorSearchService(db).initialize_schema()
        sql = db.execute_script.call_args.args[0]
        assert "CREATE EXTENSION IF NOT EXISTS vector" in sql
        assert "FUNCTION search_constitution" in sql
        assert "VECTOR(1536)" in sql
