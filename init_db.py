"""
Initialize the Constitution RAG database.

Sets up:
- pgvector extension, corpus table and the search_constitution function
- conversations and messages tables

Safe to run multiple times.

Usage:
    python init_db.py
"""

import sys
import logging
from pathlib import Path
from dotenv import load_dotenv

# Ensure project root is on path
PROJECT_ROOT = Path(__file__).resolve().parent
sys.path.insert(0, str(PROJECT_ROOT))
load_dotenv()

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")
logger = logging.getLogger(__name__)


def main():
    from execution.constitution_rag.db import Database
    from execution.constitution_rag.vector_store import VectorSearchService
    from execution.constitution_rag.conversation_store import ConversationStore

    db = Database()
    db.connect()
    try:
        VectorSearchService(db).initialize_schema()
        ConversationStore(db).initialize_schema()
        logger.info("Database ready")
    finally:
        db.close()


if __name__ == "__main__":
    main()
