"""
PostgreSQL connection management.

A single Database is constructed per process (see api.ServiceContainer) and
handed to the stores that need it. Connections come from a thread-safe pool
and every row is returned as a dict.
"""

import os
import logging
from typing import Optional
from dataclasses import dataclass

import psycopg2
import psycopg2.pool
from psycopg2.extras import RealDictCursor

logger = logging.getLogger(__name__)


@dataclass
class DatabaseConfig:
    """Configuration for the connection pool."""
    connection_string: Optional[str] = None
    pool_min_connections: int = 1
    pool_max_connections: int = 10


class Database:
    """
    Pooled PostgreSQL access shared by the search service and conversation store.

    Operations are plain callables taking a connection. They run once: a
    failure rolls the connection back, returns it to the pool and re-raises.
    """

    def __init__(self, config: Optional[DatabaseConfig] = None):
        self.config = config or DatabaseConfig()
        self._pool = None
        self._connection_string = (
            self.config.connection_string or
            os.getenv("DATABASE_URL") or
            os.getenv("POSTGRES_URL") or
            "postgresql://localhost:5432/constitution_rag"
        )

    def connect(self) -> None:
        """Create the connection pool."""
        try:
            self._pool = psycopg2.pool.ThreadedConnectionPool(
                minconn=self.config.pool_min_connections,
                maxconn=self.config.pool_max_connections,
                dsn=self._connection_string,
                cursor_factory=RealDictCursor,
            )
            logger.info(
                f"Connection pool initialized (min={self.config.pool_min_connections}, "
                f"max={self.config.pool_max_connections})"
            )
        except Exception as e:
            logger.error(f"Database connection failed: {e}")
            raise

    def _get_connection(self):
        if self._pool is None:
            self.connect()
        return self._pool.getconn()

    def _release_connection(self, conn) -> None:
        if self._pool is not None and conn is not None:
            self._pool.putconn(conn)

    def _safe_rollback(self, conn) -> None:
        """Rollback a connection, ignoring errors if the connection is dead."""
        try:
            conn.rollback()
        except (psycopg2.InterfaceError, psycopg2.OperationalError):
            pass

    def run(self, operation, label: str = "db_operation"):
        """
        Execute ``operation(conn)`` on a pooled connection.

        Args:
            operation: Callable(conn) that performs the work and commits if needed.
            label: Human-readable name for logging.

        Returns:
            Whatever ``operation`` returns.
        """
        conn = self._get_connection()
        try:
            return operation(conn)
        except Exception as e:
            self._safe_rollback(conn)
            logger.debug(f"{label} failed: {e}")
            raise
        finally:
            self._release_connection(conn)

    def execute_script(self, sql: str, label: str = "script") -> None:
        """Run a DDL script in its own transaction."""
        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql)
            conn.commit()

        self.run(_op, label)
        logger.info(f"{label} applied")

    def ping(self) -> bool:
        """Return True if a trivial query succeeds."""
        def _op(conn):
            with conn.cursor() as cur:
                cur.execute("SELECT 1 AS ok")
                return cur.fetchone() is not None

        try:
            return self.run(_op, "ping")
        except Exception as e:
            logger.warning(f"Database ping failed: {e}")
            return False

    def close(self) -> None:
        """Close all pooled connections."""
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None
            logger.info("Connection pool closed")
