"""Database connection management with connection pooling."""

import logging
import threading
from contextlib import contextmanager
from typing import Optional
import psycopg2
from psycopg2 import errors, pool
from psycopg2.extras import RealDictCursor, register_uuid

from concern_review.config import settings
from concern_review.exceptions import StoreTimeout

logger = logging.getLogger(__name__)

register_uuid()


class DatabaseConnection:
    """Manages database connection pool."""

    def __init__(
        self,
        database_url: Optional[str] = None,
        min_connections: Optional[int] = None,
        max_connections: Optional[int] = None,
        statement_timeout_ms: Optional[int] = None
    ):
        """
        Initialize database connection pool.

        Args:
            database_url: PostgreSQL connection string (defaults to config)
            min_connections: Minimum number of connections in pool
            max_connections: Maximum number of connections in pool
            statement_timeout_ms: Server side timeout applied to every statement
        """
        self.database_url = database_url or settings.DATABASE_URL
        self.min_connections = min_connections or settings.database.min_connections
        self.max_connections = max_connections or settings.database.pool_size
        self.statement_timeout_ms = (
            statement_timeout_ms
            if statement_timeout_ms is not None
            else settings.database.statement_timeout_ms
        )
        self._pool: Optional[pool.ThreadedConnectionPool] = None
        # cursor of the transaction() open in this thread, if any
        self._local = threading.local()

    def initialize(self):
        """Initialize the connection pool."""
        if self._pool is not None:
            logger.warning("Connection pool already initialized")
            return

        try:
            self._pool = pool.ThreadedConnectionPool(
                self.min_connections,
                self.max_connections,
                self.database_url,
                options=f"-c statement_timeout={self.statement_timeout_ms}"
            )
            logger.info(
                f"Database connection pool initialized "
                f"(min={self.min_connections}, max={self.max_connections})"
            )
        except Exception as e:
            logger.error(f"Failed to initialize connection pool: {e}")
            raise

    def close(self):
        """Close all connections in the pool."""
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None
            logger.info("Database connection pool closed")

    @contextmanager
    def get_connection(self):
        """
        Get a connection from the pool.

        Yields:
            Database connection with automatic return to pool
        """
        if self._pool is None:
            raise RuntimeError("Connection pool not initialized")

        conn = self._pool.getconn()
        try:
            yield conn
        finally:
            self._pool.putconn(conn)

    @contextmanager
    def get_cursor(self, dict_cursor: bool = True):
        """
        Get a cursor from a pooled connection.

        The block runs in one transaction: committed on exit, rolled back
        on any exception. A cancelled statement is reported as StoreTimeout.

        Args:
            dict_cursor: If True, return RealDictCursor for dict-like results

        Yields:
            Database cursor
        """
        active = getattr(self._local, "cursor", None)
        if active is not None:
            # joins the enclosing transaction(), which commits or rolls back
            yield active
            return

        with self.get_connection() as conn:
            cursor_factory = RealDictCursor if dict_cursor else None
            cursor = conn.cursor(cursor_factory=cursor_factory)
            try:
                yield cursor
                conn.commit()
            except errors.QueryCanceled as e:
                conn.rollback()
                raise StoreTimeout(
                    "Database statement timed out",
                    {"timeout_ms": self.statement_timeout_ms}
                ) from e
            except Exception:
                conn.rollback()
                raise
            finally:
                cursor.close()

    @contextmanager
    def transaction(self):
        """
        Run every repository call made by this thread inside the block in
        one transaction. Nested blocks join the outer one.
        """
        if getattr(self._local, "cursor", None) is not None:
            yield
            return

        with self.get_cursor() as cursor:
            self._local.cursor = cursor
            try:
                yield
            finally:
                self._local.cursor = None

    def health_check(self) -> bool:
        """Run a trivial query against the pool."""
        with self.get_cursor(dict_cursor=False) as cur:
            cur.execute("SELECT 1")
            return cur.fetchone()[0] == 1


# Global connection instance
_db_connection: Optional[DatabaseConnection] = None


def get_db_connection() -> DatabaseConnection:
    """
    Get the global database connection instance.

    Returns:
        DatabaseConnection instance
    """
    global _db_connection
    if _db_connection is None:
        _db_connection = DatabaseConnection()
        _db_connection.initialize()
    return _db_connection
