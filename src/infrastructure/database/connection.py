"""
Database Connection Manager.

Location: src/infrastructure/database/connection.py

Handles PostgreSQL connection pooling and configuration.
Supports both Docker and local environments.
"""

import logging
from typing import Optional
from contextlib import contextmanager
from psycopg2.extras import RealDictCursor
from psycopg2 import pool
import psycopg2

from src.config.settings import Settings, get_settings
from src.shared.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class DatabaseConnectionManager:
    """
    Manages PostgreSQL database connections with pooling.

    This class handles:
    - Connection pooling for better performance
    - Docker vs local environment detection
    - Per-statement timeouts, so a stuck query cannot hold a session request
    """

    def __init__(self, settings: Optional[Settings] = None):
        """
        Initialize database connection manager.

        Args:
            settings: Application settings (default: get_settings())
        """
        settings = settings or get_settings()
        self.min_connections = settings.db_min_connections
        self.max_connections = settings.db_max_connections
        self.statement_timeout_ms = settings.db_statement_timeout_ms
        self._pool: Optional[pool.SimpleConnectionPool] = None

        self.db_name = settings.db_name
        self.db_user = settings.db_user
        self.db_password = settings.db_pass
        self.db_port = settings.db_port
        self.db_host = settings.effective_db_host

        logger.info(
            f"Database config: host={self.db_host}, port={self.db_port}, "
            f"db={self.db_name}, docker={settings.docker}"
        )

    def initialize_pool(self) -> None:
        """
        Initialize connection pool.

        Raises:
            ConfigurationError: If required config is missing
        """
        if not all([self.db_name, self.db_user, self.db_password, self.db_host]):
            raise ConfigurationError(
                "Missing required database configuration. "
                "Check DB_NAME, DB_USER, DB_PASS, DB_HOST in .env"
            )

        try:
            self._pool = pool.SimpleConnectionPool(
                self.min_connections,
                self.max_connections,
                dbname=self.db_name,
                user=self.db_user,
                password=self.db_password,
                host=self.db_host,
                port=self.db_port,
                options=f"-c statement_timeout={self.statement_timeout_ms}",
            )
            logger.info(
                f"Connection pool initialized ({self.min_connections}-{self.max_connections} connections)"
            )
        except psycopg2.Error as e:
            logger.error(f"Failed to initialize connection pool: {e}")
            raise ConfigurationError(f"Database pool initialization failed: {e}") from e

    def close_pool(self) -> None:
        """Close all connections in the pool."""
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None
            logger.info("Database connection pool closed")

    @contextmanager
    def get_connection(self):
        """
        Get a connection from the pool (context manager).

        Yields:
            psycopg2 connection

        Raises:
            ConfigurationError: If pool not initialized
        """
        if self._pool is None:
            raise ConfigurationError(
                "Connection pool not initialized. Call initialize_pool() first."
            )

        conn = self._pool.getconn()
        try:
            yield conn
        finally:
            self._pool.putconn(conn)

    @contextmanager
    def get_cursor(self, cursor_factory=RealDictCursor):
        """
        Get a cursor from a pooled connection (context manager).

        Commits when the block exits cleanly and rolls back otherwise.

        Usage:
            with db_manager.get_cursor() as cursor:
                cursor.execute("SELECT * FROM draft_sessions WHERE id = %s", (record_id,))
                row = cursor.fetchone()

        Args:
            cursor_factory: Cursor factory (default: RealDictCursor for dict results)

        Yields:
            psycopg2 cursor
        """
        with self.get_connection() as conn:
            cursor = conn.cursor(cursor_factory=cursor_factory)
            try:
                yield cursor
                conn.commit()
            except Exception as e:
                conn.rollback()
                logger.error(f"Cursor operation failed: {e}")
                raise
            finally:
                cursor.close()

    def test_connection(self) -> bool:
        """
        Test database connectivity.

        Returns:
            True if connection successful, False otherwise
        """
        try:
            with self.get_cursor() as cursor:
                cursor.execute("SELECT 1")
                cursor.fetchone()
                logger.info("✓ Database connection test successful")
                return True
        except (psycopg2.Error, ConfigurationError) as e:
            logger.error(f"✗ Database connection test failed: {e}")
            return False


# ============================================================================
# Global instance (singleton pattern)
# ============================================================================

_db_manager: Optional[DatabaseConnectionManager] = None


def get_db_manager(settings: Optional[Settings] = None) -> DatabaseConnectionManager:
    """
    Get global database manager instance (singleton).

    Returns:
        DatabaseConnectionManager instance
    """
    global _db_manager

    if _db_manager is None:
        _db_manager = DatabaseConnectionManager(settings)
        _db_manager.initialize_pool()

    return _db_manager


def close_db_manager() -> None:
    """Close global database manager and connection pool."""
    global _db_manager

    if _db_manager is not None:
        _db_manager.close_pool()
        _db_manager = None
