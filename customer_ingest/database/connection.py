"""
PostgreSQL connection pool shared by the consumer thread and the CLI tools.
"""

import os
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence

from psycopg2 import pool
from psycopg2.extras import execute_values

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Owns a psycopg2 ThreadedConnectionPool for one DATABASE_URL."""

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or os.getenv('DATABASE_URL')
        if not self.database_url:
            raise ValueError("DATABASE_URL environment variable is required")
        self.connection_pool: Optional[pool.ThreadedConnectionPool] = None

    @property
    def is_open(self) -> bool:
        return self.connection_pool is not None and not self.connection_pool.closed

    def initialize_pool(self, min_connections: int = 1, max_connections: int = 4) -> None:
        """Open the pool. Calling it on an open pool does nothing."""
        if self.is_open:
            return

        try:
            self.connection_pool = pool.ThreadedConnectionPool(
                minconn=min_connections,
                maxconn=max_connections,
                dsn=self.database_url
            )
        except Exception as e:
            logger.error(f"Could not open Postgres pool: {e}")
            raise

        logger.info(f"Postgres pool open ({min_connections}-{max_connections} connections)")

    @contextmanager
    def pooled_connection(self) -> Iterator[Any]:
        """Borrow a connection; roll back on error and always hand it back."""
        if not self.is_open:
            raise RuntimeError("Connection pool is not open. Call initialize_pool() first.")

        connection = self.connection_pool.getconn()
        try:
            yield connection
        except Exception:
            connection.rollback()
            raise
        finally:
            self.connection_pool.putconn(connection)

    def close_all_connections(self) -> None:
        if self.connection_pool is None:
            return

        try:
            self.connection_pool.closeall()
            logger.info("Postgres pool closed")
        except Exception as e:
            logger.error(f"Error closing Postgres pool: {e}")
        finally:
            self.connection_pool = None

    def execute_query(self, query: str, params: Optional[tuple] = None, fetch: bool = True):
        """Run one statement. Returns rows as dicts when fetching, else the rowcount."""
        try:
            with self.pooled_connection() as connection, connection.cursor() as cursor:
                cursor.execute(query, params)

                if not fetch:
                    connection.commit()
                    return cursor.rowcount

                if cursor.description is None:
                    return []
                columns = [desc[0] for desc in cursor.description]
                return [dict(zip(columns, row)) for row in cursor.fetchall()]
        except Exception as e:
            logger.error(f"Postgres query failed: {e}")
            raise

    def execute_many(self, query: str, data: Sequence[tuple], page_size: int = 1000) -> int:
        """Insert all rows in a single transaction with a multi-row VALUES list."""
        with self.pooled_connection() as connection, connection.cursor() as cursor:
            execute_values(cursor, query, data, page_size=page_size)
            connection.commit()
        return len(data)

    def health_check(self) -> bool:
        try:
            rows: List[Dict[str, Any]] = self.execute_query("SELECT 1 AS alive")
        except Exception as e:
            logger.error(f"Postgres health check failed: {e}")
            return False
        return bool(rows) and rows[0]['alive'] == 1
