"""
SQLite storage for local runs and tests.
"""

import os
import logging
import sqlite3
from typing import List, Dict, Any, Optional, Sequence
from contextlib import contextmanager

logger = logging.getLogger(__name__)

CLIENTES_SCHEMA = """
CREATE TABLE IF NOT EXISTS clientes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    nombre_completo TEXT NOT NULL CHECK (length(nombre_completo) <= 100),
    dni INTEGER NOT NULL,
    estado TEXT NOT NULL,
    fecha_ingreso DATE NOT NULL,
    es_pep INTEGER NOT NULL CHECK (es_pep IN (0, 1)),
    es_sujeto_obligado INTEGER CHECK (es_sujeto_obligado IN (0, 1)),
    fecha_creacion DATETIME NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_clientes_dni ON clientes(dni);
"""


class SQLiteManager:
    """Opens a short-lived connection per operation against one database file."""

    def __init__(self, db_path: str = None):
        self.db_path = db_path or os.getenv('SQLITE_DB_PATH', 'data/clientes.db')
        db_dir = os.path.dirname(self.db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

    @contextmanager
    def connection(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        except Exception as e:
            conn.rollback()
            logger.error(f"SQLite error on {self.db_path}: {e}")
            raise
        finally:
            conn.close()

    def initialize_schema(self) -> None:
        """Create the clientes table and its index if missing."""
        try:
            with self.connection() as conn:
                conn.executescript(CLIENTES_SCHEMA)
        except Exception as e:
            logger.error(f"Failed to initialize SQLite schema: {e}")
            raise
        logger.info(f"SQLite schema ready at {self.db_path}")

    def execute_query(self, query: str, params: Optional[tuple] = None, fetch: bool = True) -> List[Dict[str, Any]]:
        with self.connection() as conn:
            cursor = conn.execute(query, params or ())
            if not fetch:
                conn.commit()
                return cursor.rowcount
            return [dict(row) for row in cursor.fetchall()]

    def execute_many(self, query: str, data: Sequence[tuple]) -> int:
        """Insert all rows in a single transaction."""
        with self.connection() as conn:
            cursor = conn.executemany(query, data)
            conn.commit()
            return cursor.rowcount

    def health_check(self) -> bool:
        try:
            rows = self.execute_query("SELECT 1 AS alive")
        except Exception as e:
            logger.error(f"SQLite health check failed: {e}")
            return False
        return bool(rows) and rows[0]['alive'] == 1
