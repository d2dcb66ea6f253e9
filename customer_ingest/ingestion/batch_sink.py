"""
Batch sinks that persist customer batches.

A sink is constructed explicitly, opened once by the process entry point,
passed to the pipeline, and closed by its owner. `deliver` is called from a
single consumer thread, so at most one bulk operation is outstanding.
"""

import logging
import sqlite3
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from psycopg2 import Error as PostgresError

from customer_ingest.database.connection import DatabaseManager
from customer_ingest.database.sqlite_connection import SQLiteManager
from customer_ingest.exceptions import BatchDeliveryError, SinkUnavailableError
from customer_ingest.ingestion.batcher import Batch
from customer_ingest.ingestion.record_parser import CustomerRecord

logger = logging.getLogger(__name__)

CLIENTES_COLUMNS = (
    'nombre_completo', 'dni', 'estado', 'fecha_ingreso',
    'es_pep', 'es_sujeto_obligado', 'fecha_creacion'
)


class BatchSink(ABC):
    """Capability that durably persists one batch at a time."""

    name = 'batch sink'

    @abstractmethod
    def open(self) -> None:
        """Make the sink ready to accept batches. Raises if it cannot."""

    @abstractmethod
    def close(self) -> None:
        """Release the sink's resources. Safe to call more than once."""

    @abstractmethod
    def deliver(self, batch: Batch) -> None:
        """Persist a batch.

        Raises:
            BatchDeliveryError: this batch could not be stored.
            SinkUnavailableError: the sink is gone and no later batch can succeed.
        """

    def health_check(self) -> bool:
        return True

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class PostgresBatchSink(BatchSink):
    """Bulk-inserts batches into the Postgres `clientes` table."""

    name = 'postgres sink'

    INSERT_QUERY = f"INSERT INTO clientes ({', '.join(CLIENTES_COLUMNS)}) VALUES %s"

    def __init__(self, db_manager: DatabaseManager, max_connections: int = 2):
        self.db = db_manager
        self.max_connections = max_connections

    def open(self) -> None:
        self.db.initialize_pool(min_connections=1, max_connections=self.max_connections)
        if not self.db.health_check():
            self.db.close_all_connections()
            raise SinkUnavailableError("Postgres health check failed after opening the pool")

    def close(self) -> None:
        self.db.close_all_connections()

    def deliver(self, batch: Batch) -> None:
        if not self.db.is_open:
            raise SinkUnavailableError("Postgres sink is not open")

        rows = [self._to_row(record) for record in batch]

        try:
            self.db.execute_many(self.INSERT_QUERY, rows, page_size=len(rows))
        except PostgresError as e:
            raise BatchDeliveryError(f"Batch {batch.sequence} rejected by Postgres: {e}") from e

        logger.info(f"Batch {batch.sequence} of {len(rows)} customers inserted")

    def health_check(self) -> bool:
        return self.db.is_open and self.db.health_check()

    @staticmethod
    def _to_row(record: CustomerRecord) -> Tuple:
        return (
            record.full_name,
            record.national_id,
            record.status,
            record.entry_date,
            record.is_pep,
            record.is_obligated_subject,
            record.created_at
        )


class SQLiteBatchSink(BatchSink):
    """Inserts batches into a local SQLite `clientes` table."""

    name = 'sqlite sink'

    INSERT_QUERY = (
        f"INSERT INTO clientes ({', '.join(CLIENTES_COLUMNS)}) "
        f"VALUES ({', '.join('?' for _ in CLIENTES_COLUMNS)})"
    )

    def __init__(self, sqlite_manager: SQLiteManager):
        self.db = sqlite_manager
        self._opened = False

    def open(self) -> None:
        self.db.initialize_schema()
        if not self.db.health_check():
            raise SinkUnavailableError(f"SQLite database {self.db.db_path} is not accessible")
        self._opened = True

    def close(self) -> None:
        self._opened = False

    def deliver(self, batch: Batch) -> None:
        if not self._opened:
            raise SinkUnavailableError("SQLite sink is not open")

        rows = [self._to_row(record) for record in batch]

        try:
            self.db.execute_many(self.INSERT_QUERY, rows)
        except sqlite3.Error as e:
            raise BatchDeliveryError(f"Batch {batch.sequence} rejected by SQLite: {e}") from e

        logger.info(f"Batch {batch.sequence} of {len(rows)} customers inserted")

    def health_check(self) -> bool:
        return self._opened and self.db.health_check()

    def count_customers(self) -> int:
        result = self.db.execute_query("SELECT COUNT(*) as count FROM clientes")
        return result[0]['count']

    def fetch_customers(self, limit: Optional[int] = None) -> List[dict]:
        query = "SELECT * FROM clientes ORDER BY id"
        if limit is not None:
            return self.db.execute_query(query + " LIMIT ?", (limit,))
        return self.db.execute_query(query)

    @staticmethod
    def _to_row(record: CustomerRecord) -> Tuple:
        # sqlite3's implicit date adapters are deprecated, store ISO text
        return (
            record.full_name,
            record.national_id,
            record.status,
            record.entry_date.isoformat(),
            int(record.is_pep),
            None if record.is_obligated_subject is None else int(record.is_obligated_subject),
            record.created_at.isoformat()
        )
