"""
Pytest configuration and fixtures for the customer ingestion tests

Provides temporary .dat files, in-memory sinks with scriptable failures
and blocking, and a SQLite sink backed by a temporary database.
"""
import threading
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Set

import pytest

from customer_ingest.database.sqlite_connection import SQLiteManager
from customer_ingest.exceptions import BatchDeliveryError
from customer_ingest.ingestion.batch_sink import BatchSink, SQLiteBatchSink
from customer_ingest.ingestion.batcher import Batch


# =======================
# PYTEST CONFIGURATION
# =======================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests that don't require external services"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests against a temporary SQLite database"
    )


# =======================
# SINKS
# =======================

class RecordingSink(BatchSink):
    """In-memory sink that records every batch it is offered.

    Args:
        fail_on: batch sequence numbers whose delivery raises `error`
        error: exception factory used for failing batches
        gate: when given, every delivery waits on this event first
    """

    name = 'recording sink'

    def __init__(
        self,
        fail_on: Optional[Set[int]] = None,
        error: Callable[[Batch], Exception] = None,
        gate: Optional[threading.Event] = None
    ):
        self.fail_on = fail_on or set()
        self.error = error or (lambda batch: BatchDeliveryError(f"batch {batch.sequence} refused"))
        self.gate = gate
        self.delivery_started = threading.Event()
        self.offered: List[Batch] = []
        self.delivered: List[Batch] = []
        self.opened = False
        self.closed = False
        self.threads: Set[str] = set()

    def open(self) -> None:
        self.opened = True

    def close(self) -> None:
        self.closed = True

    def deliver(self, batch: Batch) -> None:
        self.threads.add(threading.current_thread().name)
        self.offered.append(batch)
        self.delivery_started.set()

        if self.gate is not None:
            self.gate.wait(timeout=10)

        if batch.sequence in self.fail_on:
            raise self.error(batch)

        self.delivered.append(batch)

    @property
    def delivered_records(self):
        return [record for batch in self.delivered for record in batch]


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def make_sink() -> Callable[..., RecordingSink]:
    return RecordingSink


# =======================
# FILES
# =======================

@pytest.fixture
def write_dat_file(tmp_path) -> Callable[..., Path]:
    """Factory writing lines to a .dat file under tmp_path"""
    counter = {'n': 0}

    def _write(lines: Iterable[str], terminator: str = "\n", name: Optional[str] = None) -> Path:
        counter['n'] += 1
        path = tmp_path / (name or f"CLIENTES_IN_{counter['n']:04d}.dat")
        path.write_bytes("".join(line + terminator for line in lines).encode('utf-8'))
        return path

    return _write


# =======================
# DATABASE FIXTURES
# =======================

@pytest.fixture
def sqlite_manager(tmp_path) -> SQLiteManager:
    return SQLiteManager(str(tmp_path / "db" / "clientes.db"))


@pytest.fixture
def sqlite_sink(sqlite_manager):
    sink = SQLiteBatchSink(sqlite_manager)
    sink.open()
    yield sink
    sink.close()
