"""
Process entry point: configure, open the sink, run the pipeline, report.
"""

import os
import sys
import logging
import argparse
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from customer_ingest.database.connection import DatabaseManager
from customer_ingest.database.retry import RetryPolicy, acquire_with_retry
from customer_ingest.database.sqlite_connection import SQLiteManager
from customer_ingest.exceptions import IngestionError
from customer_ingest.ingestion.batch_sink import BatchSink, PostgresBatchSink, SQLiteBatchSink
from customer_ingest.ingestion.pipeline import IngestionPipeline, IngestionSummary
from customer_ingest.monitoring.health import HealthChecker, format_text_report
from customer_ingest.monitoring.logger_config import IngestionLogger, OperationLogger

logger = logging.getLogger(__name__)

DEFAULT_INPUT_PATH = 'data/CLIENTES_IN_0425.dat'
SINK_BACKENDS = ('postgres', 'sqlite')


def build_sink(backend: str) -> BatchSink:
    """Construct (but do not open) the sink for the configured backend."""
    backend = backend.lower()

    if backend == 'postgres':
        return PostgresBatchSink(DatabaseManager())
    if backend == 'sqlite':
        return SQLiteBatchSink(SQLiteManager())

    raise ValueError(f"Unknown sink backend: {backend!r} (expected one of {SINK_BACKENDS})")


class IngestionRunner:
    """Runs one ingestion of the configured file into the configured sink."""

    def __init__(
        self,
        input_path: Optional[str] = None,
        batch_size: Optional[int] = None,
        handoff_capacity: Optional[int] = None,
        backend: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        self.input_path = input_path or os.getenv('INPUT_FILE_PATH', DEFAULT_INPUT_PATH)
        self.batch_size = batch_size if batch_size is not None else int(os.getenv('BATCH_SIZE', '1000'))
        self.handoff_capacity = (
            handoff_capacity if handoff_capacity is not None else int(os.getenv('HANDOFF_CAPACITY', '4'))
        )
        self.backend = backend or os.getenv('SINK_BACKEND', 'postgres')
        self.encoding = os.getenv('SOURCE_ENCODING', 'utf-8')

        env_timeout = os.getenv('RUN_TIMEOUT_SECONDS')
        self.timeout = timeout if timeout is not None else (float(env_timeout) if env_timeout else None)

        self.retry_policy = RetryPolicy.from_settings(
            max_attempts=int(os.getenv('DB_CONNECT_RETRIES', '5')),
            delay_seconds=float(os.getenv('DB_CONNECT_DELAY_SECONDS', '5')),
            strategy=os.getenv('DB_CONNECT_BACKOFF', 'constant')
        )

        logger.info(
            f"Ingestion runner initialized: file={self.input_path}, backend={self.backend}, "
            f"batch_size={self.batch_size}, handoff_capacity={self.handoff_capacity}"
        )

    def open_sink(self, correlation_id: Optional[str] = None) -> BatchSink:
        """Build the sink and retry until it is ready or attempts run out."""
        sink = build_sink(self.backend)

        with OperationLogger('open_sink', correlation_id, backend=self.backend):
            try:
                acquire_with_retry(sink.open, self.retry_policy, description=sink.name)
            except IngestionError:
                sink.close()
                raise

        return sink

    def run_once(self) -> IngestionSummary:
        """Run a single ingestion of the input file."""
        correlation_id = str(uuid.uuid4())
        logger.info(f"Starting ingestion of {self.input_path} - Correlation ID: {correlation_id}")

        # Built first so bad settings fail before the sink is opened
        pipeline = IngestionPipeline(
            batch_size=self.batch_size,
            handoff_capacity=self.handoff_capacity,
            encoding=self.encoding,
            correlation_id=correlation_id
        )

        sink = self.open_sink(correlation_id)
        try:
            return pipeline.run(self.input_path, sink, timeout=self.timeout)
        finally:
            sink.close()

    def health_check(self) -> Dict[str, Any]:
        """Open the sink once and report its health."""
        try:
            sink = build_sink(self.backend)
            with sink:
                result = HealthChecker(sink).check_sink_health()
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return {
                'status': 'unhealthy',
                'sink': self.backend,
                'error': str(e),
                'timestamp': datetime.now().isoformat()
            }

        logger.info(f"Health check - {result['sink']}: {result['status']}")
        return result


def main(argv=None) -> int:
    """Main entry point for a single ingestion run."""
    load_dotenv()

    parser = argparse.ArgumentParser(description='Ingest a customer .dat file into the database')
    parser.add_argument('--file', '-f', help='Path of the pipe-delimited input file')
    parser.add_argument('--batch-size', type=int, help='Records per batch')
    parser.add_argument('--handoff-capacity', type=int, help='Batches buffered between reader and consumer')
    parser.add_argument('--backend', choices=SINK_BACKENDS, help='Sink backend')
    parser.add_argument('--timeout', type=float, help='Stop reading after this many seconds')
    parser.add_argument('--health-check', action='store_true', help='Perform health check and exit')

    args = parser.parse_args(argv)

    IngestionLogger.setup_logging()

    try:
        runner = IngestionRunner(
            input_path=args.file,
            batch_size=args.batch_size,
            handoff_capacity=args.handoff_capacity,
            backend=args.backend,
            timeout=args.timeout
        )
    except ValueError as e:
        print(f"❌ Invalid configuration: {e}")
        return 1

    if args.health_check:
        result = runner.health_check()
        print(format_text_report(result))
        return 0 if result['status'] == 'healthy' else 1

    try:
        summary = runner.run_once()
    except (IngestionError, ValueError) as e:
        print(f"❌ Ingestion failed: {e}")
        return 1

    print(f"✅ {summary.format_report()}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
