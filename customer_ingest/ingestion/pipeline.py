"""
Pipeline coordinator: streams a customer file into a batch sink.

The reader stage runs in the calling thread. It parses each line, counts
valid and invalid lines, and offers full batches to a bounded queue. A
single consumer thread takes batches from that queue in order and hands
them to the sink. When the queue is full the reader blocks until the
consumer makes room, so memory stays bounded by the queue capacity no
matter how slow the sink is.

A failed delivery is logged and the batch is skipped. Only an unreadable
source or a sink the caller deems unavailable ends the run with an error.
"""

import contextvars
import enum
import logging
import os
import queue
import threading
import time
import uuid
from dataclasses import asdict, dataclass
from typing import Callable, Iterator, Optional, TextIO, Tuple, Union

from customer_ingest.exceptions import SinkUnavailableError, SourceUnavailableError
from customer_ingest.ingestion.batch_sink import BatchSink
from customer_ingest.ingestion.batcher import DEFAULT_BATCH_SIZE, Batch, Batcher
from customer_ingest.ingestion.record_parser import REASON_LINE_TOO_LONG, RecordParser, Rejection
from customer_ingest.monitoring.logger_config import OperationLogger

logger = logging.getLogger(__name__)

DEFAULT_HANDOFF_CAPACITY = 4
DEFAULT_MAX_LINE_LENGTH = 64 * 1024

_END_OF_STREAM = object()

SourcePath = Union[str, os.PathLike]


class PipelineState(enum.Enum):
    IDLE = 'idle'
    RUNNING = 'running'
    DRAINING = 'draining'
    TERMINATED = 'terminated'


@dataclass(frozen=True)
class IngestionSummary:
    """Final counters of one pipeline run.

    valid_count and invalid_count describe parsing outcomes only; delivery
    failures show up in batches_failed and records_lost.
    """

    valid_count: int
    invalid_count: int
    batches_delivered: int = 0
    batches_failed: int = 0
    records_lost: int = 0
    duration_seconds: float = 0.0

    def as_dict(self) -> dict:
        return asdict(self)

    def format_report(self) -> str:
        lines = [
            "Processing completed",
            f"Valid lines processed: {self.valid_count}",
            f"Invalid lines discarded: {self.invalid_count}",
            f"Batches delivered: {self.batches_delivered}",
        ]
        if self.batches_failed:
            lines.append(
                f"Batches failed: {self.batches_failed} ({self.records_lost} records not persisted)"
            )
        return "\n".join(lines)


def default_is_fatal(error: BaseException) -> bool:
    """Only an unavailable sink stops the run; any other delivery error is skipped."""
    return isinstance(error, SinkUnavailableError)


def iter_source_lines(stream: TextIO, max_line_length: int) -> Iterator[Tuple[str, bool]]:
    """Yield (line, too_long) pairs without line terminators.

    Oversized lines are never held in memory whole: the first
    max_line_length characters are yielded with too_long=True and the
    rest of the line is skipped.
    """
    while True:
        chunk = stream.readline(max_line_length + 1)
        if not chunk:
            return

        if len(chunk) > max_line_length and not chunk.endswith('\n'):
            remainder = chunk
            while remainder and not remainder.endswith('\n'):
                remainder = stream.readline(max_line_length + 1)
            yield chunk[:max_line_length], True
            continue

        yield chunk.rstrip('\n'), False


class IngestionPipeline:
    """Coordinates one reader stage and one consumer stage over a bounded handoff.

    An instance runs exactly once.
    """

    def __init__(
        self,
        batch_size: int = DEFAULT_BATCH_SIZE,
        handoff_capacity: int = DEFAULT_HANDOFF_CAPACITY,
        max_line_length: int = DEFAULT_MAX_LINE_LENGTH,
        encoding: str = 'utf-8',
        parser: Optional[RecordParser] = None,
        is_fatal: Callable[[BaseException], bool] = default_is_fatal,
        correlation_id: Optional[str] = None
    ):
        if handoff_capacity < 1:
            raise ValueError(f"Handoff capacity must be at least 1, got {handoff_capacity}")
        if max_line_length < 1:
            raise ValueError(f"Max line length must be at least 1, got {max_line_length}")

        self.batcher = Batcher(batch_size)
        self.handoff_capacity = handoff_capacity
        self.max_line_length = max_line_length
        self.encoding = encoding
        self.parser = parser or RecordParser()
        self.is_fatal = is_fatal
        self.correlation_id = correlation_id or str(uuid.uuid4())

        self._handoff: queue.Queue = queue.Queue(maxsize=handoff_capacity)
        self._cancelled = threading.Event()
        self._aborted = threading.Event()
        self._state = PipelineState.IDLE
        self._state_lock = threading.Lock()
        self._fatal_error: Optional[BaseException] = None

        # Reader-owned
        self._lines_read = 0
        self._valid_count = 0
        self._invalid_count = 0

        # Consumer-owned
        self._batches_delivered = 0
        self._batches_failed = 0
        self._records_lost = 0

        self.summary: Optional[IngestionSummary] = None

    @property
    def batch_size(self) -> int:
        return self.batcher.batch_size

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def lines_read(self) -> int:
        """Lines consumed from the source so far (approximate while running)."""
        return self._lines_read

    @property
    def pending_batches(self) -> int:
        """Batches waiting in the handoff (approximate while running)."""
        return self._handoff.qsize()

    def cancel(self) -> None:
        """Stop reading at the next line boundary; queued batches still drain."""
        if not self._cancelled.is_set():
            logger.warning(f"Cancellation requested for run {self.correlation_id}")
            self._cancelled.set()

    def run(self, source: SourcePath, sink: BatchSink, timeout: Optional[float] = None) -> IngestionSummary:
        """Ingest `source` into `sink` and return the run summary.

        Raises:
            SourceUnavailableError: the source could not be opened or read.
            SinkUnavailableError: the sink failed with an error `is_fatal` accepts.
        """
        with self._state_lock:
            if self._state is not PipelineState.IDLE:
                raise RuntimeError("An IngestionPipeline instance can only be run once")
            self._state = PipelineState.RUNNING

        with OperationLogger(
            'ingest_file',
            self.correlation_id,
            source=str(source),
            batch_size=self.batch_size,
            handoff_capacity=self.handoff_capacity
        ):
            return self._execute(source, sink, timeout)

    def _execute(self, source: SourcePath, sink: BatchSink, timeout: Optional[float]) -> IngestionSummary:
        started = time.monotonic()

        try:
            stream = open(source, 'r', encoding=self.encoding, errors='replace', newline=None)
        except OSError as e:
            self._state = PipelineState.TERMINATED
            logger.error(f"Cannot open source {source}: {e}")
            raise SourceUnavailableError(f"Cannot open source {source}: {e}") from e

        consumer = threading.Thread(
            target=contextvars.copy_context().run,
            args=(self._consume, sink),
            name=f"batch-consumer-{self.correlation_id[:8]}",
            daemon=True
        )
        consumer.start()

        timer = None
        if timeout is not None:
            timer = threading.Timer(timeout, self.cancel)
            timer.daemon = True
            timer.start()

        read_error = None
        try:
            with stream:
                self._read(stream)
        except OSError as e:
            read_error = e
            logger.error(f"Failed reading source {source} after line {self._lines_read}: {e}")
        finally:
            if timer:
                timer.cancel()
            self._state = PipelineState.DRAINING
            if read_error is None and not self._aborted.is_set():
                self._offer(self.batcher.flush())
            self._handoff.put(_END_OF_STREAM)
            consumer.join()
            self._state = PipelineState.TERMINATED

        if read_error is not None:
            raise SourceUnavailableError(f"Failed reading source {source}: {read_error}") from read_error

        if self._fatal_error is not None:
            error = self._fatal_error
            if isinstance(error, SinkUnavailableError) or not isinstance(error, Exception):
                raise error
            raise SinkUnavailableError(f"{sink.name} failed fatally: {error}") from error

        self.summary = IngestionSummary(
            valid_count=self._valid_count,
            invalid_count=self._invalid_count,
            batches_delivered=self._batches_delivered,
            batches_failed=self._batches_failed,
            records_lost=self._records_lost,
            duration_seconds=round(time.monotonic() - started, 3)
        )

        logger.info(
            f"Processing completed: {self.summary.valid_count} valid lines, "
            f"{self.summary.invalid_count} invalid lines, "
            f"{self.summary.batches_delivered} batches delivered, "
            f"{self.summary.batches_failed} batches failed"
        )
        return self.summary

    def _read(self, stream: TextIO) -> None:
        """Reader stage: parse lines and offer full batches."""
        for line, too_long in iter_source_lines(stream, self.max_line_length):
            if self._cancelled.is_set():
                logger.warning(f"Reading stopped after line {self._lines_read}: cancelled")
                return
            if self._aborted.is_set():
                logger.warning(f"Reading stopped after line {self._lines_read}: sink unavailable")
                return

            self._lines_read += 1
            line_number = self._lines_read

            if too_long:
                result = Rejection(line_number, line[:80], REASON_LINE_TOO_LONG)
            else:
                result = self.parser.parse(line, line_number)

            if isinstance(result, Rejection):
                self._invalid_count += 1
                logger.warning(f"Line {line_number} invalid ({result.reason}): {result.line}")
                continue

            self._valid_count += 1
            self._offer(self.batcher.accumulate(result))

    def _offer(self, batch: Optional[Batch]) -> None:
        if batch is None:
            return

        # Blocks while the handoff is full
        self._handoff.put(batch)
        logger.debug(f"Batch {batch.sequence} queued ({len(batch)} records)")

    def _consume(self, sink: BatchSink) -> None:
        """Consumer stage: deliver batches in order until end of stream.

        The loop only ends on the end-of-stream sentinel, so a blocked
        reader is always released, even after an unexpected error.
        """
        while True:
            item = self._handoff.get()
            try:
                if item is _END_OF_STREAM:
                    return

                if self._aborted.is_set():
                    self._batches_failed += 1
                    self._records_lost += len(item)
                    continue

                try:
                    self._deliver(sink, item)
                except BaseException as e:
                    logger.error(f"Consumer failed on batch {item.sequence}: {e!r}")
                    self._abort(e)
            finally:
                self._handoff.task_done()

    def _deliver(self, sink: BatchSink, batch: Batch) -> None:
        logger.info(f"Processing batch {batch.sequence} of {len(batch)} customers")

        try:
            sink.deliver(batch)
        except BaseException as e:
            self._batches_failed += 1
            self._records_lost += len(batch)

            if self._is_fatal_error(e):
                logger.error(f"{sink.name} unavailable while delivering batch {batch.sequence}: {e!r}")
                self._abort(e)
            else:
                logger.error(f"Failed to deliver batch {batch.sequence} ({len(batch)} records): {e}")
            return

        self._batches_delivered += 1

    def _is_fatal_error(self, error: BaseException) -> bool:
        # Interrupts and other non-Exception errors always end the run
        if not isinstance(error, Exception):
            return True

        try:
            return bool(self.is_fatal(error))
        except Exception as e:
            logger.error(f"Fatal-error predicate raised {e!r}; treating {error!r} as fatal")
            return True

    def _abort(self, error: BaseException) -> None:
        if self._fatal_error is None:
            self._fatal_error = error
        self._aborted.set()


def run_pipeline(
    source: SourcePath,
    sink: BatchSink,
    batch_size: int = DEFAULT_BATCH_SIZE,
    **options
) -> IngestionSummary:
    """Build a pipeline with the given options and run it once."""
    timeout = options.pop('timeout', None)
    pipeline = IngestionPipeline(batch_size=batch_size, **options)
    return pipeline.run(source, sink, timeout=timeout)
