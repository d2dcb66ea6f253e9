"""
Groups validated customer records into fixed-size batches.
"""

from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

from customer_ingest.ingestion.record_parser import CustomerRecord

DEFAULT_BATCH_SIZE = 1000


@dataclass(frozen=True)
class Batch:
    """An immutable, ordered, non-empty group of records handed to a sink."""

    sequence: int
    records: Tuple[CustomerRecord, ...]

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[CustomerRecord]:
        return iter(self.records)


class Batcher:
    """Accumulates records and detaches a Batch every `batch_size` records."""

    def __init__(self, batch_size: int = DEFAULT_BATCH_SIZE):
        if not isinstance(batch_size, int) or isinstance(batch_size, bool) or batch_size <= 0:
            raise ValueError(f"Batch size must be a positive integer, got {batch_size!r}")

        self.batch_size = batch_size
        self._current: List[CustomerRecord] = []
        self._sequence = 0

    @property
    def pending(self) -> int:
        """Number of records waiting in the in-progress batch."""
        return len(self._current)

    def accumulate(self, record: CustomerRecord) -> Optional[Batch]:
        """Append a record and return a full batch when the threshold is reached."""
        self._current.append(record)

        if len(self._current) == self.batch_size:
            return self._detach()

        return None

    def flush(self) -> Optional[Batch]:
        """Detach the undersized remainder at end of stream, if any."""
        if not self._current:
            return None

        return self._detach()

    def _detach(self) -> Batch:
        self._sequence += 1
        batch = Batch(sequence=self._sequence, records=tuple(self._current))
        self._current = []
        return batch
