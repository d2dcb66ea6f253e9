"""
Exceptions raised by the ingestion pipeline and its sinks.
"""


class IngestionError(Exception):
    """Base exception for the ingestion pipeline."""
    pass


class SourceUnavailableError(IngestionError):
    """Raised when the source file cannot be opened or read."""
    pass


class SinkUnavailableError(IngestionError):
    """Raised when the batch sink cannot be made ready or is permanently gone."""
    pass


class BatchDeliveryError(IngestionError):
    """Raised when a single batch could not be persisted."""
    pass
