"""
Structured logging configuration for the ingestion pipeline.

Both structlog loggers and plain ``logging.getLogger(__name__)`` loggers end
up in the same handlers with the same renderer, so a run's JSON log file is
one uniform stream of events.
"""

import os
import time
import logging
import logging.handlers
import structlog
from typing import Any, Dict, Optional

OPERATIONS_LOGGER = 'customer_ingest.operations'


class IngestionLogger:
    """Configures structured logging for the ingestion pipeline."""

    @staticmethod
    def setup_logging(
        log_level: str = None,
        log_format: str = None,
        log_file: str = None
    ) -> None:
        """Set up root handlers and structlog. Call once per process."""

        log_level = log_level or os.getenv('LOG_LEVEL', 'INFO')
        log_format = log_format or os.getenv('LOG_FORMAT', 'json')
        log_file = log_file or os.getenv('LOG_FILE')
        level = getattr(logging, log_level.upper(), logging.INFO)

        handlers = [logging.StreamHandler()]

        if log_file:
            log_dir = os.path.dirname(log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)

            handlers.append(logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=10 * 1024 * 1024,  # 10MB
                backupCount=5,
                encoding='utf-8'
            ))

        formatter = structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                IngestionLogger._get_renderer(log_format),
            ],
            foreign_pre_chain=[
                structlog.contextvars.merge_contextvars,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
            ],
        )
        for handler in handlers:
            handler.setLevel(level)
            handler.setFormatter(formatter)

        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                structlog.stdlib.filter_by_level,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.stdlib.PositionalArgumentsFormatter(),
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                IngestionLogger._drop_empty_correlation_id,
                structlog.processors.UnicodeDecoder(),
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

        root_logger = logging.getLogger()
        root_logger.handlers.clear()
        root_logger.handlers.extend(handlers)
        root_logger.setLevel(level)

        get_logger().info(
            "Logging initialized",
            log_level=log_level,
            log_format=log_format,
            log_file=log_file or "console"
        )

    @staticmethod
    def _drop_empty_correlation_id(logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        if 'correlation_id' in event_dict and not event_dict['correlation_id']:
            del event_dict['correlation_id']

        return event_dict

    @staticmethod
    def _get_renderer(log_format: str):
        if log_format.lower() == 'json':
            return structlog.processors.JSONRenderer()
        return structlog.dev.ConsoleRenderer(colors=True)


class OperationLogger:
    """Logs the start and the outcome of one operation (opening a sink, ingesting a file).

    While the block runs, ``correlation_id`` is bound in structlog's context
    variables, so stdlib log records emitted from the same thread carry it too.
    """

    def __init__(self, operation_name: str, correlation_id: Optional[str] = None, **context):
        self.operation_name = operation_name
        self.correlation_id = correlation_id
        self.context = context
        self.logger = get_logger().bind(operation=operation_name, **context)
        self._started = None
        self._tokens = {}

    def __enter__(self):
        if self.correlation_id:
            self._tokens = structlog.contextvars.bind_contextvars(correlation_id=self.correlation_id)
        self._started = time.monotonic()

        self.logger.info(f"Operation started: {self.operation_name}")
        return self.logger

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = round(time.monotonic() - self._started, 3)

        try:
            if exc_type is None:
                self.logger.info(
                    f"Operation completed: {self.operation_name}",
                    duration_seconds=duration
                )
            else:
                self.logger.error(
                    f"Operation failed: {self.operation_name}",
                    duration_seconds=duration,
                    error_type=exc_type.__name__,
                    error_message=str(exc_val) if exc_val else None
                )
        finally:
            structlog.contextvars.reset_contextvars(**self._tokens)

        return False


def get_logger(correlation_id: Optional[str] = None):
    """structlog logger for operation events, bound to a run when an id is given."""
    logger = structlog.get_logger(OPERATIONS_LOGGER)
    if correlation_id:
        logger = logger.bind(correlation_id=correlation_id)
    return logger
