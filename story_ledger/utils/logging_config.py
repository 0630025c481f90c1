"""Logging configuration for Story Ledger."""

import logging
import sys
import time
import uuid
from collections.abc import Generator
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path

DEFAULT_LOG_FILE = Path(__file__).parent.parent.parent / "logs" / "story_ledger.log"

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(correlation_id)s] %(name)s: %(message)s"


class ContextFilter(logging.Filter):
    """Attach the active correlation id to every record."""

    def __init__(self) -> None:
        super().__init__()
        self.correlation_id: str | None = None

    def filter(self, record: logging.LogRecord) -> bool:
        """Add correlation ID to log record if available."""
        record.correlation_id = self.correlation_id or "-"
        return True


_context_filter = ContextFilter()


class FlushingRotatingFileHandler(RotatingFileHandler):
    """RotatingFileHandler that flushes immediately after each record."""

    def emit(self, record: logging.LogRecord) -> None:
        super().emit(record)
        self.flush()


def setup_logging(level: str = "INFO", log_file: str | None = "default") -> None:
    """Configure root logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: File path for logs. "default" uses logs/story_ledger.log,
                  None disables file logging.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # Filter goes on handlers so records from child loggers get the id too
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(_context_filter)
    root_logger.addHandler(console_handler)

    if log_file == "default":
        log_path: Path | None = DEFAULT_LOG_FILE
    elif log_file:
        log_path = Path(log_file)
    else:
        log_path = None

    if log_path:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = FlushingRotatingFileHandler(
            log_path,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(_context_filter)
        root_logger.addHandler(file_handler)
        root_logger.info(f"Logging to file: {log_path} (max 10MB, 5 backups)")

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_correlation_id() -> str | None:
    """Return the correlation id currently attached to log records."""
    return _context_filter.correlation_id


@contextmanager
def log_context(correlation_id: str | None = None) -> Generator[str]:
    """Context manager for setting the correlation ID in logs.

    Args:
        correlation_id: Optional correlation ID. If not provided, generates a new one.

    Yields:
        The correlation ID being used.

    Example:
        with log_context("work-42:unit-7"):
            logger.info("Extracting ledger")
    """
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())[:8]

    old_id = _context_filter.correlation_id
    _context_filter.correlation_id = correlation_id
    try:
        yield correlation_id
    finally:
        _context_filter.correlation_id = old_id


@contextmanager
def log_performance(logger: logging.Logger, operation: str) -> Generator[None]:
    """Context manager logging how long an operation took.

    Args:
        logger: Logger instance to use
        operation: Name of the operation being timed
    """
    start_time = time.time()
    logger.debug(f"{operation}: Starting")
    try:
        yield
    except Exception as e:
        duration = time.time() - start_time
        logger.error(f"{operation}: Failed after {duration:.2f}s - {e}")
        raise
    else:
        duration = time.time() - start_time
        logger.info(f"{operation}: Completed in {duration:.2f}s")
