"""
Logging Configuration for the practice digest service.

Provides structured logging with:
- JSON formatting for production
- Human-readable formatting for development
- Job correlation ids (job, firm, recipient) bound via context variables

Event markers used by the pipeline:
    EMAIL_JOB_CREATED, EMAIL_JOB_STARTED, EMAIL_SENT, EMAIL_FAILED, EMAIL_SKIPPED
"""

import logging
import json
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterator, Optional

# Context variables for job tracking
job_id_var: ContextVar[Optional[str]] = ContextVar('job_id', default=None)
firm_id_var: ContextVar[Optional[str]] = ContextVar('firm_id', default=None)
recipient_id_var: ContextVar[Optional[str]] = ContextVar('recipient_id', default=None)

_CONTEXT_VARS = (
    ("job_id", job_id_var),
    ("firm_id", firm_id_var),
    ("recipient_id", recipient_id_var),
)


def current_context() -> Dict[str, str]:
    """Correlation ids bound in the current context."""
    return {name: var.get() for name, var in _CONTEXT_VARS if var.get()}


@contextmanager
def job_context(
    job_id=None,
    firm_id=None,
    recipient_id=None,
) -> Iterator[None]:
    """
    Bind correlation ids for every log line emitted inside the block.

    Usage:
        with job_context(job_id=job.job_id, firm_id=job.firm_id):
            logger.info("EMAIL_JOB_STARTED")
    """
    tokens = []
    for var, value in ((job_id_var, job_id), (firm_id_var, firm_id), (recipient_id_var, recipient_id)):
        if value is not None:
            tokens.append((var, var.set(str(value))))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


class JsonFormatter(logging.Formatter):
    """
    JSON log formatter for structured logging.

    Outputs logs as JSON objects for easy parsing by log aggregators.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        log_data.update(current_context())

        # Add extra fields from the record
        if hasattr(record, 'extra_data'):
            log_data.update(record.extra_data)

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ReadableFormatter(logging.Formatter):
    """
    Human-readable log formatter for development.
    """

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m',
    }

    def format(self, record: logging.LogRecord) -> str:
        """Format log record for human readability."""
        color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
        reset = self.COLORS['RESET']

        timestamp = datetime.now().strftime('%H:%M:%S.%f')[:-3]
        level = f"{color}{record.levelname:8s}{reset}"

        message = f"{timestamp} {level} [{record.name}] {record.getMessage()}"

        fields = current_context()
        if hasattr(record, 'extra_data') and record.extra_data:
            fields.update(record.extra_data)
        if fields:
            message += " | " + ' | '.join(f"{k}={v}" for k, v in fields.items())

        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)

        return message


class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter that includes fixed context in all log messages.
    """

    def process(self, msg: str, kwargs: Dict) -> tuple:
        """Add context to log message."""
        extra = kwargs.get('extra', {})

        # Merge with any existing extra data
        if 'extra_data' not in extra:
            extra['extra_data'] = {}
        extra['extra_data'].update(self.extra)

        kwargs['extra'] = extra
        return msg, kwargs


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: Optional[Path] = None
) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, output JSON formatted logs
        log_file: Optional file path for log output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())

    # Remove existing handlers
    root_logger.handlers.clear()

    formatter = JsonFormatter() if json_output else ReadableFormatter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(JsonFormatter())  # Always JSON for files
        root_logger.addHandler(file_handler)

    # Set levels for noisy libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("python_http_client").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str, **extra) -> ContextLogger:
    """
    Get a context-aware logger.

    Args:
        name: Logger name (typically __name__)
        **extra: Additional context to include in all logs

    Returns:
        ContextLogger instance
    """
    return ContextLogger(logging.getLogger(name), extra)
