"""
Centralized Logging Configuration

Provides standardized logging setup with JSON formatting for structured logs.
"""
import os
import logging
import json
from datetime import datetime, timezone

from laminates.core.config import get_settings

# Extra attributes copied from log records into JSON output
CONTEXT_FIELDS = ("quotation_id", "user_id", "request_id", "duration_ms")

NOISY_LOGGERS = ("boto3", "botocore", "urllib3", "s3transfer", "sqlalchemy.engine", "PIL")


class JsonFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record):
        """Format log record as JSON."""
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        for field in CONTEXT_FIELDS:
            if hasattr(record, field):
                log_entry[field] = getattr(record, field)

        return json.dumps(log_entry, default=str)


def setup_logging(level=None, format_type=None, log_file=None, service_name='laminates'):
    """
    Setup centralized logging configuration.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: 'json' for structured JSON logs, 'standard' for human-readable
        log_file: Optional file path for log output
        service_name: Service name to include in logs
    """
    settings = get_settings()
    if level is None:
        level = settings.log_level

    numeric_level = getattr(logging, str(level).upper(), logging.INFO)

    use_json = (format_type == 'json' or
                (format_type is None and (settings.is_production or settings.use_json_logging)))

    if use_json:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s %(name)s: %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logging.getLogger(service_name)
