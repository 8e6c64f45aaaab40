"""
Structured logging configuration for mediaboard.

This module provides:
- JSON structured logging with structlog
- Context enrichment (request_id, content_id)
- Audit logging for artifact lifecycle events
- Integration with FastAPI
"""

import logging
import logging.config
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime

import structlog
from loguru import logger
from structlog.types import FilteringBoundLogger

from .config import settings

# Context variables for request tracking
request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)
content_id_ctx: ContextVar[str | None] = ContextVar("content_id", default=None)


class StructlogFormatter(logging.Formatter):
    """Custom formatter to bridge between stdlib logging and structlog."""

    def __init__(self, processor):
        super().__init__()
        self.processor = processor

    def format(self, record: logging.LogRecord) -> str:
        """Format log record using structlog processor."""
        event_dict = {
            "event": record.getMessage(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if request_id := request_id_ctx.get():
            event_dict["request_id"] = request_id
        if content_id := content_id_ctx.get():
            event_dict["content_id"] = content_id

        if record.exc_info:
            event_dict["exception"] = self.formatException(record.exc_info)

        return self.processor(None, None, event_dict)


def add_context_fields(logger, method_name, event_dict):
    """Add context fields to every log entry."""
    if request_id := request_id_ctx.get():
        event_dict["request_id"] = request_id
    if content_id := content_id_ctx.get():
        event_dict.setdefault("content_id", content_id)

    event_dict["app"] = settings.app.app_name
    event_dict["version"] = settings.app.version
    event_dict["environment"] = settings.app.environment

    return event_dict


def add_timestamps(logger, method_name, event_dict):
    """Add timestamp in ISO format."""
    event_dict["timestamp"] = datetime.utcnow().isoformat() + "Z"
    return event_dict


def filter_sensitive_data(logger, method_name, event_dict):
    """Filter sensitive data from logs."""
    sensitive_fields = {"password", "secret", "token", "api_key", "authorization"}

    def _filter_dict(obj):
        if isinstance(obj, dict):
            return {
                key: (
                    "[REDACTED]"
                    if any(field in key.lower() for field in sensitive_fields)
                    else _filter_dict(value)
                )
                for key, value in obj.items()
            }
        elif isinstance(obj, list):
            return [_filter_dict(item) for item in obj]
        else:
            return obj

    return _filter_dict(event_dict)


def setup_structlog():
    """Configure structlog with JSON output."""
    processors = [
        add_context_fields,
        add_timestamps,
        filter_sensitive_data,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.app.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def setup_stdlib_logging():
    """Configure standard library logging to work with structlog."""
    formatter = StructlogFormatter(
        structlog.processors.JSONRenderer()
        if settings.app.log_format == "json"
        else structlog.dev.ConsoleRenderer(colors=True)
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.app.log_level))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(getattr(logging, settings.app.log_level))
    root_logger.addHandler(console_handler)

    logging.getLogger("uvicorn.access").handlers = []
    logging.getLogger("uvicorn.access").propagate = True

    # Reduce noise from third-party libraries
    logging.getLogger("PIL").setLevel(logging.WARNING)
    logging.getLogger("multipart").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def setup_loguru():
    """Configure Loguru for the error log file and console sink."""
    logger.remove()

    log_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
        "<level>{message}</level>"
    )

    if settings.app.log_format == "json":
        logger.add(sys.stdout, level=settings.app.log_level, serialize=True, backtrace=True, diagnose=True)
    else:
        logger.add(
            sys.stdout, level=settings.app.log_level, format=log_format, backtrace=True, diagnose=True, colorize=True
        )

    # Rotating error log next to the stored media
    if settings.app.is_production:
        logger.add(
            f"{settings.media.data_root}/logs/error.log",
            level="ERROR",
            rotation="10 MB",
            retention=10,
            compression="gz",
            serialize=True,
            backtrace=True,
            diagnose=True,
        )


class LoggingContextManager:
    """Context manager for setting logging context."""

    def __init__(self, request_id: str | None = None, content_id: str | None = None):
        self.request_id = request_id or request_id_ctx.get() or str(uuid.uuid4())
        self.content_id = content_id
        self._tokens = []

    def __enter__(self):
        self._tokens.append(request_id_ctx.set(self.request_id))
        if self.content_id is not None:
            self._tokens.append(content_id_ctx.set(str(self.content_id)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        for token in reversed(self._tokens):
            token.var.reset(token)
        self._tokens.clear()


class AuditLogger:
    """Structured audit logging for artifact lifecycle events."""

    def __init__(self):
        self.logger = structlog.get_logger("audit")

    def log_media_processed(self, content_id: str, media_class: str, processing_time: float, **kwargs):
        """Log media processing completion."""
        self.logger.info(
            "media_processed",
            content_id=content_id,
            media_class=media_class,
            processing_time_seconds=processing_time,
            action="process_media",
            **kwargs,
        )

    def log_artifacts_purged(self, content_id: str, deleted: int, failed: int, **kwargs):
        """Log removal of an item's artifact set."""
        self.logger.info(
            "artifacts_purged",
            content_id=content_id,
            deleted=deleted,
            failed=failed,
            action="purge_artifacts",
            **kwargs,
        )


def setup_logging():
    """Initialize all logging systems."""
    setup_structlog()
    setup_stdlib_logging()
    setup_loguru()


# Global logger instances
audit_logger = AuditLogger()


# Convenience functions
def get_logger(name: str = None) -> FilteringBoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def with_logging_context(request_id: str = None, content_id: str = None) -> LoggingContextManager:
    """Create logging context manager."""
    return LoggingContextManager(request_id, content_id)


def create_request_id() -> str:
    """Generate unique request ID."""
    return str(uuid.uuid4())
