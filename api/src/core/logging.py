"""Structlog configuration with console and file output.

Log events carry the request context (request_id, user_id, trace ids) and
have credentials and raw client identifiers masked before rendering.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from structlog.types import EventDict, Processor


if TYPE_CHECKING:
    from src.config.settings import Settings

from src.core.context import get_context


# Minimum length for partial masking (show first 2 and last 2 chars)
_MIN_MASK_LENGTH = 4

SENSITIVE_KEYS = {
    "password",
    "secret",
    "token",
    "authorization",
    "credentials",
    "ip_address",
    "user_agent",
}


def add_context_processor(
    logger: logging.Logger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Add request context (request_id, user_id, etc.) to log events."""
    event_dict.update(get_context())
    return event_dict


def filter_sensitive_data(
    logger: logging.Logger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Mask tokens, secrets and raw client identifiers in log events."""

    def mask_value(key: str, value: Any) -> Any:
        if isinstance(value, str) and any(
            sensitive in key.lower() for sensitive in SENSITIVE_KEYS
        ):
            if len(value) > _MIN_MASK_LENGTH:
                return value[:2] + "*" * (len(value) - _MIN_MASK_LENGTH) + value[-2:]
            return "***"
        if isinstance(value, dict):
            return {k: mask_value(k, v) for k, v in value.items()}
        return value

    return {k: mask_value(k, v) for k, v in event_dict.items()}


def setup_file_handler(
    log_dir: Path,
    log_file: str,
    max_bytes: int,
    backup_count: int,
    log_level: str,
) -> RotatingFileHandler:
    """Create a rotating file handler inside ``log_dir``."""
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        filename=str(log_dir / log_file),
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setLevel(getattr(logging, log_level.upper()))
    return handler


def _shared_processors(settings: "Settings") -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_context_processor,
        filter_sensitive_data,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if settings.log_include_caller_info:
        processors.append(
            structlog.processors.CallsiteParameterAdder(
                parameters=[
                    structlog.processors.CallsiteParameter.FILENAME,
                    structlog.processors.CallsiteParameter.LINENO,
                    structlog.processors.CallsiteParameter.FUNC_NAME,
                ]
            )
        )
    return processors


def configure_structlog(
    settings: "Settings",
    log_dir: Path | str | None = None,
) -> None:
    """Configure structlog with console and rotating JSON file output.

    Args:
        settings: Application settings.
        log_dir: Directory for log files. Defaults to ./logs.
    """
    log_level = settings.log_level
    log_dir = Path(log_dir) if log_dir is not None else Path("logs")
    shared_processors = _shared_processors(settings)

    if settings.log_format == "json":
        console_renderer: Processor = structlog.processors.JSONRenderer()
    else:
        console_renderer = structlog.dev.ConsoleRenderer(
            colors=True,
            exception_formatter=structlog.dev.plain_traceback,
        )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, log_level.upper()))

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, log_level.upper()))
    console_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=console_renderer,
            foreign_pre_chain=shared_processors,
        )
    )
    root_logger.addHandler(console_handler)

    # JSON files for log analysis, plus a separate errors-only file
    for log_file, file_level in (
        (f"{settings.app_name}.log", log_level),
        (f"{settings.app_name}.error.log", "ERROR"),
    ):
        file_handler = setup_file_handler(
            log_dir=log_dir,
            log_file=log_file,
            max_bytes=settings.log_file_max_bytes,
            backup_count=settings.log_file_backup_count,
            log_level=file_level,
        )
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=structlog.processors.JSONRenderer(),
                foreign_pre_chain=shared_processors,
            )
        )
        root_logger.addHandler(file_handler)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Silence noisy loggers
    for noisy in ("uvicorn.access", "uvicorn.error", "cassandra"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger instance."""
    return structlog.get_logger(name)
