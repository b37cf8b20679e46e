"""Logging configuration for Bastion."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog

from bastion.config import get_settings

# Loggers under this prefix feed the dedicated security sink.
SECURITY_LOGGER_PREFIX = "bastion.security"


class _SecurityOnlyFilter(logging.Filter):
    """Pass only records emitted by the security loggers."""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.name.startswith(SECURITY_LOGGER_PREFIX)


class _ExcludeSecurityFilter(logging.Filter):
    """Drop records emitted by the security loggers."""

    def filter(self, record: logging.LogRecord) -> bool:
        return not record.name.startswith(SECURITY_LOGGER_PREFIX)


def _rotating_handler(path: str, level: int) -> RotatingFileHandler:
    settings = get_settings()
    handler = RotatingFileHandler(
        filename=path,
        maxBytes=settings.log_file_max_bytes,
        backupCount=settings.log_file_backup_count,
        encoding="utf-8",
    )
    handler.setLevel(level)
    return handler


def setup_logging() -> None:
    """Configure structured logging with console, file and security outputs."""
    settings = get_settings()
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    log_to_file = settings.log_to_file
    if log_to_file:
        try:
            Path(settings.log_directory).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            # If we can't create log directory, continue with console-only logging
            print(f"Warning: Could not create log directory: {e}", file=sys.stderr)
            log_to_file = False

    logging.basicConfig(
        format="%(message)s",
        level=log_level,
        handlers=[],
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    logging.root.addHandler(console_handler)

    file_handlers: list[logging.Handler] = []
    if log_to_file:
        try:
            general = _rotating_handler(settings.log_file_path, log_level)
            general.addFilter(_ExcludeSecurityFilter())
            file_handlers.append(general)

            if settings.log_error_file_enabled:
                file_handlers.append(
                    _rotating_handler(settings.error_log_file_path, logging.WARNING)
                )

            if settings.security_log_enabled:
                security = _rotating_handler(settings.security_log_file_path, logging.INFO)
                security.addFilter(_SecurityOnlyFilter())
                file_handlers.append(security)
        except OSError as e:
            print(f"Warning: Could not setup file logging: {e}", file=sys.stderr)
            file_handlers = []

    for handler in file_handlers:
        logging.root.addHandler(handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Console: colored in dev, JSON in prod
    console_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                (
                    structlog.dev.ConsoleRenderer(colors=True)  # type: ignore[list-item]
                    if settings.is_development
                    else structlog.processors.JSONRenderer()
                ),
            ]
        )
    )

    # Files: always JSON for easy parsing
    file_formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ]
    )
    for handler in file_handlers:
        handler.setFormatter(file_formatter)

    # Reduce noise from third-party packages
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.getLogger("asyncpg").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance."""
    return structlog.get_logger(name)  # type: ignore[no-any-return]
