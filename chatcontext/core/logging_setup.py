"""structlog bootstrap for the context service.

Every log line carries the bound request/turn ids (``merge_contextvars``).
Local environments render coloured console lines; everything else, and the
optional log file, gets JSON lines.
"""

import logging
import logging.config
import sys

import structlog
from structlog.dev import ConsoleRenderer

_CONFIGURED = False

LOCAL_ENVIRONMENTS = ("", "local", "development", "dev", "test")

# Upstream client libraries log every request at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "openai", "redis")


def _formatter(renderer, pre_chain: list) -> dict:
    return {
        "()": structlog.stdlib.ProcessorFormatter,
        "processors": [structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        "foreign_pre_chain": pre_chain,
    }


def configure_logging(
    log_level: str,
    log_file: str | None = None,
    *,
    environment: str = "local",
) -> None:
    """Route structlog through stdlib logging. Only the first call takes effect."""
    global _CONFIGURED
    if _CONFIGURED:
        return

    if hasattr(sys.stdout, "reconfigure"):
        sys.stdout.reconfigure(encoding="utf-8", errors="backslashreplace")

    pre_chain: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    console = (
        ConsoleRenderer(colors=True, pad_event=40)
        if environment.lower() in LOCAL_ENVIRONMENTS
        else structlog.processors.JSONRenderer()
    )
    formatters = {
        "console": _formatter(console, pre_chain),
        "json": _formatter(structlog.processors.JSONRenderer(), pre_chain),
    }
    handlers: dict = {
        "stdout": {
            "class": "logging.StreamHandler",
            "formatter": "console",
            "stream": "ext://sys.stdout",
        }
    }
    if log_file:
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": log_file,
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
            "formatter": "json",
            "encoding": "utf-8",
        }

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": formatters,
            "handlers": handlers,
            "root": {"handlers": list(handlers), "level": log_level.upper()},
            "loggers": {
                "uvicorn.error": {"level": "INFO"},
                "uvicorn.access": {"level": "WARNING"},
                **{name: {"level": "WARNING"} for name in _NOISY_LOGGERS},
            },
        }
    )

    _CONFIGURED = True
    structlog.get_logger(__name__).debug(
        "logging.configured", level=log_level, environment=environment, file=log_file
    )
