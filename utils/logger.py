"""
Centralized logging configuration for the research orchestrator.

Structured JSON logging with:
- Rotating file handlers (app / error / debug)
- Optional human-readable console output
- Environment-based configuration (LOG_DIR, LOG_LEVEL, LOG_TO_CONSOLE)
- Correlation fields (session_id, role, model) passed through ``extra_fields``
"""

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

# Fields promoted to the top level of every JSON record when present
CORRELATION_FIELDS = ("session_id", "user_id", "role", "model")

ROOT_LOGGER = "research"


class JsonFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.
    Outputs one JSON object per line for log aggregation systems.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            for key in CORRELATION_FIELDS:
                if key in extra_fields:
                    log_data[key] = extra_fields[key]
            log_data["fields"] = {
                k: v for k, v in extra_fields.items() if k not in CORRELATION_FIELDS
            }

        return json.dumps(log_data, default=str)


class LoggerConfig:
    """
    Centralized logger configuration and management.
    """

    LOG_DIR = Path(os.getenv("LOG_DIR", "logs"))
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
    LOG_TO_CONSOLE = os.getenv("LOG_TO_CONSOLE", "false").lower() == "true"
    MAX_BYTES = 10 * 1024 * 1024  # 10MB per file
    BACKUP_COUNT = 5

    _initialized = False

    @classmethod
    def _rotating_handler(cls, filename: str, level: int, formatter: logging.Formatter) -> logging.Handler:
        handler = logging.handlers.RotatingFileHandler(
            cls.LOG_DIR / filename,
            maxBytes=cls.MAX_BYTES,
            backupCount=cls.BACKUP_COUNT,
            encoding="utf-8",
        )
        handler.setLevel(level)
        handler.setFormatter(formatter)
        return handler

    @classmethod
    def setup_logging(cls) -> None:
        """
        Set up logging for the whole process. Safe to call more than once.
        """
        if cls._initialized:
            return

        cls.LOG_DIR.mkdir(parents=True, exist_ok=True)

        # Only our own package loggers are configured; the root logger is left to the host
        app_logger = logging.getLogger(ROOT_LOGGER)
        app_logger.setLevel(getattr(logging, cls.LOG_LEVEL, logging.INFO))
        app_logger.handlers.clear()
        app_logger.propagate = True

        json_formatter = JsonFormatter()
        targets = [("app.log", logging.INFO), ("error.log", logging.ERROR)]
        if cls.LOG_LEVEL == "DEBUG":
            targets.append(("debug.log", logging.DEBUG))
        for filename, level in targets:
            app_logger.addHandler(cls._rotating_handler(filename, level, json_formatter))

        if cls.LOG_TO_CONSOLE:
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setLevel(logging.WARNING)
            console_handler.setFormatter(
                logging.Formatter(
                    fmt="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S",
                )
            )
            app_logger.addHandler(console_handler)

        cls._initialized = True

        app_logger.getChild("logging").info(
            "Logging system initialized",
            extra={
                "extra_fields": {
                    "log_level": cls.LOG_LEVEL,
                    "log_dir": str(cls.LOG_DIR),
                    "console_logging": cls.LOG_TO_CONSOLE,
                    "handlers": [filename for filename, _ in targets],
                }
            },
        )

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """
        Get a logger nested under the ``research`` namespace.

        Args:
            name: The name of the logger (typically __name__)
        """
        if not cls._initialized:
            cls.setup_logging()

        return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def get_logger(name: str) -> logging.Logger:
    """
    Get a configured logger instance.

    Example:
        >>> from utils.logger import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.info("Agent started", extra={"extra_fields": {"session_id": "s1", "role": "analyst"}})
    """
    return LoggerConfig.get_logger(name)
