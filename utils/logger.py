"""
Structured JSON logging for the decision layer.

Every routing, fallback, cache and tuning decision is written as one JSON
object per line so decisions can be replayed from log aggregation
(ELK/Loki/Datadog).

Files under ``LOG_DIR``:
- ``decisions.log``: INFO and above
- ``error.log``: ERROR and above
- ``debug.log``: everything, only when ``LOG_LEVEL=DEBUG``

``LOG_TO_CONSOLE=true`` additionally echoes errors to stderr.
"""

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

MAX_BYTES = 10 * 1024 * 1024
BACKUP_COUNT = 5

# LogRecord attribute carrying structured fields
EXTRA_ATTR = "extra_fields"


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        payload.update(getattr(record, EXTRA_ATTR, None) or {})

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


class LoggerConfig:
    """Configures the root logger once per process from the environment."""

    _initialized = False
    log_dir: Path = Path("logs")
    log_level: str = "INFO"
    log_to_console: bool = False

    @classmethod
    def setup_logging(cls) -> None:
        if cls._initialized:
            return

        cls.log_dir = Path(os.getenv("LOG_DIR", "logs"))
        cls.log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        cls.log_to_console = os.getenv("LOG_TO_CONSOLE", "false").lower() == "true"
        cls.log_dir.mkdir(parents=True, exist_ok=True)

        root = logging.getLogger()
        root.setLevel(getattr(logging, cls.log_level, logging.INFO))
        root.handlers.clear()

        formatter = JsonFormatter()
        root.addHandler(cls._file_handler("decisions.log", logging.INFO, formatter))
        root.addHandler(cls._file_handler("error.log", logging.ERROR, formatter))
        if cls.log_level == "DEBUG":
            root.addHandler(cls._file_handler("debug.log", logging.DEBUG, formatter))

        if cls.log_to_console:
            console = logging.StreamHandler(sys.stderr)
            console.setLevel(logging.ERROR)
            console.setFormatter(
                logging.Formatter(
                    fmt="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S",
                )
            )
            root.addHandler(console)

        cls._initialized = True
        logging.getLogger(__name__).info(
            "Logging system initialized",
            extra=log_fields(
                log_level=cls.log_level,
                log_dir=str(cls.log_dir),
                console_logging=cls.log_to_console,
            ),
        )

    @classmethod
    def _file_handler(
        cls, filename: str, level: int, formatter: logging.Formatter
    ) -> logging.Handler:
        handler = logging.handlers.RotatingFileHandler(
            cls.log_dir / filename,
            maxBytes=MAX_BYTES,
            backupCount=BACKUP_COUNT,
            encoding="utf-8",
        )
        handler.setLevel(level)
        handler.setFormatter(formatter)
        return handler


def get_logger(name: str) -> logging.Logger:
    """
    Module logger; configures logging on first use.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("Route selected", extra=log_fields(model_id="gemini-2.5-pro"))
    """
    LoggerConfig.setup_logging()
    return logging.getLogger(name)


def log_fields(**fields: Any) -> dict[str, Any]:
    """Build the ``extra`` mapping understood by :class:`JsonFormatter`."""
    return {EXTRA_ATTR: fields}
