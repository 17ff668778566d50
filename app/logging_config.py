"""Logging setup: JSON lines in production, colored console in development.

Engine code logs through ``logging.getLogger(__name__)`` and attaches the
learner/unit/word it is working on via ``extra=``; the JSON formatter lifts
those attributes into top-level keys so log search can filter on them.
"""
import logging
import sys
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from app.config import settings

CONTEXT_FIELDS = ("learner_id", "target_unit_id", "word", "attempt_number", "request_id")
"""Record attributes copied into JSON output when a caller passes them via ``extra=``."""

HANDLER_NAME = "pronunciation_mastery"

QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpx")
"""Third-party loggers held at WARNING regardless of the app level."""

DEV_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per line, with engine context fields at top level."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        log_data: Dict[str, Any] = {
            "timestamp": created.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        log_data.update(
            (field, getattr(record, field))
            for field in CONTEXT_FIELDS
            if hasattr(record, field)
        )
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ColoredFormatter(logging.Formatter):
    """Console formatter that colors the level name.

    Works on a copy of the record so other handlers never see the escape
    codes in ``levelname``.
    """

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        colored = logging.makeLogRecord(record.__dict__)
        color = self.LEVEL_COLORS.get(record.levelno)
        if color:
            colored.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(colored)


def _build_formatter() -> logging.Formatter:
    if settings.is_production:
        return JSONFormatter()
    return ColoredFormatter(fmt=DEV_FORMAT, datefmt="%H:%M:%S")


def setup_logging(log_level: Optional[str] = None) -> None:
    """Install the application handler on the root logger.

    Args:
        log_level: Level name; defaults to INFO in production, DEBUG otherwise.
            Unknown names fall back to INFO.

    Re-running replaces the handler installed by an earlier call.
    """
    log_level = (log_level or ("INFO" if settings.is_production else "DEBUG")).upper()

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(HANDLER_NAME)
    handler.setFormatter(_build_formatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level, logging.INFO))
    for existing in list(root_logger.handlers):
        if existing.get_name() == HANDLER_NAME:
            root_logger.removeHandler(existing)
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        f"Logging configured: level={log_level}, environment={settings.ENVIRONMENT}"
    )
