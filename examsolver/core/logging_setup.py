from __future__ import annotations
import logging
import os
import re
import sys
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any, List, MutableMapping, Optional

import structlog
from structlog.contextvars import merge_contextvars, bind_contextvars, clear_contextvars

LOG_DIR_ENV = "EXAMSOLVER_LOG_DIR"
LOG_FILE_NAME = "examsolver.jsonl"

# Provider keys and auth headers can end up in error text and request dumps
_SECRET_PATTERNS = [
    (re.compile(r"sk-[A-Za-z0-9_-]{16,}"), "[REDACTED:api_key]"),
    (re.compile(r"bearer\s+[A-Za-z0-9._-]+", re.IGNORECASE), "[REDACTED:bearer]"),
]
_SECRET_FIELDS = {"api_key", "apikey", "authorization"}

_LOG_CONFIGURED = False


def _scrub(value: Any) -> Any:
    if isinstance(value, str):
        for pat, repl in _SECRET_PATTERNS:
            value = pat.sub(repl, value)
        return value
    if isinstance(value, dict):
        return {k: _scrub(v) for k, v in value.items()}
    return value


def redact_secrets(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor masking API keys wherever they appear in an event."""
    for key, value in list(event_dict.items()):
        if key.lower() in _SECRET_FIELDS and value:
            event_dict[key] = "[REDACTED]"
        else:
            event_dict[key] = _scrub(value)
    return event_dict


def build_handlers(
    level: int, console_level: int, logs_dir: Optional[Path]
) -> List[logging.Handler]:
    """Console on stderr, plus a daily-rotated JSONL file when a log dir is given."""
    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    handlers: List[logging.Handler] = [console]
    if logs_dir is None:
        return handlers
    try:
        logs_dir.mkdir(parents=True, exist_ok=True)
        file_handler = TimedRotatingFileHandler(
            str(logs_dir / LOG_FILE_NAME), when="midnight", backupCount=14, encoding="utf-8"
        )
    except OSError as e:
        print(f"examsolver: file logging disabled: {e}", file=sys.stderr)
        return handlers
    file_handler.setLevel(level)
    handlers.append(file_handler)
    return handlers


def configure_logging(
    env: Optional[str] = None, logs_dir: Optional[Path] = None
) -> structlog.stdlib.BoundLogger:
    """Configure structlog once per process.

    ``env="debug"`` lowers the level to DEBUG; ``env="cli"`` keeps the console
    to warnings so answers on stdout stay readable. A JSONL file is written
    only when ``logs_dir`` or ``EXAMSOLVER_LOG_DIR`` names a directory.
    """
    global _LOG_CONFIGURED
    if _LOG_CONFIGURED:
        return structlog.get_logger("examsolver")

    env = (env or os.getenv("APP_ENV", "dev")).lower()
    level = logging.DEBUG if env == "debug" else logging.INFO
    if logs_dir is None and os.getenv(LOG_DIR_ENV):
        logs_dir = Path(os.environ[LOG_DIR_ENV]).expanduser()

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers = build_handlers(
        level, logging.WARNING if env == "cli" else level, logs_dir
    )

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            merge_contextvars,
            redact_secrets,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    _LOG_CONFIGURED = True
    return structlog.get_logger("examsolver")


def log_context_clear() -> None:
    clear_contextvars()


def log_context_bind(**kwargs: Any) -> None:
    bind_contextvars(**kwargs)
