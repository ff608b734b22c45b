"""Unified logger for the whole project."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from sidergate.config.settings import settings


LOG_FILE = Path(settings.log_dir) / "sidergate.log"


def _build_logger() -> logging.Logger:
    configured_logger = logging.getLogger("sidergate")
    if configured_logger.handlers:
        return configured_logger

    level = logging.getLevelName(str(settings.log_level or "INFO").strip().upper())
    configured_logger.setLevel(level if isinstance(level, int) else logging.INFO)
    configured_logger.propagate = False

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    try:
        LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(LOG_FILE, maxBytes=10 * 1024 * 1024, backupCount=10, encoding="utf-8"))
    except OSError as exc:
        # 日志目录不可写时只输出到 stderr
        file_error: OSError | None = exc
    else:
        file_error = None

    formatter = logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
    for handler in handlers:
        handler.setFormatter(formatter)
        configured_logger.addHandler(handler)
    if file_error is not None:
        configured_logger.warning("file logging disabled path=%s error=%s", LOG_FILE, file_error)
    return configured_logger


logger = _build_logger()


def short_id(value: str | None, length: int = 12) -> str:
    """Truncate an opaque id for log output."""

    if not value:
        return "none"
    if len(value) <= length:
        return value
    return f"{value[:length]}..."
