"""Shared logging setup for the runtime and the HTTP service."""
from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable, Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# Third-party loggers that flood INFO with per-request lines
QUIET_LOGGERS: tuple[str, ...] = (
    "httpx",
    "httpcore",
    "anthropic",
    "uvicorn",
    "uvicorn.access",
)


@dataclass(slots=True)
class LogSettings:
    level: int
    log_dir: Optional[Path]
    max_bytes: int
    backup_count: int


def _level(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    level = logging.getLevelName(value.upper())
    return level if isinstance(level, int) else None


def _setting(env_prefix: str, name: str) -> Optional[str]:
    """``{prefix}NAME`` wins over the shared ``NAME``; empty strings count as set"""
    value = os.getenv(f"{env_prefix}{name}")
    return value if value is not None else os.getenv(name)


def resolve_log_settings(
    env_prefix: str = "ASUKA_",
    default_level: str = "INFO",
    default_log_dir: str = "logs",
) -> LogSettings:
    """Read level, directory and rotation from the environment"""
    level = _level(_setting(env_prefix, "LOG_LEVEL")) or _level(default_level) or logging.INFO

    log_dir = _setting(env_prefix, "LOG_DIR")
    if log_dir is None:
        log_dir = default_log_dir

    return LogSettings(
        level=level,
        log_dir=Path(log_dir).expanduser() if log_dir else None,
        max_bytes=int(_setting(env_prefix, "LOG_MAX_BYTES") or 1_048_576),
        backup_count=int(_setting(env_prefix, "LOG_BACKUP_COUNT") or 5),
    )


def configure_root_logger(
    *,
    service_name: str,
    env_prefix: str = "ASUKA_",
    default_level: str = "INFO",
    default_log_dir: str = "logs",
    quiet: Iterable[str] = QUIET_LOGGERS,
) -> Optional[Path]:
    """Route every ``asuka.*`` logger to stdout and, when a log directory is set,
    to ``<log_dir>/<service_name>.log`` with rotation.

    An empty ``{env_prefix}LOG_DIR`` disables the file. Returns the log file
    path, or ``None`` when only stdout is used.
    """
    settings = resolve_log_settings(env_prefix, default_level, default_log_dir)
    formatter = logging.Formatter(LOG_FORMAT)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    log_path: Optional[Path] = None
    if settings.log_dir is not None:
        settings.log_dir.mkdir(parents=True, exist_ok=True)
        log_path = settings.log_dir / f"{service_name}.log"
        handlers.append(
            RotatingFileHandler(
                log_path,
                maxBytes=settings.max_bytes,
                backupCount=settings.backup_count,
                encoding="utf-8",
            )
        )

    for handler in handlers:
        handler.setFormatter(formatter)
    logging.basicConfig(handlers=handlers, level=settings.level, force=True)

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)

    return log_path
