from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .runtime_paths import ensure_runtime_dirs, resolve_audit_log_path, resolve_log_path

AUDIT_LOGGER_NAME = "calc.audit"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_CONFIGURED = False


def _has_file_handler(logger: logging.Logger, path: Path) -> bool:
    target = path.resolve().as_posix()
    return any(
        isinstance(handler, RotatingFileHandler) and Path(handler.baseFilename).resolve().as_posix() == target
        for handler in logger.handlers
    )


def _rotating_handler(path: Path, fmt: str = LOG_FORMAT) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        filename=path,
        maxBytes=10 * 1024 * 1024,
        backupCount=7,
        encoding="utf-8",
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(fmt=fmt, datefmt=LOG_DATE_FORMAT))
    return handler


def _raise_to_info(logger: logging.Logger) -> None:
    if logger.level == logging.NOTSET or logger.level > logging.INFO:
        logger.setLevel(logging.INFO)


def configure_logging() -> Path:
    global _CONFIGURED
    if _CONFIGURED:
        return resolve_log_path()

    ensure_runtime_dirs()
    log_path = resolve_log_path().resolve()

    root_logger = logging.getLogger("")
    if not _has_file_handler(root_logger, log_path):
        root_logger.addHandler(_rotating_handler(log_path))
    _raise_to_info(root_logger)

    # Uvicorn installs its own stream handlers; keep propagation so records reach data/logs.
    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logger = logging.getLogger(logger_name)
        logger.propagate = True
        _raise_to_info(logger)

    root_logger.info("File logging initialized at %s", log_path)
    _CONFIGURED = True
    return log_path


def configure_audit_logging() -> Path:
    """Route stored strategy events to their own append-only file.

    The audit logger does not propagate, so event lines stay out of the main log.
    Calling again with a new ``CALC_AUDIT_LOG_PATH`` adds a handler for that path.
    """
    ensure_runtime_dirs()
    log_path = resolve_audit_log_path().resolve()
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(AUDIT_LOGGER_NAME)
    if not _has_file_handler(logger, log_path):
        logger.addHandler(_rotating_handler(log_path, fmt="%(asctime)s %(message)s"))
        logger.info("audit logging initialized path=%s", log_path)
    logger.propagate = False
    _raise_to_info(logger)
    return log_path
