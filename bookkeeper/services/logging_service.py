from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


def _has_file_handler(lg: logging.Logger, path: Path) -> bool:
    return any(
        getattr(h, "baseFilename", None) == str(path)
        for h in lg.handlers
        if isinstance(h, logging.FileHandler)
    )


def configure_logging(log_dir: Path, production: bool = False) -> None:
    """Configure application logging (file + console) and attach to uvicorn loggers.

    In production the files rotate (10MB, 5 backups), errors also go to
    errors.log, and the console only shows warnings.

    Idempotent: safe to call multiple times.
    """
    log_dir.mkdir(parents=True, exist_ok=True)

    server_log_path = log_dir / "server.log"
    error_log_path = log_dir / "errors.log"

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    formatter = logging.Formatter(fmt)
    detailed_formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [%(filename)s:%(lineno)d] %(funcName)s(): %(message)s"
    )

    if production:
        server_handler: logging.FileHandler = RotatingFileHandler(
            str(server_log_path), maxBytes=10 * 1024 * 1024, backupCount=5
        )
        server_handler.setLevel(logging.INFO)
    else:
        server_handler = logging.FileHandler(str(server_log_path))
        server_handler.setLevel(logging.DEBUG)
    server_handler.setFormatter(formatter)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setLevel(logging.WARNING if production else logging.INFO)
    stream_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    if not _has_file_handler(root_logger, server_log_path):
        root_logger.addHandler(server_handler)

    if not any(type(h) is logging.StreamHandler for h in root_logger.handlers):
        root_logger.addHandler(stream_handler)

    if production and not _has_file_handler(root_logger, error_log_path):
        error_handler = RotatingFileHandler(str(error_log_path), maxBytes=10 * 1024 * 1024, backupCount=5)
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(detailed_formatter)
        root_logger.addHandler(error_handler)

    # The scheduler is chatty at DEBUG
    logging.getLogger("apscheduler").setLevel(logging.INFO)

    # Uvicorn loggers
    for uv_logger_name in ("uvicorn.error", "uvicorn.access", "uvicorn"):
        lg = logging.getLogger(uv_logger_name)
        lg.setLevel(logging.DEBUG)
        if not _has_file_handler(lg, server_log_path):
            lg.addHandler(server_handler)
