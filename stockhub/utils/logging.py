from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable

from flask import Flask, g, has_app_context


class OperationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        operation_id = None
        if has_app_context():
            operation_id = getattr(g, "operation_id", None)
        record.operation_id = operation_id or "-"
        return True


def _has_handler(logger: logging.Logger, handler_types: Iterable[type]) -> bool:
    return any(isinstance(handler, handler_types) for handler in logger.handlers)


def configure_logging(app: Flask) -> Path:
    logs_dir = Path(app.config.get("STOCK_LOG_DIR") or Path(app.root_path).parent / "logs")
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_path = logs_dir / "stockhub.log"

    level_name = str(app.config.get("STOCK_LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] [op=%(operation_id)s] %(name)s: %(message)s"
    )
    operation_filter = OperationIdFilter()

    if not _has_handler(root_logger, (logging.StreamHandler,)):
        stream_handler = logging.StreamHandler(sys.stdout)
        stream_handler.setLevel(level)
        stream_handler.setFormatter(formatter)
        stream_handler.addFilter(operation_filter)
        root_logger.addHandler(stream_handler)

    # one stock log file per process; a re-created app may point elsewhere
    for handler in list(root_logger.handlers):
        if getattr(handler, "_stockhub_log", False) and handler.baseFilename != str(log_path):
            root_logger.removeHandler(handler)
            handler.close()

    if not any(
        isinstance(handler, RotatingFileHandler)
        and getattr(handler, "baseFilename", "") == str(log_path)
        for handler in root_logger.handlers
    ):
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=5 * 1024 * 1024,
            backupCount=5,
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(operation_filter)
        file_handler._stockhub_log = True
        root_logger.addHandler(file_handler)

    for handler in app.logger.handlers:
        if not any(isinstance(f, OperationIdFilter) for f in handler.filters):
            handler.addFilter(operation_filter)

    app.logger.setLevel(level)
    logging.getLogger("stockhub").setLevel(level)

    return log_path
