# customer_hub/utils/logging_config.py
"""
Logging setup driven by the ``LOG_*`` settings in ``config.monitoring``.
"""

import json
import logging
import logging.handlers
from datetime import datetime, timezone
from pathlib import Path

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_HANDLER_MARKER = "_customer_hub_handler"


class JsonFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    def format(self, record):
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _build_formatter(log_format):
    if str(log_format).lower() == "json":
        return JsonFormatter()
    return logging.Formatter(TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")


def setup_logging(app):
    """
    Configure the Flask app logger.

    Safe to call repeatedly; handlers installed by a previous call are
    replaced rather than duplicated.
    """
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    formatter = _build_formatter(app.config.get("LOG_FORMAT", "text"))

    logger = app.logger
    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(level)

    if app.config.get("ENABLE_CONSOLE_LOGGING", True):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        setattr(console_handler, _HANDLER_MARKER, True)
        logger.addHandler(console_handler)

    if app.config.get("ENABLE_FILE_LOGGING", False):
        log_dir = Path(app.config.get("LOG_DIR", "logs"))
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_dir / app.config.get("LOG_FILE_NAME", "customer_hub.log"),
            maxBytes=app.config.get("LOG_FILE_MAX_BYTES", 10485760),
            backupCount=app.config.get("LOG_FILE_BACKUP_COUNT", 10),
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        setattr(file_handler, _HANDLER_MARKER, True)
        logger.addHandler(file_handler)

    logger.debug(f"Logging configured at {logging.getLevelName(level)}")
    return logger
