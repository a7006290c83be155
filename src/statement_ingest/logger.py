import logging
import logging.config
import os
from typing import Any

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_RESET = "\x1b[0m"
_LEVEL_COLOURS = {
    logging.DEBUG: "\x1b[90m",
    logging.INFO: "\x1b[32m",
    logging.WARNING: "\x1b[33m",
    logging.ERROR: "\x1b[31m",
    logging.CRITICAL: "\x1b[31;1m",
}

# Third-party loggers that share our handlers instead of propagating to root.
_ROUTED_LOGGERS = {
    "httpx": "WARNING",
    "uvicorn": "INFO",
    "uvicorn.error": "INFO",
    "uvicorn.access": "INFO",
}


class ColourizedFormatter(logging.Formatter):
    """Colours the level name on the console. Set NO_COLOR to disable."""

    def format(self, record: logging.LogRecord) -> str:
        colour = _LEVEL_COLOURS.get(record.levelno)
        if colour is None or os.getenv("NO_COLOR"):
            return super().format(record)

        plain_levelname = record.levelname
        record.levelname = f"{colour}{plain_levelname}{_RESET}"
        try:
            return super().format(record)
        finally:
            # File handlers format the same record afterwards.
            record.levelname = plain_levelname


def _handlers(log_dir: str | None) -> dict[str, dict[str, Any]]:
    handlers: dict[str, dict[str, Any]] = {
        "console": {
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stdout",
            "formatter": "colour",
        },
    }
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        handlers["file"] = {
            "class": "logging.FileHandler",
            "filename": os.path.join(log_dir, "app.log"),
            "formatter": "plain",
        }
    return handlers


def get_logging_config() -> dict[str, Any]:
    """dictConfig for the app and for uvicorn's ``log_config``."""
    handlers = _handlers(os.getenv("LOG_DIR"))
    handler_names = list(handlers)

    loggers: dict[str, dict[str, Any]] = {
        "": {"handlers": handler_names, "level": os.getenv("LOG_LEVEL", "INFO").upper()},
    }
    for name, level in _ROUTED_LOGGERS.items():
        loggers[name] = {"handlers": handler_names, "level": level, "propagate": False}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "colour": {"()": "statement_ingest.logger.ColourizedFormatter", "format": LOG_FORMAT},
            "plain": {"format": LOG_FORMAT},
        },
        "handlers": handlers,
        "loggers": loggers,
    }


def setup_logging() -> None:
    logging.config.dictConfig(get_logging_config())


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
