"""Logging setup for the asset service."""

import json
import logging
import os
import sys

# LogRecord attributes that are not caller-supplied extras
_RESERVED = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime", "taskName"}

_CONFIGURED = False


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        data = {
            "time": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in _RESERVED:
                continue
            try:
                json.dumps(value)
                data[key] = value
            except (TypeError, ValueError):
                data[key] = str(value)
        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(data, ensure_ascii=False)


def configure_logging(level: str | None = None) -> logging.Logger:
    """Attach a JSON stdout handler to the ``assetvault`` logger once.

    ``LOG_LEVEL`` (DEBUG|INFO|WARNING|ERROR|CRITICAL, default INFO) applies
    when ``level`` is not given.
    """

    global _CONFIGURED
    logger = logging.getLogger("assetvault")
    resolved = (level or os.getenv("LOG_LEVEL", "") or "INFO").upper()
    log_level = logging.getLevelName(resolved)
    if not isinstance(log_level, int):
        log_level = logging.INFO
    logger.setLevel(log_level)
    if _CONFIGURED:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    _CONFIGURED = True
    logger.debug("logging configured at %s", resolved)
    return logger
