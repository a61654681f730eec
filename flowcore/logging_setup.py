"""Process-wide logging configuration driven by the ``logging`` section.

Usage::

    from flowcore.logging_setup import configure_logging

    configure_logging(get_config().logging)   # once at process startup

``format: json`` emits one JSON object per line (for log shippers);
``format: text`` is the human readable console format.
"""
from __future__ import annotations

import json
import logging

from flowcore.config.schemas.observability import LoggingConfig

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_configured = False


class JsonFormatter(logging.Formatter):
    """Render a record as a single-line JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record, LOG_DATE_FORMAT),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(cfg: LoggingConfig | None = None) -> None:
    """Install a console handler on the ``flowcore``/``flowdesk`` loggers.

    Safe to call multiple times; only the first call takes effect.
    """
    global _configured
    if _configured:
        return
    _configured = True

    cfg = cfg or LoggingConfig()
    level = _LEVELS[cfg.level]
    handler = logging.StreamHandler()
    handler.setLevel(level)
    if cfg.format == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
        )
    for name in ("flowcore", "flowdesk"):
        lg = logging.getLogger(name)
        lg.setLevel(level)
        lg.addHandler(handler)


def reset_for_tests() -> None:  # pragma: no cover
    global _configured
    _configured = False
    for name in ("flowcore", "flowdesk"):
        logging.getLogger(name).handlers.clear()


__all__ = ["configure_logging", "JsonFormatter", "reset_for_tests"]
