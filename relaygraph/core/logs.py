"""relaygraph.core.logs

Log lines are event names (``relay_query_failed``) plus structured ``extra``.
This module only decides where they go and what they look like.
"""

from __future__ import annotations

import json
import logging
import sys

from relaygraph.core.config import LoggingConfig

_RESERVED = set(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        body: dict[str, object] = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED and not key.startswith("_"):
                body[key] = value
        if record.exc_info:
            body["exc"] = self.formatException(record.exc_info)
        return json.dumps(body, default=str)


class KeyValueFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        extras = [
            f"{k}={v}" for k, v in record.__dict__.items() if k not in _RESERVED and not k.startswith("_")
        ]
        return f"{base} {' '.join(extras)}" if extras else base


def configure_logging(cfg: LoggingConfig, *, stream=None) -> logging.Logger:
    """Attach one handler to the ``relaygraph`` logger. Idempotent."""

    logger = logging.getLogger("relaygraph")
    logger.setLevel(cfg.level.upper())
    for h in list(logger.handlers):
        if getattr(h, "_relaygraph", False):
            logger.removeHandler(h)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler._relaygraph = True  # type: ignore[attr-defined]
    if cfg.json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(KeyValueFormatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    logger.addHandler(handler)
    return logger
