"""Process-wide logging setup for the CLI and scripts.

Library modules only ever call ``logging.getLogger(__name__)``; handlers and
formatters are installed here, once, by the entry point.
"""

from __future__ import annotations

import json
import logging
import sys

_NOISY_LOGGERS = ("asyncio", "PIL", "playwright")


class JsonFormatter(logging.Formatter):
    """One JSON object per line with severity, message, logger and time."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "severity": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
        }
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_logging(level: str = "INFO", json_format: bool = False) -> None:
    """Install a stderr handler on the root logger.

    Args:
        level: Log level name (``DEBUG``, ``INFO``, ...); unknown names fall back to INFO.
        json_format: Emit JSON lines instead of human-readable text.
    """
    resolved = getattr(logging, level.upper(), logging.INFO)
    handler = logging.StreamHandler(sys.stderr)
    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s %(levelname)-8s %(name)s — %(message)s",
                datefmt="%Y-%m-%dT%H:%M:%S",
            )
        )
    logging.root.handlers.clear()
    logging.root.addHandler(handler)
    logging.root.setLevel(resolved)

    # Quieten noisy libraries
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
