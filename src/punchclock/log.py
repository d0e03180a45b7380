"""Logging setup with an in-memory ring buffer served at /api/logs."""

import logging
from collections import deque
from datetime import datetime
from typing import Deque

# Circular buffer of recent log entries (max 100)
log_buffer: Deque[dict] = deque(maxlen=100)


class LogBufferHandler(logging.Handler):
    """Captures log records into log_buffer."""

    def emit(self, record: logging.LogRecord):
        try:
            log_buffer.append({
                "timestamp": datetime.fromtimestamp(record.created).strftime("%H:%M:%S"),
                "level": record.levelname,
                "logger": record.name,
                "message": self.format(record),
            })
        except Exception:
            self.handleError(record)


_buffer_handler = LogBufferHandler()
_buffer_handler.setLevel(logging.DEBUG)
_buffer_handler.setFormatter(logging.Formatter("%(message)s"))


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Attach console + buffer handlers to the punchclock, uvicorn and fastapi loggers. Idempotent."""
    logger = logging.getLogger("punchclock")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    if not any(isinstance(h, logging.StreamHandler) for h in logger.handlers):
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        logger.addHandler(console)

    for name in ("punchclock", "uvicorn", "fastapi"):
        target = logging.getLogger(name)
        if _buffer_handler not in target.handlers:
            target.addHandler(_buffer_handler)
    return logger


def recent_logs(limit: int = 100) -> list[dict]:
    return list(log_buffer)[-limit:]
