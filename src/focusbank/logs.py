"""Package logger with a circular buffer of recent records for the API and CLI."""

import logging
from collections import deque
from datetime import datetime
from typing import Deque

logger = logging.getLogger("focusbank")
logger.setLevel(logging.INFO)

# Circular buffer to store recent log entries (max 100)
log_buffer: Deque[dict] = deque(maxlen=100)


class LogBufferHandler(logging.Handler):
    """Logging handler that captures records to the circular buffer."""

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


buffer_handler = LogBufferHandler()
buffer_handler.setLevel(logging.DEBUG)
buffer_handler.setFormatter(logging.Formatter("%(message)s"))
logger.addHandler(buffer_handler)


def get_logger(name: str) -> logging.Logger:
    """Child logger under the package logger, e.g. ``focusbank.registry``."""
    return logger.getChild(name)


def recent_logs(limit: int = 50) -> list[dict]:
    """Most recent buffered records, oldest first."""
    if limit <= 0:
        return []
    return list(log_buffer)[-limit:]
