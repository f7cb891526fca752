"""
Log Forwarder

logging.Handler that turns editor log records into LogEvents waiting to be sent
to the control process. Records can arrive from any thread; the connection
manager drains the queue from the event loop.
"""

import logging
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Deque, List

from bridge.protocol import LogEvent, Severity

# Loggers whose records would feed back into the transport they are sent over
EXCLUDED_LOGGER_PREFIXES = ("bridge", "socketio", "engineio", "aiohttp", "urllib3", "opentelemetry", "asyncio")

DEFAULT_QUEUE_SIZE = 1000


def severity_for(record: logging.LogRecord) -> Severity:
    if record.levelno >= logging.CRITICAL:
        return Severity.FATAL
    if record.levelno >= logging.ERROR:
        return Severity.FATAL if record.exc_info else Severity.ERROR
    if record.levelno >= logging.WARNING:
        return Severity.WARNING
    return Severity.INFO


class LogForwarder(logging.Handler):
    def __init__(self, max_queue_size: int = DEFAULT_QUEUE_SIZE, enabled: bool = True, level: int = logging.DEBUG):
        super().__init__(level=level)
        self.enabled = enabled
        self._queue: Deque[LogEvent] = deque(maxlen=max_queue_size)
        self._queue_lock = threading.Lock()

    def emit(self, record: logging.LogRecord) -> None:
        if not self.enabled or record.name.startswith(EXCLUDED_LOGGER_PREFIXES):
            return
        try:
            stack_trace = ""
            if record.exc_info:
                stack_trace = self.formatter.formatException(record.exc_info) if self.formatter \
                    else logging.Formatter().formatException(record.exc_info)
            elif record.stack_info:
                stack_trace = record.stack_info
            event = LogEvent(
                message=record.getMessage(),
                stack_trace=stack_trace,
                severity=severity_for(record),
                timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc),
            )
            with self._queue_lock:
                self._queue.append(event)
        except Exception:
            self.handleError(record)

    def drain(self) -> List[LogEvent]:
        with self._queue_lock:
            events = list(self._queue)
            self._queue.clear()
        return events

    def requeue(self, events: List[LogEvent]) -> None:
        """Puts undelivered events back ahead of newer ones; the oldest are evicted when full."""
        with self._queue_lock:
            pending = list(events) + list(self._queue)
            self._queue.clear()
            self._queue.extend(pending)

    def pending_count(self) -> int:
        return len(self._queue)
