"""Run-scoped event channel for user-facing progress messages.

Components receive an :class:`EventBus` explicitly; there is no process-wide
listener registry. Every event is also written to the bus logger.
"""
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional


class EventLevel(str, Enum):
    info = "info"
    success = "success"
    warn = "warn"
    error = "error"


_LOG_LEVELS = {
    EventLevel.info: logging.INFO,
    EventLevel.success: logging.INFO,
    EventLevel.warn: logging.WARNING,
    EventLevel.error: logging.ERROR,
}


@dataclass(frozen=True)
class Event:
    id: str
    timestamp: str
    message: str
    level: EventLevel
    source: Optional[str] = None


EventListener = Callable[[Event], None]


class EventBus:
    def __init__(self, logger_name: str = "exam_ingest") -> None:
        self._listeners: List[EventListener] = []
        self.logger = logging.getLogger(logger_name)

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def emit(self, message: str, level: EventLevel | str = EventLevel.info, source: Optional[str] = None) -> Event:
        level = EventLevel(level)
        event = Event(
            id=secrets.token_hex(5),
            timestamp=datetime.now().strftime("%H:%M:%S"),
            message=message,
            level=level,
            source=source,
        )
        self.logger.log(_LOG_LEVELS[level], "[%s] %s", source or "-", message)
        # Copy so listeners may unsubscribe while being notified.
        for listener in list(self._listeners):
            listener(event)
        return event

    def info(self, message: str, source: Optional[str] = None) -> Event:
        return self.emit(message, EventLevel.info, source)

    def success(self, message: str, source: Optional[str] = None) -> Event:
        return self.emit(message, EventLevel.success, source)

    def warn(self, message: str, source: Optional[str] = None) -> Event:
        return self.emit(message, EventLevel.warn, source)

    def error(self, message: str, source: Optional[str] = None) -> Event:
        return self.emit(message, EventLevel.error, source)


__all__ = ["Event", "EventBus", "EventLevel", "EventListener"]
