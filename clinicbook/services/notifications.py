"""
User-facing notifications.

Sessions never raise network errors to their caller; they report them here
instead. Each notification is logged and kept in a short history that a
front end (or a test) can read back.
"""

from collections import deque
from datetime import datetime
from enum import Enum
from typing import Callable, Deque, List, Optional

from loguru import logger
from pydantic import BaseModel, Field


class NotificationLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


_LOG_LEVELS = {
    NotificationLevel.INFO: "INFO",
    NotificationLevel.SUCCESS: "SUCCESS",
    NotificationLevel.WARNING: "WARNING",
    NotificationLevel.ERROR: "ERROR",
}


class Notification(BaseModel):
    """A single toast-style message."""

    level: NotificationLevel
    title: str
    detail: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def text(self) -> str:
        return f"{self.title}: {self.detail}" if self.detail else self.title


NotificationSink = Callable[[Notification], None]


class Notifier:
    """
    Collects notifications and forwards them to an optional sink.

    Args:
        sink: Called with every notification, e.g. to render it
        history_size: Number of recent notifications kept
    """

    def __init__(self, sink: Optional[NotificationSink] = None, history_size: int = 50):
        self._sink = sink
        self._history: Deque[Notification] = deque(maxlen=history_size)

    def notify(self, level: NotificationLevel, title: str, detail: Optional[str] = None) -> Notification:
        notification = Notification(level=level, title=title, detail=detail)
        logger.log(_LOG_LEVELS[level], f"[notification] {notification.text}")
        self._history.append(notification)
        if self._sink is not None:
            try:
                self._sink(notification)
            except Exception as e:
                logger.error(f"Notification sink failed: {e}")
        return notification

    def info(self, title: str, detail: Optional[str] = None) -> Notification:
        return self.notify(NotificationLevel.INFO, title, detail)

    def success(self, title: str, detail: Optional[str] = None) -> Notification:
        return self.notify(NotificationLevel.SUCCESS, title, detail)

    def warning(self, title: str, detail: Optional[str] = None) -> Notification:
        return self.notify(NotificationLevel.WARNING, title, detail)

    def error(self, title: str, detail: Optional[str] = None) -> Notification:
        return self.notify(NotificationLevel.ERROR, title, detail)

    @property
    def history(self) -> List[Notification]:
        return list(self._history)

    @property
    def last(self) -> Optional[Notification]:
        return self._history[-1] if self._history else None

    def clear(self) -> None:
        self._history.clear()
