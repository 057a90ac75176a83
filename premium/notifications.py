"""
Notification sinks the upgrade workflow reports user-facing messages to.
"""
import logging
from dataclasses import dataclass
from typing import List, Protocol

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    def success(self, title: str, message: str) -> None: ...

    def info(self, title: str, message: str) -> None: ...

    def warning(self, title: str, message: str) -> None: ...

    def error(self, title: str, message: str) -> None: ...


class LoggingNotificationSink:
    """Writes notifications to the module logger."""

    def success(self, title: str, message: str) -> None:
        logger.info(f"[success] {title}: {message}")

    def info(self, title: str, message: str) -> None:
        logger.info(f"[info] {title}: {message}")

    def warning(self, title: str, message: str) -> None:
        logger.warning(f"[warning] {title}: {message}")

    def error(self, title: str, message: str) -> None:
        logger.error(f"[error] {title}: {message}")


@dataclass
class Notification:
    level: str
    title: str
    message: str


class RecordingNotificationSink:
    """Keeps notifications in memory, newest last."""

    def __init__(self):
        self.notifications: List[Notification] = []

    def _add(self, level: str, title: str, message: str) -> None:
        self.notifications.append(Notification(level, title, message))

    def success(self, title: str, message: str) -> None:
        self._add("success", title, message)

    def info(self, title: str, message: str) -> None:
        self._add("info", title, message)

    def warning(self, title: str, message: str) -> None:
        self._add("warning", title, message)

    def error(self, title: str, message: str) -> None:
        self._add("error", title, message)

    @property
    def last(self) -> Notification:
        return self.notifications[-1]

    def levels(self) -> List[str]:
        return [n.level for n in self.notifications]
