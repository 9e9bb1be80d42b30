"""User-facing notification events.

The reconciler only emits semantic events; rendering them as toasts is up to
whichever front end consumes them.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

logger = logging.getLogger(__name__)


class NotificationLevel(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"


@dataclass(frozen=True)
class Notification:
    level: NotificationLevel
    message: str


class Notifier(Protocol):
    def notify(self, notification: Notification) -> None: ...


class NotificationLog:
    """Collects notifications in order of emission."""

    def __init__(self) -> None:
        self.events: list[Notification] = []

    def notify(self, notification: Notification) -> None:
        self.events.append(notification)

    def of_level(self, level: NotificationLevel) -> list[Notification]:
        return [event for event in self.events if event.level is level]

    def clear(self) -> None:
        self.events.clear()


class LoggingNotifier:
    """Forwards notifications to the module logger."""

    _LEVELS = {
        NotificationLevel.SUCCESS: logging.INFO,
        NotificationLevel.INFO: logging.INFO,
        NotificationLevel.ERROR: logging.WARNING,
    }

    def notify(self, notification: Notification) -> None:
        logger.log(
            self._LEVELS[notification.level],
            "[%s] %s",
            notification.level.value,
            notification.message,
        )
