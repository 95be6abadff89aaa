"""User-facing notifications (toasts) collected during an operation."""
import logging
import threading
from dataclasses import dataclass
from typing import Dict, List

logger = logging.getLogger(__name__)

LEVELS = ('success', 'info', 'warning', 'error')

_LOG_LEVELS = {
    'success': logging.INFO,
    'info': logging.INFO,
    'warning': logging.WARNING,
    'error': logging.WARNING,
}


@dataclass(frozen=True)
class Notification:
    level: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {'level': self.level, 'message': self.message}


class Notifier:
    """
    Collects notifications until the caller drains them, typically once per
    HTTP response.
    """

    def __init__(self):
        self._items: List[Notification] = []
        self._lock = threading.Lock()

    def notify(self, level: str, message: str) -> Notification:
        if level not in LEVELS:
            raise ValueError(f"Unknown notification level '{level}'")
        notification = Notification(level, message)
        with self._lock:
            self._items.append(notification)
        logger.log(_LOG_LEVELS[level], f"[NOTIFY] {level}: {message}")
        return notification

    def success(self, message: str) -> Notification:
        return self.notify('success', message)

    def info(self, message: str) -> Notification:
        return self.notify('info', message)

    def warning(self, message: str) -> Notification:
        return self.notify('warning', message)

    def error(self, message: str) -> Notification:
        return self.notify('error', message)

    @property
    def pending(self) -> List[Notification]:
        with self._lock:
            return list(self._items)

    def drain(self) -> List[Dict[str, str]]:
        """Return and clear pending notifications."""
        with self._lock:
            items, self._items = self._items, []
        return [n.to_dict() for n in items]
