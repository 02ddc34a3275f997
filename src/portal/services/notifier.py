import logging
from typing import List, Optional

from portal.schemas.enums import NotificationLevel
from portal.schemas.notification import Notification

logger = logging.getLogger(__name__)


class Notifier:
    """Per-session toast queue.

    Loading toasts stay queued until dismissed, so a browser polling
    ``/notifications`` while a request is in flight sees them.
    """

    def __init__(self):
        self._queue: List[Notification] = []

    def _push(self, level: NotificationLevel, message: str, kind: Optional[str] = None) -> Notification:
        notification = Notification(level=level, message=message, kind=kind)
        self._queue.append(notification)
        logger.debug(f"Notification [{level.value}] {message}")
        return notification

    def success(self, message: str, kind: Optional[str] = None) -> Notification:
        return self._push(NotificationLevel.SUCCESS, message, kind)

    def error(self, message: str, kind: Optional[str] = None) -> Notification:
        return self._push(NotificationLevel.ERROR, message, kind)

    def info(self, message: str, kind: Optional[str] = None) -> Notification:
        return self._push(NotificationLevel.INFO, message, kind)

    def loading(self, message: str) -> Notification:
        return self._push(NotificationLevel.LOADING, message)

    def dismiss(self, notification: Optional[Notification]) -> None:
        if notification is None:
            return
        self._queue = [n for n in self._queue if n is not notification]

    def peek(self) -> List[Notification]:
        return list(self._queue)

    def drain(self) -> List[Notification]:
        """Hand out everything except loading toasts that are still running."""
        delivered = [n for n in self._queue if n.level != NotificationLevel.LOADING]
        self._queue = [n for n in self._queue if n.level == NotificationLevel.LOADING]
        return delivered

    def clear(self) -> None:
        self._queue = []
