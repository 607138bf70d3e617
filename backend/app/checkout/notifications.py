"""Notification sinks used by checkout sessions."""
from __future__ import annotations

import logging
from typing import List

from .collaborators import NotificationSink
from .models import Notification, NotificationSeverity

logger = logging.getLogger("checkout.notifications")


class SessionNotificationSink(NotificationSink):
    """Collects the toasts of one checkout session for the HTTP layer to return."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        self._notifications: List[Notification] = []

    def show(self, title: str, description: str, severity: NotificationSeverity) -> None:
        self._notifications.append(Notification(title=title, description=description, severity=severity))
        logger.debug(
            "Queued notification",
            extra={"checkout_session": self.session_id, "notification_title": title},
        )

    @property
    def notifications(self) -> List[Notification]:
        return list(self._notifications)

    def dismiss(self) -> int:
        """Drop every queued notification and return how many were shown."""

        count = len(self._notifications)
        self._notifications.clear()
        return count


__all__ = ["SessionNotificationSink"]
