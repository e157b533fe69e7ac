"""
Notification sinks — where timer announcements go.

The engine only decides *what* to announce and *when*.  A sink delivers the
text; a chat bot would implement one that posts to a channel.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class NotificationSink(ABC):
    """Fire-and-forget delivery of announcement text."""

    @abstractmethod
    async def announce(self, scope_id: str, destination_id: str, message: str) -> None:
        """
        Deliver message to destination_id within scope_id.

        May raise if the destination is unreachable; the scheduler logs the
        failure and carries on.
        """
        ...


class LoggingSink(NotificationSink):
    """Writes announcements to the log instead of a channel."""

    async def announce(self, scope_id: str, destination_id: str, message: str) -> None:
        logger.info("[%s/%s] %s", scope_id, destination_id, message.replace("\n", " | "))


class RecordingSink(NotificationSink):
    """Keeps every announcement in memory, in delivery order."""

    def __init__(self) -> None:
        self.messages: list[tuple[str, str, str]] = []

    async def announce(self, scope_id: str, destination_id: str, message: str) -> None:
        self.messages.append((scope_id, destination_id, message))
