from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

logger = logging.getLogger(__name__)


class PresentationService(ABC):
    """
    Interface for showing notifications to the user.

    The service is the source of truth for what is currently visible: the
    manager classifies entries as scheduled or triggered by asking it.
    """

    @abstractmethod
    async def post(self, notification_id: int, content: dict[str, Any]) -> None:
        """Show (or replace) the notification for an id."""
        ...

    @abstractmethod
    async def dismiss(self, notification_id: int) -> None:
        """Remove the notification for an id. Unknown ids are ignored."""
        ...

    @abstractmethod
    async def active_ids(self) -> list[int]:
        """Ids of every notification currently shown."""
        ...


class MemoryPresentationService(PresentationService):
    """
    Presentation service that keeps the posted content in a dictionary.

    Examples:
        >>> presenter = MemoryPresentationService()
        >>> await presenter.post(1, {"title": "Hello"})
        >>> await presenter.active_ids()
        [1]
    """

    def __init__(self) -> None:
        self.posted: dict[int, dict[str, Any]] = {}

    async def post(self, notification_id: int, content: dict[str, Any]) -> None:
        logger.info("Show notification %s: %s", notification_id, content.get("title"))
        self.posted[notification_id] = dict(content)

    async def dismiss(self, notification_id: int) -> None:
        self.posted.pop(notification_id, None)

    async def active_ids(self) -> list[int]:
        return sorted(self.posted)
