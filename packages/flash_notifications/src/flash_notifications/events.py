"""Event definitions and listener interfaces."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Final

if TYPE_CHECKING:
    from .schemas import NotificationOptions

logger = logging.getLogger(__name__)

DEFAULT_MAX_QUEUED: Final[int] = 1000


class NotificationEvent(Enum):
    """Types of events emitted by the notification manager."""

    ADD = "add"
    UPDATE = "update"
    CANCEL = "cancel"
    CANCEL_ALL = "cancelall"
    CLEAR = "clear"
    CLEAR_ALL = "clearall"
    TRIGGER = "trigger"


@dataclass
class Event:
    """
    A notification lifecycle event.

    Attributes:
        type: The category of the event.
        timestamp: When the event occurred.
        notification_id: ID of the notification related to the event (optional).
        options: The notification options at the time of the event (optional).
        queued: True if the event was held back until the consumer was ready.
        payload: Extra catch-all data for custom event types.
    """

    type: NotificationEvent
    timestamp: datetime
    notification_id: int | None = None
    options: NotificationOptions | None = None
    queued: bool = False
    payload: Any | None = None


class EventListener(ABC):
    """
    Interface for receiving notification events.
    """

    @abstractmethod
    async def on_event(self, event: Event) -> None:
        """Handle an incoming event asynchronously."""
        ...


class EventManager:
    """
    Central hub for managing listeners and dispatching events.

    Events dispatched before ``ready()`` are held in a bounded queue (oldest
    dropped first when full) and delivered in order once the consumer
    reports ready. ``suspend()`` goes back to queueing.

    Handles safe execution of listeners so one failure doesn't halt the manager.
    """

    def __init__(self, max_queued: int = DEFAULT_MAX_QUEUED) -> None:
        if max_queued < 1:
            msg = "max_queued must be positive"
            raise ValueError(msg)

        self._listeners: list[EventListener] = []
        self._queue: deque[Event] = deque(maxlen=max_queued)
        self._ready = False
        self._flush_lock = asyncio.Lock()

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def queued(self) -> list[Event]:
        return list(self._queue)

    def add_listener(self, listener: EventListener) -> None:
        """Register a new listener to receive events."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        """Unregister an existing listener."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def dispatch(self, event: Event) -> None:
        """
        Dispatch an event, or queue it while the consumer is not ready.

        Exceptions in listeners are logged but suppressed.
        """
        if not self._ready:
            if len(self._queue) == self._queue.maxlen:
                logger.warning("Event queue full, dropping oldest event")
            self._queue.append(dataclasses.replace(event, queued=True))
            return

        await self._notify(event)

    async def ready(self) -> None:
        """Flush queued events in order and switch to direct delivery."""
        async with self._flush_lock:
            if self._ready:
                return
            while self._queue:
                await self._notify(self._queue.popleft())
            self._ready = True

    def suspend(self) -> None:
        """Go back to queueing events until the next ``ready()``."""
        self._ready = False

    async def _notify(self, event: Event) -> None:
        if not self._listeners:
            return

        tasks = [self._safe_notify(listener, event) for listener in self._listeners]
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _safe_notify(self, listener: EventListener, event: Event) -> None:
        """Executes a single listener with error handling."""
        try:
            await listener.on_event(event)
        except Exception:
            logger.exception(f"Error in event listener {listener}")
