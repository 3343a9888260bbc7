"""
Alarm service port and the in-process asyncio implementation.

An alarm is a one-shot wake-up for a notification id. The manager arms one
alarm per id at the entry's next fire time; when it goes off the registered
handler is called with the id and decides what (if anything) to present.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Final

from .schemas import AlarmType

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    AlarmHandler = Callable[[int], Awaitable[None]]

logger = logging.getLogger(__name__)

DEFAULT_MAX_ALARMS: Final[int] = 500


class ArmResult(Enum):
    """Outcome of an arm request."""

    OK = "OK"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"


class AlarmService(ABC):
    """
    Interface for the host's alarm facility.

    Implementations replace the existing alarm when an id is armed again, so
    at most one alarm per id is ever outstanding.
    """

    @abstractmethod
    def set_handler(self, handler: AlarmHandler) -> None:
        """Register the coroutine called with the id when an alarm fires."""
        ...

    @abstractmethod
    async def arm(
        self,
        notification_id: int,
        at: datetime,
        allow_while_idle: bool = False,
        alarm_type: AlarmType = AlarmType.RTC_WAKEUP,
    ) -> ArmResult:
        """Arm (or re-arm) the alarm for an id."""
        ...

    @abstractmethod
    async def disarm(self, notification_id: int) -> None:
        """Disarm the alarm for an id. Unknown ids are ignored."""
        ...

    async def shutdown(self) -> None:
        """Release any resources held by the service."""
        return None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AsyncioAlarmService(AlarmService):
    """
    Alarm service backed by one sleeping asyncio task per id.

    Alarms only live as long as the event loop, which is why the manager
    re-arms everything on ``restore()``.

    Attributes:
        max_alarms: Maximum number of outstanding alarms. Arming a new id
            beyond it returns ``QUOTA_EXCEEDED``.
        exact_alarms_allowed: When False every arm request is refused with
            ``PERMISSION_DENIED`` (models a host that revoked the permission).
    """

    def __init__(
        self,
        max_alarms: int = DEFAULT_MAX_ALARMS,
        clock: Callable[[], datetime] | None = None,
        exact_alarms_allowed: bool = True,
    ) -> None:
        if max_alarms < 1:
            msg = "max_alarms must be positive"
            raise ValueError(msg)

        self.max_alarms = max_alarms
        self.exact_alarms_allowed = exact_alarms_allowed
        self._clock = clock or _utcnow
        self._handler: AlarmHandler | None = None
        self._tasks: dict[int, asyncio.Task[None]] = {}

    def set_handler(self, handler: AlarmHandler) -> None:
        self._handler = handler

    @property
    def armed_ids(self) -> list[int]:
        return sorted(self._tasks)

    async def arm(
        self,
        notification_id: int,
        at: datetime,
        allow_while_idle: bool = False,
        alarm_type: AlarmType = AlarmType.RTC_WAKEUP,
    ) -> ArmResult:
        if not self.exact_alarms_allowed:
            return ArmResult.PERMISSION_DENIED

        if notification_id not in self._tasks and len(self._tasks) >= self.max_alarms:
            return ArmResult.QUOTA_EXCEEDED

        self._cancel_task(notification_id)

        delay = max((at - self._clock()).total_seconds(), 0.0)
        self._tasks[notification_id] = asyncio.create_task(
            self._sleep_and_fire(notification_id, delay),
            name=f"flash-notification-alarm-{notification_id}",
        )
        logger.debug(
            "Armed alarm for %s at %s (type=%s, allow_while_idle=%s)",
            notification_id,
            at.isoformat(),
            alarm_type.name,
            allow_while_idle,
        )
        return ArmResult.OK

    async def disarm(self, notification_id: int) -> None:
        self._cancel_task(notification_id)

    async def shutdown(self) -> None:
        """Cancel every outstanding alarm and wait for the tasks to finish."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _cancel_task(self, notification_id: int) -> None:
        task = self._tasks.pop(notification_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _sleep_and_fire(self, notification_id: int, delay: float) -> None:
        with contextlib.suppress(asyncio.CancelledError):
            await asyncio.sleep(delay)

            # The alarm is spent; the handler may arm the id again.
            if self._tasks.get(notification_id) is asyncio.current_task():
                del self._tasks[notification_id]

            if self._handler is None:
                logger.warning("Alarm for %s fired with no handler", notification_id)
                return

            try:
                await self._handler(notification_id)
            except Exception:
                logger.exception("Alarm handler failed for %s", notification_id)
