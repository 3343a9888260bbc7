"""
Main NotificationManager entry point.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Final

from .alarms import AlarmService, ArmResult, AsyncioAlarmService
from .config import NotificationSettings, notification_settings
from .events import Event, EventManager, NotificationEvent
from .exceptions import ExternalServiceFailure, InvalidSpecification, NotFound
from .logging import scoped_notification_id
from .notification import NOOP, ArmAction, ArmPlan, Notification, record_keys
from .presentation import MemoryPresentationService, PresentationService
from .schemas import NotificationOptions, NotificationType
from .stores import create_store

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Mapping

    from .stores.base import KeyValueStore

logger = logging.getLogger(__name__)

UNKNOWN: Final[str] = "unknown"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OperationStatus(Enum):
    """Per-element outcome of a batch command."""

    OK = "OK"
    NOT_FOUND = "NOT_FOUND"
    INVALID = "INVALID"
    FAILED = "FAILED"


@dataclass(frozen=True)
class OperationResult:
    """
    Result of one element of a batch command.

    Attributes:
        id: The notification id, when one could be read from the input.
        status: What happened to this element.
        error: Error message for INVALID and FAILED results.
    """

    id: int | None
    status: OperationStatus
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is OperationStatus.OK


class NotificationManager:
    """
    Registry of scheduled notifications.

    The manager owns every Notification entry keyed by id, persists them to a
    key-value store, arms one alarm per entry and presents entries when their
    alarm fires. Mutations on one id are strictly ordered; different ids
    proceed concurrently.

    Examples:
        >>> import asyncio
        >>> from flash_notifications import NotificationManager
        >>>
        >>> manager = NotificationManager()
        >>>
        >>> async def main():
        ...     await manager.start()
        ...     await manager.schedule(
        ...         {"id": 1, "title": "Stand-up", "trigger": {"every": {"hour": 9}}}
        ...     )
        ...     print(await manager.get_ids())
        ...     await manager.shutdown()
        >>>
        >>> asyncio.run(main())
        [1]
    """

    def __init__(
        self,
        store: KeyValueStore | None = None,
        alarms: AlarmService | None = None,
        presenter: PresentationService | None = None,
        events: EventManager | None = None,
        settings: NotificationSettings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Initialize the manager with optional custom backends.

        Args:
            store: Persistence backend. Defaults to the store configured by
                ``DATABASE_URL`` (memory when unset).
            alarms: Alarm backend. Defaults to AsyncioAlarmService.
            presenter: Presentation backend. Defaults to MemoryPresentationService.
            events: Event dispatcher. Defaults to EventManager.
            settings: Runtime settings. Defaults to the module settings.
            clock: Returns the current aware UTC time.
        """
        self.settings = settings or notification_settings
        self.clock = clock or _utcnow
        self.store = store or create_store(self.settings)
        self.alarms = alarms or AsyncioAlarmService(self.settings.MAX_ALARMS, self.clock)
        self.presenter = presenter or MemoryPresentationService()
        self.events = events or EventManager(self.settings.EVENT_QUEUE_SIZE)

        self.alarms.set_handler(self.handle_alarm)

        self._entries: dict[int, Notification] = {}
        self._lock = asyncio.Lock()
        self._id_locks: dict[int, asyncio.Lock] = {}
        self._id_lock_users: dict[int, int] = {}
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    # --- Lifecycle ---------------------------------------------------------

    async def start(self) -> None:
        """
        Initialize the store and restore persisted notifications.

        Raises:
            ExternalServiceFailure: If the store cannot be initialized or read.
        """
        if self._running:
            return

        try:
            await self.store.initialize()
        except Exception as e:
            logger.exception("Failed to initialize notification store", exc_info=e)
            raise ExternalServiceFailure("store", str(e)) from e

        await self.restore()
        self._running = True

    async def shutdown(self) -> None:
        """Disarm the in-process alarms and stop."""
        if not self._running:
            return

        self._running = False
        await self.alarms.shutdown()

    async def restore(self) -> list[Notification]:
        """
        Rebuild the registry from the store and re-arm every entry.

        Unreadable records are logged and skipped. A fire time that passed
        while nothing was running is presented once and the entry moves on.

        Returns:
            The restored entries.
        """
        try:
            keys = await self.store.keys()
        except Exception as e:
            logger.exception("Failed to read notification store", exc_info=e)
            raise ExternalServiceFailure("store", str(e)) from e

        ids = sorted({int(key) for key in keys if key.lstrip("-").isdigit()})
        restored = []

        for notification_id in ids:
            async with self._id_lock(notification_id):
                with scoped_notification_id(notification_id):
                    try:
                        entry = await self._restore_one(notification_id)
                    except ExternalServiceFailure as e:
                        logger.error("Failed to restore notification: %s", e)
                        continue
                    if entry is not None:
                        restored.append(entry)

        logger.info("Restored %d notification(s)", len(restored))
        return restored

    async def _restore_one(self, notification_id: int) -> Notification | None:
        try:
            records = await self.store.get_many(record_keys(notification_id))
        except Exception as e:
            raise ExternalServiceFailure("store", str(e)) from e

        try:
            entry = Notification.from_records(
                notification_id, records, self.settings.MATCH_MAX_LOOKAHEAD_YEARS
            )
        except (NotFound, InvalidSpecification) as e:
            logger.warning("Skipping unreadable notification record: %s", e)
            return None

        now = self.clock()
        plan = entry.prepare_arm(now)
        if plan.action is ArmAction.RETIRE:
            await self._discard(notification_id)
            return None

        await self._commit(entry)
        await self._carry_out(entry, plan, now)
        return entry

    # --- Mutations ---------------------------------------------------------

    async def schedule(
        self, options: NotificationOptions | Mapping[str, Any]
    ) -> Notification:
        """
        Schedule a notification, replacing any entry with the same id.

        A notification whose first fire time already passed is presented
        right away. One that can never fire is not stored at all.

        Args:
            options: Validated options or a raw dict in the host's JSON shape.

        Returns:
            The new entry.

        Raises:
            InvalidSpecification: If the options are invalid.
            ExternalServiceFailure: If the entry cannot be persisted.
        """
        now = self.clock()
        options = NotificationOptions.parse(options, now=now, tz=self.settings.timezone)

        async with self._id_lock(options.id):
            with scoped_notification_id(options.id):
                entry = Notification(
                    options, max_lookahead_years=self.settings.MATCH_MAX_LOOKAHEAD_YEARS
                )
                plan = entry.prepare_arm(now)

                if plan.action is ArmAction.RETIRE:
                    logger.info("Notification has no future occurrence, not scheduled")
                    await self._discard(entry.id)
                    await self._disarm(entry.id)
                    await self._dispatch(NotificationEvent.ADD, entry)
                    return entry

                await self._commit(entry)
                logger.info("Scheduled notification (%s)", plan.action.name)
                await self._dispatch(NotificationEvent.ADD, entry)

                await self._disarm(entry.id)
                await self._carry_out(entry, plan, now)
                return entry

    async def update(
        self, notification_id: int, changes: Mapping[str, Any]
    ) -> Notification | None:
        """
        Merge top-level fields into a notification's options.

        A notification that is currently shown is shown again with the new
        content. A new trigger or delivery hint re-arms the entry.

        Returns:
            The updated entry, or None if the id is unknown.

        Raises:
            InvalidSpecification: If the merged options are invalid.
            ExternalServiceFailure: If the entry cannot be persisted.
        """
        async with self._id_lock(notification_id):
            with scoped_notification_id(notification_id):
                entry = self._entries.get(notification_id)
                if entry is None:
                    logger.info("Update skipped, notification not found")
                    return None

                now = self.clock()
                work = entry.clone()
                rearm = work.update(changes, now, self.settings.timezone)
                if work.pending and work.armed_at is None:
                    # A refused alarm is retried on the next mutation
                    rearm = True
                plan = work.prepare_arm(now) if rearm else NOOP

                if plan.action is ArmAction.RETIRE:
                    await self._discard(notification_id)
                    await self._disarm(notification_id)
                    await self._dispatch(NotificationEvent.UPDATE, work)
                    return work

                await self._commit(work)
                logger.info("Updated notification")

                if notification_id in await self._active_ids():
                    await self._post(work, work.options.content())

                if rearm:
                    await self._disarm(notification_id)
                    await self._carry_out(work, plan, now)

                await self._dispatch(NotificationEvent.UPDATE, work)
                return work

    async def cancel(self, notification_id: int) -> Notification | None:
        """
        Cancel a notification: disarm it, forget it and dismiss it.

        Returns:
            The cancelled entry, or None if the id is unknown.

        Raises:
            ExternalServiceFailure: If the records cannot be removed.
        """
        async with self._id_lock(notification_id):
            with scoped_notification_id(notification_id):
                entry = await self._cancel_one(notification_id)

        if entry is not None:
            await self._dispatch(NotificationEvent.CANCEL, entry)
        return entry

    async def cancel_all(self) -> list[int]:
        """
        Cancel every notification and dismiss everything shown.

        Returns:
            Ids of the cancelled entries.
        """
        cancelled = []
        for notification_id in sorted(self._entries):
            async with self._id_lock(notification_id):
                with scoped_notification_id(notification_id):
                    if await self._cancel_one(notification_id) is not None:
                        cancelled.append(notification_id)

        for notification_id in await self._active_ids():
            await self._dismiss(notification_id)

        logger.info("Cancelled %d notification(s)", len(cancelled))
        await self.events.dispatch(
            Event(
                type=NotificationEvent.CANCEL_ALL,
                timestamp=self.clock(),
                payload={"ids": cancelled},
            )
        )
        return cancelled

    async def clear(self, notification_id: int) -> Notification | None:
        """
        Dismiss a notification without touching a repeating schedule.

        Non-repeating entries are retired by the clear.

        Returns:
            The cleared entry, or None if the id is unknown.

        Raises:
            ExternalServiceFailure: If the records cannot be written.
        """
        async with self._id_lock(notification_id):
            with scoped_notification_id(notification_id):
                entry = await self._clear_one(notification_id)

        if entry is not None:
            await self._dispatch(NotificationEvent.CLEAR, entry)
        return entry

    async def clear_all(self) -> list[int]:
        """
        Clear every notification that is currently shown.

        Returns:
            Ids of the cleared entries.
        """
        active = await self._active_ids()
        cleared = []
        for notification_id in active:
            async with self._id_lock(notification_id):
                with scoped_notification_id(notification_id):
                    if await self._clear_one(notification_id) is not None:
                        cleared.append(notification_id)
                    else:
                        await self._dismiss(notification_id)

        logger.info("Cleared %d notification(s)", len(cleared))
        await self.events.dispatch(
            Event(
                type=NotificationEvent.CLEAR_ALL,
                timestamp=self.clock(),
                payload={"ids": cleared},
            )
        )
        return cleared

    async def handle_alarm(self, notification_id: int) -> None:
        """
        Alarm callback: present the entry if its fire time is due.

        Fires for unknown, retired or already presented entries are stale
        and discarded. A fire that arrives early re-arms the same time.
        """
        async with self._id_lock(notification_id):
            with scoped_notification_id(notification_id):
                entry = self._entries.get(notification_id)
                if entry is None or entry.retired or not entry.pending:
                    logger.debug("Discarding stale alarm")
                    return

                now = self.clock()
                entry.mark_unarmed()
                await self._carry_out(entry, entry.prepare_arm(now), now)

    # --- Batch commands ----------------------------------------------------

    async def schedule_many(
        self, items: Iterable[NotificationOptions | Mapping[str, Any]]
    ) -> list[OperationResult]:
        """Schedule each element, reporting a result per element."""

        async def _schedule(item: Any) -> Notification | None:
            return await self.schedule(item)

        return await self._run_batch(items, _schedule)

    async def update_many(
        self, items: Iterable[Mapping[str, Any]]
    ) -> list[OperationResult]:
        """Update each element; every element must carry its ``id``."""

        async def _update(item: Any) -> Notification | None:
            notification_id = _read_id(item)
            if not isinstance(item, dict) or "id" not in item or notification_id is None:
                raise InvalidSpecification("id", "an update needs the notification id")
            return await self.update(notification_id, item)

        return await self._run_batch(items, _update)

    async def cancel_many(self, ids: Iterable[int]) -> list[OperationResult]:
        """Cancel each id, reporting a result per id."""
        return await self._run_batch(ids, self.cancel)

    async def clear_many(self, ids: Iterable[int]) -> list[OperationResult]:
        """Clear each id, reporting a result per id."""
        return await self._run_batch(ids, self.clear)

    async def _run_batch(
        self,
        items: Iterable[Any],
        operation: Callable[[Any], Awaitable[Notification | None]],
    ) -> list[OperationResult]:
        results = []
        for item in items:
            notification_id = _read_id(item)
            try:
                entry = await operation(item)
            except InvalidSpecification as e:
                results.append(
                    OperationResult(notification_id, OperationStatus.INVALID, str(e))
                )
            except ExternalServiceFailure as e:
                results.append(
                    OperationResult(notification_id, OperationStatus.FAILED, str(e))
                )
            else:
                if entry is None:
                    results.append(
                        OperationResult(notification_id, OperationStatus.NOT_FOUND)
                    )
                else:
                    results.append(OperationResult(entry.id, OperationStatus.OK))
        return results

    # --- Queries -----------------------------------------------------------

    def has(self, notification_id: int) -> bool:
        return notification_id in self._entries

    async def get_ids(
        self, type: NotificationType | int = NotificationType.ALL
    ) -> list[int]:
        """
        Ids of the registered notifications of a type.

        Whether an entry counts as triggered is decided by what the
        presentation service currently shows.
        """
        scope = NotificationType(type)
        ids = sorted(self._entries)
        if scope is NotificationType.ALL:
            return ids

        active = set(await self._active_ids())
        if scope is NotificationType.TRIGGERED:
            return [i for i in ids if i in active]
        return [i for i in ids if i not in active]

    async def get_type(self, notification_id: int) -> str:
        """Returns "scheduled", "triggered" or "unknown"."""
        if notification_id not in self._entries:
            return UNKNOWN
        if notification_id in await self._active_ids():
            return NotificationType.TRIGGERED.name.lower()
        return NotificationType.SCHEDULED.name.lower()

    def get_options(self, notification_id: int) -> NotificationOptions | None:
        entry = self._entries.get(notification_id)
        return entry.options if entry else None

    async def get_all_options(
        self, type: NotificationType | int = NotificationType.ALL
    ) -> list[NotificationOptions]:
        return [self._entries[i].options for i in await self.get_ids(type)]

    def get_options_by_ids(self, ids: Iterable[int]) -> list[NotificationOptions]:
        """Options for the known ids, in the order requested."""
        return [self._entries[i].options for i in ids if i in self._entries]

    def get(self, notification_id: int) -> Notification | None:
        return self._entries.get(notification_id)

    # --- Internals ---------------------------------------------------------

    @asynccontextmanager
    async def _id_lock(self, notification_id: int) -> AsyncIterator[None]:
        """Serialize work on one id; the lock is dropped once nobody uses it."""
        lock = self._id_locks.setdefault(notification_id, asyncio.Lock())
        users = self._id_lock_users.get(notification_id, 0)
        self._id_lock_users[notification_id] = users + 1
        try:
            async with lock:
                yield
        finally:
            self._id_lock_users[notification_id] -= 1
            if not self._id_lock_users[notification_id]:
                del self._id_lock_users[notification_id]
                del self._id_locks[notification_id]

    async def _cancel_one(self, notification_id: int) -> Notification | None:
        entry = self._entries.get(notification_id)
        if entry is None:
            return None

        await self._discard(notification_id)
        entry.cancel()
        logger.info("Cancelled notification")

        await self._disarm(notification_id)
        await self._dismiss(notification_id)
        return entry

    async def _clear_one(self, notification_id: int) -> Notification | None:
        entry = self._entries.get(notification_id)
        if entry is None:
            return None

        work = entry.clone()
        if work.clear():
            await self._discard(notification_id)
            await self._disarm(notification_id)
        else:
            await self._commit(work)
        logger.info("Cleared notification")

        await self._dismiss(notification_id)

        if work.pending and work.armed_at is None:
            now = self.clock()
            plan = work.prepare_arm(now)
            if plan.action is ArmAction.ARM and plan.at is not None:
                await self._arm(work, plan.at)
        return work

    async def _carry_out(self, entry: Notification, plan: ArmPlan, now: datetime) -> None:
        if plan.action is ArmAction.ARM and plan.at is not None:
            await self._arm(entry, plan.at)
        elif plan.action is ArmAction.PRESENT:
            await self._present(entry, now)

    async def _present(self, entry: Notification, now: datetime) -> None:
        """Show the pending occurrence, then move a repeating entry on."""
        work = entry.clone()
        content = work.present()
        plan = work.prepare_reschedule(now)

        if plan.action is ArmAction.RETIRE:
            logger.info("Last occurrence presented, notification retired")
            await self._discard(work.id)
        else:
            await self._commit(work)

        await self._post(work, content)
        await self._dispatch(NotificationEvent.TRIGGER, work)

        if plan.action is ArmAction.ARM and plan.at is not None:
            await self._arm(work, plan.at)

    async def _commit(self, entry: Notification) -> None:
        """Persist an entry, then make it the registered one."""
        puts, deletes = entry.to_records()
        async with self._lock:
            await self._write(puts, deletes)
            self._entries[entry.id] = entry

    async def _discard(self, notification_id: int) -> None:
        """Remove an entry's records, then unregister it."""
        async with self._lock:
            await self._write({}, record_keys(notification_id))
            self._entries.pop(notification_id, None)

    async def _write(self, puts: Mapping[str, bytes], deletes: Iterable[str]) -> None:
        try:
            await self.store.write(puts, deletes)
        except Exception as e:
            logger.exception("Failed to persist notification", exc_info=e)
            raise ExternalServiceFailure("store", str(e)) from e

    async def _arm(self, entry: Notification, at: datetime) -> None:
        try:
            result = await self.alarms.arm(
                entry.id,
                at,
                entry.options.allow_while_idle,
                entry.options.alarm_type,
            )
        except Exception as e:
            logger.exception("Failed to arm alarm", exc_info=e)
            return

        if result is ArmResult.OK:
            entry.mark_armed(at)
            logger.debug("Armed for %s", at.isoformat())
        else:
            logger.warning("Alarm refused (%s), notification left unarmed", result.name)

    async def _disarm(self, notification_id: int) -> None:
        try:
            await self.alarms.disarm(notification_id)
        except Exception as e:
            logger.exception("Failed to disarm alarm", exc_info=e)

    async def _post(self, entry: Notification, content: dict[str, Any]) -> None:
        try:
            await self.presenter.post(entry.id, content)
        except Exception as e:
            logger.exception("Failed to present notification", exc_info=e)

    async def _dismiss(self, notification_id: int) -> None:
        try:
            await self.presenter.dismiss(notification_id)
        except Exception as e:
            logger.exception("Failed to dismiss notification", exc_info=e)

    async def _active_ids(self) -> list[int]:
        try:
            return list(await self.presenter.active_ids())
        except Exception as e:
            logger.exception("Failed to list presented notifications", exc_info=e)
            return []

    async def _dispatch(self, event_type: NotificationEvent, entry: Notification) -> None:
        await self.events.dispatch(
            Event(
                type=event_type,
                timestamp=self.clock(),
                notification_id=entry.id,
                options=entry.options,
            )
        )


def _read_id(item: Any) -> int | None:
    if isinstance(item, int):
        return item
    if isinstance(item, NotificationOptions):
        return item.id
    if isinstance(item, dict):
        value = item.get("id", 0)
        return value if isinstance(value, int) else None
    return None
