import asyncio
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from flash_notifications.alarms import AlarmService, ArmResult
from flash_notifications.config import NotificationSettings
from flash_notifications.events import Event, EventListener, EventManager
from flash_notifications.manager import NotificationManager
from flash_notifications.presentation import MemoryPresentationService
from flash_notifications.schemas import AlarmType
from flash_notifications.stores.memory import MemoryKeyValueStore

UTC = timezone.utc


class FakeClock:
    """Settable clock injected wherever the code asks for 'now'."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


class RecordingAlarmService(AlarmService):
    """
    Alarm service that only records requests.

    Tests fire alarms explicitly with ``fire()``. Setting ``gate`` holds every
    arm request until the event is set, to simulate an in-flight arm.
    """

    def __init__(self):
        self.handler = None
        self.armed: dict[int, datetime] = {}
        self.arm_calls: list[tuple[int, datetime]] = []
        self.disarmed: list[int] = []
        self.hints: dict[int, tuple[bool, AlarmType]] = {}
        self.result = ArmResult.OK
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None

    def set_handler(self, handler) -> None:
        self.handler = handler

    async def arm(
        self,
        notification_id: int,
        at: datetime,
        allow_while_idle: bool = False,
        alarm_type: AlarmType = AlarmType.RTC_WAKEUP,
    ) -> ArmResult:
        self.arm_calls.append((notification_id, at))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        if self.result is ArmResult.OK:
            self.armed[notification_id] = at
            self.hints[notification_id] = (allow_while_idle, alarm_type)
        return self.result

    async def disarm(self, notification_id: int) -> None:
        self.disarmed.append(notification_id)
        self.armed.pop(notification_id, None)

    async def fire(self, notification_id: int) -> None:
        """Deliver the alarm for an id the way the host would."""
        self.armed.pop(notification_id, None)
        await self.handler(notification_id)


class RecordingPresenter(MemoryPresentationService):
    """Memory presenter that also keeps every post in order."""

    def __init__(self):
        super().__init__()
        self.history: list[tuple[int, dict]] = []

    async def post(self, notification_id: int, content: dict) -> None:
        self.history.append((notification_id, dict(content)))
        await super().post(notification_id, content)


class FailingStore(MemoryKeyValueStore):
    """
    Memory store whose writes fail while ``fail`` is set, or when they touch
    a record of one of the ``fail_ids``.
    """

    def __init__(self):
        super().__init__()
        self.fail = False
        self.fail_ids: set[int] = set()

    async def write(self, puts, deletes=()) -> None:
        deletes = list(deletes)
        touched = {int(key.split("_")[0]) for key in [*puts, *deletes]}
        if self.fail or touched & self.fail_ids:
            msg = "disk full"
            raise OSError(msg)
        await super().write(puts, deletes)


class EventCollector(EventListener):
    """Captures events for assertions."""

    def __init__(self):
        self.events: list[Event] = []

    async def on_event(self, event: Event) -> None:
        self.events.append(event)

    def by_type(self, event_type) -> list[Event]:
        return [e for e in self.events if e.type == event_type]


@pytest.fixture
def clock():
    """Fixed 'current time': Jan 1st, 2024 at 00:00:00 UTC."""
    return FakeClock(datetime(2024, 1, 1, 0, 0, tzinfo=UTC))


@pytest.fixture
def settings():
    return NotificationSettings(_env_file=None)


@pytest.fixture
def store():
    return FailingStore()


@pytest.fixture
def alarms():
    return RecordingAlarmService()


@pytest.fixture
def presenter():
    return RecordingPresenter()


@pytest.fixture
def collector():
    return EventCollector()


@pytest_asyncio.fixture
async def manager(store, alarms, presenter, settings, clock, collector):
    """Started manager whose event consumer is already ready."""
    events = EventManager()
    events.add_listener(collector)
    manager = NotificationManager(
        store=store,
        alarms=alarms,
        presenter=presenter,
        events=events,
        settings=settings,
        clock=clock,
    )
    await manager.start()
    await events.ready()
    yield manager
    await manager.shutdown()


@pytest.fixture
def restart(store, clock, settings):
    """Builds a second manager over the same store, as after a process restart."""

    async def _restart(presenter=None) -> NotificationManager:
        manager = NotificationManager(
            store=store,
            alarms=RecordingAlarmService(),
            presenter=presenter or RecordingPresenter(),
            events=EventManager(),
            settings=settings,
            clock=clock,
        )
        await manager.start()
        return manager

    return _restart
