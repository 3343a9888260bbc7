import asyncio
import logging
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from flash_notifications.alarms import ArmResult, AsyncioAlarmService

pytestmark = pytest.mark.asyncio


def soon(ms: int = 20) -> datetime:
    return datetime.now(timezone.utc) + timedelta(milliseconds=ms)


@pytest_asyncio.fixture
async def service():
    service = AsyncioAlarmService(max_alarms=3)
    yield service
    await service.shutdown()


@pytest.fixture
def fired(service):
    fired: list[int] = []

    async def handler(notification_id: int) -> None:
        fired.append(notification_id)

    service.set_handler(handler)
    return fired


async def test_alarm_fires_once(service, fired):
    assert await service.arm(1, soon()) is ArmResult.OK
    assert service.armed_ids == [1]

    await asyncio.sleep(0.1)

    assert fired == [1]
    assert service.armed_ids == []


async def test_past_instant_fires_immediately(service, fired):
    await service.arm(1, datetime(2020, 1, 1, tzinfo=timezone.utc))

    await asyncio.sleep(0.01)

    assert fired == [1]


async def test_rearm_replaces_previous_alarm(service, fired):
    await service.arm(1, soon(20))
    await service.arm(1, soon(60))

    await asyncio.sleep(0.04)
    assert fired == []

    await asyncio.sleep(0.08)
    assert fired == [1]


async def test_disarm(service, fired):
    await service.arm(1, soon())

    await service.disarm(1)
    await service.disarm(99)
    await asyncio.sleep(0.05)

    assert fired == []
    assert service.armed_ids == []


async def test_quota_exceeded_for_new_ids(service, fired):
    for notification_id in (1, 2, 3):
        await service.arm(notification_id, soon(1000))

    assert await service.arm(4, soon(1000)) is ArmResult.QUOTA_EXCEEDED
    # Re-arming an id that already holds an alarm does not count twice
    assert await service.arm(3, soon(1000)) is ArmResult.OK
    assert service.armed_ids == [1, 2, 3]


async def test_permission_denied():
    service = AsyncioAlarmService(exact_alarms_allowed=False)

    assert await service.arm(1, soon()) is ArmResult.PERMISSION_DENIED
    assert service.armed_ids == []


async def test_max_alarms_must_be_positive():
    with pytest.raises(ValueError):
        AsyncioAlarmService(max_alarms=0)


async def test_handler_error_is_logged(service, caplog):
    async def handler(notification_id: int) -> None:
        msg = "boom"
        raise RuntimeError(msg)

    service.set_handler(handler)

    with caplog.at_level(logging.ERROR):
        await service.arm(1, soon())
        await asyncio.sleep(0.05)

    assert "Alarm handler failed for 1" in caplog.text


async def test_handler_can_rearm_its_own_id(service):
    fired: list[int] = []

    async def handler(notification_id: int) -> None:
        fired.append(notification_id)
        if len(fired) < 2:
            await service.arm(notification_id, soon())

    service.set_handler(handler)
    await service.arm(1, soon())

    await asyncio.sleep(0.15)

    assert fired == [1, 1]
    assert service.armed_ids == []


async def test_shutdown_cancels_outstanding_alarms(service, fired):
    await service.arm(1, soon(50))
    await service.arm(2, soon(50))

    await service.shutdown()
    await asyncio.sleep(0.08)

    assert fired == []
    assert service.armed_ids == []
