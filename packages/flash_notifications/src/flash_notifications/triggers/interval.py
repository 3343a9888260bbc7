"""IntervalTrigger - Fires once, or repeatedly at fixed or calendar intervals."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone, tzinfo
from typing import TYPE_CHECKING, Union

from dateutil.relativedelta import relativedelta

from flash_notifications.schemas import (
    AtTriggerConfig,
    EveryIntervalTriggerConfig,
    InTriggerConfig,
    TriggerUnit,
)

from .base import Fire, Trigger, TriggerState

if TYPE_CHECKING:
    IntervalConfig = Union[AtTriggerConfig, InTriggerConfig, EveryIntervalTriggerConfig]

# Sub-day units are absolute durations; a DST switch does not stretch them.
_FIXED_UNITS: dict[TriggerUnit, timedelta] = {
    TriggerUnit.SECOND: timedelta(seconds=1),
    TriggerUnit.MINUTE: timedelta(minutes=1),
    TriggerUnit.HOUR: timedelta(hours=1),
}

# Day and larger units follow the wall clock of the trigger timezone.
_CALENDAR_UNITS: dict[TriggerUnit, relativedelta] = {
    TriggerUnit.DAY: relativedelta(days=1),
    TriggerUnit.WEEK: relativedelta(weeks=1),
    TriggerUnit.MONTH: relativedelta(months=1),
    TriggerUnit.QUARTER: relativedelta(months=3),
    TriggerUnit.YEAR: relativedelta(years=1),
}

# Average lengths, only used to estimate how many slots to jump
_APPROX_SECONDS: dict[TriggerUnit, float] = {
    TriggerUnit.SECOND: 1,
    TriggerUnit.MINUTE: 60,
    TriggerUnit.HOUR: 3600,
    TriggerUnit.DAY: 86400,
    TriggerUnit.WEEK: 7 * 86400,
    TriggerUnit.MONTH: 30.436875 * 86400,
    TriggerUnit.QUARTER: 3 * 30.436875 * 86400,
    TriggerUnit.YEAR: 365.2425 * 86400,
}


def add_units(start: datetime, unit: TriggerUnit, amount: int, tz: tzinfo) -> datetime:
    """
    Add ``amount`` units to ``start`` and return the result in UTC.

    Month-based units clamp to the last valid day of the target month
    (Jan 31 + 1 month -> Feb 28/29), which is relativedelta's behaviour.

    Examples:
        >>> jan_31 = datetime(2024, 1, 31, 8, 0, tzinfo=timezone.utc)
        >>> add_units(jan_31, TriggerUnit.MONTH, 1, timezone.utc)
        datetime.datetime(2024, 2, 29, 8, 0, tzinfo=datetime.timezone.utc)
    """
    if unit in _FIXED_UNITS:
        return (start + _FIXED_UNITS[unit] * amount).astimezone(timezone.utc)
    local = start.astimezone(tz)
    return (local + _CALENDAR_UNITS[unit] * amount).astimezone(timezone.utc)


class IntervalTrigger(Trigger):
    """
    Trigger for absolute, relative and interval schedules.

    ``At`` and ``In`` configs are single-occurrence series; ``Every`` configs
    repeat every unit from ``start_at``. Occurrence ``k`` is always computed as
    ``start_at + k * unit`` rather than by chaining, so month clamping never
    drifts (Jan 31 -> Feb 29 -> Mar 31, not Mar 29).

    Examples:
        >>> # Five daily reminders at 08:00
        >>> config = EveryIntervalTriggerConfig(
        ...     every="day", count=5, start_at=datetime(2024, 1, 1, 8, tzinfo=timezone.utc)
        ... )
        >>> trigger = IntervalTrigger(config)
        >>> trigger.next_fire_time(TriggerState(), now)
        Fire(at=datetime.datetime(2024, 1, 1, 8, 0, tzinfo=...), occurrence=1)

    Args:
        config: At, In or EveryInterval trigger configuration.
    """

    def __init__(self, config: IntervalConfig):
        if isinstance(config, EveryIntervalTriggerConfig):
            self.start_at = config.start_at.astimezone(timezone.utc)
            self.unit: TriggerUnit | None = config.every
            self.count = config.count
            self.before = config.before
            self.after = config.after
            self.tz = config.tz or timezone.utc
        else:
            self.start_at = config.at.astimezone(timezone.utc)
            self.unit = None
            self.count = 1
            self.before = None
            self.after = None
            self.tz = timezone.utc

    def occurrence_at(self, index: int) -> datetime:
        """The fire time of the zero-based occurrence ``index``."""
        if index == 0 or self.unit is None:
            return self.start_at
        return add_units(self.start_at, self.unit, index, self.tz)

    def next_fire_time(self, state: TriggerState, now: datetime) -> Fire | None:
        """
        Next slot after the consumed ones, honouring count, before and after.

        A series whose ``before`` bound has already passed is exhausted, even
        if a slot inside the bound was never consumed.
        """
        if self.before and self.before <= now:
            return None
        index = state.occurrence
        if self.after:
            index = self._first_index(self.after, index, strict=False)
        return self._fire(index)

    def next_fire_time_after(self, state: TriggerState, now: datetime) -> Fire | None:
        """Jump straight to the first slot later than ``now``."""
        index = state.occurrence
        if self.after:
            index = self._first_index(self.after, index, strict=False)
        return self._fire(self._first_index(now, index, strict=True))

    def _fire(self, index: int) -> Fire | None:
        if self.count is not None and index >= self.count:
            return None
        candidate = self.occurrence_at(index)
        if self.before and candidate > self.before:
            return None
        return Fire(at=candidate, occurrence=index + 1)

    def _first_index(self, instant: datetime, floor: int, strict: bool) -> int:
        """Smallest index >= floor whose slot is at (or, if strict, after) instant."""

        def passes(candidate: datetime) -> bool:
            return candidate > instant if strict else candidate >= instant

        if self.unit is None:
            # Single slot: either it qualifies or the series is spent
            return floor if passes(self.start_at) else max(floor, 1)

        index = max(floor, self._estimate_index(instant))
        while index > floor and passes(self.occurrence_at(index - 1)):
            index -= 1
        while not passes(self.occurrence_at(index)):
            index += 1
        return index

    def _estimate_index(self, instant: datetime) -> int:
        elapsed = (instant - self.start_at).total_seconds()
        if elapsed <= 0 or self.unit is None:
            return 0
        return int(elapsed // _APPROX_SECONDS[self.unit])
