"""MatchTrigger - Fires whenever the calendar matches a set of fields."""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta, timezone
from typing import ClassVar

from dateutil.relativedelta import relativedelta

from flash_notifications.exceptions import Unsatisfiable
from flash_notifications.schemas import EveryMatchTriggerConfig

from .base import MAX_SKIPPED_OCCURRENCES, Fire, Trigger, TriggerState

DEFAULT_MAX_LOOKAHEAD_YEARS = 5


class MatchTrigger(Trigger):
    """
    Trigger that fires at the next instant whose calendar components match
    every specified field, like a cron expression with single values.

    Unspecified fields coarser than the finest specified one are free;
    unspecified fields finer than it are pinned to zero, so
    ``{"hour": 9}`` fires at 09:00:00 and not at 09:37:12.

    Examples:
        >>> # 09:00 on the 27th of every month
        >>> trigger = MatchTrigger(
        ...     EveryMatchTriggerConfig(every={"day": 27, "hour": 9, "minute": 0})
        ... )

        >>> # Every Monday at 08:30 local time
        >>> trigger = MatchTrigger(
        ...     EveryMatchTriggerConfig(
        ...         every={"weekday": 1, "hour": 8, "minute": 30}, tz="Europe/Berlin"
        ...     )
        ... )

    Args:
        config: EveryMatchTriggerConfig.
        max_lookahead_years: Search window before giving up with Unsatisfiable.
    """

    FIELDS: ClassVar[tuple[str, ...]] = (
        "year",
        "month",
        "day",
        "weekday",
        "hour",
        "minute",
        "second",
    )

    _STEPS: ClassVar[dict[str, relativedelta]] = {
        "year": relativedelta(years=1),
        "month": relativedelta(months=1),
        "day": relativedelta(days=1),
        "weekday": relativedelta(days=1),
        "hour": relativedelta(hours=1),
        "minute": relativedelta(minutes=1),
        "second": relativedelta(seconds=1),
    }

    def __init__(
        self,
        config: EveryMatchTriggerConfig,
        max_lookahead_years: int = DEFAULT_MAX_LOOKAHEAD_YEARS,
    ):
        fields = config.every
        self.year = fields.year
        self.month = fields.month
        self.day = fields.day
        self.weekday = fields.weekday
        self.hour = fields.hour
        self.minute = fields.minute
        self.second = fields.second
        self.count = config.count
        self.before = config.before
        self.after = config.after
        self.tz = config.tz or timezone.utc
        self.max_lookahead_years = max_lookahead_years

        self.finest = [f for f in self.FIELDS if getattr(self, f) is not None][-1]

    def next_fire_time(self, state: TriggerState, now: datetime) -> Fire | None:
        """
        Finds the next match strictly after the last fire time (or ``now``).

        Raises:
            Unsatisfiable: if no instant within the lookahead window matches.
        """
        if self.count is not None and state.occurrence >= self.count:
            return None
        if self.before and self.before <= now:
            return None

        reference = now
        if state.occurrence > 0 and state.trigger_date and state.trigger_date > now:
            reference = state.trigger_date

        result = self._match_after(reference)
        if result is None:
            return None
        return Fire(at=result, occurrence=state.occurrence + 1)

    def next_fire_time_after(self, state: TriggerState, now: datetime) -> Fire | None:
        """
        Walks the matches from the last fire time up to ``now``.

        Every match at or before ``now`` is consumed, so a bounded ``count``
        runs out during a long outage just like an interval series does.

        Raises:
            Unsatisfiable: if no instant within the lookahead window matches.
        """
        if state.occurrence == 0 or state.trigger_date is None:
            return super().next_fire_time_after(state, now)
        if self.before and self.before <= now:
            return None

        occurrence = state.occurrence
        reference = state.trigger_date
        for _ in range(MAX_SKIPPED_OCCURRENCES):
            if self.count is not None and occurrence >= self.count:
                return None
            result = self._match_after(reference)
            if result is None:
                return None
            occurrence += 1
            if result > now:
                return Fire(at=result, occurrence=occurrence)
            reference = result
        return None

    def _match_after(self, reference: datetime) -> datetime | None:
        """First match strictly after ``reference`` inside the bounds, in UTC."""
        local_start = self._truncate(reference.astimezone(self.tz)) + self._STEPS[
            self.finest
        ]
        if self.after:
            local_after = self._ceil(self.after.astimezone(self.tz))
            local_start = max(local_start, local_after)

        if self.before and local_start > self.before:
            return None

        match = self._search(local_start.replace(tzinfo=None))
        result = match.replace(tzinfo=self.tz).astimezone(timezone.utc)

        if self.before and result > self.before:
            return None
        return result

    def _truncate(self, dt: datetime) -> datetime:
        """Zero every field finer than the finest specified one."""
        dt = dt.replace(microsecond=0)
        if self.finest in ("minute", "hour", "day", "weekday", "month", "year"):
            dt = dt.replace(second=0)
        if self.finest in ("hour", "day", "weekday", "month", "year"):
            dt = dt.replace(minute=0)
        if self.finest in ("day", "weekday", "month", "year"):
            dt = dt.replace(hour=0)
        if self.finest in ("month", "year"):
            dt = dt.replace(day=1)
        if self.finest == "year":
            dt = dt.replace(month=1)
        return dt

    def _ceil(self, dt: datetime) -> datetime:
        truncated = self._truncate(dt)
        if truncated == dt:
            return dt
        return truncated + self._STEPS[self.finest]

    def _search(self, candidate: datetime) -> datetime:
        """
        Cron-style forward search on naive local wall-clock time.

        Each mismatching field advances to its next valid value and resets the
        finer fields; a pinned day that does not exist in a month (Feb 30)
        skips the month instead of clamping.
        """
        limit_year = candidate.year + self.max_lookahead_years
        if self.year is not None:
            if self.year < candidate.year:
                raise Unsatisfiable(f"year {self.year} is in the past")
            limit_year = self.year

        while candidate.year <= limit_year:
            if self.year is not None and candidate.year != self.year:
                candidate = datetime(self.year, 1, 1)
                continue

            if self.month is not None and candidate.month != self.month:
                candidate = self._advance_month(candidate)
                continue

            if self.day is not None and candidate.day != self.day:
                candidate = self._advance_day_of_month(candidate)
                continue

            if self.weekday is not None and candidate.isoweekday() != self.weekday:
                candidate = self._next_day(candidate)
                continue

            if self.hour is not None and candidate.hour != self.hour:
                if candidate.hour < self.hour:
                    candidate = candidate.replace(hour=self.hour, minute=0, second=0)
                else:
                    candidate = self._next_day(candidate)
                continue

            if self.minute is not None and candidate.minute != self.minute:
                if candidate.minute < self.minute:
                    candidate = candidate.replace(minute=self.minute, second=0)
                else:
                    candidate = candidate.replace(minute=0, second=0) + timedelta(
                        hours=1
                    )
                continue

            if self.second is not None and candidate.second != self.second:
                if candidate.second < self.second:
                    candidate = candidate.replace(second=self.second)
                else:
                    candidate = candidate.replace(second=0) + timedelta(minutes=1)
                continue

            return candidate

        msg = (
            f"No instant matches {self._describe()} within "
            f"{self.max_lookahead_years} years"
        )
        raise Unsatisfiable(msg)

    def _advance_month(self, dt: datetime) -> datetime:
        """Jump to the first day of the next valid month."""
        if dt.month < self.month:
            return datetime(dt.year, self.month, 1)
        return datetime(dt.year + 1, self.month, 1)

    def _advance_day_of_month(self, dt: datetime) -> datetime:
        days_in_month = calendar.monthrange(dt.year, dt.month)[1]
        if dt.day < self.day <= days_in_month:
            return datetime(dt.year, dt.month, self.day)
        return self._first_of_next_month(dt)

    def _first_of_next_month(self, dt: datetime) -> datetime:
        if dt.month == 12:
            return datetime(dt.year + 1, 1, 1)
        return datetime(dt.year, dt.month + 1, 1)

    def _next_day(self, dt: datetime) -> datetime:
        return datetime(dt.year, dt.month, dt.day) + timedelta(days=1)

    def _describe(self) -> str:
        fields = {f: getattr(self, f) for f in self.FIELDS if getattr(self, f) is not None}
        return ", ".join(f"{k}={v}" for k, v in fields.items())
