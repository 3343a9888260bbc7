from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

# Guards catch-up loops against pathological schedules (e.g. every second
# after a month offline); interval triggers jump arithmetically instead.
MAX_SKIPPED_OCCURRENCES = 100_000


@dataclass(frozen=True)
class Fire:
    """
    A computed fire time.

    Attributes:
        at: The absolute instant (UTC) the notification is due.
        occurrence: The occurrence count once this instant is consumed.
    """

    at: datetime
    occurrence: int


@dataclass
class TriggerState:
    """
    Mutable progress of a trigger across a notification's life.

    Attributes:
        occurrence: Number of fire times consumed (armed or presented) so far.
        trigger_date: The fire time most recently consumed, None before the
            first one and after exhaustion.
    """

    occurrence: int = 0
    trigger_date: datetime | None = None

    def consume(self, fire: Fire) -> None:
        if fire.occurrence < self.occurrence:
            msg = "occurrence count cannot decrease"
            raise ValueError(msg)
        self.occurrence = fire.occurrence
        self.trigger_date = fire.at


class Trigger(ABC):
    """
    Abstract base class for notification triggers.

    Triggers are pure: the same options, state and reference time always
    produce the same result, and the state passed in is never mutated.
    """

    @abstractmethod
    def next_fire_time(self, state: TriggerState, now: datetime) -> Fire | None:
        """Return the next fire time, or None once the trigger is exhausted."""
        ...

    def next_fire_time_after(self, state: TriggerState, now: datetime) -> Fire | None:
        """
        Return the first fire time strictly after ``now``.

        Occurrences that fall at or before ``now`` are stepped over and counted
        as consumed, so missed occurrences still use up a bounded ``count``.
        """
        probe = TriggerState(state.occurrence, state.trigger_date)
        for _ in range(MAX_SKIPPED_OCCURRENCES):
            fire = self.next_fire_time(probe, now)
            if fire is None or fire.at > now:
                return fire
            probe.consume(fire)
        return None

    def __eq__(self, other: object) -> bool:
        if isinstance(other, self.__class__):
            return self.__dict__ == other.__dict__
        return False

    def __hash__(self) -> int:
        return hash((self.__class__.__name__, repr(self)))

    def __repr__(self) -> str:
        params = ", ".join(f"{k}={v!r}" for k, v in self.__dict__.items())
        return f"{self.__class__.__name__}({params})"
