"""
Notification entry: one set of options bound to its trigger state.

An entry only makes lifecycle decisions. Every method is synchronous and free
of I/O; the ones that need the outside world return a plan (arm, present,
retire, nothing) that the manager carries out against the alarm,
presentation and persistence services.
"""

from __future__ import annotations

import copy
import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from .exceptions import InvalidSpecification, NotFound, Unsatisfiable
from .schemas import NotificationOptions, NotificationStatus
from .triggers import DEFAULT_MAX_LOOKAHEAD_YEARS, Fire, TriggerState, create_trigger

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

logger = logging.getLogger(__name__)


class ArmAction(Enum):
    """What the manager has to do after asking an entry to (re)arm."""

    ARM = "ARM"
    PRESENT = "PRESENT"
    RETIRE = "RETIRE"
    NOOP = "NOOP"


@dataclass(frozen=True)
class ArmPlan:
    action: ArmAction
    at: datetime | None = None


NOOP = ArmPlan(ArmAction.NOOP)
RETIRE = ArmPlan(ArmAction.RETIRE)


def options_key(notification_id: int) -> str:
    return str(notification_id)


def occurrence_key(notification_id: int) -> str:
    return f"{notification_id}_occurrence"


def trigger_date_key(notification_id: int) -> str:
    return f"{notification_id}_triggerDate"


def pending_key(notification_id: int) -> str:
    return f"{notification_id}_pending"


def record_keys(notification_id: int) -> list[str]:
    """Every persistence key owned by one notification."""
    return [
        options_key(notification_id),
        occurrence_key(notification_id),
        trigger_date_key(notification_id),
        pending_key(notification_id),
    ]


class Notification:
    """
    A scheduled notification and its lifecycle.

    State machine::

        SCHEDULED -> TRIGGERED -> SCHEDULED   (repeating, occurrences left)
                               -> RETIRED     (exhausted, cleared or cancelled)
        SCHEDULED -> RETIRED                  (cancelled or exhausted)

    Attributes:
        options: The validated notification options.
        trigger: Trigger built once from ``options.trigger``.
        state: Occurrences consumed so far and the latest fire time.
        status: Current lifecycle status.
        pending: True while ``state.trigger_date`` has been consumed but not
            yet presented.
        armed_at: The fire time currently handed to the alarm service.
    """

    def __init__(
        self,
        options: NotificationOptions,
        state: TriggerState | None = None,
        max_lookahead_years: int = DEFAULT_MAX_LOOKAHEAD_YEARS,
    ):
        self.options = options
        self.max_lookahead_years = max_lookahead_years
        self.trigger = create_trigger(options.trigger, max_lookahead_years)
        self.state = state or TriggerState()
        self.status = NotificationStatus.SCHEDULED
        self.pending = False
        self.armed_at: datetime | None = None

    @property
    def id(self) -> int:
        return self.options.id

    @property
    def repeating(self) -> bool:
        return self.options.repeating

    @property
    def retired(self) -> bool:
        return self.status is NotificationStatus.RETIRED

    # --- Scheduling -------------------------------------------------------

    def prepare_arm(self, now: datetime) -> ArmPlan:
        """
        Decide how to arm this entry.

        A pending fire time is reused, never recomputed, so arming twice in a
        row neither consumes another occurrence nor arms the alarm twice. A
        fire time at or before ``now`` is returned as PRESENT: it is shown
        right away instead of being dropped.
        """
        if self.retired:
            return NOOP

        if self.pending and self.state.trigger_date is not None:
            due = self.state.trigger_date
            if due <= now:
                return ArmPlan(ArmAction.PRESENT, due)
            if self.armed_at == due:
                return NOOP
            return ArmPlan(ArmAction.ARM, due)

        if self.status is NotificationStatus.TRIGGERED:
            # Presented and waiting for reschedule() or clear()
            return NOOP

        return self._consume(self._compute(self.trigger.next_fire_time, now), now)

    def prepare_reschedule(self, now: datetime) -> ArmPlan:
        """
        Move a presented repeating entry on to its next occurrence.

        Occurrences that already elapsed (the device was off, the process was
        not running) are skipped and counted, so a backlog produces a single
        presentation rather than a burst.
        """
        if self.retired or not self.repeating:
            return NOOP
        if self.pending:
            return self.prepare_arm(now)
        return self._consume(
            self._compute(self.trigger.next_fire_time_after, now), now
        )

    def clone(self) -> Notification:
        """Working copy; the manager mutates it and swaps it in once persisted."""
        twin = copy.copy(self)
        twin.state = dataclasses.replace(self.state)
        return twin

    def mark_armed(self, at: datetime) -> None:
        self.armed_at = at

    def mark_unarmed(self) -> None:
        self.armed_at = None

    def _compute(
        self,
        compute: Callable[[TriggerState, datetime], Fire | None],
        now: datetime,
    ) -> Fire | None:
        try:
            return compute(self.state, now)
        except Unsatisfiable as e:
            logger.warning("Trigger can never fire again, retiring: %s", e)
            return None

    def _consume(self, fire: Fire | None, now: datetime) -> ArmPlan:
        if fire is None:
            self.retire()
            return RETIRE

        self.state.consume(fire)
        self.status = NotificationStatus.SCHEDULED
        self.pending = True
        self.armed_at = None

        if fire.at <= now:
            return ArmPlan(ArmAction.PRESENT, fire.at)
        return ArmPlan(ArmAction.ARM, fire.at)

    # --- Lifecycle transitions ---------------------------------------------

    def present(self) -> dict[str, Any]:
        """Mark the pending occurrence as shown and return what to render."""
        self.status = NotificationStatus.TRIGGERED
        self.pending = False
        self.armed_at = None
        return self.options.content()

    def update(
        self,
        changes: Mapping[str, Any],
        now: datetime,
        tz: Any = None,
    ) -> bool:
        """
        Replace top-level option fields and re-validate.

        Nested values (``trigger``, ``data``) are replaced wholesale, not
        deep-merged. A changed delivery hint only forces the pending fire
        time to be armed again.

        A new trigger is a re-schedule under the same id: the old series is
        dropped and the new one starts from a fresh state, so ``occurrence``
        goes back to 0. Within one series it never decreases.

        Returns:
            True if the entry has to be re-armed.

        Raises:
            InvalidSpecification: if the merged options are invalid.
        """
        if "id" in changes and changes["id"] != self.id:
            raise InvalidSpecification("id", "the id of a notification cannot change")

        data = self.options.model_dump(mode="json")
        for name, field in NotificationOptions.model_fields.items():
            if field.alias and field.alias in changes:
                data.pop(name, None)
        data.update(changes)
        options = NotificationOptions.parse(data, now=now, tz=tz)

        trigger_changed = options.trigger.model_dump(
            mode="json"
        ) != self.options.trigger.model_dump(mode="json")
        hints_changed = (options.allow_while_idle, options.alarm_type) != (
            self.options.allow_while_idle,
            self.options.alarm_type,
        )

        self.options = options

        if trigger_changed:
            self.trigger = create_trigger(options.trigger, self.max_lookahead_years)
            self.state = TriggerState()
            self.status = NotificationStatus.SCHEDULED
            self.pending = False
            self.armed_at = None
        elif hints_changed:
            self.armed_at = None

        return not self.retired and (trigger_changed or hints_changed)

    def clear(self) -> bool:
        """
        Dismiss without touching a repeating schedule.

        Returns:
            True if the entry is retired by the clear (non-repeating).
        """
        if not self.repeating:
            self.retire()
            return True
        if self.status is NotificationStatus.TRIGGERED:
            self.status = NotificationStatus.SCHEDULED
        return False

    def cancel(self) -> None:
        self.retire()

    def retire(self) -> None:
        self.status = NotificationStatus.RETIRED
        self.pending = False
        self.armed_at = None

    # --- Persistence -------------------------------------------------------

    def to_records(self) -> tuple[dict[str, bytes], list[str]]:
        """
        Persistence records for this entry.

        Returns:
            (puts, deletes): keys to write and keys to remove.
        """
        puts = {
            options_key(self.id): self.options.to_json().encode("utf-8"),
            occurrence_key(self.id): str(self.state.occurrence).encode("ascii"),
        }
        deletes = []
        if self.state.trigger_date is not None:
            puts[trigger_date_key(self.id)] = self.state.trigger_date.isoformat().encode(
                "ascii"
            )
        else:
            deletes.append(trigger_date_key(self.id))

        if self.pending and self.state.trigger_date is not None:
            puts[pending_key(self.id)] = b"1"
        else:
            deletes.append(pending_key(self.id))
        return puts, deletes

    @classmethod
    def from_records(
        cls,
        notification_id: int,
        records: Mapping[str, bytes | None],
        max_lookahead_years: int = DEFAULT_MAX_LOOKAHEAD_YEARS,
    ) -> Notification:
        """
        Rebuild an entry from its persistence records.

        The latest fire time is always restored. It is pending again only if
        the pending marker was stored with it. An entry with consumed
        occurrences and nothing pending was presented and is waiting to be
        cleared.

        Raises:
            NotFound: if no options are stored for the id.
            InvalidSpecification: if the stored records cannot be parsed.
        """
        raw_options = records.get(options_key(notification_id))
        if raw_options is None:
            raise NotFound(notification_id)

        options = NotificationOptions.from_json(raw_options)
        if options.id != notification_id:
            msg = f"stored options belong to notification {options.id}"
            raise InvalidSpecification("id", msg)

        try:
            raw_occurrence = records.get(occurrence_key(notification_id))
            occurrence = int(raw_occurrence) if raw_occurrence else 0
            raw_date = records.get(trigger_date_key(notification_id))
            trigger_date = (
                datetime.fromisoformat(raw_date.decode("ascii")) if raw_date else None
            )
        except ValueError as e:
            raise InvalidSpecification("trigger_state", str(e)) from e

        entry = cls(options, TriggerState(occurrence, trigger_date), max_lookahead_years)
        entry.pending = (
            trigger_date is not None
            and records.get(pending_key(notification_id)) is not None
        )
        if not entry.pending and occurrence > 0:
            entry.status = NotificationStatus.TRIGGERED
        return entry

    def __repr__(self) -> str:
        return (
            f"Notification(id={self.id}, status={self.status.name}, "
            f"occurrence={self.state.occurrence}, "
            f"trigger_date={self.state.trigger_date!r}, pending={self.pending})"
        )
