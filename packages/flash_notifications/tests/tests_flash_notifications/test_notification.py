from datetime import datetime, timedelta, timezone

import pytest
from flash_notifications.exceptions import InvalidSpecification, NotFound
from flash_notifications.notification import (
    ArmAction,
    Notification,
    occurrence_key,
    options_key,
    pending_key,
    trigger_date_key,
)
from flash_notifications.schemas import NotificationOptions, NotificationStatus

UTC = timezone.utc
NOW = datetime(2024, 1, 1, 0, 0, tzinfo=UTC)


def entry(raw) -> Notification:
    return Notification(NotificationOptions.parse(raw, now=NOW))


def daily(count=None, start=NOW + timedelta(hours=8), **extra) -> Notification:
    trigger = {"every": "day", "firstAt": start.isoformat()}
    if count is not None:
        trigger["count"] = count
    return entry({"id": 5, "title": "Daily", "trigger": trigger, **extra})


class TestArming:
    """prepare_arm() decisions."""

    def test_future_instant_is_armed(self):
        at = NOW + timedelta(hours=1)
        n = entry({"id": 1, "trigger": {"at": at.isoformat()}})

        plan = n.prepare_arm(NOW)

        assert plan.action is ArmAction.ARM
        assert plan.at == at
        assert n.state.occurrence == 1
        assert n.pending is True

    def test_arm_is_idempotent(self):
        """Arming twice neither consumes another occurrence nor re-arms."""
        n = daily()
        first = n.prepare_arm(NOW)
        n.mark_armed(first.at)

        second = n.prepare_arm(NOW)

        assert second.action is ArmAction.NOOP
        assert n.state.occurrence == 1
        assert n.state.trigger_date == first.at

    def test_unarmed_pending_instant_is_reused(self):
        """A refused alarm is retried for the same instant, not the next one."""
        n = daily()
        first = n.prepare_arm(NOW)

        retry = n.prepare_arm(NOW)

        assert retry.action is ArmAction.ARM
        assert retry.at == first.at
        assert n.state.occurrence == 1

    def test_past_instant_is_presented(self):
        n = entry({"id": 1, "trigger": {"at": (NOW - timedelta(days=2)).isoformat()}})

        assert n.prepare_arm(NOW).action is ArmAction.PRESENT

    def test_before_in_the_past_retires(self):
        n = entry(
            {
                "id": 1,
                "trigger": {
                    "every": "day",
                    "firstAt": (NOW - timedelta(days=5)).isoformat(),
                    "before": (NOW - timedelta(days=1)).isoformat(),
                },
            }
        )

        assert n.prepare_arm(NOW).action is ArmAction.RETIRE
        assert n.status is NotificationStatus.RETIRED
        assert n.prepare_arm(NOW).action is ArmAction.NOOP

    def test_unsatisfiable_match_retires(self):
        n = entry({"id": 1, "trigger": {"every": {"month": 2, "day": 30}}})

        assert n.prepare_arm(NOW).action is ArmAction.RETIRE
        assert n.retired


class TestPresentation:
    def test_present_returns_content(self):
        n = entry({"id": 1, "title": "Hi", "text": "there"})
        n.prepare_arm(NOW)

        content = n.present()

        assert content["title"] == "Hi"
        assert "trigger" not in content
        assert n.status is NotificationStatus.TRIGGERED
        assert n.pending is False

    def test_presented_single_shot_waits_for_clear(self):
        n = entry({"id": 1})
        n.prepare_arm(NOW)
        n.present()

        assert n.prepare_arm(NOW).action is ArmAction.NOOP
        assert n.prepare_reschedule(NOW).action is ArmAction.NOOP

    def test_reschedule_moves_to_next_occurrence(self):
        n = daily(count=3)
        first = n.prepare_arm(NOW)
        n.present()

        plan = n.prepare_reschedule(first.at)

        assert plan.action is ArmAction.ARM
        assert plan.at == first.at + timedelta(days=1)
        assert n.state.occurrence == 2
        assert n.status is NotificationStatus.SCHEDULED

    def test_reschedule_after_last_occurrence_retires(self):
        n = daily(count=1)
        first = n.prepare_arm(NOW)
        n.present()

        # count=1 is not repeating: nothing to reschedule
        assert n.prepare_reschedule(first.at).action is ArmAction.NOOP

        n = daily(count=2)
        n.prepare_arm(NOW)
        n.present()
        n.prepare_reschedule(NOW)
        n.present()
        assert n.prepare_reschedule(NOW + timedelta(days=2)).action is ArmAction.RETIRE

    def test_catch_up_skips_missed_occurrences(self):
        """Three days offline: one presentation, then the next future slot."""
        n = daily()
        first = n.prepare_arm(NOW)
        n.present()

        later = first.at + timedelta(days=3, hours=1)
        plan = n.prepare_reschedule(later)

        assert plan.at == first.at + timedelta(days=4)
        assert n.state.occurrence == 5


class TestUpdate:
    def test_content_change_keeps_schedule(self):
        n = daily()
        n.prepare_arm(NOW)
        n.mark_armed(n.state.trigger_date)

        rearm = n.update({"title": "Renamed"}, NOW)

        assert rearm is False
        assert n.options.title == "Renamed"
        assert n.state.occurrence == 1
        assert n.armed_at is not None

    def test_trigger_change_starts_fresh_series(self):
        n = daily()
        n.prepare_arm(NOW)

        rearm = n.update({"trigger": {"every": "hour"}}, NOW)

        assert rearm is True
        assert n.state.occurrence == 0
        assert n.pending is False
        plan = n.prepare_arm(NOW)
        assert plan.action is ArmAction.PRESENT
        assert plan.at == NOW

    def test_hint_change_forces_rearm_of_same_instant(self):
        n = daily()
        first = n.prepare_arm(NOW)
        n.mark_armed(first.at)

        rearm = n.update({"androidAllowWhileIdle": True}, NOW)

        assert rearm is True
        assert n.options.allow_while_idle is True
        plan = n.prepare_arm(NOW)
        assert plan.action is ArmAction.ARM
        assert plan.at == first.at
        assert n.state.occurrence == 1

    def test_nested_values_are_replaced(self):
        n = entry({"id": 1, "data": {"a": 1, "b": 2}})

        n.update({"data": {"a": 3}}, NOW)

        assert n.options.data == {"a": 3}

    def test_id_cannot_change(self):
        n = entry({"id": 1})

        with pytest.raises(InvalidSpecification) as exc_info:
            n.update({"id": 2}, NOW)
        assert exc_info.value.field == "id"

    def test_invalid_update_leaves_entry_untouched(self):
        n = daily()
        before = n.options

        with pytest.raises(InvalidSpecification):
            n.update({"trigger": {"every": "fortnight"}}, NOW)

        assert n.options is before


class TestClearAndCancel:
    def test_clear_retires_single_shot(self):
        n = entry({"id": 1})
        n.prepare_arm(NOW)
        n.present()

        assert n.clear() is True
        assert n.retired

    def test_clear_keeps_repeating_schedule(self):
        n = daily()
        n.prepare_arm(NOW)

        assert n.clear() is False
        assert not n.retired
        assert n.pending is True

    def test_cancel_retires(self):
        n = daily()
        n.prepare_arm(NOW)

        n.cancel()

        assert n.retired
        assert n.pending is False


class TestPersistence:
    def test_round_trip(self):
        """Restoring the records yields the same options and trigger state."""
        n = daily(count=5, data={"k": "v"})
        n.prepare_arm(NOW)

        puts, deletes = n.to_records()
        restored = Notification.from_records(5, puts)

        assert restored.options == n.options
        assert restored.state == n.state
        assert restored.pending is True
        assert restored.status is NotificationStatus.SCHEDULED
        assert deletes == []

    def test_record_keys(self):
        n = daily()
        n.prepare_arm(NOW)

        puts, _ = n.to_records()

        assert set(puts) == {
            options_key(5),
            occurrence_key(5),
            trigger_date_key(5),
            pending_key(5),
        }
        assert puts[occurrence_key(5)] == b"1"

    def test_presented_entry_restores_as_triggered(self):
        n = entry({"id": 1, "trigger": {"at": (NOW - timedelta(hours=1)).isoformat()}})
        n.prepare_arm(NOW)
        n.present()

        puts, deletes = n.to_records()
        restored = Notification.from_records(1, puts)

        assert deletes == [pending_key(1)]
        assert restored.state == n.state
        assert restored.status is NotificationStatus.TRIGGERED
        assert restored.pending is False
        assert restored.prepare_arm(NOW).action is ArmAction.NOOP

    def test_missing_options_is_not_found(self):
        with pytest.raises(NotFound):
            Notification.from_records(1, {occurrence_key(1): b"1"})

    def test_mismatched_id_is_invalid(self):
        n = entry({"id": 1})
        puts, _ = n.to_records()

        with pytest.raises(InvalidSpecification):
            Notification.from_records(2, {options_key(2): puts[options_key(1)]})

    def test_corrupt_occurrence_is_invalid(self):
        n = entry({"id": 1})
        puts, _ = n.to_records()
        puts[occurrence_key(1)] = b"many"

        with pytest.raises(InvalidSpecification):
            Notification.from_records(1, puts)


def test_clone_is_independent():
    n = daily()
    twin = n.clone()

    twin.prepare_arm(NOW)

    assert twin.state.occurrence == 1
    assert n.state.occurrence == 0
    assert n.pending is False
