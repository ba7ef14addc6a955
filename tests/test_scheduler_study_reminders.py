import asyncio
from datetime import timedelta
from unittest.mock import MagicMock

from app.jobs.scheduler import DEFAULT_DISPLAY_NAME, REMINDER_TITLE, StudyReminderScheduler
from app.services.study_schedules import UpcomingSession
from app.utils.time import utc_now


def _session(schedule_id, *, email="learner@example.com", full_name="Ada", lesson_title=None, reminder_minutes=10):
    return UpcomingSession(
        schedule_id=schedule_id,
        user_id=100 + schedule_id,
        user_email=email,
        user_full_name=full_name,
        course_id=1,
        course_title="Data Structures",
        lesson_id=None,
        lesson_title=lesson_title,
        scheduled_date=utc_now() + timedelta(minutes=9),
        reminder_minutes=reminder_minutes,
    )


class FakeSchedules:
    def __init__(self, by_window=None, failing_windows=()):
        self.by_window = by_window or {}
        self.failing_windows = set(failing_windows)
        self.looked_up: list[int] = []
        self.marked: list[int] = []

    def get_schedules_needing_reminders(self, lead_minutes):
        self.looked_up.append(lead_minutes)
        if lead_minutes in self.failing_windows:
            raise RuntimeError("lookup failed")
        return list(self.by_window.get(lead_minutes, []))

    def mark_reminder_sent(self, schedule_id):
        self.marked.append(schedule_id)
        return True


def _build(schedules, email=None, notifications=None):
    return StudyReminderScheduler(
        schedules,
        email or MagicMock(),
        notifications or MagicMock(),
    )


def test_defaults_from_settings():
    scheduler = _build(FakeSchedules())
    assert scheduler.interval_seconds == 60
    assert scheduler.lead_windows == [10, 15, 30, 60]


def test_every_window_is_queried_in_order():
    schedules = FakeSchedules()
    result = asyncio.run(_build(schedules).tick())
    assert schedules.looked_up == [10, 15, 30, 60]
    assert (result.processed, result.failed, result.error) == (0, 0, None)


def test_reminder_sends_email_notification_then_marks():
    schedules = FakeSchedules({10: [_session(1, lesson_title="Heaps")]})
    email = MagicMock()
    notifications = MagicMock()
    result = asyncio.run(_build(schedules, email, notifications).tick())

    assert result.processed == 1
    email.send_reminder_email.assert_called_once()
    address, display_name, session = email.send_reminder_email.call_args.args
    assert (address, display_name, session.schedule_id) == ("learner@example.com", "Ada", 1)

    payload = notifications.create_notification.call_args.args[0]
    assert payload["user_id"] == 101
    assert payload["title"] == REMINDER_TITLE
    assert payload["related_id"] == 1
    assert payload["related_type"] == "STUDY_SCHEDULE"
    assert "Data Structures - Heaps" in payload["message"]
    assert "10 minutes" in payload["message"]
    assert schedules.marked == [1]


def test_no_email_without_address_but_notification_still_created():
    schedules = FakeSchedules({15: [_session(2, email=None)]})
    email = MagicMock()
    notifications = MagicMock()
    result = asyncio.run(_build(schedules, email, notifications).tick())
    assert result.processed == 1
    email.send_reminder_email.assert_not_called()
    notifications.create_notification.assert_called_once()
    assert schedules.marked == [2]


def test_missing_full_name_uses_default_display_name():
    schedules = FakeSchedules({10: [_session(3, full_name=None)]})
    email = MagicMock()
    asyncio.run(_build(schedules, email).tick())
    assert email.send_reminder_email.call_args.args[1] == DEFAULT_DISPLAY_NAME


def test_item_failure_is_isolated_and_left_unmarked():
    schedules = FakeSchedules({10: [_session(1), _session(2), _session(3)]})
    email = MagicMock()

    def send(address, display_name, session):
        if session.schedule_id == 2:
            raise ConnectionError("smtp refused")
        return True

    email.send_reminder_email.side_effect = send
    result = asyncio.run(_build(schedules, email).tick())
    assert result.processed == 2
    assert result.failed == 1
    assert result.error is None
    assert schedules.marked == [1, 3]


def test_window_lookup_failure_does_not_stop_other_windows():
    schedules = FakeSchedules({30: [_session(4, reminder_minutes=30)]}, failing_windows={10, 15})
    result = asyncio.run(_build(schedules).tick())
    assert schedules.looked_up == [10, 15, 30, 60]
    assert result.processed == 1
    assert schedules.marked == [4]
    assert result.error is None


def test_async_collaborators_are_awaited():
    marked: list[int] = []

    class AsyncSchedules:
        async def get_schedules_needing_reminders(self, lead_minutes):
            return [_session(5)] if lead_minutes == 60 else []

        async def mark_reminder_sent(self, schedule_id):
            marked.append(schedule_id)
            return True

    class AsyncEmail:
        sent = 0

        async def send_reminder_email(self, address, display_name, session):
            AsyncEmail.sent += 1
            return True

    result = asyncio.run(StudyReminderScheduler(AsyncSchedules(), AsyncEmail(), MagicMock()).tick())
    assert result.processed == 1
    assert AsyncEmail.sent == 1
    assert marked == [5]
