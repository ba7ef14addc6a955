import asyncio
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from app.models.db import Notification, StudySchedule
from app.models.db.enums import ScheduleStatus
from app.services.email import EmailService, build_reminder_text
from app.services.notifications import NotificationService
from app.services.study_schedules import StudyScheduleService
from app.utils.time import utc_now


def test_service_filters_window_lead_time_status_and_mark(session_factory, user_factory, course_factory, schedule_factory):
    user = user_factory()
    course, lesson = course_factory("Algorithms", "Sorting")
    due = schedule_factory(user, course, starts_in_minutes=9, reminder_minutes=10, lesson=lesson)
    schedule_factory(user, course, starts_in_minutes=12, reminder_minutes=10)  # beyond window
    schedule_factory(user, course, starts_in_minutes=-1, reminder_minutes=10)  # already started
    other_lead = schedule_factory(user, course, starts_in_minutes=5, reminder_minutes=15)
    schedule_factory(user, course, starts_in_minutes=5, reminder_minutes=10, is_reminder_sent=True)
    schedule_factory(user, course, starts_in_minutes=5, reminder_minutes=10, status=ScheduleStatus.CANCELLED)

    service = StudyScheduleService(session_factory)
    found = service.get_schedules_needing_reminders(10)
    assert [s.schedule_id for s in found] == [due.id]
    session = found[0]
    assert session.user_email == user.email
    assert session.course_title == "Algorithms"
    assert session.lesson_title == "Sorting"
    assert session.scheduled_date.tzinfo is not None

    assert [s.schedule_id for s in service.get_schedules_needing_reminders(15)] == [other_lead.id]


def test_results_ordered_by_start_time(session_factory, user_factory, course_factory, schedule_factory):
    user = user_factory()
    course, _ = course_factory()
    later = schedule_factory(user, course, starts_in_minutes=25, reminder_minutes=30)
    sooner = schedule_factory(user, course, starts_in_minutes=3, reminder_minutes=30)
    found = StudyScheduleService(session_factory).get_schedules_needing_reminders(30)
    assert [s.schedule_id for s in found] == [sooner.id, later.id]


def test_explicit_now_shifts_the_window(session_factory, user_factory, course_factory, schedule_factory):
    user = user_factory()
    course, _ = course_factory()
    schedule = schedule_factory(user, course, starts_in_minutes=70, reminder_minutes=60)
    service = StudyScheduleService(session_factory)
    assert service.get_schedules_needing_reminders(60) == []
    found = service.get_schedules_needing_reminders(60, now=utc_now() + timedelta(minutes=20))
    assert [s.schedule_id for s in found] == [schedule.id]


def test_mark_reminder_sent(session_factory, db_session, user_factory, course_factory, schedule_factory):
    user = user_factory()
    course, _ = course_factory()
    schedule = schedule_factory(user, course, starts_in_minutes=9)
    service = StudyScheduleService(session_factory)
    assert service.mark_reminder_sent(schedule.id) is True
    assert service.mark_reminder_sent(999_999) is False

    db_session.expire_all()
    stored = db_session.get(StudySchedule, schedule.id)
    assert stored.is_reminder_sent is True
    assert stored.reminder_sent_at is not None


def test_reminder_sweep_end_to_end_sends_once(orchestration, db_session, user_factory, course_factory, schedule_factory):
    user = user_factory(full_name="Linh Tran")
    course, lesson = course_factory("Web Development", "Routing")
    schedule = schedule_factory(user, course, starts_in_minutes=9, reminder_minutes=10, lesson=lesson)
    scheduler = orchestration.study_reminders
    scheduler.email = MagicMock()

    result = asyncio.run(scheduler.run_now())
    assert result.processed == 1 and result.failed == 0
    scheduler.email.send_reminder_email.assert_called_once()
    address, display_name, _ = scheduler.email.send_reminder_email.call_args.args
    assert (address, display_name) == (user.email, "Linh Tran")

    notifications = db_session.query(Notification).filter(Notification.user_id == user.id).all()
    assert len(notifications) == 1
    assert notifications[0].type == "STUDY_SCHEDULE_REMINDER"
    assert notifications[0].related_type == "STUDY_SCHEDULE"
    assert notifications[0].related_id == schedule.id
    assert "Web Development - Routing" in notifications[0].message

    db_session.expire_all()
    assert db_session.get(StudySchedule, schedule.id).is_reminder_sent is True

    again = asyncio.run(scheduler.run_now())
    assert again.processed == 0
    scheduler.email.send_reminder_email.assert_called_once()
    assert db_session.query(Notification).count() == 1


def test_failed_email_leaves_schedule_for_next_tick(orchestration, db_session, user_factory, course_factory, schedule_factory):
    user = user_factory()
    course, _ = course_factory()
    schedule = schedule_factory(user, course, starts_in_minutes=8, reminder_minutes=10)
    scheduler = orchestration.study_reminders
    scheduler.email = MagicMock()
    scheduler.email.send_reminder_email.side_effect = ConnectionError("smtp refused")

    result = asyncio.run(scheduler.run_now())
    assert result.failed == 1
    assert db_session.query(Notification).count() == 0
    db_session.expire_all()
    assert db_session.get(StudySchedule, schedule.id).is_reminder_sent is False

    scheduler.email.send_reminder_email.side_effect = None
    assert asyncio.run(scheduler.run_now()).processed == 1


def test_user_without_email_gets_notification_only(orchestration, db_session, user_factory, course_factory, schedule_factory):
    user = user_factory(email=None)
    course, _ = course_factory()
    schedule_factory(user, course, starts_in_minutes=20, reminder_minutes=30)
    scheduler = orchestration.study_reminders
    scheduler.email = MagicMock()

    result = asyncio.run(scheduler.run_now())
    assert result.processed == 1
    scheduler.email.send_reminder_email.assert_not_called()
    assert db_session.query(Notification).filter(Notification.user_id == user.id).count() == 1


def test_notification_service_validates_required_fields(session_factory):
    service = NotificationService(session_factory)
    with pytest.raises(ValueError, match="title, message"):
        service.create_notification({"user_id": 1, "type": "X", "title": ""})


def test_unconfigured_email_is_logged_not_sent():
    email = EmailService({"smtp_host": None})
    assert email.configured is False
    assert email.send_email("a@example.com", "s", "b") is False


def test_reminder_text_mentions_target_and_lead_time(user_factory, course_factory, schedule_factory, session_factory):
    user = user_factory(full_name="Minh")
    course, lesson = course_factory("Statistics", "Bayes")
    schedule_factory(user, course, starts_in_minutes=10, reminder_minutes=15, lesson=lesson)
    session = StudyScheduleService(session_factory).get_schedules_needing_reminders(15)[0]
    subject, body = build_reminder_text("Minh", session)
    assert "15 minutes" in subject
    assert body.startswith("Hi Minh,")
    assert "Statistics - Bayes" in body
