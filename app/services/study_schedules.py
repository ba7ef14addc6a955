"""Study schedule lookups used by the reminder sweep."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import joinedload, sessionmaker

from app.database import SessionLocal, session_scope
from app.models.db import ScheduleStatus, StudySchedule
from app.utils import get_logger
from app.utils.time import ensure_utc, utc_now

logger = get_logger(__name__)


@dataclass(slots=True, frozen=True)
class UpcomingSession:
    """Detached snapshot of a schedule plus the fields a reminder needs."""

    schedule_id: int
    user_id: int
    user_email: Optional[str]
    user_full_name: Optional[str]
    course_id: int
    course_title: str
    lesson_id: Optional[int]
    lesson_title: Optional[str]
    scheduled_date: datetime
    reminder_minutes: int


class StudyScheduleService:
    def __init__(self, session_factory: sessionmaker = SessionLocal) -> None:
        self.session_factory = session_factory

    def get_schedules_needing_reminders(self, lead_minutes: int, now: Optional[datetime] = None) -> list[UpcomingSession]:
        """Scheduled sessions starting within ``lead_minutes`` whose owner asked
        for exactly that lead time and that have not been reminded yet."""
        now = ensure_utc(now or utc_now())
        horizon = now + timedelta(minutes=lead_minutes)
        session = self.session_factory()
        try:
            rows = (
                session.query(StudySchedule)
                .options(
                    joinedload(StudySchedule.user),
                    joinedload(StudySchedule.course),
                    joinedload(StudySchedule.lesson),
                )
                .filter(
                    StudySchedule.status == ScheduleStatus.SCHEDULED,
                    StudySchedule.scheduled_date >= now,
                    StudySchedule.scheduled_date <= horizon,
                    StudySchedule.reminder_minutes == lead_minutes,
                    StudySchedule.is_reminder_sent.is_(False),
                )
                .order_by(StudySchedule.scheduled_date.asc())
                .all()
            )
            return [
                UpcomingSession(
                    schedule_id=row.id,
                    user_id=row.user_id,
                    user_email=row.user.email if row.user else None,
                    user_full_name=row.user.full_name if row.user else None,
                    course_id=row.course_id,
                    course_title=row.course.title if row.course else "",
                    lesson_id=row.lesson_id,
                    lesson_title=row.lesson.title if row.lesson else None,
                    scheduled_date=ensure_utc(row.scheduled_date),
                    reminder_minutes=row.reminder_minutes,
                )
                for row in rows
            ]
        finally:
            session.close()

    def mark_reminder_sent(self, schedule_id: int) -> bool:
        """Set the reminder mark. Returns False if the schedule no longer exists."""
        with session_scope(self.session_factory) as session:
            schedule = session.get(StudySchedule, schedule_id)
            if schedule is None:
                logger.warning("Schedule vanished before reminder mark", schedule_id=schedule_id)
                return False
            schedule.is_reminder_sent = True
            schedule.reminder_sent_at = utc_now()
        return True


__all__ = ["StudyScheduleService", "UpcomingSession"]
