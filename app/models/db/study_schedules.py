"""SQLAlchemy model for planned study sessions and their reminder mark."""
from __future__ import annotations

from datetime import datetime
from sqlalchemy import Integer, DateTime, ForeignKey, Enum, Boolean
from sqlalchemy.orm import relationship, Mapped, mapped_column

from app.database import Base
from app.utils.time import utc_now
from .enums import ScheduleStatus
from .users import User, Course, Lesson


class StudySchedule(Base):
    __tablename__ = "study_schedules"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    course_id: Mapped[int] = mapped_column(Integer, ForeignKey("courses.id"), nullable=False)
    lesson_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("lessons.id"), nullable=True)
    scheduled_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    status: Mapped[ScheduleStatus] = mapped_column(Enum(ScheduleStatus), default=ScheduleStatus.SCHEDULED, index=True)
    # Lead time (minutes) the learner asked to be reminded at
    reminder_minutes: Mapped[int] = mapped_column(Integer, default=15)
    # Idempotency marker, set once the reminder went out; never cleared by the sweep
    is_reminder_sent: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    reminder_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    user: Mapped[User] = relationship("User", back_populates="study_schedules")
    course: Mapped[Course] = relationship("Course")
    lesson: Mapped[Lesson | None] = relationship("Lesson")
