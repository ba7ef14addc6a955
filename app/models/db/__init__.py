from .users import User, Course, Lesson
from .study_schedules import StudySchedule
from .orders import Order, PaymentTransaction
from .notifications import Notification
from .enums import (
    ScheduleStatus,
    PaymentGateway,
    PaymentStatus,
    TransactionStatus,
    NotificationType,
    RelatedType,
)

__all__ = [
    "User",
    "Course",
    "Lesson",
    "StudySchedule",
    "Order",
    "PaymentTransaction",
    "Notification",
    "ScheduleStatus",
    "PaymentGateway",
    "PaymentStatus",
    "TransactionStatus",
    "NotificationType",
    "RelatedType",
]
