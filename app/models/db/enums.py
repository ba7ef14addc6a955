"""Central Enum definitions for the domain states the sweeps reconcile.

These replace scattered string literals so DB models, collaborators and the
schedulers agree on the values.
"""
from __future__ import annotations
import enum


class ScheduleStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


# ------------------------------ Payments ------------------------------ #

class PaymentGateway(str, enum.Enum):
    VNPAY = "VNPAY"
    MOMO = "MOMO"


class TransactionStatus(str, enum.Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


# ---------------------------- Notifications ---------------------------- #

class NotificationType(str, enum.Enum):
    STUDY_SCHEDULE_REMINDER = "STUDY_SCHEDULE_REMINDER"
    PAYMENT_FAILED = "PAYMENT_FAILED"


class RelatedType(str, enum.Enum):
    STUDY_SCHEDULE = "STUDY_SCHEDULE"
    ORDER = "ORDER"


__all__ = [
    "ScheduleStatus",
    "PaymentGateway",
    "TransactionStatus",
    "PaymentStatus",
    "NotificationType",
    "RelatedType",
]
