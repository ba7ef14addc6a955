"""In-app notification creation.

Rows are written through their own short session so callers (sweeps running
in worker threads) never share a session with the request cycle.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional

from sqlalchemy.orm import sessionmaker

from app.database import SessionLocal, session_scope
from app.models.db import Notification, NotificationType, RelatedType
from app.utils import get_logger

logger = get_logger(__name__)

_REQUIRED_FIELDS = ("user_id", "type", "title", "message")


class NotificationService:
    def __init__(self, session_factory: sessionmaker = SessionLocal) -> None:
        self.session_factory = session_factory

    def create_notification(self, data: Mapping[str, Any]) -> dict[str, Any]:
        """Persist one notification.

        ``data`` keys: user_id, type, title, message, related_id (optional),
        related_type (optional). Returns the stored row as a dict.
        """
        missing = [f for f in _REQUIRED_FIELDS if data.get(f) in (None, "")]
        if missing:
            raise ValueError(f"Notification missing required fields: {', '.join(missing)}")

        with session_scope(self.session_factory) as session:
            notification = Notification(
                user_id=int(data["user_id"]),
                type=_enum_value(data["type"]),
                title=str(data["title"]),
                message=str(data["message"]),
                related_id=data.get("related_id"),
                related_type=_enum_value(data.get("related_type")),
            )
            session.add(notification)
            session.flush()
            created = {
                "id": notification.id,
                "user_id": notification.user_id,
                "type": notification.type,
                "title": notification.title,
                "message": notification.message,
                "related_id": notification.related_id,
                "related_type": notification.related_type,
            }
        logger.debug("Notification created", notification_id=created["id"], user_id=created["user_id"], type=created["type"])
        return created

    def notify_payment_failed(self, user_id: int, order_id: int, order_code: str, reason: str) -> dict[str, Any]:
        return self.create_notification(
            {
                "user_id": user_id,
                "type": NotificationType.PAYMENT_FAILED,
                "title": "Payment failed",
                "message": f"Payment for order {order_code} was not completed: {reason}",
                "related_id": order_id,
                "related_type": RelatedType.ORDER,
            }
        )


def _enum_value(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value.value if hasattr(value, "value") else str(value)


__all__ = ["NotificationService"]
