"""Expiration of abandoned gateway payments.

The VNPay gateway sends no callback when a payment link lapses, so pending
transactions older than the threshold are failed by a periodic sweep.

Per transaction (own DB transaction, oldest first):
  * order no longer PENDING -> transaction FAILED, skip reason recorded
  * otherwise               -> transaction FAILED + order FAILED, then a
                               "payment failed" notification after commit

A failure on one transaction is counted and the sweep moves on.
"""
from __future__ import annotations

from datetime import timedelta
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.orm import sessionmaker

from app.database import SessionLocal, session_scope
from app.models.db import (
    Order,
    PaymentGateway,
    PaymentStatus,
    PaymentTransaction,
    TransactionStatus,
)
from app.services.notifications import NotificationService
from app.utils import get_logger, log_business_event
from app.utils.time import ensure_utc, minutes_between, utc_now

logger = get_logger(__name__)

EXPIRED_REASON = "AUTO_EXPIRED_BY_SWEEP"
EXPIRED_MESSAGE = "Payment link expired; no payment was made within the allowed time"
SKIPPED_MESSAGE = "Order was already cancelled or processed"
NOTIFY_REASON = "Payment link expired"


class PaymentExpirationHandler:
    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        notifications: Optional[NotificationService] = None,
    ) -> None:
        self.session_factory = session_factory
        self.notifications = notifications or NotificationService(session_factory)

    def handle_expired_transactions(self, threshold_minutes: int = 15) -> dict[str, Any]:
        now = utc_now()
        cutoff = now - timedelta(minutes=threshold_minutes)

        session = self.session_factory()
        try:
            candidates = (
                session.query(PaymentTransaction.id, PaymentTransaction.transaction_id, PaymentTransaction.created_at)
                .filter(
                    PaymentTransaction.payment_gateway == PaymentGateway.VNPAY,
                    PaymentTransaction.status == TransactionStatus.PENDING,
                    PaymentTransaction.created_at < cutoff,
                )
                .order_by(PaymentTransaction.created_at.asc())
                .all()
            )
        finally:
            session.close()

        results: dict[str, Any] = {"processed_count": 0, "failed_count": 0, "transactions": []}
        for row_id, transaction_id, created_at in candidates:
            try:
                outcome = self._expire_transaction(row_id, threshold_minutes)
            except Exception as e:
                results["failed_count"] += 1
                results["transactions"].append(
                    {"transaction_id": transaction_id, "status": "failed", "error": str(e)}
                )
                logger.error(
                    "Failed to expire payment transaction",
                    transaction_id=transaction_id,
                    error=str(e),
                    exc_info=True,
                )
                continue
            results["processed_count"] += 1
            results["transactions"].append(
                {
                    "transaction_id": transaction_id,
                    "order_code": outcome["order_code"],
                    "age_minutes": minutes_between(created_at, now),
                    "status": outcome["status"],
                }
            )

        if candidates:
            logger.info(
                "Expired payment transactions handled",
                processed=results["processed_count"],
                failed=results["failed_count"],
                threshold_minutes=threshold_minutes,
            )
        return results

    def _expire_transaction(self, transaction_row_id: int, threshold_minutes: int) -> dict[str, Any]:
        notify: Optional[tuple[int, int, str]] = None
        with session_scope(self.session_factory) as session:
            tx = session.get(PaymentTransaction, transaction_row_id)
            if tx is None or tx.status != TransactionStatus.PENDING:
                # Settled between the candidate scan and now
                return {"order_code": tx.order.order_code if tx else None, "status": "unchanged"}
            order = tx.order
            stamp = utc_now().isoformat()
            base_response = dict(tx.gateway_response or {})

            if order.payment_status != PaymentStatus.PENDING:
                tx.status = TransactionStatus.FAILED
                tx.error_message = SKIPPED_MESSAGE
                tx.gateway_response = {
                    **base_response,
                    "skipped_at": stamp,
                    "skip_reason": f"ORDER_ALREADY_{order.payment_status.value}",
                }
                return {"order_code": order.order_code, "status": "skipped"}

            tx.status = TransactionStatus.FAILED
            tx.error_message = EXPIRED_MESSAGE
            tx.gateway_response = {
                **base_response,
                "expired_at": stamp,
                "expired_reason": EXPIRED_REASON,
                "expiration_minutes": threshold_minutes,
            }
            order.payment_status = PaymentStatus.FAILED
            order.notes = f"Payment failed: link expired after {threshold_minutes} minutes"
            notify = (order.user_id, order.id, order.order_code)
            order_code = order.order_code

        log_business_event(
            event_type="payment_expired",
            details={"order_code": order_code, "transaction_row_id": transaction_row_id},
        )
        self._notify_failed(*notify)
        return {"order_code": order_code, "status": "expired"}

    def _notify_failed(self, user_id: int, order_id: int, order_code: str) -> None:
        try:
            self.notifications.notify_payment_failed(user_id, order_id, order_code, NOTIFY_REASON)
        except Exception as e:
            # The expiration is already committed
            logger.error("Payment failed notification not created", order_code=order_code, error=str(e))

    def check_and_fail_order_if_expired(self, order_code: str, threshold_minutes: int = 15) -> dict[str, Any]:
        """Expire a single order on demand. Raises LookupError for unknown codes."""
        session = self.session_factory()
        try:
            order = session.query(Order).filter(Order.order_code == order_code).first()
            if order is None:
                raise LookupError(f"Order {order_code} not found")
            status = order.payment_status.value
            if order.payment_status != PaymentStatus.PENDING:
                return {
                    "order_code": order_code,
                    "payment_status": status,
                    "message": f"Order is already {status}",
                    "changed": False,
                }
            tx = (
                session.query(PaymentTransaction)
                .filter(
                    PaymentTransaction.order_id == order.id,
                    PaymentTransaction.payment_gateway == PaymentGateway.VNPAY,
                    PaymentTransaction.status == TransactionStatus.PENDING,
                )
                .order_by(PaymentTransaction.created_at.desc())
                .first()
            )
            if tx is None:
                return {
                    "order_code": order_code,
                    "payment_status": status,
                    "message": "No pending transaction found",
                    "changed": False,
                }
            age_minutes = minutes_between(tx.created_at)
            if ensure_utc(tx.created_at) >= utc_now() - timedelta(minutes=threshold_minutes):
                return {
                    "order_code": order_code,
                    "payment_status": status,
                    "message": f"Transaction has not expired yet ({age_minutes} minutes elapsed)",
                    "changed": False,
                }
            tx_row_id, transaction_id = tx.id, tx.transaction_id
        finally:
            session.close()

        self._expire_transaction(tx_row_id, threshold_minutes)
        return {
            "order_code": order_code,
            "transaction_id": transaction_id,
            "message": "Order marked as FAILED after payment link expiry",
            "changed": True,
        }

    def get_expiration_stats(self) -> dict[str, Any]:
        since = utc_now() - timedelta(hours=24)
        session = self.session_factory()
        try:
            rows = (
                session.query(PaymentTransaction.status, func.count(PaymentTransaction.id))
                .filter(
                    PaymentTransaction.payment_gateway == PaymentGateway.VNPAY,
                    PaymentTransaction.created_at >= since,
                )
                .group_by(PaymentTransaction.status)
                .all()
            )
        finally:
            session.close()
        return {
            "last_24_hours": {status.value: count for status, count in rows},
            "timestamp": utc_now().isoformat(),
        }


__all__ = ["PaymentExpirationHandler", "EXPIRED_REASON"]
