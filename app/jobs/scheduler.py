"""Periodic reconciliation sweeps.

Each scheduler owns one asyncio timer task. Every ``interval_seconds`` the
timer spawns a tick as its own task, so a slow sweep never delays the timer.
At most one tick per scheduler does work at a time: a tick that finds the
previous one still busy is dropped (logged, result ``skipped=True``).

Collaborators may be plain callables or coroutine functions. Plain ones run in
the threadpool so database work does not block the event loop.

``stop()`` cancels the timer and clears the busy flag without waiting for an
in-flight tick; that tick still runs to completion but no longer owns the gate,
so its own release is a no-op. A collaborator that never returns keeps the
scheduler busy until ``stop()``, every later tick is dropped until then.
"""
from __future__ import annotations

import asyncio
import inspect
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional, Sequence

from starlette.concurrency import run_in_threadpool

from app.config import SCHEDULER_SETTINGS
from app.utils import get_logger, log_business_event
from app.utils.time import utc_now

logger = get_logger(__name__)

DEFAULT_DISPLAY_NAME = "Student"
REMINDER_TITLE = "Upcoming study session"
REMINDER_TYPE = "STUDY_SCHEDULE_REMINDER"
REMINDER_RELATED_TYPE = "STUDY_SCHEDULE"


@dataclass(slots=True)
class SweepResult:
    scheduler: str
    processed: int = 0
    failed: int = 0
    skipped: bool = False
    started_at: datetime = field(default_factory=utc_now)
    finished_at: Optional[datetime] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "scheduler": self.scheduler,
            "processed": self.processed,
            "failed": self.failed,
            "skipped": self.skipped,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "error": self.error,
        }


async def call_collaborator(fn: Callable[..., Any], *args: Any) -> Any:
    if inspect.iscoroutinefunction(fn):
        return await fn(*args)
    result = await run_in_threadpool(fn, *args)
    if inspect.isawaitable(result):
        return await result
    return result


class ReconciliationScheduler:
    """Base for a self-excluding periodic sweep; subclasses implement ``_sweep``."""

    name = "reconciliation"

    def __init__(self, interval_seconds: float) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.interval_seconds = float(interval_seconds)
        self._is_running = False
        self._gate = threading.Lock()
        # Generation of the tick holding the gate; 0 when free
        self._holder = 0
        self._generation = 0
        self._timer: Optional[asyncio.Task] = None
        self._ticks: set[asyncio.Task] = set()
        self.last_result: Optional[SweepResult] = None

    # ----------------------------- lifecycle ----------------------------- #
    @property
    def started(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def is_running(self) -> bool:
        return self._is_running

    def start(self) -> None:
        """Begin periodic firing. Must be called from a running event loop."""
        if self.started:
            logger.warning("Scheduler already started", scheduler=self.name)
            return
        loop = asyncio.get_running_loop()
        self._timer = loop.create_task(self._timer_loop(), name=f"{self.name}-timer")
        logger.info("Scheduler started", scheduler=self.name, interval_seconds=self.interval_seconds)

    def stop(self) -> None:
        if self._timer is None:
            return
        self._timer.cancel()
        self._timer = None
        in_flight = self._is_running
        with self._gate:
            self._is_running = False
            self._holder = 0
        logger.info("Scheduler stopped", scheduler=self.name, tick_in_flight=in_flight)

    async def _timer_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            task = asyncio.get_running_loop().create_task(self.tick(), name=f"{self.name}-tick")
            self._ticks.add(task)
            task.add_done_callback(self._ticks.discard)

    # ------------------------------- ticks ------------------------------- #
    def _try_acquire(self) -> int:
        """Take the gate. Returns the holder token, or 0 when already busy."""
        with self._gate:
            if self._is_running:
                return 0
            self._generation += 1
            self._holder = self._generation
            self._is_running = True
            return self._holder

    def _release(self, token: int) -> None:
        with self._gate:
            if self._holder != token:
                return
            self._holder = 0
            self._is_running = False

    async def tick(self) -> SweepResult:
        token = self._try_acquire()
        if not token:
            logger.warning("Previous sweep still running, skipping tick", scheduler=self.name)
            return SweepResult(scheduler=self.name, skipped=True, finished_at=utc_now())

        result = SweepResult(scheduler=self.name)
        try:
            await self._sweep(result)
        except Exception as e:
            result.error = str(e)
            logger.error("Sweep failed", scheduler=self.name, error=str(e), exc_info=True)
        finally:
            result.finished_at = utc_now()
            self.last_result = result
            self._release(token)

        if result.processed or result.failed:
            logger.info(
                "Sweep completed",
                scheduler=self.name,
                processed=result.processed,
                failed=result.failed,
            )
            log_business_event(event_type="sweep_completed", details=result.to_dict())
        else:
            logger.debug("Sweep completed, nothing to do", scheduler=self.name, error=result.error)
        return result

    async def run_now(self) -> SweepResult:
        """Run one sweep immediately, subject to the same busy gate as timer ticks."""
        logger.info("Manual sweep requested", scheduler=self.name)
        return await self.tick()

    async def _sweep(self, result: SweepResult) -> None:  # pragma: no cover
        raise NotImplementedError

    def snapshot(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "interval_seconds": self.interval_seconds,
            "running": self.started,
            "busy": self._is_running,
            "last_result": self.last_result.to_dict() if self.last_result else None,
        }


class PaymentExpirationScheduler(ReconciliationScheduler):
    """Fails pending gateway payments older than the threshold."""

    name = "payment-expiration"

    def __init__(self, handler: Any, *, interval_seconds: Optional[float] = None, threshold_minutes: Optional[int] = None) -> None:
        cfg = SCHEDULER_SETTINGS["payment_expiration"]
        super().__init__(interval_seconds if interval_seconds is not None else float(cfg["interval_seconds"]))  # type: ignore[arg-type]
        self.handler = handler
        self.threshold_minutes = int(threshold_minutes if threshold_minutes is not None else cfg["threshold_minutes"])  # type: ignore[arg-type]

    async def _sweep(self, result: SweepResult) -> None:
        outcome = await call_collaborator(self.handler.handle_expired_transactions, self.threshold_minutes)
        outcome = outcome or {}
        result.processed = int(outcome.get("processed_count", 0))
        result.failed = int(outcome.get("failed_count", 0))


class StudyReminderScheduler(ReconciliationScheduler):
    """Sends reminders for study sessions starting within each lead window."""

    name = "study-reminders"

    def __init__(
        self,
        schedules: Any,
        email: Any,
        notifications: Any,
        *,
        interval_seconds: Optional[float] = None,
        lead_windows: Optional[Sequence[int]] = None,
    ) -> None:
        cfg = SCHEDULER_SETTINGS["study_reminders"]
        super().__init__(interval_seconds if interval_seconds is not None else float(cfg["interval_seconds"]))  # type: ignore[arg-type]
        self.schedules = schedules
        self.email = email
        self.notifications = notifications
        self.lead_windows = [int(m) for m in (lead_windows if lead_windows is not None else cfg["lead_windows_minutes"])]  # type: ignore[union-attr]

    async def _sweep(self, result: SweepResult) -> None:
        for minutes in self.lead_windows:
            try:
                due = await call_collaborator(self.schedules.get_schedules_needing_reminders, minutes)
            except Exception as e:
                logger.error("Reminder lookup failed", scheduler=self.name, lead_minutes=minutes, error=str(e), exc_info=True)
                continue
            for schedule in due or []:
                try:
                    await self._remind(schedule, minutes)
                    result.processed += 1
                except Exception as e:
                    result.failed += 1
                    logger.error(
                        "Failed to send reminder",
                        scheduler=self.name,
                        schedule_id=getattr(schedule, "schedule_id", None),
                        error=str(e),
                    )

    async def _remind(self, schedule: Any, minutes: int) -> None:
        if schedule.user_email:
            await call_collaborator(
                self.email.send_reminder_email,
                schedule.user_email,
                schedule.user_full_name or DEFAULT_DISPLAY_NAME,
                schedule,
            )
            logger.info("Reminder email sent", schedule_id=schedule.schedule_id, lead_minutes=minutes)

        target = schedule.course_title
        if schedule.lesson_title:
            target = f"{schedule.course_title} - {schedule.lesson_title}"
        await call_collaborator(
            self.notifications.create_notification,
            {
                "user_id": schedule.user_id,
                "type": REMINDER_TYPE,
                "title": REMINDER_TITLE,
                "message": f'Your study session "{target}" starts in {minutes} minutes',
                "related_id": schedule.schedule_id,
                "related_type": REMINDER_RELATED_TYPE,
            },
        )
        # Marked last: a failure above leaves the schedule eligible for the next tick
        await call_collaborator(self.schedules.mark_reminder_sent, schedule.schedule_id)


__all__ = [
    "ReconciliationScheduler",
    "PaymentExpirationScheduler",
    "StudyReminderScheduler",
    "SweepResult",
    "call_collaborator",
]
