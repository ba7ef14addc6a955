"""Process-wide wiring of the orchestration components.

``build_orchestration`` is the single place where the queue manager, the
concurrency governor and the sweeps are constructed. The FastAPI lifespan
keeps the returned container on ``app.state`` and starts/stops the sweeps.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.orm import sessionmaker

from app.config import SCHEDULER_SETTINGS
from app.database import SessionLocal
from app.jobs.job import JobStore
from app.jobs.queue_manager import QueueManager, create_job_store
from app.jobs.scheduler import PaymentExpirationScheduler, ReconciliationScheduler, StudyReminderScheduler
from app.services.email import EmailService
from app.services.notifications import NotificationService
from app.services.payment_expiration import PaymentExpirationHandler
from app.services.study_schedules import StudyScheduleService
from app.utils import get_logger
from app.utils.concurrency import ConcurrencyGovernor

logger = get_logger(__name__)


@dataclass
class Orchestration:
    queues: QueueManager
    governor: ConcurrencyGovernor
    payment_handler: PaymentExpirationHandler
    payment_expiration: PaymentExpirationScheduler
    study_reminders: StudyReminderScheduler
    enabled: dict[str, bool] = field(default_factory=dict)

    @property
    def schedulers(self) -> dict[str, ReconciliationScheduler]:
        return {
            self.payment_expiration.name: self.payment_expiration,
            self.study_reminders.name: self.study_reminders,
        }

    def start(self) -> None:
        """Start the enabled sweeps (needs a running event loop)."""
        for name, scheduler in self.schedulers.items():
            if self.enabled.get(name, True):
                scheduler.start()
            else:
                logger.info("Scheduler disabled by configuration", scheduler=name)

    def stop(self) -> None:
        for scheduler in self.schedulers.values():
            scheduler.stop()


def build_orchestration(
    session_factory: sessionmaker = SessionLocal,
    store: Optional[JobStore] = None,
    *,
    email: Optional[EmailService] = None,
    governor: Optional[ConcurrencyGovernor] = None,
) -> Orchestration:
    notifications = NotificationService(session_factory)
    payment_handler = PaymentExpirationHandler(session_factory, notifications)
    payment_cfg = SCHEDULER_SETTINGS["payment_expiration"]
    reminder_cfg = SCHEDULER_SETTINGS["study_reminders"]

    orchestration = Orchestration(
        queues=QueueManager(store if store is not None else create_job_store()),
        governor=governor or ConcurrencyGovernor(),
        payment_handler=payment_handler,
        payment_expiration=PaymentExpirationScheduler(payment_handler),
        study_reminders=StudyReminderScheduler(
            StudyScheduleService(session_factory),
            email or EmailService(),
            notifications,
        ),
    )
    orchestration.enabled = {
        orchestration.payment_expiration.name: bool(payment_cfg.get("enabled", True)),
        orchestration.study_reminders.name: bool(reminder_cfg.get("enabled", True)),
    }
    logger.info(
        "Orchestration assembled",
        queues=orchestration.queues.queue_names,
        schedulers=list(orchestration.schedulers),
    )
    return orchestration


__all__ = ["Orchestration", "build_orchestration"]
