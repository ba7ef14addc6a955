import os
import secrets
import sys
from datetime import timedelta
from pathlib import Path
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Ensure project root on sys.path so 'app' package resolves when running without an install
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app.main import create_app  # type: ignore
from app.database import Base  # type: ignore
from app.api import deps  # type: ignore
"""Pytest fixtures and factories.

Important: SQLAlchemy relationship configuration requires all model modules to be imported
before Base.metadata.create_all(), otherwise back_populates targets might not exist yet.
"""
from app.models.db import (
    User, Course, Lesson, StudySchedule, Order, PaymentTransaction,
)
from app.models.db.enums import PaymentGateway, PaymentStatus, ScheduleStatus, TransactionStatus
from app.bootstrap import build_orchestration
from app.jobs.queue import InMemoryJobStore
from app.jobs.queue_manager import QueueManager
from app.services.email import EmailService
from app.utils.time import utc_now

# File-based SQLite so sessions opened from threadpool workers see committed rows
SQLALCHEMY_TEST_URL = "sqlite+pysqlite:///./test_orchestration.db"
engine = create_engine(
    SQLALCHEMY_TEST_URL,
    connect_args={"check_same_thread": False},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="session", autouse=True)
def create_test_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    try:
        os.remove("test_orchestration.db")
    except OSError:
        pass


@pytest.fixture(autouse=True)
def _isolate_tables(create_test_db):  # type: ignore[unused-argument]
    """Empty every table after each test so factories start from a clean slate."""
    yield
    session = TestingSessionLocal()
    try:
        for table in reversed(Base.metadata.sorted_tables):
            session.execute(table.delete())
        session.commit()
    finally:
        session.close()


@pytest.fixture()
def db_session():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def session_factory():
    return TestingSessionLocal


@pytest.fixture()
def memory_store():
    return InMemoryJobStore()


@pytest.fixture()
def queue_manager(memory_store):
    return QueueManager(memory_store)


@pytest.fixture()
def orchestration(memory_store):
    # SMTP host unset: reminder emails are logged, not sent
    return build_orchestration(
        TestingSessionLocal,
        store=memory_store,
        email=EmailService({"smtp_host": None}),
    )


def _override_get_db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def test_app(orchestration):
    application = create_app(orchestration)
    application.dependency_overrides[deps.get_db] = _override_get_db
    return application


@pytest.fixture()
def client(test_app):
    # No context manager: lifespan (and the periodic timers) stay off
    return TestClient(test_app)

# ---------- Data factory helpers ----------

@pytest.fixture()
def user_factory(db_session):
    def _create(full_name: str | None = "Test Learner", email: str | None = "default"):
        if email == "default":
            email = f"{secrets.token_hex(4)}@example.com"
        user = User(email=email, full_name=full_name)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user
    return _create


@pytest.fixture()
def course_factory(db_session):
    def _create(title: str = "Intro to Python", lesson_title: str | None = None):
        course = Course(title=title)
        db_session.add(course)
        db_session.flush()
        lesson = None
        if lesson_title:
            lesson = Lesson(course_id=course.id, title=lesson_title)
            db_session.add(lesson)
        db_session.commit()
        db_session.refresh(course)
        if lesson is not None:
            db_session.refresh(lesson)
        return course, lesson
    return _create


@pytest.fixture()
def schedule_factory(db_session):
    def _create(user, course, *, starts_in_minutes: float, reminder_minutes: int = 10, lesson=None, **overrides):
        schedule = StudySchedule(
            user_id=user.id,
            course_id=course.id,
            lesson_id=lesson.id if lesson is not None else None,
            scheduled_date=utc_now() + timedelta(minutes=starts_in_minutes),
            status=overrides.pop("status", ScheduleStatus.SCHEDULED),
            reminder_minutes=reminder_minutes,
            is_reminder_sent=overrides.pop("is_reminder_sent", False),
        )
        db_session.add(schedule)
        db_session.commit()
        db_session.refresh(schedule)
        return schedule
    return _create


@pytest.fixture()
def order_factory(db_session):
    def _create(
        user,
        course,
        *,
        age_minutes: float,
        order_status: PaymentStatus = PaymentStatus.PENDING,
        tx_status: TransactionStatus = TransactionStatus.PENDING,
        gateway: PaymentGateway = PaymentGateway.VNPAY,
    ):
        created = utc_now() - timedelta(minutes=age_minutes)
        order = Order(
            order_code=f"ORD-{secrets.token_hex(4).upper()}",
            user_id=user.id,
            course_id=course.id,
            payment_status=order_status,
            created_at=created,
        )
        db_session.add(order)
        db_session.flush()
        tx = PaymentTransaction(
            transaction_id=f"TX-{secrets.token_hex(6)}",
            order_id=order.id,
            payment_gateway=gateway,
            status=tx_status,
            created_at=created,
        )
        db_session.add(tx)
        db_session.commit()
        db_session.refresh(order)
        db_session.refresh(tx)
        return order, tx
    return _create
