"""
Dependencies for database sessions, operator authentication and access to the
orchestration components kept on ``app.state``.
"""
import hmac
from typing import Generator

from fastapi import HTTPException, Request, status
from sqlalchemy.orm import Session

from app.bootstrap import Orchestration
from app.database import SessionLocal
from app.jobs.queue_manager import QueueManager
from app.utils import get_logger
from app.utils.concurrency import ConcurrencyGovernor

logger = get_logger(__name__)


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.
    Ensures proper session lifecycle management with automatic cleanup.

    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.error("Database session error", error=str(e), exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()


def require_operator(request: Request) -> None:
    """
    Guard for operator endpoints.

    When ``ADMIN_API_TOKEN`` is configured the request must carry
    ``Authorization: Bearer <token>``; with no token configured the check is
    disabled (local development).

    Raises:
        HTTPException: 401 if the token is missing or wrong
    """
    from app import config

    expected = config.ADMIN_API_TOKEN
    if not expected:
        return

    auth_header = request.headers.get("Authorization", "")
    provided = auth_header[7:] if auth_header.startswith("Bearer ") else ""
    if not provided or not hmac.compare_digest(provided, expected):
        logger.warning(
            "Operator authentication failed",
            path=request.url.path,
            provided_token_prefix=provided[:4] + "..." if provided else None,
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Valid operator token required",
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_orchestration(request: Request) -> Orchestration:
    orchestration = getattr(request.app.state, "orchestration", None)
    if orchestration is None:
        raise HTTPException(status_code=503, detail="Orchestration not initialized")
    return orchestration


def get_queue_manager(request: Request) -> QueueManager:
    return get_orchestration(request).queues


def get_governor(request: Request) -> ConcurrencyGovernor:
    return get_orchestration(request).governor
