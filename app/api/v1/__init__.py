"""
API v1 router initialization and setup.
"""
from fastapi import APIRouter, Depends

from app.api.deps import require_operator
from .endpoints import queues, schedulers, monitoring, payments, ai

api_router = APIRouter()

api_router.include_router(
    queues.router,
    prefix="/queues",
    tags=["queues"],
    dependencies=[Depends(require_operator)]
)

api_router.include_router(
    schedulers.router,
    prefix="/schedulers",
    tags=["schedulers"],
    dependencies=[Depends(require_operator)]
)

api_router.include_router(
    monitoring.router,
    prefix="/concurrency",
    tags=["concurrency"],
    dependencies=[Depends(require_operator)]
)

api_router.include_router(
    payments.router,
    prefix="/payments",
    tags=["payments"],
    dependencies=[Depends(require_operator)]
)

api_router.include_router(
    ai.router,
    prefix="/ai",
    tags=["ai"]
)
