"""
Concurrency governor introspection.
"""
from fastapi import APIRouter, Depends

from app.api.deps import get_governor
from app.config import CONCURRENCY_SETTINGS
from app.models.schemas.base import ResponseBase
from app.models.schemas.operations import ConcurrencyStats
from app.utils.concurrency import ConcurrencyGovernor

router = APIRouter()


@router.get("/stats", response_model=ResponseBase, summary="In-flight governed requests")
async def concurrency_stats(governor: ConcurrencyGovernor = Depends(get_governor)) -> ResponseBase:
    stats = ConcurrencyStats(**governor.stats())
    return ResponseBase(
        message="Concurrency stats",
        data={
            **stats.model_dump(),
            "limits": {prefix: cfg.get("max_concurrent") for prefix, cfg in CONCURRENCY_SETTINGS["routes"].items()},  # type: ignore[union-attr]
        },
    )
