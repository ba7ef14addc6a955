"""
Payment expiration endpoints (manual expiry of one order, 24h statistics).
"""
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from starlette.concurrency import run_in_threadpool

from app.api.deps import get_orchestration
from app.bootstrap import Orchestration
from app.models.schemas.base import ResponseBase
from app.utils import get_logger, log_business_event

router = APIRouter()
logger = get_logger(__name__)


@router.post("/expiration/check/{order_code}", response_model=ResponseBase, summary="Expire one order if its payment link lapsed")
async def check_order_expiration(
    order_code: str,
    request: Request,
    threshold_minutes: int = Query(15, ge=1, le=24 * 60),
    orchestration: Orchestration = Depends(get_orchestration),
) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    try:
        outcome = await run_in_threadpool(
            orchestration.payment_handler.check_and_fail_order_if_expired,
            order_code,
            threshold_minutes,
        )
    except LookupError:
        raise HTTPException(status_code=404, detail=f"Order {order_code} not found")

    logger.info("Manual expiration check", order_code=order_code, changed=outcome["changed"], request_id=request_id)
    if outcome["changed"]:
        log_business_event(
            event_type="payment_expired_manually",
            details={"order_code": order_code},
            request_id=request_id,
        )
    return ResponseBase(message=outcome["message"], data=outcome)


@router.get("/expiration/stats", response_model=ResponseBase, summary="Gateway transaction counts over the last 24 hours")
async def expiration_stats(orchestration: Orchestration = Depends(get_orchestration)) -> ResponseBase:
    stats = await run_in_threadpool(orchestration.payment_handler.get_expiration_stats)
    return ResponseBase(message="Expiration stats", data=stats)
