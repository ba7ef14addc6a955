"""
Reconciliation sweep endpoints: inspect schedulers and trigger a sweep manually.
"""
from fastapi import APIRouter, Depends, HTTPException, Request

from app.api.deps import get_orchestration
from app.bootstrap import Orchestration
from app.models.schemas.base import ResponseBase
from app.models.schemas.operations import SchedulerSnapshot, SweepResultRead
from app.utils import get_logger, log_business_event

router = APIRouter()
logger = get_logger(__name__)


@router.get("", response_model=ResponseBase, summary="Snapshot of every scheduler")
async def list_schedulers(orchestration: Orchestration = Depends(get_orchestration)) -> ResponseBase:
    snapshots = [
        SchedulerSnapshot(**scheduler.snapshot()).model_dump(mode="json")
        for scheduler in orchestration.schedulers.values()
    ]
    return ResponseBase(message="Schedulers", data={"schedulers": snapshots})


@router.post("/{name}/run", response_model=ResponseBase, summary="Run one sweep now")
async def run_scheduler(
    name: str,
    request: Request,
    orchestration: Orchestration = Depends(get_orchestration),
) -> ResponseBase:
    scheduler = orchestration.schedulers.get(name)
    if scheduler is None:
        raise HTTPException(status_code=404, detail=f"Scheduler '{name}' not found")

    request_id = request.headers.get("X-Request-ID", "unknown")
    result = await scheduler.run_now()
    log_business_event(
        event_type="sweep_triggered_manually",
        details={"scheduler": name, "skipped": result.skipped, "processed": result.processed},
        request_id=request_id,
    )
    if result.skipped:
        message = "Sweep already in progress; manual run skipped"
    elif result.error:
        message = "Sweep failed"
    else:
        message = "Sweep completed"
    return ResponseBase(
        success=result.error is None,
        message=message,
        data=SweepResultRead(**result.to_dict()).model_dump(mode="json"),
    )
