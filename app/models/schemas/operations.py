"""
Schemas for the operator endpoints (sweeps, concurrency, payment expiration).
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field


class SweepResultRead(BaseModel):
    scheduler: str
    processed: int = Field(ge=0)
    failed: int = Field(ge=0)
    skipped: bool = Field(False, description="True when the sweep was dropped because the previous one was still running")
    started_at: datetime
    finished_at: Optional[datetime] = None
    error: Optional[str] = None


class SchedulerSnapshot(BaseModel):
    name: str
    interval_seconds: float
    running: bool = Field(description="Periodic timer active")
    busy: bool = Field(description="A sweep is in progress")
    last_result: Optional[SweepResultRead] = None


class ActiveRequestCount(BaseModel):
    key: str
    count: int = Field(gt=0)


class ConcurrencyStats(BaseModel):
    totalActive: int = Field(ge=0)
    activeRequests: List[ActiveRequestCount] = Field(default_factory=list)
