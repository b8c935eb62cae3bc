"""
Pydantic schemas for the admin surface.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class ActivationRequest(BaseModel):
    active: bool
    reason: str = Field(..., min_length=1, max_length=255)
    cascade: bool = True


class ActivationResponse(BaseModel):
    user_id: int
    is_active: bool
    changed: bool


class ActivationLogEntry(BaseModel):
    is_active: bool
    reason: str
    actor: str
    created_at: datetime

    model_config = {"from_attributes": True}


class LedgerAuditResponse(BaseModel):
    user_id: int
    balance: int
    consistent: bool


class JobRunResponse(BaseModel):
    name: str
    ok: bool
    result: Optional[int] = None
    error: Optional[str] = None
    duration_ms: float


class JobInfo(BaseModel):
    name: str
    enabled: bool
    interval_seconds: int
    next_run_at: Optional[datetime]
    last_run_at: Optional[datetime]
    last_result: Optional[int]
    last_error: Optional[str]
    consecutive_failures: int
