"""
Admin endpoints: account activation, ledger audit and scheduler control.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from racestay.api.deps import get_scheduler, require_admin
from racestay.core.exceptions import UserNotFound
from racestay.db.session import get_db
from racestay.models.account_activation_log import ACTOR_ADMIN
from racestay.models.user import User
from racestay.schemas.admin import (
    ActivationLogEntry,
    ActivationRequest,
    ActivationResponse,
    JobInfo,
    JobRunResponse,
    LedgerAuditResponse,
)
from racestay.services import account_service, points_ledger
from racestay.services.scheduler import BackgroundScheduler

router = APIRouter(prefix="/admin", tags=["Admin"], dependencies=[Depends(require_admin)])


@router.post("/users/{user_id}/activation", response_model=ActivationResponse)
async def set_activation(
    user_id: int,
    body: ActivationRequest,
    db: AsyncSession = Depends(get_db),
):
    changed = await account_service.set_account_activation(
        db, user_id, body.active, body.reason, ACTOR_ADMIN, cascade=body.cascade
    )
    is_active = await db.scalar(select(User.is_active).where(User.id == user_id))
    return ActivationResponse(user_id=user_id, is_active=is_active, changed=changed)


@router.get("/users/{user_id}/activation", response_model=list[ActivationLogEntry])
async def activation_history(user_id: int, db: AsyncSession = Depends(get_db)):
    return await account_service.get_activation_history(db, user_id)


@router.post("/users/{user_id}/ledger/verify", response_model=LedgerAuditResponse)
async def verify_ledger(user_id: int, db: AsyncSession = Depends(get_db)):
    """Returns 423 and freezes the account if balance and history disagree."""
    exists = await db.scalar(select(User.id).where(User.id == user_id))
    if exists is None:
        raise UserNotFound(f"User {user_id} not found")
    balance = await points_ledger.verify_user_ledger(db, user_id)
    return LedgerAuditResponse(user_id=user_id, balance=balance, consistent=True)


@router.get("/jobs", response_model=list[JobInfo])
async def list_jobs(scheduler: BackgroundScheduler = Depends(get_scheduler)):
    return scheduler.get_jobs()


@router.post("/jobs/{name}/run", response_model=JobRunResponse)
async def run_job(name: str, scheduler: BackgroundScheduler = Depends(get_scheduler)):
    try:
        outcome = await scheduler.run_job(name)
    except KeyError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown job: {name}")
    return JobRunResponse(
        name=outcome.name,
        ok=outcome.ok,
        result=outcome.result,
        error=outcome.error,
        duration_ms=outcome.duration_ms,
    )


@router.post("/jobs/{name}/enable", response_model=list[JobInfo])
async def enable_job(name: str, scheduler: BackgroundScheduler = Depends(get_scheduler)):
    try:
        scheduler.enable_job(name)
    except KeyError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown job: {name}")
    return scheduler.get_jobs()


@router.post("/jobs/{name}/disable", response_model=list[JobInfo])
async def disable_job(name: str, scheduler: BackgroundScheduler = Depends(get_scheduler)):
    try:
        scheduler.disable_job(name)
    except KeyError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown job: {name}")
    return scheduler.get_jobs()
