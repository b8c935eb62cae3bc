"""
Request dependencies: caller identity and admin access.

Authentication happens upstream. The gateway verifies the session and
forwards the user id in X-User-Id; this service only trusts that header.
Admin endpoints additionally require X-Admin-Token.
"""

import secrets

from fastapi import Header, HTTPException, Request, status

from racestay.core.config import get_settings
from racestay.services.scheduler import BackgroundScheduler

settings = get_settings()


async def get_current_user_id(x_user_id: str | None = Header(default=None)) -> int:
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    try:
        user_id = int(x_user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid X-User-Id header",
        )
    if user_id <= 0:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid X-User-Id header",
        )
    return user_id


async def require_admin(x_admin_token: str | None = Header(default=None)) -> str:
    if not x_admin_token or not secrets.compare_digest(x_admin_token, settings.ADMIN_API_TOKEN):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin token required",
        )
    return x_admin_token


def get_scheduler(request: Request) -> BackgroundScheduler:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Scheduler is not configured",
        )
    return scheduler
