"""
Authentication dependencies for FastAPI routes
"""
from datetime import datetime, timezone
from typing import Optional

from dateutil import tz
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from laminates.auth.jwt_handler import JWTHandler
from laminates.core.config import Settings, get_settings
from laminates.core.errors import AccessDeniedError
from laminates.db.database import get_db
from laminates.db.models import Quotation, User
from laminates.services.repositories import UserRepository

security = HTTPBearer(auto_error=False)


def get_jwt_handler() -> JWTHandler:
    return JWTHandler()


async def get_token(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> str:
    """Extract JWT token from Authorization header"""
    if not credentials or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication token required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials


async def get_current_user(
    db: Session = Depends(get_db),
    token: str = Depends(get_token),
    jwt_handler: JWTHandler = Depends(get_jwt_handler),
) -> User:
    payload = jwt_handler.verify_token(token)
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = UserRepository(db).get(user_id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    """Require admin user for protected routes"""
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return current_user


def check_edit_window(user: User, quotation: Quotation, now: Optional[datetime] = None,
                      settings: Optional[Settings] = None) -> None:
    """
    Employees may edit only during business hours, and only quotations
    created on the current local date. Admins are never restricted.
    """
    if user.is_admin:
        return

    settings = settings or get_settings()
    zone = tz.gettz(settings.edit_window_timezone)
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local_now = now.astimezone(zone)

    if not settings.edit_window_start_hour <= local_now.hour < settings.edit_window_end_hour:
        raise AccessDeniedError(
            f"Quotations can only be edited between {settings.edit_window_start_hour}:00 "
            f"and {settings.edit_window_end_hour}:00",
            details={"reason": "outside_edit_hours", "local_time": local_now.strftime("%H:%M")},
        )

    created_at = quotation.created_at
    if created_at is not None:
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        if created_at.astimezone(zone).date() != local_now.date():
            raise AccessDeniedError(
                "Only quotations created today can be edited",
                details={"reason": "not_created_today"},
            )
