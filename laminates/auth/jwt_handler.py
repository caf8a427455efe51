"""
JWT handling for bearer tokens
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import HTTPException, status
from jose import ExpiredSignatureError, JWTError, jwt

from laminates.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


class JWTHandler:
    """Issue and verify HS256 access tokens whose ``sub`` is the user id"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def create_access_token(self, user_id: str, expires_delta: Optional[timedelta] = None,
                            extra_claims: Optional[Dict[str, Any]] = None) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": user_id,
            "iat": now,
            "exp": now + (expires_delta or timedelta(hours=24)),
            "type": "access",
        }
        if extra_claims:
            payload.update(extra_claims)
        return jwt.encode(payload, self.settings.jwt_secret, algorithm=self.settings.jwt_algorithm)

    def verify_token(self, token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(token, self.settings.jwt_secret, algorithms=[self.settings.jwt_algorithm])
        except ExpiredSignatureError:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token has expired",
                headers={"WWW-Authenticate": "Bearer"},
            )
        except JWTError as e:
            logger.debug(f"Rejected token: {e}")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid authentication token",
                headers={"WWW-Authenticate": "Bearer"},
            )
