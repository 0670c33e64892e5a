# priority_service/core/security.py
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import jwt
import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from priority_service.core.config import Settings, get_settings

logger = structlog.get_logger(__name__)

# Security scheme; a missing header is reported as 401 below rather than 403
security = HTTPBearer(auto_error=False)


class TokenValidator:
    """JWT Token validation"""

    def __init__(self, settings: Settings = None):
        settings = settings or get_settings()
        self.algorithm = settings.jwt_algorithm
        self.secret = settings.jwt_secret

    def decode_token(self, token: str) -> Dict[str, Any]:
        """Decode and validate JWT token"""
        try:
            return jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token has expired"
            )
        except jwt.InvalidTokenError:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token"
            )

    def verify_token(self, credentials: Optional[HTTPAuthorizationCredentials]) -> Dict[str, Any]:
        """Verify bearer token"""
        if credentials is None or not credentials.credentials:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Not authenticated"
            )
        return self.decode_token(credentials.credentials)


def _token_validator(request: Request) -> TokenValidator:
    validator = getattr(request.app.state, "token_validator", None)
    if validator is None:
        validator = TokenValidator()
        request.app.state.token_validator = validator
    return validator


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Dict[str, Any]:
    """Get current user from JWT token"""
    payload = _token_validator(request).verify_token(credentials)

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload"
        )

    return {
        "id": str(user_id),
        "email": payload.get("email"),
        "roles": payload.get("roles", []),
    }


def create_access_token(user_id: str, email: Optional[str] = None,
                        roles: List[str] = None,
                        expires_delta: Optional[timedelta] = None,
                        settings: Settings = None) -> str:
    """Create a new access token (for testing/internal use)"""
    settings = settings or get_settings()

    now = datetime.now(timezone.utc)
    expire = now + (expires_delta if expires_delta else timedelta(hours=24))

    payload = {
        "sub": user_id,
        "email": email,
        "roles": roles or [],
        "exp": expire,
        "iat": now,
    }

    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)
