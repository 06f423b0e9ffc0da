"""
Authentication

Bearer JWT verification for REST and WebSocket callers. Tokens are issued
by the external auth service and signed with the shared secret; only the
`sub` and `role` claims are trusted.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from classroom.config import AUTH_JWT_SECRET, AUTH_JWT_ALGORITHM
from classroom.services.phases import Principal, Role

logger = logging.getLogger(__name__)

# Security scheme
security = HTTPBearer(auto_error=False)


def _auth_error(code: str, message: str, details: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={
            "error": {
                "code": code,
                "message": message,
                "details": details,
            }
        },
        headers={"WWW-Authenticate": "Bearer"},
    )


def create_access_token(user_id: str, role: Role, expires_minutes: int = 12 * 60) -> str:
    """Mint a token the way the auth service does (demo loader and tests)"""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "role": Role(role).value,
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes),
    }
    return jwt.encode(payload, AUTH_JWT_SECRET, algorithm=AUTH_JWT_ALGORITHM)


def decode_token(token: str) -> Principal:
    """
    Verify a bearer token and extract the caller.

    Raises:
        HTTPException: 401 AUTH_002 if the token is invalid, expired or
            carries an unknown role
    """
    try:
        claims = jwt.decode(token, AUTH_JWT_SECRET, algorithms=[AUTH_JWT_ALGORITHM])
        user_id = claims["sub"]
        role = Role(claims["role"])
    except (jwt.PyJWTError, KeyError, ValueError) as e:
        logger.warning(f"Invalid token attempt: {e}")
        raise _auth_error("AUTH_002", "Invalid or expired token", "The provided token is not valid")

    return Principal(user_id=str(user_id), role=role)


async def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Principal:
    """FastAPI dependency resolving the authenticated caller"""
    if credentials is None:
        raise _auth_error(
            "AUTH_001",
            "Authorization header missing",
            "Please provide a valid bearer token",
        )
    return decode_token(credentials.credentials)
