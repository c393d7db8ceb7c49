"""
Bearer credential verification.

Tokens are JWTs issued by the external auth service and signed with a shared
secret; the ``sub`` claim is the user id.
"""
from typing import Optional

import jwt
from fastapi import Header, HTTPException, status
from pydantic import BaseModel

from defectvision.config import settings
from defectvision.logger import logger


class AuthenticatedUser(BaseModel):
    id: str
    email: Optional[str] = None


class AuthError(Exception):
    """Raised when a bearer credential is missing or cannot be verified."""


def verify_token(token: str) -> AuthenticatedUser:
    if not settings.jwt_secret:
        logger.error("JWT secret is not configured; rejecting all credentials")
        raise AuthError("Unauthorized: Invalid token")
    try:
        claims = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            options={"verify_aud": settings.jwt_audience is not None},
        )
    except jwt.PyJWTError as e:
        logger.info(f"Rejected bearer token: {e}")
        raise AuthError("Unauthorized: Invalid token")
    subject = claims.get("sub")
    if not subject:
        raise AuthError("Unauthorized: Invalid token")
    return AuthenticatedUser(id=str(subject), email=claims.get("email"))


def parse_authorization(authorization: Optional[str]) -> AuthenticatedUser:
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthError("Unauthorized: Missing or invalid authorization header")
    return verify_token(authorization[len("Bearer "):])


async def require_user(authorization: Optional[str] = Header(None)) -> AuthenticatedUser:
    """FastAPI dependency: reject the request before any business logic runs."""
    try:
        return parse_authorization(authorization)
    except AuthError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
