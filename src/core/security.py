"""Token issuance and identity resolution.

Tokens are HS256 JWTs carrying the user id in the ``id`` claim.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

import pytz
from fastapi import Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from config import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    ACCESS_TOKEN_HEADER,
    JWT_ALGORITHM,
    JWT_SECRET_KEY,
)
from utils.access_policy import Identity

logger = logging.getLogger(__name__)

# HTTP Bearer token security; a missing header is not an error here
bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token.

    Args:
        user_id: Identifier of the user the token is issued to.
        expires_delta: Optional expiration time delta.

    Returns:
        Encoded JWT token string.
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    expire = datetime.now(pytz.utc) + expires_delta
    return jwt.encode({"id": user_id, "exp": expire}, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def resolve_identity(token: Optional[str]) -> Identity:
    """Resolve a presented credential into an Identity.

    Args:
        token: Raw token string, or None when no credential was presented.

    Returns:
        ``Identity.absent()`` when nothing was presented,
        ``Identity.invalid()`` when the token is malformed, forged or expired,
        otherwise ``Identity.resolved(user_id)``.
    """
    if not token:
        return Identity.absent()
    try:
        payload = jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError as exc:
        logger.info("Rejected access token: %s", exc)
        return Identity.invalid()

    user_id = payload.get("id")
    if not isinstance(user_id, str) or not user_id:
        return Identity.invalid()
    return Identity.resolved(user_id)


async def extract_token(request: Request) -> Optional[str]:
    """Read the token from ``Authorization: Bearer`` or the legacy header."""
    credentials: Optional[HTTPAuthorizationCredentials] = await bearer_scheme(request)
    if credentials is not None and credentials.credentials:
        return credentials.credentials
    return request.headers.get(ACCESS_TOKEN_HEADER) or None
