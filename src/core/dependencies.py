"""Dependency injection module for FastAPI.

This module provides dependency injection functions for FastAPI routes.
Identity is resolved once per request and handed to the routes as an explicit
value instead of being attached to the request object.
"""

from typing import Annotated, Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from core.database import get_db
from core.security import extract_token, resolve_identity
from utils import user_manager
from utils.access_policy import Caller, Identity


def get_user_manager(db: Session = Depends(get_db)) -> user_manager.UserManager:
    """Get UserManager instance with request-scoped DB session.

    Args:
        db: Database session.

    Returns:
        UserManager instance.
    """
    return user_manager.UserManager(db)


def get_identity(token: Optional[str] = Depends(extract_token)) -> Identity:
    """Resolve the credential sent with the request, if any."""
    return resolve_identity(token)


def get_caller(
    identity: Identity = Depends(get_identity),
    manager: user_manager.UserManager = Depends(get_user_manager),
) -> Caller:
    """Require a valid credential and look up the caller's role.

    Raises:
        UnauthorizedError: If no valid credential was presented.
    """
    return manager.resolve_caller(identity)


# Type aliases for dependency injection
UserManagerDep = Annotated[
    user_manager.UserManager, Depends(get_user_manager)
]
IdentityDep = Annotated[Identity, Depends(get_identity)]
CallerDep = Annotated[Caller, Depends(get_caller)]
