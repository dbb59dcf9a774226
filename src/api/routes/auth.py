"""Authentication routes.

This module handles HTTP endpoints for logging in and inspecting the
current caller.
"""

import logging

from fastapi import APIRouter, HTTPException, status

from core.dependencies import CallerDep, UserManagerDep
from core.security import create_access_token
from schemas.user import LoginRequest, TokenResponse, UserView

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])


@router.post("/login", response_model=TokenResponse, summary="Log in")
def login(req: LoginRequest, user_manager: UserManagerDep) -> TokenResponse:
    """Login with username and password.

    Args:
        req: Login request with username and password.
        user_manager: Injected UserManager instance.

    Returns:
        TokenResponse with a JWT for the user.

    Raises:
        HTTPException: If the credentials do not match.
    """
    user = user_manager.authenticate(req.username, req.password)
    if user is None:
        logger.info("Failed login for %s", req.username)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        )
    return TokenResponse(auth=True, token=create_access_token(user.user_id))


@router.get(
    "/me",
    response_model=UserView,
    response_model_exclude_unset=True,
    summary="Current user",
)
def me(caller: CallerDep, user_manager: UserManagerDep) -> dict:
    """Return the caller's own record, private fields included."""
    return user_manager.get_user(caller, caller.user_id)
