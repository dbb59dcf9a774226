"""User directory routes.

This module exposes list, get-one, create, update and delete over users.
Authorization and redaction are decided by ``utils.access_policy`` through
``UserManager``; errors raised there are translated by the handlers
registered in ``app.py``.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Query, Response, status

from config import MAX_PAGE_POSITION
from core.dependencies import CallerDep, IdentityDep, UserManagerDep
from core.security import create_access_token
from schemas.user import (
    CreateUserRequest,
    ErrorResponse,
    TokenResponse,
    UpdateUserRequest,
    UserView,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["Users"])

_ERRORS = {
    401: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def user_location(user_id: str) -> str:
    return f"{router.prefix}/{user_id}"


@router.get(
    "",
    response_model=List[UserView],
    response_model_exclude_unset=True,
    responses=_ERRORS,
    summary="List users",
)
def list_users(
    caller: CallerDep,
    user_manager: UserManagerDep,
    group: Optional[str] = None,
    department: Optional[str] = None,
    class_name: Optional[str] = Query(default=None, alias="class"),
    username: Optional[str] = None,
    email: Optional[str] = None,
    begin: int = Query(default=1, ge=1, le=MAX_PAGE_POSITION),
    end: Optional[int] = Query(default=None, ge=1, le=MAX_PAGE_POSITION),
) -> List[dict]:
    """List users, optionally filtered and paginated.

    Private fields (phone, realname, studentId) are only included for admins
    and for the caller's own record.

    Args:
        caller: Authenticated caller.
        user_manager: Injected UserManager instance.
        group: Optional role filter.
        department: Optional department filter.
        class_name: Optional class filter (query parameter ``class``).
        username: Optional username filter.
        email: Optional email filter.
        begin: 1-based position of the first user returned.
        end: 1-based inclusive position of the last user returned.

    Returns:
        List of redacted user views.
    """
    filters = {
        "group": group,
        "department": department,
        "class": class_name,
        "username": username,
        "email": email,
    }
    return user_manager.list_users(caller, filters=filters, begin=begin, end=end)


@router.get(
    "/{user_id}",
    response_model=UserView,
    response_model_exclude_unset=True,
    responses=_ERRORS,
    summary="Get a user",
)
def get_user(user_id: str, caller: CallerDep, user_manager: UserManagerDep) -> dict:
    """Get one user as visible to the caller."""
    return user_manager.get_user(caller, user_id)


@router.post(
    "",
    response_model=TokenResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        **_ERRORS,
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    },
    summary="Create a user",
)
def create_user(
    req: CreateUserRequest,
    response: Response,
    identity: IdentityDep,
    user_manager: UserManagerDep,
) -> TokenResponse:
    """Create a user and issue a token for it.

    Anyone may create a regular user. Creating an admin requires the token of
    an existing admin.

    Args:
        req: Creation payload.
        response: Outgoing response, used to set the Location header.
        identity: Credential presented with the request, possibly absent.
        user_manager: Injected UserManager instance.

    Returns:
        TokenResponse for the new user.
    """
    user = user_manager.create_user(req.to_payload(), identity)
    response.headers["Location"] = user_location(user.user_id)
    return TokenResponse(auth=True, token=create_access_token(user.user_id))


@router.put(
    "/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={**_ERRORS, 409: {"model": ErrorResponse}},
    summary="Update a user",
)
def update_user(
    user_id: str,
    req: UpdateUserRequest,
    caller: CallerDep,
    user_manager: UserManagerDep,
) -> Response:
    """Update a user with merge semantics.

    Username and email never change. Realname and studentId are fixed after
    creation. Only admins may edit other users or grant the admin role.
    """
    user = user_manager.update_user(caller, user_id, req.to_payload())
    return Response(
        status_code=status.HTTP_204_NO_CONTENT,
        headers={"Location": user_location(user.user_id)},
    )


@router.delete(
    "/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=_ERRORS,
    summary="Delete a user",
)
def delete_user(user_id: str, caller: CallerDep, user_manager: UserManagerDep) -> Response:
    """Delete a user. Admins only."""
    user_manager.delete_user(caller, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
