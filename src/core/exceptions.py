"""Custom exception classes for the User Directory service.

This module defines application-specific exceptions following Google Python
Style Guide. Each exception carries the HTTP status code the transport layer
answers with, so a single handler can translate all of them.
"""

from typing import List, Optional, Sequence

from fastapi import status


class UserDirectoryError(Exception):
    """Base exception for all User Directory errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        """Initialize the exception.

        Args:
            message: Human readable description returned to the client.
        """
        self.message = message
        super().__init__(message)


class UnauthorizedError(UserDirectoryError):
    """Raised when a credential is missing, invalid, or lacks the needed role."""

    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, reason: str, message: Optional[str] = None):
        """Initialize the exception.

        Args:
            reason: One of the DenialReason values.
            message: Optional override of the default message for the reason.
        """
        self.reason = reason
        super().__init__(message or UNAUTHORIZED_MESSAGES.get(reason, "Unauthorized."))


class UserNotFoundError(UserDirectoryError):
    """Raised when a requested user cannot be found."""

    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, user_id: str):
        """Initialize the exception.

        Args:
            user_id: The ID of the user that was not found.
        """
        self.user_id = user_id
        super().__init__("User does not exist.")


class UserConflictError(UserDirectoryError):
    """Raised when a new user collides with an existing one."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, field: str):
        """Initialize the exception.

        Args:
            field: Wire name of the colliding field.
        """
        self.field = field
        super().__init__(CONFLICT_MESSAGES.get(field, f"{field} already exists."))


class IncompletePayloadError(UserDirectoryError):
    """Raised when a creation payload lacks required fields."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, missing_fields: Sequence[str]):
        """Initialize the exception.

        Args:
            missing_fields: Wire names of the required fields that were absent.
        """
        self.missing_fields: List[str] = list(missing_fields)
        super().__init__("Missing essential post data.")


class InternalError(UserDirectoryError):
    """Raised when a collaborator (storage, hashing, tokens) fails."""


UNAUTHORIZED_MESSAGES = {
    "credential_required": "Token required.",
    "invalid_credential": "Invalid or expired token.",
    "insufficient_permission": "Insufficient permissions.",
}

CONFLICT_MESSAGES = {
    "username": "Username already exists.",
    "email": "Email already exists.",
    "studentId": "Student ID already exists.",
}
