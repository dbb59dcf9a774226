"""User schema definitions.

This module defines the Role enumeration, the User domain model and the
request/response bodies of the user and auth routes. Field aliases are the
names used on the wire (``group``, ``class``, ``studentId``).
"""

import secrets
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional

import pytz
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field


class Role(str, Enum):
    """Coarse privilege class of a user record."""

    ADMIN = "admin"
    USER = "user"

    @classmethod
    def normalize(cls, value: Any) -> "Role":
        """Map any requested role onto a Role; only "admin" yields ADMIN."""
        if value == cls.ADMIN.value or value is cls.ADMIN:
            return cls.ADMIN
        return cls.USER


def _coerce_text(value: Any) -> Any:
    # JSON numbers are accepted for text fields; zero counts as missing
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value) if value else None
    return value


Text = Annotated[Optional[str], BeforeValidator(_coerce_text)]


class User(BaseModel):
    """Stored user record."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(
        alias="id",
        default_factory=lambda: secrets.token_hex(12),
        description="Opaque, immutable identifier.",
    )
    username: str
    password_hash: str
    role: Role = Field(alias="group", default=Role.USER)
    email: str
    phone: Optional[str] = None
    department: Optional[str] = None
    class_name: Optional[str] = Field(alias="class", default=None)
    realname: Optional[str] = None
    student_id: Optional[str] = Field(alias="studentId", default=None)
    create_at: str = Field(
        default_factory=lambda: datetime.now(pytz.utc).isoformat(),
        description="The time when the user was created.",
    )

    def to_record(self) -> Dict[str, Any]:
        """Return the record keyed by wire names, as seen by the policies."""
        return self.model_dump(by_alias=True, mode="json")


class CreateUserRequest(BaseModel):
    """Body of ``POST /users``.

    Every field is optional here so that incomplete payloads reach the
    completeness check and are answered with the list of missing fields.
    """

    model_config = ConfigDict(populate_by_name=True)

    username: Text = None
    password: Text = None
    email: Text = None
    group: Text = None
    phone: Text = None
    department: Text = None
    class_name: Text = Field(alias="class", default=None)
    realname: Text = None
    student_id: Text = Field(alias="studentId", default=None)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class UpdateUserRequest(CreateUserRequest):
    """Body of ``PUT /users/{id}``; only supplied fields are applied."""

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_unset=True)


class UserView(BaseModel):
    """Redacted view of a user record returned to callers."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    username: str
    group: Role
    email: str
    department: Optional[str] = None
    class_name: Optional[str] = Field(alias="class", default=None)
    phone: Optional[str] = None
    realname: Optional[str] = None
    student_id: Optional[str] = Field(alias="studentId", default=None)


class TokenResponse(BaseModel):
    """Token issued on creation and login."""

    auth: bool = True
    token: str


class LoginRequest(BaseModel):
    username: str
    password: str


class ErrorResponse(BaseModel):
    detail: str
    missing_fields: Optional[List[str]] = None
