"""User management utilities.

This module provides the user directory flows (list, get, create, update,
delete) together with password hashing and the role oracle. Privilege
decisions are delegated to ``utils.access_policy``; denials are raised as the
exceptions defined in ``core.exceptions``.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

import bcrypt
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import BCRYPT_ROUNDS, MAX_PAGE_POSITION
from core.exceptions import (
    IncompletePayloadError,
    InternalError,
    UnauthorizedError,
    UserConflictError,
    UserNotFoundError,
)
from models.user import UserModel
from schemas.user import Role, User
from utils import access_policy
from utils.access_policy import Caller, DenialReason, Identity
from utils.converters import RECORD_COLUMNS, apply_changes, model_to_user, user_to_model

logger = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes of a password
BCRYPT_MAX_BYTES = 72

# Column names reported by unique-constraint violations -> wire names
_UNIQUE_COLUMNS = (
    ("username", "username"),
    ("email", "email"),
    ("student_id", "studentId"),
)


def _encode_password(password: str) -> bytes:
    password_bytes = password.encode("utf-8")
    if len(password_bytes) > BCRYPT_MAX_BYTES:
        logger.warning("Password exceeds %d bytes, truncating", BCRYPT_MAX_BYTES)
        password_bytes = password_bytes[:BCRYPT_MAX_BYTES]
    return password_bytes


def _conflict_field(error: IntegrityError) -> Optional[str]:
    message = str(error.orig).lower()
    for column, wire_name in _UNIQUE_COLUMNS:
        if column in message:
            return wire_name
    return None


class UserManager:
    """Manages user data persistence and operations using SQLAlchemy."""

    def __init__(self, db: Session):
        """Initialize UserManager.

        Args:
            db: SQLAlchemy Session.
        """
        self.db = db

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------
    def hash_password(self, password: str) -> str:
        """Hash a password using bcrypt.

        Args:
            password: Plain text password.

        Returns:
            Hashed password (bcrypt hash string).

        Raises:
            InternalError: If the password cannot be hashed.
        """
        try:
            salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
            return bcrypt.hashpw(_encode_password(str(password)), salt).decode("utf-8")
        except ValueError as exc:
            raise InternalError("Password could not be hashed.") from exc

    def verify_password(self, plain_password: str, hashed_password: str) -> bool:
        """Verify a password against a bcrypt hash.

        Args:
            plain_password: Plain text password to verify.
            hashed_password: Bcrypt hash string to verify against.

        Returns:
            True if password matches, False otherwise.
        """
        try:
            return bcrypt.checkpw(
                _encode_password(plain_password), hashed_password.encode("utf-8")
            )
        except ValueError as exc:
            logger.error("Password verification error: %s", exc)
            return False

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def _query(self, **criteria: Any):
        query = self.db.query(UserModel)
        for name, value in criteria.items():
            query = query.filter(getattr(UserModel, RECORD_COLUMNS[name]) == value)
        return query

    def exists(self, **criteria: Any) -> bool:
        """Return True if a user matches every wire-name criterion.

        Example:
            ``manager.exists(group="user", studentId="S1")``
        """
        return self._query(**criteria).first() is not None

    def has_role(self, user_id: str, role: Role) -> bool:
        """Answer whether ``user_id`` currently holds ``role``."""
        return self.exists(id=user_id, group=Role(role).value)

    def _get_model(self, user_id: str) -> UserModel:
        model = self.db.query(UserModel).filter(UserModel.user_id == user_id).first()
        if model is None:
            raise UserNotFoundError(user_id)
        return model

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        """Get a user by user ID.

        Args:
            user_id: User ID to look up.

        Returns:
            User object if found, None otherwise.
        """
        model = self.db.query(UserModel).filter(UserModel.user_id == user_id).first()
        if model:
            return model_to_user(model)
        return None

    def get_user_by_username(self, username: str) -> Optional[User]:
        model = self.db.query(UserModel).filter(UserModel.username == username).first()
        if model:
            return model_to_user(model)
        return None

    def authenticate(self, username: str, password: str) -> Optional[User]:
        """Return the user owning ``username`` if ``password`` matches."""
        user = self.get_user_by_username(username)
        if user is None or not self.verify_password(password, user.password_hash):
            return None
        return user

    def resolve_caller(self, identity: Identity) -> Caller:
        """Turn a resolved identity into a Caller, consulting the role oracle.

        Raises:
            UnauthorizedError: If the identity is absent or invalid.
        """
        if not identity.is_resolved:
            raise UnauthorizedError(
                DenialReason.INVALID_CREDENTIAL, "Invalid or missing token."
            )
        return Caller(
            user_id=identity.subject_id,
            is_admin=self.has_role(identity.subject_id, Role.ADMIN),
        )

    # ------------------------------------------------------------------
    # Directory flows
    # ------------------------------------------------------------------
    def list_users(
        self,
        caller: Caller,
        filters: Optional[Mapping[str, Any]] = None,
        begin: int = 1,
        end: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """List users visible to ``caller``.

        Args:
            caller: The requesting party.
            filters: Exact-match filters keyed by wire names; keys outside
                ``FILTERABLE_FIELDS`` and None values are ignored.
            begin: 1-based position of the first user returned.
            end: 1-based inclusive position of the last user, None for all.

        Returns:
            Redacted views in storage order.
        """
        criteria = {
            name: value
            for name, value in (filters or {}).items()
            if name in access_policy.FILTERABLE_FIELDS and value is not None
        }
        begin = min(max(begin, 1), MAX_PAGE_POSITION)
        if end is not None:
            end = min(end, MAX_PAGE_POSITION)
        if end is not None and end < begin:
            return []

        query = self._query(**criteria).order_by(UserModel.create_at, UserModel.user_id)
        query = query.offset(begin - 1)
        if end is not None:
            query = query.limit(end - begin + 1)
        return [
            access_policy.redact(caller, model_to_user(model).to_record())
            for model in query.all()
        ]

    def get_user(self, caller: Caller, user_id: str) -> Dict[str, Any]:
        """Fetch one user as seen by ``caller``.

        Raises:
            UserNotFoundError: If the user does not exist.
        """
        user = model_to_user(self._get_model(user_id))
        return access_policy.redact(caller, user.to_record())

    def create_user(self, payload: Mapping[str, Any], identity: Identity) -> User:
        """Create a new user.

        Args:
            payload: Creation payload keyed by wire names.
            identity: Result of resolving the credential sent with the request.

        Returns:
            Created User object.

        Raises:
            UnauthorizedError: If an admin is requested without admin rights.
            IncompletePayloadError: If required fields are missing.
            UserConflictError: If username, email or studentId is taken.
        """
        decision = access_policy.authorize_create(
            payload.get("group"), identity, self.has_role
        )
        if not decision.allowed:
            logger.warning("Refused admin creation: %s", decision.reason.value)
            raise UnauthorizedError(decision.reason)

        proposed = dict(payload)
        proposed["group"] = decision.role.value

        missing = access_policy.check_complete(proposed)
        if missing:
            raise IncompletePayloadError(missing)

        conflict = access_policy.check_conflicts(proposed, self.exists)
        if conflict:
            raise UserConflictError(conflict)

        user = User(
            username=proposed["username"],
            password_hash=self.hash_password(proposed["password"]),
            role=decision.role,
            email=proposed["email"],
            phone=proposed.get("phone"),
            department=proposed.get("department"),
            class_name=proposed.get("class"),
            realname=proposed.get("realname"),
            student_id=proposed.get("studentId"),
        )
        self._commit_new(user_to_model(user))
        logger.info("Created user %s (%s) as %s", user.username, user.user_id, user.role.value)
        return user

    def update_user(
        self, caller: Caller, user_id: str, changes: Mapping[str, Any]
    ) -> User:
        """Apply ``changes`` to user ``user_id`` on behalf of ``caller``.

        Fields absent from ``changes`` are left untouched.

        Raises:
            UserNotFoundError: If the user does not exist.
            UnauthorizedError: If the caller may not make this change.
            UserConflictError: If the stored record would violate a
                uniqueness constraint.
        """
        model = self._get_model(user_id)

        decision = access_policy.authorize_update(caller, user_id, changes)
        if not decision.allowed:
            logger.warning("User %s may not update user %s", caller.user_id, user_id)
            raise UnauthorizedError(decision.reason)

        sanitized = dict(decision.changes)
        password = sanitized.pop("password", None)
        if password is not None:
            model.password_hash = self.hash_password(password)
        apply_changes(model, sanitized)

        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise self._integrity_to_conflict(exc) from exc
        self.db.refresh(model)
        logger.info("Updated user %s fields: %s", user_id, sorted(decision.changes))
        return model_to_user(model)

    def delete_user(self, caller: Caller, user_id: str) -> None:
        """Hard-delete user ``user_id``; admins only.

        Raises:
            UnauthorizedError: If the caller is not an admin.
            UserNotFoundError: If the user does not exist.
        """
        if not caller.is_admin:
            raise UnauthorizedError(DenialReason.INSUFFICIENT_PERMISSION)
        model = self._get_model(user_id)
        self.db.delete(model)
        self.db.commit()
        logger.info("Deleted user %s", user_id)

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------
    def _commit_new(self, model: UserModel) -> None:
        # Two requests may both pass the conflict check; the unique
        # constraints of the table catch the second one.
        try:
            self.db.add(model)
            self.db.commit()
            self.db.refresh(model)
        except IntegrityError as exc:
            self.db.rollback()
            raise self._integrity_to_conflict(exc) from exc

    def _integrity_to_conflict(self, exc: IntegrityError) -> Exception:
        field = _conflict_field(exc)
        if field is None:
            logger.error("Integrity error without known column: %s", exc.orig)
            return InternalError("Internal server error.")
        return UserConflictError(field)
