"""Access-control and field-redaction policies for user records.

Every privilege decision of the service is made here. The functions are pure:
they take the caller, the relevant record or payload, and (where a lookup is
unavoidable) a callable collaborator, and return a decision value. They never
raise for expected conditions; ``UserManager`` turns denials into exceptions.

Records and payloads are plain mappings keyed by wire names (``id``,
``group``, ``class``, ``realname``, ``studentId`` ...).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

from schemas.user import Role

# Always visible to any authenticated caller
PUBLIC_FIELDS = ("id", "username", "group", "email", "department", "class")

# Visible only to admins and to the user themself
PRIVATE_FIELDS = ("phone", "realname", "studentId")

# Fields a change set may carry at all; anything else is dropped
UPDATABLE_FIELDS = (
    "password",
    "group",
    "phone",
    "department",
    "class",
    "realname",
    "studentId",
)

# Fixed at creation for everyone
IMMUTABLE_FIELDS = ("username", "email")

# Settable at creation only
PROTECTED_FIELDS = ("realname", "studentId")

REQUIRED_FIELDS = ("username", "password", "email")
PROFILE_FIELDS = ("phone", "department", "class", "realname", "studentId")

# Exact-match filters accepted by the listing
FILTERABLE_FIELDS = ("group", "department", "class", "username", "email")


class DenialReason(str, Enum):
    """Why an operation was refused."""

    CREDENTIAL_REQUIRED = "credential_required"
    INVALID_CREDENTIAL = "invalid_credential"
    INSUFFICIENT_PERMISSION = "insufficient_permission"


class IdentityStatus(str, Enum):
    """Outcome of resolving a presented credential."""

    ABSENT = "absent"
    INVALID = "invalid"
    RESOLVED = "resolved"


@dataclass(frozen=True)
class Identity:
    """Three-way result of identity resolution."""

    status: IdentityStatus
    subject_id: Optional[str] = None

    @classmethod
    def absent(cls) -> "Identity":
        return cls(IdentityStatus.ABSENT)

    @classmethod
    def invalid(cls) -> "Identity":
        return cls(IdentityStatus.INVALID)

    @classmethod
    def resolved(cls, subject_id: str) -> "Identity":
        return cls(IdentityStatus.RESOLVED, subject_id)

    @property
    def is_resolved(self) -> bool:
        return self.status is IdentityStatus.RESOLVED


@dataclass(frozen=True)
class Caller:
    """Authenticated party making a request."""

    user_id: str
    is_admin: bool = False

    def is_self(self, target_id: Any) -> bool:
        return self.user_id == target_id


@dataclass(frozen=True)
class UpdateDecision:
    allowed: bool
    changes: Dict[str, Any] = field(default_factory=dict)
    reason: Optional[DenialReason] = None


@dataclass(frozen=True)
class CreateDecision:
    allowed: bool
    role: Role = Role.USER
    reason: Optional[DenialReason] = None


def is_present(value: Any) -> bool:
    """Return True if a payload value counts as supplied (non-empty, non-null)."""
    return bool(value)


def redact(caller: Caller, record: Mapping[str, Any]) -> Dict[str, Any]:
    """Project a user record onto the fields the caller may read.

    The password credential is never part of the projection.

    Args:
        caller: The requesting party.
        record: Stored user record keyed by wire names.

    Returns:
        A new dict holding the visible fields.
    """
    view = {name: record.get(name) for name in PUBLIC_FIELDS}
    if caller.is_admin or caller.is_self(record.get("id")):
        for name in PRIVATE_FIELDS:
            view[name] = record.get(name)
    return view


def authorize_update(
    caller: Caller, target_id: str, changes: Mapping[str, Any]
) -> UpdateDecision:
    """Decide whether ``caller`` may apply ``changes`` to user ``target_id``.

    Rules, in order:

    1. The effective target role is ``admin`` only if the change set asks for
       it; any other value means ``user``.
    2. A non-admin may edit only themself and may never grant admin.
    3. ``realname`` and ``studentId`` are stripped; once set they are never
       changed through an update, not even by an admin.
    4. ``username`` and ``email`` are stripped for everyone.

    Keys outside ``UPDATABLE_FIELDS`` are dropped, and ``group`` is only kept
    when it was supplied, so an empty change set is a no-op.

    Args:
        caller: The requesting party.
        target_id: Identifier of the record to modify.
        changes: Proposed changes keyed by wire names.

    Returns:
        UpdateDecision carrying the sanitized change set when allowed.
    """
    effective_role = Role.normalize(changes.get("group"))

    if not caller.is_admin and (
        not caller.is_self(target_id) or effective_role is Role.ADMIN
    ):
        return UpdateDecision(allowed=False, reason=DenialReason.INSUFFICIENT_PERMISSION)

    sanitized = {
        name: value
        for name, value in changes.items()
        if name in UPDATABLE_FIELDS
        and name not in PROTECTED_FIELDS
        and name not in IMMUTABLE_FIELDS
    }
    if "group" in sanitized:
        sanitized["group"] = effective_role.value
    # No new password means no password change
    if "password" in sanitized and not is_present(sanitized["password"]):
        del sanitized["password"]
    return UpdateDecision(allowed=True, changes=sanitized)


def merge_changes(
    record: Mapping[str, Any], changes: Mapping[str, Any]
) -> Dict[str, Any]:
    """Return a copy of ``record`` with ``changes`` applied on top."""
    merged = dict(record)
    merged.update(changes)
    return merged


def check_conflicts(
    proposed: Mapping[str, Any], exists: Callable[..., bool]
) -> Optional[str]:
    """Find the first identifying field of ``proposed`` already taken.

    Precedence is username, then email, then (for role ``user`` only)
    studentId among role ``user`` records. Later lookups are skipped once a
    conflict is found.

    Args:
        proposed: Creation payload keyed by wire names, role already decided.
        exists: Lookup answering whether a record matches all given
            wire-name criteria, e.g. ``exists(username="alice")``.

    Returns:
        The wire name of the colliding field, or None when clear.
    """
    if exists(username=proposed.get("username")):
        return "username"
    if exists(email=proposed.get("email")):
        return "email"
    if Role.normalize(proposed.get("group")) is Role.USER and exists(
        group=Role.USER.value, studentId=proposed.get("studentId")
    ):
        return "studentId"
    return None


def check_complete(payload: Mapping[str, Any]) -> List[str]:
    """List the required fields missing from a creation payload.

    Args:
        payload: Creation payload keyed by wire names.

    Returns:
        Missing field names in declaration order; empty when complete.
    """
    required = list(REQUIRED_FIELDS)
    if Role.normalize(payload.get("group")) is Role.USER:
        required.extend(PROFILE_FIELDS)
    return [name for name in required if not is_present(payload.get(name))]


def authorize_create(
    requested_role: Any,
    identity: Identity,
    has_role: Callable[[str, Role], bool],
) -> CreateDecision:
    """Guard creation against privilege escalation.

    Only an existing admin may create another admin. Any other requested role
    is forced to ``user`` and needs no credential.

    Args:
        requested_role: Raw ``group`` value of the creation payload.
        identity: Result of resolving the presented credential.
        has_role: Role oracle, ``has_role(subject_id, role) -> bool``.

    Returns:
        CreateDecision with the role to store, or the denial reason.
    """
    if Role.normalize(requested_role) is not Role.ADMIN:
        return CreateDecision(allowed=True, role=Role.USER)

    if identity.status is IdentityStatus.ABSENT:
        return CreateDecision(
            allowed=False, role=Role.ADMIN, reason=DenialReason.CREDENTIAL_REQUIRED
        )
    if not identity.is_resolved:
        return CreateDecision(
            allowed=False, role=Role.ADMIN, reason=DenialReason.INVALID_CREDENTIAL
        )
    if not has_role(identity.subject_id, Role.ADMIN):
        return CreateDecision(
            allowed=False, role=Role.ADMIN, reason=DenialReason.INSUFFICIENT_PERMISSION
        )
    return CreateDecision(allowed=True, role=Role.ADMIN)
