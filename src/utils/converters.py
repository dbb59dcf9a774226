"""Conversions between database models and pydantic schemas."""

from typing import Any, Dict

from models.user import UserModel
from schemas.user import Role, User

# Wire name -> UserModel attribute
RECORD_COLUMNS: Dict[str, str] = {
    "id": "user_id",
    "username": "username",
    "group": "role",
    "email": "email",
    "phone": "phone",
    "department": "department",
    "class": "class_name",
    "realname": "realname",
    "studentId": "student_id",
}


def user_to_model(user: User) -> UserModel:
    return UserModel(
        user_id=user.user_id,
        username=user.username,
        password_hash=user.password_hash,
        role=user.role.value,
        email=user.email,
        phone=user.phone,
        department=user.department,
        class_name=user.class_name,
        realname=user.realname,
        student_id=user.student_id,
        create_at=user.create_at,
    )


def model_to_user(model: UserModel) -> User:
    return User(
        user_id=model.user_id,
        username=model.username,
        password_hash=model.password_hash,
        role=Role.normalize(model.role),
        email=model.email,
        phone=model.phone,
        department=model.department,
        class_name=model.class_name,
        realname=model.realname,
        student_id=model.student_id,
        create_at=model.create_at,
    )


def apply_changes(model: UserModel, changes: Dict[str, Any]) -> None:
    """Copy wire-keyed ``changes`` onto the model's columns."""
    for name, value in changes.items():
        column = RECORD_COLUMNS.get(name)
        if column is not None:
            setattr(model, column, value)
