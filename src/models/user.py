"""User database model.

This module defines the User database model using SQLAlchemy.
"""

from sqlalchemy import Column, Index, String, text
from .base import Base


class UserModel(Base):
    """User database model."""

    __tablename__ = "users"

    user_id = Column(String, primary_key=True, index=True)
    username = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    role = Column("group", String, nullable=False, default="user")  # 'admin' or 'user'
    email = Column(String, unique=True, index=True, nullable=False)
    phone = Column(String, nullable=True)
    department = Column(String, nullable=True)
    class_name = Column("class", String, nullable=True)
    realname = Column(String, nullable=True)
    student_id = Column(String, nullable=True)
    create_at = Column(String, nullable=False)  # ISO format string

    # Student IDs only need to be unique among regular users
    __table_args__ = (
        Index(
            "uq_users_student_id_user",
            "student_id",
            unique=True,
            sqlite_where=text("\"group\" = 'user'"),
            postgresql_where=text("\"group\" = 'user'"),
        ),
    )
