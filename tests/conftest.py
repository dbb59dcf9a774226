import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

SRC = Path(__file__).resolve().parents[1] / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("JWT_SECRET_KEY", "tests-secret-key")

from app import app  # noqa: E402
from core.database import get_db  # noqa: E402
from core.security import create_access_token  # noqa: E402
from models.base import Base  # noqa: E402
from schemas.user import Role  # noqa: E402
from utils.access_policy import Identity  # noqa: E402
from utils.user_manager import UserManager  # noqa: E402


def user_payload(name: str, **overrides):
    payload = {
        "username": name,
        "password": f"{name}-password",
        "email": f"{name}@example.com",
        "group": "user",
        "phone": "555-0100",
        "department": "CS",
        "class": "1A",
        "realname": name.title(),
        "studentId": f"S-{name}",
    }
    payload.update(overrides)
    return payload


def admin_payload(name: str, **overrides):
    payload = {
        "username": name,
        "password": f"{name}-password",
        "email": f"{name}@example.com",
        "group": "admin",
    }
    payload.update(overrides)
    return payload


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def manager(db) -> UserManager:
    return UserManager(db)


@pytest.fixture()
def admin(manager):
    """An admin seeded the way a bootstrap script would, bypassing the guard."""
    from models.user import UserModel
    from schemas.user import User
    from utils.converters import user_to_model

    user = User(
        username="root",
        password_hash=manager.hash_password("root-password"),
        role=Role.ADMIN,
        email="root@example.com",
    )
    manager.db.add(user_to_model(user))
    manager.db.commit()
    assert manager.db.query(UserModel).count() == 1
    return user


@pytest.fixture()
def create_user(manager):
    def _create(name: str, **overrides):
        return manager.create_user(user_payload(name, **overrides), Identity.absent())

    return _create


@pytest.fixture()
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def auth_headers(user_id: str):
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}
