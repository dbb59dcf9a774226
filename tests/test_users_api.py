from __future__ import annotations

from datetime import timedelta

from fastapi.testclient import TestClient
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from conftest import admin_payload, auth_headers, user_payload
from core.security import create_access_token, resolve_identity
from utils.user_manager import UserManager

SCENARIO_A = {
    "username": "alice",
    "password": "p",
    "email": "a@x.com",
    "group": "user",
    "phone": "1",
    "department": "CS",
    "class": "1A",
    "realname": "Alice",
    "studentId": "S1",
}


def _create(client: TestClient, payload, headers=None):
    return client.post("/users", json=payload, headers=headers or {})


def test_create_user_returns_location_and_token(client: TestClient) -> None:
    response = _create(client, SCENARIO_A)

    assert response.status_code == 201
    location = response.headers["location"]
    assert location.startswith("/users/")
    body = response.json()
    assert body["auth"] is True
    assert "password" not in body

    identity = resolve_identity(body["token"])
    assert identity.is_resolved
    assert location == f"/users/{identity.subject_id}"

    fetched = client.get(location, headers={"Authorization": f"Bearer {body['token']}"})
    assert fetched.status_code == 200
    view = fetched.json()
    assert "password" not in view
    assert "password_hash" not in view
    assert view["username"] == "alice"
    assert view["group"] == "user"
    assert view["class"] == "1A"
    assert view["studentId"] == "S1"


def test_duplicate_student_id_conflicts(client: TestClient) -> None:
    assert _create(client, SCENARIO_A).status_code == 201

    second = dict(SCENARIO_A, username="bob", email="b@x.com")
    response = _create(client, second)

    assert response.status_code == 409
    assert response.headers["location"] == "/users"
    assert "Student ID" in response.json()["detail"]


def test_conflict_reports_username_before_email(client: TestClient) -> None:
    assert _create(client, SCENARIO_A).status_code == 201

    response = _create(client, dict(SCENARIO_A, studentId="S2"))

    assert response.status_code == 409
    assert response.json()["detail"] == "Username already exists."


def test_incomplete_payload_is_unprocessable(client: TestClient) -> None:
    payload = dict(SCENARIO_A)
    del payload["realname"]
    payload["phone"] = ""

    response = _create(client, payload)

    assert response.status_code == 422
    assert response.json()["missing_fields"] == ["phone", "realname"]


def test_create_admin_without_token(client: TestClient) -> None:
    response = _create(client, admin_payload("root"))

    assert response.status_code == 401
    assert response.json()["detail"] == "Token required."


def test_create_admin_with_invalid_token(client: TestClient) -> None:
    expired = create_access_token("someone", expires_delta=timedelta(minutes=-5))

    for token in ("garbage", expired):
        response = _create(client, admin_payload("root"), {"Authorization": f"Bearer {token}"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid or expired token."


def test_create_admin_by_regular_user(client: TestClient) -> None:
    alice = _create(client, SCENARIO_A)
    token = alice.json()["token"]

    response = _create(client, admin_payload("root"), {"Authorization": f"Bearer {token}"})

    assert response.status_code == 401
    assert response.json()["detail"] == "Insufficient permissions."


def test_create_admin_by_admin(client: TestClient, admin) -> None:
    response = _create(client, admin_payload("ops"), auth_headers(admin.user_id))

    assert response.status_code == 201
    view = client.get(response.headers["location"], headers=auth_headers(admin.user_id)).json()
    assert view["group"] == "admin"


def test_legacy_token_header_is_accepted(client: TestClient, admin) -> None:
    headers = {"x-access-token": create_access_token(admin.user_id)}

    response = _create(client, admin_payload("ops"), headers)

    assert response.status_code == 201


def test_reads_require_token(client: TestClient) -> None:
    assert client.get("/users").status_code == 401
    assert client.get("/users/anything").status_code == 401
    assert client.get("/users", headers={"Authorization": "Bearer nope"}).status_code == 401


def test_private_fields_hidden_from_other_users(client: TestClient, admin) -> None:
    alice = _create(client, SCENARIO_A)
    bob = _create(client, user_payload("bob"))
    bob_token = bob.json()["token"]

    view = client.get(alice.headers["location"], headers={"Authorization": f"Bearer {bob_token}"}).json()
    for name in ("phone", "realname", "studentId"):
        assert name not in view

    admin_view = client.get(alice.headers["location"], headers=auth_headers(admin.user_id)).json()
    assert admin_view["phone"] == "1"
    assert admin_view["studentId"] == "S1"


def test_list_applies_redaction_per_record(client: TestClient, admin) -> None:
    alice = _create(client, SCENARIO_A)
    _create(client, user_payload("bob"))

    views = client.get(
        "/users", params={"group": "user"}, headers={"Authorization": f"Bearer {alice.json()['token']}"}
    ).json()

    by_name = {view["username"]: view for view in views}
    assert set(by_name) == {"alice", "bob"}
    assert by_name["alice"]["studentId"] == "S1"
    assert "studentId" not in by_name["bob"]
    assert all("password" not in view for view in views)


def test_list_pagination(client: TestClient, admin) -> None:
    for name in ("alice", "bob", "carol"):
        _create(client, user_payload(name))

    response = client.get(
        "/users", params={"group": "user", "begin": 2, "end": 2}, headers=auth_headers(admin.user_id)
    )

    assert response.status_code == 200
    assert [view["username"] for view in response.json()] == ["bob"]


def test_list_filter_by_class(client: TestClient, admin) -> None:
    _create(client, user_payload("alice", **{"class": "1A"}))
    _create(client, user_payload("bob", **{"class": "2B"}))

    response = client.get("/users", params={"class": "2B"}, headers=auth_headers(admin.user_id))

    assert [view["username"] for view in response.json()] == ["bob"]


def test_get_missing_user(client: TestClient, admin) -> None:
    response = client.get("/users/missing", headers=auth_headers(admin.user_id))

    assert response.status_code == 404


def test_update_other_user_is_unauthorized(client: TestClient) -> None:
    alice = _create(client, SCENARIO_A)
    bob = _create(client, user_payload("bob"))
    bob_headers = {"Authorization": f"Bearer {bob.json()['token']}"}

    for payload in ({}, {"phone": "2"}, {"group": "admin"}):
        response = client.put(alice.headers["location"], json=payload, headers=bob_headers)
        assert response.status_code == 401
        assert response.json()["detail"] == "Insufficient permissions."


def test_user_cannot_promote_themself(client: TestClient, manager: UserManager) -> None:
    alice = _create(client, SCENARIO_A)
    headers = {"Authorization": f"Bearer {alice.json()['token']}"}

    response = client.put(alice.headers["location"], json={"group": "admin"}, headers=headers)

    assert response.status_code == 401
    assert manager.get_user_by_username("alice").role.value == "user"


def test_self_update_keeps_password(client: TestClient) -> None:
    alice = _create(client, SCENARIO_A)
    headers = {"Authorization": f"Bearer {alice.json()['token']}"}

    response = client.put(
        alice.headers["location"], json={"phone": "2", "department": "EE"}, headers=headers
    )

    assert response.status_code == 204
    assert response.headers["location"] == alice.headers["location"]
    view = client.get(alice.headers["location"], headers=headers).json()
    assert view["phone"] == "2"
    assert view["department"] == "EE"
    assert view["class"] == "1A"

    login = client.post("/auth/login", json={"username": "alice", "password": "p"})
    assert login.status_code == 200


def test_admin_update_drops_student_id(client: TestClient, admin) -> None:
    alice = _create(client, SCENARIO_A)
    headers = auth_headers(admin.user_id)

    response = client.put(
        alice.headers["location"],
        json={"studentId": "S9", "department": "EE", "phone": "3"},
        headers=headers,
    )

    assert response.status_code == 204
    view = client.get(alice.headers["location"], headers=headers).json()
    assert view["studentId"] == "S1"
    assert view["department"] == "EE"
    assert view["phone"] == "3"


def test_update_missing_user(client: TestClient, admin) -> None:
    response = client.put("/users/missing", json={"phone": "1"}, headers=auth_headers(admin.user_id))

    assert response.status_code == 404


def test_delete_by_non_admin(client: TestClient) -> None:
    alice = _create(client, SCENARIO_A)
    headers = {"Authorization": f"Bearer {alice.json()['token']}"}

    response = client.delete(alice.headers["location"], headers=headers)

    assert response.status_code == 401


def test_delete_by_admin(client: TestClient, admin) -> None:
    alice = _create(client, SCENARIO_A)
    headers = auth_headers(admin.user_id)

    assert client.delete(alice.headers["location"], headers=headers).status_code == 204
    assert client.get(alice.headers["location"], headers=headers).status_code == 404
    assert client.delete("/users/missing", headers=headers).status_code == 404


def test_list_rejects_out_of_range_page_bounds(client: TestClient, admin) -> None:
    headers = auth_headers(admin.user_id)

    for params in ({"end": 2**63}, {"begin": 2**63}):
        response = client.get("/users", params=params, headers=headers)
        assert response.status_code == 422

    largest = client.get("/users", params={"end": 2**53 - 1}, headers=headers)
    assert largest.status_code == 200
    assert [view["username"] for view in largest.json()] == ["root"]


def test_storage_failure_is_internal_error(client: TestClient, admin, monkeypatch) -> None:
    def broken(self, **criteria):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(UserManager, "exists", broken)

    for response in (
        client.get("/users", headers=auth_headers(admin.user_id)),
        _create(client, admin_payload("ops"), auth_headers(admin.user_id)),
        _create(client, SCENARIO_A),
    ):
        assert response.status_code == 500
        assert response.json() == {"detail": "Internal server error."}


def test_unrecognized_integrity_error_is_internal_error(client: TestClient, monkeypatch) -> None:
    def failing_commit(self):
        raise IntegrityError("INSERT INTO users", {}, Exception("CHECK constraint failed: users"))

    monkeypatch.setattr(Session, "commit", failing_commit)

    response = _create(client, SCENARIO_A)

    assert response.status_code == 500
    assert response.json() == {"detail": "Internal server error."}
