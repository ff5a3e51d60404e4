"""Unit tests for user API endpoints."""

from fastapi.testclient import TestClient

from quiz_engine.db.models import RoleEnum

from factories import COURSE_ID


def _register(client: TestClient, email: str, password: str = "pwd1", role: str = "student"):
    return client.post(
        "/api/users/register",
        json={
            "email": email,
            "password": password,
            "full_name": "Test User",
            "role": role,
        },
    )


def test_register_user(client: TestClient):
    """Test user registration."""
    response = _register(client, "u1@ex.com")
    assert response.status_code == 201
    data = response.json()
    assert data["access_token"]
    assert data["token_type"] == "bearer"
    assert data["user"]["email"] == "u1@ex.com"
    assert data["user"]["role"] == "student"
    assert "hashed_password" not in data["user"]


def test_register_instructor(client: TestClient):
    response = _register(client, "teach@ex.com", role="instructor")
    assert response.json()["user"]["role"] == "instructor"


def test_register_duplicate_email(client: TestClient):
    """Test registering with duplicate email."""
    _register(client, "u2@ex.com")

    # Try to register with same email
    response = _register(client, "u2@ex.com", password="pwd2")
    assert response.status_code == 409
    assert "already registered" in response.json()["detail"].lower()


def test_login_user(client: TestClient):
    """Test user login."""
    _register(client, "u3@ex.com")

    response = client.post("/api/users/login", json={"email": "u3@ex.com", "password": "pwd1"})
    assert response.status_code == 200
    data = response.json()
    assert "access_token" in data
    assert data["user"]["email"] == "u3@ex.com"


def test_login_invalid_credentials(client: TestClient):
    """Test login with invalid credentials."""
    _register(client, "u5@ex.com")
    response = client.post("/api/users/login", json={"email": "u5@ex.com", "password": "nope"})
    assert response.status_code == 401

    response = client.post(
        "/api/users/login",
        json={"email": "nonexistent@example.com", "password": "wrongpassword"},
    )
    assert response.status_code == 401


def test_get_current_user(client: TestClient):
    """Token issued at registration authenticates /me."""
    token = _register(client, "u4@ex.com").json()["access_token"]

    response = client.get("/api/users/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200
    assert response.json()["email"] == "u4@ex.com"


def test_unauthorized_access(client: TestClient):
    """Test accessing protected endpoint without token."""
    response = client.get("/api/users/me")
    assert response.status_code == 401


def test_invalid_token(client: TestClient):
    response = client.get("/api/users/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


# ── Enrollments ───────────────────────────────────────────────────────────────


def test_staff_enroll_student(client: TestClient, make_user):
    _, staff = make_user(RoleEnum.INSTRUCTOR)
    pupil, _ = make_user(RoleEnum.STUDENT)

    response = client.put(
        f"/api/users/{pupil.id}/enrollments",
        json={"course_id": str(COURSE_ID)},
        headers=staff,
    )
    assert response.status_code == 200
    first = response.json()
    assert first["status"] == "active"

    # Upsert: same row, new status
    response = client.put(
        f"/api/users/{pupil.id}/enrollments",
        json={"course_id": str(COURSE_ID), "status": "dropped"},
        headers=staff,
    )
    assert response.json()["id"] == first["id"]
    assert response.json()["status"] == "dropped"


def test_students_cannot_enroll_others(client: TestClient, make_user):
    _, headers = make_user(RoleEnum.STUDENT)
    pupil, _ = make_user(RoleEnum.STUDENT)
    response = client.put(
        f"/api/users/{pupil.id}/enrollments",
        json={"course_id": str(COURSE_ID)},
        headers=headers,
    )
    assert response.status_code == 403


def test_only_students_can_be_enrolled(client: TestClient, make_user):
    _, staff = make_user(RoleEnum.INSTRUCTOR)
    colleague, _ = make_user(RoleEnum.INSTRUCTOR)
    response = client.put(
        f"/api/users/{colleague.id}/enrollments",
        json={"course_id": str(COURSE_ID)},
        headers=staff,
    )
    assert response.status_code == 404
