from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from bloodalert.main import create_app
from bloodalert.models.user import User
from bloodalert.utils.security import create_access_token, hash_password

from conftest import NOW


@pytest.fixture
def client(services):
    return TestClient(create_app(services=services, run_background_tasks=False))


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


def register(client, **overrides):
    body = {"email": "Nurse@CityGeneral.org", "password": "s3cret-pass", "name": "Priya Nair", "role": "hospital"}
    body.update(overrides)
    return client.post("/auth/register", json=body)


def test_register_then_read_profile(client, user_repo):
    response = register(client)

    assert response.status_code == 201
    body = response.json()
    assert body["user"]["email"] == "nurse@citygeneral.org"
    assert "password" not in body["user"]
    stored = next(iter(user_repo.users.values()))
    assert stored.password != "s3cret-pass"

    me = client.get("/auth/me", headers=bearer(body["access_token"]))
    assert me.status_code == 200
    assert me.json()["role"] == "hospital"


def test_duplicate_email_is_rejected(client):
    register(client)

    assert register(client, email="nurse@citygeneral.org").status_code == 400


def test_login(client, user_repo):
    register(client)

    ok = client.post("/auth/login", data={"username": "nurse@citygeneral.org", "password": "s3cret-pass"})
    bad = client.post("/auth/login", data={"username": "nurse@citygeneral.org", "password": "wrong-pass"})

    assert ok.status_code == 200
    assert ok.json()["message"] == "Welcome back"
    assert next(iter(user_repo.users.values())).last_login == NOW
    assert bad.status_code == 401


def test_missing_and_bad_tokens(client):
    assert client.get("/auth/me").json()["detail"] == "Access denied. No token provided."
    assert client.get("/auth/me", headers=bearer("not-a-jwt")).json()["detail"] == "Invalid token."

    expired = create_access_token("someone", "donor", expires_delta=timedelta(minutes=-5))
    assert client.get("/auth/me", headers=bearer(expired)).json()["detail"] == "Token expired."


def test_deactivated_account(client, user_repo):
    user = User(
        email="old@example.com",
        name="Former Donor",
        password=hash_password("s3cret-pass"),
        role="donor",
        is_active=False,
        created_at=NOW,
    )
    user_repo.add(user)

    response = client.get("/auth/me", headers=bearer(create_access_token(user.id, user.role)))

    assert response.status_code == 401
    assert response.json()["detail"] == "Account is deactivated."


def test_role_is_enforced(client):
    token = register(client, email="donor@example.com", role="donor").json()["access_token"]

    response = client.get("/hospitals/inventory", headers=bearer(token))

    assert response.status_code == 403
    assert response.json()["detail"] == "Access denied. Required roles: hospital, blood_bank, admin"
