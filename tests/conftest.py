import os
import sys
import tempfile
import uuid
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

# Add project root to sys.path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# Set up environment variables before importing app
TEST_DB_DIR = tempfile.mkdtemp(prefix="idara-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(TEST_DB_DIR, 'idara-test.db')}"
os.environ["JWT_SECRET_KEY"] = "idara-test-secret-key-not-for-production"
os.environ["DEFAULT_ADMIN_EMAIL"] = "admin@example.com"
os.environ["TRUSTED_HOSTS"] = "testserver,localhost"

from idara.main import app  # noqa: E402

OWNER_EMAIL = "admin@example.com"
OWNER_PASSWORD = "Owner-Passw0rd!2024"
MEMBER_PASSWORD = "Member-Passw0rd!2024"


def unique(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


def login(client: TestClient, email: str, password: str) -> dict:
    """Log in and return bearer headers. Session cookies are dropped so
    requests without headers stay anonymous."""
    response = client.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    client.cookies.clear()
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture(scope="session")
def client():
    # Startup runs once: tables, standard controls and the owner account
    with patch("idara.services.bootstrap.generate_temp_password", return_value=OWNER_PASSWORD):
        with TestClient(app) as test_client:
            yield test_client


@pytest.fixture(scope="session")
def owner_headers(client):
    return login(client, OWNER_EMAIL, OWNER_PASSWORD)


@pytest.fixture
def make_user(client, owner_headers):
    """
    Factory for a logged-in user holding a custom role.

    Returns ``(user_id, headers)``.
    """
    def _make_user(permissions, person_id=None):
        slug = unique("role")
        role = client.post(
            "/api/rbac/roles",
            json={"name": slug, "slug": slug, "permissions": permissions},
            headers=owner_headers,
        )
        assert role.status_code == 201, role.text

        email = f"{unique('user')}@example.com"
        user = client.post(
            "/api/settings/users",
            json={
                "email": email,
                "name": email.split("@")[0],
                "password": MEMBER_PASSWORD,
                "person_id": person_id,
                "role_ids": [role.json()["id"]],
            },
            headers=owner_headers,
        )
        assert user.status_code == 201, user.text
        return user.json()["id"], login(client, email, MEMBER_PASSWORD)

    return _make_user


@pytest.fixture
def make_person(client, owner_headers):
    def _make_person(**fields):
        name = fields.pop("name", unique("Person"))
        payload = {"name": name, "email": f"{unique('person')}@example.com", **fields}
        response = client.post("/api/people/person", json=payload, headers=owner_headers)
        assert response.status_code == 201, response.text
        return response.json()

    return _make_person
