from unittest.mock import patch, AsyncMock

from conftest import OWNER_EMAIL, OWNER_PASSWORD, MEMBER_PASSWORD, unique
from idara.auth.azure_ad import encode_state
from idara.services.graph import GraphAPIError


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["name"] == "Idara OS"
    assert data["api"] == "/api"


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["database"] == "connected"


def test_security_headers(client):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Request-ID"] == "req-123"


def test_login_and_me(client, owner_headers):
    response = client.get("/api/auth/me", headers=owner_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["user"]["email"] == OWNER_EMAIL
    assert "owner" in data["user"]["roles"]
    assert data["organization"]["name"] == "Idara OS"
    assert data["permissions"]["security.soa"]["edit"] is True


def test_login_wrong_password(client):
    response = client.post("/api/auth/login", json={"email": OWNER_EMAIL, "password": "Wrong-Passw0rd!!"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid email or password"


def test_login_unknown_user(client):
    response = client.post(
        "/api/auth/login",
        json={"email": "nobody@example.com", "password": OWNER_PASSWORD},
    )
    assert response.status_code == 401


def test_requires_authentication(client):
    assert client.get("/api/auth/me").status_code == 401
    assert client.get("/api/people/person").status_code == 401


def test_invalid_token(client):
    response = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


def test_refresh_token(client):
    response = client.post("/api/auth/login", json={"email": OWNER_EMAIL, "password": OWNER_PASSWORD})
    refresh = response.json()["refresh_token"]
    client.cookies.clear()

    response = client.post("/api/auth/refresh", json={"refresh_token": refresh})
    assert response.status_code == 200
    client.cookies.clear()
    access = response.json()["access_token"]

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {access}"})
    assert me.status_code == 200


def test_access_token_rejected_as_refresh(client, owner_headers):
    access = owner_headers["Authorization"].split(" ", 1)[1]
    response = client.post("/api/auth/refresh", json={"refresh_token": access})
    assert response.status_code == 401


def test_set_password_policy(client, make_user):
    _, headers = make_user(["docs.documents.view"])
    response = client.post(
        "/api/auth/set-password",
        json={"current_password": "Member-Passw0rd!2024", "new_password": "short"},
        headers=headers,
    )
    assert response.status_code in (400, 422)


def test_user_permissions_for_narrow_role(client, make_user):
    _, headers = make_user(["people.directory.view", "assets.inventory.view"])
    response = client.get("/api/rbac/user-permissions", headers=headers)
    assert response.status_code == 200
    assert response.json() == {
        "assets.inventory": {"view": True},
        "people.directory": {"view": True},
    }


def test_narrow_role_is_forbidden_elsewhere(client, make_user):
    _, headers = make_user(["people.directory.view"])
    assert client.get("/api/people/person", headers=headers).status_code == 200
    assert client.post(
        "/api/people/person",
        json={"name": "Nope", "email": f"{unique('nope')}@example.com"},
        headers=headers,
    ).status_code == 403
    assert client.get("/api/security/risks", headers=headers).status_code == 403
    assert client.get("/api/settings/users", headers=headers).status_code == 403


def test_unknown_permission_rejected(client, owner_headers):
    slug = unique("bad")
    response = client.post(
        "/api/rbac/roles",
        json={"name": slug, "slug": slug, "permissions": ["nothing.here.view"]},
        headers=owner_headers,
    )
    assert response.status_code == 400


def test_system_roles_listed(client, owner_headers):
    response = client.get("/api/rbac/roles", headers=owner_headers)
    assert response.status_code == 200
    slugs = {r["slug"] for r in response.json()}
    assert {"owner", "admin", "manager", "member", "viewer"} <= slugs


def test_account_locks_after_five_failures(client, owner_headers, make_user):
    user_id, _ = make_user(["people.directory.view"])
    email = client.get(f"/api/settings/users/{user_id}", headers=owner_headers).json()["email"]

    for _ in range(5):
        response = client.post("/api/auth/login", json={"email": email, "password": "Wrong-Passw0rd!!"})
        assert response.status_code == 401

    # Right password, still locked
    response = client.post("/api/auth/login", json={"email": email, "password": MEMBER_PASSWORD})
    assert response.status_code == 401
    assert response.json()["detail"] == "Account is locked. Try again later."

    response = client.get(
        "/api/audit/logs",
        params={"action": "login_failure", "user_id": user_id},
        headers=owner_headers,
    )
    assert response.json()["total"] == 5


def callback(client, **params):
    return client.get("/api/auth/callback/azure-ad", params=params, follow_redirects=False)


def test_sso_callback_error_redirects(client):
    response = callback(client, error="access_denied", error_description="User cancelled")
    assert response.status_code == 302
    assert response.headers["location"].endswith("/login?error=User%20cancelled")

    response = callback(client)
    assert response.headers["location"].endswith("/login?error=No%20authorization%20code%20received")

    response = callback(client, code="abc", state="not-base64!")
    assert "/login?error=" in response.headers["location"]


def test_sso_callback(client, owner_headers):
    response = client.put(
        "/api/settings/integrations/entra",
        json={"tenant_id": "tenant-1", "client_id": "client-1", "client_secret": "s3cret", "sso_enabled": True},
        headers=owner_headers,
    )
    assert response.status_code == 200
    state = encode_state("/people", None)
    tokens = AsyncMock(return_value={"access_token": "graph-token"})
    try:
        failing = AsyncMock(side_effect=GraphAPIError("invalid_grant", 400))
        with patch("idara.services.graph.exchange_auth_code", new=failing):
            response = callback(client, code="abc", state=state)
        assert response.headers["location"].endswith("/login?error=Authentication%20failed")

        stranger = AsyncMock(return_value={"id": "entra-1", "mail": "Stranger@Example.com"})
        with patch("idara.services.graph.exchange_auth_code", new=tokens), \
             patch("idara.services.graph.get_me", new=stranger):
            response = callback(client, code="abc", state=state)
        assert "/registration-incomplete?email=stranger%40example.com" in response.headers["location"]

        owner = AsyncMock(return_value={"id": "entra-owner", "userPrincipalName": OWNER_EMAIL})
        with patch("idara.services.graph.exchange_auth_code", new=tokens), \
             patch("idara.services.graph.get_me", new=owner):
            response = callback(client, code="abc", state=state)
        assert response.status_code == 302
        assert response.headers["location"].endswith("/people")
        assert "access_token" in response.cookies
    finally:
        client.cookies.clear()
        client.put("/api/settings/integrations/entra", json={"sso_enabled": False}, headers=owner_headers)
