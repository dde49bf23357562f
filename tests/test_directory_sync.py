import uuid
from unittest.mock import patch, AsyncMock

import pytest

from conftest import unique
from idara.services.directory_sync import pattern_regex, pattern_prefix
from idara.services.graph import GraphAPIError


def directory_user(name=None, email=None, **fields):
    name = name or unique("User")
    return {
        "id": str(uuid.uuid4()),
        "displayName": name,
        "mail": email or f"{unique('entra')}@example.com",
        "userPrincipalName": None,
        **fields,
    }


def manager_lookup(managers):
    """``get_manager`` stand-in: ``managers`` maps a user id to their manager's Graph record."""
    async def _get_manager(token, user_id):
        return managers.get(user_id)
    return _get_manager


@pytest.fixture
def entra(client, owner_headers):
    response = client.put(
        "/api/settings/integrations/entra",
        json={
            "tenant_id": "tenant-1",
            "client_id": "client-1",
            "client_secret": "s3cret",
            "sync_users_enabled": True,
        },
        headers=owner_headers,
    )
    assert response.status_code == 200, response.text
    assert response.json()["sync_users_enabled"] is True
    yield
    client.put(
        "/api/people/settings",
        json={
            "sync_mode": "linked",
            "auto_delete_on_removal": False,
            "people_group_pattern": "",
            "default_status": "active",
        },
        headers=owner_headers,
    )


def find_person(client, headers, email):
    response = client.get("/api/people/person", params={"search": email}, headers=headers)
    items = response.json()["items"]
    return items[0] if items else None


def test_pattern_regex():
    assert pattern_regex("Staff-*").match("staff-london")
    assert pattern_regex("*-Engineering").match("EU-Engineering")
    assert not pattern_regex("Staff-*").match("Contractors")
    assert not pattern_regex("Staff").match("Staff-London")
    assert pattern_regex("Team (A)*").match("Team (A) North")


def test_pattern_prefix():
    assert pattern_prefix("Staff-*") == "Staff-"
    assert pattern_prefix("*-Engineering") is None
    assert pattern_prefix("Everyone") == "Everyone"


def test_directory_sync_creates_people_and_links_managers(client, owner_headers, entra, make_person):
    lead = directory_user("Grace Hopper", jobTitle="CTO", employeeHireDate="2020-02-03T00:00:00Z")
    report = directory_user("Alan Turing", officeLocation="Manchester")
    existing = make_person()
    known = directory_user(existing["name"], email=existing["email"].upper(), jobTitle="Analyst")
    no_email = directory_user(mail=None)

    users = [lead, report, known, no_email]
    with patch("idara.services.graph.get_app_token", new=AsyncMock(return_value="token")), \
         patch("idara.services.graph.list_users", new=AsyncMock(return_value=users)), \
         patch("idara.services.graph.get_manager", new=manager_lookup({report["id"]: lead})):
        response = client.post("/api/settings/integrations/entra/sync", headers=owner_headers)

    assert response.status_code == 200, response.text
    stats = response.json()["stats"]
    assert stats["users_found"] == 4
    assert stats["created"] == 2
    assert stats["updated"] == 1
    assert stats["skipped"] == 1
    assert stats["managers_linked"] == 1

    grace = find_person(client, owner_headers, lead["mail"])
    assert grace["role"] == "CTO"
    assert grace["source"] == "sync"
    assert grace["start_date"] == "2020-02-03"
    assert grace["status"] == "active"

    alan = find_person(client, owner_headers, report["mail"])
    assert alan["role"] == "Employee"
    assert alan["location"] == "Manchester"
    assert alan["manager_id"] == grace["id"]

    # Matched on email, so no duplicate person
    response = client.get(f"/api/people/person/{existing['id']}", headers=owner_headers)
    assert response.json()["role"] == "Analyst"
    assert response.json()["source"] == "sync"

    response = client.get("/api/settings/integrations/entra/sync", headers=owner_headers)
    assert response.json()["synced_user_count"] == 3
    assert response.json()["last_sync_at"] is not None
    assert response.json()["last_error"] is None

    # Linked mode follows the directory sync
    response = client.get("/api/people/settings", headers=owner_headers)
    assert response.json()["sync_mode"] == "linked"
    assert response.json()["synced_people_count"] == 3


def test_directory_sync_requires_user_sync(client, owner_headers, entra):
    client.put("/api/settings/integrations/entra", json={"sync_users_enabled": False}, headers=owner_headers)
    try:
        response = client.post("/api/settings/integrations/entra/sync", headers=owner_headers)
        assert response.status_code == 400
        assert response.json()["detail"] == "User sync is not enabled"
    finally:
        client.put("/api/settings/integrations/entra", json={"sync_users_enabled": True}, headers=owner_headers)


def test_directory_sync_graph_failure(client, owner_headers, entra):
    user = directory_user()
    failing = AsyncMock(side_effect=GraphAPIError("Insufficient privileges", 403))
    with patch("idara.services.graph.get_app_token", new=AsyncMock(return_value="token")), \
         patch("idara.services.graph.list_users", new=AsyncMock(return_value=[user])), \
         patch("idara.services.graph.get_manager", new=failing):
        response = client.post("/api/settings/integrations/entra/sync", headers=owner_headers)

    assert response.status_code == 502
    assert "Insufficient privileges" in response.json()["detail"]
    # Nothing written before the failure
    assert find_person(client, owner_headers, user["mail"]) is None

    response = client.get("/api/settings/integrations/entra/sync", headers=owner_headers)
    assert response.json()["last_error"] == "Insufficient privileges"

    response = client.get(
        "/api/audit/logs",
        params={"module": "settings.integrations", "action": "sync"},
        headers=owner_headers,
    )
    assert any(not log["success"] for log in response.json()["items"])


def test_people_sync_needs_independent_mode_and_pattern(client, owner_headers, entra):
    response = client.post("/api/people/settings/sync", headers=owner_headers)
    assert response.status_code == 400
    assert "linked mode" in response.json()["detail"]

    client.put("/api/people/settings", json={"sync_mode": "independent"}, headers=owner_headers)
    response = client.post("/api/people/settings/sync", headers=owner_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "No people group pattern is configured"


def test_people_sync_from_matching_groups(client, owner_headers, entra):
    response = client.put(
        "/api/people/settings",
        json={"sync_mode": "independent", "people_group_pattern": "Staff-*", "default_status": "onboarding"},
        headers=owner_headers,
    )
    assert response.status_code == 200
    assert response.json()["people_group_pattern"] == "Staff-*"

    both = directory_user("Katherine Johnson")
    london = directory_user("Dorothy Vaughan")
    contractor = directory_user("Mary Jackson")
    groups = [
        {"id": "g-london", "displayName": "Staff-London"},
        {"id": "g-paris", "displayName": "staff-paris"},
        {"id": "g-ext", "displayName": "Contractors"},
    ]
    members = {"g-london": [both, london], "g-paris": [both], "g-ext": [contractor]}

    async def group_members(token, group_id):
        return members[group_id]

    list_groups = AsyncMock(return_value=groups)
    with patch("idara.services.graph.get_app_token", new=AsyncMock(return_value="token")), \
         patch("idara.services.graph.list_groups", new=list_groups), \
         patch("idara.services.graph.list_group_members", new=group_members), \
         patch("idara.services.graph.get_manager", new=manager_lookup({})):
        response = client.post("/api/people/settings/sync", headers=owner_headers)

    assert response.status_code == 200, response.text
    list_groups.assert_awaited_once_with("token", "Staff-")
    stats = response.json()["stats"]
    assert stats["groups"] == 2
    assert stats["users_found"] == 2
    assert stats["created"] == 2

    person = find_person(client, owner_headers, both["mail"])
    assert person["entra_group_name"] == "Staff-London"
    assert person["status"] == "onboarding"
    assert find_person(client, owner_headers, contractor["mail"]) is None

    response = client.get("/api/people/settings", headers=owner_headers)
    assert response.json()["synced_people_count"] == 2
    assert response.json()["last_sync_at"] is not None


def test_people_sync_deactivates_removed_members(client, owner_headers, entra):
    client.put(
        "/api/people/settings",
        json={"sync_mode": "independent", "people_group_pattern": "Ops", "auto_delete_on_removal": True},
        headers=owner_headers,
    )
    stays = directory_user()
    leaves = directory_user()

    def run(group_members):
        with patch("idara.services.graph.get_app_token", new=AsyncMock(return_value="token")), \
             patch("idara.services.graph.list_groups", new=AsyncMock(return_value=[{"id": "ops", "displayName": "Ops"}])), \
             patch("idara.services.graph.list_group_members", new=AsyncMock(return_value=group_members)), \
             patch("idara.services.graph.get_manager", new=manager_lookup({})):
            response = client.post("/api/people/settings/sync", headers=owner_headers)
        assert response.status_code == 200, response.text
        return response.json()["stats"]

    run([stays, leaves])
    stats = run([stays])
    assert stats["deactivated"] >= 1

    assert find_person(client, owner_headers, leaves["mail"])["status"] == "inactive"
    assert find_person(client, owner_headers, stays["mail"])["status"] == "active"

    # Back in the group: reactivated
    run([stays, leaves])
    assert find_person(client, owner_headers, leaves["mail"])["status"] == "active"


def test_people_sync_graph_failure(client, owner_headers, entra):
    client.put(
        "/api/people/settings",
        json={"sync_mode": "independent", "people_group_pattern": "Staff-*"},
        headers=owner_headers,
    )
    failing = AsyncMock(side_effect=GraphAPIError("Token request failed", 401))
    with patch("idara.services.graph.get_app_token", new=failing):
        response = client.post("/api/people/settings/sync", headers=owner_headers)
    assert response.status_code == 502

    response = client.get("/api/people/settings", headers=owner_headers)
    assert response.json()["last_sync_error"] == "Token request failed"
    assert response.json()["last_sync_error_at"] is not None


def test_entra_user_search_skips_existing_logins(client, owner_headers, entra):
    fresh = directory_user("Hedy Lamarr", givenName="Hedy", surname="Lamarr", jobTitle="Inventor")
    owner = directory_user("Owner", email="admin@example.com")

    list_users = AsyncMock(return_value=[fresh, owner])
    with patch("idara.services.graph.get_app_token", new=AsyncMock(return_value="token")), \
         patch("idara.services.graph.list_users", new=list_users):
        response = client.get(
            "/api/settings/integrations/entra/users",
            params={"search": "hed"},
            headers=owner_headers,
        )

    assert response.status_code == 200, response.text
    list_users.assert_awaited_once_with("token", search="hed", top=50)
    users = response.json()["users"]
    assert [u["email"] for u in users] == [fresh["mail"]]
    assert users[0]["first_name"] == "Hedy"
    assert users[0]["job_title"] == "Inventor"


def test_entra_user_search_requires_user_create(client, make_user):
    _, headers = make_user(["settings.users.view"])
    response = client.get("/api/settings/integrations/entra/users", headers=headers)
    assert response.status_code == 403
