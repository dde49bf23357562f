import uuid
import pytest
from unittest.mock import patch, AsyncMock

from conftest import unique
from idara.services.graph import GraphAPIError, build_device_filter
from idara.services.intune_sync import device_tag


def create_asset(client, headers, **fields):
    payload = {"name": unique("Laptop"), **fields}
    response = client.post("/api/assets", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def test_asset_tag_generation(client, owner_headers):
    response = client.put("/api/assets/settings", json={"tag_prefix": "LAP"}, headers=owner_headers)
    assert response.status_code == 200
    assert response.json()["tag_prefix"] == "LAP"

    first = create_asset(client, owner_headers)
    second = create_asset(client, owner_headers)
    assert first["asset_tag"].startswith("LAP-")
    assert len(first["asset_tag"]) == len("LAP-00001")
    assert int(second["asset_tag"][4:]) == int(first["asset_tag"][4:]) + 1
    assert first["status"] == "available"
    assert first["source"] == "manual"


def test_asset_manual_tag_conflict(client, owner_headers):
    tag = unique("TAG")
    create_asset(client, owner_headers, asset_tag=tag)
    response = client.post("/api/assets", json={"name": "Dup", "asset_tag": tag}, headers=owner_headers)
    assert response.status_code == 409


def test_asset_cannot_be_created_assigned(client, owner_headers):
    response = client.post("/api/assets", json={"name": "Nope", "status": "assigned"}, headers=owner_headers)
    assert response.status_code == 400


def test_assign_and_return(client, owner_headers, make_person):
    person = make_person()
    asset = create_asset(client, owner_headers)

    response = client.post(
        f"/api/assets/{asset['id']}/assign",
        json={"person_id": person["id"], "notes": "New starter kit"},
        headers=owner_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "assigned"
    assert data["assigned_to"]["id"] == person["id"]

    # Already assigned
    response = client.post(
        f"/api/assets/{asset['id']}/assign",
        json={"person_id": person["id"]},
        headers=owner_headers,
    )
    assert response.status_code == 400

    response = client.get(
        "/api/assets/assignments",
        params={"asset_id": asset["id"], "active_only": True},
        headers=owner_headers,
    )
    assert response.json()["total"] == 1

    response = client.post(f"/api/assets/{asset['id']}/return", json={"notes": "Left company"}, headers=owner_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "available"
    assert response.json()["assigned_to_id"] is None

    response = client.post(f"/api/assets/{asset['id']}/return", headers=owner_headers)
    assert response.status_code == 400

    response = client.get("/api/assets/lifecycle", params={"asset_id": asset["id"]}, headers=owner_headers)
    event_types = {e["event_type"] for e in response.json()["items"]}
    assert {"acquired", "assigned", "returned"} <= event_types


def test_patch_to_assigned_rejected(client, owner_headers):
    asset = create_asset(client, owner_headers)
    response = client.patch(f"/api/assets/{asset['id']}", json={"status": "assigned"}, headers=owner_headers)
    assert response.status_code == 400


def test_retire_closes_assignment(client, owner_headers, make_person):
    person = make_person()
    asset = create_asset(client, owner_headers)
    client.post(f"/api/assets/{asset['id']}/assign", json={"person_id": person["id"]}, headers=owner_headers)

    response = client.patch(f"/api/assets/{asset['id']}", json={"status": "retired"}, headers=owner_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "retired"
    assert response.json()["assigned_to_id"] is None

    response = client.get(
        "/api/assets/assignments",
        params={"asset_id": asset["id"], "active_only": True},
        headers=owner_headers,
    )
    assert response.json()["total"] == 0

    response = client.post(
        f"/api/assets/{asset['id']}/assign",
        json={"person_id": person["id"]},
        headers=owner_headers,
    )
    assert response.status_code == 400


def test_soft_delete(client, owner_headers):
    asset = create_asset(client, owner_headers)
    assert client.delete(f"/api/assets/{asset['id']}", headers=owner_headers).status_code == 200
    assert client.get(f"/api/assets/{asset['id']}", headers=owner_headers).status_code == 404


def test_deleting_person_frees_assets(client, owner_headers, make_person):
    person = make_person()
    asset = create_asset(client, owner_headers)
    client.post(f"/api/assets/{asset['id']}/assign", json={"person_id": person["id"]}, headers=owner_headers)

    client.delete(f"/api/people/person/{person['id']}", headers=owner_headers)
    response = client.get(f"/api/assets/{asset['id']}", headers=owner_headers)
    assert response.json()["status"] == "available"
    assert response.json()["assigned_to_id"] is None


def test_maintenance_moves_asset_in_and_out(client, owner_headers, make_person):
    person = make_person()
    asset = create_asset(client, owner_headers)
    client.post(f"/api/assets/{asset['id']}/assign", json={"person_id": person["id"]}, headers=owner_headers)

    response = client.post(
        "/api/assets/maintenance",
        json={"asset_id": asset["id"], "type": "repair", "status": "in_progress", "description": "Screen"},
        headers=owner_headers,
    )
    assert response.status_code == 201
    record = response.json()
    assert client.get(f"/api/assets/{asset['id']}", headers=owner_headers).json()["status"] == "maintenance"

    response = client.patch(
        f"/api/assets/maintenance/{record['id']}",
        json={"status": "completed"},
        headers=owner_headers,
    )
    assert response.status_code == 200
    assert response.json()["completed_date"] is not None
    # Still held by the person, so back to assigned
    assert client.get(f"/api/assets/{asset['id']}", headers=owner_headers).json()["status"] == "assigned"


def test_maintenance_cancel_restores_available(client, owner_headers):
    asset = create_asset(client, owner_headers)
    record = client.post(
        "/api/assets/maintenance",
        json={"asset_id": asset["id"], "status": "in_progress"},
        headers=owner_headers,
    ).json()
    client.patch(f"/api/assets/maintenance/{record['id']}", json={"status": "cancelled"}, headers=owner_headers)
    assert client.get(f"/api/assets/{asset['id']}", headers=owner_headers).json()["status"] == "available"


def test_category_in_use_cannot_be_deleted(client, owner_headers):
    category = client.post("/api/assets/categories", json={"name": unique("Monitors")}, headers=owner_headers)
    assert category.status_code == 201
    category = category.json()
    create_asset(client, owner_headers, category_id=category["id"])

    response = client.delete(f"/api/assets/categories/{category['id']}", headers=owner_headers)
    assert response.status_code == 400

    response = client.get(f"/api/assets/categories/{category['id']}", headers=owner_headers)
    assert response.json()["asset_count"] == 1


def test_build_device_filter():
    assert build_device_filter() is None
    assert build_device_filter(["Windows", "macOS"], ["compliant"]) == (
        "(operatingSystem eq 'Windows' or operatingSystem eq 'macOS') and (complianceState eq 'compliant')"
    )
    assert build_device_filter(["O'Brien OS"]) == "(operatingSystem eq 'O''Brien OS')"


def test_sync_requires_settings_edit(client, make_user):
    _, headers = make_user(["assets.settings.view"])
    assert client.post("/api/assets/sync", headers=headers).status_code == 403


def test_intune_sync(client, owner_headers, make_person):
    response = client.put(
        "/api/settings/integrations/entra",
        json={
            "tenant_id": "tenant-1",
            "client_id": "client-1",
            "client_secret": "s3cret",
            "sync_devices_enabled": True,
        },
        headers=owner_headers,
    )
    assert response.status_code == 200
    assert response.json()["status"] == "connected"
    assert response.json()["has_client_secret"] is True
    assert "client_secret" not in response.json()

    owner = make_person(status="active")
    device_id = str(uuid.uuid4())
    devices = [{
        "id": device_id,
        "deviceName": "DESKTOP-01",
        "serialNumber": "SN-1",
        "manufacturer": "Dell",
        "model": "XPS 13",
        "operatingSystem": "Windows",
        "complianceState": "compliant",
        "userPrincipalName": owner["email"],
        "enrolledDateTime": "2024-01-15T10:00:00Z",
        "lastSyncDateTime": "2024-06-01T08:30:00.1234567Z",
    }]

    with patch("idara.services.graph.get_app_token", new=AsyncMock(return_value="token")) as token, \
         patch("idara.services.graph.list_managed_devices", new=AsyncMock(return_value=devices)):
        response = client.post("/api/assets/sync", headers=owner_headers)
        assert response.status_code == 200, response.text
        stats = response.json()["stats"]
        assert stats["created"] == 1
        token.assert_awaited_once_with("tenant-1", "client-1", "s3cret")

        # Unchanged device list changes nothing
        response = client.post("/api/assets/sync", headers=owner_headers)
        stats = response.json()["stats"]
        assert stats["created"] == 0
        assert stats["updated"] == 0
        assert stats["unchanged"] == 1

    response = client.get("/api/assets", params={"search": device_tag(device_id)}, headers=owner_headers)
    items = response.json()["items"]
    assert len(items) == 1
    assert items[0]["source"] == "intune_sync"
    assert items[0]["assigned_to_id"] == owner["id"]
    assert items[0]["intune_compliance_state"] == "compliant"

    failing = AsyncMock(side_effect=GraphAPIError("Token request failed", 401))
    with patch("idara.services.graph.get_app_token", new=failing):
        response = client.post("/api/assets/sync", headers=owner_headers)
        assert response.status_code == 502

    response = client.get("/api/assets/settings", headers=owner_headers)
    assert response.json()["last_sync_error"] == "Token request failed"


@pytest.mark.parametrize("field", ["name", "asset_tag", "status"])
def test_patch_null_required_field_rejected(client, owner_headers, field):
    asset = create_asset(client, owner_headers)
    response = client.patch(f"/api/assets/{asset['id']}", json={field: None}, headers=owner_headers)
    assert response.status_code == 400
    assert field in response.json()["detail"]

    response = client.get(f"/api/assets/{asset['id']}", headers=owner_headers)
    assert response.json()[field] == asset[field]


def test_status_available_closes_assignment(client, owner_headers, make_person):
    person = make_person()
    asset = create_asset(client, owner_headers)
    client.post(f"/api/assets/{asset['id']}/assign", json={"person_id": person["id"]}, headers=owner_headers)

    response = client.patch(f"/api/assets/{asset['id']}", json={"status": "available"}, headers=owner_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "available"
    assert response.json()["assigned_to_id"] is None

    response = client.get(
        "/api/assets/assignments",
        params={"asset_id": asset["id"], "active_only": True},
        headers=owner_headers,
    )
    assert response.json()["total"] == 0

    response = client.get("/api/assets/lifecycle", params={"asset_id": asset["id"]}, headers=owner_headers)
    assert "returned" in {e["event_type"] for e in response.json()["items"]}

    # Free again, so it can go to someone else
    response = client.post(f"/api/assets/{asset['id']}/assign", json={"person_id": person["id"]}, headers=owner_headers)
    assert response.status_code == 200


def test_status_change_records_event(client, owner_headers):
    asset = create_asset(client, owner_headers)
    response = client.patch(f"/api/assets/{asset['id']}", json={"status": "maintenance"}, headers=owner_headers)
    assert response.status_code == 200

    response = client.get("/api/assets/lifecycle", params={"asset_id": asset["id"]}, headers=owner_headers)
    events = [e for e in response.json()["items"] if e["event_type"] == "maintenance"]
    assert len(events) == 1
    assert events[0]["details"]["previousStatus"] == "available"
    assert events[0]["details"]["newStatus"] == "maintenance"


def connect_entra(client, headers):
    response = client.put(
        "/api/settings/integrations/entra",
        json={
            "tenant_id": "tenant-1",
            "client_id": "client-1",
            "client_secret": "s3cret",
            "sync_devices_enabled": True,
        },
        headers=headers,
    )
    assert response.status_code == 200, response.text


def managed_device(device_id, owner_email=None):
    return {
        "id": device_id,
        "deviceName": f"LAPTOP-{device_id[:4]}",
        "operatingSystem": "Windows",
        "userPrincipalName": owner_email,
        "enrolledDateTime": "2024-03-01T09:00:00Z",
    }


def run_sync(client, headers, devices):
    with patch("idara.services.graph.get_app_token", new=AsyncMock(return_value="token")), \
         patch("idara.services.graph.list_managed_devices", new=AsyncMock(return_value=devices)):
        response = client.post("/api/assets/sync", headers=headers)
    assert response.status_code == 200, response.text
    return response.json()["stats"]


def find_device(client, headers, device_id):
    response = client.get("/api/assets", params={"search": device_tag(device_id)}, headers=headers)
    items = response.json()["items"]
    return items[0] if items else None


def test_synced_device_without_user_can_be_assigned(client, owner_headers, make_person):
    connect_entra(client, owner_headers)
    device_id = str(uuid.uuid4())
    run_sync(client, owner_headers, [managed_device(device_id)])

    asset = find_device(client, owner_headers, device_id)
    assert asset["assigned_to_id"] is None

    person = make_person()
    response = client.post(f"/api/assets/{asset['id']}/assign", json={"person_id": person["id"]}, headers=owner_headers)
    assert response.status_code == 200, response.text
    assert response.json()["assigned_to"]["id"] == person["id"]

    response = client.post(f"/api/assets/{asset['id']}/return", headers=owner_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "available"


def test_sync_moves_device_to_new_owner(client, owner_headers, make_person):
    connect_entra(client, owner_headers)
    first = make_person()
    second = make_person()
    device_id = str(uuid.uuid4())

    run_sync(client, owner_headers, [managed_device(device_id, first["email"])])
    stats = run_sync(client, owner_headers, [managed_device(device_id, second["email"])])
    assert stats["updated"] == 1

    asset = find_device(client, owner_headers, device_id)
    assert asset["assigned_to_id"] == second["id"]

    response = client.get("/api/assets/assignments", params={"asset_id": asset["id"]}, headers=owner_headers)
    history = {a["person_id"]: a for a in response.json()["items"]}
    assert history[first["id"]]["returned_at"] is not None
    assert history[second["id"]]["returned_at"] is None


def test_sync_soft_deletes_missing_devices(client, owner_headers, make_person):
    connect_entra(client, owner_headers)
    owner = make_person()
    device_id = str(uuid.uuid4())
    run_sync(client, owner_headers, [managed_device(device_id, owner["email"])])
    asset = find_device(client, owner_headers, device_id)

    settings = {"sync_settings": {"sync_behavior": {"auto_delete_on_removal": True}}}
    response = client.put("/api/assets/settings", json=settings, headers=owner_headers)
    assert response.status_code == 200
    try:
        stats = run_sync(client, owner_headers, [])
        assert stats["deleted"] >= 1
    finally:
        settings = {"sync_settings": {"sync_behavior": {"auto_delete_on_removal": False}}}
        client.put("/api/assets/settings", json=settings, headers=owner_headers)

    assert client.get(f"/api/assets/{asset['id']}", headers=owner_headers).status_code == 404
    response = client.get(
        "/api/assets/assignments",
        params={"asset_id": asset["id"], "active_only": True},
        headers=owner_headers,
    )
    assert response.json()["total"] == 0

    # Reported again: restored
    run_sync(client, owner_headers, [managed_device(device_id, owner["email"])])
    assert client.get(f"/api/assets/{asset['id']}", headers=owner_headers).status_code == 200
