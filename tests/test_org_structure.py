import pytest

from conftest import unique


def create_team(client, headers):
    response = client.post("/api/people/teams", json={"name": unique("Team")}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def create_level(client, headers, **fields):
    payload = {"name": unique("Level"), "code": unique("L")[:10], **fields}
    response = client.post("/api/people/levels", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def create_role(client, headers, team_id, **fields):
    payload = {"name": unique("Role"), "team_id": team_id, **fields}
    response = client.post("/api/people/roles", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def test_level_sort_order_defaults_to_end(client, owner_headers):
    first = create_level(client, owner_headers)
    second = create_level(client, owner_headers)
    assert second["sort_order"] == first["sort_order"] + 1

    levels = client.get("/api/people/levels", headers=owner_headers).json()
    orders = [level["sort_order"] for level in levels]
    assert orders == sorted(orders)


def test_level_duplicate_code(client, owner_headers):
    level = create_level(client, owner_headers)
    response = client.post(
        "/api/people/levels",
        json={"name": "Another", "code": level["code"]},
        headers=owner_headers,
    )
    assert response.status_code == 409


def test_level_reorder_moves_roles(client, owner_headers):
    team = create_team(client, owner_headers)
    level = create_level(client, owner_headers, sort_order=3)
    role = create_role(client, owner_headers, team["id"], level_id=level["id"])
    assert role["level"] == 3
    assert role["job_level"]["code"] == level["code"]

    response = client.put(
        "/api/people/levels",
        json={"updates": [{"id": level["id"], "sort_order": 7}, {"id": "not-a-level", "sort_order": 1}]},
        headers=owner_headers,
    )
    assert response.status_code == 200
    assert response.json()["message"] == "Updated 1 job levels"

    response = client.get(f"/api/people/roles/{role['id']}", headers=owner_headers)
    assert response.json()["level"] == 7


def test_level_in_use_cannot_be_deleted(client, owner_headers):
    team = create_team(client, owner_headers)
    level = create_level(client, owner_headers)
    role = create_role(client, owner_headers, team["id"], level_id=level["id"])

    response = client.get(f"/api/people/levels/{level['id']}", headers=owner_headers)
    assert response.json()["role_count"] == 1

    url = f"/api/people/levels/{level['id']}"
    assert client.delete(url, headers=owner_headers).status_code == 400

    client.delete(f"/api/people/roles/{role['id']}", headers=owner_headers)
    assert client.delete(url, headers=owner_headers).status_code == 200
    assert client.get(url, headers=owner_headers).status_code == 404


def test_role_requires_known_team(client, owner_headers):
    response = client.post(
        "/api/people/roles",
        json={"name": unique("Role"), "team_id": "missing"},
        headers=owner_headers,
    )
    assert response.status_code == 400


def test_role_duplicate_name(client, owner_headers):
    team = create_team(client, owner_headers)
    role = create_role(client, owner_headers, team["id"])
    response = client.post(
        "/api/people/roles",
        json={"name": role["name"], "team_id": team["id"]},
        headers=owner_headers,
    )
    assert response.status_code == 409


def test_role_hierarchy(client, owner_headers):
    team = create_team(client, owner_headers)
    head = create_role(client, owner_headers, team["id"])
    lead = create_role(client, owner_headers, team["id"], parent_role_id=head["id"])
    engineer = create_role(client, owner_headers, team["id"], parent_role_id=lead["id"])

    assert head["level"] == 0
    assert lead["level"] == 1
    assert engineer["level"] == 2
    assert engineer["parent"]["id"] == lead["id"]

    response = client.get("/api/people/roles", params={"parent_id": head["id"]}, headers=owner_headers)
    assert [r["id"] for r in response.json()] == [lead["id"]]

    response = client.get(
        "/api/people/roles",
        params={"team_id": team["id"], "top_level_only": True},
        headers=owner_headers,
    )
    assert [r["id"] for r in response.json()] == [head["id"]]

    response = client.get(f"/api/people/roles/{head['id']}", headers=owner_headers)
    assert response.json()["child_count"] == 1

    # Own parent, then a cycle through a descendant
    for parent_id in (head["id"], engineer["id"]):
        response = client.patch(
            f"/api/people/roles/{head['id']}",
            json={"parent_role_id": parent_id},
            headers=owner_headers,
        )
        assert response.status_code == 400

    # Roles with reports cannot be deleted
    assert client.delete(f"/api/people/roles/{lead['id']}", headers=owner_headers).status_code == 400
    assert client.delete(f"/api/people/roles/{engineer['id']}", headers=owner_headers).status_code == 200
    assert client.delete(f"/api/people/roles/{lead['id']}", headers=owner_headers).status_code == 200


def test_role_bulk_update(client, owner_headers):
    team = create_team(client, owner_headers)
    first = create_role(client, owner_headers, team["id"])
    second = create_role(client, owner_headers, team["id"])

    response = client.put(
        "/api/people/roles",
        json={"updates": [
            {"id": first["id"], "position_x": 120, "position_y": 40},
            {"id": second["id"], "parent_role_id": first["id"], "level": 1},
        ]},
        headers=owner_headers,
    )
    assert response.status_code == 200, response.text

    response = client.get(f"/api/people/roles/{second['id']}", headers=owner_headers)
    assert response.json()["parent_role_id"] == first["id"]
    response = client.get(f"/api/people/roles/{first['id']}", headers=owner_headers)
    assert response.json()["position_x"] == 120

    response = client.put(
        "/api/people/roles",
        json={"updates": [{"id": "missing", "sort_order": 1}]},
        headers=owner_headers,
    )
    assert response.status_code == 400

    response = client.put(
        "/api/people/roles",
        json={"updates": [{"id": first["id"], "parent_role_id": second["id"]}]},
        headers=owner_headers,
    )
    assert response.status_code == 400


def test_person_holds_job_role(client, owner_headers, make_person):
    team = create_team(client, owner_headers)
    role = create_role(client, owner_headers, team["id"])
    person = make_person(job_role_id=role["id"])
    assert person["job_role_id"] == role["id"]

    response = client.get(f"/api/people/roles/{role['id']}", headers=owner_headers)
    assert response.json()["holder_count"] == 1

    response = client.post(
        "/api/people/person",
        json={"name": unique("Person"), "email": f"{unique('p')}@example.com", "job_role_id": "missing"},
        headers=owner_headers,
    )
    assert response.status_code == 404

    # Deleting the role leaves the holder without one
    client.delete(f"/api/people/roles/{role['id']}", headers=owner_headers)
    response = client.get(f"/api/people/person/{person['id']}", headers=owner_headers)
    assert response.json()["job_role_id"] is None


def test_team_with_roles_cannot_be_deleted(client, owner_headers):
    team = create_team(client, owner_headers)
    role = create_role(client, owner_headers, team["id"])

    url = f"/api/people/teams/{team['id']}"
    assert client.delete(url, headers=owner_headers).status_code == 400

    client.delete(f"/api/people/roles/{role['id']}", headers=owner_headers)
    assert client.delete(url, headers=owner_headers).status_code == 200


def test_roles_need_permission(client, make_user):
    _, headers = make_user(["people.directory.view"])
    assert client.get("/api/people/roles", headers=headers).status_code == 403
    assert client.get("/api/people/levels", headers=headers).status_code == 403


@pytest.mark.parametrize("payload", [{"name": None}, {"email": None}, {"status": None}])
def test_person_patch_null_rejected(client, owner_headers, make_person, payload):
    person = make_person()
    response = client.patch(f"/api/people/person/{person['id']}", json=payload, headers=owner_headers)
    assert response.status_code == 400
    response = client.get(f"/api/people/person/{person['id']}", headers=owner_headers)
    assert response.json()["name"] == person["name"]
