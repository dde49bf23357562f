from types import SimpleNamespace

from conftest import unique
from idara.core.utils import slugify
from idara.services.team_chart import (
    NODE_HEIGHT,
    V_GAP,
    layout_teams,
    needs_auto_layout,
)


def test_person_crud(client, owner_headers, make_person):
    person = make_person(name="Ada Lovelace", role="Engineer")
    assert person["status"] == "onboarding"
    assert person["slug"].startswith("ada-lovelace")

    by_slug = client.get(f"/api/people/person/{person['slug']}", headers=owner_headers)
    assert by_slug.status_code == 200
    assert by_slug.json()["id"] == person["id"]

    response = client.patch(
        f"/api/people/person/{person['id']}",
        json={"status": "active", "location": "London"},
        headers=owner_headers,
    )
    assert response.status_code == 200
    assert response.json()["status"] == "active"
    assert response.json()["location"] == "London"

    response = client.delete(f"/api/people/person/{person['id']}", headers=owner_headers)
    assert response.status_code == 200
    assert client.get(f"/api/people/person/{person['id']}", headers=owner_headers).status_code == 404


def test_person_duplicate_email(client, owner_headers, make_person):
    person = make_person()
    response = client.post(
        "/api/people/person",
        json={"name": "Copy", "email": person["email"]},
        headers=owner_headers,
    )
    assert response.status_code == 409


def test_person_cannot_manage_themselves(client, owner_headers, make_person):
    person = make_person()
    response = client.patch(
        f"/api/people/person/{person['id']}",
        json={"manager_id": person["id"]},
        headers=owner_headers,
    )
    assert response.status_code == 400


def test_person_manager_link(client, owner_headers, make_person):
    manager = make_person()
    report = make_person(manager_id=manager["id"])
    assert report["manager"]["id"] == manager["id"]

    response = client.post(
        "/api/people/person",
        json={"name": "Orphan", "email": f"{unique('orphan')}@example.com", "manager_id": "missing"},
        headers=owner_headers,
    )
    assert response.status_code == 404


def test_person_list_search_and_status_filter(client, owner_headers, make_person):
    marker = unique("Searchable")
    make_person(name=marker, status="active")
    make_person(name=f"{marker} Two", status="offboarding")

    response = client.get(
        "/api/people/person",
        params={"search": marker, "status": "active,offboarding"},
        headers=owner_headers,
    )
    assert response.status_code == 200
    assert response.json()["total"] == 2

    response = client.get(
        "/api/people/person",
        params={"search": marker, "status": "active"},
        headers=owner_headers,
    )
    assert response.json()["total"] == 1

    response = client.get("/api/people/person", params={"status": "bogus"}, headers=owner_headers)
    assert response.status_code == 400


def test_team_hierarchy_rejects_cycles(client, owner_headers):
    parent = client.post("/api/people/teams", json={"name": unique("Engineering")}, headers=owner_headers)
    assert parent.status_code == 201
    parent = parent.json()
    child = client.post(
        "/api/people/teams",
        json={"name": unique("Platform"), "parent_team_id": parent["id"]},
        headers=owner_headers,
    ).json()
    assert child["parent_team_id"] == parent["id"]

    response = client.patch(
        f"/api/people/teams/{parent['id']}",
        json={"parent_team_id": child["id"]},
        headers=owner_headers,
    )
    assert response.status_code == 400

    response = client.patch(
        f"/api/people/teams/{parent['id']}",
        json={"parent_team_id": parent["id"]},
        headers=owner_headers,
    )
    assert response.status_code == 400

    response = client.get(f"/api/people/teams/{parent['id']}", headers=owner_headers)
    assert response.json()["child_count"] == 1


def test_team_duplicate_name(client, owner_headers):
    name = unique("Sales")
    assert client.post("/api/people/teams", json={"name": name}, headers=owner_headers).status_code == 201
    assert client.post("/api/people/teams", json={"name": name}, headers=owner_headers).status_code == 409


def test_team_members_and_delete(client, owner_headers, make_person):
    parent = client.post("/api/people/teams", json={"name": unique("Ops")}, headers=owner_headers).json()
    team = client.post(
        "/api/people/teams",
        json={"name": unique("SRE"), "parent_team_id": parent["id"]},
        headers=owner_headers,
    ).json()
    grandchild = client.post(
        "/api/people/teams",
        json={"name": unique("On-call"), "parent_team_id": team["id"]},
        headers=owner_headers,
    ).json()
    member = make_person(team_id=team["id"])

    response = client.get(f"/api/people/teams/{team['id']}", headers=owner_headers)
    assert response.json()["member_count"] == 1

    response = client.delete(f"/api/people/teams/{team['id']}", headers=owner_headers)
    assert response.status_code == 200

    # Children move up to the deleted team's parent
    response = client.get(f"/api/people/teams/{grandchild['id']}", headers=owner_headers)
    assert response.json()["parent_team_id"] == parent["id"]
    response = client.get(f"/api/people/person/{member['id']}", headers=owner_headers)
    assert response.json()["team_id"] is None


def test_team_chart(client, owner_headers):
    root = client.post("/api/people/teams", json={"name": unique("Chart Root")}, headers=owner_headers).json()
    leaf = client.post(
        "/api/people/teams",
        json={"name": unique("Chart Leaf"), "parent_team_id": root["id"]},
        headers=owner_headers,
    ).json()

    response = client.get("/api/people/teams/chart", params={"auto": True}, headers=owner_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["auto_layout"] is True
    assert {"source": root["id"], "target": leaf["id"]} in data["edges"]

    nodes = {n["id"]: n for n in data["nodes"]}
    assert nodes[leaf["id"]]["position_y"] == nodes[root["id"]]["position_y"] + NODE_HEIGHT + V_GAP


def test_team_bulk_positions(client, owner_headers):
    team = client.post("/api/people/teams", json={"name": unique("Positioned")}, headers=owner_headers).json()
    response = client.put(
        "/api/people/teams",
        json={"teams": [{"id": team["id"], "position_x": 300, "position_y": 40}]},
        headers=owner_headers,
    )
    assert response.status_code == 200

    response = client.get(f"/api/people/teams/{team['id']}", headers=owner_headers)
    assert response.json()["position_x"] == 300
    assert response.json()["position_y"] == 40

    response = client.put(
        "/api/people/teams",
        json={"teams": [{"id": "missing"}]},
        headers=owner_headers,
    )
    assert response.status_code == 404


def team(id, name, parent=None, sort_order=0, x=0, y=0):
    return SimpleNamespace(
        id=id, name=name, parent_team_id=parent, sort_order=sort_order,
        position_x=x, position_y=y,
    )


def test_layout_centres_parent_over_children():
    positions = layout_teams([
        team("a", "A"),
        team("b", "B", parent="a"),
        team("c", "C", parent="a", sort_order=1),
    ])
    assert positions["a"] == (0, 0)
    assert positions["b"] == (-135, 220)
    assert positions["c"] == (135, 220)


def test_layout_places_roots_side_by_side():
    positions = layout_teams([team("x", "X"), team("y", "Y")])
    assert positions["x"] == (-135, 0)
    assert positions["y"] == (135, 0)


def test_layout_survives_parent_cycle():
    positions = layout_teams([team("a", "A", parent="b"), team("b", "B", parent="a")])
    assert set(positions) == {"a", "b"}


def test_layout_empty():
    assert layout_teams([]) == {}


def test_needs_auto_layout():
    assert needs_auto_layout([team("a", "A"), team("b", "B")])
    assert not needs_auto_layout([team("a", "A", x=10)])


def test_slugify():
    assert slugify("Jane  O'Neil_Smith") == "jane-oneil-smith"
    assert slugify("  --Hello, World--  ") == "hello-world"
    assert slugify("") == ""


def test_duplicate_names_get_numbered_slugs(client, make_person):
    name = unique("Sam Taylor")
    first = make_person(name=name)
    second = make_person(name=name)
    assert second["slug"] == f"{first['slug']}-2"
