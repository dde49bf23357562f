import pytest

from conftest import unique


STEPS = [
    {"key": "kickoff", "name": "Kick-off call", "assignee_type": "dynamic_creator"},
    {"key": "equipment", "name": "Equipment", "step_type": "group", "assignee_type": "dynamic_creator"},
    {"key": "laptop", "parent_key": "equipment", "name": "Order laptop", "assignee_type": "dynamic_creator"},
]
EDGES = [{"source_key": "kickoff", "target_key": "equipment"}]


def create_template(client, headers, **fields):
    payload = {"name": unique("Onboarding"), "status": "active", "steps": STEPS, "edges": EDGES, **fields}
    response = client.post("/api/workflows/templates", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def start(client, headers, template_id, entity_id="person-1"):
    return client.post(
        "/api/workflows/instances",
        json={"template_id": template_id, "entity_type": "person", "entity_id": entity_id},
        headers=headers,
    )


@pytest.mark.parametrize("steps, edges", [
    ([{"key": "a", "name": "A"}, {"key": "a", "name": "Again"}], []),
    ([{"key": "a", "name": "A", "parent_key": "ghost"}], []),
    ([{"key": "a", "name": "A", "parent_key": "b"}, {"key": "b", "name": "B", "parent_key": "a"}], []),
    ([{"key": "a", "name": "A"}], [{"source_key": "a", "target_key": "ghost"}]),
])
def test_invalid_template_graph(client, owner_headers, steps, edges):
    response = client.post(
        "/api/workflows/templates",
        json={"name": unique("Broken"), "steps": steps, "edges": edges},
        headers=owner_headers,
    )
    assert response.status_code == 400


def test_template_graph_saved(client, owner_headers):
    template = create_template(client, owner_headers)
    assert template["step_count"] == 3
    steps = {s["name"]: s for s in template["steps"]}
    assert steps["Order laptop"]["parent_step_id"] == steps["Equipment"]["id"]
    assert steps["Kick-off call"]["order_index"] == 0
    assert [(e["source_step_id"], e["target_step_id"]) for e in template["edges"]] == [
        (steps["Kick-off call"]["id"], steps["Equipment"]["id"]),
    ]


def test_template_replace_keeps_matching_steps(client, owner_headers):
    template = create_template(client, owner_headers)
    kickoff = next(s for s in template["steps"] if s["name"] == "Kick-off call")

    response = client.put(
        f"/api/workflows/templates/{template['id']}",
        json={
            "name": template["name"],
            "status": "active",
            "steps": [
                {"key": kickoff["id"], "name": "Welcome call"},
                {"key": "new", "name": "Badge"},
            ],
            "edges": [{"source_key": kickoff["id"], "target_key": "new"}],
        },
        headers=owner_headers,
    )
    assert response.status_code == 200, response.text
    data = response.json()
    assert data["step_count"] == 2
    names = {s["id"]: s["name"] for s in data["steps"]}
    assert names[kickoff["id"]] == "Welcome call"
    assert sorted(names.values()) == ["Badge", "Welcome call"]
    assert len(data["edges"]) == 1


def test_draft_template_cannot_start(client, owner_headers):
    template = create_template(client, owner_headers, status="draft")
    assert start(client, owner_headers, template["id"]).status_code == 404

    client.patch(f"/api/workflows/templates/{template['id']}", json={"status": "active"}, headers=owner_headers)
    assert start(client, owner_headers, template["id"]).status_code == 201


def test_instance_progress_and_completion(client, owner_headers):
    template = create_template(client, owner_headers)
    response = start(client, owner_headers, template["id"])
    assert response.status_code == 201, response.text
    instance = response.json()
    assert instance["status"] == "in_progress"
    # Nested steps do not count
    assert instance["total_steps"] == 2
    assert instance["completed_steps"] == 0
    assert instance["progress"] == 0

    steps = {s["name"]: s for s in instance["steps"]}
    assert steps["Order laptop"]["parent_step_id"] == steps["Equipment"]["id"]

    response = client.patch(
        f"/api/workflows/steps/{steps['Kick-off call']['id']}",
        json={"status": "completed"},
        headers=owner_headers,
    )
    assert response.status_code == 200
    assert response.json()["completed_at"] is not None
    assert response.json()["completed_by_id"] is not None

    instance = client.get(f"/api/workflows/instances/{instance['id']}", headers=owner_headers).json()
    assert instance["completed_steps"] == 1
    assert instance["progress"] == 50

    client.patch(
        f"/api/workflows/steps/{steps['Equipment']['id']}",
        json={"status": "completed"},
        headers=owner_headers,
    )
    instance = client.get(f"/api/workflows/instances/{instance['id']}", headers=owner_headers).json()
    assert instance["status"] == "completed"
    assert instance["progress"] == 100
    assert instance["completed_at"] is not None

    response = client.patch(
        f"/api/workflows/steps/{steps['Order laptop']['id']}",
        json={"status": "completed"},
        headers=owner_headers,
    )
    assert response.status_code == 400


def test_step_back_to_pending_keeps_started_at(client, owner_headers):
    template = create_template(client, owner_headers, steps=[{"key": "only", "name": "Only"}], edges=[])
    instance = start(client, owner_headers, template["id"]).json()
    step_id = instance["steps"][0]["id"]

    client.patch(f"/api/workflows/steps/{step_id}", json={"status": "in_progress"}, headers=owner_headers)
    response = client.patch(f"/api/workflows/steps/{step_id}", json={"status": "pending"}, headers=owner_headers)
    assert response.status_code == 200
    assert response.json()["completed_at"] is None
    assert response.json()["started_at"] is not None


def test_instance_views(client, owner_headers):
    template = create_template(client, owner_headers)
    instance = start(client, owner_headers, template["id"]).json()
    url = f"/api/workflows/instances/{instance['id']}"

    kanban = client.get(url, params={"view": "kanban"}, headers=owner_headers).json()["kanban"]
    assert set(kanban) == {"pending", "in_progress", "completed", "skipped", "blocked"}
    assert len(kanban["pending"]) == 3

    graph = client.get(url, params={"view": "graph"}, headers=owner_headers).json()["graph"]
    assert len(graph["nodes"]) == 3
    steps = {s["name"]: s["id"] for s in instance["steps"]}
    assert [(e["source"], e["target"]) for e in graph["edges"]] == [
        (steps["Kick-off call"], steps["Equipment"]),
    ]

    assert client.get(url, params={"view": "table"}, headers=owner_headers).status_code == 422


def test_graph_view_chains_roots_without_edges(client, owner_headers):
    template = create_template(
        client, owner_headers,
        steps=[{"key": "a", "name": "First"}, {"key": "b", "name": "Second"}],
        edges=[],
    )
    instance = start(client, owner_headers, template["id"]).json()
    steps = {s["name"]: s["id"] for s in instance["steps"]}
    graph = client.get(
        f"/api/workflows/instances/{instance['id']}", params={"view": "graph"}, headers=owner_headers,
    ).json()["graph"]
    assert [(e["source"], e["target"]) for e in graph["edges"]] == [(steps["First"], steps["Second"])]


def test_tasks_for_creator(client, owner_headers, make_user):
    user_id, headers = make_user([
        "workflows.instances.create",
        "workflows.tasks.view",
        "workflows.tasks.edit",
    ])
    template = create_template(client, owner_headers)
    instance = start(client, headers, template["id"]).json()
    assert all(s["assignee_id"] == user_id for s in instance["steps"])

    tasks = client.get("/api/workflows/tasks", headers=headers).json()
    assert {t["instance_name"] for t in tasks} == {template["name"]}
    assert len(tasks) == 3

    pending = client.get("/api/workflows/tasks", params={"status": "completed"}, headers=headers).json()
    assert pending == []
    assert client.get("/api/workflows/tasks", params={"status": "nope"}, headers=headers).status_code == 400

    # Template management is out of reach
    assert client.get("/api/workflows/templates", headers=headers).status_code == 403


def test_template_delete_blocked_by_open_instance(client, owner_headers):
    template = create_template(client, owner_headers)
    instance = start(client, owner_headers, template["id"]).json()
    url = f"/api/workflows/templates/{template['id']}"

    assert client.delete(url, headers=owner_headers).status_code == 400

    response = client.delete(f"/api/workflows/instances/{instance['id']}", headers=owner_headers)
    assert response.status_code == 200
    response = client.get(f"/api/workflows/instances/{instance['id']}", headers=owner_headers)
    assert response.json()["status"] == "cancelled"

    assert client.delete(url, headers=owner_headers).status_code == 200
    assert client.get(url, headers=owner_headers).status_code == 404
    assert client.get(f"/api/workflows/instances/{instance['id']}", headers=owner_headers).status_code == 404


def test_instance_list_filters(client, owner_headers):
    template = create_template(client, owner_headers)
    start(client, owner_headers, template["id"])
    response = client.get(
        "/api/workflows/instances",
        params={"template_id": template["id"], "status": "in_progress,pending"},
        headers=owner_headers,
    )
    assert response.json()["total"] == 1
    assert response.json()["items"][0]["template_name"] == template["name"]


def test_onboarding_and_offboarding_triggers(client, owner_headers, make_person):
    manager = make_person(status="active")
    onboarding = create_template(
        client, owner_headers,
        trigger_type="person_onboarding",
        steps=[
            {"key": "welcome", "name": "Welcome", "assignee_type": "dynamic_manager"},
            {"key": "accounts", "name": "Accounts"},
        ],
        edges=[],
    )
    offboarding = create_template(
        client, owner_headers,
        trigger_type="person_offboarding",
        steps=[{"key": "collect", "name": "Collect laptop"}],
        edges=[],
    )
    response = client.put(
        "/api/people/settings",
        json={
            "auto_onboarding_workflow": True,
            "default_onboarding_workflow_template_id": onboarding["id"],
            "auto_offboarding_workflow": True,
            "default_offboarding_workflow_template_id": offboarding["id"],
        },
        headers=owner_headers,
    )
    assert response.status_code == 200

    try:
        person = make_person(manager_id=manager["id"])
        instances = client.get(
            "/api/workflows/instances",
            params={"entity_type": "person", "entity_id": person["id"]},
            headers=owner_headers,
        ).json()["items"]
        assert len(instances) == 1
        assert instances[0]["name"] == f"{onboarding['name']} - {person['name']}"

        steps = client.get(f"/api/workflows/instances/{instances[0]['id']}", headers=owner_headers).json()["steps"]
        assert steps[0]["status"] == "in_progress"
        assert steps[0]["assigned_person_id"] == manager["id"]
        assert steps[1]["status"] == "pending"

        # Same status again starts nothing
        client.patch(f"/api/people/person/{person['id']}", json={"status": "onboarding"}, headers=owner_headers)
        client.patch(f"/api/people/person/{person['id']}", json={"status": "offboarding"}, headers=owner_headers)
        instances = client.get(
            "/api/workflows/instances",
            params={"entity_id": person["id"], "template_id": offboarding["id"]},
            headers=owner_headers,
        ).json()["items"]
        assert len(instances) == 1
        assert client.get(
            "/api/workflows/instances", params={"entity_id": person["id"]}, headers=owner_headers,
        ).json()["total"] == 2
    finally:
        client.put(
            "/api/people/settings",
            json={"auto_onboarding_workflow": False, "auto_offboarding_workflow": False},
            headers=owner_headers,
        )


def test_closed_instance_cannot_be_cancelled(client, owner_headers):
    template = create_template(client, owner_headers, steps=[STEPS[0]], edges=[])
    instance = start(client, owner_headers, template["id"]).json()
    client.patch(
        f"/api/workflows/steps/{instance['steps'][0]['id']}",
        json={"status": "completed"},
        headers=owner_headers,
    )
    url = f"/api/workflows/instances/{instance['id']}"
    assert client.get(url, headers=owner_headers).json()["status"] == "completed"

    response = client.delete(url, headers=owner_headers)
    assert response.status_code == 400
    assert client.get(url, headers=owner_headers).json()["status"] == "completed"

    other = start(client, owner_headers, template["id"]).json()
    url = f"/api/workflows/instances/{other['id']}"
    assert client.delete(url, headers=owner_headers).status_code == 200
    assert client.delete(url, headers=owner_headers).status_code == 400


@pytest.mark.parametrize("payload", [{"name": None}, {"status": None}])
def test_template_patch_null_rejected(client, owner_headers, payload):
    template = create_template(client, owner_headers)
    response = client.patch(f"/api/workflows/templates/{template['id']}", json=payload, headers=owner_headers)
    assert response.status_code == 400
