from conftest import unique
from idara.api.v1.endpoints.docs import bump_patch_version


def create_document(client, headers, **fields):
    payload = {"title": unique("Acceptable Use Policy"), "category": "policy", **fields}
    response = client.post("/api/docs/documents", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def test_bump_patch_version():
    assert bump_patch_version("1.0") == "1.0.1"
    assert bump_patch_version("1.0.1") == "1.0.2"
    assert bump_patch_version("2") == "2.1"


def test_document_slug_lookup_and_conflict(client, owner_headers):
    document = create_document(client, owner_headers)
    response = client.get(f"/api/docs/documents/{document['slug']}", headers=owner_headers)
    assert response.status_code == 200
    assert response.json()["id"] == document["id"]

    response = client.post(
        "/api/docs/documents",
        json={"title": "Other", "slug": document["slug"]},
        headers=owner_headers,
    )
    assert response.status_code == 409


def test_publishing_sets_published_at(client, owner_headers):
    document = create_document(client, owner_headers)
    assert document["status"] == "draft"
    assert document["published_at"] is None

    response = client.patch(
        f"/api/docs/documents/{document['id']}",
        json={"status": "published"},
        headers=owner_headers,
    )
    assert response.json()["published_at"] is not None


def test_document_versions(client, owner_headers):
    document = create_document(client, owner_headers, status="published", content="Original text")
    url = f"/api/docs/documents/{document['id']}"

    # Editing published content without a version bumps the patch number
    response = client.patch(url, json={"content": "Fixed a typo"}, headers=owner_headers)
    assert response.status_code == 200
    assert response.json()["current_version"] == "1.0.1"

    response = client.patch(url, json={"version": "1.0.1", "content": "Again"}, headers=owner_headers)
    assert response.status_code == 409

    response = client.patch(
        url,
        json={"version": "2.0", "content": "Rewritten", "change_description": "Annual review"},
        headers=owner_headers,
    )
    assert response.status_code == 200
    assert response.json()["current_version"] == "2.0"

    response = client.patch(url, json={"version": "1.0.1"}, headers=owner_headers)
    assert response.status_code == 409

    versions = client.get(f"{url}/versions", headers=owner_headers).json()
    assert [v["version"] for v in versions] == ["2.0", "1.0.1"]
    assert versions[0]["content_snapshot"] == "Rewritten"
    assert versions[0]["change_description"] == "Annual review"


def test_draft_edit_keeps_version(client, owner_headers):
    document = create_document(client, owner_headers, content="Draft")
    response = client.patch(
        f"/api/docs/documents/{document['id']}",
        json={"content": "Still a draft"},
        headers=owner_headers,
    )
    assert response.json()["current_version"] == "1.0"


def test_rollout_acknowledgment_flow(client, owner_headers, make_user):
    reader_id, reader_headers = make_user(["docs.documents.view"])
    document = create_document(client, owner_headers, status="published", content="Be nice")

    response = client.post(
        "/api/docs/rollouts",
        json={
            "document_id": document["id"],
            "target_type": "user",
            "target_id": reader_id,
            "requirement": "required_with_signature",
            "due_date": "2020-01-01",
        },
        headers=owner_headers,
    )
    assert response.status_code == 201, response.text
    rollout = response.json()
    assert rollout["total_count"] == 1
    assert rollout["version_at_rollout"] == "1.0"
    assert rollout["name"] == f"{document['title']} v1.0"

    mine = client.get("/api/docs/my-documents", headers=reader_headers).json()
    assert len(mine) == 1
    ack = mine[0]["acknowledgment"]
    assert ack["status"] == "pending"
    assert mine[0]["is_overdue"] is True
    url = f"/api/docs/acknowledgments/{ack['id']}"

    # Someone else's acknowledgment
    assert client.put(url, json={"status": "viewed"}, headers=owner_headers).status_code == 403

    # Signature required
    assert client.put(url, json={"status": "acknowledged"}, headers=reader_headers).status_code == 400

    response = client.put(url, json={"status": "viewed"}, headers=reader_headers)
    assert response.status_code == 200
    assert response.json()["viewed_at"] is not None

    # No going back
    assert client.put(url, json={"status": "pending"}, headers=reader_headers).status_code == 400

    response = client.put(
        url,
        json={"status": "signed", "signature_data": {"typed_name": "Reader"}},
        headers=reader_headers,
    )
    assert response.status_code == 200
    signed = response.json()
    assert signed["status"] == "signed"
    assert signed["signed_at"] is not None
    assert signed["acknowledged_at"] is not None
    assert signed["version_acknowledged"] == "1.0"
    assert signed["signature_data"]["typed_name"] == "Reader"
    assert "ip_address" in signed["signature_data"]

    response = client.get(f"/api/docs/rollouts/{rollout['id']}", headers=owner_headers)
    assert response.json()["acknowledged_count"] == 1

    response = client.get("/api/docs/acknowledgments", params={"rollout_id": rollout["id"]}, headers=owner_headers)
    assert response.json()["total"] == 1

    # Readers without rollout rights cannot browse acknowledgments
    assert client.get("/api/docs/acknowledgments", headers=reader_headers).status_code == 403


def test_rollout_to_team(client, owner_headers, make_user, make_person):
    team = client.post("/api/people/teams", json={"name": unique("Finance")}, headers=owner_headers).json()
    person = make_person(team_id=team["id"])
    user_id, _ = make_user(["docs.documents.view"], person_id=person["id"])
    document = create_document(client, owner_headers, status="published")

    response = client.post(
        "/api/docs/rollouts",
        json={"document_id": document["id"], "target_type": "team", "target_id": team["id"]},
        headers=owner_headers,
    )
    assert response.status_code == 201
    assert response.json()["total_count"] == 1
    assert response.json()["target_name"] == team["name"]

    acks = client.get(
        "/api/docs/acknowledgments",
        params={"rollout_id": response.json()["id"]},
        headers=owner_headers,
    ).json()["items"]
    assert [a["user_id"] for a in acks] == [user_id]
    assert acks[0]["person_id"] == person["id"]


def test_rollout_requires_target_id(client, owner_headers):
    document = create_document(client, owner_headers)
    response = client.post(
        "/api/docs/rollouts",
        json={"document_id": document["id"], "target_type": "team"},
        headers=owner_headers,
    )
    assert response.status_code == 400


def test_inactive_rollout_hidden_from_my_documents(client, owner_headers, make_user):
    reader_id, reader_headers = make_user(["docs.documents.view"])
    document = create_document(client, owner_headers, status="published")
    rollout = client.post(
        "/api/docs/rollouts",
        json={"document_id": document["id"], "target_type": "user", "target_id": reader_id},
        headers=owner_headers,
    ).json()
    assert len(client.get("/api/docs/my-documents", headers=reader_headers).json()) == 1

    client.patch(f"/api/docs/rollouts/{rollout['id']}", json={"is_active": False}, headers=owner_headers)
    assert client.get("/api/docs/my-documents", headers=reader_headers).json() == []


def test_rollout_stats(client, owner_headers):
    response = client.get("/api/docs/rollouts/stats", headers=owner_headers)
    assert response.status_code == 200
    stats = response.json()
    assert stats["total_rollouts"] >= stats["active_rollouts"]
    assert sum(stats["by_status"].values()) == stats["total_acknowledgments"]
    assert 0 <= stats["completion_percent"] <= 100


def rollout_ack(client, owner_headers, make_user, requirement):
    reader_id, reader_headers = make_user(["docs.documents.view"])
    document = create_document(client, owner_headers, status="published", content="Read me")
    response = client.post(
        "/api/docs/rollouts",
        json={
            "document_id": document["id"],
            "target_type": "user",
            "target_id": reader_id,
            "requirement": requirement,
        },
        headers=owner_headers,
    )
    assert response.status_code == 201, response.text
    mine = client.get("/api/docs/my-documents", headers=reader_headers).json()
    ack = next(d["acknowledgment"] for d in mine if d["document"]["id"] == document["id"])
    return f"/api/docs/acknowledgments/{ack['id']}", reader_headers


def test_signed_acknowledgment_is_final(client, owner_headers, make_user):
    url, headers = rollout_ack(client, owner_headers, make_user, "required_with_signature")

    # Straight from pending to signed back-fills the earlier stamps
    response = client.put(url, json={"status": "signed", "signature_data": {"typed_name": "R"}}, headers=headers)
    assert response.status_code == 200
    assert response.json()["viewed_at"] is not None
    assert response.json()["acknowledged_at"] is not None

    for earlier in ("viewed", "acknowledged", "pending", "signed"):
        response = client.put(url, json={"status": earlier}, headers=headers)
        assert response.status_code == 400


def test_required_rollout_accepts_plain_acknowledgment(client, owner_headers, make_user):
    url, headers = rollout_ack(client, owner_headers, make_user, "required")

    response = client.put(url, json={"status": "acknowledged", "notes": "Read it"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["status"] == "acknowledged"
    assert response.json()["version_acknowledged"] == "1.0"

    assert client.put(url, json={"status": "viewed"}, headers=headers).status_code == 400
    assert client.put(url, json={"status": "signed"}, headers=headers).status_code == 200
