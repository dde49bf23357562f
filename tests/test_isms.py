import pytest

from conftest import unique


@pytest.fixture(scope="module")
def framework(client, owner_headers):
    response = client.post("/api/security/frameworks", json={"code": "iso-27001"}, headers=owner_headers)
    assert response.status_code == 201, response.text
    yield response.json()
    client.delete(f"/api/security/frameworks/{response.json()['id']}", headers=owner_headers)


def create_audit(client, headers, **fields):
    payload = {"audit_id": unique("AUD"), "title": "Stage 1 audit", **fields}
    response = client.post("/api/security/audits", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def create_objective(client, headers, **fields):
    payload = {"objective_id": unique("OBJ"), "title": "Reduce phishing click rate", **fields}
    response = client.post("/api/security/objectives", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def test_audit_crud(client, owner_headers, framework):
    audit = create_audit(
        client, owner_headers,
        type="certification",
        framework_id=framework["id"],
        start_date="2025-03-10",
        audit_team=["Lead auditor", "Observer"],
    )
    assert audit["status"] == "planned"
    assert audit["framework"]["code"] == "iso-27001"
    assert audit["audit_team"] == ["Lead auditor", "Observer"]
    assert audit["findings_count"] == 0

    response = client.patch(
        f"/api/security/audits/{audit['id']}",
        json={"status": "completed", "findings_count": 3, "minor_findings_count": 3, "conclusion": "Recommended"},
        headers=owner_headers,
    )
    assert response.status_code == 200
    assert response.json()["status"] == "completed"
    assert response.json()["minor_findings_count"] == 3

    response = client.get(
        "/api/security/audits",
        params={"framework_id": framework["id"], "status": "completed"},
        headers=owner_headers,
    )
    assert [a["id"] for a in response.json()["items"]] == [audit["id"]]

    response = client.delete(f"/api/security/audits/{audit['id']}", headers=owner_headers)
    assert response.status_code == 200
    assert client.get(f"/api/security/audits/{audit['id']}", headers=owner_headers).status_code == 404


def test_audit_validation(client, owner_headers):
    audit = create_audit(client, owner_headers)

    response = client.post(
        "/api/security/audits",
        json={"audit_id": audit["audit_id"], "title": "Again"},
        headers=owner_headers,
    )
    assert response.status_code == 409

    response = client.post(
        "/api/security/audits",
        json={"audit_id": unique("AUD"), "title": "Unknown framework", "framework_id": "missing"},
        headers=owner_headers,
    )
    assert response.status_code == 404

    response = client.patch(f"/api/security/audits/{audit['id']}", json={"title": None}, headers=owner_headers)
    assert response.status_code == 400

    response = client.patch(
        f"/api/security/audits/{audit['id']}", json={"findings_count": -1}, headers=owner_headers,
    )
    assert response.status_code == 422


def test_audit_list_order(client, owner_headers):
    tag = unique("order")
    older = create_audit(client, owner_headers, title=f"{tag} older", start_date="2024-01-01")
    newer = create_audit(client, owner_headers, title=f"{tag} newer", start_date="2025-01-01")
    undated = create_audit(client, owner_headers, title=f"{tag} undated")

    response = client.get("/api/security/audits", params={"search": tag}, headers=owner_headers)
    assert [a["id"] for a in response.json()["items"]] == [newer["id"], older["id"], undated["id"]]


def test_objective_completion_stamp(client, owner_headers, make_person):
    owner = make_person()
    objective = create_objective(
        client, owner_headers,
        owner_id=owner["id"],
        kpis=[{"name": "Click rate", "target": "5", "current": "12", "unit": "%"}],
    )
    assert objective["owner"]["id"] == owner["id"]
    assert objective["kpis"][0]["target"] == "5"
    assert objective["completed_at"] is None

    url = f"/api/security/objectives/{objective['id']}"
    response = client.patch(url, json={"status": "completed", "progress": 100}, headers=owner_headers)
    assert response.status_code == 200
    assert response.json()["completed_at"] is not None

    response = client.patch(url, json={"status": "in_progress"}, headers=owner_headers)
    assert response.json()["completed_at"] is None

    response = client.patch(url, json={"progress": 101}, headers=owner_headers)
    assert response.status_code == 422


def test_objective_validation(client, owner_headers):
    objective = create_objective(client, owner_headers, priority="high")

    response = client.post(
        "/api/security/objectives",
        json={"objective_id": objective["objective_id"], "title": "Again"},
        headers=owner_headers,
    )
    assert response.status_code == 409

    response = client.post(
        "/api/security/objectives",
        json={"objective_id": unique("OBJ"), "title": "Orphan", "owner_id": "missing"},
        headers=owner_headers,
    )
    assert response.status_code == 404

    response = client.get(
        "/api/security/objectives",
        params={"search": objective["objective_id"], "priority": "high"},
        headers=owner_headers,
    )
    assert response.json()["total"] == 1

    assert client.delete(f"/api/security/objectives/{objective['id']}", headers=owner_headers).status_code == 200


def test_standard_clause_catalog(client, owner_headers):
    response = client.get("/api/security/standard-clauses", headers=owner_headers)
    assert response.status_code == 200
    catalog = response.json()

    clause_ids = [c["clause_id"] for c in catalog["items"]]
    assert catalog["total"] == len(clause_ids)
    assert clause_ids[0] == "4"
    assert "6.1.2" in clause_ids

    roots = [node["clause_id"] for node in catalog["hierarchy"]]
    assert roots == ["4", "5", "6", "7", "8", "9", "10"]

    planning = next(node for node in catalog["hierarchy"] if node["clause_id"] == "6")
    risks = next(node for node in planning["children"] if node["clause_id"] == "6.1")
    assert [c["clause_id"] for c in risks["children"]] == ["6.1.1", "6.1.2", "6.1.3"]
    assert risks["category"] == "Planning"

    response = client.get("/api/security/standard-clauses", params={"framework": "soc-2"}, headers=owner_headers)
    assert response.json()["total"] == 0


def test_clause_compliance(client, owner_headers, framework, make_person):
    catalog = client.get("/api/security/standard-clauses", headers=owner_headers).json()
    clause = next(c for c in catalog["items"] if c["clause_id"] == "5.2")

    url = "/api/security/clauses"
    response = client.get(url, params={"framework_id": framework["id"]}, headers=owner_headers)
    assert response.status_code == 200
    summary = response.json()["summary"]
    assert summary["total"] == catalog["total"]
    assert summary["not_addressed"] == catalog["total"]
    assert summary["compliance_percent"] == 0

    owner = make_person()
    payload = {
        "framework_id": framework["id"],
        "standard_clause_id": clause["id"],
        "compliance_status": "partially_addressed",
        "owner_id": owner["id"],
    }
    response = client.post(url, json=payload, headers=owner_headers)
    assert response.status_code == 201, response.text
    record = response.json()
    assert record["clause_id"] == "5.2"
    assert record["owner"]["id"] == owner["id"]

    # Same clause again updates the record
    response = client.post(url, json={**payload, "compliance_status": "fully_addressed"}, headers=owner_headers)
    assert response.status_code == 200
    assert response.json()["id"] == record["id"]

    response = client.get(url, params={"framework_id": framework["id"]}, headers=owner_headers)
    data = response.json()
    row = next(r for r in data["clauses"] if r["clause_id"] == "5.2")
    assert row["compliance_status"] == "fully_addressed"
    assert row["compliance_id"] == record["id"]
    assert data["summary"]["fully_addressed"] == 1
    assert data["summary"]["compliance_percent"] == round(100 / catalog["total"])

    response = client.patch(
        f"{url}/{record['id']}",
        json={"last_reviewed_at": "2025-06-01T10:00:00Z", "implementation_notes": "Policy approved"},
        headers=owner_headers,
    )
    assert response.status_code == 200
    assert response.json()["last_reviewed_by_id"] is not None

    response = client.patch(f"{url}/{record['id']}", json={"compliance_status": None}, headers=owner_headers)
    assert response.status_code == 400

    response = client.delete(f"{url}/{record['id']}", headers=owner_headers)
    assert response.status_code == 200
    response = client.get(url, params={"framework_id": framework["id"]}, headers=owner_headers)
    row = next(r for r in response.json()["clauses"] if r["clause_id"] == "5.2")
    assert row["compliance_status"] == "not_addressed"
    assert row["compliance_id"] is None


def test_clause_must_belong_to_framework(client, owner_headers, framework):
    response = client.post(
        "/api/security/clauses",
        json={"framework_id": framework["id"], "standard_clause_id": "missing"},
        headers=owner_headers,
    )
    assert response.status_code == 404

    soc = client.post("/api/security/frameworks", json={"code": "soc-2"}, headers=owner_headers).json()
    try:
        catalog = client.get("/api/security/standard-clauses", headers=owner_headers).json()
        response = client.post(
            "/api/security/clauses",
            json={"framework_id": soc["id"], "standard_clause_id": catalog["items"][0]["id"]},
            headers=owner_headers,
        )
        assert response.status_code == 404
    finally:
        client.delete(f"/api/security/frameworks/{soc['id']}", headers=owner_headers)


def test_isms_permissions(client, make_user):
    _, headers = make_user(["security.audits.view"])
    assert client.get("/api/security/audits", headers=headers).status_code == 200
    assert client.post(
        "/api/security/audits", json={"audit_id": unique("AUD"), "title": "x"}, headers=headers,
    ).status_code == 403
    assert client.get("/api/security/objectives", headers=headers).status_code == 403
