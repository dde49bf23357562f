import pytest

from conftest import unique
from idara.models.security import RiskLevel, RiskRating, score_risk


@pytest.fixture(scope="module")
def iso_framework(client, owner_headers):
    response = client.post("/api/security/frameworks", json={"code": "ISO-27001"}, headers=owner_headers)
    assert response.status_code == 201, response.text
    return response.json()


def soa_items(soa):
    return [item for group in soa["categories"] for item in group["items"]]


def test_standard_controls_seeded(client, owner_headers):
    response = client.get("/api/security/standard-controls", params={"framework": "soc-2"}, headers=owner_headers)
    assert response.status_code == 200
    codes = [c["control_id"] for c in response.json()]
    assert codes[0] == "CC1.1"
    assert len(codes) == len(set(codes))


def test_adopt_framework_creates_soa(client, owner_headers, iso_framework):
    assert iso_framework["code"] == "iso-27001"
    assert iso_framework["name"] == "ISO/IEC 27001"
    assert iso_framework["version"] == "2022"

    catalog = client.get(
        "/api/security/standard-controls", params={"framework": "iso-27001"}, headers=owner_headers,
    ).json()
    summary = iso_framework["soa"]
    assert summary["total"] == len(catalog)
    assert summary["applicable"] == len(catalog)
    assert summary["not_implemented"] == len(catalog)
    assert iso_framework["compliance_percent"] == 0


def test_duplicate_framework(client, owner_headers, iso_framework):
    response = client.post("/api/security/frameworks", json={"code": "iso-27001"}, headers=owner_headers)
    assert response.status_code == 409


def test_unknown_framework_code(client, owner_headers):
    response = client.post("/api/security/frameworks", json={"code": "pci-dss"}, headers=owner_headers)
    assert response.status_code == 400


def test_soa_grouped_by_category(client, owner_headers, iso_framework):
    response = client.get(f"/api/security/soa/{iso_framework['id']}", headers=owner_headers)
    assert response.status_code == 200
    soa = response.json()
    categories = [group["category"] for group in soa["categories"]]
    assert len(categories) == len(set(categories))
    for group in soa["categories"]:
        assert all(item["category"] == group["category"] for item in group["items"])

    first = soa["categories"][0]["category"]
    filtered = client.get(
        f"/api/security/soa/{iso_framework['id']}",
        params={"category": first},
        headers=owner_headers,
    ).json()
    assert [g["category"] for g in filtered["categories"]] == [first]
    # Summary always covers the whole framework
    assert filtered["summary"] == soa["summary"]


def test_soa_not_applicable_needs_justification(client, owner_headers, iso_framework):
    soa = client.get(f"/api/security/soa/{iso_framework['id']}", headers=owner_headers).json()
    item = soa_items(soa)[0]
    url = f"/api/security/soa/{iso_framework['id']}/items/{item['id']}"

    response = client.patch(url, json={"applicability": "not_applicable"}, headers=owner_headers)
    assert response.status_code == 400

    response = client.patch(
        url,
        json={"applicability": "not_applicable", "justification": "No physical offices"},
        headers=owner_headers,
    )
    assert response.status_code == 200
    assert response.json()["applicability"] == "not_applicable"

    framework = client.get(f"/api/security/frameworks/{iso_framework['id']}", headers=owner_headers).json()
    assert framework["soa"]["not_applicable"] == 1

    response = client.patch(url, json={"applicability": "applicable"}, headers=owner_headers)
    assert response.status_code == 200


def test_soa_linked_control_status_wins(client, owner_headers, iso_framework):
    soa = client.get(f"/api/security/soa/{iso_framework['id']}", headers=owner_headers).json()
    item = soa_items(soa)[-1]
    control = client.post(
        "/api/security/controls",
        json={"control_id": unique("CTL"), "title": "Access reviews", "implementation_status": "implemented"},
        headers=owner_headers,
    ).json()

    url = f"/api/security/soa/{iso_framework['id']}/items/{item['id']}"
    response = client.patch(url, json={"control_id": control["id"]}, headers=owner_headers)
    assert response.status_code == 200
    assert response.json()["implementation_status"] == "implemented"
    assert response.json()["control"]["id"] == control["id"]

    framework = client.get(f"/api/security/frameworks/{iso_framework['id']}", headers=owner_headers).json()
    assert framework["soa"]["implemented"] >= 1
    assert framework["compliance_percent"] >= 1

    response = client.patch(url, json={"control_id": ""}, headers=owner_headers)
    assert response.json()["control"] is None
    assert response.json()["implementation_status"] == "not_implemented"

    response = client.patch(url, json={"control_id": "missing"}, headers=owner_headers)
    assert response.status_code == 404


def test_framework_delete(client, owner_headers):
    framework = client.post("/api/security/frameworks", json={"code": "soc-2"}, headers=owner_headers).json()
    response = client.delete(f"/api/security/frameworks/{framework['id']}", headers=owner_headers)
    assert response.status_code == 200
    assert client.get(f"/api/security/soa/{framework['id']}", headers=owner_headers).status_code == 404


def test_control_from_standard_and_mappings(client, owner_headers):
    catalog = client.get(
        "/api/security/standard-controls", params={"framework": "soc-2"}, headers=owner_headers,
    ).json()
    code = unique("CC")
    response = client.post(
        "/api/security/controls/from-standard",
        json={"standard_control_id": catalog[0]["id"], "control_id": code},
        headers=owner_headers,
    )
    assert response.status_code == 201
    control = response.json()
    assert control["title"] == catalog[0]["title"]
    assert [m["standard_control_id"] for m in control["mappings"]] == [catalog[0]["id"]]

    url = f"/api/security/controls/{control['id']}/mappings"
    response = client.post(url, json={"standard_control_id": catalog[0]["id"]}, headers=owner_headers)
    assert response.status_code == 409

    response = client.post(url, json={"standard_control_id": catalog[1]["id"]}, headers=owner_headers)
    assert response.status_code == 201
    mapping_id = response.json()["id"]
    assert len(client.get(url, headers=owner_headers).json()) == 2

    assert client.delete(f"{url}/{mapping_id}", headers=owner_headers).status_code == 200
    assert len(client.get(url, headers=owner_headers).json()) == 1

    response = client.post(
        "/api/security/controls",
        json={"control_id": code, "title": "Duplicate"},
        headers=owner_headers,
    )
    assert response.status_code == 409


def test_risk_scoring_and_ids(client, owner_headers):
    low = client.post(
        "/api/security/risks",
        json={"title": unique("Laptop theft"), "likelihood": "low", "impact": "low"},
        headers=owner_headers,
    )
    assert low.status_code == 201
    low = low.json()
    assert low["score"] == 4
    assert low["level"] == "low"
    assert low["risk_id"].startswith("RSK-")

    high = client.post(
        "/api/security/risks",
        json={"title": unique("Ransomware"), "likelihood": "very_high", "impact": "very_high"},
        headers=owner_headers,
    ).json()
    assert high["score"] == 25
    assert high["level"] == "critical"
    assert int(high["risk_id"][4:]) == int(low["risk_id"][4:]) + 1

    response = client.patch(
        f"/api/security/risks/{high['id']}",
        json={"impact": "medium"},
        headers=owner_headers,
    )
    assert response.json()["score"] == 15
    assert response.json()["level"] == "high"

    risks = client.get("/api/security/risks", headers=owner_headers).json()["items"]
    scores = [r["score"] for r in risks]
    assert scores == sorted(scores, reverse=True)


def test_risk_unknown_control(client, owner_headers):
    response = client.post(
        "/api/security/risks",
        json={"title": "Orphan", "control_ids": ["missing"]},
        headers=owner_headers,
    )
    assert response.status_code == 404


def test_evidence_links(client, owner_headers):
    first = client.post(
        "/api/security/controls",
        json={"control_id": unique("EV"), "title": "Backups"},
        headers=owner_headers,
    ).json()
    second = client.post(
        "/api/security/controls",
        json={"control_id": unique("EV"), "title": "Restores"},
        headers=owner_headers,
    ).json()

    response = client.post(
        "/api/security/evidence",
        json={"title": "Backup report", "type": "report", "control_ids": [first["id"]]},
        headers=owner_headers,
    )
    assert response.status_code == 201, response.text
    evidence = response.json()
    assert [c["id"] for c in evidence["controls"]] == [first["id"]]

    response = client.put(
        f"/api/security/evidence/{evidence['id']}/links",
        json={"control_ids": [second["id"]]},
        headers=owner_headers,
    )
    assert response.status_code == 200
    assert [c["id"] for c in response.json()] == [second["id"]]

    response = client.get("/api/security/evidence", params={"control_id": second["id"]}, headers=owner_headers)
    assert [e["id"] for e in response.json()["items"]] == [evidence["id"]]


@pytest.mark.parametrize("likelihood, impact, score, level", [
    (RiskRating.VERY_LOW, RiskRating.VERY_LOW, 1, RiskLevel.LOW),
    (RiskRating.LOW, RiskRating.MEDIUM, 6, RiskLevel.MEDIUM),
    (RiskRating.HIGH, RiskRating.MEDIUM, 12, RiskLevel.HIGH),
    (RiskRating.VERY_HIGH, RiskRating.HIGH, 20, RiskLevel.CRITICAL),
])
def test_score_risk(likelihood, impact, score, level):
    assert score_risk(likelihood, impact) == (score, level)
