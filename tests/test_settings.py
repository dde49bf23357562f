import asyncio
import csv
import io
import os

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from conftest import unique
from idara.models.organization import Organization
from idara.models.person import Person, Team
from idara.models.asset import Asset
from idara.models.security import Framework


def test_public_branding(client, owner_headers):
    response = client.patch(
        "/api/settings/organization",
        json={"app_name": "Acme OS", "tagline": "", "logo_url": "https://cdn.example.com/logo.svg"},
        headers=owner_headers,
    )
    assert response.status_code == 200
    try:
        # No credentials needed
        response = client.get("/api/public/branding")
        assert response.status_code == 200
        assert response.json() == {
            "app_name": "Acme OS",
            "tagline": "",
            "logo": "https://cdn.example.com/logo.svg",
        }

        client.patch("/api/settings/organization", json={"app_name": None, "tagline": None}, headers=owner_headers)
        response = client.get("/api/public/branding")
        assert response.json()["app_name"] == "Idara OS"
        assert response.json()["tagline"] == "Company OS"
    finally:
        client.patch(
            "/api/settings/organization",
            json={"app_name": None, "tagline": None, "logo_url": None},
            headers=owner_headers,
        )


@pytest.mark.parametrize("field", ["name", "slug", "timezone"])
def test_organization_patch_null_rejected(client, owner_headers, field):
    response = client.patch("/api/settings/organization", json={field: None}, headers=owner_headers)
    assert response.status_code == 400
    assert client.get("/api/settings/organization", headers=owner_headers).json()[field] is not None


def test_audit_log_list_and_detail(client, owner_headers):
    team = client.post("/api/people/teams", json={"name": unique("Audit")}, headers=owner_headers).json()

    response = client.get(
        "/api/audit/logs",
        params={"module": "people.teams", "entity_id": team["id"]},
        headers=owner_headers,
    )
    assert response.status_code == 200
    items = response.json()["items"]
    assert len(items) == 1
    entry = items[0]
    assert entry["action"] == "create"
    assert entry["entity_name"] == team["name"]
    assert entry["user_email"] == "admin@example.com"
    assert entry["success"] is True

    response = client.get(f"/api/audit/logs/{entry['id']}", headers=owner_headers)
    assert response.status_code == 200
    assert response.json()["entity_id"] == team["id"]

    assert client.get("/api/audit/logs/missing", headers=owner_headers).status_code == 404
    assert client.get("/api/audit/logs", params={"action": "explode"}, headers=owner_headers).status_code == 400


def test_audit_log_export(client, owner_headers):
    team = client.post("/api/people/teams", json={"name": unique("Export")}, headers=owner_headers).json()

    response = client.get(
        "/api/audit/logs/export",
        params={"entity_id": team["id"]},
        headers=owner_headers,
    )
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert "attachment" in response.headers["content-disposition"]

    rows = list(csv.reader(io.StringIO(response.text)))
    assert rows[0][:3] == ["timestamp", "user_email", "action"]
    assert len(rows) == 2
    assert rows[1][2] == "create"
    assert rows[1][6] == team["name"]

    # The export itself is audited
    response = client.get("/api/audit/logs", params={"action": "export"}, headers=owner_headers)
    assert response.json()["total"] >= 1


def test_audit_log_needs_permission(client, make_user):
    _, headers = make_user(["people.directory.view"])
    assert client.get("/api/audit/logs", headers=headers).status_code == 403
    assert client.get("/api/audit/logs/export", headers=headers).status_code == 403


async def _seed_other_org():
    """Rows owned by a second organization, written straight to the database."""
    engine = create_async_engine(os.environ["DATABASE_URL"])
    try:
        async with async_sessionmaker(engine, expire_on_commit=False)() as session:
            org = Organization(name="Other Co", slug=unique("other"))
            session.add(org)
            await session.flush()
            team = Team(org_id=org.id, name=unique("Team"))
            person = Person(org_id=org.id, slug=unique("person"), name="Outsider", email=f"{unique('x')}@other.example")
            asset = Asset(org_id=org.id, asset_tag=unique("OTH"), name="Other laptop")
            framework = Framework(org_id=org.id, code="soc-2", name="SOC 2")
            session.add_all([team, person, asset, framework])
            await session.commit()
            return {"team": team.id, "person": person.id, "asset": asset.id, "framework": framework.id}
    finally:
        await engine.dispose()


@pytest.fixture(scope="module")
def other_org():
    return asyncio.run(_seed_other_org())


@pytest.mark.parametrize("kind, url", [
    ("person", "/api/people/person/{}"),
    ("team", "/api/people/teams/{}"),
    ("asset", "/api/assets/{}"),
    ("framework", "/api/security/frameworks/{}"),
    ("framework", "/api/security/soa/{}"),
    ("framework", "/api/security/clauses?framework_id={}"),
])
def test_other_organization_is_invisible(client, owner_headers, other_org, kind, url):
    assert client.get(url.format(other_org[kind]), headers=owner_headers).status_code == 404


def test_other_organization_cannot_be_changed(client, owner_headers, other_org, make_person):
    response = client.patch(f"/api/assets/{other_org['asset']}", json={"name": "Mine now"}, headers=owner_headers)
    assert response.status_code == 404
    response = client.delete(f"/api/people/person/{other_org['person']}", headers=owner_headers)
    assert response.status_code == 404

    person = make_person()
    response = client.post(
        f"/api/assets/{other_org['asset']}/assign",
        json={"person_id": person["id"]},
        headers=owner_headers,
    )
    assert response.status_code == 404
    response = client.patch(
        f"/api/people/person/{person['id']}",
        json={"team_id": other_org["team"]},
        headers=owner_headers,
    )
    assert response.status_code == 404

    response = client.get("/api/people/person", params={"search": "Outsider"}, headers=owner_headers)
    assert all(p["id"] != other_org["person"] for p in response.json()["items"])
