from fastapi.testclient import TestClient

from app.core.config import settings
from app.main import app
from app.models.service import Service
from app.services.catalog import DEFAULT_CATALOG, seed_catalog, slugify


class TestServiceCatalog:
    def test_list_hides_inactive_for_students(self, client, db, auth, student, admin):
        db.add_all(
            [
                Service(name="B", slug="b", sort_order=2, is_active=True),
                Service(name="A", slug="a", sort_order=1, is_active=True),
                Service(name="Old", slug="old", sort_order=0, is_active=False),
            ]
        )
        db.commit()

        r = client.get("/services", headers=auth(student))
        assert [s["slug"] for s in r.json()] == ["a", "b"]

        r = client.get("/services?active=false", headers=auth(student))
        assert [s["slug"] for s in r.json()] == ["a", "b"]

        r = client.get("/services?active=false", headers=auth(admin))
        assert [s["slug"] for s in r.json()] == ["old", "a", "b"]

    def test_get_by_id_or_slug(self, client, auth, student, service):
        h = auth(student)
        assert client.get(f"/services/{service.id}", headers=h).json()["slug"] == (
            "essay-writing"
        )
        assert client.get("/services/essay-writing", headers=h).json()["id"] == service.id
        assert client.get("/services/missing", headers=h).status_code == 404

    def test_admin_creates_with_derived_slug(self, client, auth, admin):
        r = client.post(
            "/services",
            json={"name": "Thesis Proofreading!", "price": "30.00"},
            headers=auth(admin),
        )
        assert r.status_code == 201, r.text
        assert r.json()["slug"] == "thesis-proofreading"

        r = client.post(
            "/services", json={"name": "Thesis proofreading"}, headers=auth(admin)
        )
        assert r.status_code == 409

    def test_students_cannot_manage_catalog(self, client, auth, student, service):
        h = auth(student)
        assert client.post("/services", json={"name": "X"}, headers=h).status_code == 403
        assert (
            client.put(f"/services/{service.id}", json={"name": "Y"}, headers=h).status_code
            == 403
        )
        assert client.delete(f"/services/{service.id}", headers=h).status_code == 403

    def test_update_and_deactivate(self, client, auth, admin, service):
        r = client.put(
            f"/services/{service.id}",
            json={"is_active": False, "pricing_note": "On request"},
            headers=auth(admin),
        )
        assert r.status_code == 200
        assert r.json()["is_active"] is False
        assert r.json()["pricing_note"] == "On request"
        assert r.json()["name"] == "Essay Writing"

    def test_delete_refused_while_referenced(self, flow):
        flow.create_request()
        h = flow.auth(flow.admin)
        r = flow.client.delete(f"/services/{flow.service.id}", headers=h)
        assert r.status_code == 409

    def test_delete_unused(self, client, auth, admin, service):
        r = client.delete(f"/services/{service.id}", headers=auth(admin))
        assert r.status_code == 204
        assert client.get(f"/services/{service.id}", headers=auth(admin)).status_code == 404


def test_seed_catalog_is_idempotent(db):
    seed_catalog(db)
    seed_catalog(db)
    assert db.query(Service).count() == len(DEFAULT_CATALOG)


def test_startup_seeds_catalog(db, monkeypatch):
    monkeypatch.setattr(settings, "seed_catalog", True)
    with TestClient(app) as c:
        assert c.get("/health").status_code == 200
    assert db.query(Service).count() == len(DEFAULT_CATALOG)


def test_slugify():
    assert slugify("  Research Paper -- Assistance ") == "research-paper-assistance"
