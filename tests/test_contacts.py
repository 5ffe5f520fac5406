import pytest

from app.models.audit import AuditLog
from app.models.contact import Contact


def _contact(**overrides):
    body = {
        "name": "Dana",
        "email": "dana@example.com",
        "subject": "Pricing",
        "message": "How much is a 10 page paper?",
    }
    body.update(overrides)
    return body


class TestContactForm:
    def test_anyone_can_write(self, client, db):
        r = client.post("/contact", json=_contact())
        assert r.status_code == 201, r.text
        assert r.json()["id"] > 0

        db.expire_all()
        stored = db.query(Contact).one()
        assert stored.status == "PENDING"
        assert stored.email == "dana@example.com"

    @pytest.mark.parametrize("field", ["name", "email", "subject", "message"])
    def test_every_field_is_required(self, client, db, field):
        r = client.post("/contact", json=_contact(**{field: "  "}))
        assert r.status_code == 400
        assert r.json()["error"] == "validation_error"
        assert db.query(Contact).count() == 0

    def test_email_format(self, client):
        r = client.post("/contact", json=_contact(email="dana@localhost"))
        assert r.status_code == 400
        assert r.json()["detail"] == "Invalid email format"


class TestContactInbox:
    def _seed(self, client, n=3):
        return [
            client.post("/contact", json=_contact(subject=f"Q{i}")).json()["id"]
            for i in range(n)
        ]

    def test_admin_lists_newest_first(self, client, auth, admin):
        self._seed(client)
        r = client.get("/admin/contacts?limit=2", headers=auth(admin))
        assert r.status_code == 200
        body = r.json()
        assert [c["subject"] for c in body["contacts"]] == ["Q2", "Q1"]
        assert body["pagination"] == {"page": 1, "limit": 2, "total": 3, "pages": 2}

    def test_students_are_kept_out(self, client, auth, student):
        ids = self._seed(client, 1)
        h = auth(student)
        assert client.get("/admin/contacts", headers=h).status_code == 403
        r = client.put(f"/admin/contacts/{ids[0]}", json={}, headers=h)
        assert r.status_code == 403
        assert client.delete(f"/admin/contacts/{ids[0]}", headers=h).status_code == 403

    def test_respond_defaults_to_responded(self, client, db, auth, admin):
        (cid,) = self._seed(client, 1)
        r = client.put(
            f"/admin/contacts/{cid}",
            json={"response": "Around $120."},
            headers=auth(admin),
        )
        assert r.status_code == 200, r.text
        body = r.json()
        assert body["status"] == "RESPONDED"
        assert body["response"] == "Around $120."
        assert body["admin_id"] == admin.id

        r = client.get("/admin/contacts?status=PENDING", headers=auth(admin))
        assert r.json()["contacts"] == []
        r = client.get("/admin/contacts?status=all", headers=auth(admin))
        assert r.json()["pagination"]["total"] == 1

        db.expire_all()
        log = db.query(AuditLog).filter(AuditLog.entity_type == "CONTACT").one()
        assert log.action == "UPDATE_CONTACT_STATUS_RESPONDED"

    def test_unknown_status(self, client, auth, admin):
        (cid,) = self._seed(client, 1)
        r = client.put(
            f"/admin/contacts/{cid}", json={"status": "SPAM"}, headers=auth(admin)
        )
        assert r.status_code == 400

    def test_delete(self, client, db, auth, admin):
        (cid,) = self._seed(client, 1)
        h = auth(admin)
        assert client.delete(f"/admin/contacts/{cid}", headers=h).status_code == 204
        assert client.delete(f"/admin/contacts/{cid}", headers=h).status_code == 404
        db.expire_all()
        assert db.query(Contact).count() == 0


class TestSystemSettings:
    def test_public_read_and_admin_write(self, client, db, auth, admin):
        assert client.get("/settings").json() == {}

        r = client.put(
            "/settings",
            json={"values": {"site_name": "Scholars", "maintenance": False}},
            headers=auth(admin),
        )
        assert r.status_code == 200, r.text
        assert r.json() == {"maintenance": "false", "site_name": "Scholars"}

        r = client.put(
            "/settings",
            json={
                "values": {"allowed_file_types": ["pdf", "zip"]},
                "category": "files",
            },
            headers=auth(admin),
        )
        assert r.status_code == 200
        assert client.get("/settings?category=files").json() == {
            "allowed_file_types": "pdf,zip"
        }
        assert client.get("/settings?category=general").json() == {
            "maintenance": "false",
            "site_name": "Scholars",
        }

        db.expire_all()
        actions = [a.action for a in db.query(AuditLog)]
        assert actions.count("UPDATE_SETTINGS") == 2

    def test_students_cannot_write(self, client, auth, student):
        r = client.put(
            "/settings", json={"values": {"site_name": "x"}}, headers=auth(student)
        )
        assert r.status_code == 403

    @pytest.mark.parametrize(
        "values",
        [
            {},
            {"max_file_size_mb": 0},
            {"max_file_size_mb": "ten"},
            {"allowed_file_types": ""},
        ],
    )
    def test_bad_values(self, client, auth, admin, values):
        r = client.put("/settings", json={"values": values}, headers=auth(admin))
        assert r.status_code == 400
