from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from app.core.errors import DependencyFailure
from app.models.ticket import Ticket
from app.models.user import User
from app.services.notifier import Notifier
from app.services.tickets import create_ticket
from app.services.users import set_suspension


def _commit_fails(db):
    return patch.object(
        db, "commit", side_effect=OperationalError("COMMIT", {}, Exception("db gone"))
    )


class TestUsers:
    def test_admin_lists_and_filters(self, client, auth, student, other_student, admin):
        h = auth(admin)
        r = client.get("/users?role=student", headers=h)
        assert r.status_code == 200
        assert {u["name"] for u in r.json()["users"]} == {"Alice", "Bob"}

        r = client.get("/users?search=bob", headers=h)
        assert [u["email"] for u in r.json()["users"]] == ["bob@example.com"]

        client.put(
            f"/users/{student.id}/suspend",
            json={"is_suspended": True, "reason": "Abuse"},
            headers=h,
        )
        r = client.get("/users?suspended=true", headers=h)
        users = r.json()["users"]
        assert [u["id"] for u in users] == [student.id]
        assert users[0]["suspended_reason"] == "Abuse"
        assert users[0]["suspended_at"] is not None

    def test_students_cannot_list_users(self, client, auth, student):
        assert client.get("/users", headers=auth(student)).status_code == 403

    def test_user_detail_counts(self, flow):
        flow.create_request()
        req = flow.create_request(title="Second")
        flow.submit_payment(req["id"])

        r = flow.client.get(f"/users/{flow.student.id}", headers=flow.auth(flow.admin))
        assert r.status_code == 200
        body = r.json()
        assert body["request_count"] == 2
        assert body["payment_count"] == 1
        assert body["ticket_count"] == 0

    def test_students_see_only_themselves(self, client, auth, student, other_student):
        assert client.get(f"/users/{student.id}", headers=auth(student)).status_code == 200
        r = client.get(f"/users/{other_student.id}", headers=auth(student))
        assert r.status_code == 403


class TestNotificationsAndAudit:
    def test_notifications_are_per_user(self, flow, other_student):
        req, _ = flow.approved_request()
        r = flow.client.get("/notifications", headers=flow.auth(flow.student))
        notes = r.json()["notifications"]
        assert [n["type"] for n in notes] == ["PAYMENT_APPROVED"]
        assert notes[0]["link"].startswith("/student/payments/")

        r = flow.client.get("/notifications", headers=flow.auth(other_student))
        assert r.json()["notifications"] == []

    def test_dispute_notifies_admins(self, flow):
        req = flow.create_request()
        payment = flow.submit_payment(req["id"]).json()
        flow.review(payment["id"], "REJECTED", reason="unreadable")
        flow.client.post(
            f"/payments/{payment['id']}/dispute",
            json={"explanation": "see attached"},
            headers=flow.auth(flow.student),
        )
        r = flow.client.get("/notifications", headers=flow.auth(flow.admin))
        assert [n["type"] for n in r.json()["notifications"]] == ["PAYMENT_DISPUTED"]

    def test_audit_log_filters(self, flow):
        req = flow.create_request()
        flow.submit_payment(req["id"])
        h = flow.auth(flow.admin)

        r = flow.client.get("/audit-logs", headers=h)
        assert r.json()["pagination"]["total"] == 2

        r = flow.client.get("/audit-logs?entity_type=PAYMENT", headers=h)
        logs = r.json()["logs"]
        assert [log["action"] for log in logs] == ["SUBMIT_PAYMENT"]
        assert logs[0]["changes"]["currency"] == "USD"
        assert logs[0]["user_id"] == flow.student.id

    def test_audit_log_is_admin_only(self, client, auth, student):
        assert client.get("/audit-logs", headers=auth(student)).status_code == 403


class TestListings:
    def test_students_list_only_their_requests(self, flow, other_student):
        flow.create_request(title="Mine")
        flow.create_request(user=other_student, title="Theirs")

        r = flow.client.get("/requests", headers=flow.auth(flow.student))
        assert [x["title"] for x in r.json()["requests"]] == ["Mine"]

        r = flow.client.get("/requests?search=their", headers=flow.auth(flow.admin))
        assert [x["title"] for x in r.json()["requests"]] == ["Theirs"]

    def test_pagination_and_status_filter(self, flow):
        for i in range(3):
            flow.create_request(title=f"R{i}")
        paid = flow.create_request(title="paid")
        flow.submit_payment(paid["id"])

        h = flow.auth(flow.admin)
        r = flow.client.get("/requests?limit=2&page=2", headers=h).json()
        assert r["pagination"] == {"page": 2, "limit": 2, "total": 4, "pages": 2}
        assert len(r["requests"]) == 2

        r = flow.client.get("/requests?status=PAYMENT_SUBMITTED", headers=h).json()
        assert [x["title"] for x in r["requests"]] == ["paid"]

        r = flow.client.get("/payments?status=PENDING", headers=h).json()
        assert len(r["payments"]) == 1

    def test_bad_query_parameter_is_validation_error(self, flow):
        r = flow.client.get("/requests?page=0", headers=flow.auth(flow.student))
        assert r.status_code == 400
        assert r.json()["error"] == "validation_error"

    def test_students_cannot_view_others_payments(self, flow, other_student):
        req = flow.create_request()
        payment = flow.submit_payment(req["id"]).json()
        r = flow.client.get(f"/payments/{payment['id']}", headers=flow.auth(other_student))
        assert r.status_code == 403
        r = flow.client.get("/payments", headers=flow.auth(other_student))
        assert r.json()["payments"] == []


class TestPersistenceFailures:
    def test_failed_suspension_commit_rolls_back(self, db, student, admin, caller):
        notifier = Notifier()
        with _commit_fails(db), pytest.raises(DependencyFailure):
            set_suspension(
                db,
                caller(admin),
                student.id,
                is_suspended=True,
                reason="Abuse",
                notifier=notifier,
            )

        assert notifier.outbox == []
        db.expire_all()
        assert db.get(User, student.id).is_suspended is False

    def test_failed_ticket_commit_rolls_back(self, db, student, admin, caller):
        notifier = Notifier()
        with _commit_fails(db), pytest.raises(DependencyFailure):
            create_ticket(
                db,
                caller(student),
                title="Where is my essay?",
                category="delivery",
                notifier=notifier,
            )

        assert notifier.outbox == []
        assert db.query(Ticket).count() == 0
