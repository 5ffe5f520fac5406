"""
End-to-end lifecycle over HTTP: request -> payment -> review -> delivery,
and the rejection -> dispute branch.
"""

from app.models.audit import AuditLog, Notification


class TestHappyPath:
    def test_request_payment_approval_delivery(self, flow, db):
        req = flow.create_request()
        assert req["status"] == "CREATED"

        r = flow.submit_payment(req["id"], amount="50", currency="USD")
        assert r.status_code == 201, r.text
        payment = r.json()
        assert payment["status"] == "PENDING"
        assert flow.get_request(req["id"])["status"] == "PAYMENT_SUBMITTED"

        r = flow.review(payment["id"], "APPROVED")
        assert r.status_code == 200, r.text
        assert r.json()["status"] == "APPROVED"
        assert flow.get_request(req["id"])["status"] == "PAYMENT_APPROVED"

        r = flow.upload_deliverable(req["id"])
        assert r.status_code == 201, r.text

        detail = flow.get_request(req["id"])
        assert detail["status"] == "DELIVERED"
        assert detail["delivered_at"] is not None
        assert detail["deliverables_locked"] is False
        assert len(detail["deliverables"]) == 1
        assert detail["payment"]["status"] == "APPROVED"

    def test_amount_and_currency_stored_verbatim(self, flow):
        req = flow.create_request()
        r = flow.submit_payment(req["id"], amount="12500.5", currency="pkr")
        assert r.status_code == 201, r.text
        body = r.json()
        assert body["currency"] == "PKR"
        assert body["amount"] == "12500.50"

    def test_reference_number_generated_when_missing(self, flow):
        req = flow.create_request()
        r = flow.submit_payment(req["id"])
        assert r.json()["reference_number"].startswith("PAY-")

    def test_admin_moves_request_in_progress_then_closes(self, flow):
        req, _ = flow.approved_request()
        admin_h = flow.auth(flow.admin)

        r = flow.client.put(
            f"/requests/{req['id']}/status", json={"status": "IN_PROGRESS"}, headers=admin_h
        )
        assert r.status_code == 200, r.text
        assert r.json()["status"] == "IN_PROGRESS"

        # closing needs DELIVERED first
        r = flow.client.put(
            f"/requests/{req['id']}/status", json={"status": "CLOSED"}, headers=admin_h
        )
        assert r.status_code == 409
        assert r.json()["error"] == "invalid_state"

        flow.upload_deliverable(req["id"])
        r = flow.client.put(
            f"/requests/{req['id']}/status", json={"status": "CLOSED"}, headers=admin_h
        )
        assert r.status_code == 200, r.text
        assert r.json()["status"] == "CLOSED"
        assert r.json()["closed_at"] is not None

    def test_transitions_are_audited_and_notified(self, flow, db):
        req, payment = flow.approved_request()
        flow.upload_deliverable(req["id"])

        db.expire_all()
        actions = [a.action for a in db.query(AuditLog).order_by(AuditLog.id)]
        assert actions == [
            "CREATE_REQUEST",
            "SUBMIT_PAYMENT",
            "UPDATE_PAYMENT_STATUS_APPROVED",
            "UPLOAD_DELIVERABLE",
        ]
        types = [
            n.type
            for n in db.query(Notification)
            .filter(Notification.user_id == flow.student.id)
            .order_by(Notification.id)
        ]
        assert types == ["PAYMENT_APPROVED", "REQUEST_DELIVERED"]


class TestRejectionAndDispute:
    def _rejected(self, flow):
        req = flow.create_request()
        payment = flow.submit_payment(req["id"]).json()
        r = flow.review(payment["id"], "REJECTED", reason="blurry receipt")
        assert r.status_code == 200, r.text
        return req, r.json()

    def test_rejection_then_single_dispute(self, flow):
        req, payment = self._rejected(flow)
        assert payment["status"] == "REJECTED"
        assert payment["rejection_reason"] == "blurry receipt"
        assert flow.get_request(req["id"])["status"] == "PAYMENT_REJECTED"

        h = flow.auth(flow.student)
        r = flow.client.post(
            f"/payments/{payment['id']}/dispute",
            json={"explanation": "The receipt is readable at full size"},
            headers=h,
        )
        assert r.status_code == 201, r.text
        assert r.json()["status"] == "OPEN"

        r = flow.client.get(f"/payments/{payment['id']}", headers=h)
        assert r.json()["status"] == "UNDER_REVIEW"
        assert r.json()["dispute"]["explanation"].startswith("The receipt")

        r = flow.client.post(
            f"/payments/{payment['id']}/dispute",
            json={"explanation": "again"},
            headers=h,
        )
        assert r.status_code == 409
        assert r.json()["error"] == "invalid_state"

    def test_rejection_requires_reason(self, flow):
        req = flow.create_request()
        payment = flow.submit_payment(req["id"]).json()

        for reason in (None, "", "   "):
            r = flow.review(payment["id"], "REJECTED", reason=reason)
            assert r.status_code == 400
            assert r.json()["error"] == "validation_error"

        r = flow.client.get(f"/payments/{payment['id']}", headers=flow.auth(flow.admin))
        assert r.json()["status"] == "PENDING"
        assert r.json()["rejection_reason"] is None

    def test_no_resubmission_after_rejection(self, flow):
        req, _ = self._rejected(flow)
        r = flow.submit_payment(req["id"], reference_number="SECOND-TRY")
        assert r.status_code == 409

    def test_dispute_of_pending_payment_is_invalid(self, flow):
        req = flow.create_request()
        payment = flow.submit_payment(req["id"]).json()
        r = flow.client.post(
            f"/payments/{payment['id']}/dispute",
            json={"explanation": "too early"},
            headers=flow.auth(flow.student),
        )
        assert r.status_code == 409

    def test_upheld_dispute_approves_payment_and_request(self, flow):
        req, payment = self._rejected(flow)
        flow.client.post(
            f"/payments/{payment['id']}/dispute",
            json={"explanation": "Bank confirms transfer"},
            headers=flow.auth(flow.student),
        )

        r = flow.client.put(
            f"/payments/{payment['id']}/dispute",
            json={"approve_payment": True, "admin_response": "Verified with bank"},
            headers=flow.auth(flow.admin),
        )
        assert r.status_code == 200, r.text
        assert r.json()["status"] == "RESOLVED"

        detail = flow.get_request(req["id"])
        assert detail["status"] == "PAYMENT_APPROVED"
        assert detail["payment"]["status"] == "APPROVED"

        # deliverables can now be attached
        assert flow.upload_deliverable(req["id"]).status_code == 201

    def test_declined_dispute_keeps_request_rejected(self, flow):
        req, payment = self._rejected(flow)
        flow.client.post(
            f"/payments/{payment['id']}/dispute",
            json={"explanation": "Please check again"},
            headers=flow.auth(flow.student),
        )
        r = flow.client.put(
            f"/payments/{payment['id']}/dispute",
            json={"approve_payment": False, "admin_response": "Still unreadable"},
            headers=flow.auth(flow.admin),
        )
        assert r.status_code == 200, r.text

        detail = flow.get_request(req["id"])
        assert detail["status"] == "PAYMENT_REJECTED"
        assert detail["payment"]["status"] == "REJECTED"

        # resolved once; a second resolution is refused
        r = flow.client.put(
            f"/payments/{payment['id']}/dispute",
            json={"approve_payment": True, "admin_response": "changed my mind"},
            headers=flow.auth(flow.admin),
        )
        assert r.status_code == 409


class TestNoSkippedStates:
    def test_deliverable_before_payment_approval_is_refused(self, flow):
        req = flow.create_request()
        r = flow.upload_deliverable(req["id"])
        assert r.status_code == 409
        assert flow.get_request(req["id"])["status"] == "CREATED"

        flow.submit_payment(req["id"])
        r = flow.upload_deliverable(req["id"])
        assert r.status_code == 409
        assert flow.get_request(req["id"])["status"] == "PAYMENT_SUBMITTED"

    def test_admin_cannot_set_delivered_or_arbitrary_status(self, flow):
        req = flow.create_request()
        h = flow.auth(flow.admin)
        r = flow.client.put(
            f"/requests/{req['id']}/status", json={"status": "DELIVERED"}, headers=h
        )
        # DELIVERED is not an accepted body value
        assert r.status_code == 400

        r = flow.client.put(
            f"/requests/{req['id']}/status", json={"status": "IN_PROGRESS"}, headers=h
        )
        assert r.status_code == 409

    def test_review_twice_is_invalid(self, flow):
        req = flow.create_request()
        payment = flow.submit_payment(req["id"]).json()
        assert flow.review(payment["id"], "APPROVED").status_code == 200
        r = flow.review(payment["id"], "REJECTED", reason="oops")
        assert r.status_code == 409

    def test_submit_twice_is_invalid(self, flow):
        req = flow.create_request()
        assert flow.submit_payment(req["id"]).status_code == 201
        r = flow.submit_payment(req["id"])
        assert r.status_code == 409
        assert r.json()["error"] == "invalid_state"
