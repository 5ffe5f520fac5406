from app.models.audit import AuditLog


def _attach(flow, request_id, user=None, name="brief.pdf", data=b"%PDF-1.4 brief"):
    return flow.client.post(
        "/files",
        data={"request_id": str(request_id)},
        files={"file": (name, data, "application/pdf")},
        headers=flow.auth(user or flow.student),
    )


class TestAttachFiles:
    def test_owner_attaches_and_detail_nests_files(self, flow, db, blob_store):
        req = flow.create_request()
        r = _attach(flow, req["id"])
        assert r.status_code == 201, r.text
        body = r.json()
        assert body["file_name"] == "brief.pdf"
        assert body["file_size"] == 14
        assert body["user_id"] == flow.student.id
        assert body["file_url"].startswith(f"s3://uploads/files/{req['id']}/")
        assert len(blob_store.objects) == 1

        _attach(flow, req["id"], name="rubric.docx")
        detail = flow.get_request(req["id"])
        # newest first
        assert [f["file_name"] for f in detail["files"]] == ["rubric.docx", "brief.pdf"]

        db.expire_all()
        log = (
            db.query(AuditLog)
            .filter(AuditLog.action == "UPLOAD_FILE", AuditLog.entity_id == body["id"])
            .one()
        )
        assert log.entity_type == "FILE"
        assert log.changes == {"file_name": "brief.pdf", "request_id": req["id"]}

    def test_admin_may_attach(self, flow):
        req = flow.create_request()
        r = _attach(flow, req["id"], user=flow.admin)
        assert r.status_code == 201
        assert r.json()["user_id"] == flow.admin.id

    def test_other_student_is_refused(self, flow, other_student, blob_store):
        req = flow.create_request()
        r = _attach(flow, req["id"], user=other_student)
        assert r.status_code == 403
        assert blob_store.objects == {}

        r = flow.client.get(
            f"/files?request_id={req['id']}", headers=flow.auth(other_student)
        )
        assert r.status_code == 403

    def test_unknown_request(self, flow):
        assert _attach(flow, 999).status_code == 404

    def test_disallowed_extension(self, flow, blob_store):
        req = flow.create_request()
        r = _attach(flow, req["id"], name="run.exe")
        assert r.status_code == 400
        assert "Allowed types" in r.json()["detail"]
        assert blob_store.objects == {}

    def test_size_limit_comes_from_settings(self, flow, blob_store):
        req = flow.create_request()
        r = flow.client.put(
            "/settings",
            json={"values": {"max_file_size_mb": 1}, "category": "files"},
            headers=flow.auth(flow.admin),
        )
        assert r.status_code == 200, r.text

        r = _attach(flow, req["id"], data=b"x" * (1024 * 1024 + 1))
        assert r.status_code == 400
        assert "1MB" in r.json()["detail"]
        assert blob_store.objects == {}
        assert _attach(flow, req["id"], data=b"x" * 1024).status_code == 201

    def test_suspended_student_cannot_attach(self, flow, blob_store):
        req = flow.create_request()
        flow.suspend(flow.student)
        r = _attach(flow, req["id"])
        assert r.status_code == 403
        assert r.json()["error"] == "account_suspended"
        assert blob_store.objects == {}

    def test_list_requires_request_id(self, flow):
        r = flow.client.get("/files", headers=flow.auth(flow.student))
        assert r.status_code == 400

    def test_list_for_owner(self, flow):
        req = flow.create_request()
        _attach(flow, req["id"])
        r = flow.client.get(
            f"/files?request_id={req['id']}", headers=flow.auth(flow.student)
        )
        assert [f["file_name"] for f in r.json()["files"]] == ["brief.pdf"]


class TestRegisterPresignedFile:
    def _presign(self, flow, request_id, name="notes.pdf"):
        r = flow.client.post(
            "/uploads/presign",
            json={"kind": "file", "request_id": request_id, "file_name": name},
            headers=flow.auth(flow.student),
        )
        assert r.status_code == 200, r.text
        return r.json()

    def test_register_after_upload(self, flow, blob_store):
        req = flow.create_request()
        ticket = self._presign(flow, req["id"])
        assert ticket["object_key"].startswith(f"files/{req['id']}/")
        # the client PUTs straight to the blob store
        blob_store.objects[(ticket["bucket"], ticket["object_key"])] = b"data"

        r = flow.client.post(
            "/files/register",
            json={
                "request_id": req["id"],
                "storage_path": ticket["storage_path"],
                "file_name": "notes.pdf",
                "file_type": "application/pdf",
                "file_size": 4,
            },
            headers=flow.auth(flow.student),
        )
        assert r.status_code == 201, r.text
        assert r.json()["file_url"] == ticket["storage_path"]

    def test_missing_object(self, flow):
        req = flow.create_request()
        ticket = self._presign(flow, req["id"])
        r = flow.client.post(
            "/files/register",
            json={
                "request_id": req["id"],
                "storage_path": ticket["storage_path"],
                "file_name": "notes.pdf",
                "file_size": 4,
            },
            headers=flow.auth(flow.student),
        )
        assert r.status_code == 404

    def test_path_outside_request_folder(self, flow):
        req = flow.create_request()
        r = flow.client.post(
            "/files/register",
            json={
                "request_id": req["id"],
                "storage_path": "s3://uploads/receipts/1/receipt.pdf",
                "file_name": "receipt.pdf",
                "file_size": 4,
            },
            headers=flow.auth(flow.student),
        )
        assert r.status_code == 400
