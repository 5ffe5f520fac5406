import os

# must be set before the app (and its engine) is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SEED_CATALOG"] = "false"
os.environ.pop("NOTIFIER_WEBHOOK_URL", None)

from datetime import datetime, timedelta, timezone  # noqa: E402
from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app.core.caller import CallerContext  # noqa: E402
from app.core.deps import get_blob_store  # noqa: E402
from app.core.s3 import S3Client, S3Config  # noqa: E402
from app.core.security import create_access_token  # noqa: E402
from app.db.session import Base, SessionLocal, engine  # noqa: E402
from app.main import app  # noqa: E402
from app.models.service import Service  # noqa: E402
from app.models.user import Role, User  # noqa: E402


class FakeBlobStore(S3Client):
    """S3Client that keeps objects in a dict; presigning stays boto3's (offline)."""

    def __init__(self) -> None:
        super().__init__(
            S3Config(
                endpoint_url_internal="http://minio:9000",
                endpoint_url_public="http://localhost:9000",
                access_key="test",
                secret_key="test",
                region="us-east-1",
                bucket_uploads="uploads",
                bucket_exports="exports",
                presign_expires_s=600,
            )
        )
        self.objects: dict[tuple[str, str], bytes] = {}

    def ensure_bucket(self, bucket: str) -> None:
        return None

    def put_bytes(self, *, bucket, key, data, content_type) -> str:
        self.objects[(bucket, key)] = data
        return f"s3://{bucket}/{key}"

    def object_exists(self, bucket: str, key: str) -> bool:
        return (bucket, key) in self.objects


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def blob_store():
    return FakeBlobStore()


@pytest.fixture
def client(db, blob_store):
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _make_user(db, name: str, role: Role = Role.STUDENT) -> User:
    user = User(name=name, email=f"{name.lower()}@example.com", role=role.value)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def student(db):
    return _make_user(db, "Alice")


@pytest.fixture
def other_student(db):
    return _make_user(db, "Bob")


@pytest.fixture
def admin(db):
    return _make_user(db, "Admin", Role.ADMIN)


@pytest.fixture
def service(db):
    svc = Service(
        name="Essay Writing",
        slug="essay-writing",
        description="Essays",
        price=Decimal("50.00"),
        is_active=True,
    )
    db.add(svc)
    db.commit()
    return svc


@pytest.fixture
def auth():
    def _headers(user: User) -> dict[str, str]:
        token = create_access_token(sub=str(user.id), role=user.role)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def caller():
    return CallerContext.from_user


def future_deadline(days: int = 7) -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=days)


class Flow:
    """Drives a request through the lifecycle over HTTP."""

    def __init__(self, client: TestClient, auth, student: User, admin: User, service):
        self.client = client
        self.auth = auth
        self.student = student
        self.admin = admin
        self.service = service

    def create_request(self, user: User | None = None, **overrides) -> dict:
        body = {
            "service_id": self.service.id,
            "title": "Climate policy essay",
            "instructions": "2000 words, APA",
            "academic_level": "Undergraduate",
            "deadline": future_deadline().isoformat(),
        }
        body.update(overrides)
        r = self.client.post(
            "/requests", json=body, headers=self.auth(user or self.student)
        )
        assert r.status_code == 201, r.text
        return r.json()

    def submit_payment(self, request_id: int, user: User | None = None, **overrides):
        body = {
            "request_id": request_id,
            "amount": "120.00",
            "currency": "USD",
            "receipt_url": "s3://uploads/receipts/1/receipt.png",
        }
        body.update(overrides)
        return self.client.post(
            "/payments", json=body, headers=self.auth(user or self.student)
        )

    def review(self, payment_id: int, status: str, reason: str | None = None):
        body = {"status": status}
        if reason is not None:
            body["rejection_reason"] = reason
        return self.client.put(
            f"/payments/{payment_id}", json=body, headers=self.auth(self.admin)
        )

    def upload_deliverable(self, request_id: int, name: str = "essay.pdf"):
        return self.client.post(
            "/deliverables",
            json={
                "request_id": request_id,
                "file_name": name,
                "file_url": f"s3://uploads/deliverables/{request_id}/{name}",
                "file_type": "application/pdf",
                "file_size": 1024,
            },
            headers=self.auth(self.admin),
        )

    def get_request(self, request_id: int, user: User | None = None) -> dict:
        r = self.client.get(
            f"/requests/{request_id}", headers=self.auth(user or self.student)
        )
        assert r.status_code == 200, r.text
        return r.json()

    def approved_request(self) -> tuple[dict, dict]:
        req = self.create_request()
        payment = self.submit_payment(req["id"]).json()
        r = self.review(payment["id"], "APPROVED")
        assert r.status_code == 200, r.text
        return req, r.json()

    def suspend(self, user: User, reason: str = "Chargeback"):
        r = self.client.put(
            f"/users/{user.id}/suspend",
            json={"is_suspended": True, "reason": reason},
            headers=self.auth(self.admin),
        )
        assert r.status_code == 200, r.text
        return r.json()


@pytest.fixture
def flow(client, auth, student, admin, service):
    return Flow(client, auth, student, admin, service)
