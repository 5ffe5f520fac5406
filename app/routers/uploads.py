from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.orm import Session

from app.core.caller import CallerContext
from app.core.deps import get_blob_store, get_caller, get_db
from app.core.errors import AccountSuspended, Forbidden, NotFound, ValidationFailed
from app.core.s3 import S3Client
from app.models.request import Request
from app.schemas.uploads import PresignUploadIn, PresignUploadOut, UploadOut

router = APIRouter(tags=["uploads"])

_PREFIX = {"receipt": "receipts", "deliverable": "deliverables", "file": "files"}


def require_upload_access(req: Request, caller: CallerContext, kind: str) -> None:
    if caller.is_suspended:
        raise AccountSuspended(caller.suspended_reason)
    if kind == "deliverable":
        if not caller.is_admin:
            raise Forbidden("Only admins upload deliverables")
        return
    if kind == "file" and caller.is_admin:
        return
    if req.user_id != caller.user_id:
        raise Forbidden("You do not own this request")


def safe_filename(name: str) -> str:
    # minimal protection against odd paths
    name = (name or "file.bin").replace("\\", "_").replace("/", "_").strip()
    return name if name else "file.bin"


def build_object_key(kind: str, request_id: int, file_name: str) -> str:
    if kind not in _PREFIX:
        raise ValidationFailed("kind must be 'receipt', 'deliverable' or 'file'")
    ts = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S_%f")
    return f"{_PREFIX[kind]}/{request_id}/{ts}_{safe_filename(file_name)}"


def load_request(db: Session, request_id: int) -> Request:
    req = db.get(Request, request_id)
    if not req:
        raise NotFound("Request not found")
    return req


@router.post("/uploads/presign", response_model=PresignUploadOut)
def presign_upload(
    payload: PresignUploadIn,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
    s3: S3Client = Depends(get_blob_store),
):
    req = load_request(db, payload.request_id)
    require_upload_access(req, caller, payload.kind)

    object_key = build_object_key(payload.kind, req.id, payload.file_name)
    bucket = s3.cfg.bucket_uploads
    upload_url = s3.presign_put(
        bucket=bucket,
        key=object_key,
        content_type=payload.content_type or "application/octet-stream",
    )

    return PresignUploadOut(
        upload_url=upload_url,
        object_key=object_key,
        bucket=bucket,
        storage_path=f"s3://{bucket}/{object_key}",
        expires_in=int(s3.cfg.presign_expires_s),
    )


@router.post("/uploads", response_model=UploadOut, status_code=201)
def upload_file(
    kind: str = Form(...),
    request_id: int = Form(...),
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
    s3: S3Client = Depends(get_blob_store),
):
    req = load_request(db, request_id)
    require_upload_access(req, caller, kind)

    data = file.file.read()
    if not data:
        raise ValidationFailed("Uploaded file is empty")

    safe_name = safe_filename(file.filename)
    content_type = file.content_type or "application/octet-stream"
    object_key = build_object_key(kind, req.id, safe_name)
    storage_path = s3.put_bytes(
        bucket=s3.cfg.bucket_uploads,
        key=object_key,
        data=data,
        content_type=content_type,
    )

    return UploadOut(
        storage_path=storage_path,
        url=s3.download_url(storage_path),
        file_name=safe_name,
        content_type=content_type,
        size=len(data),
    )
