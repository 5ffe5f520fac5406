from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from sqlalchemy.orm import Session

from app.core.caller import CallerContext
from app.core.deps import get_blob_store, get_caller, get_db
from app.core.errors import AccountSuspended, NotFound, ValidationFailed
from app.core.s3 import S3Client, parse_s3_uri
from app.routers.uploads import build_object_key, safe_filename
from app.schemas.files import RegisterFileIn, RequestFileListOut, RequestFileOut
from app.services import files as file_service

router = APIRouter(prefix="/files", tags=["files"])


@router.get("", response_model=RequestFileListOut)
def list_files(
    request_id: int = Query(...),
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    return {"files": file_service.list_files(db, caller, request_id)}


@router.post("", response_model=RequestFileOut, status_code=201)
def upload_request_file(
    request_id: int = Form(...),
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
    s3: S3Client = Depends(get_blob_store),
):
    if caller.is_suspended:
        raise AccountSuspended(caller.suspended_reason)
    req = file_service.request_for_files(db, caller, request_id)

    data = file.file.read()
    safe_name = safe_filename(file.filename)
    # nothing reaches the blob store unless it passes the limits
    file_service.file_limits(db).check(safe_name, len(data))

    content_type = file.content_type or "application/octet-stream"
    storage_path = s3.put_bytes(
        bucket=s3.cfg.bucket_uploads,
        key=build_object_key("file", req.id, safe_name),
        data=data,
        content_type=content_type,
    )
    return file_service.attach_file(
        db,
        caller,
        req.id,
        file_name=safe_name,
        file_url=storage_path,
        file_type=content_type,
        file_size=len(data),
    )


@router.post("/register", response_model=RequestFileOut, status_code=201)
def register_uploaded_file(
    data: RegisterFileIn,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
    s3: S3Client = Depends(get_blob_store),
):
    """Record a file the client already PUT through /uploads/presign (kind "file")."""
    parsed = parse_s3_uri(data.storage_path)
    prefix = f"files/{data.request_id}/"
    if (
        parsed is None
        or parsed[0] != s3.cfg.bucket_uploads
        or not parsed[1].startswith(prefix)
    ):
        raise ValidationFailed("storage_path does not belong to this request's files")
    file_service.request_for_files(db, caller, data.request_id)
    if not s3.object_exists(*parsed):
        raise NotFound("Uploaded object not found")

    return file_service.attach_file(
        db,
        caller,
        data.request_id,
        file_name=safe_filename(data.file_name),
        file_url=data.storage_path,
        file_type=data.file_type,
        file_size=data.file_size,
    )
