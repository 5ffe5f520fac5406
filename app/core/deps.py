from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.orm import Session

from app.core.caller import CallerContext
from app.core.config import get_s3_client
from app.core.errors import Forbidden, Unauthenticated
from app.core.s3 import S3Client
from app.core.security import decode_token
from app.db.session import get_db
from app.models.user import User
from app.services.lifecycle import RequestLifecycleEngine
from app.services.notifier import Notifier

bearer = HTTPBearer(auto_error=False)


def get_current_user(
    creds: HTTPAuthorizationCredentials = Depends(bearer),
    db: Session = Depends(get_db),
) -> User:
    if creds is None:
        raise Unauthenticated("Not authenticated")
    try:
        payload = decode_token(creds.credentials)
        user_id = int(payload.get("sub"))
    except (JWTError, TypeError, ValueError):
        raise Unauthenticated("Invalid token")

    user = db.get(User, user_id)
    if not user:
        raise Unauthenticated("Invalid user")
    return user


def get_caller(user: User = Depends(get_current_user)) -> CallerContext:
    return CallerContext.from_user(user)


def require_admin(caller: CallerContext = Depends(get_caller)) -> CallerContext:
    if not caller.is_admin:
        raise Forbidden("No access for your role")
    return caller


def get_notifier() -> Notifier:
    return Notifier.from_settings()


def get_engine(
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> RequestLifecycleEngine:
    return RequestLifecycleEngine(db, notifier)


def get_blob_store() -> S3Client:
    return get_s3_client()
