from datetime import datetime, timedelta, timezone

from jose import jwt

from app.core.config import settings


def create_access_token(*, sub: str, role: str) -> str:
    """Mint a token the way the identity provider does (used by tooling and tests)."""
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=settings.access_token_expire_minutes
    )
    payload = {"sub": sub, "role": role, "exp": expire}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_alg)


def decode_token(token: str) -> dict:
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_alg])
