from datetime import datetime, timedelta, timezone
import hmac
from typing import Any
from uuid import uuid4

from jose import JWTError, jwt

from refledger.core.config import get_settings

ALGORITHM = "HS256"


def create_admin_access_token(admin_id: str, *, role: str | None = None) -> str:
    settings = get_settings()
    issued_at = datetime.now(timezone.utc)
    expire = issued_at + timedelta(minutes=settings.access_token_expire_minutes)
    payload: dict[str, Any] = {
        "sub": admin_id,
        "exp": expire,
        "iat": issued_at,
        "jti": uuid4().hex,
    }
    if role:
        payload["role"] = role
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_access_token_payload(token: str) -> dict[str, Any] | None:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return None
    if not isinstance(payload, dict):
        return None
    return payload


def verify_service_token(presented: str | None) -> bool:
    expected = get_settings().service_api_token
    if not expected:
        return True
    if not presented:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), presented.strip().encode("utf-8"))
