from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from refledger.core.security import decode_access_token_payload, verify_service_token
from refledger.db.models import AdminUser
from refledger.db.session import get_db
from refledger.services.admin_service import get_admin, has_role_at_least

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_admin(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> AdminUser:
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access token required",
        )
    payload = decode_access_token_payload(credentials.credentials)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token subject",
        )

    # Tokens outlive admins; the admin row must still exist.
    admin = get_admin(db, subject)
    if not admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access revoked",
        )
    return admin


def require_min_role(min_role: str):
    def _require(current_admin: AdminUser = Depends(get_current_admin)) -> AdminUser:
        if not has_role_at_least(current_admin.role, min_role):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires {min_role} role",
            )
        return current_admin

    return _require


def require_service_token(x_service_token: str | None = Header(default=None)) -> None:
    if not verify_service_token(x_service_token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid service token",
        )
