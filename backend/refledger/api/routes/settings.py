from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import Response
from sqlalchemy.orm import Session

from refledger.api.deps import require_min_role, require_service_token
from refledger.db.models import AdminUser
from refledger.db.session import get_db
from refledger.schemas.admin import AdminSettingAuditRead, SettingsRead, SettingsWriteRequest
from refledger.services.admin_service import ROLE_ADMIN
from refledger.services.settings_service import (
    get_settings,
    list_audits,
    list_namespaces,
    put_settings,
)

router = APIRouter()


@router.get("", response_model=list[SettingsRead])
def read_namespaces(
    _: AdminUser = Depends(require_min_role(ROLE_ADMIN)),
    db: Session = Depends(get_db),
) -> list[SettingsRead]:
    return [SettingsRead.model_validate(row) for row in list_namespaces(db)]


@router.get("/audits", response_model=list[AdminSettingAuditRead])
def read_audits(
    namespace: str | None = Query(default=None, max_length=120),
    limit: int = Query(default=100, ge=1, le=500),
    _: AdminUser = Depends(require_min_role(ROLE_ADMIN)),
    db: Session = Depends(get_db),
) -> list[AdminSettingAuditRead]:
    entries = list_audits(db, namespace=namespace, limit=limit)
    return [AdminSettingAuditRead.model_validate(entry) for entry in entries]


@router.get(
    "/{namespace}",
    response_model=SettingsRead,
    dependencies=[Depends(require_service_token)],
)
def read_settings(namespace: str, db: Session = Depends(get_db)) -> SettingsRead:
    return SettingsRead(namespace=namespace, settings=get_settings(db, namespace))


@router.put("/{namespace}", status_code=status.HTTP_204_NO_CONTENT)
def write_settings(
    namespace: str,
    payload: SettingsWriteRequest,
    current_admin: AdminUser = Depends(require_min_role(ROLE_ADMIN)),
    db: Session = Depends(get_db),
) -> Response:
    put_settings(db, namespace, payload.settings, acting_admin_id=current_admin.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
