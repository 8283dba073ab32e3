"""
Namespaced admin settings with an append-only audit trail.

A namespace holds one opaque JSON document that is replaced wholesale on
every write. Each write reads the current document, swaps in the new one and
appends an ``AdminSettingAudit`` row inside one transaction. Writers to the
same namespace are serialised by a compare-and-swap on ``version``: a writer
that loses the race re-reads and retries, so the audit trail records every
transition with the value it actually replaced.
"""

from datetime import datetime, timezone
import json
from typing import Any

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from refledger.core.config import get_settings as get_app_settings
from refledger.db.models import AdminSettingAudit, AdminSettings
from refledger.services.admin_service import ROLE_ADMIN, ROLE_AUDIT_NAMESPACE_PREFIX, require_role
from refledger.services.errors import InvalidRequest, NotFound, StorageUnavailable
from refledger.services.transaction import with_rollback_on_error

app_settings = get_app_settings()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_namespace(namespace: str | None) -> str:
    normalized = (namespace or "").strip()
    if not normalized or len(normalized) > 120:
        raise InvalidRequest("Namespace must be 1-120 characters")
    if normalized.startswith(ROLE_AUDIT_NAMESPACE_PREFIX):
        raise InvalidRequest(f"Namespace prefix {ROLE_AUDIT_NAMESPACE_PREFIX!r} is reserved")
    return normalized


def _ensure_json(value: Any) -> None:
    if value is None:
        raise InvalidRequest("Settings value is required")
    try:
        json.dumps(value)
    except (TypeError, ValueError) as exc:
        raise InvalidRequest("Settings value must be JSON serialisable") from exc


def _load(db: Session, namespace: str) -> AdminSettings | None:
    return db.scalar(
        select(AdminSettings)
        .where(AdminSettings.namespace == namespace)
        .execution_options(populate_existing=True)
    )


def get_settings(db: Session, namespace: str) -> Any:
    row = _load(db, (namespace or "").strip())
    if row is None:
        raise NotFound(f"Settings namespace {namespace!r} not found")
    return row.settings


def list_namespaces(db: Session) -> list[AdminSettings]:
    return list(db.scalars(select(AdminSettings).order_by(AdminSettings.namespace.asc())).all())


def list_audits(
    db: Session,
    namespace: str | None = None,
    limit: int = 100,
) -> list[AdminSettingAudit]:
    clamped_limit = max(1, min(500, int(limit)))
    query = select(AdminSettingAudit)
    if namespace:
        query = query.where(AdminSettingAudit.namespace == namespace.strip())
    return list(
        db.scalars(query.order_by(AdminSettingAudit.updated_at.desc()).limit(clamped_limit)).all()
    )


def _swap(db: Session, namespace: str, new_value: Any) -> tuple[bool, Any]:
    current = _load(db, namespace)
    now = _utc_now()
    if current is None:
        try:
            with db.begin_nested():
                db.add(
                    AdminSettings(
                        namespace=namespace,
                        settings=new_value,
                        version=1,
                        created_at=now,
                        updated_at=now,
                    )
                )
                db.flush()
        except IntegrityError:
            return False, None
        return True, None

    old_value = current.settings
    result = db.execute(
        update(AdminSettings)
        .where(
            AdminSettings.id == current.id,
            AdminSettings.version == current.version,
        )
        .values(settings=new_value, version=current.version + 1, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1, old_value


@with_rollback_on_error
def put_settings(
    db: Session,
    namespace: str,
    new_value: Any,
    acting_admin_id: str | None = None,
) -> None:
    normalized = normalize_namespace(namespace)
    _ensure_json(new_value)
    if acting_admin_id is not None:
        require_role(db, acting_admin_id, ROLE_ADMIN)

    attempts = max(1, int(app_settings.settings_write_max_attempts))
    for attempt in range(1, attempts + 1):
        swapped, old_value = _swap(db, normalized, new_value)
        if not swapped:
            logger.warning("Concurrent write to {} (attempt {}/{})", normalized, attempt, attempts)
            continue

        db.add(
            AdminSettingAudit(
                admin_id=acting_admin_id,
                namespace=normalized,
                old_value=old_value,
                new_value=new_value,
                updated_at=_utc_now(),
            )
        )
        db.commit()
        logger.info("Settings {} updated by {}", normalized, acting_admin_id or "system")
        return

    raise StorageUnavailable(f"Settings namespace {normalized!r} is under heavy contention")
