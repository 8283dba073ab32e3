from datetime import datetime, timezone

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from refledger.db.models import AdminSettingAudit, AdminUser
from refledger.services.errors import DuplicateIdentity, InvalidRequest, NotFound, Unauthorized
from refledger.services.transaction import with_rollback_on_error

ROLE_ADMIN = "admin"
ROLE_SUPER_ADMIN = "super_admin"

ROLE_LEVELS: dict[str, int] = {
    ROLE_ADMIN: 1,
    ROLE_SUPER_ADMIN: 2,
}

ROLE_VALUES = set(ROLE_LEVELS.keys())

ROLE_AUDIT_NAMESPACE_PREFIX = "admin_role:"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_role(role: str | None) -> str:
    normalized = (role or "").strip().lower()
    if normalized not in ROLE_VALUES:
        raise InvalidRequest(f"Unknown role: {role}")
    return normalized


def has_role_at_least(role: str | None, minimum_role: str) -> bool:
    minimum = ROLE_LEVELS.get((minimum_role or "").strip().lower())
    if minimum is None:
        return False
    actual = ROLE_LEVELS.get((role or "").strip().lower(), 0)
    return actual >= minimum


def get_admin(db: Session, admin_id: str) -> AdminUser | None:
    return db.get(AdminUser, admin_id)


def get_admin_by_telegram_id(db: Session, telegram_id: int) -> AdminUser | None:
    return db.scalar(select(AdminUser).where(AdminUser.telegram_id == telegram_id))


def authorize(db: Session, admin_id: str | None, required_role: str) -> bool:
    if not admin_id:
        return False
    admin = get_admin(db, admin_id)
    if not admin:
        return False
    return has_role_at_least(admin.role, required_role)


def require_role(db: Session, admin_id: str | None, required_role: str) -> AdminUser:
    if not authorize(db, admin_id, required_role):
        raise Unauthorized(f"Requires {required_role} role")
    return get_admin(db, admin_id)


def list_admins(db: Session) -> list[AdminUser]:
    return list(db.scalars(select(AdminUser).order_by(AdminUser.created_at.asc())).all())


def _record_role_change(
    db: Session,
    admin: AdminUser,
    old_role: str | None,
    new_role: str,
    acting_admin_id: str | None,
) -> None:
    db.add(
        AdminSettingAudit(
            admin_id=acting_admin_id,
            namespace=f"{ROLE_AUDIT_NAMESPACE_PREFIX}{admin.telegram_id}",
            old_value={"role": old_role} if old_role else None,
            new_value={"role": new_role},
            updated_at=_utc_now(),
        )
    )


@with_rollback_on_error
def create_admin(
    db: Session,
    telegram_id: int,
    role: str = ROLE_ADMIN,
    acting_admin_id: str | None = None,
) -> AdminUser:
    """Register an operator.

    Without ``acting_admin_id`` this is the bootstrap path and is only
    allowed while no admin exists yet.
    """
    target_role = normalize_role(role)
    if acting_admin_id is None:
        if db.scalar(select(AdminUser.id).limit(1)):
            raise Unauthorized("Bootstrap is only allowed on an empty admin table")
    else:
        require_role(db, acting_admin_id, ROLE_SUPER_ADMIN)

    if get_admin_by_telegram_id(db, telegram_id):
        raise DuplicateIdentity("Admin already registered")

    admin = AdminUser(telegram_id=telegram_id, role=target_role, created_at=_utc_now())
    try:
        with db.begin_nested():
            db.add(admin)
            db.flush()
    except IntegrityError as exc:
        raise DuplicateIdentity("Admin already registered") from exc

    _record_role_change(db, admin, None, target_role, acting_admin_id)
    db.commit()
    db.refresh(admin)
    logger.info("Admin {} created with role {} by {}", admin.id, target_role, acting_admin_id or "bootstrap")
    return admin


@with_rollback_on_error
def set_admin_role(db: Session, admin_id: str, role: str, acting_admin_id: str) -> AdminUser:
    require_role(db, acting_admin_id, ROLE_SUPER_ADMIN)
    target_role = normalize_role(role)

    admin = db.scalar(select(AdminUser).where(AdminUser.id == admin_id).with_for_update())
    if not admin:
        raise NotFound("Admin not found")
    if admin.role == target_role:
        return admin

    old_role = admin.role
    admin.role = target_role
    db.add(admin)
    _record_role_change(db, admin, old_role, target_role, acting_admin_id)
    db.commit()
    db.refresh(admin)
    logger.info("Admin {} role {} -> {} by {}", admin.id, old_role, target_role, acting_admin_id)
    return admin
