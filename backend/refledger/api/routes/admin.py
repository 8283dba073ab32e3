from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from refledger.api.deps import require_min_role
from refledger.db.models import AdminUser
from refledger.db.session import get_db
from refledger.schemas.admin import AdminCreateRequest, AdminRoleUpdateRequest, AdminUserRead
from refledger.schemas.rewards import RewardAmountRequest, RewardBalanceRead, RewardReversalRequest
from refledger.services.admin_service import (
    ROLE_ADMIN,
    ROLE_SUPER_ADMIN,
    create_admin,
    list_admins,
    set_admin_role,
)
from refledger.services.reward_service import reverse, settle

router = APIRouter()


@router.get("/admins", response_model=list[AdminUserRead])
def read_admins(
    _: AdminUser = Depends(require_min_role(ROLE_ADMIN)),
    db: Session = Depends(get_db),
) -> list[AdminUserRead]:
    return [AdminUserRead.model_validate(admin) for admin in list_admins(db)]


@router.post("/admins", response_model=AdminUserRead, status_code=status.HTTP_201_CREATED)
def register_admin(
    payload: AdminCreateRequest,
    current_admin: AdminUser = Depends(require_min_role(ROLE_SUPER_ADMIN)),
    db: Session = Depends(get_db),
) -> AdminUserRead:
    admin = create_admin(db, payload.telegram_id, payload.role, acting_admin_id=current_admin.id)
    return AdminUserRead.model_validate(admin)


@router.patch("/admins/{admin_id}/role", response_model=AdminUserRead)
def update_admin_role(
    admin_id: str,
    payload: AdminRoleUpdateRequest,
    current_admin: AdminUser = Depends(require_min_role(ROLE_SUPER_ADMIN)),
    db: Session = Depends(get_db),
) -> AdminUserRead:
    admin = set_admin_role(db, admin_id, payload.role, acting_admin_id=current_admin.id)
    return AdminUserRead.model_validate(admin)


@router.post("/rewards/{user_id}/settle", response_model=RewardBalanceRead)
def settle_reward(
    user_id: str,
    payload: RewardAmountRequest,
    current_admin: AdminUser = Depends(require_min_role(ROLE_ADMIN)),
    db: Session = Depends(get_db),
) -> RewardBalanceRead:
    balance = settle(db, user_id, payload.amount, acting_admin_id=current_admin.id)
    return RewardBalanceRead.model_validate(balance)


@router.post("/rewards/{user_id}/reverse", response_model=RewardBalanceRead)
def reverse_reward(
    user_id: str,
    payload: RewardReversalRequest,
    current_admin: AdminUser = Depends(require_min_role(ROLE_SUPER_ADMIN)),
    db: Session = Depends(get_db),
) -> RewardBalanceRead:
    balance = reverse(db, user_id, payload.amount, current_admin.id, payload.reason)
    return RewardBalanceRead.model_validate(balance)
