from fastapi import APIRouter

from refledger.api.routes.admin import router as admin_router
from refledger.api.routes.health import router as health_router
from refledger.api.routes.referrals import router as referrals_router
from refledger.api.routes.rewards import router as rewards_router
from refledger.api.routes.settings import router as settings_router
from refledger.api.routes.users import router as users_router

router = APIRouter()
router.include_router(health_router, tags=["health"])
router.include_router(users_router, prefix="/users", tags=["users"])
router.include_router(referrals_router, prefix="/referrals", tags=["referrals"])
router.include_router(rewards_router, prefix="/rewards", tags=["rewards"])
router.include_router(settings_router, prefix="/settings", tags=["settings"])
router.include_router(admin_router, prefix="/admin", tags=["admin"])
